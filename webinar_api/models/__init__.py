from webinar_api.base.model import BaseRecord, RecordParseError
from .participant import ParticipantRecord, synthesize_participant_id
from .poll import PollRecord, synthesize_content_id
from .question import QuestionRecord, expand_question_rows
from .registrant import RegistrantRecord
from .webinar import WebinarRecord
