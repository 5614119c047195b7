from .connection import Connection
from .exclusion import SyncExclusion
from .participant import Participant
from .poll import Poll
from .question import WebinarQuestion
from .registrant import Registrant
from .retry_entry import RetryScheduleEntry
from .sync_run import ACTIVE_SYNC_STATUSES, SyncRun, SyncRunStatus
from .webinar import ParticipantSyncStatus, Webinar, WebinarStatus
