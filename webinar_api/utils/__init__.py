from .datetime import coerce_datetime, ensure_utc, format_query_date, parse_datetime
from .deadline import Deadline, DeadlineExceeded
