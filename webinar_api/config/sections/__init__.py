from .django import Django
from .sync import Sync
from .upstream import Upstream
