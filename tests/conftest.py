from __future__ import annotations

import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from webinar_data.models import Connection

ROOT = Path(__file__).resolve().parents[1]
SYNC_ROOT = ROOT / "webinar_sync"

if str(SYNC_ROOT) not in sys.path:
    sys.path.insert(0, str(SYNC_ROOT))

os.environ.setdefault(
    "WEBINAR_SYNC_CONFIG_FILE",
    str(Path(tempfile.mkdtemp(prefix="webinar-sync-tests-")) / "config.toml"),
)

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def connection(db: None) -> Connection:
    from webinar_data.models import Connection

    return Connection.objects.create(external_account_id="acct-1", credential_reference="cred-1")
