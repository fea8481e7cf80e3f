import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):
    """Ensure src/ is on sys.path for local test runs."""
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def database():
    from ibadah.db import Database

    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    from ibadah.store import NotificationStore

    return NotificationStore(database)


@pytest.fixture
def dispatch_config():
    from ibadah.config import DispatchConfig

    return DispatchConfig(
        send_window_minutes=5,
        default_timezone="Asia/Bangkok",
        default_location_name="Bangkok",
        default_reminder_minutes=10,
    )
