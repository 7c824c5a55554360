"""Shared test fixtures and configuration.

Sets up fake environment variables before any speakeasy import, and provides
temp SQLite stores, a controllable clock and a recording notifier.
"""

import os

# Patch env vars BEFORE any speakeasy imports.
# No LLM key: every AI path is off unless a test turns it on explicitly.
os.environ["LLM_API_KEY"] = ""
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ["TIMEZONE"] = "UTC"

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

# Wednesday 5 March 2025, 09:00 UTC
REFERENCE = datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = REFERENCE) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def reference():
    return REFERENCE


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_speakeasy.db")


@pytest.fixture
def task_db(tmp_db_path):
    from speakeasy.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def event_db(tmp_db_path):
    from speakeasy.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def reminder_db(tmp_db_path):
    from speakeasy.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path)


@pytest.fixture
def notifier():
    """NotificationPort double recording every send."""
    mock = MagicMock()
    mock.send_notification = AsyncMock()
    return mock


@pytest.fixture
def scheduler(reminder_db, task_db, event_db, notifier, clock):
    from speakeasy.core.reminders import ReminderScheduler
    return ReminderScheduler(reminder_db, task_db, event_db, notifier, clock=clock, sweep_interval=5)


def make_task(description="buy milk", created_at=REFERENCE, **kwargs):
    from speakeasy.data.models import Task, new_id
    return Task(id=new_id(), owner_id="12345", description=description, created_at=created_at, **kwargs)


def make_event(title="Standup", start_at=None, minutes=30, **kwargs):
    from speakeasy.data.models import CalendarEvent, new_id
    start_at = start_at or REFERENCE + timedelta(days=1)
    return CalendarEvent(
        id=new_id(),
        owner_id="12345",
        title=title,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=minutes),
        **kwargs,
    )
