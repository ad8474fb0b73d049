"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB and a controllable clock.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("CHANNEL_PROVIDER", "memory")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Colombo")
os.environ.setdefault("MENTIONS", "")
os.environ.setdefault("ACK_EMOJIS", "")

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Callable clock for the stores; tests move it forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest.fixture
def clock():
    """Monday 2026-10-19, 06:00 UTC (11:30 in Asia/Colombo)."""
    return FakeClock(datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_reminders.db")


@pytest.fixture
def reminder_db(tmp_db_path, clock):
    """Return a ReminderDB instance backed by a temp file."""
    from src.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def message_log(tmp_db_path, clock):
    """Return a MessageLogDB sharing the temp DB file."""
    from src.data.db import MessageLogDB
    return MessageLogDB(db_path=tmp_db_path, clock=clock)


@pytest.fixture
def channel():
    """Return an in-memory messaging channel."""
    from src.adapters.memory_channel import InMemoryChannel
    return InMemoryChannel(chats={"Our Reminders": "chat-1"})
