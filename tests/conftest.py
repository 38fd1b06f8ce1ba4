"""Shared fixtures for meeting reminder tests."""

from pathlib import Path

import pytest
from zoneinfo import ZoneInfo

from reminder.config import Settings
from reminder.manager import MeetingListManager
from reminder.notifications import NotificationCenter
from reminder.scheduler import Scheduler
from reminder.storage import Defaults, MemoryBackend
from reminder.store import MeetingStore

LEAD_TIME_MINUTES = 10
DEFAULT_DATE_OFFSET = 3600


@pytest.fixture
def backend():
    backend = MemoryBackend()
    backend.register_defaults(
        {
            Defaults.NOTIFICATION_OFFSET_MINUTES.value: LEAD_TIME_MINUTES,
            Defaults.DEFAULT_MEETING_DATE_OFFSET.value: DEFAULT_DATE_OFFSET,
        }
    )
    return backend


@pytest.fixture
def center(backend):
    return NotificationCenter(backend)


@pytest.fixture
def scheduler(center):
    return Scheduler(center)


@pytest.fixture
def store(backend):
    return MeetingStore(backend)


@pytest.fixture
def manager(store, scheduler, backend):
    return MeetingListManager(store, scheduler, backend)


@pytest.fixture
def settings():
    return Settings(
        bot_token="test-token",
        allowed_chat_ids=[100],
        local_timezone=ZoneInfo("UTC"),
        store_path=Path("meetings.json"),
        notification_offset_minutes=LEAD_TIME_MINUTES,
        default_meeting_date_offset=DEFAULT_DATE_OFFSET,
        delivery_poll_interval=5,
        log_level="INFO",
    )
