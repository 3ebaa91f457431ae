"""Shared test fixtures and configuration.

Sets up fake environment variables so studybuddies.config doesn't
sys.exit(), and provides the in-memory store, a recording trigger sink
and a fixed clock.
"""

import os

# Patch env vars BEFORE any studybuddies imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("RECORD_SOURCE", "memory")
os.environ.setdefault("TIMEZONE", "UTC")

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studybuddies.ports.trigger_port import TriggerPermissionError

UTC = ZoneInfo("UTC")
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class RecordingTriggers:
    """TriggerPort double that remembers what is live."""

    def __init__(self, deny_ids=(), deny_all=False):
        self.live: dict[int, tuple[int, dict]] = {}
        self.schedule_calls: list[int] = []
        self.cancelled: list[int] = []
        self.deny_ids = set(deny_ids)
        self.deny_all = deny_all

    async def schedule_trigger(self, trigger_id, fire_at_millis, payload):
        self.schedule_calls.append(trigger_id)
        if self.deny_all or trigger_id in self.deny_ids:
            raise TriggerPermissionError("exact alarms not permitted")
        self.live[trigger_id] = (fire_at_millis, payload)

    async def cancel_trigger(self, trigger_id):
        self.cancelled.append(trigger_id)
        self.live.pop(trigger_id, None)


def lesson_doc(**overrides) -> dict:
    """A lessons-collection document with sensible defaults."""
    doc = {
        "tutorId": "tutor1",
        "studentId": "u1",
        "tutorName": "Tami Tutor",
        "studentName": "Uri Student",
        "subject": "Math",
        "date": "Jan 10, 2026",
        "time": "3:00 PM",
        "duration": "1 hour",
        "status": "Confirmed",
        "location": "Online",
    }
    doc.update(overrides)
    return doc


async def settle(rounds: int = 20) -> None:
    """Let background tasks (subscription, reminder worker) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def source():
    """Return an empty InMemoryRecordSource."""
    from studybuddies.adapters.memory_source import InMemoryRecordSource
    return InMemoryRecordSource()


@pytest.fixture
def triggers():
    return RecordingTriggers()


@pytest.fixture
def engine(source, triggers):
    """Return a LessonEngine on the in-memory store with a fixed clock (not started)."""
    from studybuddies.core.engine import LessonEngine
    return LessonEngine(
        source,
        triggers,
        lessons_collection="lessons",
        users_collection="users",
        tz=UTC,
        datetime_format="%b %d, %Y %I:%M %p",
        clock=lambda: NOW,
    )
