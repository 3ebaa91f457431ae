"""Tests for studybuddies.core.reminder_scheduler — reconciling triggers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import NOW, UTC, RecordingTriggers, lesson_doc
from studybuddies.core.reminder_calculator import trigger_id_for
from studybuddies.core.reminder_scheduler import ReminderScheduler
from studybuddies.data.models import Lesson, NotificationPreferences
from studybuddies.ports.trigger_port import TriggerError


def _scheduler(triggers: RecordingTriggers, identity: str | None = "u1") -> ReminderScheduler:
    scheduler = ReminderScheduler(
        triggers, tz=UTC, datetime_format="%b %d, %Y %I:%M %p", clock=lambda: NOW,
    )
    scheduler.identity = identity
    return scheduler


def _lesson(doc_id="l1", **overrides):
    return Lesson.from_document(doc_id, lesson_doc(**overrides))


# ---------------------------------------------------------------------------
# reschedule
# ---------------------------------------------------------------------------


class TestReschedule:
    @pytest.mark.asyncio
    async def test_submits_every_trigger(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)

        accepted = await scheduler.reschedule([_lesson()])

        assert len(accepted) == 3
        hour_id = trigger_id_for("l1", "hour")
        fire_at_millis, payload = triggers.live[hour_id]
        assert fire_at_millis == 1768053600000  # Jan 10, 2026 14:00 UTC
        assert payload == {
            "title": "Upcoming Lesson: Math",
            "message": "Get ready! Your lesson starts in 1 hour.",
        }
        assert scheduler.scheduled_ids == frozenset(triggers.live)

    @pytest.mark.asyncio
    async def test_running_twice_is_idempotent(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        lessons = [_lesson("l1"), _lesson("l2", date="Jan 20, 2026")]

        await scheduler.reschedule(lessons)
        first = dict(triggers.live)
        await scheduler.reschedule(lessons)

        assert triggers.live == first
        assert len(triggers.live) == 6
        assert triggers.cancelled == []

    @pytest.mark.asyncio
    async def test_past_lesson_schedules_nothing(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        assert await scheduler.reschedule([_lesson(date="Jan 1, 2020")]) == []
        assert triggers.schedule_calls == []

    @pytest.mark.asyncio
    async def test_only_hour_when_offsets_disabled(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        scheduler.preferences = NotificationPreferences(
            week_before=False, one_day_before=False, one_hour_before=False,
        )
        accepted = await scheduler.reschedule([_lesson("l1"), _lesson("l2", time="5:00 PM")])
        assert sorted(t.lesson_id for t in accepted) == ["l1", "l2"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestTriggerRejections:
    @pytest.mark.asyncio
    async def test_rejection_does_not_stop_batch(self):
        denied = trigger_id_for("l1", "week")
        triggers = RecordingTriggers(deny_ids={denied})
        scheduler = _scheduler(triggers)

        accepted = await scheduler.reschedule([_lesson("l1"), _lesson("l2", time="5:00 PM")])

        assert len(triggers.schedule_calls) == 6
        assert len(accepted) == 5
        assert denied not in triggers.live

    @pytest.mark.asyncio
    async def test_permission_denied_everywhere_is_contained(self):
        triggers = RecordingTriggers(deny_all=True)
        scheduler = _scheduler(triggers)
        assert await scheduler.reschedule([_lesson()]) == []
        assert scheduler.scheduled_ids == frozenset()

    @pytest.mark.asyncio
    async def test_failed_cancel_is_retried_next_run(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        await scheduler.reschedule([_lesson()])

        triggers.cancel_trigger = AsyncMock(side_effect=TriggerError("busy"))
        await scheduler.reschedule([])
        assert len(scheduler.scheduled_ids) == 3

        triggers.cancel_trigger = AsyncMock()
        await scheduler.reschedule([])
        assert triggers.cancel_trigger.await_count == 3
        assert scheduler.scheduled_ids == frozenset()


# ---------------------------------------------------------------------------
# Orphan cancellation
# ---------------------------------------------------------------------------


class TestOrphanCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_lesson_triggers_removed(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        await scheduler.reschedule([_lesson()])
        assert len(triggers.live) == 3

        await scheduler.reschedule([_lesson(status="Cancelled")])

        assert triggers.live == {}
        assert sorted(triggers.cancelled) == sorted(
            trigger_id_for("l1", tag) for tag in ("week", "day", "hour")
        )

    @pytest.mark.asyncio
    async def test_disabled_offset_removed(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        await scheduler.reschedule([_lesson()])

        scheduler.preferences = NotificationPreferences(week_before=False)
        await scheduler.reschedule([_lesson()])

        assert triggers.cancelled == [trigger_id_for("l1", "week")]
        assert len(triggers.live) == 2

    @pytest.mark.asyncio
    async def test_sign_out_removes_everything(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        await scheduler.reschedule([_lesson()])

        scheduler.identity = None
        await scheduler.reschedule([_lesson()])
        assert triggers.live == {}


# ---------------------------------------------------------------------------
# Background requests
# ---------------------------------------------------------------------------


class TestRequest:
    @pytest.mark.asyncio
    async def test_burst_collapses_to_latest(self):
        scheduler = _scheduler(RecordingTriggers())
        scheduler.reschedule = AsyncMock(return_value=[])
        a, b, c = (_lesson("a"),), (_lesson("b"),), (_lesson("c"),)

        scheduler.request(a)
        scheduler.request(b)
        scheduler.request(c)
        await scheduler.wait_idle()

        scheduler.reschedule.assert_awaited_once_with(c)

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self):
        scheduler = _scheduler(RecordingTriggers())
        scheduler.reschedule = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler.request([_lesson()])
        await scheduler.wait_idle()
        scheduler.reschedule.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_real_run_schedules(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)
        scheduler.request([_lesson()])
        await scheduler.wait_idle()
        assert len(triggers.live) == 3

    @pytest.mark.asyncio
    async def test_request_returns_before_triggers_are_touched(self):
        triggers = RecordingTriggers()
        scheduler = _scheduler(triggers)

        assert scheduler.request([_lesson()]) is None
        assert triggers.schedule_calls == []

        await scheduler.wait_idle()
        assert len(triggers.live) == 3

    @pytest.mark.asyncio
    async def test_stop_is_safe_when_idle(self):
        scheduler = _scheduler(RecordingTriggers())
        await scheduler.stop()
        scheduler.request([_lesson()])
        await scheduler.stop()
