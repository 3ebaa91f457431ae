"""
StudyBuddies — Reminder Scheduler.

Keeps the trigger facility holding exactly the reminders the active identity
needs: one per enabled offset for each future, non-cancelled lesson.

The whole set is re-derived from scratch on every cache snapshot,
preference change and identity change. Trigger ids are deterministic, so
re-submitting an unchanged reminder overwrites it in place. Ids submitted
by an earlier run that are no longer wanted (cancelled lesson, disabled
offset, different user) are cancelled.

Everything here runs on the background path: failures are logged, never
raised to a caller.

This module is provider-agnostic: it depends on the TriggerPort protocol,
not on a specific alarm implementation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Callable, Iterable
from zoneinfo import ZoneInfo

from studybuddies.core.reminder_calculator import compute_triggers
from studybuddies.data.models import Lesson, NotificationPreferences, ReminderTrigger
from studybuddies.ports.trigger_port import TriggerError

if TYPE_CHECKING:
    from studybuddies.ports.trigger_port import TriggerPort

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Reconciles reminder triggers with the current lessons."""

    def __init__(
        self,
        triggers: TriggerPort,
        tz: tzinfo | None = None,
        datetime_format: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if tz is None or datetime_format is None:
            from studybuddies.config import settings
            tz = tz or ZoneInfo(settings.TIMEZONE)
            datetime_format = datetime_format or settings.LESSON_DATETIME_FORMAT

        self._triggers = triggers
        self._tz = tz
        self._fmt = datetime_format
        self._clock = clock or (lambda: datetime.now(self._tz))

        self.identity: str | None = None
        self.preferences = NotificationPreferences()

        self._scheduled: set[int] = set()
        self._latest: tuple[Lesson, ...] | None = None
        self._worker: asyncio.Task | None = None

    @property
    def scheduled_ids(self) -> frozenset[int]:
        """Ids this scheduler believes are live at the trigger facility."""
        return frozenset(self._scheduled)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reschedule(self, lessons: Iterable[Lesson]) -> list[ReminderTrigger]:
        """Recompute and submit all triggers; returns the accepted ones."""
        desired = compute_triggers(
            lessons, self.identity, self.preferences,
            self._clock(), self._tz, self._fmt,
        )
        desired_ids = {t.trigger_id for t in desired}
        previous = self._scheduled

        accepted: list[ReminderTrigger] = []
        still_live: set[int] = set()
        for trigger in desired:
            try:
                await self._triggers.schedule_trigger(
                    trigger.trigger_id, trigger.fire_at_millis, trigger.payload,
                )
            except TriggerError as exc:
                logger.warning(
                    "Trigger %d (%s, lesson %s) rejected: %s",
                    trigger.trigger_id, trigger.offset.tag, trigger.lesson_id, exc,
                )
                if trigger.trigger_id in previous:
                    still_live.add(trigger.trigger_id)
                continue
            accepted.append(trigger)
            still_live.add(trigger.trigger_id)

        for orphan in sorted(previous - desired_ids):
            try:
                await self._triggers.cancel_trigger(orphan)
            except TriggerError as exc:
                logger.warning("Failed to cancel stale trigger %d: %s", orphan, exc)
                still_live.add(orphan)

        self._scheduled = still_live
        logger.info(
            "Reminders for %s: %d scheduled, %d rejected, %d stale cancelled",
            self.identity or "(signed out)",
            len(accepted), len(desired) - len(accepted),
            len(previous - desired_ids - still_live),
        )
        return accepted

    # ------------------------------------------------------------------
    # Background requests (cache snapshot hook)
    # ------------------------------------------------------------------

    def request(self, lessons: Iterable[Lesson]) -> None:
        """Queue a reschedule from synchronous code.

        Called from the cache's snapshot hook, which runs synchronously
        inside the snapshot swap. The TriggerPort is async, so the trigger
        calls run on a worker task started here instead of inline; the
        triggers therefore always reflect the most recent snapshot once
        wait_idle() returns. Runs are serialized; requests arriving during
        a run collapse into one follow-up run over the newest lessons.
        """
        self._latest = tuple(lessons)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._drain(), name="reminder-scheduler",
            )

    async def _drain(self) -> None:
        while self._latest is not None:
            lessons, self._latest = self._latest, None
            try:
                await self.reschedule(lessons)
            except Exception:
                logger.exception("Reminder rescheduling failed")

    async def wait_idle(self) -> None:
        """Wait until every queued reschedule has run."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        self._latest = None
        if worker is None or worker.done():
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
