"""
StudyBuddies — Lesson Engine.

Composes the lesson subsystem from two collaborators, a RecordSource and a
TriggerPort, and owns the lifecycle of everything it builds:

    RecordSource ──► GlobalLessonCache ──┬──► UserLessonView
                                         └──► ReminderScheduler ──► TriggerPort
    BookingCoordinator reads the cache, re-checks and writes via RecordSource.

Nothing here is a process-wide singleton; whoever builds the engine starts
and stops it.
"""

from __future__ import annotations

import logging
from datetime import tzinfo
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

from studybuddies.core.booking import BookingCoordinator, BookingResult
from studybuddies.core.lesson_cache import GlobalLessonCache
from studybuddies.core.reactive import StateCell
from studybuddies.core.reminder_scheduler import ReminderScheduler
from studybuddies.core.user_view import UserLessonView
from studybuddies.data.models import NotificationPreferences
from studybuddies.ports.record_source import RecordSourceError

if TYPE_CHECKING:
    from datetime import datetime

    from studybuddies.data.models import ReminderTrigger
    from studybuddies.ports.record_source import RecordSource
    from studybuddies.ports.trigger_port import TriggerPort

logger = logging.getLogger(__name__)


class LessonEngine:
    """The lesson cache, per-user view, booking and reminders, wired together."""

    def __init__(
        self,
        source: RecordSource,
        triggers: TriggerPort,
        lessons_collection: str | None = None,
        users_collection: str | None = None,
        tz: tzinfo | None = None,
        datetime_format: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        from studybuddies.config import settings

        self._source = source
        self._users_collection = users_collection or settings.USERS_COLLECTION
        lessons_collection = lessons_collection or settings.LESSONS_COLLECTION

        self.identity: StateCell[str | None] = StateCell(None)
        self.cache = GlobalLessonCache(source, lessons_collection)
        self.view = UserLessonView(self.cache.cell, self.identity)
        self.booking = BookingCoordinator(
            self.cache, source, lessons_collection, self._users_collection,
        )
        self.reminders = ReminderScheduler(
            triggers,
            tz=tz or ZoneInfo(settings.TIMEZONE),
            datetime_format=datetime_format or settings.LESSON_DATETIME_FORMAT,
            clock=clock,
        )
        # Reminders follow every snapshot, independently of view consumers
        self.cache.add_snapshot_hook(self.reminders.request)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()
        await self.reminders.stop()

    async def refresh(self) -> None:
        """Manual refresh: reopen the lesson subscription."""
        await self.cache.restart()

    # ------------------------------------------------------------------
    # Identity and preferences
    # ------------------------------------------------------------------

    @property
    def current_identity(self) -> str | None:
        return self.identity.value

    @property
    def preferences(self) -> NotificationPreferences:
        return self.reminders.preferences

    async def set_identity(self, user_id: str | None) -> list[ReminderTrigger]:
        """Switch the active user (None = signed out) and re-derive reminders."""
        user_id = user_id or None
        if user_id == self.identity.value:
            return []

        logger.info("Identity changed: %s -> %s", self.identity.value, user_id)
        self.identity.set(user_id)
        self.reminders.identity = user_id
        self.reminders.preferences = await self._load_preferences(user_id)
        await self.reminders.wait_idle()
        return await self.reminders.reschedule(self.cache.lessons)

    async def _load_preferences(self, user_id: str | None) -> NotificationPreferences:
        if user_id is None:
            return NotificationPreferences()
        try:
            profile = await self._source.get(self._users_collection, user_id)
        except RecordSourceError as exc:
            logger.warning("Could not load notification prefs for %s: %s", user_id, exc)
            return NotificationPreferences()
        return NotificationPreferences.from_document((profile or {}).get("notificationPrefs"))

    async def update_preferences(
        self, week_before: bool, one_day_before: bool
    ) -> list[ReminderTrigger]:
        """Change reminder offsets, persist them and reschedule.

        A failed write is logged; the new preferences still apply locally.
        """
        prefs = NotificationPreferences(
            week_before=week_before,
            one_day_before=one_day_before,
            one_hour_before=self.reminders.preferences.one_hour_before,
        )
        self.reminders.preferences = prefs

        user_id = self.identity.value
        if user_id is not None:
            try:
                await self._source.update(
                    self._users_collection, user_id,
                    {"notificationPrefs": prefs.to_document()},
                )
            except RecordSourceError as exc:
                logger.error("Error updating notification prefs for %s: %s", user_id, exc)

        await self.reminders.wait_idle()
        return await self.reminders.reschedule(self.cache.lessons)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book(
        self,
        tutor_id: str,
        date: str,
        time: str,
        subject: str,
        duration: str = "1 hour",
        location: str = "Online",
    ) -> BookingResult:
        """Book a lesson for the signed-in user as the student."""
        student_id = self.identity.value
        if student_id is None:
            raise PermissionError("Sign in before booking a lesson")
        result = await self.booking.book(
            tutor_id, student_id, date, time, subject,
            duration=duration, location=location,
        )
        if not self.is_current(result):
            logger.info(
                "Identity changed during booking (%s -> %s); result is stale",
                result.identity, self.identity.value,
            )
        return result

    def is_current(self, result: BookingResult) -> bool:
        """False when the result was requested by a different identity."""
        return result.identity == self.identity.value

    async def cancel(self, lesson_id: str) -> None:
        await self.booking.cancel(lesson_id)
