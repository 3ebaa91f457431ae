"""
StudyBuddies — Booking Coordinator.

Creates lessons without double-booking a tutor's slot. A booking passes two
gates before it is written:

1. Local pre-check against the global cache (plus this coordinator's own
   bookings that have not echoed back through the subscription yet).
   Catches the common case with no round trip.
2. Server re-check: a direct query for the tutor's lessons, closing the
   window where a concurrent booking has not reached the cache yet.

The coordinator never writes to the cache; the new lesson appears there
when the subscription delivers it. Without an atomic create-if-absent on the
store, a third booking landing between the re-check and the write can still
slip through.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

from studybuddies.core.lesson_cache import parse_snapshot
from studybuddies.data.models import Lesson, LessonStatus
from studybuddies.ports.record_source import RecordSourceError

if TYPE_CHECKING:
    from studybuddies.core.lesson_cache import GlobalLessonCache
    from studybuddies.ports.record_source import RecordSource

logger = logging.getLogger(__name__)

# Time grid offered by the booking dialog
DEFAULT_TIME_SLOTS: tuple[str, ...] = (
    "09:00 AM", "10:00 AM", "11:00 AM", "02:00 PM", "03:00 PM", "04:00 PM",
)

Slot = tuple[str, str, str]   # (tutor_id, date, time)


class BookingError(Exception):
    """Raised when a lesson status change cannot reach the store."""


class BookingOutcome(str, Enum):
    BOOKED = "booked"
    LOCAL_CONFLICT = "local_conflict"      # slower than the cache
    SERVER_CONFLICT = "server_conflict"    # slower than the server
    TRANSPORT_ERROR = "transport_error"


_MESSAGES = {
    BookingOutcome.BOOKED: "Lesson booked successfully!",
    BookingOutcome.LOCAL_CONFLICT: "Slot already occupied!",
    BookingOutcome.SERVER_CONFLICT: "Slot already occupied!",
    BookingOutcome.TRANSPORT_ERROR: "Error: Booking failed. Please try again.",
}


@dataclass
class BookingResult:
    """Outcome of a single book() call."""

    outcome: BookingOutcome
    lesson_id: str | None = None
    identity: str | None = None    # who asked; callers drop results for a stale identity
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is BookingOutcome.BOOKED

    @property
    def is_conflict(self) -> bool:
        return self.outcome in (BookingOutcome.LOCAL_CONFLICT, BookingOutcome.SERVER_CONFLICT)

    @property
    def user_message(self) -> str:
        return _MESSAGES[self.outcome]


def slot_taken(lessons: Iterable[Lesson], tutor_id: str, date: str, time: str) -> bool:
    """True if any non-cancelled lesson occupies (tutor_id, date, time)."""
    return any(
        lesson.occupies_slot and lesson.matches_slot(tutor_id, date, time)
        for lesson in lessons
    )


class BookingCoordinator:
    """Conflict-checked booking and status-only cancellation."""

    def __init__(
        self,
        cache: GlobalLessonCache,
        source: RecordSource,
        lessons_collection: str | None = None,
        users_collection: str | None = None,
    ) -> None:
        if lessons_collection is None or users_collection is None:
            from studybuddies.config import settings
            lessons_collection = lessons_collection or settings.LESSONS_COLLECTION
            users_collection = users_collection or settings.USERS_COLLECTION

        self._cache = cache
        self._source = source
        self._lessons_collection = lessons_collection
        self._users_collection = users_collection
        # Slots booked here but not yet echoed by the cache.
        # Value is None while the booking is still in flight.
        self._pending: dict[Slot, str | None] = {}
        cache.cell.subscribe(self._release_echoed)

    # ------------------------------------------------------------------
    # Slot queries
    # ------------------------------------------------------------------

    def is_slot_taken(self, tutor_id: str, date: str, time: str) -> bool:
        if (tutor_id, date, time) in self._pending:
            return True
        return self._cache.find_slot_holder(tutor_id, date, time) is not None

    def available_slots(
        self,
        tutor_id: str,
        date: str,
        candidate_times: Sequence[str] = DEFAULT_TIME_SLOTS,
    ) -> list[str]:
        """Times from candidate_times that are still free for this tutor and date."""
        return [t for t in candidate_times if not self.is_slot_taken(tutor_id, date, t)]

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book(
        self,
        tutor_id: str,
        student_id: str,
        date: str,
        time: str,
        subject: str,
        duration: str = "1 hour",
        location: str = "Online",
    ) -> BookingResult:
        """Book (tutor_id, date, time) for student_id.

        Never raises for expected failures: conflicts and transport errors
        come back as a BookingResult.
        """
        slot: Slot = (tutor_id, date, time)

        if self.is_slot_taken(*slot):
            logger.info("Booking rejected locally: %s %s %s already taken", *slot)
            return BookingResult(BookingOutcome.LOCAL_CONFLICT, identity=student_id)

        # Claim the slot before the first await so a concurrent book() in
        # this process fails the local pre-check.
        self._pending[slot] = None
        committed = False
        try:
            try:
                documents = await self._source.query(
                    self._lessons_collection, "tutorId", tutor_id,
                )
            except RecordSourceError as exc:
                logger.error("Booking re-check failed for tutor %s: %s", tutor_id, exc)
                return BookingResult(
                    BookingOutcome.TRANSPORT_ERROR, identity=student_id, error=str(exc),
                )

            if slot_taken(parse_snapshot(documents), *slot):
                logger.info("Booking rejected by server re-check: %s %s %s", *slot)
                return BookingResult(BookingOutcome.SERVER_CONFLICT, identity=student_id)

            tutor_name, student_name = await self._display_names(tutor_id, student_id)
            lesson = Lesson(
                id="",
                tutor_id=tutor_id,
                student_id=student_id,
                tutor_name=tutor_name,
                student_name=student_name,
                subject=subject,
                date=date,
                time=time,
                duration=duration,
                status=LessonStatus.CONFIRMED,
                location=location,
            )

            try:
                lesson_id = await self._source.create(
                    self._lessons_collection, lesson.to_document(),
                )
            except RecordSourceError as exc:
                logger.error("Booking write failed for %s %s %s: %s", *slot, exc)
                return BookingResult(
                    BookingOutcome.TRANSPORT_ERROR, identity=student_id, error=str(exc),
                )

            committed = True
            if self._cache.get(lesson_id) is not None:
                # Echo already arrived while we were awaiting the write
                self._pending.pop(slot, None)
            else:
                self._pending[slot] = lesson_id

            logger.info(
                "Lesson %s booked: tutor=%s student=%s %s %s",
                lesson_id, tutor_id, student_id, date, time,
            )
            return BookingResult(BookingOutcome.BOOKED, lesson_id=lesson_id, identity=student_id)
        finally:
            if not committed:
                self._pending.pop(slot, None)

    async def _display_names(self, tutor_id: str, student_id: str) -> tuple[str, str]:
        """Full names from the user profiles, falling back to role labels."""
        tutor, student = await asyncio.gather(
            self._profile(tutor_id), self._profile(student_id),
        )
        tutor_name = (tutor or {}).get("fullName") or "Tutor"
        student_name = (student or {}).get("fullName") or "Student"
        return tutor_name, student_name

    async def _profile(self, user_id: str) -> dict | None:
        try:
            return await self._source.get(self._users_collection, user_id)
        except RecordSourceError as exc:
            logger.warning("Profile lookup failed for %s: %s", user_id, exc)
            return None

    def _release_echoed(self, lessons: tuple[Lesson, ...]) -> None:
        if not self._pending:
            return
        ids = {lesson.id for lesson in lessons}
        for slot, lesson_id in list(self._pending.items()):
            if lesson_id is not None and lesson_id in ids:
                del self._pending[slot]

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, lesson_id: str) -> None:
        """Mark a lesson Cancelled. Only the status field is written.

        The cache reflects the change once the subscription echoes it.
        Raises BookingError on transport failure; the caller retries.
        """
        if not lesson_id:
            raise ValueError("lesson_id is required")

        try:
            await self._source.update(
                self._lessons_collection, lesson_id,
                {"status": LessonStatus.CANCELLED.value},
            )
        except RecordSourceError as exc:
            logger.error("Failed to cancel lesson %s: %s", lesson_id, exc)
            raise BookingError(f"Failed to cancel lesson {lesson_id}: {exc}") from exc

        logger.info("Lesson %s cancelled", lesson_id)
