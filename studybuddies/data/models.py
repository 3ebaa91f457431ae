"""
StudyBuddies — Data Models.

Lessons live in the remote "lessons" collection; this process only ever holds
a read-through copy. Field names on the wire are camelCase, as written by the
mobile clients, and are mapped here to snake_case attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum

DEFAULT_DATETIME_FORMAT = "%b %d, %Y %I:%M %p"


class LessonStatus(str, Enum):
    UPCOMING = "Upcoming"
    CONFIRMED = "Confirmed"
    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            folded = value.strip().casefold()
            for member in cls:
                if member.value.casefold() == folded:
                    return member
        return None


def parse_status(raw: object) -> LessonStatus | str:
    """Known statuses become LessonStatus; anything else is kept verbatim.

    Only Cancelled frees a slot, so an unrecognised status must survive
    parsing and keep occupying it.
    """
    if raw is None or raw == "":
        return LessonStatus.UPCOMING
    try:
        return LessonStatus(raw)
    except ValueError:
        return str(raw)


_ACTIVE_STATUSES = (LessonStatus.UPCOMING, LessonStatus.CONFIRMED, LessonStatus.PENDING)


@dataclass(frozen=True)
class Lesson:
    """A scheduling record between one tutor and one student.

    Never deleted: cancellation is a status transition, so history survives.
    Only non-cancelled lessons occupy a (tutor, date, time) slot.
    """

    id: str
    tutor_id: str
    student_id: str
    tutor_name: str = ""
    student_name: str = ""
    subject: str = ""
    date: str = ""                    # e.g. "Jan 8, 2026"
    time: str = ""                    # e.g. "4:00 PM"
    duration: str = "1 hour"
    status: LessonStatus | str = LessonStatus.UPCOMING
    location: str = "Online"

    @classmethod
    def from_document(cls, doc_id: str, data: dict) -> Lesson:
        """Build a Lesson from a store document.

        Unknown fields are ignored and missing ones take their defaults.
        An unrecognised status string is kept as-is.
        """
        return cls(
            id=doc_id,
            tutor_id=str(data.get("tutorId", "")),
            student_id=str(data.get("studentId", "")),
            tutor_name=str(data.get("tutorName", "")),
            student_name=str(data.get("studentName", "")),
            subject=str(data.get("subject", "")),
            date=str(data.get("date", "")),
            time=str(data.get("time", "")),
            duration=str(data.get("duration", "1 hour")),
            status=parse_status(data.get("status")),
            location=str(data.get("location", "Online")),
        )

    def to_document(self) -> dict:
        """Store representation, without the id (the store owns it)."""
        return {
            "tutorId": self.tutor_id,
            "studentId": self.student_id,
            "tutorName": self.tutor_name,
            "studentName": self.student_name,
            "subject": self.subject,
            "date": self.date,
            "time": self.time,
            "duration": self.duration,
            "status": self.status_text,
            "location": self.location,
        }

    @property
    def status_text(self) -> str:
        return self.status.value if isinstance(self.status, LessonStatus) else self.status

    @property
    def occupies_slot(self) -> bool:
        return self.status != LessonStatus.CANCELLED

    def involves(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id in (self.tutor_id, self.student_id)

    def matches_slot(self, tutor_id: str, date: str, time: str) -> bool:
        return self.tutor_id == tutor_id and self.date == date and self.time == time

    def start_at(self, tz: tzinfo, fmt: str = DEFAULT_DATETIME_FORMAT) -> datetime:
        """Absolute start instant. Raises ValueError on malformed date/time."""
        naive = datetime.strptime(f"{self.date} {self.time}", fmt)
        return naive.replace(tzinfo=tz)

    def is_past(self, now: datetime, fmt: str = DEFAULT_DATETIME_FORMAT) -> bool:
        """True once the start has passed. Empty or unparseable times are never past."""
        if not self.date or not self.time:
            return False
        try:
            start = self.start_at(now.tzinfo, fmt)
            return start.astimezone(timezone.utc) < now.astimezone(timezone.utc)
        except ValueError:
            return False

    def is_upcoming(self, now: datetime, fmt: str = DEFAULT_DATETIME_FORMAT) -> bool:
        return not self.is_past(now, fmt) and self.status in _ACTIVE_STATUSES


@dataclass
class NotificationPreferences:
    """Which reminder offsets the user wants.

    Stored on the user profile under "notificationPrefs". The one-hour
    reminder is always sent; its flag is kept for round-tripping only.
    """

    week_before: bool = True
    one_day_before: bool = True
    one_hour_before: bool = True

    @classmethod
    def from_document(cls, data: dict | None) -> NotificationPreferences:
        data = data or {}
        return cls(
            week_before=bool(data.get("weekBefore", True)),
            one_day_before=bool(data.get("oneDayBefore", True)),
            one_hour_before=bool(data.get("oneHourBefore", True)),
        )

    def to_document(self) -> dict:
        return {
            "weekBefore": self.week_before,
            "oneDayBefore": self.one_day_before,
            "oneHourBefore": self.one_hour_before,
        }


class ReminderOffset(Enum):
    """How long before a lesson a reminder fires."""

    WEEK = ("week", timedelta(days=7), "Your lesson starts in 1 week!")
    DAY = ("day", timedelta(days=1), "Reminder: You have a lesson tomorrow!")
    HOUR = ("hour", timedelta(hours=1), "Get ready! Your lesson starts in 1 hour.")

    def __init__(self, tag: str, delta: timedelta, message: str) -> None:
        self.tag = tag
        self.delta = delta
        self.message = message


@dataclass(frozen=True)
class ReminderTrigger:
    """A derived, never-persisted reminder for one lesson at one offset."""

    trigger_id: int
    lesson_id: str
    offset: ReminderOffset
    fire_at: datetime
    title: str
    message: str = field(default="")

    @property
    def fire_at_millis(self) -> int:
        return int(self.fire_at.timestamp() * 1000)

    @property
    def payload(self) -> dict:
        return {"title": self.title, "message": self.message}
