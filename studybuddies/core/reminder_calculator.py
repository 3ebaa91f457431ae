"""Lesson reminder calculator — pure business logic.

Turns lessons plus notification preferences into the exact set of reminder
triggers that should exist right now. Same inputs, same triggers: ids are
derived from (lesson id, offset tag) only, so re-running overwrites
instead of duplicating.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone, tzinfo
from typing import Iterable

from studybuddies.data.models import (
    DEFAULT_DATETIME_FORMAT,
    Lesson,
    NotificationPreferences,
    ReminderOffset,
    ReminderTrigger,
)

logger = logging.getLogger(__name__)

_ID_MASK = 0x7FFFFFFF


def trigger_id_for(lesson_id: str, offset_tag: str) -> int:
    """Stable 31-bit trigger id for one lesson/offset pair.

    SHA-256 over the UTF-8 bytes of "<lesson_id>:<offset_tag>"; the first
    four digest bytes are read big-endian and masked to 31 bits so the id
    is a non-negative signed 32-bit integer. Independent of interpreter
    hash seeds, so every process derives the same id.
    """
    digest = hashlib.sha256(f"{lesson_id}:{offset_tag}".encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big") & _ID_MASK


def enabled_offsets(prefs: NotificationPreferences) -> list[ReminderOffset]:
    """Offsets to schedule. The one-hour reminder is unconditional."""
    offsets: list[ReminderOffset] = []
    if prefs.week_before:
        offsets.append(ReminderOffset.WEEK)
    if prefs.one_day_before:
        offsets.append(ReminderOffset.DAY)
    offsets.append(ReminderOffset.HOUR)
    return offsets


def eligible_lessons(
    lessons: Iterable[Lesson],
    identity: str | None,
    now: datetime,
    fmt: str = DEFAULT_DATETIME_FORMAT,
) -> list[Lesson]:
    """The identity's non-cancelled lessons that have not started yet."""
    if not identity:
        return []
    return [
        lesson for lesson in lessons
        if lesson.involves(identity) and lesson.occupies_slot and not lesson.is_past(now, fmt)
    ]


def build_triggers(
    lesson: Lesson,
    prefs: NotificationPreferences,
    now: datetime,
    tz: tzinfo,
    fmt: str = DEFAULT_DATETIME_FORMAT,
) -> list[ReminderTrigger]:
    """Triggers for one lesson whose fire time is still ahead of now.

    Raises ValueError when the lesson's date/time cannot be parsed.
    """
    # Offsets are absolute durations: subtract on UTC instants, not wall clock
    start = lesson.start_at(tz, fmt).astimezone(timezone.utc)
    now = now.astimezone(timezone.utc)
    title = f"Upcoming Lesson: {lesson.subject}"

    triggers: list[ReminderTrigger] = []
    for offset in enabled_offsets(prefs):
        fire_at = start - offset.delta
        if fire_at <= now:
            continue    # no catch-up for windows that already passed
        triggers.append(
            ReminderTrigger(
                trigger_id=trigger_id_for(lesson.id, offset.tag),
                lesson_id=lesson.id,
                offset=offset,
                fire_at=fire_at,
                title=title,
                message=offset.message,
            )
        )
    return triggers


def compute_triggers(
    lessons: Iterable[Lesson],
    identity: str | None,
    prefs: NotificationPreferences,
    now: datetime,
    tz: tzinfo,
    fmt: str = DEFAULT_DATETIME_FORMAT,
) -> list[ReminderTrigger]:
    """All triggers for the identity, skipping lessons that fail to parse."""
    now = now.astimezone(tz)    # lesson strings are wall-clock times in tz
    triggers: list[ReminderTrigger] = []
    for lesson in eligible_lessons(lessons, identity, now, fmt):
        try:
            triggers.extend(build_triggers(lesson, prefs, now, tz, fmt))
        except ValueError as exc:
            logger.warning(
                "Skipping reminders for lesson %s ('%s %s'): %s",
                lesson.id, lesson.date, lesson.time, exc,
            )
    return triggers
