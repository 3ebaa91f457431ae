"""User lesson view — the cache projected onto the active identity.

A two-input join: it recomputes when the cache changes AND when the
identity changes. That covers the startup race (identity known only after
the first snapshot) and logins that switch users, which must never show
the previous user's lessons.
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator

from studybuddies.core.reactive import Derived, StateCell
from studybuddies.data.models import DEFAULT_DATETIME_FORMAT, Lesson


def lessons_for(lessons: tuple[Lesson, ...], identity: str | None) -> tuple[Lesson, ...]:
    """Lessons where identity is the tutor or the student; empty when signed out."""
    if not identity:
        return ()
    return tuple(lesson for lesson in lessons if lesson.involves(identity))


class UserLessonView:
    """Read-only, per-identity projection of the global cache.

    No status or date filtering is applied here.
    """

    def __init__(
        self,
        lessons: StateCell[tuple[Lesson, ...]],
        identity: StateCell[str | None],
    ) -> None:
        self._node: Derived[tuple[Lesson, ...]] = Derived([lessons, identity], lessons_for)

    @property
    def cell(self) -> Derived[tuple[Lesson, ...]]:
        return self._node

    @property
    def lessons(self) -> tuple[Lesson, ...]:
        return self._node.value

    def watch(self) -> AsyncIterator[tuple[Lesson, ...]]:
        return self._node.watch()

    def upcoming(
        self, now: datetime, fmt: str = DEFAULT_DATETIME_FORMAT
    ) -> list[Lesson]:
        """Active lessons that have not started yet (home-screen list)."""
        return [lesson for lesson in self._node.value if lesson.is_upcoming(now, fmt)]

    def close(self) -> None:
        self._node.close()
