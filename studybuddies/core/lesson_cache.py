"""
StudyBuddies — Global Lesson Cache.

Holds the single in-process copy of every lesson, kept current by one
standing subscription to the remote "lessons" collection. The subscription
task is the only writer; everything else reads.

Each pushed snapshot replaces the whole set (no incremental patching).
After the swap, the registered snapshot hooks run synchronously, each
isolated so one failing hook never blocks the next or the cache itself.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable

from studybuddies.core.reactive import StateCell
from studybuddies.data.models import Lesson
from studybuddies.ports.record_source import RecordSourceError

if TYPE_CHECKING:
    from studybuddies.ports.record_source import RecordSource

logger = logging.getLogger(__name__)

SnapshotHook = Callable[[tuple[Lesson, ...]], None]


def parse_snapshot(documents: list[dict]) -> tuple[Lesson, ...]:
    """Convert raw documents to Lessons, skipping (and logging) malformed ones."""
    lessons: list[Lesson] = []
    for doc in documents:
        doc_id = doc.get("id")
        if not doc_id:
            logger.warning("Skipping lesson document without id: %s", doc)
            continue
        try:
            lessons.append(Lesson.from_document(str(doc_id), doc))
        except (ValueError, TypeError) as exc:
            logger.warning("Skipping malformed lesson %s: %s", doc_id, exc)
    return tuple(lessons)


class GlobalLessonCache:
    """Authoritative local view of the lessons collection."""

    def __init__(self, source: RecordSource, collection: str | None = None) -> None:
        if collection is None:
            from studybuddies.config import settings
            collection = settings.LESSONS_COLLECTION

        self._source = source
        self._collection = collection
        self._cell: StateCell[tuple[Lesson, ...]] = StateCell(())
        self._hooks: list[SnapshotHook] = []
        self._task: asyncio.Task | None = None
        self._snapshot_count = 0

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def cell(self) -> StateCell[tuple[Lesson, ...]]:
        return self._cell

    @property
    def lessons(self) -> tuple[Lesson, ...]:
        return self._cell.value

    @property
    def snapshot_count(self) -> int:
        return self._snapshot_count

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get(self, lesson_id: str) -> Lesson | None:
        for lesson in self._cell.value:
            if lesson.id == lesson_id:
                return lesson
        return None

    def find_slot_holder(self, tutor_id: str, date: str, time: str) -> Lesson | None:
        """Return the non-cancelled lesson occupying this slot, if any."""
        for lesson in self._cell.value:
            if lesson.occupies_slot and lesson.matches_slot(tutor_id, date, time):
                return lesson
        return None

    def add_snapshot_hook(self, hook: SnapshotHook) -> None:
        self._hooks.append(hook)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the subscription. A no-op while one is already running."""
        if self.is_running:
            logger.debug("Lesson subscription already running")
            return
        self._task = asyncio.create_task(
            self._run(), name=f"subscription:{self._collection}"
        )
        logger.info("Lesson subscription started on '%s'", self._collection)

    async def stop(self) -> None:
        """Cancel the subscription. Safe to call any number of times."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Lesson subscription stopped on '%s'", self._collection)

    async def restart(self) -> None:
        """Tear down any existing subscription, then open a fresh one."""
        await self.stop()
        self.start()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            async for documents in self._source.subscribe(self._collection):
                self._apply(documents)
        except RecordSourceError as exc:
            # Stale-but-available: keep the last good snapshot. Retrying is
            # the record source's job.
            logger.error(
                "Lesson subscription failed; keeping %d cached lesson(s): %s",
                len(self._cell.value), exc,
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Lesson subscription crashed")

    def _apply(self, documents: list[dict]) -> None:
        lessons = parse_snapshot(documents)
        self._cell.set(lessons)
        self._snapshot_count += 1
        logger.debug("Lesson snapshot #%d applied: %d lesson(s)", self._snapshot_count, len(lessons))

        for hook in list(self._hooks):
            try:
                hook(lessons)
            except Exception:
                logger.exception("Snapshot hook failed")
