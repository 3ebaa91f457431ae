"""Tests for studybuddies.core.lesson_cache — the global subscription cache."""

import pytest

from conftest import lesson_doc, settle
from studybuddies.adapters.memory_source import InMemoryRecordSource
from studybuddies.core.lesson_cache import GlobalLessonCache, parse_snapshot
from studybuddies.data.models import LessonStatus


def _source_with(**docs):
    return InMemoryRecordSource(initial={"lessons": docs})


# ---------------------------------------------------------------------------
# parse_snapshot
# ---------------------------------------------------------------------------


class TestParseSnapshot:
    def test_parses_documents(self):
        lessons = parse_snapshot([{**lesson_doc(), "id": "l1"}])
        assert len(lessons) == 1
        assert lessons[0].id == "l1"

    def test_skips_documents_without_id(self):
        lessons = parse_snapshot([
            lesson_doc(),                              # no id
            {**lesson_doc(), "id": "good"},
        ])
        assert [lesson.id for lesson in lessons] == ["good"]

    def test_unknown_status_is_kept(self):
        lessons = parse_snapshot([{**lesson_doc(status="Bogus"), "id": "odd"}])
        assert [lesson.id for lesson in lessons] == ["odd"]
        assert lessons[0].occupies_slot


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestCacheLifecycle:
    @pytest.mark.asyncio
    async def test_start_loads_initial_snapshot(self):
        cache = GlobalLessonCache(_source_with(l1=lesson_doc()), "lessons")
        cache.start()
        await settle()
        assert [lesson.id for lesson in cache.lessons] == ["l1"]
        assert cache.snapshot_count == 1
        assert cache.is_running
        await cache.stop()

    @pytest.mark.asyncio
    async def test_start_twice_opens_one_subscription(self):
        source = _source_with()
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        cache.start()
        await settle()
        assert source.subscriber_count("lessons") == 1
        await cache.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        source = _source_with()
        cache = GlobalLessonCache(source, "lessons")
        await cache.stop()  # never started
        cache.start()
        await settle()
        await cache.stop()
        await cache.stop()
        assert source.subscriber_count("lessons") == 0
        assert not cache.is_running

    @pytest.mark.asyncio
    async def test_restart_replaces_subscription(self):
        source = _source_with(l1=lesson_doc())
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()
        await cache.restart()
        await settle()
        assert source.subscriber_count("lessons") == 1
        assert cache.snapshot_count == 2
        await cache.stop()


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class TestCacheSnapshots:
    @pytest.mark.asyncio
    async def test_snapshot_replaces_whole_set(self):
        source = _source_with(l1=lesson_doc())
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()

        await source.update("lessons", "l1", {"status": "Cancelled"})
        await source.create("lessons", lesson_doc(time="4:00 PM"))
        await settle()

        assert len(cache.lessons) == 2
        assert cache.get("l1").status is LessonStatus.CANCELLED
        assert cache.snapshot_count == 3
        await cache.stop()

    @pytest.mark.asyncio
    async def test_notifies_cell_subscribers(self):
        source = _source_with()
        cache = GlobalLessonCache(source, "lessons")
        seen = []
        cache.cell.subscribe(lambda lessons: seen.append(len(lessons)))
        cache.start()
        await settle()
        await source.create("lessons", lesson_doc())
        await settle()
        assert seen == [0, 1]
        await cache.stop()

    @pytest.mark.asyncio
    async def test_unknown_status_still_holds_slot(self):
        source = _source_with(odd=lesson_doc(status="Bogus"))
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()
        assert cache.find_slot_holder("tutor1", "Jan 10, 2026", "3:00 PM").id == "odd"
        await cache.stop()

    @pytest.mark.asyncio
    async def test_hooks_run_after_swap_and_are_isolated(self):
        source = _source_with(l1=lesson_doc())
        cache = GlobalLessonCache(source, "lessons")
        calls = []

        def _broken(_lessons):
            raise RuntimeError("hook bug")

        cache.add_snapshot_hook(_broken)
        cache.add_snapshot_hook(lambda lessons: calls.append(cache.lessons == lessons))
        cache.start()
        await settle()
        assert calls == [True]
        assert len(cache.lessons) == 1
        await cache.stop()

    @pytest.mark.asyncio
    async def test_find_slot_holder_ignores_cancelled(self):
        source = _source_with(
            old=lesson_doc(status="Cancelled"),
            live=lesson_doc(time="4:00 PM"),
        )
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()
        assert cache.find_slot_holder("tutor1", "Jan 10, 2026", "3:00 PM") is None
        assert cache.find_slot_holder("tutor1", "Jan 10, 2026", "4:00 PM").id == "live"
        await cache.stop()


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestCacheFailures:
    @pytest.mark.asyncio
    async def test_transport_error_keeps_stale_data(self):
        source = _source_with(l1=lesson_doc())
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()

        source.break_subscriptions("lessons")
        await settle()

        assert [lesson.id for lesson in cache.lessons] == ["l1"]
        assert not cache.is_running
        await cache.stop()

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self):
        source = _source_with(l1=lesson_doc())
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()
        source.break_subscriptions("lessons")
        await settle()
        assert source.subscriber_count("lessons") == 0

        # Manual refresh brings it back
        await cache.restart()
        await settle()
        assert cache.is_running
        assert source.subscriber_count("lessons") == 1
        await cache.stop()

    @pytest.mark.asyncio
    async def test_unreachable_store_on_start(self):
        source = _source_with(l1=lesson_doc())
        source.offline = True
        cache = GlobalLessonCache(source, "lessons")
        cache.start()
        await settle()
        assert cache.lessons == ()
        assert not cache.is_running
        await cache.stop()
