"""In-memory record source — implements RecordSource without a network.

Behaves like a real-time document store: every subscriber gets the full
collection on open and again after each write. Used for local runs
(RECORD_SOURCE=memory) and as the store double in tests.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import AsyncIterator

from studybuddies.ports.record_source import RecordSourceError

logger = logging.getLogger(__name__)

# Sentinel pushed to a subscriber queue to end its stream with an error
_BROKEN = object()


class InMemoryRecordSource:
    """Process-local implementation of RecordSource."""

    def __init__(self, initial: dict[str, dict[str, dict]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)
        for name, docs in (initial or {}).items():
            self._collections[name] = copy.deepcopy(docs)
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self.offline = False        # when True, direct calls raise RecordSourceError
        self.hold_pushes = False    # when True, writes land but are not pushed yet

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_online(self, op: str) -> None:
        if self.offline:
            raise RecordSourceError(f"{op} failed: store unreachable")

    def _snapshot(self, collection: str) -> list[dict]:
        return [
            {**copy.deepcopy(data), "id": doc_id}
            for doc_id, data in self._collections[collection].items()
        ]

    def _push(self, collection: str) -> None:
        if self.hold_pushes:
            return
        snapshot = self._snapshot(collection)
        for queue in self._subscribers[collection]:
            queue.put_nowait(snapshot)

    def flush(self, collection: str) -> None:
        """Deliver the current state to subscribers (after hold_pushes)."""
        self.hold_pushes = False
        self._push(collection)

    def break_subscriptions(self, collection: str) -> None:
        """End every open subscription on collection with a transport error."""
        for queue in self._subscribers[collection]:
            queue.put_nowait(_BROKEN)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscribers[collection])

    def documents(self, collection: str) -> dict[str, dict]:
        return copy.deepcopy(self._collections[collection])

    # ------------------------------------------------------------------
    # RecordSource
    # ------------------------------------------------------------------

    async def subscribe(self, collection: str) -> AsyncIterator[list[dict]]:
        self._check_online("subscribe")
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[collection].append(queue)
        queue.put_nowait(self._snapshot(collection))
        logger.debug("Subscriber attached to '%s'", collection)
        try:
            while True:
                item = await queue.get()
                if item is _BROKEN:
                    raise RecordSourceError(f"Subscription to '{collection}' lost")
                yield item
        finally:
            self._subscribers[collection].remove(queue)
            logger.debug("Subscriber detached from '%s'", collection)

    async def create(self, collection: str, fields: dict) -> str:
        self._check_online("create")
        doc_id = str(uuid.uuid4())
        self._collections[collection][doc_id] = copy.deepcopy(fields)
        self._push(collection)
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        self._check_online("update")
        doc = self._collections[collection].get(doc_id)
        if doc is None:
            raise RecordSourceError(f"No document '{doc_id}' in '{collection}'")
        doc.update(copy.deepcopy(fields))
        self._push(collection)

    async def query(self, collection: str, field: str, value: object) -> list[dict]:
        self._check_online("query")
        return [doc for doc in self._snapshot(collection) if doc.get(field) == value]

    async def get(self, collection: str, doc_id: str) -> dict | None:
        self._check_online("get")
        doc = self._collections[collection].get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}
