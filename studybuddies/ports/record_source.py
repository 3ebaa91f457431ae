"""Record source port — abstract interface to the remote document store.

Core modules depend on this protocol, never on a specific store. Documents
are plain dicts; every document returned carries its id under "id".
"""

from __future__ import annotations

from typing import AsyncIterator, Protocol


class RecordSourceError(Exception):
    """Raised when the remote store cannot be reached or rejects an operation."""


class RecordSource(Protocol):
    """Abstract remote store used by core modules."""

    def subscribe(self, collection: str) -> AsyncIterator[list[dict]]:
        """Standing query over a whole collection.

        Yields the full document set once on open and again after every
        change. Ends by raising RecordSourceError on transport failure.
        """
        ...

    async def create(self, collection: str, fields: dict) -> str: ...

    async def update(self, collection: str, doc_id: str, fields: dict) -> None: ...

    async def query(self, collection: str, field: str, value: object) -> list[dict]: ...

    async def get(self, collection: str, doc_id: str) -> dict | None: ...
