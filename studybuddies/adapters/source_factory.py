"""Record source factory — creates the right adapter based on config."""

from __future__ import annotations

from studybuddies.config import settings
from studybuddies.ports.record_source import RecordSource


def create_record_source() -> RecordSource:
    """Return the record source matching the RECORD_SOURCE setting."""
    provider = settings.RECORD_SOURCE.lower()

    if provider == "firestore":
        from studybuddies.adapters.firestore_source import FirestoreRecordSource

        return FirestoreRecordSource()

    if provider == "memory":
        from studybuddies.adapters.memory_source import InMemoryRecordSource

        return InMemoryRecordSource()

    raise ValueError(f"Unknown RECORD_SOURCE: {provider!r}")
