"""Firestore record source — implements RecordSource on Cloud Firestore.

All Firebase-specific logic lives here. Core modules never import this
directly; they depend on the RecordSource protocol.

The Firestore client is synchronous. Direct reads and writes are wrapped
with asyncio.to_thread; the standing subscription uses on_snapshot, whose
callback runs on the listener's own thread and is handed over to the event
loop with call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter

from studybuddies.config import settings
from studybuddies.ports.record_source import RecordSourceError

logger = logging.getLogger(__name__)

# How often a quiet subscription checks that its listener is still alive
_WATCH_CHECK_SECONDS = 30.0


def _initialize_firebase() -> None:
    """Initialize the Firebase Admin SDK once per process."""
    if firebase_admin._apps:
        return

    if not settings.FIREBASE_PROJECT_ID:
        raise RecordSourceError("FIREBASE_PROJECT_ID is not set")

    options = {"projectId": settings.FIREBASE_PROJECT_ID}
    if settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        firebase_admin.initialize_app(cred, options)
    else:
        # Application Default Credentials
        firebase_admin.initialize_app(options=options)
    logger.info("Firebase Admin SDK initialized for project %s", settings.FIREBASE_PROJECT_ID)


def get_firestore_client() -> FirestoreClient:
    """Return a Firestore client, initializing Firebase on first use."""
    try:
        _initialize_firebase()
        return firestore.client()
    except RecordSourceError:
        raise
    except Exception as exc:
        logger.error("Failed to get Firestore client: %s", exc)
        raise RecordSourceError(f"Failed to get Firestore client: {exc}") from exc


def _to_record(snapshot) -> dict:
    """Flatten a DocumentSnapshot into a dict carrying its id."""
    return {**(snapshot.to_dict() or {}), "id": snapshot.id}


class FirestoreRecordSource:
    """Cloud Firestore implementation of RecordSource."""

    def __init__(self, client: FirestoreClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> FirestoreClient:
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    async def subscribe(self, collection: str) -> AsyncIterator[list[dict]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def _on_snapshot(docs, _changes, _read_time) -> None:
            records = [_to_record(doc) for doc in docs]
            loop.call_soon_threadsafe(queue.put_nowait, records)

        try:
            watch = await asyncio.to_thread(
                self.client.collection(collection).on_snapshot, _on_snapshot,
            )
        except Exception as exc:
            logger.error("Failed to subscribe to '%s': %s", collection, exc)
            raise RecordSourceError(f"Failed to subscribe to '{collection}': {exc}") from exc

        logger.info("Firestore listener attached to '%s'", collection)
        try:
            while True:
                try:
                    records = await asyncio.wait_for(queue.get(), timeout=_WATCH_CHECK_SECONDS)
                except asyncio.TimeoutError:
                    # Watch closes itself on an unrecoverable RPC error
                    # without calling back, so poll its state while idle.
                    if not watch.is_active:
                        logger.error("Firestore listener on '%s' stopped", collection)
                        raise RecordSourceError(
                            f"Subscription to '{collection}' lost"
                        ) from None
                    continue
                yield records
        finally:
            watch.unsubscribe()
            logger.info("Firestore listener detached from '%s'", collection)

    async def create(self, collection: str, fields: dict) -> str:
        try:
            _, ref = await asyncio.to_thread(self.client.collection(collection).add, fields)
        except Exception as exc:
            logger.error("Firestore create in '%s' failed: %s", collection, exc)
            raise RecordSourceError(f"Failed to create document: {exc}") from exc
        logger.debug("Created %s/%s", collection, ref.id)
        return ref.id

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        try:
            ref = self.client.collection(collection).document(doc_id)
            await asyncio.to_thread(ref.update, fields)
        except Exception as exc:
            logger.error("Firestore update of %s/%s failed: %s", collection, doc_id, exc)
            raise RecordSourceError(f"Failed to update document: {exc}") from exc

    async def query(self, collection: str, field: str, value: object) -> list[dict]:
        def _run() -> list[dict]:
            query = self.client.collection(collection).where(
                filter=FieldFilter(field, "==", value)
            )
            return [_to_record(doc) for doc in query.stream()]

        try:
            records = await asyncio.to_thread(_run)
        except Exception as exc:
            logger.error("Firestore query %s.%s == %r failed: %s", collection, field, value, exc)
            raise RecordSourceError(f"Failed to query documents: {exc}") from exc

        logger.debug("Query %s.%s == %r returned %d doc(s)", collection, field, value, len(records))
        return records

    async def get(self, collection: str, doc_id: str) -> dict | None:
        try:
            ref = self.client.collection(collection).document(doc_id)
            snapshot = await asyncio.to_thread(ref.get)
        except Exception as exc:
            logger.error("Firestore get of %s/%s failed: %s", collection, doc_id, exc)
            raise RecordSourceError(f"Failed to read document: {exc}") from exc
        if not snapshot.exists:
            return None
        return _to_record(snapshot)
