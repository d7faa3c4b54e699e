"""Write-ahead log of remote mirror work, coalesced per record."""

import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from src.core.config import constants
from src.core.errors import CacheCorruptError
from src.domain.sync import SyncStatus
from src.services.garden_rules import epoch_millis, utc_now
from src.services.local_store import LocalAggregateStore


logger = logging.getLogger(__name__)

SNAPSHOT_RECORD_ID = "snapshot"


class OutboxOperation(StrEnum):
    """Kind of remote mutation an entry stands for."""

    UPSERT = "upsert"
    DELETE = "delete"
    SNAPSHOT = "snapshot"


class OutboxEntry(BaseModel):
    """One pending remote mutation."""

    collection: str
    record_id: str
    operation: OutboxOperation
    remote_document_id: str | None = None
    status: SyncStatus = SyncStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None
    enqueued_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return f"{self.collection}:{self.record_id}"

    @property
    def is_snapshot(self) -> bool:
        return self.operation == OutboxOperation.SNAPSHOT


class OutboxState(BaseModel):
    """Persisted form of the outbox."""

    entries: list[OutboxEntry] = Field(default_factory=list)
    snapshot_ids: dict[str, str] = Field(default_factory=dict)


class Outbox:
    """Pending remote work keyed by (collection, record id).

    A later mutation of the same record replaces the earlier one, so a flush
    only ever sends the latest state.
    """

    def __init__(self, store: LocalAggregateStore) -> None:
        self._store = store
        self._entries: dict[str, OutboxEntry] = {}
        self.snapshot_ids: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> OutboxEntry | None:
        return self._entries.get(key)

    def entries(self) -> list[OutboxEntry]:
        """Record mutations first, then snapshots, each in enqueue order."""
        ordered = sorted(self._entries.values(), key=lambda e: e.enqueued_at)
        return [e for e in ordered if not e.is_snapshot] + [e for e in ordered if e.is_snapshot]

    def enqueue_upsert(self, collection: str, record_id: str, remote_document_id: str | None) -> OutboxEntry:
        entry = OutboxEntry(
            collection=collection,
            record_id=record_id,
            operation=OutboxOperation.UPSERT,
            remote_document_id=remote_document_id,
        )
        self._entries[entry.key] = entry
        return entry

    def enqueue_delete(self, collection: str, record_id: str, remote_document_id: str | None) -> OutboxEntry | None:
        """Queue a remote delete; a record that never reached the store is simply forgotten."""
        key = f"{collection}:{record_id}"
        existing = self._entries.get(key)
        remote_id = remote_document_id or (existing.remote_document_id if existing else None)

        if remote_id is None and existing is None:
            return None

        entry = OutboxEntry(
            collection=collection,
            record_id=record_id,
            operation=OutboxOperation.DELETE,
            remote_document_id=remote_id,
        )
        self._entries[key] = entry
        return entry

    def enqueue_snapshot(self, collection: str) -> OutboxEntry:
        entry = OutboxEntry(
            collection=collection,
            record_id=SNAPSHOT_RECORD_ID,
            operation=OutboxOperation.SNAPSHOT,
            remote_document_id=self.snapshot_ids.get(collection),
        )
        self._entries[entry.key] = entry
        return entry

    def discard(self, entry: OutboxEntry) -> None:
        """Remove ``entry`` unless a newer mutation has replaced it."""
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def counts(self) -> dict[str, int]:
        summary: dict[str, int] = {}
        for entry in self._entries.values():
            summary[entry.status] = summary.get(entry.status, 0) + 1
        return summary

    async def load(self) -> str | None:
        """Restore entries persisted by a previous session.

        Returns the reason the stored outbox was discarded, or None.
        """
        self._entries, self.snapshot_ids = {}, {}
        try:
            raw: Any = await self._store.load_raw(constants.CACHE_KEY_OUTBOX)
        except CacheCorruptError as e:
            logger.warning("Discarding corrupt sync outbox", extra={"error": str(e)})
            return str(e)
        if raw is None:
            return None
        try:
            state = OutboxState.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable sync outbox", extra={"error": str(e)})
            return f"Sync outbox discarded: {e.error_count()} invalid field(s)"
        self._entries = {entry.key: entry for entry in state.entries}
        self.snapshot_ids = dict(state.snapshot_ids)
        logger.info("Restored sync outbox", extra={"entries": len(self._entries)})
        return None

    async def save(self) -> bool:
        state = OutboxState(entries=list(self._entries.values()), snapshot_ids=self.snapshot_ids)
        return await self._store.save_raw(
            constants.CACHE_KEY_OUTBOX, state.model_dump(mode="json"), epoch_millis()
        )
