"""Tests for the coalescing sync outbox."""

import pytest

from src.core.local_cache import LocalCache
from src.domain.sync import SyncStatus
from src.services.local_store import LocalAggregateStore
from src.services.outbox import SNAPSHOT_RECORD_ID, Outbox, OutboxOperation


@pytest.fixture
def outbox(store: LocalAggregateStore) -> Outbox:
    return Outbox(store)


@pytest.mark.unit
class TestCoalescing:
    def test_latest_mutation_replaces_earlier(self, outbox: Outbox):
        outbox.enqueue_upsert("tasks", "t1", None)
        outbox.enqueue_upsert("tasks", "t1", "doc-1")

        assert len(outbox) == 1
        entry = outbox.get("tasks:t1")
        assert entry is not None
        assert entry.remote_document_id == "doc-1"

    def test_delete_keeps_known_remote_id(self, outbox: Outbox):
        outbox.enqueue_upsert("tasks", "t1", "doc-1")

        entry = outbox.enqueue_delete("tasks", "t1", None)

        assert entry is not None
        assert entry.operation == OutboxOperation.DELETE
        assert entry.remote_document_id == "doc-1"
        assert len(outbox) == 1

    def test_delete_of_never_mirrored_record_is_dropped(self, outbox: Outbox):
        assert outbox.enqueue_delete("tasks", "t9", None) is None
        assert len(outbox) == 0

    def test_delete_replaces_pending_store(self, outbox: Outbox):
        """A record still waiting for its first store keeps a delete marker."""
        outbox.enqueue_upsert("tasks", "t1", None)

        entry = outbox.enqueue_delete("tasks", "t1", None)

        assert entry is not None
        assert entry.remote_document_id is None

    def test_snapshots_follow_records(self, outbox: Outbox):
        outbox.enqueue_snapshot("tasks")
        outbox.enqueue_upsert("tasks", "t1", None)
        outbox.enqueue_upsert("plants", "p1", None)

        keys = [entry.key for entry in outbox.entries()]

        assert keys == ["tasks:t1", "plants:p1", f"tasks:{SNAPSHOT_RECORD_ID}"]

    def test_snapshot_uses_known_document_id(self, outbox: Outbox):
        outbox.snapshot_ids["garden"] = "doc-5"

        entry = outbox.enqueue_snapshot("garden")

        assert entry.is_snapshot
        assert entry.remote_document_id == "doc-5"

    def test_discard_ignores_replaced_entry(self, outbox: Outbox):
        first = outbox.enqueue_upsert("tasks", "t1", None)
        outbox.enqueue_upsert("tasks", "t1", None)

        outbox.discard(first)

        assert len(outbox) == 1

    def test_counts_by_status(self, outbox: Outbox):
        outbox.enqueue_upsert("tasks", "t1", None)
        failed = outbox.enqueue_upsert("tasks", "t2", None)
        failed.status = SyncStatus.FAILED

        assert outbox.counts() == {SyncStatus.PENDING: 1, SyncStatus.FAILED: 1}


@pytest.mark.unit
class TestPersistence:
    async def test_entries_survive_reload(self, outbox: Outbox, store: LocalAggregateStore):
        outbox.enqueue_upsert("tasks", "t1", "doc-1")
        outbox.enqueue_snapshot("garden")
        outbox.snapshot_ids["tasks"] = "doc-2"
        assert await outbox.save() is True

        restored = Outbox(store)
        await restored.load()

        assert [entry.key for entry in restored.entries()] == ["tasks:t1", f"garden:{SNAPSHOT_RECORD_ID}"]
        assert restored.snapshot_ids == {"tasks": "doc-2"}

    async def test_unreadable_outbox_is_discarded(self, outbox: Outbox, store: LocalAggregateStore):
        await store.save_raw("sync-outbox", {"entries": [{"collection": "tasks"}]}, timestamp=1)

        error = await outbox.load()

        assert len(outbox) == 0
        assert outbox.snapshot_ids == {}
        assert error is not None

    async def test_corrupt_outbox_json_is_discarded(self, outbox: Outbox, cache: LocalCache):
        outbox.enqueue_upsert("tasks", "t1", None)
        await cache.set("sync-outbox", "{not json")

        error = await outbox.load()

        assert error is not None
        assert "invalid JSON" in error
        assert outbox.entries() == []

    async def test_missing_outbox_starts_empty(self, outbox: Outbox):
        assert await outbox.load() is None

        assert outbox.entries() == []
