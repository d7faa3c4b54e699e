"""Tests for hydration merge and outbox flushing in the reconciliation engine."""

from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from src.core.docustore_client import TxResult
from src.core.garden_context import GardenContext
from src.core.local_cache import LocalCache
from src.domain.create_models import TaskCreate
from src.domain.envelopes import GardenSnapshot, TasksSnapshot
from src.domain.sync import Aggregate, DataSource, LoadState, SyncStatus
from src.services import garden_rules
from src.services.local_store import LocalAggregateStore
from src.services.reconciliation_service import choose_snapshot
from tests.unit.mocks import OWNER_KEY, FakeContractGateway


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _remote_tasks(timestamp: int, *titles: str) -> dict:
    tasks = [
        garden_rules.build_task(TaskCreate(title=title), user_id=OWNER_KEY, now=NOW).model_copy(update={"id": f"r{i}"})
        for i, title in enumerate(titles)
    ]
    return TasksSnapshot(timestamp=timestamp, tasks=tasks).model_dump(mode="json")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("remote", "local", "expected"),
    [
        (None, None, DataSource.DEFAULTS),
        (1000, None, DataSource.REMOTE),
        (None, 1000, DataSource.LOCAL),
        (1000, 2000, DataSource.LOCAL),
        (2000, 1000, DataSource.REMOTE),
        (1000, 1000, DataSource.REMOTE),
    ],
)
def test_choose_snapshot(remote, local, expected) -> None:
    assert choose_snapshot(remote, local) == expected


@pytest.mark.unit
class TestHydration:
    async def test_disconnected_empty_start_uses_defaults(
        self, make_context: Callable[..., GardenContext], store: LocalAggregateStore
    ):
        context = make_context(connected=False)

        report = await context.manager.load()

        assert report.connected is False
        assert all(load.source == DataSource.DEFAULTS for load in report.aggregates.values())
        assert all(load.state == LoadState.HYDRATED for load in report.aggregates.values())
        assert len(context.manager.tasks) == 3
        assert context.manager.compost == 128
        assert len(context.manager.plants) == 1
        # Defaults are written back so the next start loads them locally
        assert await store.load_tasks() is not None

    async def test_second_start_loads_local_copy(self, make_context: Callable[..., GardenContext]):
        await make_context(connected=False).manager.load()

        report = await make_context(connected=False).manager.load()

        assert report.source_of(Aggregate.TASKS) == DataSource.LOCAL
        assert report.source_of(Aggregate.COMPOST) == DataSource.LOCAL

    async def test_newer_local_copy_beats_remote(
        self,
        make_context: Callable[..., GardenContext],
        gateway: FakeContractGateway,
        store: LocalAggregateStore,
    ):
        snapshot_id = gateway.seed(OWNER_KEY, "tasks", _remote_tasks(1000, "Remote only"))
        local_tasks = garden_rules.sample_tasks(OWNER_KEY, now=NOW)
        await store.save_tasks(local_tasks, timestamp=2000)
        context = make_context()

        report = await context.manager.load()
        await context.engine.drain()

        assert report.source_of(Aggregate.TASKS) == DataSource.LOCAL
        assert [t.id for t in context.manager.tasks] == ["1", "2", "3"]
        # The stale remote snapshot is replaced in place
        updates = gateway.executed("Update")
        assert [u["document"] for u in updates] == [snapshot_id]
        assert len(gateway.documents_in("tasks")[0]["tasks"]) == 3

    async def test_tie_prefers_remote_and_overwrites_local(
        self,
        make_context: Callable[..., GardenContext],
        gateway: FakeContractGateway,
        store: LocalAggregateStore,
    ):
        gateway.seed(OWNER_KEY, "tasks", _remote_tasks(1000, "Remote only"))
        await store.save_tasks(garden_rules.sample_tasks(OWNER_KEY, now=NOW), timestamp=1000)
        context = make_context()

        report = await context.manager.load()

        assert report.source_of(Aggregate.TASKS) == DataSource.REMOTE
        assert [t.title for t in context.manager.tasks] == ["Remote only"]
        entry = await store.load_tasks()
        assert entry is not None
        assert entry.timestamp == 1000
        assert [t.title for t in entry.value] == ["Remote only"]

    async def test_latest_remote_snapshot_wins(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        gateway.seed(OWNER_KEY, "tasks", _remote_tasks(1000, "Old"))
        gateway.seed(OWNER_KEY, "tasks", _remote_tasks(3000, "New"))
        gateway.seed(OWNER_KEY, "tasks", {"type": "something_else"})
        context = make_context()

        await context.manager.load()

        assert [t.title for t in context.manager.tasks] == ["New"]

    async def test_remote_garden_snapshot_fills_garden_aggregates(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        profile = garden_rules.default_profile(OWNER_KEY, now=NOW).model_copy(update={"level": 4})
        gateway.seed(
            OWNER_KEY,
            "garden",
            GardenSnapshot(timestamp=5000, plants=[], compost=300, profile=profile).model_dump(mode="json"),
        )
        context = make_context()

        report = await context.manager.load()

        assert context.manager.compost == 300
        assert context.manager.plants == []
        assert context.manager.level == 4
        assert report.source_of(Aggregate.PROFILE) == DataSource.REMOTE
        # No tasks snapshot exists remotely, so tasks come from defaults
        assert report.source_of(Aggregate.TASKS) == DataSource.DEFAULTS

    async def test_corrupt_cache_falls_back_and_reports(
        self, make_context: Callable[..., GardenContext], cache: LocalCache
    ):
        await cache.set("tasks", "{not json")
        context = make_context(connected=False)

        report = await context.manager.load()

        assert report.source_of(Aggregate.TASKS) == DataSource.DEFAULTS
        assert len(report.errors) == 1
        assert "tasks" in report.errors[0]
        assert len(context.manager.tasks) == 3

    async def test_remote_outage_falls_back_to_local(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        gateway.query_failures.extend([httpx.ConnectError("down")] * 4)
        context = make_context()

        report = await context.manager.load()

        assert report.connected is True
        assert report.source_of(Aggregate.TASKS) == DataSource.DEFAULTS
        assert context.engine.last_error == "down"

    async def test_malformed_remote_entries_are_skipped(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        gateway.seed(OWNER_KEY, "tasks", _remote_tasks(1000, "Remote only"))
        gateway.malformed_entries.extend(["junk", ["doc-x"], {"id": "doc-y", "data": "not json"}, 42])
        context = make_context()

        report = await context.manager.load()

        assert report.source_of(Aggregate.TASKS) == DataSource.REMOTE
        assert [t.title for t in context.manager.tasks] == ["Remote only"]
        assert report.source_of(Aggregate.COMPOST) == DataSource.DEFAULTS

    async def test_unreadable_remote_response_falls_back(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway, store: LocalAggregateStore
    ):
        await store.save_tasks(garden_rules.sample_tasks(OWNER_KEY, now=NOW), timestamp=1000)
        gateway.query_failures.append(ValueError("Expecting value: line 1 column 1 (char 0)"))
        context = make_context()

        report = await context.manager.load()

        assert report.source_of(Aggregate.TASKS) == DataSource.LOCAL
        assert context.engine.last_error == "Expecting value: line 1 column 1 (char 0)"

    async def test_corrupt_outbox_is_discarded_and_reported(
        self, make_context: Callable[..., GardenContext], cache: LocalCache
    ):
        await cache.set("sync-outbox", "{not json")
        context = make_context(connected=False)

        report = await context.manager.load()

        assert report.outbox_error is not None
        assert "sync-outbox" in report.outbox_error
        assert report.errors == [report.outbox_error]
        assert len(context.engine.outbox) == 0
        assert all(load.state == LoadState.HYDRATED for load in report.aggregates.values())


@pytest.mark.unit
class TestFlush:
    async def test_created_task_is_mirrored_and_confirmed(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()

        task = await context.manager.create_task(TaskCreate(title="Write changelog"))
        assert task.sync_status == SyncStatus.PENDING
        await context.manager.drain()

        stored = context.manager.get_task(task.id)
        assert stored.sync_status == SyncStatus.SYNCED
        assert stored.remote_document_id in gateway.document_ids("tasks")
        assert len(context.engine.outbox) == 0
        kinds = sorted(doc["type"] for doc in gateway.documents_in("tasks"))
        assert kinds == ["task", "tasks_snapshot"]
        assert context.engine.outbox.snapshot_ids["tasks"] in gateway.document_ids("tasks")

    async def test_second_edit_updates_existing_document(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        task = await context.manager.create_task(TaskCreate(title="Draft"))
        await context.manager.drain()
        sets_before = len(gateway.executed("Set"))

        await context.manager.complete_task(task.id)
        await context.manager.drain()

        assert len(gateway.executed("Set")) == sets_before + 2  # new plant + garden snapshot
        task_docs = [doc for doc in gateway.documents_in("tasks") if doc["type"] == "task"]
        assert len(task_docs) == 1
        assert task_docs[0]["task"]["status"] == "completed"

    async def test_unobserved_write_is_unconfirmed_then_rechecked(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        gateway.lag = 5

        task = await context.manager.create_task(TaskCreate(title="Slow chain"))
        await context.manager.drain()

        assert context.manager.get_task(task.id).sync_status == SyncStatus.UNCONFIRMED
        entry = context.engine.outbox.get(f"tasks:{task.id}")
        assert entry is not None
        assert entry.status == SyncStatus.UNCONFIRMED
        assert entry.last_error is not None

        gateway._hidden.clear()
        sets_before = len(gateway.executed("Set"))
        result = await context.manager.flush()

        assert result.synced == 2
        assert len(gateway.executed("Set")) == sets_before
        assert context.manager.get_task(task.id).sync_status == SyncStatus.SYNCED

    async def test_rejected_transaction_is_recorded_not_raised(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        gateway.execute_failures.append(TxResult(code=11, raw_log="out of gas"))

        task = await context.manager.create_task(TaskCreate(title="Ship release"))
        await context.manager.drain()

        assert context.manager.get_task(task.id).sync_status == SyncStatus.FAILED
        entry = context.engine.outbox.get(f"tasks:{task.id}")
        assert entry is not None
        assert entry.status == SyncStatus.FAILED
        assert "out of gas" in (entry.last_error or "")
        assert "out of gas" in (context.engine.last_error or "")

        # The next flush retries the failed entry
        result = await context.manager.flush()
        assert result.synced == 1
        assert context.manager.get_task(task.id).sync_status == SyncStatus.SYNCED

    async def test_transient_network_error_is_retried(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        gateway.execute_failures.append(httpx.ConnectError("connection reset"))

        task = await context.manager.create_task(TaskCreate(title="Flaky"))
        await context.manager.drain()

        assert context.manager.get_task(task.id).sync_status == SyncStatus.SYNCED
        assert len(gateway.executed("Set")) == 3  # failed attempt, retry, snapshot

    async def test_missing_snapshot_document_is_stored_again(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        context.engine.outbox.snapshot_ids["tasks"] = "doc-gone"

        await context.manager.create_task(TaskCreate(title="Recover snapshot"))
        await context.manager.drain()

        assert "tasks" not in context.engine.outbox.snapshot_ids
        snapshot_entry = context.engine.outbox.get("tasks:snapshot")
        assert snapshot_entry is not None
        assert snapshot_entry.status == SyncStatus.FAILED

        await context.manager.flush()

        assert context.engine.outbox.snapshot_ids["tasks"] in gateway.document_ids("tasks")
        assert context.engine.outbox.get("tasks:snapshot") is None

    async def test_deleting_mirrored_task_removes_remote_document(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context()
        await context.manager.load()
        task = await context.manager.create_task(TaskCreate(title="Temporary"))
        await context.manager.drain()
        remote_id = context.manager.get_task(task.id).remote_document_id

        await context.manager.delete_task(task.id)
        await context.manager.drain()

        assert [d["document"] for d in gateway.executed("Delete")] == [remote_id]
        assert remote_id not in gateway.document_ids("tasks")
        assert context.engine.outbox.get(f"tasks:{task.id}") is None

    async def test_disconnected_writes_wait_in_outbox(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        context = make_context(connected=False)
        await context.manager.load()

        task = await context.manager.create_task(TaskCreate(title="Offline"))
        result = await context.manager.flush()

        assert task.sync_status == SyncStatus.LOCAL_ONLY
        assert result.skipped is True
        assert context.engine.outbox.get(f"tasks:{task.id}") is not None
        assert gateway.executes == []

    async def test_outbox_survives_restart(
        self, make_context: Callable[..., GardenContext], gateway: FakeContractGateway
    ):
        offline = make_context(connected=False)
        await offline.manager.load()
        task = await offline.manager.create_task(TaskCreate(title="Queued offline"))

        online = make_context()
        await online.manager.load()
        await online.manager.drain()

        assert online.manager.get_task(task.id).sync_status == SyncStatus.SYNCED
        assert any(doc.get("task", {}).get("id") == task.id for doc in gateway.documents_in("tasks"))
