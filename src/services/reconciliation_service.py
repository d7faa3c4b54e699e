"""Reconciliation between the on-device cache and the remote document store.

Hydration runs a small state machine per aggregate. When both a remote
snapshot and a local copy exist, the one with the larger timestamp replaces
the other wholesale (ties go to remote). Mutations are mirrored through the
outbox in the background; remote failures are logged and recorded on the
outbox entry, never raised to the caller.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from src.core.config import Settings, constants, settings
from src.core.docustore_client import DocustoreClient
from src.core.errors import (
    CacheCorruptError,
    ConfirmationTimeoutError,
    GardenSyncError,
    TransactionFailedError,
)
from src.core.logging import span
from src.core.retry import poll_until, retry
from src.domain.envelopes import GardenSnapshot, RemoteDocument, TasksSnapshot, parse_envelope
from src.domain.plant import Plant
from src.domain.profile import CompostState, ProfileState
from src.domain.sync import AGGREGATE_ORDER, Aggregate, DataSource, LoadState, SyncStatus
from src.domain.task import Task
from src.interface.wallet import WalletProvider
from src.models.service_models import AggregateLoad, FlushResult, HydrationReport
from src.services import garden_rules
from src.services.local_store import CacheEntry, LocalAggregateStore
from src.services.outbox import Outbox, OutboxEntry, OutboxOperation


logger = logging.getLogger(__name__)

T = TypeVar("T")
SnapshotT = TypeVar("SnapshotT", TasksSnapshot, GardenSnapshot)

RecordRef = tuple[str, str, str | None]
"""(collection, record id, known remote document id)."""

_RETRYABLE: tuple[type[BaseException], ...] = (httpx.TransportError, httpx.HTTPStatusError)
_REMOTE_FAILURES: tuple[type[BaseException], ...] = (GardenSyncError, httpx.HTTPError, ValueError)


class SyncSource(Protocol):
    """What the engine needs from the owner of the in-memory state."""

    def envelope_for(self, collection: str, record_id: str) -> dict[str, Any] | None: ...

    def snapshot_for(self, collection: str) -> dict[str, Any] | None: ...

    async def apply_sync_status(
        self,
        collection: str,
        record_id: str,
        status: SyncStatus,
        remote_document_id: str | None,
    ) -> None: ...


class HydratedGarden(BaseModel):
    """Every aggregate after a load, plus how each was obtained."""

    tasks: list[Task]
    plants: list[Plant]
    compost: CompostState
    profile: ProfileState
    report: HydrationReport


def choose_snapshot(remote_timestamp: int | None, local_timestamp: int | None) -> DataSource:
    """Pick the source for one aggregate: newer timestamp wins, ties prefer remote."""
    if remote_timestamp is None and local_timestamp is None:
        return DataSource.DEFAULTS
    if remote_timestamp is None:
        return DataSource.LOCAL
    if local_timestamp is None:
        return DataSource.REMOTE
    return DataSource.REMOTE if remote_timestamp >= local_timestamp else DataSource.LOCAL


class ReconciliationEngine:
    """Loads aggregates and mirrors local mutations to the remote store."""

    def __init__(
        self,
        *,
        store: LocalAggregateStore,
        client: DocustoreClient,
        wallet: WalletProvider,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._wallet = wallet
        self._settings = config or settings
        self._source: SyncSource | None = None
        self._flush_lock = asyncio.Lock()
        self._background: set[asyncio.Task[FlushResult]] = set()
        self._outbox_loaded = False

        self.outbox = Outbox(store)
        self.loads: dict[Aggregate, AggregateLoad] = {aggregate: AggregateLoad() for aggregate in AGGREGATE_ORDER}
        self.last_flush_at: datetime | None = None
        self.last_error: str | None = None

    def attach(self, source: SyncSource) -> None:
        self._source = source

    @property
    def owner_key(self) -> str | None:
        return self._wallet.account_id if self._wallet.is_connected else None

    @property
    def is_connected(self) -> bool:
        return self.owner_key is not None and self._client.can_query

    @property
    def user_id(self) -> str:
        return self.owner_key or self._settings.local_user_id

    def _set_state(self, aggregates: Iterable[Aggregate], state: LoadState) -> None:
        for aggregate in aggregates:
            self.loads[aggregate].state = state

    # Hydration

    async def hydrate(self) -> HydratedGarden:
        """Run the full load sequence for every aggregate."""
        with span("reconciliation.hydrate"):
            self.loads = {aggregate: AggregateLoad() for aggregate in AGGREGATE_ORDER}
            outbox_error: str | None = None
            if not self._outbox_loaded:
                outbox_error = await self.outbox.load()
                self._outbox_loaded = True
            connected = self.is_connected

            remote_tasks: tuple[str, TasksSnapshot] | None = None
            remote_garden: tuple[str, GardenSnapshot] | None = None
            if connected:
                self._set_state(AGGREGATE_ORDER, LoadState.LOADING_REMOTE)
                remote_tasks = await self._latest_snapshot(constants.COLLECTION_TASKS, TasksSnapshot)
                remote_garden = await self._latest_snapshot(constants.COLLECTION_GARDEN, GardenSnapshot)
                for collection, found in (
                    (constants.COLLECTION_TASKS, remote_tasks),
                    (constants.COLLECTION_GARDEN, remote_garden),
                ):
                    if found is not None:
                        self.outbox.snapshot_ids.setdefault(collection, found[0])

            self._set_state(AGGREGATE_ORDER, LoadState.LOADING_LOCAL)
            now = garden_rules.utc_now()
            user_id = self.user_id
            tasks_snapshot = remote_tasks[1] if remote_tasks else None
            garden_snapshot = remote_garden[1] if remote_garden else None

            tasks = await self._resolve(
                Aggregate.TASKS,
                (tasks_snapshot.timestamp, tasks_snapshot.tasks) if tasks_snapshot else None,
                self._store.load_tasks,
                lambda: garden_rules.sample_tasks(user_id, now=now),
            )
            plants = await self._resolve(
                Aggregate.PLANTS,
                (garden_snapshot.timestamp, garden_snapshot.plants) if garden_snapshot else None,
                self._store.load_plants,
                lambda: garden_rules.sample_plants(user_id, now=now),
            )
            compost = await self._resolve(
                Aggregate.COMPOST,
                (
                    garden_snapshot.timestamp,
                    CompostState(balance=garden_snapshot.compost, focus_sessions=garden_snapshot.focus_sessions),
                )
                if garden_snapshot
                else None,
                self._store.load_compost,
                CompostState,
            )
            profile = await self._resolve(
                Aggregate.PROFILE,
                (
                    garden_snapshot.timestamp,
                    ProfileState(profile=garden_snapshot.profile, achievements=garden_snapshot.achievements),
                )
                if garden_snapshot and garden_snapshot.profile
                else None,
                self._store.load_profile,
                lambda: ProfileState(profile=garden_rules.default_profile(user_id, now=now)),
            )

            if connected:
                self._republish_stale_remote(remote_tasks is not None, remote_garden is not None)
                await self.outbox.save()

            report = HydrationReport(
                connected=connected,
                aggregates={aggregate: load.model_copy() for aggregate, load in self.loads.items()},
                hydrated_at=now,
                outbox_error=outbox_error,
            )
            logger.info(
                "Hydrated garden",
                extra={
                    "connected": connected,
                    "sources": {aggregate.value: load.source for aggregate, load in self.loads.items()},
                    "errors": report.errors,
                },
            )
            return HydratedGarden(tasks=tasks, plants=plants, compost=compost, profile=profile, report=report)

    async def _resolve(
        self,
        aggregate: Aggregate,
        remote: tuple[int, T] | None,
        load_local: Callable[[], Awaitable[CacheEntry[T] | None]],
        defaults: Callable[[], T],
    ) -> T:
        load = self.loads[aggregate]
        local: CacheEntry[T] | None = None
        try:
            local = await load_local()
        except CacheCorruptError as e:
            logger.warning("Local copy unreadable, falling back", extra={"aggregate": aggregate, "error": str(e)})
            load.error = str(e)

        source = choose_snapshot(remote[0] if remote else None, local.timestamp if local else None)
        if source == DataSource.REMOTE and remote is not None:
            timestamp, value = remote
        elif source == DataSource.LOCAL and local is not None:
            timestamp, value = local.timestamp, local.value
        else:
            timestamp, value = garden_rules.epoch_millis(), defaults()

        if source != DataSource.LOCAL:
            await self._write_local(aggregate, value, timestamp)

        load.state = LoadState.HYDRATED
        load.source = source
        load.timestamp = timestamp
        return value

    def _republish_stale_remote(self, has_remote_tasks: bool, has_remote_garden: bool) -> None:
        """Queue a fresh snapshot where a newer local copy beat an existing remote one."""
        if has_remote_tasks and self.loads[Aggregate.TASKS].source == DataSource.LOCAL:
            self.outbox.enqueue_snapshot(constants.COLLECTION_TASKS)
        garden = (Aggregate.PLANTS, Aggregate.COMPOST, Aggregate.PROFILE)
        if has_remote_garden and any(self.loads[a].source == DataSource.LOCAL for a in garden):
            self.outbox.enqueue_snapshot(constants.COLLECTION_GARDEN)

    async def _fetch_all(self, collection: str) -> list[RemoteDocument]:
        """Page through every document the owner has in ``collection``."""
        owner = self.owner_key
        if owner is None:
            return []
        limit = constants.DEFAULT_QUERY_LIMIT
        documents: list[RemoteDocument] = []
        offset = 0
        while True:
            page = await self._client.query(owner, collection, limit=limit, offset=offset)
            documents.extend(page)
            if len(page) < limit:
                return documents
            offset += limit

    async def _latest_snapshot(self, collection: str, kind: type[SnapshotT]) -> tuple[str, SnapshotT] | None:
        """Newest snapshot envelope of ``kind`` in ``collection``, or None on empty or failure."""
        try:
            documents = await retry(
                lambda: self._fetch_all(collection),
                max_attempts=self._settings.remote_retry_attempts,
                base_delay=self._settings.remote_retry_base_delay,
                retry_on=_RETRYABLE,
            )
        except _REMOTE_FAILURES as e:
            logger.warning("Remote load failed", extra={"collection": collection, "error": str(e)})
            self.last_error = str(e)
            return None

        snapshots: list[tuple[str, SnapshotT]] = []
        for document in documents:
            try:
                envelope = parse_envelope(document.data)
            except ValidationError:
                logger.debug("Skipping non-envelope document", extra={"document_id": document.id})
                continue
            if isinstance(envelope, kind):
                snapshots.append((document.id, envelope))

        if not snapshots:
            logger.info("No remote snapshot", extra={"collection": collection})
            return None
        return max(snapshots, key=lambda found: found[1].timestamp)

    # Local persistence

    async def _write_local(self, aggregate: Aggregate, value: Any, timestamp: int) -> bool:  # noqa: ANN401
        match aggregate:
            case Aggregate.TASKS:
                return await self._store.save_tasks(value, timestamp)
            case Aggregate.PLANTS:
                return await self._store.save_plants(value, timestamp)
            case Aggregate.COMPOST:
                return await self._store.save_compost(value, timestamp)
            case Aggregate.PROFILE:
                return await self._store.save_profile(value, timestamp)

    async def persist(self, aggregate: Aggregate, value: Any) -> bool:  # noqa: ANN401
        """Write one aggregate to the local cache; failures are logged, not raised."""
        timestamp = garden_rules.epoch_millis()
        saved = await self._write_local(aggregate, value, timestamp)
        if saved:
            self.loads[aggregate].timestamp = timestamp
        else:
            logger.warning("Local write failed; in-memory state kept", extra={"aggregate": aggregate})
        return saved

    # Mirroring

    async def schedule(
        self,
        *,
        upserts: Iterable[RecordRef] = (),
        deletes: Iterable[RecordRef] = (),
        snapshots: Iterable[str] = (),
    ) -> None:
        """Record remote work in the outbox and start a background flush when connected."""
        for collection, record_id, remote_id in upserts:
            self.outbox.enqueue_upsert(collection, record_id, remote_id)
        for collection, record_id, remote_id in deletes:
            self.outbox.enqueue_delete(collection, record_id, remote_id)
        for collection in snapshots:
            self.outbox.enqueue_snapshot(collection)
        await self.outbox.save()
        self.kick()

    def kick(self) -> None:
        """Start a background flush if a remote session is available."""
        if not self.is_connected:
            return
        task = asyncio.create_task(self._flush_in_background())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _flush_in_background(self) -> FlushResult:
        try:
            return await self.flush()
        except Exception as e:
            logger.exception("Background flush crashed", extra={"error": str(e)})
            self.last_error = str(e)
            return FlushResult(failed=1)

    async def drain(self) -> None:
        """Wait for every background flush started so far."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def flush(self) -> FlushResult:
        """Send every pending outbox entry: records first, then snapshots."""
        if not self.is_connected:
            return FlushResult(skipped=True)

        async with self._flush_lock:
            with span("reconciliation.flush"):
                result = FlushResult()
                for entry in self.outbox.entries():
                    result.attempted += 1
                    try:
                        status = await self._process(entry)
                    except _REMOTE_FAILURES as e:
                        await self._record_failure(entry, e)
                        result.failed += 1
                        continue

                    if status is None:
                        result.dropped += 1
                    elif status == SyncStatus.SYNCED:
                        result.synced += 1
                    else:
                        result.unconfirmed += 1

                await self.outbox.save()
                self.last_flush_at = garden_rules.utc_now()
                if result.attempted:
                    logger.info("Flushed sync outbox", extra=result.model_dump())
                return result

    async def _record_failure(self, entry: OutboxEntry, error: BaseException) -> None:
        logger.error(
            "Remote mirror failed",
            extra={"collection": entry.collection, "record_id": entry.record_id, "error": str(error)},
        )
        entry.status = SyncStatus.FAILED
        entry.last_error = str(error)
        self.last_error = str(error)
        if entry.is_snapshot and isinstance(error, TransactionFailedError) and entry.remote_document_id:
            # The previous snapshot document is gone; store a fresh one next time
            self.outbox.snapshot_ids.pop(entry.collection, None)
            entry.remote_document_id = None
        if not entry.is_snapshot and entry.operation != OutboxOperation.DELETE:
            await self._notify(entry, SyncStatus.FAILED, entry.remote_document_id)

    async def _process(self, entry: OutboxEntry) -> SyncStatus | None:
        entry.attempts += 1
        if entry.operation == OutboxOperation.DELETE:
            return await self._process_delete(entry)
        if entry.status == SyncStatus.UNCONFIRMED and entry.remote_document_id:
            return await self._confirm(entry, entry.remote_document_id)

        payload = self._payload_for(entry)
        if payload is None:
            self.outbox.discard(entry)
            return None

        remote_id = entry.remote_document_id
        if remote_id is not None:
            existing_id = remote_id
            await self._with_retry(lambda: self._client.update(existing_id, entry.collection, payload))
        else:
            owner = self.owner_key or ""
            remote_id = await self._with_retry(lambda: self._client.store(owner, entry.collection, payload))
            self._adopt_remote_id(entry, remote_id)
        return await self._confirm(entry, remote_id)

    async def _process_delete(self, entry: OutboxEntry) -> SyncStatus | None:
        remote_id = entry.remote_document_id
        if remote_id is None:
            self.outbox.discard(entry)
            return None

        if entry.status != SyncStatus.UNCONFIRMED:
            await self._with_retry(lambda: self._client.delete(remote_id, entry.collection))

        async def gone() -> bool:
            return not await self._observed(entry.collection, remote_id)

        if await self._poll(gone):
            self.outbox.discard(entry)
            return SyncStatus.SYNCED
        entry.status = SyncStatus.UNCONFIRMED
        entry.last_error = str(self._timeout(entry, remote_id))
        return SyncStatus.UNCONFIRMED

    def _payload_for(self, entry: OutboxEntry) -> dict[str, Any] | None:
        if self._source is None:
            return None
        if entry.is_snapshot:
            return self._source.snapshot_for(entry.collection)
        return self._source.envelope_for(entry.collection, entry.record_id)

    def _adopt_remote_id(self, entry: OutboxEntry, remote_id: str) -> None:
        """Remember a freshly stored id, also on any entry that replaced this one meanwhile."""
        entry.remote_document_id = remote_id
        if entry.is_snapshot:
            self.outbox.snapshot_ids[entry.collection] = remote_id
        current = self.outbox.get(entry.key)
        if current is not None and current is not entry and current.remote_document_id is None:
            current.remote_document_id = remote_id

    async def _confirm(self, entry: OutboxEntry, remote_id: str) -> SyncStatus:
        confirmed = await self._poll(lambda: self._observed(entry.collection, remote_id))
        still_current = self.outbox.get(entry.key) is entry

        if confirmed:
            status = SyncStatus.SYNCED
            self.outbox.discard(entry)
        else:
            status = SyncStatus.UNCONFIRMED
            entry.status = status
            entry.last_error = str(self._timeout(entry, remote_id))
            logger.warning(
                "Remote write not yet observed",
                extra={"collection": entry.collection, "document_id": remote_id, "attempts": entry.attempts},
            )

        if not entry.is_snapshot:
            await self._notify(entry, status if still_current else SyncStatus.PENDING, remote_id)
        return status

    def _timeout(self, entry: OutboxEntry, remote_id: str) -> ConfirmationTimeoutError:
        return ConfirmationTimeoutError(entry.collection, remote_id, self._settings.confirmation_attempts)

    async def _observed(self, collection: str, remote_id: str) -> bool:
        documents = await self._fetch_all(collection)
        return any(document.id == remote_id for document in documents)

    async def _poll(self, probe: Callable[[], Awaitable[bool]]) -> bool:
        return await poll_until(
            probe,
            attempts=self._settings.confirmation_attempts,
            interval=self._settings.confirmation_interval_seconds,
        )

    async def _with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry(
            operation,
            max_attempts=self._settings.remote_retry_attempts,
            base_delay=self._settings.remote_retry_base_delay,
            retry_on=_RETRYABLE,
        )

    async def _notify(self, entry: OutboxEntry, status: SyncStatus, remote_id: str | None) -> None:
        if self._source is None:
            return
        await self._source.apply_sync_status(entry.collection, entry.record_id, status, remote_id)
