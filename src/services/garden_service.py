"""Garden state manager: the in-memory authoritative view of tasks, plants, compost and profile.

Every mutation follows the same pattern: derive the new state with the pure
rules in ``garden_rules`` and commit it in memory, write the touched
aggregates to the local cache, then queue the remote mirror. Remote failures
never roll back the first two steps.
"""

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

from src.core.config import constants
from src.core.errors import TaskNotFoundError
from src.core.logging import span
from src.domain.create_models import FocusSessionCreate, TaskCreate
from src.domain.envelopes import GardenSnapshot, PlantEnvelope, TaskEnvelope, TasksSnapshot
from src.domain.plant import Plant
from src.domain.profile import Achievement, CompostState, FocusSession, ProfileState, UserProfile
from src.domain.sync import AGGREGATE_ORDER, Aggregate, SyncStatus
from src.domain.task import Category, Priority, Task, TaskStatus
from src.domain.update_models import TaskUpdate
from src.interface.wallet import ScoreProvider
from src.models.service_models import FlushResult, GardenStats, HydrationReport, SyncOverview
from src.services import garden_rules
from src.services.reconciliation_service import RecordRef, ReconciliationEngine


logger = logging.getLogger(__name__)

SortField = Literal["created_at", "updated_at", "due_date", "priority", "title"]
SortOrder = Literal["asc", "desc"]

_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


class GardenEventKind(StrEnum):
    """Change notifications for the presentation layer."""

    HYDRATED = "hydrated"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_UNCOMPLETED = "task_uncompleted"
    TASK_ARCHIVED = "task_archived"
    TASK_DELETED = "task_deleted"
    FOCUS_RECORDED = "focus_recorded"
    PROFILE_VERIFIED = "profile_verified"
    SYNC_STATUS_CHANGED = "sync_status_changed"


class GardenEvent(BaseModel):
    """One change notification."""

    kind: GardenEventKind
    record_id: str | None = None
    aggregates: list[Aggregate] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)


Listener = Callable[[GardenEvent], Awaitable[None] | None]


class GardenStateManager:
    """Owns the hydrated garden and exposes its operations."""

    def __init__(self, engine: ReconciliationEngine) -> None:
        self._engine = engine
        self._engine.attach(self)
        self._locks = {aggregate: asyncio.Lock() for aggregate in AGGREGATE_ORDER}
        self._listeners: list[Listener] = []

        self._tasks: list[Task] = []
        self._plants: list[Plant] = []
        self._compost = CompostState()
        self._profile: ProfileState | None = None
        self._report: HydrationReport | None = None

    # Read access

    @property
    def is_loaded(self) -> bool:
        return self._report is not None

    @property
    def report(self) -> HydrationReport | None:
        return self._report

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def plants(self) -> list[Plant]:
        return list(self._plants)

    @property
    def compost(self) -> int:
        return self._compost.balance

    @property
    def focus_sessions(self) -> list[FocusSession]:
        return list(self._compost.focus_sessions)

    @property
    def profile(self) -> UserProfile:
        return self._require_profile().profile

    @property
    def achievements(self) -> list[Achievement]:
        return list(self._require_profile().achievements)

    @property
    def level(self) -> int:
        return self.profile.level

    def _require_profile(self) -> ProfileState:
        if self._profile is None:
            raise RuntimeError("Garden not loaded")
        return self._profile

    def get_task(self, task_id: str) -> Task:
        """Return a task by id.

        Raises:
            TaskNotFoundError: If no task has this id
        """
        for task in self._tasks:
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def active_tasks(self) -> list[Task]:
        """Pending and completed tasks; archived ones are hidden."""
        return [task for task in self._tasks if task.is_active]

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        category: Category | None = None,
        priority: Priority | None = None,
        sort_by: SortField = "created_at",
        sort_order: SortOrder = "desc",
        limit: int | None = None,
    ) -> list[Task]:
        """Filter and sort tasks.

        Args:
            status: Only tasks in this status (all statuses when None)
            category: Only tasks in this category
            priority: Only tasks with this priority
            sort_by: Field to sort on; tasks without a due date sort last
            sort_order: "asc" or "desc"
            limit: Maximum number of tasks returned

        Returns:
            Matching tasks
        """
        tasks = [
            task
            for task in self._tasks
            if (status is None or task.status == status)
            and (category is None or task.category == category)
            and (priority is None or task.priority == priority)
        ]

        reverse = sort_order == "desc"
        if sort_by == "due_date":
            dated = sorted((t for t in tasks if t.due_date), key=lambda t: t.due_date, reverse=reverse)  # type: ignore[arg-type,return-value]
            tasks = dated + [t for t in tasks if t.due_date is None]
        elif sort_by == "priority":
            tasks.sort(key=lambda t: _PRIORITY_RANK[t.priority], reverse=reverse)
        elif sort_by == "title":
            tasks.sort(key=lambda t: t.title.lower(), reverse=reverse)
        else:
            tasks.sort(key=lambda t: getattr(t, sort_by), reverse=reverse)

        return tasks[:limit] if limit is not None else tasks

    def plant_for(self, task_id: str) -> Plant | None:
        return next((plant for plant in self._plants if plant.task_id == task_id), None)

    def stats(self) -> GardenStats:
        """Totals and derived figures over the current garden."""
        total = len(self._tasks)
        completed = sum(1 for t in self._tasks if t.status == TaskStatus.COMPLETED)
        sessions = self._compost.focus_sessions
        return GardenStats(
            total_tasks=total,
            completed_tasks=completed,
            pending_tasks=sum(1 for t in self._tasks if t.status == TaskStatus.PENDING),
            archived_tasks=sum(1 for t in self._tasks if t.status == TaskStatus.ARCHIVED),
            completion_rate=round(completed / total * 100, 1) if total else 0.0,
            total_plants=len(self._plants),
            healthy_plants=sum(1 for p in self._plants if p.health > constants.HEALTHY_PLANT_THRESHOLD),
            compost=self._compost.balance,
            level=self._profile.profile.level if self._profile else 1,
            total_focus_hours=round(sum(s.duration for s in sessions) / 3600, 2),
            average_focus_score=round(sum(s.focus_score for s in sessions) / len(sessions), 1) if sessions else 0.0,
            current_streak=garden_rules.current_streak(self._tasks),
        )

    def sync_overview(self) -> SyncOverview:
        engine = self._engine
        return SyncOverview(
            connected=engine.is_connected,
            owner_key=engine.owner_key,
            load_states={aggregate: load.state for aggregate, load in engine.loads.items()},
            sources={aggregate: load.source for aggregate, load in engine.loads.items()},
            outbox_size=len(engine.outbox),
            outbox_by_status=engine.outbox.counts(),
            last_flush_at=engine.last_flush_at,
            last_error=engine.last_error,
        )

    # Events

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _emit(self, event: GardenEvent) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.exception("Garden listener failed", extra={"event": event.kind, "error": str(e)})

    # Loading

    async def load(self) -> HydrationReport:
        """Hydrate every aggregate (remote when connected, then local, then defaults)."""
        with span("garden_service.load"):
            async with self._locked(*AGGREGATE_ORDER):
                garden = await self._engine.hydrate()
                self._tasks = garden.tasks
                self._plants = garden.plants
                self._compost = garden.compost
                self._profile = garden.profile
                self._report = garden.report
            await self._emit(GardenEvent(kind=GardenEventKind.HYDRATED, aggregates=list(AGGREGATE_ORDER)))
            self._engine.kick()
            return garden.report

    async def refresh(self) -> HydrationReport:
        """Wait for in-flight remote work, then rerun the full load sequence."""
        await self._engine.drain()
        return await self.load()

    async def _ensure_loaded(self) -> None:
        if not self.is_loaded:
            await self.load()

    # Task operations

    async def create_task(self, data: TaskCreate) -> Task:
        """Plant a new pending task.

        Args:
            data: Title, priority and the other user-supplied fields

        Returns:
            The created task with derived plant type and reward
        """
        await self._ensure_loaded()
        with span("garden_service.create_task"):
            async with self._locked(Aggregate.TASKS):
                task = self._stamp(garden_rules.build_task(data, user_id=self._engine.user_id))
                self._tasks.append(task)
                await self._commit({Aggregate.TASKS}, upserts=[self._task_ref(task)])

            logger.info("Created task", extra={"task_id": task.id, "priority": task.priority})
            await self._emit(GardenEvent(kind=GardenEventKind.TASK_CREATED, record_id=task.id, aggregates=[Aggregate.TASKS]))
            return task

    async def update_task(self, task_id: str, updates: TaskUpdate) -> Task:
        """Apply a partial edit; priority changes re-derive plant type and reward.

        On a completed task the plant follows the new type and the balance
        gains or loses the reward difference, so a later reopen takes back
        exactly what the task is now worth.

        Raises:
            TaskNotFoundError: If no task has this id
            ValueError: If the new title is empty
        """
        await self._ensure_loaded()
        with span("garden_service.update_task"):
            async with self._locked(Aggregate.TASKS, Aggregate.PLANTS, Aggregate.COMPOST):
                current = self.get_task(task_id)
                task = self._stamp(garden_rules.apply_task_update(current, updates))
                self._replace_task(task)
                touched = {Aggregate.TASKS}
                upserts = [self._task_ref(task)]

                if task.status == TaskStatus.COMPLETED:
                    if task.plant_type != current.plant_type:
                        retyped = [
                            self._stamp(garden_rules.retype_plant(p, task)) if p.task_id == task.id else p
                            for p in self._plants
                        ]
                        upserts.extend(self._plant_ref(p) for p in retyped if p.task_id == task.id)
                        if len(upserts) > 1:
                            self._plants = retyped
                            touched.add(Aggregate.PLANTS)
                    reward_delta = task.compost_reward - current.compost_reward
                    if reward_delta:
                        self._adjust_compost(reward_delta)
                        touched.add(Aggregate.COMPOST)

                await self._commit(touched, upserts=upserts)

            aggregates = [a for a in AGGREGATE_ORDER if a in touched]
            await self._emit(GardenEvent(kind=GardenEventKind.TASK_UPDATED, record_id=task.id, aggregates=aggregates))
            return task

    async def complete_task(self, task_id: str) -> Task:
        """Complete a task: award its compost and plant its plant.

        Completing an already completed task changes nothing.

        Raises:
            TaskNotFoundError: If no task has this id
            ValueError: If the task is archived
        """
        await self._ensure_loaded()
        with span("garden_service.complete_task"):
            async with self._locked(*AGGREGATE_ORDER):
                task = self.get_task(task_id)
                transition = garden_rules.complete(task, has_plant=self.plant_for(task_id) is not None)
                touched = await self._apply_transition(transition)

            if touched:
                logger.info(
                    "Completed task",
                    extra={"task_id": task_id, "compost_delta": transition.compost_delta, "compost": self.compost},
                )
                await self._emit(
                    GardenEvent(
                        kind=GardenEventKind.TASK_COMPLETED,
                        record_id=task_id,
                        aggregates=sorted(touched, key=AGGREGATE_ORDER.index),
                        payload={"compost_delta": transition.compost_delta},
                    )
                )
            return self.get_task(task_id)

    async def uncomplete_task(self, task_id: str) -> Task:
        """Reopen a completed task, taking back its compost and removing its plant.

        Raises:
            TaskNotFoundError: If no task has this id
            ValueError: If the task is archived
        """
        await self._ensure_loaded()
        with span("garden_service.uncomplete_task"):
            async with self._locked(*AGGREGATE_ORDER):
                transition = garden_rules.uncomplete(self.get_task(task_id))
                touched = await self._apply_transition(transition)

            if touched:
                await self._emit(
                    GardenEvent(
                        kind=GardenEventKind.TASK_UNCOMPLETED,
                        record_id=task_id,
                        aggregates=sorted(touched, key=AGGREGATE_ORDER.index),
                        payload={"compost_delta": transition.compost_delta},
                    )
                )
            return self.get_task(task_id)

    async def toggle_task_completion(self, task_id: str) -> Task:
        """Complete a pending task or reopen a completed one."""
        task = self.get_task(task_id) if self.is_loaded else None
        if task is not None and task.status == TaskStatus.COMPLETED:
            return await self.uncomplete_task(task_id)
        return await self.complete_task(task_id)

    async def archive_task(self, task_id: str) -> Task:
        """Hide a task from active views. There is no way back out of archived.

        Raises:
            TaskNotFoundError: If no task has this id
        """
        await self._ensure_loaded()
        with span("garden_service.archive_task"):
            async with self._locked(*AGGREGATE_ORDER):
                transition = garden_rules.archive(self.get_task(task_id))
                touched = await self._apply_transition(transition)

            if touched:
                await self._emit(
                    GardenEvent(
                        kind=GardenEventKind.TASK_ARCHIVED,
                        record_id=task_id,
                        aggregates=sorted(touched, key=AGGREGATE_ORDER.index),
                    )
                )
            return self.get_task(task_id)

    async def delete_task(self, task_id: str) -> None:
        """Remove a task and its plant from storage entirely.

        Raises:
            TaskNotFoundError: If no task has this id
        """
        await self._ensure_loaded()
        with span("garden_service.delete_task"):
            async with self._locked(*AGGREGATE_ORDER):
                task = self.get_task(task_id)
                transition = garden_rules.delete(task)
                self._tasks = [t for t in self._tasks if t.id != task_id]
                touched = {Aggregate.TASKS}
                deletes: list[RecordRef] = [self._task_ref(task)]

                removed = self._remove_plants_of(task_id)
                if removed:
                    touched.add(Aggregate.PLANTS)
                    deletes.extend(self._plant_ref(plant) for plant in removed)
                if transition.compost_delta:
                    self._adjust_compost(transition.compost_delta)
                    touched.add(Aggregate.COMPOST)

                await self._commit(touched, deletes=deletes)

            logger.info("Deleted task", extra={"task_id": task_id, "plants_removed": len(removed)})
            await self._emit(
                GardenEvent(
                    kind=GardenEventKind.TASK_DELETED,
                    record_id=task_id,
                    aggregates=sorted(touched, key=AGGREGATE_ORDER.index),
                )
            )

    # Focus sessions and progression

    async def record_focus_session(self, data: FocusSessionCreate) -> FocusSession:
        """Record a focus session: credit compost and grow every plant.

        Raises:
            TaskNotFoundError: If ``task_id`` is given and unknown
        """
        await self._ensure_loaded()
        with span("garden_service.record_focus_session"):
            async with self._locked(Aggregate.PLANTS, Aggregate.COMPOST, Aggregate.PROFILE):
                if data.task_id is not None:
                    self.get_task(data.task_id)
                session = garden_rules.build_focus_session(data, user_id=self._engine.user_id)
                self._compost = garden_rules.record_session(self._compost, session)
                self._plants = [self._stamp(p) for p in garden_rules.grow_plants(self._plants, session)]

                state = self._require_profile()
                profile = state.profile.model_copy(
                    update={
                        "total_focus_minutes": state.profile.total_focus_minutes + session.duration // 60,
                        "last_active_at": session.end_time,
                    }
                )
                self._profile = ProfileState(profile=profile, achievements=state.achievements)

                await self._commit(
                    {Aggregate.PLANTS, Aggregate.COMPOST, Aggregate.PROFILE},
                    upserts=[self._plant_ref(p) for p in self._plants],
                )

            logger.info(
                "Recorded focus session",
                extra={"session_id": session.id, "compost_earned": session.compost_earned, "score": session.focus_score},
            )
            await self._emit(
                GardenEvent(
                    kind=GardenEventKind.FOCUS_RECORDED,
                    record_id=session.id,
                    aggregates=[Aggregate.PLANTS, Aggregate.COMPOST, Aggregate.PROFILE],
                )
            )
            return session

    async def apply_verified_score(self, score: int) -> UserProfile:
        """Fold a verified follower count into level, seeds and achievements.

        Raises:
            ValueError: If the score is negative
        """
        await self._ensure_loaded()
        with span("garden_service.apply_verified_score"):
            async with self._locked(Aggregate.PROFILE):
                previous = self._require_profile()
                self._profile = garden_rules.apply_verification(previous, score)
                await self._commit({Aggregate.PROFILE})
                profile = self._profile.profile

            logger.info(
                "Applied verified score",
                extra={"score": score, "level": profile.level, "previous_level": previous.profile.level},
            )
            await self._emit(
                GardenEvent(
                    kind=GardenEventKind.PROFILE_VERIFIED,
                    aggregates=[Aggregate.PROFILE],
                    payload={"score": score, "level": profile.level},
                )
            )
            return profile

    async def verify_with(self, provider: ScoreProvider) -> UserProfile:
        """Fetch a score from the verification collaborator and apply it."""
        score = await provider.fetch_score()
        return await self.apply_verified_score(score)

    # Remote sync passthrough

    async def flush(self) -> FlushResult:
        return await self._engine.flush()

    async def drain(self) -> None:
        await self._engine.drain()

    # SyncSource

    def envelope_for(self, collection: str, record_id: str) -> dict[str, Any] | None:
        if collection == constants.COLLECTION_TASKS:
            task = next((t for t in self._tasks if t.id == record_id), None)
            return TaskEnvelope(task=task).model_dump(mode="json") if task else None
        if collection == constants.COLLECTION_PLANTS:
            plant = next((p for p in self._plants if p.id == record_id), None)
            return PlantEnvelope(plant=plant).model_dump(mode="json") if plant else None
        return None

    def snapshot_for(self, collection: str) -> dict[str, Any] | None:
        timestamp = garden_rules.epoch_millis()
        if collection == constants.COLLECTION_TASKS:
            return TasksSnapshot(timestamp=timestamp, tasks=self._tasks).model_dump(mode="json")
        if collection == constants.COLLECTION_GARDEN:
            profile = self._profile
            return GardenSnapshot(
                timestamp=timestamp,
                plants=self._plants,
                compost=self._compost.balance,
                focus_sessions=self._compost.focus_sessions,
                profile=profile.profile if profile else None,
                achievements=profile.achievements if profile else [],
            ).model_dump(mode="json")
        return None

    async def apply_sync_status(
        self,
        collection: str,
        record_id: str,
        status: SyncStatus,
        remote_document_id: str | None,
    ) -> None:
        """Record the outcome of a remote mirror on the task or plant it belongs to."""
        aggregate = Aggregate.TASKS if collection == constants.COLLECTION_TASKS else Aggregate.PLANTS
        async with self._locked(aggregate):
            records: list[Any] = self._tasks if aggregate == Aggregate.TASKS else self._plants
            for index, record in enumerate(records):
                if record.id != record_id:
                    continue
                update: dict[str, Any] = {"sync_status": status}
                if remote_document_id is not None:
                    update["remote_document_id"] = remote_document_id
                records[index] = record.model_copy(update=update)
                await self._engine.persist(aggregate, records)
                break
            else:
                return

        await self._emit(
            GardenEvent(
                kind=GardenEventKind.SYNC_STATUS_CHANGED,
                record_id=record_id,
                aggregates=[aggregate],
                payload={"status": status, "remote_document_id": remote_document_id},
            )
        )

    # Internals

    @asynccontextmanager
    async def _locked(self, *aggregates: Aggregate) -> AsyncIterator[None]:
        """Hold the locks of ``aggregates`` in canonical order."""
        async with AsyncExitStack() as stack:
            for aggregate in AGGREGATE_ORDER:
                if aggregate in aggregates:
                    await stack.enter_async_context(self._locks[aggregate])
            yield

    def _stamp(self, record: Any) -> Any:  # noqa: ANN401
        """Mark a record as awaiting its remote mirror."""
        status = SyncStatus.PENDING if self._engine.is_connected else SyncStatus.LOCAL_ONLY
        return record.model_copy(update={"sync_status": status})

    def _task_ref(self, task: Task) -> RecordRef:
        return (constants.COLLECTION_TASKS, task.id, task.remote_document_id)

    def _plant_ref(self, plant: Plant) -> RecordRef:
        return (constants.COLLECTION_PLANTS, plant.id, plant.remote_document_id)

    def _replace_task(self, task: Task) -> None:
        self._tasks = [task if t.id == task.id else t for t in self._tasks]

    def _remove_plants_of(self, task_id: str) -> list[Plant]:
        removed = [p for p in self._plants if p.task_id == task_id]
        if removed:
            self._plants = [p for p in self._plants if p.task_id != task_id]
        return removed

    def _adjust_compost(self, delta: int) -> None:
        self._compost = self._compost.model_copy(
            update={"balance": garden_rules.apply_compost_delta(self._compost.balance, delta)}
        )

    async def _apply_transition(self, transition: garden_rules.TaskTransition) -> set[Aggregate]:
        """Commit a status transition and its side effects; returns the aggregates it touched."""
        current = self.get_task(transition.task.id)
        if (
            transition.task == current
            and transition.plant_to_create is None
            and not (transition.remove_plant and self.plant_for(current.id))
            and transition.compost_delta == 0
        ):
            return set()

        touched: set[Aggregate] = set()
        upserts: list[RecordRef] = []
        deletes: list[RecordRef] = []

        if transition.task != current:
            task = self._stamp(transition.task)
            self._replace_task(task)
            touched.add(Aggregate.TASKS)
            upserts.append(self._task_ref(task))

        if transition.plant_to_create is not None:
            plant = self._stamp(transition.plant_to_create)
            self._plants.append(plant)
            touched.add(Aggregate.PLANTS)
            upserts.append(self._plant_ref(plant))
        if transition.remove_plant:
            removed = self._remove_plants_of(transition.task.id)
            if removed:
                touched.add(Aggregate.PLANTS)
                deletes.extend(self._plant_ref(p) for p in removed)

        if transition.compost_delta:
            self._adjust_compost(transition.compost_delta)
            touched.add(Aggregate.COMPOST)

        if transition.completed_delta:
            state = self._require_profile()
            total = max(0, state.profile.total_tasks_completed + transition.completed_delta)
            profile = state.profile.model_copy(update={"total_tasks_completed": total})
            self._profile = ProfileState(profile=profile, achievements=state.achievements)
            touched.add(Aggregate.PROFILE)

        await self._commit(touched, upserts=upserts, deletes=deletes)
        return touched

    def _value_of(self, aggregate: Aggregate) -> Any:  # noqa: ANN401
        match aggregate:
            case Aggregate.TASKS:
                return self._tasks
            case Aggregate.PLANTS:
                return self._plants
            case Aggregate.COMPOST:
                return self._compost
            case Aggregate.PROFILE:
                return self._require_profile()

    async def _commit(
        self,
        touched: set[Aggregate],
        *,
        upserts: list[RecordRef] | None = None,
        deletes: list[RecordRef] | None = None,
    ) -> None:
        """Persist touched aggregates locally, then queue their remote mirror."""
        for aggregate in AGGREGATE_ORDER:
            if aggregate in touched:
                await self._engine.persist(aggregate, self._value_of(aggregate))

        snapshots: list[str] = []
        if Aggregate.TASKS in touched:
            snapshots.append(constants.COLLECTION_TASKS)
        if touched - {Aggregate.TASKS}:
            snapshots.append(constants.COLLECTION_GARDEN)
        await self._engine.schedule(upserts=upserts or [], deletes=deletes or [], snapshots=snapshots)
