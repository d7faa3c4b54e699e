"""Pydantic models for service layer return types.

These models give the HTTP surface and the tests typed views of hydration,
outbox flushes and garden statistics.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.sync import Aggregate, DataSource, LoadState


class AggregateLoad(BaseModel):
    """Load outcome for one aggregate."""

    state: LoadState = LoadState.UNINITIALIZED
    source: DataSource | None = None
    timestamp: int = 0
    error: str | None = None


class HydrationReport(BaseModel):
    """Result of a full load sequence."""

    connected: bool
    aggregates: dict[Aggregate, AggregateLoad]
    hydrated_at: datetime
    outbox_error: str | None = Field(default=None, description="Why a stored outbox was discarded")

    @property
    def errors(self) -> list[str]:
        errors = [load.error for load in self.aggregates.values() if load.error]
        if self.outbox_error:
            errors.append(self.outbox_error)
        return errors

    def source_of(self, aggregate: Aggregate) -> DataSource | None:
        return self.aggregates[aggregate].source


class FlushResult(BaseModel):
    """Outcome of one outbox flush."""

    attempted: int = 0
    synced: int = 0
    unconfirmed: int = 0
    failed: int = 0
    dropped: int = 0
    skipped: bool = Field(default=False, description="True when the flush did not run (disconnected)")


class SyncOverview(BaseModel):
    """Sync health for the status endpoint."""

    connected: bool
    owner_key: str | None
    load_states: dict[Aggregate, LoadState]
    sources: dict[Aggregate, DataSource | None]
    outbox_size: int
    outbox_by_status: dict[str, int]
    last_flush_at: datetime | None = None
    last_error: str | None = None


class GardenStats(BaseModel):
    """Derived statistics over the hydrated garden."""

    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    archived_tasks: int
    completion_rate: float = Field(..., description="Completed share of all tasks, 0-100")
    total_plants: int
    healthy_plants: int
    compost: int
    level: int
    total_focus_hours: float
    average_focus_score: float
    current_streak: int
