"""Enums describing where state came from and how far it has been mirrored."""

from enum import StrEnum


class SyncStatus(StrEnum):
    """Per-record remote mirror state."""

    LOCAL_ONLY = "local_only"  # No remote mirror attempted (disconnected)
    PENDING = "pending"  # Queued in the outbox
    SYNCED = "synced"  # Written and observed remotely
    UNCONFIRMED = "unconfirmed"  # Written, not yet observed
    FAILED = "failed"  # Last attempt rejected


class Aggregate(StrEnum):
    """Independently loaded and persisted state groups, in lock order."""

    TASKS = "tasks"
    PLANTS = "plants"
    COMPOST = "compost"
    PROFILE = "profile"


AGGREGATE_ORDER: tuple[Aggregate, ...] = (
    Aggregate.TASKS,
    Aggregate.PLANTS,
    Aggregate.COMPOST,
    Aggregate.PROFILE,
)


class LoadState(StrEnum):
    """Hydration state machine per aggregate."""

    UNINITIALIZED = "uninitialized"
    LOADING_REMOTE = "loading_remote"
    LOADING_LOCAL = "loading_local"
    HYDRATED = "hydrated"


class DataSource(StrEnum):
    """Where a hydrated aggregate came from."""

    REMOTE = "remote"
    LOCAL = "local"
    DEFAULTS = "defaults"
