"""Domain models and DTOs."""

from src.domain.create_models import FocusSessionCreate, TaskCreate
from src.domain.envelopes import GardenSnapshot, PlantEnvelope, RemoteDocument, TaskEnvelope, TasksSnapshot
from src.domain.plant import Plant, PlantSpecies, Position
from src.domain.profile import Achievement, CompostState, FocusSession, ProfileState, UserProfile
from src.domain.progression import FOLLOWER_TIERS, Tier, tier_for_score
from src.domain.sync import Aggregate, DataSource, LoadState, SyncStatus
from src.domain.task import Category, PlantType, Priority, Task, TaskStatus
from src.domain.update_models import TaskUpdate


__all__ = [
    "FOLLOWER_TIERS",
    "Achievement",
    "Aggregate",
    "Category",
    "CompostState",
    "DataSource",
    "FocusSession",
    "FocusSessionCreate",
    "GardenSnapshot",
    "LoadState",
    "Plant",
    "PlantEnvelope",
    "PlantSpecies",
    "PlantType",
    "Position",
    "Priority",
    "ProfileState",
    "RemoteDocument",
    "SyncStatus",
    "Task",
    "TaskCreate",
    "TaskEnvelope",
    "TaskStatus",
    "TaskUpdate",
    "TasksSnapshot",
    "Tier",
    "UserProfile",
    "tier_for_score",
]
