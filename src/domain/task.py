"""Task domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_serializer, field_validator

from src.domain.sync import SyncStatus


class Priority(StrEnum):
    """How important a task is; decides the plant it grows."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(StrEnum):
    """Life area a task belongs to."""

    WORK = "work"
    HEALTH = "health"
    LEARNING = "learning"
    PERSONAL = "personal"
    OTHER = "other"


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    PENDING = "pending"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class PlantType(StrEnum):
    """Plant grown when a task is completed."""

    SPROUT = "sprout"
    FLOWER = "flower"
    TREE = "tree"


ACTIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.COMPLETED})


class Task(BaseModel):
    """A unit of work planted in the garden."""

    id: str = Field(..., description="Task id, unique within the owner's collection")
    user_id: str = Field(..., description="Owner key or local user id")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    category: Category = Field(default=Category.PERSONAL, description="Task category")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Current lifecycle state")
    plant_type: PlantType = Field(..., description="Derived from priority")
    compost_reward: int = Field(..., ge=0, description="Derived from priority")
    tags: set[str] = Field(default_factory=set, description="Free-form labels")
    estimated_focus_time: int | None = Field(default=None, ge=0, description="Planned focus minutes")
    actual_focus_time: int | None = Field(default=None, ge=0, description="Recorded focus minutes")
    created_at: datetime = Field(..., description="Creation instant")
    updated_at: datetime = Field(..., description="Last update instant")
    completed_at: datetime | None = Field(default=None, description="Set iff status is completed")
    due_date: datetime | None = Field(default=None, description="Optional due instant")
    remote_document_id: str | None = Field(default=None, description="Docustore id once mirrored")
    sync_status: SyncStatus = Field(default=SyncStatus.LOCAL_ONLY, description="Remote mirror state")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are stripped and must not be empty."""
        v = v.strip()
        if not v:
            raise ValueError("Task title cannot be empty")
        return v

    @field_serializer("tags")
    def serialize_tags(self, tags: set[str]) -> list[str]:
        return sorted(tags)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
