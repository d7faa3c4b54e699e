"""Remote document records and the tagged payload envelopes they carry."""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

from src.domain.plant import Plant
from src.domain.profile import Achievement, FocusSession, UserProfile
from src.domain.task import Task


class RemoteDocument(BaseModel):
    """A docustore record as returned by a query."""

    id: str = Field(..., description="Store-assigned document id")
    owner: str = Field(..., description="Owner key namespacing the document")
    collection: str = Field(default="", description="Collection the document lives in")
    data: dict[str, Any] = Field(default_factory=dict, description="Decoded JSON payload")
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TaskEnvelope(BaseModel):
    """Payload mirroring a single task."""

    type: Literal["task"] = "task"
    task: Task


class PlantEnvelope(BaseModel):
    """Payload mirroring a single plant."""

    type: Literal["plant"] = "plant"
    plant: Plant


class TasksSnapshot(BaseModel):
    """Full tasks collection at a point in time."""

    type: Literal["tasks_snapshot"] = "tasks_snapshot"
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds at time of write")
    tasks: list[Task] = Field(default_factory=list)


class GardenSnapshot(BaseModel):
    """Plants, compost and profile at a point in time."""

    type: Literal["garden_snapshot"] = "garden_snapshot"
    timestamp: int = Field(..., ge=0, description="Epoch milliseconds at time of write")
    plants: list[Plant] = Field(default_factory=list)
    compost: int = Field(..., ge=0)
    focus_sessions: list[FocusSession] = Field(default_factory=list)
    profile: UserProfile | None = None
    achievements: list[Achievement] = Field(default_factory=list)


Envelope = Annotated[
    TaskEnvelope | PlantEnvelope | TasksSnapshot | GardenSnapshot,
    Field(discriminator="type"),
]

envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)


def parse_envelope(data: dict[str, Any]) -> Envelope:
    """Decode a payload into its envelope kind.

    Raises:
        pydantic.ValidationError: If the discriminator or body is invalid
    """
    return envelope_adapter.validate_python(data)
