"""Plant domain models."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.sync import SyncStatus
from src.domain.task import PlantType


class Position(BaseModel):
    """Presentation-only coordinates in the garden."""

    x: float
    y: float


class PlantSpecies(BaseModel):
    """Species metadata shown alongside a plant."""

    id: str = Field(default="basic")
    name: str
    rarity: str = Field(default="common")
    growth_rate: float = Field(default=1.0)
    compost_requirement: int = Field(default=0, ge=0)
    description: str = Field(default="")
    unlock_conditions: list[str] = Field(default_factory=list)


class Plant(BaseModel):
    """Reward artifact that exists while its task is completed."""

    id: str = Field(..., description="Plant id")
    user_id: str = Field(..., description="Owner key or local user id")
    task_id: str = Field(..., description="Task this plant was grown from")
    type: PlantType = Field(..., description="Mirrors the task's plant type")
    species: PlantSpecies
    growth: int = Field(default=25, ge=0, le=100)
    health: int = Field(default=100, ge=0, le=100)
    position: Position
    planted_at: datetime
    last_watered: datetime | None = None
    is_rare: bool = False
    special_traits: list[str] = Field(default_factory=list)
    remote_document_id: str | None = Field(default=None, description="Docustore id once mirrored")
    sync_status: SyncStatus = Field(default=SyncStatus.LOCAL_ONLY, description="Remote mirror state")
