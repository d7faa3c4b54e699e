"""Profile, achievement and focus session models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_serializer

from src.core.config import constants


class ThemePreference(StrEnum):
    """Display theme requested by the user."""

    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


class Preferences(BaseModel):
    """User preferences carried with the profile."""

    default_focus_time: int = Field(default=25, ge=1, description="Default focus minutes")
    break_time: int = Field(default=5, ge=0, description="Default break minutes")
    sound_enabled: bool = True
    notifications_enabled: bool = True
    theme: ThemePreference = ThemePreference.AUTO


class UserProfile(BaseModel):
    """Aggregate progression record."""

    id: str = Field(..., description="Owner key or local user id")
    name: str = Field(default="Garden Keeper")
    level: int = Field(default=1, ge=1, description="Never decreases")
    unlocked_seed_types: set[str] = Field(default_factory=lambda: {"basic"}, description="Only ever grows")
    verified_follower_count: int | None = Field(default=None, ge=0)
    total_tasks_completed: int = Field(default=0, ge=0)
    total_focus_minutes: int = Field(default=0, ge=0)
    joined_at: datetime
    last_active_at: datetime
    verified_at: datetime | None = None
    preferences: Preferences = Field(default_factory=Preferences)

    @field_serializer("unlocked_seed_types")
    def serialize_seeds(self, seeds: set[str]) -> list[str]:
        return sorted(seeds)


class Achievement(BaseModel):
    """An unlocked achievement; each achievement id is recorded once."""

    id: str
    user_id: str
    achievement_id: str
    unlocked_at: datetime
    progress: int = Field(default=100, ge=0, le=100)
    is_completed: bool = True


class SessionMood(StrEnum):
    """Self-reported mood after a focus session."""

    FOCUSED = "focused"
    RELAXED = "relaxed"
    STRESSED = "stressed"
    TIRED = "tired"
    ENERGIZED = "energized"


class FocusSession(BaseModel):
    """A recorded focus session that earns compost and grows plants."""

    id: str
    user_id: str
    task_id: str | None = None
    duration: int = Field(..., ge=0, description="Seconds focused")
    planned_duration: int = Field(..., ge=0, description="Seconds planned")
    start_time: datetime
    end_time: datetime
    distractions_count: int = Field(default=0, ge=0)
    focus_score: int = Field(..., ge=0, le=100)
    compost_earned: int = Field(..., ge=0)
    plant_growth_contributed: int = Field(default=constants.SESSION_GROWTH_CONTRIBUTION, ge=0)
    session_type: str = Field(default="pomodoro")
    mood: SessionMood = SessionMood.FOCUSED
    notes: str | None = None


class CompostState(BaseModel):
    """Compost balance together with the sessions that fed it."""

    balance: int = Field(default=constants.STARTING_COMPOST, ge=0)
    focus_sessions: list[FocusSession] = Field(default_factory=list)


class ProfileState(BaseModel):
    """Profile aggregate: profile record plus unlocked achievements."""

    profile: UserProfile
    achievements: list[Achievement] = Field(default_factory=list)

    @property
    def achievement_ids(self) -> set[str]:
        return {a.achievement_id for a in self.achievements}
