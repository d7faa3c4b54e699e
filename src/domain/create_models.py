"""Pydantic models for creating records."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.domain.profile import SessionMood
from src.domain.task import Category, Priority


class TaskCreate(BaseModel):
    """Input for planting a new task."""

    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    priority: Priority = Field(default=Priority.MEDIUM)
    category: Category = Field(default=Category.PERSONAL)
    tags: set[str] = Field(default_factory=set)
    due_date: datetime | None = None
    estimated_focus_time: int | None = Field(default=None, ge=0)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are stripped and must not be empty."""
        v = v.strip()
        if not v:
            raise ValueError("Task title cannot be empty")
        return v

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return v.strip()


class FocusSessionCreate(BaseModel):
    """Input for recording a focus session."""

    duration: int = Field(..., ge=0, description="Seconds focused")
    distractions_count: int = Field(default=0, ge=0)
    task_id: str | None = None
    mood: SessionMood | None = None
    notes: str | None = None
