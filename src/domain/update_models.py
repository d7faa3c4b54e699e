"""Update models for task edits."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.domain.task import Category, Priority


class TaskUpdate(BaseModel):
    """Partial edit of a task; unset fields are left unchanged.

    Status is not editable here: use the complete/uncomplete/archive operations.
    """

    title: str | None = None
    description: str | None = None
    priority: Priority | None = None
    category: Category | None = None
    tags: set[str] | None = None
    due_date: datetime | None = None
    estimated_focus_time: int | None = Field(default=None, ge=0)
    actual_focus_time: int | None = Field(default=None, ge=0)
