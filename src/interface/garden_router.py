"""HTTP surface over the garden state manager."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field

from src.core.errors import ErrorCode, GardenSyncError, TaskNotFoundError, classify_error_with_response
from src.domain.create_models import FocusSessionCreate, TaskCreate
from src.domain.plant import Plant
from src.domain.profile import Achievement, FocusSession, UserProfile
from src.domain.progression import SEED_TYPES, VERIFICATION_ACHIEVEMENTS, AchievementDefinition, SeedType
from src.domain.task import Category, Priority, Task, TaskStatus
from src.domain.update_models import TaskUpdate
from src.models.service_models import FlushResult, GardenStats, HydrationReport, SyncOverview
from src.services.garden_service import GardenStateManager, SortField, SortOrder


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/garden", tags=["garden"])

_STATUS_FOR_CODE = {
    ErrorCode.ERR_TASK_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ERR_INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.ERR_INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.ERR_NOT_CONNECTED: status.HTTP_409_CONFLICT,
    ErrorCode.ERR_REMOTE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.ERR_CACHE_CORRUPT: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class VerificationRequest(BaseModel):
    """Verified follower count from the identity flow."""

    score: int = Field(..., ge=0)


class ProfileView(BaseModel):
    profile: UserProfile
    achievements: list[Achievement]
    compost: int
    level: int
    seeds: dict[str, SeedType] = Field(default_factory=dict, description="Catalog entries for unlocked seeds")
    achievement_details: dict[str, AchievementDefinition] = Field(default_factory=dict)


def get_manager(request: Request) -> GardenStateManager:
    """Resolve the manager opened during app startup."""
    return request.app.state.garden.manager


Manager = Annotated[GardenStateManager, Depends(get_manager)]


@contextmanager
def _handle_errors(operation: str) -> Iterator[None]:
    """Map domain errors to HTTP errors carrying a structured ErrorResponse."""
    try:
        yield
    except (TaskNotFoundError, ValueError, GardenSyncError) as e:
        response = classify_error_with_response(e)
        logger.warning(
            "garden_request_failed",
            extra={"operation": operation, "code": response.code, "error": str(e)},
        )
        raise HTTPException(
            status_code=_STATUS_FOR_CODE.get(response.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=response.model_dump(mode="json"),
        ) from e


@router.get("/tasks")
async def list_tasks(
    manager: Manager,
    task_status: Annotated[TaskStatus | None, Query(alias="status")] = None,
    category: Category | None = None,
    priority: Priority | None = None,
    sort_by: SortField = "created_at",
    sort_order: SortOrder = "desc",
    limit: Annotated[int | None, Query(ge=1)] = None,
    active_only: bool = False,
) -> list[Task]:
    """List tasks with optional filters; ``active_only`` hides archived tasks."""
    tasks = manager.list_tasks(
        status=task_status,
        category=category,
        priority=priority,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    if active_only:
        tasks = [task for task in tasks if task.is_active]
    return tasks[:limit] if limit is not None else tasks


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(manager: Manager, data: TaskCreate) -> Task:
    with _handle_errors("create_task"):
        return await manager.create_task(data)


@router.get("/tasks/{task_id}")
async def get_task(manager: Manager, task_id: str) -> Task:
    with _handle_errors("get_task"):
        return manager.get_task(task_id)


@router.patch("/tasks/{task_id}")
async def update_task(manager: Manager, task_id: str, updates: TaskUpdate) -> Task:
    with _handle_errors("update_task"):
        return await manager.update_task(task_id, updates)


@router.post("/tasks/{task_id}/complete")
async def complete_task(manager: Manager, task_id: str) -> Task:
    with _handle_errors("complete_task"):
        return await manager.complete_task(task_id)


@router.post("/tasks/{task_id}/uncomplete")
async def uncomplete_task(manager: Manager, task_id: str) -> Task:
    with _handle_errors("uncomplete_task"):
        return await manager.uncomplete_task(task_id)


@router.post("/tasks/{task_id}/toggle")
async def toggle_task(manager: Manager, task_id: str) -> Task:
    with _handle_errors("toggle_task"):
        return await manager.toggle_task_completion(task_id)


@router.post("/tasks/{task_id}/archive")
async def archive_task(manager: Manager, task_id: str) -> Task:
    with _handle_errors("archive_task"):
        return await manager.archive_task(task_id)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(manager: Manager, task_id: str) -> Response:
    with _handle_errors("delete_task"):
        await manager.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/plants")
async def list_plants(manager: Manager) -> list[Plant]:
    return manager.plants


@router.get("/stats")
async def get_stats(manager: Manager) -> GardenStats:
    return manager.stats()


@router.post("/focus-sessions", status_code=status.HTTP_201_CREATED)
async def record_focus_session(manager: Manager, data: FocusSessionCreate) -> FocusSession:
    with _handle_errors("record_focus_session"):
        return await manager.record_focus_session(data)


@router.get("/profile")
async def get_profile(manager: Manager) -> ProfileView:
    profile = manager.profile
    achievements = manager.achievements
    return ProfileView(
        profile=profile,
        achievements=achievements,
        compost=manager.compost,
        level=manager.level,
        seeds={seed: SEED_TYPES[seed] for seed in sorted(profile.unlocked_seed_types) if seed in SEED_TYPES},
        achievement_details={
            a.achievement_id: VERIFICATION_ACHIEVEMENTS[a.achievement_id]
            for a in achievements
            if a.achievement_id in VERIFICATION_ACHIEVEMENTS
        },
    )


@router.post("/profile/verification")
async def apply_verification(manager: Manager, request: VerificationRequest) -> ProfileView:
    """Apply a verified follower count to level, seeds and achievements."""
    with _handle_errors("apply_verification"):
        await manager.apply_verified_score(request.score)
    return await get_profile(manager)


@router.get("/sync")
async def get_sync_overview(manager: Manager) -> SyncOverview:
    return manager.sync_overview()


@router.post("/sync/refresh")
async def refresh(manager: Manager) -> HydrationReport:
    """Rerun the full load sequence."""
    return await manager.refresh()


@router.post("/sync/flush")
async def flush(manager: Manager) -> FlushResult:
    """Push pending outbox entries now instead of waiting for the scheduler."""
    return await manager.flush()
