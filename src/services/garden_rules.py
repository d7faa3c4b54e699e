"""Pure derivation rules for tasks, plants, compost and progression.

Nothing in this module touches storage or the network. Every function takes
the current state and returns the new state so the rules can be tested in
isolation and applied synchronously before anything is persisted.
"""

import random
import secrets
from datetime import UTC, date, datetime, timedelta

from pydantic import BaseModel

from src.core.config import constants
from src.domain.create_models import FocusSessionCreate, TaskCreate
from src.domain.plant import Plant, PlantSpecies, Position
from src.domain.profile import Achievement, CompostState, FocusSession, ProfileState, SessionMood, UserProfile
from src.domain.progression import tier_for_score
from src.domain.task import Category, PlantType, Priority, Task, TaskStatus
from src.domain.update_models import TaskUpdate


_PLANT_FOR_PRIORITY: dict[Priority, tuple[PlantType, int]] = {
    Priority.HIGH: (PlantType.TREE, 15),
    Priority.MEDIUM: (PlantType.FLOWER, 10),
    Priority.LOW: (PlantType.SPROUT, 5),
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def epoch_millis(moment: datetime | None = None) -> int:
    """Logical timestamp used to order snapshots."""
    return int((moment or utc_now()).timestamp() * 1000)


def new_id(prefix: str = "") -> str:
    """Time-ordered id: epoch milliseconds plus a random suffix."""
    return f"{prefix}{epoch_millis()}{secrets.token_hex(3)}"


def plant_for_priority(priority: Priority) -> tuple[PlantType, int]:
    """Return the (plant type, compost reward) a priority earns."""
    return _PLANT_FOR_PRIORITY[priority]


class TaskTransition(BaseModel):
    """Outcome of a status change: the new task plus its side effects."""

    task: Task
    compost_delta: int = 0
    plant_to_create: Plant | None = None
    remove_plant: bool = False
    completed_delta: int = 0


def build_task(data: TaskCreate, *, user_id: str, now: datetime | None = None) -> Task:
    """Create a pending task with derived plant type and reward."""
    now = now or utc_now()
    plant_type, reward = plant_for_priority(data.priority)
    return Task(
        id=new_id(),
        user_id=user_id,
        title=data.title,
        description=data.description,
        priority=data.priority,
        category=data.category,
        status=TaskStatus.PENDING,
        plant_type=plant_type,
        compost_reward=reward,
        tags=set(data.tags),
        estimated_focus_time=data.estimated_focus_time,
        created_at=now,
        updated_at=now,
        due_date=data.due_date,
    )


def apply_task_update(task: Task, updates: TaskUpdate, *, now: datetime | None = None) -> Task:
    """Apply a partial edit, re-deriving plant type and reward when priority changes.

    Fields explicitly set to None clear optional values (e.g. ``due_date``);
    fields left unset are untouched.
    """
    changes = updates.model_dump(exclude_unset=True)
    if changes.get("title") is not None:
        title = changes["title"].strip()
        if not title:
            raise ValueError("Task title cannot be empty")
        changes["title"] = title
    for required in ("title", "description", "priority", "category", "tags"):
        if required in changes and changes[required] is None:
            changes.pop(required)

    if "priority" in changes:
        plant_type, reward = plant_for_priority(changes["priority"])
        changes["plant_type"] = plant_type
        changes["compost_reward"] = reward

    changes["updated_at"] = now or utc_now()
    return task.model_copy(update=changes)


def build_plant(task: Task, *, now: datetime | None = None, rng: random.Random | None = None) -> Plant:
    """Grow a fresh plant for a completed task at a pseudorandom position."""
    rng = rng or random.Random()  # noqa: S311 - presentation only
    return Plant(
        id=new_id("plant_"),
        user_id=task.user_id,
        task_id=task.id,
        type=task.plant_type,
        species=PlantSpecies(
            id="basic",
            name=f"Basic {task.plant_type}",
            rarity="common",
            growth_rate=1.0,
            compost_requirement=task.compost_reward,
            description=f'A {task.plant_type} grown from completing "{task.title}"',
        ),
        growth=constants.INITIAL_PLANT_GROWTH,
        health=constants.INITIAL_PLANT_HEALTH,
        position=Position(x=rng.random() * 200 + 50, y=rng.random() * 200 + 150),
        planted_at=now or utc_now(),
    )


def retype_plant(plant: Plant, task: Task) -> Plant:
    """Bring a completed task's plant in line with its re-derived plant type."""
    species = plant.species.model_copy(
        update={"name": f"Basic {task.plant_type}", "compost_requirement": task.compost_reward}
    )
    return plant.model_copy(update={"type": task.plant_type, "species": species})


def complete(task: Task, *, has_plant: bool, now: datetime | None = None) -> TaskTransition:
    """Transition a pending task to completed.

    Completing an already completed task is a no-op; archived tasks cannot be completed.
    """
    if task.status == TaskStatus.COMPLETED:
        plant = None if has_plant else build_plant(task, now=now)
        return TaskTransition(task=task, plant_to_create=plant)
    if task.status == TaskStatus.ARCHIVED:
        raise ValueError(f"Cannot complete: task {task.id} is archived")

    now = now or utc_now()
    updated = task.model_copy(update={"status": TaskStatus.COMPLETED, "completed_at": now, "updated_at": now})
    return TaskTransition(
        task=updated,
        compost_delta=task.compost_reward,
        plant_to_create=None if has_plant else build_plant(updated, now=now),
        completed_delta=1,
    )


def uncomplete(task: Task, *, now: datetime | None = None) -> TaskTransition:
    """Transition a completed task back to pending, taking back its reward and plant."""
    if task.status == TaskStatus.PENDING:
        return TaskTransition(task=task, remove_plant=True)
    if task.status == TaskStatus.ARCHIVED:
        raise ValueError(f"Cannot reopen: task {task.id} is archived")

    now = now or utc_now()
    updated = task.model_copy(update={"status": TaskStatus.PENDING, "completed_at": None, "updated_at": now})
    return TaskTransition(task=updated, compost_delta=-task.compost_reward, remove_plant=True, completed_delta=-1)


def archive(task: Task, *, now: datetime | None = None) -> TaskTransition:
    """Archive a task. One-way: there is no transition out of archived.

    Archiving a completed task removes its plant and its reward, since both
    exist only for tasks whose status is exactly completed. The lifetime
    completion counter is left alone.
    """
    if task.status == TaskStatus.ARCHIVED:
        return TaskTransition(task=task)

    now = now or utc_now()
    was_completed = task.status == TaskStatus.COMPLETED
    updated = task.model_copy(update={"status": TaskStatus.ARCHIVED, "completed_at": None, "updated_at": now})
    return TaskTransition(
        task=updated,
        compost_delta=-task.compost_reward if was_completed else 0,
        remove_plant=was_completed,
    )


def delete(task: Task) -> TaskTransition:
    """Side effects of deleting a task outright: its plant goes, and its reward if completed."""
    was_completed = task.status == TaskStatus.COMPLETED
    return TaskTransition(
        task=task,
        compost_delta=-task.compost_reward if was_completed else 0,
        remove_plant=True,
    )


def apply_compost_delta(balance: int, delta: int) -> int:
    """Adjust the balance, clamping at zero."""
    return max(0, balance + delta)


def build_focus_session(data: FocusSessionCreate, *, user_id: str, now: datetime | None = None) -> FocusSession:
    """Derive score and earnings for a recorded focus session."""
    now = now or utc_now()
    return FocusSession(
        id=new_id("session_"),
        user_id=user_id,
        task_id=data.task_id,
        duration=data.duration,
        planned_duration=data.duration,
        start_time=now - timedelta(seconds=data.duration),
        end_time=now,
        distractions_count=data.distractions_count,
        focus_score=max(0, 100 - data.distractions_count * constants.SESSION_DISTRACTION_PENALTY),
        compost_earned=(data.duration // 60) * constants.SESSION_COMPOST_PER_MINUTE,
        plant_growth_contributed=constants.SESSION_GROWTH_CONTRIBUTION,
        mood=data.mood or SessionMood.FOCUSED,
        notes=data.notes,
    )


def grow_plants(plants: list[Plant], session: FocusSession, *, now: datetime | None = None) -> list[Plant]:
    """Grow and water every plant after a focus session, capping at 100."""
    now = now or utc_now()
    return [
        plant.model_copy(
            update={
                "growth": min(constants.MAX_PLANT_STAT, plant.growth + session.plant_growth_contributed),
                "health": min(constants.MAX_PLANT_STAT, plant.health + constants.SESSION_HEALTH_CONTRIBUTION),
                "last_watered": now,
            }
        )
        for plant in plants
    ]


def record_session(compost: CompostState, session: FocusSession) -> CompostState:
    """Append a session and credit its earnings."""
    return CompostState(
        balance=apply_compost_delta(compost.balance, session.compost_earned),
        focus_sessions=[*compost.focus_sessions, session],
    )


def apply_verification(state: ProfileState, score: int, *, now: datetime | None = None) -> ProfileState:
    """Fold a verified score into the profile.

    Level only rises, seeds are unioned and achievements are added once.
    """
    tier = tier_for_score(score)
    now = now or utc_now()
    profile = state.profile
    updated_profile = profile.model_copy(
        update={
            "verified_follower_count": score,
            "verified_at": now,
            "level": max(profile.level, tier.level),
            "unlocked_seed_types": profile.unlocked_seed_types | set(tier.seeds),
            "last_active_at": now,
        }
    )

    existing = state.achievement_ids
    new_achievements = [
        Achievement(
            id=new_id(f"{achievement_id}_"),
            user_id=profile.id,
            achievement_id=achievement_id,
            unlocked_at=now,
        )
        for achievement_id in tier.achievements
        if achievement_id not in existing
    ]
    return ProfileState(profile=updated_profile, achievements=[*state.achievements, *new_achievements])


def current_streak(tasks: list[Task], *, today: date | None = None) -> int:
    """Count consecutive days, ending today or yesterday, with at least one completion."""
    days = {task.completed_at.date() for task in tasks if task.completed_at is not None}
    if not days:
        return 0

    cursor = today or utc_now().date()
    if cursor not in days:
        cursor -= timedelta(days=1)

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def default_profile(user_id: str, *, now: datetime | None = None) -> UserProfile:
    now = now or utc_now()
    return UserProfile(id=user_id, joined_at=now, last_active_at=now)


def sample_tasks(user_id: str, *, now: datetime | None = None) -> list[Task]:
    """Starter tasks for a garden with no saved state."""
    now = now or utc_now()
    return [
        Task(
            id="1",
            user_id=user_id,
            title="Morning workout",
            description="Complete 30-minute cardio session",
            priority=Priority.HIGH,
            category=Category.HEALTH,
            status=TaskStatus.PENDING,
            plant_type=PlantType.TREE,
            compost_reward=15,
            estimated_focus_time=30,
            created_at=now,
            updated_at=now,
            due_date=now + timedelta(hours=2),
            tags={"fitness", "morning"},
        ),
        Task(
            id="2",
            user_id=user_id,
            title="Review project proposal",
            description="Read through and provide feedback",
            priority=Priority.MEDIUM,
            category=Category.WORK,
            status=TaskStatus.COMPLETED,
            plant_type=PlantType.FLOWER,
            compost_reward=10,
            estimated_focus_time=45,
            actual_focus_time=50,
            created_at=now - timedelta(days=1),
            updated_at=now - timedelta(hours=2),
            completed_at=now - timedelta(hours=2),
            tags={"work", "review"},
        ),
        Task(
            id="3",
            user_id=user_id,
            title="Call mom",
            description="Weekly check-in call",
            priority=Priority.LOW,
            category=Category.PERSONAL,
            status=TaskStatus.PENDING,
            plant_type=PlantType.SPROUT,
            compost_reward=5,
            estimated_focus_time=15,
            created_at=now,
            updated_at=now,
            tags={"family", "personal"},
        ),
    ]


def sample_plants(user_id: str, *, now: datetime | None = None) -> list[Plant]:
    """The one plant grown by the completed starter task."""
    now = now or utc_now()
    return [
        Plant(
            id="1",
            user_id=user_id,
            task_id="2",
            type=PlantType.FLOWER,
            species=PlantSpecies(
                id="rose",
                name="Garden Rose",
                rarity="common",
                growth_rate=1.0,
                compost_requirement=10,
                description="A beautiful garden rose that blooms with dedication",
                unlock_conditions=["Complete first work task"],
            ),
            growth=90,
            health=95,
            position=Position(x=200, y=300),
            planted_at=now - timedelta(hours=2),
        )
    ]
