"""Typed load/save of aggregates over the local key-value cache.

Every entry is stored as ``{"timestamp": <epoch ms>, "value": ...}`` so a
local copy can be compared with a remote snapshot. Entries written before the
envelope existed (a bare JSON value) load with timestamp 0.
"""

import json
import logging
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from src.core.config import constants
from src.core.errors import CacheCorruptError
from src.core.local_cache import LocalCache
from src.domain.plant import Plant
from src.domain.profile import Achievement, CompostState, FocusSession, ProfileState, UserProfile
from src.domain.task import Task


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheEntry(BaseModel, Generic[T]):
    """A cached value with the logical time it was written."""

    timestamp: int = Field(default=0, ge=0)
    value: T


def _decode(key: str, raw: str, adapter: TypeAdapter[Any]) -> CacheEntry[Any]:
    """Parse one stored entry, re-hydrating every typed field.

    Raises:
        CacheCorruptError: If the JSON or its shape is invalid
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CacheCorruptError(key, f"invalid JSON: {e}") from e

    if isinstance(payload, dict) and "value" in payload and "timestamp" in payload:
        timestamp, value = payload["timestamp"], payload["value"]
    else:
        timestamp, value = 0, payload

    try:
        return CacheEntry[Any](timestamp=timestamp, value=adapter.validate_python(value))
    except ValidationError as e:
        raise CacheCorruptError(key, f"unexpected shape: {e.error_count()} error(s)") from e


def _encode(value: Any, timestamp: int, adapter: TypeAdapter[Any]) -> str:  # noqa: ANN401
    return json.dumps({"timestamp": timestamp, "value": adapter.dump_python(value, mode="json")})


_tasks_adapter: TypeAdapter[list[Task]] = TypeAdapter(list[Task])
_plants_adapter: TypeAdapter[list[Plant]] = TypeAdapter(list[Plant])
_sessions_adapter: TypeAdapter[list[FocusSession]] = TypeAdapter(list[FocusSession])
_achievements_adapter: TypeAdapter[list[Achievement]] = TypeAdapter(list[Achievement])
_profile_adapter: TypeAdapter[UserProfile] = TypeAdapter(UserProfile)
_int_adapter: TypeAdapter[int] = TypeAdapter(int)
_json_adapter: TypeAdapter[Any] = TypeAdapter(Any)


class LocalAggregateStore:
    """Reads and writes whole aggregates; never partial records."""

    def __init__(self, cache: LocalCache) -> None:
        self._cache = cache

    async def _load(self, key: str, adapter: TypeAdapter[Any]) -> CacheEntry[Any] | None:
        raw = await self._cache.get(key)
        if raw is None:
            return None
        return _decode(key, raw, adapter)

    async def _save(self, key: str, value: Any, timestamp: int, adapter: TypeAdapter[Any]) -> bool:  # noqa: ANN401
        try:
            encoded = _encode(value, timestamp, adapter)
        except (TypeError, ValueError) as e:
            logger.error("local_store_encode_failed", extra={"key": key, "error": str(e)})
            return False
        return await self._cache.set(key, encoded)

    async def load_tasks(self) -> CacheEntry[list[Task]] | None:
        return await self._load(constants.CACHE_KEY_TASKS, _tasks_adapter)

    async def save_tasks(self, tasks: list[Task], timestamp: int) -> bool:
        return await self._save(constants.CACHE_KEY_TASKS, tasks, timestamp, _tasks_adapter)

    async def load_plants(self) -> CacheEntry[list[Plant]] | None:
        return await self._load(constants.CACHE_KEY_PLANTS, _plants_adapter)

    async def save_plants(self, plants: list[Plant], timestamp: int) -> bool:
        return await self._save(constants.CACHE_KEY_PLANTS, plants, timestamp, _plants_adapter)

    async def load_compost(self) -> CacheEntry[CompostState] | None:
        """Load the balance with its focus sessions; None when no balance is stored."""
        balance = await self._load(constants.CACHE_KEY_COMPOST, _int_adapter)
        if balance is None:
            return None
        sessions = await self._load(constants.CACHE_KEY_FOCUS_SESSIONS, _sessions_adapter)
        state = CompostState(balance=max(0, balance.value), focus_sessions=sessions.value if sessions else [])
        return CacheEntry[CompostState](timestamp=balance.timestamp, value=state)

    async def save_compost(self, state: CompostState, timestamp: int) -> bool:
        saved_balance = await self._save(constants.CACHE_KEY_COMPOST, state.balance, timestamp, _int_adapter)
        saved_sessions = await self._save(
            constants.CACHE_KEY_FOCUS_SESSIONS, state.focus_sessions, timestamp, _sessions_adapter
        )
        return saved_balance and saved_sessions

    async def load_profile(self) -> CacheEntry[ProfileState] | None:
        """Load profile, achievements and the separately stored level."""
        profile = await self._load(constants.CACHE_KEY_PROFILE, _profile_adapter)
        if profile is None:
            return None
        achievements = await self._load(constants.CACHE_KEY_ACHIEVEMENTS, _achievements_adapter)
        level = await self._load(constants.CACHE_KEY_LEVEL, _int_adapter)

        record: UserProfile = profile.value
        if level is not None and level.value > record.level:
            record = record.model_copy(update={"level": level.value})
        state = ProfileState(profile=record, achievements=achievements.value if achievements else [])
        return CacheEntry[ProfileState](timestamp=profile.timestamp, value=state)

    async def save_profile(self, state: ProfileState, timestamp: int) -> bool:
        results = [
            await self._save(constants.CACHE_KEY_PROFILE, state.profile, timestamp, _profile_adapter),
            await self._save(constants.CACHE_KEY_LEVEL, state.profile.level, timestamp, _int_adapter),
            await self._save(constants.CACHE_KEY_ACHIEVEMENTS, state.achievements, timestamp, _achievements_adapter),
        ]
        return all(results)

    async def load_raw(self, key: str) -> Any | None:  # noqa: ANN401
        """Load an untyped JSON entry (used for the sync outbox)."""
        entry = await self._load(key, _json_adapter)
        return entry.value if entry else None

    async def save_raw(self, key: str, value: Any, timestamp: int) -> bool:  # noqa: ANN401
        return await self._save(key, value, timestamp, _json_adapter)
