"""
Availability store adapters.

The coordination core only reads and writes availability through this
interface. `set` commits the new calendar and then awaits every change
listener registered for that user; the proposal coordinator uses that hook
to reconcile in-flight proposals.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from app.infrastructure.observability.logging import get_logger
from app.models.domain.availability_domain import WeeklyAvailability
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

ChangeCallback = Callable[[str], Awaitable[object]]


class AvailabilityStore(ABC):
    """Owns every user's declared weekly availability."""

    def __init__(self):
        self._listeners: dict[str, list[ChangeCallback]] = {}

    @abstractmethod
    async def get(self, user_id: str) -> WeeklyAvailability:
        """Return the user's availability; an empty calendar if none is stored."""

    @abstractmethod
    async def _write(self, user_id: str, availability: WeeklyAvailability) -> None:
        """Persist availability for the user."""

    async def set(self, user_id: str, availability: WeeklyAvailability) -> None:
        """Replace the user's availability and notify change listeners."""
        await self._write(user_id, availability.copy())
        logger.info(
            "Availability updated",
            user_id=user_id,
            days=availability.days(),
            total_hours=availability.total_hours(),
        )
        await self._notify(user_id)

    def on_change(self, user_id: str, callback: ChangeCallback) -> None:
        """Register a callback run after every `set` for user_id. Registering twice is a no-op."""
        callbacks = self._listeners.setdefault(user_id, [])
        if callback not in callbacks:
            callbacks.append(callback)

    def has_listener(self, user_id: str, callback: ChangeCallback) -> bool:
        return callback in self._listeners.get(user_id, [])

    async def _notify(self, user_id: str) -> None:
        for callback in list(self._listeners.get(user_id, [])):
            await callback(user_id)


class InMemoryAvailabilityStore(AvailabilityStore):
    """Process-local store, used in development and tests."""

    def __init__(self):
        super().__init__()
        self._data: dict[str, WeeklyAvailability] = {}

    async def get(self, user_id: str) -> WeeklyAvailability:
        stored = self._data.get(user_id)
        return stored.copy() if stored else WeeklyAvailability()

    async def _write(self, user_id: str, availability: WeeklyAvailability) -> None:
        self._data[user_id] = availability


class RedisAvailabilityStore(AvailabilityStore):
    """Stores each calendar as a JSON document under `{prefix}:{user_id}`."""

    def __init__(self, client: FastRedisClient, key_prefix: str = "availability"):
        super().__init__()
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, user_id: str) -> str:
        return f"{self.key_prefix}:{user_id}"

    async def get(self, user_id: str) -> WeeklyAvailability:
        raw = await self.client.get(self._key(user_id))
        if not raw:
            return WeeklyAvailability()
        return WeeklyAvailability.from_dict(json.loads(raw))

    async def _write(self, user_id: str, availability: WeeklyAvailability) -> None:
        if availability.is_empty():
            await self.client.delete(self._key(user_id))
            return
        await self.client.set(self._key(user_id), json.dumps(availability.to_dict()))
