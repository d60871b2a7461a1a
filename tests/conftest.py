from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from app.models.domain.availability_domain import WeeklyAvailability
from app.services.availability_store import InMemoryAvailabilityStore
from app.services.coordination import ProposalCoordinator
from app.services.notifications import InMemoryNotificationPort
from app.services.redis_client import RedisClientError


class FakeRedis:
    """Stands in for FastRedisClient in store tests."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.fail_reads = False

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise RedisClientError("connection reset", key=key)
        return self.store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryAvailabilityStore()


@pytest.fixture
def notifier():
    return InMemoryNotificationPort()


@pytest.fixture
def coordinator(store, notifier, clock):
    return ProposalCoordinator(store, notifier, clock=clock)


@pytest.fixture
def set_availability(store):
    """Write availability from a plain mapping, e.g. {"mon": [(18, 20)]}."""

    async def _set(user_id: str, days: dict) -> WeeklyAvailability:
        availability = WeeklyAvailability(days)
        await store.set(user_id, availability)
        return availability

    return _set


@pytest_asyncio.fixture
async def partners(set_availability):
    """Alice and Bob from the worked example: one overlap on Mon, one on Wed."""
    await set_availability("alice", {"mon": [(18, 20)], "wed": [(18, 21)]})
    await set_availability("bob", {"mon": [(18, 20)], "wed": [(19, 21)]})
    return "alice", "bob"
