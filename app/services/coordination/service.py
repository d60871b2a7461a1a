"""
Wiring for the coordination service.
Builds the availability store, notification sink and coordinator selected
by settings, and exposes the shared instance to the routes.
"""

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.services.availability_store import (
    AvailabilityStore,
    InMemoryAvailabilityStore,
    RedisAvailabilityStore,
)
from app.services.coordination.proposal_coordinator import ProposalCoordinator
from app.services.notifications import (
    InMemoryNotificationPort,
    LoggingNotificationPort,
    NotificationPort,
)
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


def build_availability_store(config: Settings = settings) -> AvailabilityStore:
    if config.uses_redis():
        return RedisAvailabilityStore(fast_redis, key_prefix=config.REDIS_KEY_PREFIX)
    return InMemoryAvailabilityStore()


def build_notifier(config: Settings = settings) -> NotificationPort:
    if config.NOTIFICATION_SINK == "memory":
        return InMemoryNotificationPort()
    return LoggingNotificationPort()


def build_coordinator(config: Settings = settings) -> ProposalCoordinator:
    store = build_availability_store(config)
    notifier = build_notifier(config)
    logger.info(
        "Coordination service configured",
        availability_backend=config.AVAILABILITY_BACKEND,
        notification_sink=config.NOTIFICATION_SINK,
        **config.get_negotiation_policy(),
    )
    return ProposalCoordinator.from_settings(store, notifier, config)


# Global instance
coordinator = build_coordinator()


def get_coordinator() -> ProposalCoordinator:
    """FastAPI dependency returning the shared coordinator."""
    return coordinator
