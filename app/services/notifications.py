"""
Notification port.
Abstract sink for coordination lifecycle events. Concrete delivery
(chat, push, email) plugs in behind `emit`; the core never formats messages.
"""

from abc import ABC, abstractmethod

from app.infrastructure.observability.logging import get_logger
from app.models.domain.proposal_domain import NotificationEvent

logger = get_logger(__name__)


class NotificationPort(ABC):
    @abstractmethod
    async def emit(self, event: NotificationEvent) -> None:
        """Deliver one event to one recipient."""


class LoggingNotificationPort(NotificationPort):
    """Writes each event as a structured log line."""

    async def emit(self, event: NotificationEvent) -> None:
        logger.info("Coordination notification", **event.to_dict())


class InMemoryNotificationPort(NotificationPort):
    """Keeps emitted events in order; backs the notifications endpoint and tests."""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: list[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]

    def for_recipient(self, recipient_id: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.recipient_id == recipient_id]

    def of_type(self, event_type: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()
