"""
Domain models for session negotiation.

Proposals and confirmed sessions are plain dataclasses; every state change
goes through the proposal coordinator, which owns the transition rules.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ProposalStatus = Literal[
    "pending",
    "accepted",
    "rejected",
    "counter_proposed",
    "expired",
    "confirmed",
    "cancelled",
]
SessionStatus = Literal["confirmed", "cancelled", "completed"]
Decision = Literal["accept", "reject", "counter"]
ProposalSource = Literal["direct", "auto_suggested"]
EventType = Literal[
    "proposal_created",
    "proposal_accepted",
    "proposal_rejected",
    "proposal_countered",
    "proposal_expired",
    "session_confirmed",
    "session_cancelled",
]

ACTIVE_PROPOSAL_STATUSES: frozenset[str] = frozenset({"pending", "accepted"})
TERMINAL_PROPOSAL_STATUSES: frozenset[str] = frozenset(
    {"rejected", "counter_proposed", "expired", "confirmed", "cancelled"}
)

PairKey = tuple[str, str]


def pair_key(user_a: str, user_b: str) -> PairKey:
    """Unordered pair key: the two ids sorted."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


@dataclass(slots=True)
class Proposal:
    """A negotiable offer of one specific session between two users."""

    id: str
    proposer_id: str
    partner_id: str
    day: str
    start: int
    end: int
    created_at: datetime
    thread_id: str
    expires_at: datetime
    status: ProposalStatus = "pending"
    parent_id: str | None = None
    round: int = 0
    message: str = ""
    source: ProposalSource = "direct"
    responded_at: datetime | None = None
    session_id: str | None = None

    @property
    def pair(self) -> PairKey:
        return pair_key(self.proposer_id, self.partner_id)

    def is_active(self) -> bool:
        return self.status in ACTIVE_PROPOSAL_STATUSES

    def involves(self, user_id: str) -> bool:
        return user_id in (self.proposer_id, self.partner_id)

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active() and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposer_id": self.proposer_id,
            "partner_id": self.partner_id,
            "day": self.day,
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "thread_id": self.thread_id,
            "expires_at": self.expires_at.isoformat(),
            "parent_id": self.parent_id,
            "round": self.round,
            "message": self.message,
            "source": self.source,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "session_id": self.session_id,
        }


@dataclass(slots=True)
class ConfirmedSession:
    """A session both partners agreed on."""

    id: str
    participants: tuple[str, str]
    day: str
    start: int
    end: int
    proposal_id: str
    created_at: datetime
    status: SessionStatus = "confirmed"
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def pair(self) -> PairKey:
        return pair_key(*self.participants)

    def other_participant(self, user_id: str) -> str:
        first, second = self.participants
        return second if user_id == first else first

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "participants": list(self.participants),
            "day": self.day,
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "proposal_id": self.proposal_id,
            "created_at": self.created_at.isoformat(),
            "cancelled_by": self.cancelled_by,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(slots=True)
class NotificationEvent:
    """Lifecycle event handed to the notification port, one per recipient."""

    type: EventType
    recipient_id: str
    occurred_at: datetime
    proposal_id: str | None = None
    session_id: str | None = None
    actor_id: str | None = None
    day: str | None = None
    start: int | None = None
    end: int | None = None
    reason: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "recipient_id": self.recipient_id,
            "occurred_at": self.occurred_at.isoformat(),
            "proposal_id": self.proposal_id,
            "session_id": self.session_id,
            "actor_id": self.actor_id,
            "day": self.day,
            "start": self.start,
            "end": self.end,
            "reason": self.reason,
            **self.extra,
        }
