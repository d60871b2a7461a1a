# app/models/api/coordination_request.py
"""
Coordination API request models.
Used by routes for input validation. Slot rules beyond simple bounds are
enforced by the domain layer so every caller gets the same errors.
"""

from typing import Literal

from pydantic import BaseModel, Field


class SlotRequest(BaseModel):
    """A day and half-open hour range."""

    day: str = Field(..., description="Day of week, e.g. 'wed' or 'Wednesday'")
    start: int = Field(..., ge=0, le=24, description="Start hour (inclusive)")
    end: int = Field(..., ge=0, le=24, description="End hour (exclusive)")


class AvailabilityUpdateRequest(BaseModel):
    """Replace a user's weekly availability."""

    days: dict[str, list[tuple[int, int]]] = Field(
        default_factory=dict,
        description="Map of day to [start, end) hour intervals, e.g. {'mon': [[18, 20]]}",
    )


class ProposeRequest(SlotRequest):
    """Request for proposing a session to a partner."""

    proposer_id: str = Field(..., min_length=1, description="User making the offer")
    partner_id: str = Field(..., min_length=1, description="User receiving the offer")
    message: str = Field(default="", max_length=500, description="Optional note")


class RespondRequest(BaseModel):
    """Partner's answer to a pending proposal."""

    responder_id: str = Field(..., min_length=1, description="Must be the proposal's partner")
    decision: Literal["accept", "reject", "counter"] = Field(..., description="Response")
    counter_slot: SlotRequest | None = Field(
        default=None, description="Required when decision is 'counter'"
    )
    message: str = Field(default="", max_length=500, description="Optional note")


class SessionActionRequest(BaseModel):
    """Cancel or complete a confirmed session."""

    requester_id: str = Field(..., min_length=1, description="Must be a session participant")
