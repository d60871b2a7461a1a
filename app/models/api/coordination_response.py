# app/models/api/coordination_response.py
"""
Coordination API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class AvailabilityResponse(BaseModel):
    user_id: str = Field(..., description="Calendar owner")
    days: dict[str, list[list[int]]] = Field(..., description="Merged [start, end) intervals per day")
    total_hours: int = Field(..., description="Declared hours across the week")


class OverlapSlotResponse(BaseModel):
    day: str
    start: int
    end: int
    duration: int


class OverlapResponse(BaseModel):
    user_a: str
    user_b: str
    slots: list[OverlapSlotResponse]
    total_count: int


class SessionCandidateResponse(BaseModel):
    day: str
    start: int
    end: int


class WeeklyPlanResponse(BaseModel):
    sessions: list[SessionCandidateResponse] = Field(..., description="Two sessions, earlier day first")
    gap_days: int = Field(..., description="Days between the sessions")
    score: int = Field(..., description="|gap - 3|, lower is better")


class WeeklyPlansResponse(BaseModel):
    user_a: str
    user_b: str
    plans: list[WeeklyPlanResponse]
    candidates_considered: int


class ProposalResponse(BaseModel):
    id: str
    proposer_id: str
    partner_id: str
    day: str
    start: int
    end: int
    status: str
    created_at: datetime
    thread_id: str
    expires_at: datetime
    parent_id: str | None = None
    round: int = 0
    message: str = ""
    source: str = "direct"
    responded_at: datetime | None = None
    session_id: str | None = None


class ProposalsListResponse(BaseModel):
    proposals: list[ProposalResponse]
    total_count: int


class SessionResponse(BaseModel):
    id: str
    participants: list[str]
    day: str
    start: int
    end: int
    status: str
    proposal_id: str
    created_at: datetime
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None


class SessionsListResponse(BaseModel):
    sessions: list[SessionResponse]
    total_count: int


class RespondResponse(BaseModel):
    proposal: ProposalResponse = Field(..., description="The proposal that was answered")
    session: SessionResponse | None = Field(None, description="Created on accept")
    counter: ProposalResponse | None = Field(None, description="Created on counter")


class SuggestResponse(BaseModel):
    suggested: bool
    proposal: ProposalResponse | None = None


class NotificationResponse(BaseModel):
    type: str
    recipient_id: str
    occurred_at: datetime
    proposal_id: str | None = None
    session_id: str | None = None
    actor_id: str | None = None
    day: str | None = None
    start: int | None = None
    end: int | None = None
    reason: str | None = None


class NotificationsListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total_count: int
