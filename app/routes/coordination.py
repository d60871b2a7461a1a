"""
Coordination API Routes
HTTP endpoints for overlap lookup, weekly plans, proposals and sessions.
All negotiation rules live in the proposal coordinator; these handlers only
validate input, translate errors and shape responses.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.coordination_request import (
    ProposeRequest,
    RespondRequest,
    SessionActionRequest,
)
from app.models.api.coordination_response import (
    NotificationResponse,
    NotificationsListResponse,
    OverlapResponse,
    OverlapSlotResponse,
    ProposalResponse,
    ProposalsListResponse,
    RespondResponse,
    SessionResponse,
    SessionsListResponse,
    SuggestResponse,
    WeeklyPlansResponse,
)
from app.models.domain.coordination_errors import CoordinationError
from app.models.domain.proposal_domain import ConfirmedSession, Proposal
from app.services.coordination import ProposalCoordinator, get_coordinator
from app.services.notifications import InMemoryNotificationPort
from app.services.redis_client import RedisClientError
from app.services.scheduling import session_planner

logger = get_logger(__name__)

router = APIRouter(tags=["coordination"])


def _proposal(proposal: Proposal) -> ProposalResponse:
    return ProposalResponse(**proposal.to_dict())


def _session(session: ConfirmedSession) -> SessionResponse:
    return SessionResponse(**session.to_dict())


def _raise_http(operation: str, error: Exception, **fields) -> None:
    """Translate a coordination or store failure into an HTTPException."""
    if isinstance(error, CoordinationError):
        logger.warning(
            "Coordination request rejected",
            operation=operation,
            error=str(error),
            error_code=error.error_code,
            **fields,
        )
        raise HTTPException(status_code=error.status_code, detail=error.to_dict()) from error
    if isinstance(error, RedisClientError):
        logger.error("Availability store unavailable", operation=operation, error=str(error), **fields)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Availability store unavailable",
        ) from error
    raise error


# =================================================================
# PAIRS
# =================================================================


@router.get("/pairs/{user_a}/{user_b}/overlap", response_model=OverlapResponse)
async def get_pair_overlap(
    user_a: str, user_b: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Hour ranges where both users are available."""
    try:
        slots = await coordinator.get_overlap(user_a, user_b)
    except (CoordinationError, RedisClientError) as e:
        _raise_http("get_overlap", e, user_a=user_a, user_b=user_b)

    return OverlapResponse(
        user_a=user_a,
        user_b=user_b,
        slots=[OverlapSlotResponse(**slot.to_dict()) for slot in slots],
        total_count=len(slots),
    )


@router.get("/pairs/{user_a}/{user_b}/plans", response_model=WeeklyPlansResponse)
async def get_pair_plans(
    user_a: str, user_b: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Ranked two-session weekly plans for the pair."""
    try:
        found = await coordinator.get_session_candidates(user_a, user_b)
        weekly_plans = session_planner.plans(found, coordinator.max_plans)
    except (CoordinationError, RedisClientError) as e:
        _raise_http("get_weekly_plans", e, user_a=user_a, user_b=user_b)

    return WeeklyPlansResponse(
        user_a=user_a,
        user_b=user_b,
        plans=[plan.to_dict() for plan in weekly_plans],
        candidates_considered=len(found),
    )


@router.post("/pairs/{user_a}/{user_b}/suggest", response_model=SuggestResponse)
async def suggest_session(
    user_a: str, user_b: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Auto-propose the best planned session from user_a to user_b."""
    try:
        proposal = await coordinator.auto_suggest(user_a, user_b)
    except (CoordinationError, RedisClientError) as e:
        _raise_http("auto_suggest", e, user_a=user_a, user_b=user_b)

    if proposal is None:
        return SuggestResponse(suggested=False)
    return SuggestResponse(suggested=True, proposal=_proposal(proposal))


# =================================================================
# PROPOSALS
# =================================================================


@router.post("/proposals", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    request: ProposeRequest, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Propose a session to a partner."""
    try:
        proposal = await coordinator.propose(
            request.proposer_id,
            request.partner_id,
            request.day,
            request.start,
            request.end,
            message=request.message,
        )
    except (CoordinationError, RedisClientError) as e:
        _raise_http("propose", e, user_id=request.proposer_id)

    return _proposal(proposal)


@router.get("/proposals/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    try:
        return _proposal(coordinator.get_proposal(proposal_id))
    except CoordinationError as e:
        _raise_http("get_proposal", e, proposal_id=proposal_id)


@router.post("/proposals/{proposal_id}/respond", response_model=RespondResponse)
async def respond_to_proposal(
    proposal_id: str,
    request: RespondRequest,
    coordinator: ProposalCoordinator = Depends(get_coordinator),
):
    """Accept, reject or counter a pending proposal."""
    counter_slot = None
    if request.counter_slot is not None:
        slot = request.counter_slot
        counter_slot = (slot.day, slot.start, slot.end)

    try:
        outcome = await coordinator.respond(
            proposal_id,
            request.responder_id,
            request.decision,
            counter_slot=counter_slot,
            message=request.message,
        )
    except (CoordinationError, RedisClientError) as e:
        _raise_http("respond", e, proposal_id=proposal_id, user_id=request.responder_id)

    return RespondResponse(
        proposal=_proposal(outcome.proposal),
        session=_session(outcome.session) if outcome.session else None,
        counter=_proposal(outcome.counter) if outcome.counter else None,
    )


@router.get("/users/{user_id}/proposals", response_model=ProposalsListResponse)
async def list_user_proposals(
    user_id: str,
    active_only: bool = Query(default=False, description="Only pending proposals"),
    coordinator: ProposalCoordinator = Depends(get_coordinator),
):
    proposals = coordinator.list_proposals(user_id, active_only=active_only)
    return ProposalsListResponse(
        proposals=[_proposal(p) for p in proposals], total_count=len(proposals)
    )


# =================================================================
# SESSIONS
# =================================================================


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, coordinator: ProposalCoordinator = Depends(get_coordinator)):
    try:
        return _session(coordinator.get_session(session_id))
    except CoordinationError as e:
        _raise_http("get_session", e, session_id=session_id)


@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: str,
    request: SessionActionRequest,
    coordinator: ProposalCoordinator = Depends(get_coordinator),
):
    """Cancel a confirmed session."""
    try:
        session = await coordinator.cancel(session_id, request.requester_id)
    except CoordinationError as e:
        _raise_http("cancel", e, session_id=session_id, user_id=request.requester_id)

    return _session(session)


@router.post("/sessions/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str,
    request: SessionActionRequest,
    coordinator: ProposalCoordinator = Depends(get_coordinator),
):
    """Mark a confirmed session as completed."""
    try:
        session = await coordinator.complete(session_id, request.requester_id)
    except CoordinationError as e:
        _raise_http("complete", e, session_id=session_id, user_id=request.requester_id)

    return _session(session)


@router.get("/users/{user_id}/sessions", response_model=SessionsListResponse)
async def list_user_sessions(
    user_id: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    sessions = coordinator.list_sessions(user_id)
    return SessionsListResponse(sessions=[_session(s) for s in sessions], total_count=len(sessions))


# =================================================================
# NOTIFICATIONS
# =================================================================


@router.get("/users/{user_id}/notifications", response_model=NotificationsListResponse)
async def list_user_notifications(
    user_id: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Events recorded for a user; only available with the in-memory notification sink."""
    notifier = coordinator.notifier
    if not isinstance(notifier, InMemoryNotificationPort):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification history is not recorded by the configured sink",
        )

    events = notifier.for_recipient(user_id)
    return NotificationsListResponse(
        notifications=[
            NotificationResponse(
                type=e.type,
                recipient_id=e.recipient_id,
                occurred_at=e.occurred_at,
                proposal_id=e.proposal_id,
                session_id=e.session_id,
                actor_id=e.actor_id,
                day=e.day,
                start=e.start,
                end=e.end,
                reason=e.reason,
            )
            for e in events
        ],
        total_count=len(events),
    )
