"""
Availability API Routes
Read and replace a user's weekly availability. Writes go through the
availability store, which triggers reconciliation of in-flight proposals.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.coordination_request import AvailabilityUpdateRequest
from app.models.api.coordination_response import AvailabilityResponse
from app.models.domain.availability_domain import WeeklyAvailability
from app.models.domain.coordination_errors import CoordinationError
from app.services.coordination import ProposalCoordinator, get_coordinator
from app.services.redis_client import RedisClientError

logger = get_logger(__name__)

router = APIRouter(prefix="/availability", tags=["availability"])


def _to_response(user_id: str, availability: WeeklyAvailability) -> AvailabilityResponse:
    return AvailabilityResponse(
        user_id=user_id,
        days=availability.to_dict(),
        total_hours=availability.total_hours(),
    )


@router.get("/{user_id}", response_model=AvailabilityResponse)
async def get_availability(
    user_id: str, coordinator: ProposalCoordinator = Depends(get_coordinator)
):
    """Get a user's merged weekly availability."""
    try:
        availability = await coordinator.store.get(user_id)
        return _to_response(user_id, availability)
    except RedisClientError as e:
        logger.error("Availability store unavailable", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Availability store unavailable",
        )


@router.put("/{user_id}", response_model=AvailabilityResponse)
async def replace_availability(
    user_id: str,
    request: AvailabilityUpdateRequest,
    coordinator: ProposalCoordinator = Depends(get_coordinator),
):
    """Replace a user's weekly availability."""
    try:
        availability = WeeklyAvailability.from_dict(request.days)
        await coordinator.store.set(user_id, availability)
        return _to_response(user_id, availability)
    except CoordinationError as e:
        logger.warning("Availability update rejected", user_id=user_id, error=str(e))
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())
    except RedisClientError as e:
        logger.error("Availability store unavailable", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Availability store unavailable",
        )
