"""
Partner coordination package.

Keeps the negotiation state machine, its pair locks and the wiring that
builds them from settings in one place.
"""

from .pair_lock import PairLockManager  # noqa: F401
from .proposal_coordinator import ProposalCoordinator, ResponseOutcome  # noqa: F401
from .service import build_coordinator, get_coordinator  # noqa: F401
