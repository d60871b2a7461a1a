"""
In-process record of proposals and confirmed sessions.

Keeps an index of the single active proposal per unordered pair so the
coordinator can enforce the one-open-offer rule in O(1). Writers must hold
the pair lock for the record they touch; the repository itself does no
locking and no I/O.
"""

from app.infrastructure.observability.logging import get_logger
from app.models.domain.proposal_domain import (
    ConfirmedSession,
    PairKey,
    Proposal,
    pair_key,
)

logger = get_logger(__name__)


class ProposalRepository:
    """Proposal and session records with a per-pair active index."""

    def __init__(self):
        self._proposals: dict[str, Proposal] = {}
        self._sessions: dict[str, ConfirmedSession] = {}
        self._active_by_pair: dict[PairKey, str] = {}

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def get_proposal(self, proposal_id: str) -> Proposal | None:
        return self._proposals.get(proposal_id)

    def active_for_pair(self, user_a: str, user_b: str) -> Proposal | None:
        proposal_id = self._active_by_pair.get(pair_key(user_a, user_b))
        return self._proposals.get(proposal_id) if proposal_id else None

    def add_proposal(self, proposal: Proposal) -> Proposal:
        """Insert a new pending proposal and mark it active for its pair."""
        existing = self._active_by_pair.get(proposal.pair)
        if existing and existing != proposal.id:
            raise RuntimeError(f"Pair {proposal.pair} already has active proposal {existing}")
        self._proposals[proposal.id] = proposal
        self._active_by_pair[proposal.pair] = proposal.id
        return proposal

    def save_proposal(self, proposal: Proposal) -> Proposal:
        """Persist a status change, releasing the pair slot once terminal."""
        self._proposals[proposal.id] = proposal
        if not proposal.is_active() and self._active_by_pair.get(proposal.pair) == proposal.id:
            del self._active_by_pair[proposal.pair]
        return proposal

    def active_proposals(self) -> list[Proposal]:
        return [self._proposals[pid] for pid in self._active_by_pair.values()]

    def proposals_for_user(self, user_id: str, active_only: bool = False) -> list[Proposal]:
        found = [p for p in self._proposals.values() if p.involves(user_id)]
        if active_only:
            found = [p for p in found if p.is_active()]
        return sorted(found, key=lambda p: p.created_at)

    def thread(self, thread_id: str) -> list[Proposal]:
        found = [p for p in self._proposals.values() if p.thread_id == thread_id]
        return sorted(found, key=lambda p: p.round)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> ConfirmedSession | None:
        return self._sessions.get(session_id)

    def save_session(self, session: ConfirmedSession) -> ConfirmedSession:
        self._sessions[session.id] = session
        return session

    def sessions_for_user(self, user_id: str) -> list[ConfirmedSession]:
        found = [s for s in self._sessions.values() if user_id in s.participants]
        return sorted(found, key=lambda s: s.created_at)

    def stats(self) -> dict[str, int]:
        return {
            "proposals": len(self._proposals),
            "active_proposals": len(self._active_by_pair),
            "sessions": len(self._sessions),
        }
