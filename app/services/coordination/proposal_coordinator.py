"""
Proposal coordinator.

Negotiation state machine for workout sessions between two partners:
propose, respond (accept / reject / counter), cancel, reconcile against
availability edits, and the time-based expiry sweep.

Locking rules:
- Every read-modify-write of a pair's proposals or sessions runs under that
  pair's lock (see PairLockManager).
- Availability snapshots are fetched before the lock is taken and
  notifications are emitted after it is released, so no store or
  notification I/O ever happens while a pair lock is held.
- Each user's availability carries a change counter bumped by the store's
  change hook. A mutation that validated against a snapshot re-checks the
  counter under the lock and refetches if an edit slipped in between.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger, log_transition
from app.models.domain.availability_domain import (
    OverlapSlot,
    SessionCandidate,
    WeeklyPlan,
    validate_slot,
)
from app.models.domain.coordination_errors import (
    ConflictError,
    CoordinationError,
    InvalidSlotError,
    NotAuthorizedError,
    NotFoundError,
    UnavailableError,
)
from app.models.domain.proposal_domain import (
    ConfirmedSession,
    Decision,
    EventType,
    NotificationEvent,
    Proposal,
    ProposalSource,
)
from app.repositories.proposal_repository import ProposalRepository
from app.services.availability_store import AvailabilityStore
from app.services.coordination.pair_lock import PairLockManager
from app.services.notifications import NotificationPort
from app.services.scheduling import overlap_engine, session_planner

logger = get_logger(__name__)

SNAPSHOT_ATTEMPTS = 3
DECISIONS: tuple[str, ...] = ("accept", "reject", "counter")


@dataclass(slots=True)
class ResponseOutcome:
    """What a respond() call produced."""

    proposal: Proposal
    session: ConfirmedSession | None = None
    counter: Proposal | None = None


@dataclass(slots=True)
class _Mutation:
    """Result of a locked mutation: value to return, events to emit, error to raise."""

    result: Any = None
    events: list[NotificationEvent] = field(default_factory=list)
    error: CoordinationError | None = None


class ProposalCoordinator:
    """Owns every Proposal and ConfirmedSession transition."""

    def __init__(
        self,
        store: AvailabilityStore,
        notifier: NotificationPort,
        repository: ProposalRepository | None = None,
        locks: PairLockManager | None = None,
        *,
        session_hours: int = 2,
        min_overlap_hours: int = 1,
        min_proposal_hours: int = 2,
        max_plans: int = 5,
        proposal_ttl_hours: int = 168,
        max_counter_rounds: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.repository = repository or ProposalRepository()
        self.locks = locks or PairLockManager()
        self.session_hours = session_hours
        self.min_overlap_hours = min_overlap_hours
        self.min_proposal_hours = min_proposal_hours
        self.max_plans = max_plans
        self.proposal_ttl = timedelta(hours=proposal_ttl_hours)
        self.max_counter_rounds = max_counter_rounds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._versions: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        store: AvailabilityStore,
        notifier: NotificationPort,
        config: Settings = settings,
        **kwargs: Any,
    ) -> "ProposalCoordinator":
        return cls(store, notifier, **config.get_negotiation_policy(), **kwargs)

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    async def get_overlap(self, user_a: str, user_b: str) -> list[OverlapSlot]:
        return await self._pair_slots(user_a, user_b)

    async def get_session_candidates(self, user_a: str, user_b: str) -> list[SessionCandidate]:
        slots = await self._pair_slots(user_a, user_b)
        return session_planner.candidates(slots, self.session_hours)

    async def get_weekly_plans(self, user_a: str, user_b: str) -> list[WeeklyPlan]:
        found = await self.get_session_candidates(user_a, user_b)
        return session_planner.plans(found, self.max_plans)

    def get_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.repository.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal {proposal_id} not found", error_code="proposal_not_found")
        return proposal

    def get_session(self, session_id: str) -> ConfirmedSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found", error_code="session_not_found")
        return session

    def list_proposals(self, user_id: str, active_only: bool = False) -> list[Proposal]:
        return self.repository.proposals_for_user(user_id, active_only=active_only)

    def list_sessions(self, user_id: str) -> list[ConfirmedSession]:
        return self.repository.sessions_for_user(user_id)

    def active_proposal_for(self, user_a: str, user_b: str) -> Proposal | None:
        return self.repository.active_for_pair(user_a, user_b)

    # ------------------------------------------------------------------
    # Propose
    # ------------------------------------------------------------------

    async def propose(
        self,
        proposer_id: str,
        partner_id: str,
        day: str,
        start: int,
        end: int,
        message: str = "",
        source: ProposalSource = "direct",
    ) -> Proposal:
        """
        Offer a session to a partner.

        Raises:
            InvalidSlotError: malformed or too-short slot
            NotAuthorizedError: proposing to oneself
            ConflictError: the pair already has an active proposal
            UnavailableError: slot is outside the pair's current overlap
        """
        day = self._validate_proposal_slot(day, start, end)
        if proposer_id == partner_id:
            raise NotAuthorizedError(
                "Cannot propose a session to yourself",
                user_id=proposer_id,
                error_code="self_proposal",
            )

        self._watch(proposer_id)
        self._watch(partner_id)

        def mutate(slots: list[OverlapSlot]) -> _Mutation:
            existing = self.repository.active_for_pair(proposer_id, partner_id)
            if existing:
                raise ConflictError(
                    f"Pair already has active proposal {existing.id}",
                    user_id=proposer_id,
                    error_code="active_proposal_exists",
                )
            self._require_fit(slots, day, start, end, proposer_id)

            proposal = self._new_proposal(
                proposer_id, partner_id, day, start, end, message=message, source=source
            )
            self.repository.add_proposal(proposal)
            logger.info(
                "Proposal created",
                proposal_id=proposal.id,
                pair=proposal.pair,
                day=day,
                start=start,
                end=end,
                source=source,
            )
            return _Mutation(
                result=proposal,
                events=[self._event("proposal_created", partner_id, proposal, actor_id=proposer_id)],
            )

        return await self._run_with_snapshot(proposer_id, partner_id, mutate)

    # ------------------------------------------------------------------
    # Respond
    # ------------------------------------------------------------------

    async def respond(
        self,
        proposal_id: str,
        responder_id: str,
        decision: Decision,
        counter_slot: tuple[str, int, int] | None = None,
        message: str = "",
    ) -> ResponseOutcome:
        """
        Accept, reject or counter a pending proposal. Only the partner may respond.

        accept  -> confirmed, with a new ConfirmedSession
        reject  -> rejected
        counter -> original counter_proposed, new linked pending proposal
                   with roles swapped on the same thread

        A proposal past its expires_at is expired instead, whatever the
        decision, and NotFoundError("proposal_expired") is raised.
        """
        if decision not in DECISIONS:
            raise CoordinationError(
                f"Unknown decision '{decision}'", user_id=responder_id, error_code="invalid_decision"
            )
        proposal = self.get_proposal(proposal_id)

        if decision == "reject":
            return await self._reject(proposal, responder_id, message)

        if decision == "accept":
            return await self._run_with_snapshot(
                proposal.proposer_id,
                proposal.partner_id,
                lambda slots: self._accept(proposal_id, responder_id, message, slots),
            )

        if counter_slot is None:
            raise InvalidSlotError(
                "A counter proposal needs a slot", user_id=responder_id, error_code="missing_counter_slot"
            )
        day, start, end = counter_slot
        day = self._validate_proposal_slot(day, start, end)
        return await self._run_with_snapshot(
            proposal.proposer_id,
            proposal.partner_id,
            lambda slots: self._counter(proposal_id, responder_id, (day, start, end), message, slots),
        )

    def _respondable(self, proposal_id: str, responder_id: str) -> Proposal:
        """Re-read under the pair lock; the proposal must be pending and addressed to responder."""
        proposal = self.get_proposal(proposal_id)
        if not proposal.is_active():
            raise NotFoundError(
                f"Proposal {proposal_id} is already {proposal.status}",
                user_id=responder_id,
                error_code=f"proposal_{proposal.status}",
                recoverable=False,
            )
        if responder_id != proposal.partner_id:
            raise NotAuthorizedError(
                "Only the invited partner can respond to this proposal",
                user_id=responder_id,
                error_code="not_partner",
            )
        return proposal

    def _expired_on_response(
        self, proposal: Proposal, responder_id: str, reason: str, now: datetime
    ) -> _Mutation:
        """Expire a proposal found dead while answering it; the caller raises the error after emitting."""
        events = self._expire(proposal, reason, now)
        detail = (
            "its response window has passed"
            if reason == "ttl_elapsed"
            else "the slot is no longer available to both partners"
        )
        return _Mutation(
            events=events,
            error=NotFoundError(
                f"Proposal {proposal.id} expired: {detail}",
                user_id=responder_id,
                error_code="proposal_expired",
                recoverable=False,
            ),
        )

    def _accept(
        self, proposal_id: str, responder_id: str, message: str, slots: list[OverlapSlot]
    ) -> _Mutation:
        proposal = self._respondable(proposal_id, responder_id)
        now = self._clock()

        if proposal.is_overdue(now):
            return self._expired_on_response(proposal, responder_id, "ttl_elapsed", now)
        if not overlap_engine.slot_fits(slots, proposal.day, proposal.start, proposal.end):
            return self._expired_on_response(proposal, responder_id, "availability_changed", now)

        proposal.status = "accepted"
        proposal.responded_at = now
        if message:
            proposal.message = message
        log_transition(proposal.id, "pending", "accepted", actor_id=responder_id)

        session = ConfirmedSession(
            id=str(uuid4()),
            participants=(proposal.proposer_id, proposal.partner_id),
            day=proposal.day,
            start=proposal.start,
            end=proposal.end,
            proposal_id=proposal.id,
            created_at=now,
        )
        self.repository.save_session(session)

        proposal.status = "confirmed"
        proposal.session_id = session.id
        self.repository.save_proposal(proposal)
        log_transition(proposal.id, "accepted", "confirmed", session_id=session.id)

        events = [
            self._event("proposal_accepted", proposal.proposer_id, proposal, actor_id=responder_id),
            *[
                self._event("session_confirmed", user_id, proposal, session=session)
                for user_id in session.participants
            ],
        ]
        return _Mutation(result=ResponseOutcome(proposal=proposal, session=session), events=events)

    async def _reject(self, proposal: Proposal, responder_id: str, message: str) -> ResponseOutcome:
        async with self.locks.acquire(proposal.proposer_id, proposal.partner_id):
            current = self._respondable(proposal.id, responder_id)
            now = self._clock()
            if current.is_overdue(now):
                outcome = self._expired_on_response(current, responder_id, "ttl_elapsed", now)
            else:
                current.status = "rejected"
                current.responded_at = now
                if message:
                    current.message = message
                self.repository.save_proposal(current)
                log_transition(current.id, "pending", "rejected", actor_id=responder_id)
                outcome = _Mutation(
                    result=ResponseOutcome(proposal=current),
                    events=[
                        self._event(
                            "proposal_rejected", current.proposer_id, current, actor_id=responder_id
                        )
                    ],
                )

        await self._emit_all(outcome.events)
        if outcome.error is not None:
            raise outcome.error
        return outcome.result

    def _counter(
        self,
        proposal_id: str,
        responder_id: str,
        slot: tuple[str, int, int],
        message: str,
        slots: list[OverlapSlot],
    ) -> _Mutation:
        original = self._respondable(proposal_id, responder_id)
        day, start, end = slot

        now = self._clock()
        if original.is_overdue(now):
            return self._expired_on_response(original, responder_id, "ttl_elapsed", now)

        next_round = original.round + 1
        if next_round > self.max_counter_rounds:
            raise ConflictError(
                f"Negotiation thread {original.thread_id} reached the limit of "
                f"{self.max_counter_rounds} counter proposals",
                user_id=responder_id,
                error_code="counter_limit_reached",
                recoverable=False,
            )
        self._require_fit(slots, day, start, end, responder_id)

        original.status = "counter_proposed"
        original.responded_at = now
        self.repository.save_proposal(original)
        log_transition(original.id, "pending", "counter_proposed", actor_id=responder_id)

        counter = self._new_proposal(
            responder_id,
            original.proposer_id,
            day,
            start,
            end,
            message=message,
            thread_id=original.thread_id,
            parent_id=original.id,
            round=next_round,
        )
        self.repository.add_proposal(counter)
        logger.info(
            "Counter proposal created",
            proposal_id=counter.id,
            parent_id=original.id,
            thread_id=counter.thread_id,
            round=next_round,
        )

        event = self._event("proposal_countered", original.proposer_id, counter, actor_id=responder_id)
        event.extra["parent_id"] = original.id
        return _Mutation(result=ResponseOutcome(proposal=original, counter=counter), events=[event])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def cancel(self, session_id: str, requester_id: str) -> ConfirmedSession:
        """Cancel a confirmed session immediately and tell the other participant."""
        session = self.get_session(session_id)

        async with self.locks.acquire(*session.participants):
            session = self._owned_confirmed_session(session_id, requester_id)
            now = self._clock()
            session.status = "cancelled"
            session.cancelled_by = requester_id
            session.cancelled_at = now
            self.repository.save_session(session)

            proposal = self.repository.get_proposal(session.proposal_id)
            if proposal is not None and proposal.status == "confirmed":
                proposal.status = "cancelled"
                self.repository.save_proposal(proposal)
                log_transition(proposal.id, "confirmed", "cancelled", session_id=session.id)

            logger.info("Session cancelled", session_id=session.id, cancelled_by=requester_id)
            events = [
                self._event(
                    "session_cancelled",
                    session.other_participant(requester_id),
                    proposal,
                    session=session,
                    actor_id=requester_id,
                )
            ]

        await self._emit_all(events)
        return session

    async def complete(self, session_id: str, requester_id: str) -> ConfirmedSession:
        """Mark a confirmed session as done."""
        session = self.get_session(session_id)

        async with self.locks.acquire(*session.participants):
            session = self._owned_confirmed_session(session_id, requester_id)
            session.status = "completed"
            session.completed_at = self._clock()
            self.repository.save_session(session)
            logger.info("Session completed", session_id=session.id, reported_by=requester_id)

        return session

    def _owned_confirmed_session(self, session_id: str, requester_id: str) -> ConfirmedSession:
        session = self.get_session(session_id)
        if requester_id not in session.participants:
            raise NotAuthorizedError(
                "Only session participants can change this session",
                user_id=requester_id,
                error_code="not_participant",
            )
        if session.status != "confirmed":
            raise NotFoundError(
                f"Session {session_id} is already {session.status}",
                user_id=requester_id,
                error_code=f"session_{session.status}",
                recoverable=False,
            )
        return session

    # ------------------------------------------------------------------
    # Reconciliation and expiry
    # ------------------------------------------------------------------

    async def reconcile(self, user_id: str) -> list[Proposal]:
        """
        Expire every active proposal involving user_id whose slot left the
        pair's refreshed overlap. Returns the proposals that were expired.
        """
        expired: list[Proposal] = []
        for proposal in self.repository.proposals_for_user(user_id, active_only=True):
            result = await self._run_with_snapshot(
                proposal.proposer_id,
                proposal.partner_id,
                lambda slots, pid=proposal.id: self._reconcile_one(pid, slots),
            )
            if result is not None:
                expired.append(result)

        if expired:
            logger.info(
                "Reconciliation expired proposals",
                user_id=user_id,
                expired=[p.id for p in expired],
            )
        return expired

    def _reconcile_one(self, proposal_id: str, slots: list[OverlapSlot]) -> _Mutation:
        proposal = self.repository.get_proposal(proposal_id)
        if proposal is None or not proposal.is_active():
            return _Mutation()
        if overlap_engine.slot_fits(slots, proposal.day, proposal.start, proposal.end):
            return _Mutation()
        events = self._expire(proposal, "availability_changed", self._clock())
        return _Mutation(result=proposal, events=events)

    async def expire_overdue(self, now: datetime | None = None) -> list[Proposal]:
        """Expire pending proposals whose TTL has elapsed."""
        now = now or self._clock()
        expired: list[Proposal] = []

        for candidate in self.repository.active_proposals():
            if not candidate.is_overdue(now):
                continue
            async with self.locks.acquire(candidate.proposer_id, candidate.partner_id):
                current = self.repository.get_proposal(candidate.id)
                if current is None or not current.is_overdue(now):
                    continue
                events = self._expire(current, "ttl_elapsed", now)
            expired.append(current)
            await self._emit_all(events)

        return expired

    def _expire(self, proposal: Proposal, reason: str, now: datetime) -> list[NotificationEvent]:
        """Force a pending proposal to expired. Caller holds the pair lock."""
        previous = proposal.status
        proposal.status = "expired"
        proposal.responded_at = now
        self.repository.save_proposal(proposal)
        log_transition(proposal.id, previous, "expired", reason=reason)
        return [
            self._event("proposal_expired", user_id, proposal, reason=reason)
            for user_id in (proposal.proposer_id, proposal.partner_id)
        ]

    # ------------------------------------------------------------------
    # Auto-suggest
    # ------------------------------------------------------------------

    async def auto_suggest(self, user_a: str, user_b: str) -> Proposal | None:
        """
        Propose the best planned session on behalf of user_a.

        Returns None when either user has no availability, the pair already
        negotiates, or nothing fits.
        """
        if user_a == user_b:
            raise NotAuthorizedError(
                "Cannot coordinate with yourself", user_id=user_a, error_code="self_proposal"
            )
        if self.repository.active_for_pair(user_a, user_b):
            logger.info("Auto-suggest skipped, pair already negotiating", pair=(user_a, user_b))
            return None

        avail_a = await self.store.get(user_a)
        avail_b = await self.store.get(user_b)
        if avail_a.is_empty() or avail_b.is_empty():
            logger.info("Auto-suggest skipped, availability missing", pair=(user_a, user_b))
            return None

        slots = overlap_engine.intersect(avail_a, avail_b, self.min_overlap_hours)
        found = session_planner.candidates(slots, self.session_hours)
        best = session_planner.best_candidate(session_planner.plans(found, self.max_plans), found)
        if best is None:
            logger.info("Auto-suggest found no session", pair=(user_a, user_b))
            return None

        return await self.propose(
            user_a, user_b, best.day, best.start, best.end, source="auto_suggested"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _watch(self, user_id: str) -> None:
        """Make sure availability edits by user_id drive reconciliation."""
        self.store.on_change(user_id, self._on_availability_change)

    async def _on_availability_change(self, user_id: str) -> None:
        self._versions[user_id] = self._versions.get(user_id, 0) + 1
        await self.reconcile(user_id)

    def _snapshot_version(self, user_a: str, user_b: str) -> tuple[int, int]:
        return (self._versions.get(user_a, 0), self._versions.get(user_b, 0))

    async def _pair_slots(self, user_a: str, user_b: str) -> list[OverlapSlot]:
        avail_a = await self.store.get(user_a)
        avail_b = await self.store.get(user_b)
        return overlap_engine.intersect(avail_a, avail_b, self.min_overlap_hours)

    async def _run_with_snapshot(
        self,
        user_a: str,
        user_b: str,
        mutate: Callable[[list[OverlapSlot]], _Mutation],
    ) -> Any:
        """
        Fetch the pair's overlap, then run mutate under the pair lock.

        If either user's availability changed between the fetch and the
        lock, the snapshot is refetched. Events are emitted after release.
        """
        for attempt in range(1, SNAPSHOT_ATTEMPTS + 1):
            version = self._snapshot_version(user_a, user_b)
            slots = await self._pair_slots(user_a, user_b)
            async with self.locks.acquire(user_a, user_b):
                if self._snapshot_version(user_a, user_b) != version:
                    logger.info(
                        "Availability changed before pair lock, refreshing snapshot",
                        pair=(user_a, user_b),
                        attempt=attempt,
                    )
                    continue
                outcome = mutate(slots)

            await self._emit_all(outcome.events)
            if outcome.error is not None:
                raise outcome.error
            return outcome.result

        raise ConflictError(
            "Availability kept changing during the request, please retry",
            error_code="availability_changing",
        )

    def _validate_proposal_slot(self, day: str, start: int, end: int) -> str:
        day = validate_slot(day, start, end)
        if end - start < self.min_proposal_hours:
            raise InvalidSlotError(
                f"Sessions must be at least {self.min_proposal_hours} hours long",
                error_code="session_too_short",
            )
        return day

    def _require_fit(
        self, slots: list[OverlapSlot], day: str, start: int, end: int, user_id: str
    ) -> None:
        if not overlap_engine.slot_fits(slots, day, start, end):
            raise UnavailableError(
                f"{day} {start}-{end} is not inside both partners' availability",
                user_id=user_id,
                error_code="slot_unavailable",
            )

    def _new_proposal(
        self,
        proposer_id: str,
        partner_id: str,
        day: str,
        start: int,
        end: int,
        *,
        message: str = "",
        source: ProposalSource = "direct",
        thread_id: str | None = None,
        parent_id: str | None = None,
        round: int = 0,
    ) -> Proposal:
        now = self._clock()
        proposal_id = str(uuid4())
        return Proposal(
            id=proposal_id,
            proposer_id=proposer_id,
            partner_id=partner_id,
            day=day,
            start=start,
            end=end,
            created_at=now,
            thread_id=thread_id or proposal_id,
            expires_at=now + self.proposal_ttl,
            parent_id=parent_id,
            round=round,
            message=message,
            source=source,
        )

    def _event(
        self,
        event_type: EventType,
        recipient_id: str,
        proposal: Proposal | None,
        *,
        session: ConfirmedSession | None = None,
        actor_id: str | None = None,
        reason: str | None = None,
    ) -> NotificationEvent:
        source = session or proposal
        return NotificationEvent(
            type=event_type,
            recipient_id=recipient_id,
            occurred_at=self._clock(),
            proposal_id=proposal.id if proposal else None,
            session_id=session.id if session else None,
            actor_id=actor_id,
            day=source.day if source else None,
            start=source.start if source else None,
            end=source.end if source else None,
            reason=reason,
        )

    async def _emit_all(self, events: list[NotificationEvent]) -> None:
        for event in events:
            await self.notifier.emit(event)
