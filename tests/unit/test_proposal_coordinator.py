"""
Tests for the proposal coordinator: negotiation transitions, reconciliation,
expiry and auto-suggest.
"""

import asyncio

import pytest

from app.models.domain.availability_domain import WeeklyAvailability
from app.models.domain.coordination_errors import (
    ConflictError,
    CoordinationError,
    InvalidSlotError,
    NotAuthorizedError,
    NotFoundError,
    UnavailableError,
)
from app.services.coordination import ProposalCoordinator


@pytest.mark.asyncio
async def test_overlap_and_plans_for_worked_example(coordinator, partners):
    alice, bob = partners

    overlap = await coordinator.get_overlap(alice, bob)
    plans = await coordinator.get_weekly_plans(bob, alice)

    assert [(s.day, s.start, s.end) for s in overlap] == [("mon", 18, 20), ("wed", 19, 21)]
    assert len(plans) == 1
    assert plans[0].gap == 2
    assert plans[0].score == 1


@pytest.mark.asyncio
async def test_propose_creates_pending_proposal_and_notifies_partner(coordinator, notifier, partners, clock):
    alice, bob = partners

    proposal = await coordinator.propose(alice, bob, "Wednesday", 19, 21, message="leg day?")

    assert proposal.status == "pending"
    assert proposal.day == "wed"
    assert proposal.thread_id == proposal.id
    assert proposal.round == 0
    assert proposal.expires_at > clock()
    assert coordinator.active_proposal_for(bob, alice) is proposal

    assert len(notifier.events) == 1
    event = notifier.events[0]
    assert event.type == "proposal_created"
    assert event.recipient_id == bob
    assert event.actor_id == alice
    assert event.proposal_id == proposal.id


@pytest.mark.asyncio
async def test_second_proposal_for_pair_conflicts(coordinator, partners):
    alice, bob = partners
    await coordinator.propose(alice, bob, "mon", 18, 20)

    with pytest.raises(ConflictError) as exc:
        await coordinator.propose(bob, alice, "wed", 19, 21)

    assert exc.value.error_code == "active_proposal_exists"
    assert len(coordinator.list_proposals(alice, active_only=True)) == 1


@pytest.mark.asyncio
async def test_propose_outside_overlap_is_unavailable(coordinator, notifier, partners):
    alice, bob = partners

    with pytest.raises(UnavailableError):
        await coordinator.propose(alice, bob, "wed", 18, 20)

    assert notifier.events == []
    assert coordinator.active_proposal_for(alice, bob) is None


@pytest.mark.asyncio
async def test_propose_to_self_is_rejected(coordinator, partners):
    alice, _ = partners

    with pytest.raises(NotAuthorizedError):
        await coordinator.propose(alice, alice, "mon", 18, 20)


@pytest.mark.asyncio
@pytest.mark.parametrize("day, start, end", [("mon", 18, 19), ("noday", 18, 20), ("mon", 20, 18)])
async def test_propose_rejects_bad_slots(coordinator, partners, day, start, end):
    alice, bob = partners

    with pytest.raises(InvalidSlotError):
        await coordinator.propose(alice, bob, day, start, end)


@pytest.mark.asyncio
async def test_accept_confirms_session(coordinator, notifier, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "wed", 19, 21)
    notifier.clear()

    outcome = await coordinator.respond(proposal.id, bob, "accept")

    assert outcome.proposal.status == "confirmed"
    assert outcome.session is not None
    session = outcome.session
    assert session.status == "confirmed"
    assert session.participants == (alice, bob)
    assert (session.day, session.start, session.end) == ("wed", 19, 21)
    assert outcome.proposal.session_id == session.id
    assert coordinator.get_session(session.id) is session
    assert coordinator.active_proposal_for(alice, bob) is None

    types = [(e.type, e.recipient_id) for e in notifier.events]
    assert types == [
        ("proposal_accepted", alice),
        ("session_confirmed", alice),
        ("session_confirmed", bob),
    ]


@pytest.mark.asyncio
async def test_reject_notifies_proposer_and_frees_pair(coordinator, notifier, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    outcome = await coordinator.respond(proposal.id, bob, "reject", message="busy")

    assert outcome.proposal.status == "rejected"
    assert outcome.proposal.message == "busy"
    assert notifier.of_type("proposal_rejected")[0].recipient_id == alice

    # Pair is free again
    again = await coordinator.propose(bob, alice, "mon", 18, 20)
    assert again.status == "pending"


@pytest.mark.asyncio
async def test_counter_swaps_roles_and_keeps_thread(coordinator, notifier, partners):
    alice, bob = partners
    original = await coordinator.propose(alice, bob, "mon", 18, 20)

    outcome = await coordinator.respond(original.id, bob, "counter", counter_slot=("wed", 19, 21))

    counter = outcome.counter
    assert outcome.proposal.status == "counter_proposed"
    assert counter.status == "pending"
    assert counter.proposer_id == bob
    assert counter.partner_id == alice
    assert counter.thread_id == original.thread_id
    assert counter.parent_id == original.id
    assert counter.round == 1
    assert coordinator.active_proposal_for(alice, bob) is counter

    event = notifier.of_type("proposal_countered")[0]
    assert event.recipient_id == alice
    assert event.proposal_id == counter.id
    assert event.extra["parent_id"] == original.id

    # The original proposer now answers the counter
    accepted = await coordinator.respond(counter.id, alice, "accept")
    assert accepted.session is not None
    assert coordinator.repository.thread(original.thread_id) == [original, counter]


@pytest.mark.asyncio
async def test_counter_needs_fitting_slot(coordinator, partners):
    alice, bob = partners
    original = await coordinator.propose(alice, bob, "mon", 18, 20)

    with pytest.raises(InvalidSlotError):
        await coordinator.respond(original.id, bob, "counter")

    with pytest.raises(UnavailableError):
        await coordinator.respond(original.id, bob, "counter", counter_slot=("tue", 18, 20))

    # Failed counters leave the original open
    assert coordinator.get_proposal(original.id).status == "pending"


@pytest.mark.asyncio
async def test_counter_rounds_are_capped(store, notifier, clock, partners):
    alice, bob = partners
    coordinator = ProposalCoordinator(store, notifier, clock=clock, max_counter_rounds=2)
    current = await coordinator.propose(alice, bob, "mon", 18, 20)
    slots = [("wed", 19, 21), ("mon", 18, 20)]

    for round_number in (1, 2):
        outcome = await coordinator.respond(
            current.id, current.partner_id, "counter", counter_slot=slots[round_number % 2]
        )
        current = outcome.counter
        assert current.round == round_number

    with pytest.raises(ConflictError) as exc:
        await coordinator.respond(current.id, current.partner_id, "counter", counter_slot=("wed", 19, 21))

    assert exc.value.error_code == "counter_limit_reached"
    assert coordinator.get_proposal(current.id).status == "pending"


@pytest.mark.asyncio
async def test_only_partner_can_respond(coordinator, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    with pytest.raises(NotAuthorizedError):
        await coordinator.respond(proposal.id, alice, "accept")

    with pytest.raises(NotAuthorizedError):
        await coordinator.respond(proposal.id, "mallory", "reject")

    assert coordinator.get_proposal(proposal.id).status == "pending"


@pytest.mark.asyncio
async def test_responding_to_finished_proposal_is_not_found(coordinator, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)
    await coordinator.respond(proposal.id, bob, "reject")

    with pytest.raises(NotFoundError) as exc:
        await coordinator.respond(proposal.id, bob, "accept")

    assert exc.value.error_code == "proposal_rejected"


@pytest.mark.asyncio
async def test_unknown_proposal_and_decision(coordinator, partners):
    alice, bob = partners

    with pytest.raises(NotFoundError):
        await coordinator.respond("missing", bob, "accept")

    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)
    with pytest.raises(CoordinationError) as exc:
        await coordinator.respond(proposal.id, bob, "maybe")

    assert exc.value.error_code == "invalid_decision"


@pytest.mark.asyncio
async def test_availability_edit_expires_pending_proposal(coordinator, notifier, store, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "wed", 19, 21)
    notifier.clear()

    await store.set(bob, WeeklyAvailability({"mon": [(18, 20)]}))

    assert coordinator.get_proposal(proposal.id).status == "expired"
    assert sorted(e.recipient_id for e in notifier.of_type("proposal_expired")) == [alice, bob]
    assert all(e.reason == "availability_changed" for e in notifier.events)

    with pytest.raises(NotFoundError) as exc:
        await coordinator.respond(proposal.id, bob, "accept")
    assert exc.value.error_code == "proposal_expired"


@pytest.mark.asyncio
async def test_unrelated_edit_keeps_proposal(coordinator, store, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "wed", 19, 21)

    await store.set(alice, WeeklyAvailability({"wed": [(17, 22)], "sat": [(8, 12)]}))

    assert coordinator.get_proposal(proposal.id).status == "pending"


@pytest.mark.asyncio
async def test_accept_against_stale_slot_expires(store, notifier, clock, partners):
    alice, bob = partners
    coordinator = ProposalCoordinator(store, notifier, clock=clock)
    proposal = await coordinator.propose(alice, bob, "wed", 19, 21)

    # Edit slips past the change hook: drop every listener before writing
    store._listeners.clear()
    await store.set(bob, WeeklyAvailability({"mon": [(18, 20)]}))
    assert coordinator.get_proposal(proposal.id).status == "pending"

    with pytest.raises(NotFoundError) as exc:
        await coordinator.respond(proposal.id, bob, "accept")

    assert exc.value.error_code == "proposal_expired"
    assert coordinator.get_proposal(proposal.id).status == "expired"
    assert coordinator.list_sessions(bob) == []
    assert len(notifier.of_type("proposal_expired")) == 2


@pytest.mark.asyncio
async def test_cancel_session_notifies_other_participant(coordinator, notifier, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)
    session = (await coordinator.respond(proposal.id, bob, "accept")).session
    notifier.clear()

    cancelled = await coordinator.cancel(session.id, alice)

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == alice
    assert coordinator.get_proposal(proposal.id).status == "cancelled"
    assert [(e.type, e.recipient_id) for e in notifier.events] == [("session_cancelled", bob)]

    with pytest.raises(NotFoundError):
        await coordinator.cancel(session.id, bob)


@pytest.mark.asyncio
async def test_only_participants_change_sessions(coordinator, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)
    session = (await coordinator.respond(proposal.id, bob, "accept")).session

    with pytest.raises(NotAuthorizedError):
        await coordinator.cancel(session.id, "mallory")

    completed = await coordinator.complete(session.id, bob)
    assert completed.status == "completed"
    assert completed.completed_at is not None

    with pytest.raises(NotFoundError):
        await coordinator.cancel(session.id, alice)


@pytest.mark.asyncio
async def test_expire_overdue_uses_ttl(coordinator, notifier, partners, clock):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    assert await coordinator.expire_overdue() == []

    clock.advance(hours=168)
    expired = await coordinator.expire_overdue()

    assert [p.id for p in expired] == [proposal.id]
    assert proposal.status == "expired"
    assert {e.reason for e in notifier.of_type("proposal_expired")} == {"ttl_elapsed"}
    assert coordinator.active_proposal_for(alice, bob) is None


@pytest.mark.asyncio
async def test_auto_suggest_picks_best_plan_session(coordinator, partners):
    alice, bob = partners

    proposal = await coordinator.auto_suggest(alice, bob)

    assert proposal is not None
    assert proposal.source == "auto_suggested"
    assert proposal.proposer_id == alice
    assert (proposal.day, proposal.start, proposal.end) == ("mon", 18, 20)

    # Pair is now negotiating
    assert await coordinator.auto_suggest(bob, alice) is None


@pytest.mark.asyncio
async def test_auto_suggest_without_availability(coordinator, set_availability):
    await set_availability("carol", {"tue": [(6, 9)]})

    assert await coordinator.auto_suggest("carol", "dave") is None


@pytest.mark.asyncio
async def test_auto_suggest_falls_back_to_single_day(coordinator, set_availability):
    await set_availability("carol", {"tue": [(6, 9)]})
    await set_availability("dave", {"tue": [(6, 12)]})

    proposal = await coordinator.auto_suggest("carol", "dave")

    assert (proposal.day, proposal.start, proposal.end) == ("tue", 6, 8)


@pytest.mark.asyncio
async def test_concurrent_proposals_leave_one_active(coordinator, partners):
    alice, bob = partners

    results = await asyncio.gather(
        coordinator.propose(alice, bob, "mon", 18, 20),
        coordinator.propose(bob, alice, "wed", 19, 21),
        coordinator.propose(alice, bob, "wed", 19, 21),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 2
    assert len(coordinator.list_proposals(alice, active_only=True)) == 1


@pytest.mark.asyncio
async def test_concurrent_accept_and_reject_resolve_once(coordinator, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    results = await asyncio.gather(
        coordinator.respond(proposal.id, bob, "accept"),
        coordinator.respond(proposal.id, bob, "reject"),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, NotFoundError)) == 1
    assert coordinator.get_proposal(proposal.id).status in ("confirmed", "rejected")
    assert len(coordinator.list_sessions(bob)) == (1 if proposal.status == "confirmed" else 0)


@pytest.mark.asyncio
async def test_independent_pairs_negotiate_in_parallel(coordinator, set_availability):
    for user in ("u1", "u2", "u3", "u4"):
        await set_availability(user, {"fri": [(6, 10)]})

    first, second = await asyncio.gather(
        coordinator.propose("u1", "u2", "fri", 6, 8),
        coordinator.propose("u3", "u4", "fri", 6, 8),
    )

    assert first.pair != second.pair
    assert coordinator.locks.active_pairs() == 0


@pytest.mark.asyncio
async def test_accept_after_ttl_expires_proposal(coordinator, notifier, partners, clock):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)
    notifier.clear()

    clock.advance(days=30)
    with pytest.raises(NotFoundError) as exc:
        await coordinator.respond(proposal.id, bob, "accept")

    assert exc.value.error_code == "proposal_expired"
    assert coordinator.get_proposal(proposal.id).status == "expired"
    assert coordinator.list_sessions(bob) == []
    assert sorted(e.recipient_id for e in notifier.of_type("proposal_expired")) == [alice, bob]
    assert {e.reason for e in notifier.events} == {"ttl_elapsed"}
    assert coordinator.active_proposal_for(alice, bob) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "decision, counter_slot", [("reject", None), ("counter", ("wed", 19, 21))]
)
async def test_any_response_after_ttl_expires_proposal(
    coordinator, notifier, partners, clock, decision, counter_slot
):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    clock.advance(hours=168)
    with pytest.raises(NotFoundError) as exc:
        await coordinator.respond(proposal.id, bob, decision, counter_slot=counter_slot)

    assert exc.value.error_code == "proposal_expired"
    assert proposal.status == "expired"
    assert notifier.of_type("proposal_rejected") == []
    assert notifier.of_type("proposal_countered") == []
    assert coordinator.list_proposals(alice, active_only=True) == []


@pytest.mark.asyncio
async def test_edit_while_accept_waits_on_pair_lock(coordinator, notifier, store, partners):
    alice, bob = partners
    proposal = await coordinator.propose(alice, bob, "wed", 19, 21)

    async with coordinator.locks.acquire(alice, bob):
        accept = asyncio.create_task(coordinator.respond(proposal.id, bob, "accept"))
        await asyncio.sleep(0)
        edit = asyncio.create_task(store.set(bob, WeeklyAvailability({"mon": [(18, 20)]})))
        for _ in range(3):
            await asyncio.sleep(0)
        assert not accept.done()

    accept_result, edit_result = await asyncio.gather(accept, edit, return_exceptions=True)

    assert isinstance(accept_result, NotFoundError)
    assert accept_result.error_code == "proposal_expired"
    assert edit_result is None
    assert coordinator.get_proposal(proposal.id).status == "expired"
    assert coordinator.list_sessions(alice) == []
    assert notifier.of_type("session_confirmed") == []
    assert len(notifier.of_type("proposal_expired")) == 2


@pytest.mark.asyncio
async def test_snapshot_is_refetched_when_availability_changes_before_lock(
    coordinator, partners, monkeypatch
):
    alice, bob = partners
    fetch_overlap = coordinator._pair_slots
    calls = []

    async def edited_once(user_a, user_b):
        slots = await fetch_overlap(user_a, user_b)
        calls.append((user_a, user_b))
        if len(calls) == 1:
            coordinator._versions[bob] = coordinator._versions.get(bob, 0) + 1
        return slots

    monkeypatch.setattr(coordinator, "_pair_slots", edited_once)

    proposal = await coordinator.propose(alice, bob, "mon", 18, 20)

    assert proposal.status == "pending"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_availability_changing_after_repeated_edits(coordinator, notifier, partners, monkeypatch):
    alice, bob = partners
    fetch_overlap = coordinator._pair_slots
    calls = []

    async def always_edited(user_a, user_b):
        slots = await fetch_overlap(user_a, user_b)
        calls.append((user_a, user_b))
        coordinator._versions[alice] = coordinator._versions.get(alice, 0) + 1
        return slots

    monkeypatch.setattr(coordinator, "_pair_slots", always_edited)

    with pytest.raises(ConflictError) as exc:
        await coordinator.propose(alice, bob, "mon", 18, 20)

    assert exc.value.error_code == "availability_changing"
    assert len(calls) == 3
    assert coordinator.active_proposal_for(alice, bob) is None
    assert notifier.events == []
    assert coordinator.locks.active_pairs() == 0
