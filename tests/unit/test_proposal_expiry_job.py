import asyncio

import pytest
from fastapi.testclient import TestClient

from app import main
from app.config import Settings
from app.jobs.proposal_expiry_job import (
    ProposalExpiryJob,
    ProposalExpiryJobError,
    proposal_expiry_job,
)
from app.services.coordination import get_coordinator


@pytest.mark.asyncio
async def test_run_once_reports_expired_proposals(coordinator, partners, clock):
    alice, bob = partners
    await coordinator.propose(alice, bob, "mon", 18, 20)
    job = ProposalExpiryJob(coordinator)

    first = await job.run_once()
    assert first["proposals_expired"] == 0

    clock.advance(days=8)
    second = await job.run_once()

    assert second["proposals_expired"] == 1
    assert second["pairs_touched"] == 1
    assert job.get_job_status()["last_run_time"] is not None
    assert job.is_running is False


@pytest.mark.asyncio
async def test_run_once_skips_when_already_running(coordinator):
    job = ProposalExpiryJob(coordinator)
    job.is_running = True

    result = await job.run_once()

    assert result == {"skipped": True, "reason": "already_running"}


@pytest.mark.asyncio
async def test_run_once_wraps_failures(coordinator, monkeypatch):
    job = ProposalExpiryJob(coordinator)

    async def broken(now=None):
        raise RuntimeError("repository unavailable")

    monkeypatch.setattr(coordinator, "expire_overdue", broken)

    with pytest.raises(ProposalExpiryJobError):
        await job.run_once()

    assert job.is_running is False


def test_sweep_runs_in_app_by_default():
    assert Settings.model_fields["RUN_EXPIRY_SWEEP_IN_APP"].default is True
    assert proposal_expiry_job.coordinator is get_coordinator()


def test_app_lifespan_starts_and_stops_sweep(monkeypatch):
    started = []
    stopped = []

    async def fake_scheduler():
        started.append(True)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            stopped.append(True)
            raise

    monkeypatch.setattr(main, "start_proposal_expiry_scheduler", fake_scheduler)
    monkeypatch.setattr(main.settings, "RUN_EXPIRY_SWEEP_IN_APP", True)
    monkeypatch.setattr(main.settings, "AVAILABILITY_BACKEND", "memory")

    with TestClient(main.app) as client:
        assert client.get("/healthz").status_code == 200

    assert started == [True]
    assert stopped == [True]
