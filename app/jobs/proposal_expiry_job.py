"""
Proposal expiry job.
Periodically expires pending proposals whose time-to-live has elapsed.
Each expiry takes the pair lock, so the sweep cannot race a partner's
response to the same proposal.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.coordination import ProposalCoordinator, get_coordinator

logger = get_logger(__name__)

# Job configuration
JOB_INTERVAL_MINUTES = settings.EXPIRY_SWEEP_INTERVAL_MINUTES
ERROR_BACKOFF_SECONDS = 60


class ProposalExpiryJobError(Exception):
    """Raised when a sweep fails for a system reason."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ExpiryMetrics:
    """Metrics tracking for one sweep."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.proposals_expired = 0
        self.pairs_touched: set[tuple[str, str]] = set()
        self.total_duration_seconds = 0.0

    def record_expired(self, pair: tuple[str, str]):
        self.proposals_expired += 1
        self.pairs_touched.add(pair)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time.isoformat(),
            "proposals_expired": self.proposals_expired,
            "pairs_touched": len(self.pairs_touched),
            "total_duration_seconds": round(self.total_duration_seconds, 3),
        }


class ProposalExpiryJob:
    """Background job sweeping overdue proposals."""

    def __init__(self, coordinator: ProposalCoordinator | None = None):
        self.coordinator = coordinator or get_coordinator()
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = ExpiryMetrics()

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single sweep.

        Returns:
            Dict: sweep metrics

        Raises:
            ProposalExpiryJobError: if the sweep fails
        """
        if self.is_running:
            logger.warning("Proposal expiry job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.metrics.reset()

            expired = await self.coordinator.expire_overdue(now)
            for proposal in expired:
                self.metrics.record_expired(proposal.pair)

            self.metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            result = self.metrics.to_dict()
            logger.info("Proposal expiry job completed", **result)
            return result

        except Exception as e:
            logger.error("Proposal expiry job failed", error=str(e), error_type=type(e).__name__)
            raise ProposalExpiryJobError(
                f"Proposal expiry job failed: {e}", operation="run_once"
            ) from e

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": JOB_INTERVAL_MINUTES,
            "last_metrics": self.metrics.to_dict(),
        }


proposal_expiry_job = ProposalExpiryJob()


async def run_proposal_expiry_job() -> dict:
    """Run one sweep with the shared job instance."""
    return await proposal_expiry_job.run_once()


async def start_proposal_expiry_scheduler():
    """Run the sweep forever at the configured interval."""
    logger.info("Starting proposal expiry scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            metrics = await run_proposal_expiry_job()
            if not metrics.get("skipped", False) and metrics["proposals_expired"]:
                logger.info("Proposal expiry cycle expired proposals", **metrics)

            await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)

        except ProposalExpiryJobError as e:
            logger.error("Error in proposal expiry scheduler", error=str(e))
            # Back off before retrying to avoid tight error loops
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
