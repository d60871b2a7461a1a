# app/routes/health.py
"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Depends

from app.config import settings
from app.services.coordination import ProposalCoordinator, get_coordinator
from app.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "partner-coordination"}


@router.get("/readyz")
async def readyz(coordinator: ProposalCoordinator = Depends(get_coordinator)):
    """
    Readiness check covering the availability backend and coordinator state.
    """
    checks = {}
    overall_ok = True

    # 1) Availability backend
    if settings.uses_redis():
        t0 = time.time()
        try:
            redis_ok = await fast_redis.ping()
            checks["redis"] = {
                "ok": bool(redis_ok),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = overall_ok and bool(redis_ok)
        except Exception as e:
            checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False
    else:
        checks["availability_store"] = {"ok": True, "backend": "memory"}

    # 2) Coordinator bookkeeping
    checks["coordinator"] = {
        "ok": True,
        "locked_pairs": coordinator.locks.active_pairs(),
        **coordinator.repository.stats(),
    }

    return {"overall_ok": overall_ok, "checks": checks}
