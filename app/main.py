# app/main.py
"""
Partner coordination service entrypoint with Redis lifecycle management.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.jobs.proposal_expiry_job import start_proposal_expiry_scheduler
from app.routes import availability, coordination, health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        availability_backend=settings.AVAILABILITY_BACKEND,
    )

    if settings.uses_redis():
        try:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e))
            raise

    sweep_task = None
    if settings.RUN_EXPIRY_SWEEP_IN_APP:
        logger.info("Starting in-process proposal expiry sweep")
        sweep_task = asyncio.create_task(start_proposal_expiry_scheduler())

    yield

    logger.info("Application shutting down")

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task

    if settings.uses_redis():
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))


app = FastAPI(
    title="Partner Coordination Service",
    description="Matches workout partners' weekly availability and negotiates sessions",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(availability.router)
app.include_router(coordination.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
