"""
VidShield API server.

Wires the video, streaming and event routers together with the services they
share (record store, progress notifier, media inspector, processor and job
runner). The services are created in the lifespan handler and live on
``app.state`` for the lifetime of the process.

Run with:
    python -m api.server
"""

import logging
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.common import (
    RequestIDFilter,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    check_health,
    limiter,
    rate_limit_exceeded_handler,
)
from api.database import create_tables, database
from api.db_retry import DatabaseRetryableError
from api.errors import AccessDeniedError, JobAlreadyRunningError, VideoNotFoundError, VideoNotReadyError
from api.events import router as events_router
from api.metrics import render_metrics
from api.pubsub import ProgressNotifier
from api.redis_client import RedisClient
from api.stream import router as stream_router
from api.video_store import VideoStore
from api.videos import router as videos_router
from config import (
    AUTH_ROLE_HEADER,
    AUTH_TENANT_HEADER,
    AUTH_USER_HEADER,
    CORS_ALLOWED_ORIGINS,
    HOST,
    JOB_SHUTDOWN_TIMEOUT,
    LOG_LEVEL,
    MAX_CONCURRENT_JOBS,
    PORT,
    PROCESSING_STAGE_DELAY,
    RATE_LIMIT_ENABLED,
    RATE_LIMIT_STORAGE_URL,
    THUMBNAILS_DIR,
    UPLOADS_DIR,
)
from worker.job_runner import JobRunner
from worker.media_inspector import MediaInspector
from worker.processor import VideoProcessor

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIDFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown."""
    configure_logging()
    if RATE_LIMIT_ENABLED and RATE_LIMIT_STORAGE_URL == "memory://":
        logger.warning(
            "Rate limiting is using in-memory storage. "
            "For deployments with multiple instances, configure Redis: "
            "VIDSHIELD_RATE_LIMIT_STORAGE_URL=redis://localhost:6379"
        )

    UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    create_tables()
    await database.connect()

    store = VideoStore(database)
    notifier = ProgressNotifier()
    inspector = MediaInspector(thumbnails_dir=THUMBNAILS_DIR)
    processor = VideoProcessor(
        store,
        notifier,
        inspector=inspector,
        stage_delay=PROCESSING_STAGE_DELAY,
        rng=random.Random(),
    )
    runner = JobRunner(processor, max_concurrent_jobs=MAX_CONCURRENT_JOBS)

    app.state.store = store
    app.state.notifier = notifier
    app.state.inspector = inspector
    app.state.runner = runner
    app.state.uploads_dir = UPLOADS_DIR
    logger.info(f"VidShield started (uploads: {UPLOADS_DIR})")

    try:
        yield
    finally:
        cancelled = await runner.shutdown(timeout=JOB_SHUTDOWN_TIMEOUT)
        if cancelled:
            logger.warning(f"Shutdown interrupted processing of {len(cancelled)} video(s)")
        await RedisClient.reset_instance()
        await database.disconnect()


app = FastAPI(title="VidShield", description="Multi-tenant video processing and streaming", lifespan=lifespan)

# Register rate limiter with the app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(VideoNotFoundError)
@app.exception_handler(AccessDeniedError)
@app.exception_handler(JobAlreadyRunningError)
async def domain_error_handler(request: Request, exc):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(VideoNotReadyError)
async def video_not_ready_handler(request: Request, exc: VideoNotReadyError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "status": exc.status, "processingProgress": exc.progress},
    )


@app.exception_handler(DatabaseRetryableError)
async def database_retryable_handler(request: Request, exc: DatabaseRetryableError):
    """Handle transient database errors with a 503 response."""
    logger.warning(f"Database temporarily unavailable: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Database temporarily unavailable, please retry"},
        headers={"Retry-After": "1"},
    )


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

# If CORS_ALLOWED_ORIGINS is empty, allow same-origin only (no CORS headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=bool(CORS_ALLOWED_ORIGINS),
    allow_methods=["GET", "HEAD", "OPTIONS", "POST", "DELETE"],
    allow_headers=["Content-Type", "Range", AUTH_USER_HEADER, AUTH_TENANT_HEADER, AUTH_ROLE_HEADER, "X-Request-ID"],
    expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "X-Request-ID"],
)

app.include_router(videos_router)
app.include_router(stream_router)
app.include_router(events_router)


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Returns 503 if the database or upload storage is unhealthy.
    """
    result = await check_health(database, request.app.state.uploads_dir)
    runner = request.app.state.runner
    return JSONResponse(
        status_code=result["status_code"],
        content={
            "status": "healthy" if result["healthy"] else "unhealthy",
            "checks": result["checks"],
            "jobs": runner.queue_status()["size"],
        },
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics in text exposition format."""
    body, content_type = render_metrics()
    return Response(content=body, media_type=content_type)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT)
