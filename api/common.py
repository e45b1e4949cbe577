"""
HTTP plumbing shared by the API routers: middleware, client IP resolution,
rate-limit responses and health checks.
"""

import asyncio
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from config import RATE_LIMIT_ENABLED, RATE_LIMIT_STORAGE_URL, TRUSTED_PROXIES

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
STORAGE_CHECK_TIMEOUT = 2  # seconds

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware UTC.

    SQLite doesn't store timezone info, so datetimes read back may be naive
    even though they were written as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_request_id() -> Optional[str]:
    """Request id of the request being handled, if any."""
    return _request_id.get()


class RequestIDFilter(logging.Filter):
    """Attach the current request id to log records as ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or generate an X-Request-ID for every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        token = _request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


def get_real_ip(request: Request) -> str:
    """
    Get the client IP, honouring X-Forwarded-For only from trusted proxies.

    Configure VIDSHIELD_TRUSTED_PROXIES with your proxy IPs.
    """
    client_ip = get_remote_address(request)

    if TRUSTED_PROXIES and client_ip in TRUSTED_PROXIES:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

    return client_ip


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with a proper JSON response."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "error": str(exc.detail),
        },
    )


# In-memory storage by default; point VIDSHIELD_RATE_LIMIT_STORAGE_URL at Redis for multiple instances
limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=RATE_LIMIT_STORAGE_URL if RATE_LIMIT_ENABLED else None,
    enabled=RATE_LIMIT_ENABLED,
)


# Services are built once in the application lifespan and stored on app.state
def get_store(request: Request):
    return request.app.state.store


def get_runner(request: Request):
    return request.app.state.runner


def get_notifier(request: Request):
    return request.app.state.notifier


def get_inspector(request: Request):
    return request.app.state.inspector


def get_uploads_dir(request: Request) -> Path:
    return request.app.state.uploads_dir


def _check_storage_sync(uploads_dir: Path) -> bool:
    """Verify the uploads directory exists and is writable (runs in a thread)."""
    try:
        if not uploads_dir.is_dir():
            return False
        test_file = uploads_dir / f".health_check_{uuid.uuid4().hex}"
        test_file.write_text("health check")
        test_file.unlink()
        return True
    except OSError:
        return False


async def check_health(db, uploads_dir: Path) -> dict:
    """
    Perform health checks for database and storage.

    Returns a dict with ``checks``, ``healthy`` and ``status_code``
    (200 if healthy, 503 if not).
    """
    checks = {
        "database": False,
        "storage": False,
    }

    try:
        await db.fetch_one("SELECT 1")
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    try:
        checks["storage"] = await asyncio.wait_for(
            asyncio.to_thread(_check_storage_sync, uploads_dir),
            timeout=STORAGE_CHECK_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.warning("Storage health check timed out")
    except Exception as e:
        logger.warning(f"Storage health check failed: {e}")

    healthy = all(checks.values())
    return {
        "checks": checks,
        "healthy": healthy,
        "status_code": 200 if healthy else 503,
    }
