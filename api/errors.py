"""
Domain errors and message sanitization.

The exception classes here are raised by routers and services and mapped to
HTTP responses by the handlers registered in ``api.server``. The sanitizers
keep internal details (paths, tool output) out of client-visible messages
while the original text is still logged.
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)


class VideoNotFoundError(Exception):
    """Unknown video id, or the stored media file is gone."""

    status_code = 404

    def __init__(self, message: str = "Video not found"):
        self.message = message
        super().__init__(message)


class AccessDeniedError(Exception):
    """Tenant mismatch or insufficient role."""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        self.message = message
        super().__init__(message)


class VideoNotReadyError(Exception):
    """Streaming was requested before processing completed."""

    status_code = 400

    def __init__(self, status: str, progress: int, message: str = "Video is not ready for streaming"):
        self.message = message
        self.status = status
        self.progress = progress
        super().__init__(message)


class JobAlreadyRunningError(Exception):
    """A processing job for this video is still in flight."""

    status_code = 409

    def __init__(self, video_id: str, message: str = "Video is currently being processed"):
        self.message = message
        self.video_id = video_id
        super().__init__(message)


class MediaToolError(RuntimeError):
    """ffprobe/ffmpeg missing, timed out or failed. Always recovered locally."""

    pass


# Patterns that indicate internal details
INTERNAL_PATTERNS = [
    r"/home/\w+/",
    r"/mnt/\w+/",
    r"/tmp/\w+",
    r"/var/\w+/",
    r"line \d+",
    r'File "[^"]+\.py"',
    r"Permission denied",
    r"No such file or directory",
    r"UNIQUE constraint failed",
    r"sqlite3?\.",
]

ERROR_MESSAGES = {
    "source_not_found": "Video file not found",
    "database": "A database error occurred. Please try again.",
    "permission": "A file access error occurred. Please contact support.",
    "timeout": "Video analysis timed out. Please try again.",
    "general": "Video processing failed. Please try again.",
}


def truncate_error(error: Optional[str], max_length: int) -> Optional[str]:
    """Truncate an error message to ``max_length`` characters, marking the cut."""
    if error is None or len(error) <= max_length:
        return error
    suffix = "... (truncated)"
    if max_length <= len(suffix):
        return error[:max_length]
    return error[: max_length - len(suffix)] + suffix


def sanitize_error_message(
    error: Optional[str],
    log_original: bool = True,
    context: str = "",
) -> Optional[str]:
    """
    Sanitize an error message for safe display to API clients and subscribers.

    Args:
        error: The original error message (may contain internal details)
        log_original: Whether to log the original message before sanitizing
        context: Additional context for logging (e.g., "video_id=abc")

    Returns:
        A user-friendly message, or None if input was None
    """
    if error is None:
        return None

    if log_original and error:
        log_msg = "Original error"
        if context:
            log_msg += f" ({context})"
        log_msg += f": {error}"
        logger.warning(log_msg)

    error_lower = error.lower()

    if "no such file" in error_lower or "not found" in error_lower:
        return ERROR_MESSAGES["source_not_found"]

    if "timeout" in error_lower or "timed out" in error_lower:
        return ERROR_MESSAGES["timeout"]

    if "sqlite" in error_lower or "database" in error_lower or "constraint" in error_lower:
        return ERROR_MESSAGES["database"]

    if "permission" in error_lower:
        return ERROR_MESSAGES["permission"]

    for pattern in INTERNAL_PATTERNS:
        if re.search(pattern, error, re.IGNORECASE):
            return ERROR_MESSAGES["general"]

    # Short messages without path-like segments are safe to pass through
    if len(error) < 100 and "/" not in error and "\\" not in error:
        return error

    return ERROR_MESSAGES["general"]
