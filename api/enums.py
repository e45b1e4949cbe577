"""
Centralized enums for status values used throughout the application.
Using str-based enums for database compatibility.
"""

from enum import Enum


class VideoStatus(str, Enum):
    """Status values for video processing."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SensitivityStatus(str, Enum):
    """Outcome of the content sensitivity analysis."""

    UNKNOWN = "unknown"
    SAFE = "safe"
    FLAGGED = "flagged"


class UserRole(str, Enum):
    """Roles carried by an authenticated principal."""

    VIEWER = "viewer"  # Own videos only, read-only
    EDITOR = "editor"  # Upload, manage own videos
    ADMIN = "admin"  # Everything within the tenant
