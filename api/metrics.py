"""
Prometheus metrics for the VidShield API and processing pipeline.

Metrics are exposed at /metrics in Prometheus text format.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# Upload / Streaming Metrics
# =============================================================================

VIDEO_UPLOADS_TOTAL = Counter(
    "vidshield_video_uploads_total",
    "Total video uploads",
    ["result"],  # success, rejected, error
)

STREAM_RESPONSES_TOTAL = Counter(
    "vidshield_stream_responses_total",
    "Streaming responses by status code",
    ["status_code"],  # 200, 206, 416
)

STREAM_ERRORS_TOTAL = Counter(
    "vidshield_stream_errors_total",
    "Streams terminated early by read errors",
)

# =============================================================================
# Processing Metrics
# =============================================================================

PROCESSING_JOBS_TOTAL = Counter(
    "vidshield_processing_jobs_total",
    "Total processing jobs",
    ["status"],  # submitted, rejected, completed, failed
)

PROCESSING_JOBS_ACTIVE = Gauge(
    "vidshield_processing_jobs_active",
    "Number of in-flight processing jobs",
)

PROCESSING_JOB_DURATION_SECONDS = Histogram(
    "vidshield_processing_job_duration_seconds",
    "Processing job duration in seconds",
    buckets=[0.1, 1, 5, 10, 30, 60, 120, 300],
)

MEDIA_TOOL_FALLBACKS_TOTAL = Counter(
    "vidshield_media_tool_fallbacks_total",
    "Times a fallback was used instead of ffprobe/ffmpeg output",
    ["artifact"],  # duration, thumbnail
)

# =============================================================================
# Notification Metrics
# =============================================================================

PROGRESS_EVENTS_TOTAL = Counter(
    "vidshield_progress_events_total",
    "Progress events published",
    ["status"],
)

PROGRESS_EVENTS_DROPPED_TOTAL = Counter(
    "vidshield_progress_events_dropped_total",
    "Progress events dropped because a subscriber queue was full",
)

SUBSCRIBERS_ACTIVE = Gauge(
    "vidshield_subscribers_active",
    "Number of connected progress subscribers",
)

# =============================================================================
# Database Metrics
# =============================================================================

DB_QUERY_RETRIES_TOTAL = Counter(
    "vidshield_db_query_retries_total",
    "Total database query retries due to transient errors",
)


def render_metrics() -> tuple:
    """Return (body, content_type) for the /metrics endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
