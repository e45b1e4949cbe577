"""
Per-video processing state machine.

A run walks one video through pending -> processing -> completed|failed:

1. Load the record (absent: log and stop, there is nobody to notify).
2. Missing media file: straight to failed, never entering processing.
3. processing at 0%, then a fixed series of stages, each sleeping for the
   configured delay, persisting its progress and emitting an event.
4. Classification, duration and thumbnail are computed and persisted together
   with status=completed in a single update.

Any error after step 2 marks the video failed (progress 0) and emits a failure
event carrying a sanitized message. Thumbnail and duration problems are never
errors: they fall back to a placeholder image and a size-based estimate.
"""

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from api.database import utcnow
from api.enums import SensitivityStatus, VideoStatus
from api.errors import sanitize_error_message
from api.metrics import PROCESSING_JOB_DURATION_SECONDS, PROCESSING_JOBS_TOTAL
from api.pubsub import ProgressNotifier
from api.schemas import ProgressEvent
from api.video_store import VideoStore
from config import (
    DURATION_ESTIMATE_BYTES_PER_SECOND,
    DURATION_ESTIMATE_MAX_SECONDS,
    DURATION_ESTIMATE_MIN_SECONDS,
    FLAGGED_THRESHOLD,
    PROCESSING_STAGE_DELAY,
)
from worker.media_inspector import MediaInspector
from worker.thumbnails import placeholder_data_url

logger = logging.getLogger(__name__)

MSG_FILE_NOT_FOUND = "Video file not found"
MSG_STARTING = "Starting video analysis..."
MSG_READY = "Video ready for streaming!"
MSG_GENERIC_FAILURE = "Video processing failed"

# Duration and thumbnail only describe a successful run
FAILED_FIELDS = {"status": VideoStatus.FAILED, "processing_progress": 0, "duration": None, "thumbnail": None}


@dataclass(frozen=True)
class Stage:
    progress: int
    message: str


STAGES: Tuple[Stage, ...] = (
    Stage(20, "Extracting video metadata..."),
    Stage(40, "Analyzing video frames..."),
    Stage(60, "Detecting sensitive content..."),
    Stage(80, "Generating thumbnail..."),
    Stage(100, "Processing complete!"),
)


@dataclass
class ProcessingJob:
    """Transient bookkeeping for one run. Not persisted."""

    video_id: str
    stage_index: int = -1
    started_at: datetime = field(default_factory=utcnow)

    @property
    def current_stage(self) -> Optional[Stage]:
        if 0 <= self.stage_index < len(STAGES):
            return STAGES[self.stage_index]
        return None


def classify(title: str, rng: Optional[random.Random] = None) -> SensitivityStatus:
    """
    Placeholder sensitivity classification.

    Titles containing "test" (any case) are always safe; otherwise roughly
    80% of videos come out safe and 20% flagged.
    """
    if "test" in (title or "").lower():
        return SensitivityStatus.SAFE
    draw = (rng or random).random()
    return SensitivityStatus.SAFE if draw > FLAGGED_THRESHOLD else SensitivityStatus.FLAGGED


def estimate_duration(size_bytes: int) -> int:
    """Rough duration from file size (about 2 MB per second), clamped to 10s..1h."""
    estimated = math.floor((size_bytes or 0) / DURATION_ESTIMATE_BYTES_PER_SECOND)
    return max(DURATION_ESTIMATE_MIN_SECONDS, min(estimated, DURATION_ESTIMATE_MAX_SECONDS))


class VideoProcessor:
    def __init__(
        self,
        store: VideoStore,
        notifier: ProgressNotifier,
        inspector: Optional[MediaInspector] = None,
        stage_delay: float = PROCESSING_STAGE_DELAY,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.inspector = inspector
        self.stage_delay = stage_delay
        self.rng = rng or random.Random()
        self._sleep = sleep

    async def run(self, video_id: str, job: Optional[ProcessingJob] = None) -> Optional[VideoStatus]:
        """
        Process one video to a terminal state.

        Returns:
            The terminal status reached, or None if the video does not exist
        """
        job = job or ProcessingJob(video_id=video_id)
        video = await self.store.find_by_id(video_id)
        if video is None:
            logger.error(f"Video not found for processing: {video_id}")
            return None

        file_exists = await asyncio.to_thread(Path(video["file_path"]).is_file)
        if not file_exists:
            logger.warning(f"Media file missing for video {video_id}: {video['file_path']}")
            await self.store.update_fields(video_id, FAILED_FIELDS)
            await self._emit(video, 0, VideoStatus.FAILED, MSG_FILE_NOT_FOUND)
            PROCESSING_JOBS_TOTAL.labels(status="failed").inc()
            return VideoStatus.FAILED

        logger.info(f"Starting processing for video: {video['title']} ({video_id})")
        started = time.monotonic()
        try:
            await self.store.update_fields(
                video_id, {"status": VideoStatus.PROCESSING, "processing_progress": 0}
            )
            await self._emit(video, 0, VideoStatus.PROCESSING, MSG_STARTING)

            for index, stage in enumerate(STAGES):
                job.stage_index = index
                await self._sleep(self.stage_delay)
                await self.store.update_fields(video_id, {"processing_progress": stage.progress})
                await self._emit(video, stage.progress, VideoStatus.PROCESSING, stage.message)

            await self._complete(video)
        except asyncio.CancelledError:
            logger.warning(f"Processing of video {video_id} cancelled at stage {job.stage_index}")
            raise
        except Exception as e:
            logger.exception(f"Error processing video {video_id}: {e}")
            await self._fail(video, e)
            PROCESSING_JOBS_TOTAL.labels(status="failed").inc()
            return VideoStatus.FAILED
        finally:
            PROCESSING_JOB_DURATION_SECONDS.observe(time.monotonic() - started)

        PROCESSING_JOBS_TOTAL.labels(status="completed").inc()
        return VideoStatus.COMPLETED

    async def _complete(self, video: Mapping[str, Any]) -> None:
        sensitivity = classify(video["title"], self.rng)
        duration, thumbnail = await self.inspect(video)

        await self.store.update_fields(
            video["id"],
            {
                "status": VideoStatus.COMPLETED,
                "sensitivity_status": sensitivity,
                "processing_progress": 100,
                "duration": duration,
                "thumbnail": thumbnail,
            },
        )
        await self._emit(
            video,
            100,
            VideoStatus.COMPLETED,
            MSG_READY,
            sensitivity_status=sensitivity,
            thumbnail=thumbnail,
            duration=duration,
        )
        logger.info(f"Completed processing for video: {video['title']} - Status: {sensitivity.value}")

    async def inspect(self, video: Mapping[str, Any]) -> Tuple[int, str]:
        """Duration and thumbnail, from the media tools when possible."""
        path = Path(video["file_path"])
        duration: Optional[int] = None
        thumbnail: Optional[str] = None

        if self.inspector is not None and await self.inspector.is_available():
            duration = await self.inspector.get_duration(path)
            thumbnail = await self.inspector.generate_thumbnail_data_url(path, video["id"])

        if not duration or duration <= 0:
            duration = estimate_duration(video.get("size_bytes") or 0)
        if not thumbnail:
            thumbnail = placeholder_data_url(video["title"], self.rng)
        return duration, thumbnail

    async def _fail(self, video: Mapping[str, Any], error: Exception) -> None:
        message = sanitize_error_message(str(error), log_original=False) or MSG_GENERIC_FAILURE
        try:
            await self.store.update_fields(video["id"], FAILED_FIELDS)
        except Exception as e:
            logger.error(f"Could not mark video {video['id']} as failed: {e}")
        await self._emit(video, 0, VideoStatus.FAILED, message)

    async def _emit(
        self,
        video: Mapping[str, Any],
        progress: int,
        status: VideoStatus,
        message: str,
        **artifacts: Any,
    ) -> None:
        event = ProgressEvent(
            video_id=video["id"],
            title=video["title"],
            progress=progress,
            status=status,
            message=message,
            **artifacts,
        )
        try:
            await self.notifier.publish(video["id"], video["owner_id"], video["tenant_id"], event)
        except Exception as e:
            logger.warning(f"Failed to publish progress for video {video['id']}: {e}")

