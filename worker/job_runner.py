"""
In-process background job runner.

Each submitted video gets one asyncio task running ``VideoProcessor.run``.
At most one job per video id is in flight: a submission for a video that is
already being processed is rejected (``submit`` returns False) so two runs can
never interleave writes on the same record. Work that must happen before a
run, such as resetting a record for reprocessing, is passed as ``prepare`` and
executed inside the registered task, so it holds the same slot. Entries are
removed from the in-flight map when their task finishes, whatever the outcome.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from api.metrics import PROCESSING_JOBS_ACTIVE, PROCESSING_JOBS_TOTAL
from config import JOB_SHUTDOWN_TIMEOUT, MAX_CONCURRENT_JOBS
from worker.processor import ProcessingJob, VideoProcessor

logger = logging.getLogger(__name__)


@dataclass
class _InFlight:
    job: ProcessingJob
    task: asyncio.Task


class JobRunner:
    def __init__(self, processor: VideoProcessor, max_concurrent_jobs: int = MAX_CONCURRENT_JOBS) -> None:
        self.processor = processor
        self.max_concurrent_jobs = max_concurrent_jobs
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(max_concurrent_jobs) if max_concurrent_jobs > 0 else None
        )
        self._in_flight: Dict[str, _InFlight] = {}
        self._closed = False

    def submit(self, video_id: str, prepare: Optional[Callable[[], Awaitable[None]]] = None) -> bool:
        """
        Schedule processing of ``video_id`` and return immediately.

        Must be called from a running event loop. ``prepare`` is awaited at the
        start of the job, before the processor runs; if it raises, the job
        ends without processing.

        Returns:
            True if a job was started, False if one is already in flight
            for this video or the runner is shutting down
        """
        if self._closed:
            logger.warning(f"Job runner is shut down, not processing video {video_id}")
            PROCESSING_JOBS_TOTAL.labels(status="rejected").inc()
            return False

        if video_id in self._in_flight:
            logger.info(f"Video {video_id} is already being processed, submission rejected")
            PROCESSING_JOBS_TOTAL.labels(status="rejected").inc()
            return False

        job = ProcessingJob(video_id=video_id)
        task = asyncio.create_task(self._run(job, prepare), name=f"process-video-{video_id}")
        self._in_flight[video_id] = _InFlight(job=job, task=task)
        task.add_done_callback(lambda t, vid=video_id: self._on_done(vid, t))

        PROCESSING_JOBS_TOTAL.labels(status="submitted").inc()
        PROCESSING_JOBS_ACTIVE.inc()
        logger.info(f"Submitted processing job for video {video_id}")
        return True

    async def _run(self, job: ProcessingJob, prepare: Optional[Callable[[], Awaitable[None]]] = None) -> None:
        if prepare is not None:
            try:
                await prepare()
            except Exception as e:
                logger.error(f"Could not prepare video {job.video_id} for processing: {e}")
                PROCESSING_JOBS_TOTAL.labels(status="failed").inc()
                return

        if self._semaphore is None:
            await self.processor.run(job.video_id, job)
            return
        async with self._semaphore:
            await self.processor.run(job.video_id, job)

    def _on_done(self, video_id: str, task: asyncio.Task) -> None:
        entry = self._in_flight.get(video_id)
        if entry is not None and entry.task is task:
            del self._in_flight[video_id]
        PROCESSING_JOBS_ACTIVE.dec()

        if task.cancelled():
            logger.warning(f"Processing job for video {video_id} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Unhandled error in processing job for video {video_id}: {exc!r}", exc_info=exc)

    def is_running(self, video_id: str) -> bool:
        return video_id in self._in_flight

    def queue_status(self) -> dict:
        """Number of in-flight jobs and their video ids."""
        return {"size": len(self._in_flight), "jobs": list(self._in_flight.keys())}

    def get_job(self, video_id: str) -> Optional[ProcessingJob]:
        entry = self._in_flight.get(video_id)
        return entry.job if entry else None

    async def wait(self, video_id: str, timeout: Optional[float] = None) -> bool:
        """
        Wait for the in-flight job of ``video_id`` to finish.

        Returns:
            True if no job is in flight anymore, False on timeout
        """
        entry = self._in_flight.get(video_id)
        if entry is None:
            return True
        done, _ = await asyncio.wait({entry.task}, timeout=timeout)
        return bool(done)

    async def shutdown(self, timeout: float = JOB_SHUTDOWN_TIMEOUT) -> List[str]:
        """
        Stop accepting jobs and wait up to ``timeout`` for in-flight ones.

        Returns:
            Ids of videos whose jobs had to be cancelled
        """
        self._closed = True
        tasks = [entry.task for entry in self._in_flight.values()]
        if not tasks:
            return []

        logger.info(f"Waiting up to {timeout}s for {len(tasks)} processing job(s) to finish")
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        cancelled: List[str] = []
        for video_id, entry in list(self._in_flight.items()):
            if entry.task in pending:
                cancelled.append(video_id)
                entry.task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(cancelled)} unfinished processing job(s): {', '.join(cancelled)}")
        return cancelled
