"""
Duration and thumbnail extraction backed by ffprobe/ffmpeg.

Every tool call is bounded by a timeout and every failure degrades to None;
callers fall back to an estimated duration or a placeholder thumbnail.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from api.errors import MediaToolError, truncate_error
from api.metrics import MEDIA_TOOL_FALLBACKS_TOTAL
from config import (
    ERROR_DETAIL_MAX_LENGTH,
    FFMPEG_PATH,
    FFPROBE_PATH,
    FFPROBE_TIMEOUT,
    MEDIA_TOOL_CHECK_TIMEOUT,
    MEDIA_TOOLS_ENABLED,
    THUMBNAIL_TIMEOUT,
    THUMBNAIL_TIMESTAMP,
    THUMBNAIL_WIDTH,
    THUMBNAILS_DIR,
)

logger = logging.getLogger(__name__)


async def run_tool(cmd: List[str], timeout: float) -> Tuple[bytes, bytes]:
    """Run a media tool and return (stdout, stderr).

    Raises:
        MediaToolError: If the tool is missing, times out or exits non-zero
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise MediaToolError(f"{cmd[0]} could not be started: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        raise MediaToolError(f"{Path(cmd[0]).name} timed out after {timeout}s")

    if process.returncode != 0:
        error_msg = truncate_error(stderr.decode("utf-8", errors="ignore"), ERROR_DETAIL_MAX_LENGTH)
        raise MediaToolError(f"{Path(cmd[0]).name} failed (exit code {process.returncode}): {error_msg}")

    return stdout, stderr


class MediaInspector:
    """ffprobe/ffmpeg capability with availability caching."""

    def __init__(
        self,
        enabled: bool = MEDIA_TOOLS_ENABLED,
        ffmpeg_path: str = FFMPEG_PATH,
        ffprobe_path: str = FFPROBE_PATH,
        thumbnails_dir: Path = THUMBNAILS_DIR,
    ) -> None:
        self.enabled = enabled
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.thumbnails_dir = Path(thumbnails_dir)
        self._available: Optional[bool] = None

    async def is_available(self) -> bool:
        """Whether ffmpeg can be run. Checked once, then cached."""
        if not self.enabled:
            return False
        if self._available is None:
            try:
                await run_tool([self.ffmpeg_path, "-version"], timeout=MEDIA_TOOL_CHECK_TIMEOUT)
                self._available = True
            except MediaToolError as e:
                logger.warning(f"Media tools unavailable, using fallbacks: {e}")
                self._available = False
        return self._available

    async def get_duration(self, path: Path) -> Optional[int]:
        """Whole seconds of ``path`` according to ffprobe, or None."""
        cmd = [
            self.ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            stdout, _ = await run_tool(cmd, timeout=FFPROBE_TIMEOUT)
            duration = int(float(stdout.decode("utf-8", errors="ignore").strip()))
        except MediaToolError as e:
            logger.warning(f"Could not probe duration of {Path(path).name}: {e}")
            MEDIA_TOOL_FALLBACKS_TOTAL.labels(artifact="duration").inc()
            return None
        except ValueError:
            logger.warning(f"ffprobe returned no usable duration for {Path(path).name}")
            MEDIA_TOOL_FALLBACKS_TOTAL.labels(artifact="duration").inc()
            return None

        if duration <= 0:
            MEDIA_TOOL_FALLBACKS_TOTAL.labels(artifact="duration").inc()
            return None
        return duration

    async def generate_thumbnail_data_url(self, path: Path, video_id: str) -> Optional[str]:
        """Capture a JPEG frame and return it as a ``data:image/jpeg;base64`` URI, or None."""
        output_path = self.thumbnail_path(video_id)
        # -ss before -i seeks to the nearest keyframe without decoding up to it
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-ss",
            str(THUMBNAIL_TIMESTAMP),
            "-i",
            str(path),
            "-vframes",
            "1",
            "-vf",
            f"scale={THUMBNAIL_WIDTH}:-1",
            "-q:v",
            "2",
            str(output_path),
        ]
        try:
            await asyncio.to_thread(output_path.parent.mkdir, parents=True, exist_ok=True)
            await run_tool(cmd, timeout=THUMBNAIL_TIMEOUT)
            image = await asyncio.to_thread(output_path.read_bytes)
        except (MediaToolError, OSError) as e:
            logger.warning(f"Thumbnail generation failed for video {video_id}: {e}")
            MEDIA_TOOL_FALLBACKS_TOTAL.labels(artifact="thumbnail").inc()
            return None

        if not image:
            MEDIA_TOOL_FALLBACKS_TOTAL.labels(artifact="thumbnail").inc()
            return None
        return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")

    def thumbnail_path(self, video_id: str) -> Path:
        return self.thumbnails_dir / f"{video_id}.jpg"
