"""
Byte-range streaming of stored video files.

The file is opened before any headers are sent so a missing file becomes a
404. From then on the open handle is owned by the body iterator, which reads
bounded chunks in a worker thread and always closes the handle: on normal
completion, on client disconnect (the iterator is closed/cancelled) and on
read errors, which simply end the body early.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO

from fastapi import Response
from fastapi.responses import StreamingResponse

from api.errors import VideoNotFoundError
from api.metrics import STREAM_ERRORS_TOTAL, STREAM_RESPONSES_TOTAL
from api.ranges import RangeKind, RangeResult
from config import STREAM_CACHE_CONTROL, STREAM_CHUNK_SIZE

logger = logging.getLogger(__name__)


@dataclass
class StreamResource:
    """An opened media file ready to be streamed."""

    file: BinaryIO
    total_length: int
    media_type: str
    name: str = ""

    @classmethod
    def open(cls, path: Path, media_type: str) -> "StreamResource":
        """
        Open ``path`` for streaming (blocking; call via ``asyncio.to_thread``).

        Raises:
            VideoNotFoundError: If the file does not exist or cannot be opened
        """
        try:
            file = open(path, "rb")
        except OSError as e:
            logger.warning(f"Cannot open media file {path}: {e}")
            raise VideoNotFoundError("Video file not found on server") from e
        try:
            total_length = os.fstat(file.fileno()).st_size
        except OSError as e:
            file.close()
            raise VideoNotFoundError("Video file not found on server") from e
        return cls(file=file, total_length=total_length, media_type=media_type, name=Path(path).name)

    def close(self) -> None:
        try:
            self.file.close()
        except OSError as e:
            logger.debug(f"Error closing {self.name}: {e}")


async def iter_file_range(
    resource: StreamResource,
    start: int,
    length: int,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> AsyncIterator[bytes]:
    """
    Yield ``length`` bytes of the resource starting at ``start``.

    Memory use is bounded by ``chunk_size`` regardless of file size.
    """
    remaining = length
    try:
        await asyncio.to_thread(resource.file.seek, start)
        while remaining > 0:
            chunk = await asyncio.to_thread(resource.file.read, min(chunk_size, remaining))
            if not chunk:
                # File shrank underneath us
                logger.warning(f"Unexpected end of file streaming {resource.name} ({remaining} bytes short)")
                STREAM_ERRORS_TOTAL.inc()
                break
            remaining -= len(chunk)
            yield chunk
    except OSError as e:
        # Headers are already sent; all we can do is end the body
        logger.error(f"Stream error for {resource.name}: {e}")
        STREAM_ERRORS_TOTAL.inc()
    finally:
        resource.close()


def build_stream_response(
    resource: StreamResource,
    range_result: RangeResult,
    cache_control: str = STREAM_CACHE_CONTROL,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> Response:
    """
    Build the 200/206/416 response for a resolved range.

    The resource is closed here for 416; otherwise the body iterator owns it.
    """
    STREAM_RESPONSES_TOTAL.labels(status_code=_status_for(range_result)).inc()

    if range_result.kind is RangeKind.UNSATISFIABLE:
        resource.close()
        return Response(
            status_code=416,
            headers={"Content-Range": range_result.content_range},
        )

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(range_result.length),
        "Cache-Control": cache_control,
    }

    if range_result.kind is RangeKind.PARTIAL:
        headers["Content-Range"] = range_result.content_range
        body = iter_file_range(resource, range_result.start, range_result.length, chunk_size)
        status_code = 206
    else:
        body = iter_file_range(resource, 0, range_result.total_length, chunk_size)
        status_code = 200

    return StreamingResponse(body, status_code=status_code, headers=headers, media_type=resource.media_type)


def _status_for(range_result: RangeResult) -> str:
    return {
        RangeKind.FULL: "200",
        RangeKind.PARTIAL: "206",
        RangeKind.UNSATISFIABLE: "416",
    }[range_result.kind]
