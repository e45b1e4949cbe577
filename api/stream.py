"""Range-request streaming of completed videos."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from api.auth import Principal, ensure_can_view, get_principal
from api.common import get_store, limiter
from api.enums import VideoStatus
from api.errors import VideoNotFoundError, VideoNotReadyError
from api.ranges import RangeKind, resolve_range
from api.schemas import StreamInfoResponse, StreamingInfo, VideoResponse
from api.streaming import StreamResource, build_stream_response
from api.video_store import VideoStore
from config import RATE_LIMIT_DEFAULT, RATE_LIMIT_STREAM

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stream", tags=["stream"])


async def _viewable_video(store: VideoStore, video_id: str, principal: Principal) -> dict:
    video = await store.find_by_id(video_id)
    if video is None:
        raise VideoNotFoundError()
    ensure_can_view(video, principal)
    return video


def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size if path.is_file() else None
    except OSError:
        return None


@router.get("/{video_id}")
@limiter.limit(RATE_LIMIT_STREAM)
async def stream_video(
    request: Request,
    video_id: str,
    range_header: Optional[str] = Header(None, alias="Range"),
    principal: Principal = Depends(get_principal),
    store: VideoStore = Depends(get_store),
):
    """
    Stream a completed video, honouring single byte-range requests.

    200 for the whole file, 206 for a satisfiable range, 416 otherwise.
    """
    video = await _viewable_video(store, video_id, principal)

    if video["status"] != VideoStatus.COMPLETED.value:
        raise VideoNotReadyError(video["status"], video["processing_progress"])

    resource = await asyncio.to_thread(StreamResource.open, Path(video["file_path"]), video["mime_type"])
    range_result = resolve_range(range_header, resource.total_length)

    if range_result.kind is not RangeKind.UNSATISFIABLE:
        try:
            await store.increment_field(video_id, "view_count")
        except Exception:
            resource.close()
            raise

    logger.debug(f"Streaming video {video_id}: {range_result.kind.value} {range_result.content_range or ''}")
    return build_stream_response(resource, range_result)


@router.get("/{video_id}/info", response_model=StreamInfoResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def stream_info(
    request: Request,
    video_id: str,
    principal: Principal = Depends(get_principal),
    store: VideoStore = Depends(get_store),
):
    """Video metadata plus whether it can be streamed right now."""
    video = await _viewable_video(store, video_id, principal)
    file_size = await asyncio.to_thread(_file_size, Path(video["file_path"]))

    return StreamInfoResponse(
        video=VideoResponse.from_record(video),
        streaming=StreamingInfo(
            available=video["status"] == VideoStatus.COMPLETED.value and file_size is not None,
            file_size=file_size or 0,
            stream_url=f"/stream/{video_id}",
        ),
    )
