"""
Video management endpoints: upload, list, get, delete, reprocess.

Uploads are streamed to disk in chunks with a hard size limit, recorded as
``pending`` and handed to the job runner without waiting for processing.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from api.auth import Principal, ensure_can_manage, ensure_can_view, get_principal, require_roles
from api.common import get_inspector, get_runner, get_store, get_uploads_dir, limiter
from api.enums import SensitivityStatus, UserRole, VideoStatus
from api.errors import JobAlreadyRunningError, VideoNotFoundError
from api.metrics import VIDEO_UPLOADS_TOTAL
from api.schemas import (
    MessageResponse,
    QueueStatusResponse,
    UploadResponse,
    VideoEnvelope,
    VideoListResponse,
    VideoResponse,
)
from api.video_store import DEFAULT_SORT, VideoStore
from config import (
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_UPLOAD_SIZE,
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_UPLOAD,
    SUPPORTED_VIDEO_EXTENSIONS,
    SUPPORTED_VIDEO_EXTENSIONS_STR,
    SUPPORTED_VIDEO_TYPES,
    UPLOAD_CHUNK_SIZE,
)
from worker.job_runner import JobRunner
from worker.media_inspector import MediaInspector

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

require_editor = require_roles(UserRole.EDITOR, UserRole.ADMIN)
require_admin = require_roles(UserRole.ADMIN)

# Public sort keys (as clients send them) -> columns
SORT_KEYS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "title": "title",
    "size": "size_bytes",
    "duration": "duration",
    "views": "view_count",
}


def parse_sort(sort: str) -> str:
    """Translate e.g. ``-createdAt`` into ``-created_at``; 400 on unknown keys."""
    descending = sort.startswith("-")
    key = sort.lstrip("-+")
    column = SORT_KEYS.get(key)
    if column is None:
        raise HTTPException(status_code=400, detail=f"Cannot sort by '{key}'")
    return f"-{column}" if descending else column


async def save_upload_with_size_limit(file: UploadFile, upload_path: Path, max_size: int = MAX_UPLOAD_SIZE) -> int:
    """
    Stream upload to disk with size validation.
    Returns the total bytes written.
    Raises HTTPException if file exceeds max_size.
    """
    total_size = 0
    try:
        with open(upload_path, "wb") as f:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_size:
                    f.close()
                    upload_path.unlink(missing_ok=True)
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Maximum upload size is {max_size // (1024 * 1024)} MB",
                    )
                f.write(chunk)
    except HTTPException:
        raise
    except OSError as e:
        upload_path.unlink(missing_ok=True)
        logger.warning(f"Storage error during upload to {upload_path}: {e}")
        raise HTTPException(
            status_code=503,
            detail="Video storage temporarily unavailable. Please try again later.",
            headers={"Retry-After": "30"},
        )

    return total_size


async def _load_video(store: VideoStore, video_id: str) -> dict:
    video = await store.find_by_id(video_id)
    if video is None:
        raise VideoNotFoundError()
    return video


@router.post("/upload", status_code=201, response_model=UploadResponse)
@limiter.limit(RATE_LIMIT_UPLOAD)
async def upload_video(
    request: Request,
    video: UploadFile = File(...),
    title: str = Form(""),
    description: str = Form(""),
    principal: Principal = Depends(require_editor),
    store: VideoStore = Depends(get_store),
    runner: JobRunner = Depends(get_runner),
    uploads_dir: Path = Depends(get_uploads_dir),
):
    """Upload a new video for processing."""
    file_ext = Path(video.filename).suffix.lower() if video.filename else ""
    if file_ext not in SUPPORTED_VIDEO_EXTENSIONS:
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type '{file_ext or video.filename}'. Allowed: {SUPPORTED_VIDEO_EXTENSIONS_STR}",
        )

    title = title.strip()
    if not title:
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise HTTPException(status_code=400, detail="Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise HTTPException(status_code=400, detail=f"Title must be {MAX_TITLE_LENGTH} characters or less")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise HTTPException(status_code=400, detail=f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less")

    await asyncio.to_thread(uploads_dir.mkdir, parents=True, exist_ok=True)
    filename = f"{uuid.uuid4().hex}{file_ext}"
    upload_path = uploads_dir / filename

    try:
        size = await save_upload_with_size_limit(video, upload_path, MAX_UPLOAD_SIZE)
    except HTTPException:
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise

    if size == 0:
        upload_path.unlink(missing_ok=True)
        VIDEO_UPLOADS_TOTAL.labels(result="rejected").inc()
        raise HTTPException(status_code=400, detail="No video file uploaded")

    try:
        record = await store.create(
            {
                "tenant_id": principal.tenant_id,
                "owner_id": principal.user_id,
                "title": title,
                "description": description,
                "filename": filename,
                "original_name": video.filename,
                "file_path": str(upload_path),
                "mime_type": SUPPORTED_VIDEO_TYPES[file_ext],
                "size_bytes": size,
            }
        )
    except Exception:
        upload_path.unlink(missing_ok=True)
        VIDEO_UPLOADS_TOTAL.labels(result="error").inc()
        raise

    runner.submit(record["id"])
    VIDEO_UPLOADS_TOTAL.labels(result="success").inc()
    logger.info(f"User {principal.user_id} uploaded video {record['id']} ({size} bytes) to tenant {principal.tenant_id}")

    return UploadResponse(message="Video uploaded successfully", video=VideoResponse.from_record(record))


@router.get("", response_model=VideoListResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_videos(
    request: Request,
    status: Optional[VideoStatus] = Query(None),
    sensitivity_status: Optional[SensitivityStatus] = Query(None, alias="sensitivityStatus"),
    sort: str = Query(DEFAULT_SORT),
    principal: Principal = Depends(get_principal),
    store: VideoStore = Depends(get_store),
):
    """List the tenant's videos. Viewers only see their own uploads."""
    filters = {
        "status": status,
        "sensitivity_status": sensitivity_status,
        "owner_id": principal.user_id if principal.is_viewer else None,
    }
    records = await store.list_by_tenant(principal.tenant_id, filters, parse_sort(sort))
    return VideoListResponse(count=len(records), videos=[VideoResponse.from_record(r) for r in records])


@router.get("/queue/status", response_model=QueueStatusResponse)
async def queue_status(
    principal: Principal = Depends(require_admin),
    runner: JobRunner = Depends(get_runner),
):
    """In-flight processing jobs (admin only)."""
    return QueueStatusResponse(**runner.queue_status())


@router.get("/{video_id}", response_model=VideoEnvelope)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_video(
    request: Request,
    video_id: str,
    principal: Principal = Depends(get_principal),
    store: VideoStore = Depends(get_store),
):
    video = await _load_video(store, video_id)
    ensure_can_view(video, principal)
    return VideoEnvelope(video=VideoResponse.from_record(video))


@router.delete("/{video_id}", response_model=MessageResponse)
async def delete_video(
    video_id: str,
    principal: Principal = Depends(require_editor),
    store: VideoStore = Depends(get_store),
    runner: JobRunner = Depends(get_runner),
    inspector: MediaInspector = Depends(get_inspector),
):
    """Delete a video and its file. Refused while the video is being processed."""
    video = await _load_video(store, video_id)
    ensure_can_manage(video, principal, "delete")

    if runner.is_running(video_id):
        raise JobAlreadyRunningError(video_id, "Video is currently being processed and cannot be deleted")

    await store.delete(video_id)
    for path in (Path(video["file_path"]), inspector.thumbnail_path(video_id)):
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {path.name} for deleted video {video_id}: {e}")

    logger.info(f"User {principal.user_id} deleted video {video_id}")
    return MessageResponse(message="Video deleted successfully")


@router.post("/{video_id}/reprocess", response_model=MessageResponse)
async def reprocess_video(
    video_id: str,
    principal: Principal = Depends(require_editor),
    store: VideoStore = Depends(get_store),
    runner: JobRunner = Depends(get_runner),
    inspector: MediaInspector = Depends(get_inspector),
):
    """
    Reset a video to pending and run the analysis again.

    The reset is the first step of the new job and holds the video's job slot.
    """
    video = await _load_video(store, video_id)
    ensure_can_manage(video, principal, "reprocess")

    async def reset() -> None:
        await store.update_fields(
            video_id,
            {
                "status": VideoStatus.PENDING,
                "processing_progress": 0,
                "sensitivity_status": SensitivityStatus.UNKNOWN,
                "duration": None,
                "thumbnail": None,
            },
        )
        thumbnail_path = inspector.thumbnail_path(video_id)
        try:
            await asyncio.to_thread(thumbnail_path.unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove old thumbnail for video {video_id}: {e}")

    if runner.is_running(video_id) or not runner.submit(video_id, prepare=reset):
        raise JobAlreadyRunningError(video_id)

    logger.info(f"User {principal.user_id} requested reprocessing of video {video_id}")
    return MessageResponse(message="Video reprocessing started")
