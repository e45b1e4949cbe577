from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.enums import SensitivityStatus, VideoStatus


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ProgressEvent(CamelModel):
    """Payload of the ``video:progress`` event. Never persisted."""

    video_id: str
    title: str
    progress: int = Field(ge=0, le=100)
    status: VideoStatus
    message: str
    sensitivity_status: Optional[SensitivityStatus] = None
    thumbnail: Optional[str] = None
    duration: Optional[int] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VideoResponse(CamelModel):
    id: str
    title: str
    description: str = ""
    filename: str
    original_name: str
    mime_type: str
    size: int
    size_mb: str
    duration: Optional[int] = None
    status: VideoStatus
    sensitivity_status: SensitivityStatus
    processing_progress: int
    uploaded_by: str
    tenant_id: str
    views: int = 0
    thumbnail: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "VideoResponse":
        size = record.get("size_bytes") or 0
        return cls(
            id=record["id"],
            title=record["title"],
            description=record.get("description") or "",
            filename=record["filename"],
            original_name=record["original_name"],
            mime_type=record["mime_type"],
            size=size,
            size_mb=f"{size / (1024 * 1024):.2f}",
            duration=record.get("duration"),
            status=record["status"],
            sensitivity_status=record["sensitivity_status"],
            processing_progress=record.get("processing_progress") or 0,
            uploaded_by=record["owner_id"],
            tenant_id=record["tenant_id"],
            views=record.get("view_count") or 0,
            thumbnail=record.get("thumbnail"),
            created_at=record.get("created_at"),
            updated_at=record.get("updated_at"),
        )


class VideoListResponse(CamelModel):
    count: int
    videos: List[VideoResponse]


class VideoEnvelope(CamelModel):
    video: VideoResponse


class UploadResponse(CamelModel):
    message: str
    video: VideoResponse


class MessageResponse(CamelModel):
    message: str


class StreamingInfo(CamelModel):
    available: bool
    file_size: int
    stream_url: str


class StreamInfoResponse(CamelModel):
    video: VideoResponse
    streaming: StreamingInfo


class QueueStatusResponse(CamelModel):
    size: int
    jobs: List[str]
