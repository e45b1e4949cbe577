"""Tests for the streaming responder (headers, bodies and file handle lifecycle)."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.responses import StreamingResponse

from api.errors import VideoNotFoundError
from api.ranges import resolve_range
from api.streaming import StreamResource, build_stream_response, iter_file_range

CONTENT = bytes(range(256)) * 40  # 10240 bytes


@pytest.fixture
def media_file(tmp_path: Path) -> Path:
    path = tmp_path / "movie.mp4"
    path.write_bytes(CONTENT)
    return path


async def _collect(response) -> bytes:
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk)
    return b"".join(chunks)


class TestStreamResource:
    def test_open_reports_size(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        try:
            assert resource.total_length == len(CONTENT)
            assert resource.media_type == "video/mp4"
            assert resource.name == "movie.mp4"
        finally:
            resource.close()

    def test_missing_file_raises_not_found(self, tmp_path):
        with pytest.raises(VideoNotFoundError) as exc_info:
            StreamResource.open(tmp_path / "gone.mp4", "video/mp4")

        assert exc_info.value.message == "Video file not found on server"


class TestBuildStreamResponse:
    @pytest.mark.asyncio
    async def test_full_response(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        response = build_stream_response(resource, resolve_range(None, resource.total_length))

        assert isinstance(response, StreamingResponse)
        assert response.status_code == 200
        assert response.headers["content-length"] == str(len(CONTENT))
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.headers["content-type"].startswith("video/mp4")
        assert "content-range" not in response.headers
        assert await _collect(response) == CONTENT
        assert resource.file.closed

    @pytest.mark.asyncio
    async def test_partial_response(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        response = build_stream_response(resource, resolve_range("bytes=100-1123", resource.total_length))

        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 100-1123/{len(CONTENT)}"
        assert response.headers["content-length"] == "1024"
        assert response.headers["accept-ranges"] == "bytes"
        assert await _collect(response) == CONTENT[100:1124]

    @pytest.mark.asyncio
    async def test_partial_response_spanning_many_chunks(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        response = build_stream_response(
            resource, resolve_range("bytes=7-", resource.total_length), chunk_size=1000
        )

        body = await _collect(response)
        assert body == CONTENT[7:]
        assert response.headers["content-length"] == str(len(CONTENT) - 7)

    def test_unsatisfiable_response_closes_file(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        response = build_stream_response(resource, resolve_range("bytes=999999-", resource.total_length))

        assert response.status_code == 416
        assert response.headers["content-range"] == f"bytes */{len(CONTENT)}"
        assert response.body == b""
        assert resource.file.closed

    def test_cache_control_is_configurable(self, media_file):
        resource = StreamResource.open(media_file, "video/webm")
        response = build_stream_response(resource, resolve_range(None, resource.total_length), cache_control="no-store")
        try:
            assert response.headers["cache-control"] == "no-store"
        finally:
            resource.close()


class TestIterFileRange:
    @pytest.mark.asyncio
    async def test_bounded_chunks(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")
        sizes = []
        async for chunk in iter_file_range(resource, 0, len(CONTENT), chunk_size=4096):
            sizes.append(len(chunk))

        assert sizes == [4096, 4096, 2048]
        assert resource.file.closed

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_file(self, media_file):
        """Closing the iterator early (client went away) still releases the handle."""
        resource = StreamResource.open(media_file, "video/mp4")
        body = iter_file_range(resource, 0, len(CONTENT), chunk_size=1024)

        first = await body.__anext__()
        assert first == CONTENT[:1024]
        assert not resource.file.closed

        await body.aclose()
        assert resource.file.closed

    @pytest.mark.asyncio
    async def test_read_error_ends_body_without_raising(self):
        broken = MagicMock()
        broken.seek.return_value = 0
        broken.read.side_effect = [b"abc", OSError("I/O error")]
        resource = StreamResource(file=broken, total_length=100, media_type="video/mp4", name="broken.mp4")

        chunks = [chunk async for chunk in iter_file_range(resource, 0, 100, chunk_size=3)]

        assert chunks == [b"abc"]
        broken.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_truncated_file_ends_body_early(self, media_file):
        resource = StreamResource.open(media_file, "video/mp4")

        chunks = [chunk async for chunk in iter_file_range(resource, len(CONTENT) - 10, 50)]

        assert b"".join(chunks) == CONTENT[-10:]
        assert resource.file.closed
