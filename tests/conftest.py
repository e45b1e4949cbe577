"""
Pytest fixtures for VidShield tests.
Provides per-test SQLite databases, storage directories, services and API clients.
"""

import os
import tempfile
import time
import uuid
from pathlib import Path
from typing import AsyncGenerator, Dict, Iterable, Optional

import pytest
import sqlalchemy as sa
from databases import Database

# Set up test environment BEFORE importing config
_test_temp_dir = tempfile.mkdtemp()
os.environ["VIDSHIELD_STORAGE_PATH"] = _test_temp_dir
os.environ["VIDSHIELD_DATABASE_URL"] = f"sqlite:///{_test_temp_dir}/default.db"
os.environ["VIDSHIELD_PROCESSING_STAGE_DELAY"] = "0"
os.environ["VIDSHIELD_RATE_LIMIT_ENABLED"] = "false"
os.environ["VIDSHIELD_REDIS_URL"] = ""
os.environ["VIDSHIELD_MEDIA_TOOLS_ENABLED"] = "false"

from api.database import metadata  # noqa: E402
from api.pubsub import ProgressNotifier  # noqa: E402
from api.video_store import VideoStore  # noqa: E402

# 1000 bytes with a recognisable pattern so range bodies can be checked exactly
SAMPLE_MEDIA = bytes(range(250)) * 4


def auth_headers(user_id: str = "editor-1", tenant_id: str = "tenant-a", role: str = "editor") -> Dict[str, str]:
    """Identity headers as set by the authentication proxy."""
    return {"X-User-Id": user_id, "X-Tenant-Id": tenant_id, "X-User-Role": role}


def wait_for_status(
    client,
    video_id: str,
    headers: Dict[str, str],
    statuses: Iterable[str] = ("completed", "failed"),
    timeout: float = 10.0,
) -> dict:
    """Poll GET /videos/{id} until the video reaches one of ``statuses``."""
    wanted = set(statuses)
    deadline = time.monotonic() + timeout
    while True:
        video = client.get(f"/videos/{video_id}", headers=headers).json()["video"]
        if video["status"] in wanted:
            return video
        if time.monotonic() > deadline:
            raise AssertionError(f"Video {video_id} stuck in {video['status']}")
        time.sleep(0.02)


@pytest.fixture(scope="function")
def test_db_url(tmp_path: Path) -> str:
    """A fresh SQLite database with all tables created."""
    db_url = f"sqlite:///{tmp_path / f'vidshield_test_{uuid.uuid4().hex[:8]}.db'}"
    engine = sa.create_engine(db_url)
    metadata.create_all(engine)
    engine.dispose()
    return db_url


@pytest.fixture(scope="function")
def test_storage(tmp_path: Path) -> dict:
    """Create test storage directories."""
    uploads_dir = tmp_path / "uploads"
    thumbnails_dir = tmp_path / "thumbnails"
    uploads_dir.mkdir(parents=True, exist_ok=True)
    thumbnails_dir.mkdir(parents=True, exist_ok=True)
    return {"uploads": uploads_dir, "thumbnails": thumbnails_dir}


@pytest.fixture(scope="function")
async def test_database(test_db_url: str) -> AsyncGenerator[Database, None]:
    database = Database(test_db_url)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture(scope="function")
def store(test_database: Database) -> VideoStore:
    return VideoStore(test_database)


@pytest.fixture(scope="function")
def notifier() -> ProgressNotifier:
    return ProgressNotifier(queue_size=100, relay_enabled=False)


@pytest.fixture(scope="function")
def make_video(store: VideoStore, test_storage: dict):
    """Factory creating a video record, with its media file unless ``with_file=False``."""

    async def _make(
        title: str = "Holiday clip",
        owner_id: str = "editor-1",
        tenant_id: str = "tenant-a",
        content: bytes = SAMPLE_MEDIA,
        with_file: bool = True,
        size_bytes: Optional[int] = None,
        **fields,
    ) -> dict:
        filename = f"{uuid.uuid4().hex}.mp4"
        path = test_storage["uploads"] / filename
        if with_file:
            path.write_bytes(content)
        values = {
            "tenant_id": tenant_id,
            "owner_id": owner_id,
            "title": title,
            "filename": filename,
            "original_name": "clip.mp4",
            "file_path": str(path),
            "mime_type": "video/mp4",
            "size_bytes": len(content) if size_bytes is None else size_bytes,
        }
        values.update(fields)
        return await store.create(values)

    return _make


@pytest.fixture(scope="function")
def client(test_storage: dict, test_db_url: str, monkeypatch):
    """
    Create a test client for the API server.
    Patches config to use test paths.
    The app manages its own database connection and services through its lifespan.
    """
    import importlib
    import sys

    from fastapi.testclient import TestClient

    # Patch config before importing app
    import config

    monkeypatch.setattr(config, "UPLOADS_DIR", test_storage["uploads"])
    monkeypatch.setattr(config, "THUMBNAILS_DIR", test_storage["thumbnails"])
    monkeypatch.setattr(config, "DATABASE_URL", test_db_url)
    monkeypatch.setattr(config, "PROCESSING_STAGE_DELAY", 0.0)

    # Reload api.database to create a new Database instance with the test URL
    if "api.database" in sys.modules:
        importlib.reload(sys.modules["api.database"])

    # Force reload the server module to pick up the new database and paths
    if "api.server" in sys.modules:
        importlib.reload(sys.modules["api.server"])

    from api.server import app

    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client
