import io
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from typing import AsyncGenerator

import pytest
import pytest_asyncio
import httpx
from httpx import AsyncClient
from fastapi import UploadFile
from starlette.datastructures import Headers

from main import app
from config import Settings, get_settings
from ingestion import IngestionService
from registry import ImageRegistry
from routers.images import get_registry, get_ingestion_service
from storage import ImageStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 1992


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_upload(filename: str, content: bytes, content_type: str = "image/png", declare_size: bool = True) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
        size=len(content) if declare_size else None,
    )


def millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@pytest.fixture(scope="function")
def upload_dir(tmp_path) -> Path:
    path = tmp_path / "uploads_test"
    path.mkdir()
    return path

@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()

@pytest.fixture(scope="function")
def test_settings(upload_dir) -> Settings:
    return Settings(UPLOAD_DIR=upload_dir, _env_file=None)

@pytest.fixture(scope="function")
def store(upload_dir) -> ImageStore:
    return ImageStore(upload_dir)

@pytest.fixture(scope="function")
def registry(store, clock) -> ImageRegistry:
    return ImageRegistry(store, clock=clock)

@pytest.fixture(scope="function")
def ingestion(registry, store, test_settings) -> IngestionService:
    return IngestionService(registry, store, test_settings)

@pytest_asyncio.fixture(scope="function")
async def async_client(registry, ingestion, test_settings) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_ingestion_service] = lambda: ingestion
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testiss") as client:
        yield client

    app.dependency_overrides.clear()
