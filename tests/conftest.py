import io
import os

# Keep uploads in memory and logs readable before the app reads its settings
os.environ.setdefault("TEMP_STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from PIL import Image

from src.main import app
from src.api.dependencies import get_vision_client
from src.core.exceptions import VisionUnavailableError
from src.core.storage import InMemoryTempStorage, get_temp_storage
from src.engines.tryon.vision_client import IVisionClient


def _make_image(width, height, color=(30, 60, 90), mode="RGB", fmt="PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    return _make_image


@pytest.fixture
def subject_png() -> bytes:
    return _make_image(400, 300, (30, 60, 90))


@pytest.fixture
def overlay_png() -> bytes:
    return _make_image(100, 200, (255, 0, 0, 255), mode="RGBA")


@pytest.fixture
def temp_storage() -> InMemoryTempStorage:
    return InMemoryTempStorage()


@pytest.fixture
def vision_client() -> AsyncMock:
    # Offline by default; tests that want an answer set return_value
    client = AsyncMock(spec=IVisionClient)
    client.complete.side_effect = VisionUnavailableError("vision offline in tests")
    return client


@pytest.fixture
async def client(temp_storage, vision_client) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_temp_storage] = lambda: temp_storage
    app.dependency_overrides[get_vision_client] = lambda: vision_client

    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
