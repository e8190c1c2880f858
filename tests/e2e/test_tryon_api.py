import io

import pytest
from unittest.mock import patch
from PIL import Image

from src.core.exceptions import CompositingFailureError

SUBJECT_COLOR = (30, 60, 90)
RED = (255, 0, 0)


def _files(subject=None, overlay=None):
    files = {}
    if subject is not None:
        files["subject"] = ("dog.png", subject, "image/png")
    if overlay is not None:
        files["overlay"] = ("sweater.png", overlay, "image/png")
    return files


def _decode(content: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(content))
    img.load()
    return img.convert("RGB")


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_ready_reports_storage(client):
    response = await client.get("/ready")
    assert response.status_code == 200
    assert response.json()["checks"]["temp_storage"] is True


@pytest.mark.asyncio
async def test_try_on_with_vision_anchor(client, vision_client, temp_storage, subject_png, overlay_png):
    vision_client.complete.side_effect = None
    vision_client.complete.return_value = '{"x": 100, "y": 120}'

    response = await client.post(
        "/api/v1/try-on",
        files=_files(subject_png, overlay_png),
        data={"overlay_width": "80"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.headers["X-Anchor-Source"] == "vision"
    assert response.headers["X-Anchor-Point"] == "100.0,120.0"

    img = _decode(response.content)
    assert img.size == (400, 300)
    # Overlay is 80x160 centered on (100, 120)
    assert img.getpixel((100, 120)) == RED
    assert img.getpixel((300, 120)) == SUBJECT_COLOR
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_try_on_survives_vision_outage(client, vision_client, temp_storage, subject_png, overlay_png):
    response = await client.post("/api/v1/try-on", files=_files(subject_png, overlay_png))

    assert response.status_code == 200
    assert response.headers["X-Anchor-Source"] == "fallback"
    assert response.headers["X-Anchor-Point"] == "200.0,150.0"
    vision_client.complete.assert_awaited_once()

    img = _decode(response.content)
    assert img.size == (400, 300)
    assert img.getpixel((200, 150)) == RED
    assert img.getpixel((5, 5)) == SUBJECT_COLOR
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_try_on_with_invalid_vision_json(client, vision_client, subject_png, overlay_png):
    vision_client.complete.side_effect = None
    vision_client.complete.return_value = "the dog's neck is near the top"

    response = await client.post("/try-on", files=_files(subject_png, overlay_png))

    assert response.status_code == 200
    assert response.headers["X-Anchor-Point"] == "200.0,150.0"


@pytest.mark.asyncio
@pytest.mark.parametrize("present", ["subject", "overlay", None])
async def test_missing_upload_is_client_error(client, vision_client, temp_storage, subject_png, overlay_png, present):
    files = _files(
        subject_png if present == "subject" else None,
        overlay_png if present == "overlay" else None
    )
    response = await client.post("/api/v1/try-on", files=files, data={"overlay_width": "50"})

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "MissingInput"
    assert body["code"] == 400
    vision_client.complete.assert_not_called()
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_malformed_overlay_is_client_error(client, vision_client, temp_storage, subject_png):
    response = await client.post("/api/v1/try-on", files=_files(subject_png, b"<html>nope</html>"))

    assert response.status_code == 400
    assert response.json()["kind"] == "MalformedOverlay"
    vision_client.complete.assert_not_called()
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_unreadable_subject_is_server_error(client, temp_storage, overlay_png):
    response = await client.post("/api/v1/try-on", files=_files(b"\x89PNG broken", overlay_png))

    assert response.status_code == 500
    body = response.json()
    assert body["kind"] == "CompositingFailure"
    assert body["request_id"]
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_compositing_failure_cleans_up_before_response(client, temp_storage, subject_png, overlay_png):
    with patch(
        "src.engines.tryon.services.composite",
        side_effect=CompositingFailureError("encoder failed")
    ):
        response = await client.post("/api/v1/try-on", files=_files(subject_png, overlay_png))

    assert response.status_code == 500
    assert response.json()["kind"] == "CompositingFailure"
    assert response.headers["X-Request-ID"]
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_metrics_exposed(client, subject_png, overlay_png):
    await client.post("/api/v1/try-on", files=_files(subject_png, overlay_png))

    response = await client.get("/api/v1/metrics")

    assert response.status_code == 200
    assert "tryon_requests_total" in response.text
    assert "anchor_source_total" in response.text


@pytest.mark.asyncio
async def test_non_numeric_width_gets_structured_error(client, vision_client, temp_storage, subject_png, overlay_png):
    response = await client.post(
        "/api/v1/try-on",
        files=_files(subject_png, overlay_png),
        data={"overlay_width": "wide"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "InvalidParameter"
    assert body["code"] == 400
    assert body["request_id"]
    assert body["details"]["field"] == "overlay_width"
    assert response.headers["X-Request-ID"] == body["request_id"]
    vision_client.complete.assert_not_called()
    assert len(temp_storage) == 0


@pytest.mark.asyncio
async def test_oversized_width_hint_is_rejected(client, temp_storage, subject_png, overlay_png):
    response = await client.post(
        "/api/v1/try-on",
        files=_files(subject_png, overlay_png),
        data={"overlay_width": "30000"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "InvalidParameter"
    assert body["details"]["field"] == "overlay_width"
    assert len(temp_storage) == 0
