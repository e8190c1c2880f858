import json

import httpx
import pytest

from src.core.exceptions import VisionUnavailableError
from src.engines.tryon.vision_client import HttpVisionClient


def _completion(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def _client(handler, api_key="test-key") -> HttpVisionClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpVisionClient(
        base_url="https://vision.test/openai/v1/",
        api_key=api_key,
        model="vision-model",
        timeout=1.0,
        client=http
    )


@pytest.mark.asyncio
async def test_complete_sends_multimodal_request():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=_completion('{"x": 1, "y": 2}'))

    text = await _client(handler).complete("where is the neck?", image_bytes=b"\xff\xd8jpeg")

    assert text == '{"x": 1, "y": 2}'
    request = captured[0]
    assert str(request.url) == "https://vision.test/openai/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer test-key"

    body = json.loads(request.content)
    assert body["model"] == "vision-model"
    parts = body["messages"][0]["content"]
    assert parts[0] == {"type": "text", "text": "where is the neck?"}
    assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_text_only_prompt_is_plain_string():
    captured = []

    def handler(request):
        captured.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("hi"))

    await _client(handler).complete("hello")
    assert captured[0]["messages"][0]["content"] == "hello"


@pytest.mark.asyncio
async def test_missing_api_key_never_calls_out():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(VisionUnavailableError):
        await _client(handler, api_key=None).complete("x")


@pytest.mark.asyncio
async def test_http_error_status():
    client = _client(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(VisionUnavailableError) as exc_info:
        await client.complete("x")
    assert exc_info.value.details["http_status"] == 503


@pytest.mark.asyncio
async def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(VisionUnavailableError, match="timeout"):
        await _client(handler).complete("x")


@pytest.mark.asyncio
async def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(VisionUnavailableError):
        await _client(handler).complete("x")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"choices": []}, {"error": "?"}, _completion("   ")])
async def test_unexpected_body(body):
    with pytest.raises(VisionUnavailableError):
        await _client(lambda request: httpx.Response(200, json=body)).complete("x")
