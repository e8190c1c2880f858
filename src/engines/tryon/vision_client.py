"""
Vision Inference Client

Thin adapter over an OpenAI-compatible chat completions endpoint (Groq by
default). One operation: prompt (optionally with an image) in, text out, or
VisionUnavailableError.
"""

import base64
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

import httpx

from src.core.exceptions import VisionUnavailableError
from src.core.logging import get_logger
from src.core.metrics import record_vision_call

logger = get_logger(__name__)


class IVisionClient(ABC):
    """Capability interface for the external completion service."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: str = "image/jpeg"
    ) -> str:
        """Return the model's text completion. Raises VisionUnavailableError."""
        pass


class HttpVisionClient(IVisionClient):
    """
    Live adapter for /chat/completions.

    Pass a shared httpx.AsyncClient to reuse connections across requests;
    without one a client is opened per call.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 8.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _build_payload(
        self,
        prompt: str,
        image_bytes: Optional[bytes],
        mime_type: str
    ) -> Dict[str, Any]:
        if image_bytes is None:
            content: Any = prompt
        else:
            image_b64 = base64.b64encode(image_bytes).decode("utf-8")
            content = [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}
                },
            ]

        return {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": 0,
            "max_tokens": 100,
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def complete(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        mime_type: str = "image/jpeg"
    ) -> str:
        if not self.api_key:
            record_vision_call(status="not_configured")
            raise VisionUnavailableError("Vision API key is not configured")

        payload = self._build_payload(prompt, image_bytes, mime_type)

        try:
            response = await self._post(payload)
        except httpx.TimeoutException:
            record_vision_call(status="timeout")
            raise VisionUnavailableError("Vision API timeout")
        except httpx.HTTPError as e:
            record_vision_call(status="error")
            raise VisionUnavailableError(f"Vision API call failed: {e}")

        if response.status_code != 200:
            record_vision_call(status="error")
            raise VisionUnavailableError(
                f"Vision API error: {response.text[:200]}",
                http_status=response.status_code
            )

        try:
            text = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            record_vision_call(status="error")
            raise VisionUnavailableError("Vision API returned an unexpected body", http_status=200)

        if not isinstance(text, str) or not text.strip():
            record_vision_call(status="error")
            raise VisionUnavailableError("Vision API returned an empty completion", http_status=200)

        logger.debug("vision_completion_received", model=self.model, length=len(text))
        return text
