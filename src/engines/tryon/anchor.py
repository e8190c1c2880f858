"""
Anchor Locators

The vision model is advisory only. VisionAnchorLocator asks it where the
overlay should go; FallbackAnchorLocator wraps it with a hard timeout and
returns the geometric center of the subject whenever it fails, so locating an
anchor never fails a request.
"""

import io
import re
import json
import math
import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from PIL import Image

from src.core.exceptions import VisionUnavailableError
from src.core.logging import get_logger
from src.core.metrics import record_anchor_source, record_vision_call, track_stage_latency
from src.engines.tryon.schemas import AnchorPoint, AnchorSource, ImageAsset
from src.engines.tryon.vision_client import IVisionClient

logger = get_logger(__name__)


ANCHOR_PROMPT = (
    "You are helping place a garment or accessory on a pet photo. "
    "The attached image is {width}x{height} pixels. "
    "Find the center of the animal's neck/upper torso, where a garment would sit. "
    'Respond with ONLY a JSON object like {{"x": 120, "y": 80, "width": 150}}: '
    "x and y are pixel coordinates in this image, width is a good garment width in pixels. "
    "No explanations, no markdown."
)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_anchor_response(text: str) -> Dict[str, float]:
    """
    Extract {x, y, width?} from a model completion.

    Accepts bare JSON, JSON inside a Markdown fence, or JSON surrounded by
    prose. Raises ValueError when no object with numeric x and y is found.
    """
    candidate = text.strip()

    fenced = _FENCED_JSON.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    else:
        start, end = candidate.find("{"), candidate.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in completion")
        candidate = candidate[start:end + 1]

    data = json.loads(candidate)
    if not isinstance(data, dict):
        raise ValueError("completion JSON is not an object")

    x, y = data.get("x"), data.get("y")
    if not _is_number(x) or not _is_number(y):
        raise ValueError("completion JSON lacks numeric x/y")

    parsed = {"x": float(x), "y": float(y)}
    width = data.get("width")
    if _is_number(width) and width > 0:
        parsed["width"] = float(width)
    return parsed


def downsample_for_inference(
    asset: ImageAsset,
    max_width: int,
    quality: int
) -> Tuple[bytes, int, int]:
    """
    Shrink the subject to at most max_width (aspect preserved) and re-encode
    as JPEG. Returns (jpeg_bytes, width, height) of the derived copy.
    """
    img = asset.to_image().convert("RGB")

    if img.width > max_width:
        new_height = max(1, round(img.height * max_width / img.width))
        img = img.resize((max_width, new_height), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue(), img.width, img.height


class IAnchorLocator(ABC):
    """Capability interface: subject image in, anchor point out."""

    @abstractmethod
    async def locate(self, asset: ImageAsset) -> AnchorPoint:
        pass


class CenterAnchorLocator(IAnchorLocator):
    """Deterministic geometric estimate: the center of the subject."""

    async def locate(self, asset: ImageAsset) -> AnchorPoint:
        return AnchorPoint(
            x=asset.width / 2,
            y=asset.height / 2,
            source=AnchorSource.FALLBACK
        )


class VisionAnchorLocator(IAnchorLocator):
    """Asks the vision model for an anchor. Raises VisionUnavailableError on any failure."""

    def __init__(
        self,
        client: IVisionClient,
        max_width: int = 512,
        jpeg_quality: int = 60
    ):
        self.client = client
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality

    async def locate(self, asset: ImageAsset) -> AnchorPoint:
        with track_stage_latency("vision"):
            payload, small_width, small_height = await asyncio.to_thread(
                downsample_for_inference, asset, self.max_width, self.jpeg_quality
            )

            logger.info(
                "vision_request_started",
                original_size=(asset.width, asset.height),
                payload_size=(small_width, small_height),
                payload_bytes=len(payload)
            )

            text = await self.client.complete(
                ANCHOR_PROMPT.format(width=small_width, height=small_height),
                image_bytes=payload,
                mime_type="image/jpeg"
            )

            try:
                parsed = parse_anchor_response(text)
            except ValueError as e:
                record_vision_call(status="unparseable")
                raise VisionUnavailableError(f"Unusable vision response: {e}") from e

        record_vision_call(status="success")

        # Back to full-resolution coordinates
        ratio = asset.width / small_width
        suggested_width: Optional[float] = None
        if "width" in parsed:
            suggested_width = parsed["width"] * ratio

        return AnchorPoint(
            x=parsed["x"] * ratio,
            y=parsed["y"] * ratio,
            source=AnchorSource.VISION,
            suggested_width=suggested_width
        )


class FallbackAnchorLocator(IAnchorLocator):
    """
    Try the primary locator under a timeout, then fall back.

    Never raises (cancellation excepted): a slow, failing or unconfigured
    vision service only changes where the overlay lands.
    """

    def __init__(
        self,
        primary: IAnchorLocator,
        fallback: Optional[IAnchorLocator] = None,
        timeout_seconds: float = 8.0
    ):
        self.primary = primary
        self.fallback = fallback or CenterAnchorLocator()
        self.timeout_seconds = timeout_seconds

    async def locate(self, asset: ImageAsset) -> AnchorPoint:
        try:
            anchor = await asyncio.wait_for(self.primary.locate(asset), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            record_vision_call(status="timeout")
            logger.warning("vision_unavailable", reason="timeout", timeout_seconds=self.timeout_seconds)
        except Exception as e:
            logger.warning("vision_unavailable", reason=str(e), error_type=type(e).__name__)
        else:
            record_anchor_source(anchor.source.value)
            logger.info("anchor_located", x=anchor.x, y=anchor.y, source=anchor.source.value)
            return anchor

        anchor = await self.fallback.locate(asset)
        record_anchor_source(anchor.source.value)
        logger.info("anchor_located", x=anchor.x, y=anchor.y, source=anchor.source.value)
        return anchor
