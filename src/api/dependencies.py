"""
FastAPI Dependencies for the Try-On Service

Provides dependency injection for:
- Vision client (process-wide, created in the app lifespan)
- Anchor locator (vision with timeout + center fallback, per-request)
- Temp storage backend (singleton)
- TryOnService (per-request)

Tests swap any of these through app.dependency_overrides.
"""

from fastapi import Depends, Request

from src.core.config import settings
from src.core.storage import ITempStorage, get_temp_storage
from src.engines.tryon.anchor import (
    CenterAnchorLocator,
    FallbackAnchorLocator,
    IAnchorLocator,
    VisionAnchorLocator,
)
from src.engines.tryon.services import TryOnService
from src.engines.tryon.vision_client import IVisionClient


# =============================================================================
# Vision Client
# =============================================================================

def get_vision_client(request: Request) -> IVisionClient:
    """Returns the vision client created in the lifespan handler."""
    return request.app.state.vision_client


# =============================================================================
# Anchor Locator
# =============================================================================

def get_anchor_locator(
    vision_client: IVisionClient = Depends(get_vision_client),
) -> IAnchorLocator:
    """Vision locator bounded by VISION_TIMEOUT_SECONDS, falling back to the subject center."""
    return FallbackAnchorLocator(
        primary=VisionAnchorLocator(
            vision_client,
            max_width=settings.VISION_MAX_WIDTH,
            jpeg_quality=settings.VISION_JPEG_QUALITY
        ),
        fallback=CenterAnchorLocator(),
        timeout_seconds=settings.VISION_TIMEOUT_SECONDS
    )


# =============================================================================
# Try-On Service
# =============================================================================

def get_tryon_service(
    storage: ITempStorage = Depends(get_temp_storage),
    anchor_locator: IAnchorLocator = Depends(get_anchor_locator),
) -> TryOnService:
    """Returns a TryOnService wired to the shared storage backend."""
    return TryOnService(
        storage=storage,
        anchor_locator=anchor_locator,
        default_fraction=settings.DEFAULT_OVERLAY_FRACTION,
        max_upload_bytes=settings.MAX_IMAGE_SIZE_BYTES,
        max_overlay_scale=settings.MAX_OVERLAY_SCALE
    )
