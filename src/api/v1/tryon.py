"""
Try-On Endpoint

POST /api/v1/try-on - Composite an overlay (garment/accessory) onto a pet photo:
1. Validate both uploads
2. Locate the anchor (vision hint, center fallback)
3. Place, scale and composite the overlay
4. Return the PNG
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response

from src.api.dependencies import get_tryon_service
from src.core.logging import get_logger
from src.engines.tryon.schemas import UploadDTO
from src.engines.tryon.services import TryOnService

logger = get_logger(__name__)
router = APIRouter()


async def _read_upload(field_name: str, upload: Optional[UploadFile]) -> Optional[UploadDTO]:
    """Pull the multipart part into memory; None when the field was not sent."""
    if upload is None:
        return None

    try:
        data = await upload.read()
    finally:
        await upload.close()

    return UploadDTO(
        field_name=field_name,
        filename=upload.filename,
        content_type=upload.content_type,
        data=data
    )


@router.post(
    "",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}}, "description": "Composited image"},
        400: {"description": "MissingInput, MalformedOverlay or InvalidParameter"},
        413: {"description": "UploadTooLarge"},
        500: {"description": "CompositingFailure"},
    },
)
async def try_on(
    subject: Optional[UploadFile] = File(None, description="Photo of the pet"),
    overlay: Optional[UploadFile] = File(None, description="Garment/accessory graphic, ideally transparent PNG"),
    overlay_width: Optional[float] = Form(None, description="Target overlay width in subject pixels"),
    service: TryOnService = Depends(get_tryon_service),
):
    """
    Composite the overlay onto the subject.

    The overlay is centered on the anchor point the vision model suggests,
    or on the center of the photo when the model is unavailable. Without an
    `overlay_width` hint the overlay is scaled to a fixed fraction of the
    photo width.
    """
    request_id = str(uuid.uuid4())

    result = await service.run(
        subject=await _read_upload("subject", subject),
        overlay=await _read_upload("overlay", overlay),
        overlay_width=overlay_width,
        request_id=request_id
    )

    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={
            "X-Request-ID": result.request_id,
            "X-Anchor-Source": result.anchor.source.value,
            "X-Anchor-Point": f"{result.anchor.x:.1f},{result.anchor.y:.1f}",
        }
    )
