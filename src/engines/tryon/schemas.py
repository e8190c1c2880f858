import io
from enum import Enum
from typing import Optional, Tuple

from PIL import Image, ImageOps
from pydantic import BaseModel, ConfigDict, Field


EXIF_ORIENTATION = 0x0112


class AnchorSource(str, Enum):
    VISION = "vision"
    FALLBACK = "fallback"


class TryOnState(str, Enum):
    VALIDATING = "validating"
    LOCATING_ANCHOR = "locating_anchor"
    COMPOSITING = "compositing"
    DONE = "done"
    FAILED = "failed"


class UploadDTO(BaseModel):
    """One multipart upload as received by the API layer."""
    field_name: str
    filename: Optional[str] = None
    content_type: Optional[str] = None
    data: bytes = b""

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0


class ImageAsset(BaseModel):
    """Raw image bytes plus the metadata read from the image header."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    width: int
    height: int
    encoding: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: bytes, upright: bool = False) -> "ImageAsset":
        """
        Read dimensions and format. Raises PIL.UnidentifiedImageError / OSError.

        With upright=True an EXIF orientation tag is applied and the rotated
        pixels are re-encoded as PNG, so width/height match what a viewer shows.
        """
        with Image.open(io.BytesIO(data)) as img:
            if upright and img.getexif().get(EXIF_ORIENTATION, 1) != 1:
                rotated = ImageOps.exif_transpose(img)
                buffer = io.BytesIO()
                rotated.save(buffer, format="PNG")
                return cls(data=buffer.getvalue(), width=rotated.width, height=rotated.height, encoding="PNG")

            width, height = img.size
            encoding = img.format
        return cls(data=data, width=width, height=height, encoding=encoding)

    def to_image(self) -> Image.Image:
        img = Image.open(io.BytesIO(self.data))
        img.load()
        return img


class AnchorPoint(BaseModel):
    """Pixel location on the full-resolution subject used to center the overlay."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    source: AnchorSource = AnchorSource.FALLBACK
    # Overlay width suggested by the vision model, in subject pixels
    suggested_width: Optional[float] = Field(default=None, gt=0)


class PlacementPlan(BaseModel):
    """Overlay target size and top-left corner on the subject canvas."""
    model_config = ConfigDict(frozen=True)

    overlay_width: float
    overlay_height: float
    left: int
    top: int

    @property
    def size(self) -> Tuple[int, int]:
        """Integer resize target, never below 1x1."""
        return max(1, round(self.overlay_width)), max(1, round(self.overlay_height))


class TryOnResult(BaseModel):
    """Terminal value of a successful try-on request."""
    request_id: str
    content: bytes
    media_type: str = "image/png"
    width: int
    height: int
    anchor: AnchorPoint
    plan: PlacementPlan
