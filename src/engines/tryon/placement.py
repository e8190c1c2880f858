"""
Placement Calculator

Pure geometry, no I/O and no state. The anchor is clamped onto the subject
canvas; the overlay's top-left corner is not, so an overlay may hang past an
edge and is cropped by the compositor.
"""

import math
from typing import Optional

from src.core.exceptions import CompositingFailureError, InvalidParameterError, MalformedOverlayError
from src.engines.tryon.schemas import AnchorPoint, PlacementPlan

DEFAULT_OVERLAY_FRACTION = 0.45
# Largest accepted overlay_width hint, as a multiple of the subject width
MAX_OVERLAY_SCALE = 4.0


def clamp_anchor(anchor: AnchorPoint, subject_width: int, subject_height: int) -> AnchorPoint:
    x = min(max(anchor.x, 0.0), float(subject_width))
    y = min(max(anchor.y, 0.0), float(subject_height))
    if x == anchor.x and y == anchor.y:
        return anchor
    return anchor.model_copy(update={"x": x, "y": y})


def _usable_width(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def compute_placement(
    subject_width: int,
    subject_height: int,
    anchor: AnchorPoint,
    overlay_width: int,
    overlay_height: int,
    target_width: Optional[float] = None,
    default_fraction: float = DEFAULT_OVERLAY_FRACTION,
    max_scale: float = MAX_OVERLAY_SCALE
) -> PlacementPlan:
    """
    Derive the overlay's size and position.

    Width policy, first match wins: a positive target_width from the caller,
    the width suggested by the vision model, subject_width * default_fraction.
    Height follows from the overlay's natural aspect ratio. The vision
    suggestion is capped at subject_width.

    Raises:
        MalformedOverlayError: overlay natural width or height is not positive
        InvalidParameterError: target_width exceeds subject_width * max_scale
    """
    if overlay_width <= 0 or overlay_height <= 0:
        raise MalformedOverlayError(
            f"Overlay has invalid dimensions {overlay_width}x{overlay_height}",
            stage="placement",
            details={"overlay_width": overlay_width, "overlay_height": overlay_height}
        )
    if subject_width <= 0 or subject_height <= 0:
        raise CompositingFailureError(
            f"Subject has invalid dimensions {subject_width}x{subject_height}",
            stage="placement"
        )

    if _usable_width(target_width):
        if target_width > subject_width * max_scale:
            raise InvalidParameterError(
                "overlay_width",
                f"overlay_width {target_width:g} exceeds {max_scale:g}x the subject width {subject_width}",
                stage="placement",
                details={"overlay_width": target_width, "limit": subject_width * max_scale}
            )
        target_overlay_width = float(target_width)
    elif _usable_width(anchor.suggested_width):
        target_overlay_width = min(float(anchor.suggested_width), float(subject_width))
    else:
        target_overlay_width = subject_width * default_fraction

    # Preserve aspect ratio
    target_overlay_height = overlay_height * (target_overlay_width / overlay_width)

    anchor = clamp_anchor(anchor, subject_width, subject_height)

    return PlacementPlan(
        overlay_width=target_overlay_width,
        overlay_height=target_overlay_height,
        left=round(anchor.x - target_overlay_width / 2),
        top=round(anchor.y - target_overlay_height / 2)
    )
