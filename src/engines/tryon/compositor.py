import io
from typing import Optional, Tuple

from PIL import Image

from src.core.exceptions import CompositingFailureError
from src.core.logging import with_logging
from src.engines.tryon.schemas import ImageAsset, PlacementPlan


def visible_region(plan: PlacementPlan, canvas_size: Tuple[int, int]) -> Optional[Tuple[int, int, int, int]]:
    """Canvas box (left, top, right, bottom) covered by the scaled overlay, None if off-canvas."""
    width, height = plan.size
    left = max(plan.left, 0)
    top = max(plan.top, 0)
    right = min(plan.left + width, canvas_size[0])
    bottom = min(plan.top + height, canvas_size[1])
    if right <= left or bottom <= top:
        return None
    return left, top, right, bottom


def source_box(
    plan: PlacementPlan,
    visible: Tuple[int, int, int, int],
    source_size: Tuple[int, int]
) -> Tuple[float, float, float, float]:
    """Map a visible canvas box back onto the overlay's natural pixel grid."""
    width, height = plan.size
    sx = source_size[0] / width
    sy = source_size[1] / height
    return (
        (visible[0] - plan.left) * sx,
        (visible[1] - plan.top) * sy,
        (visible[2] - plan.left) * sx,
        (visible[3] - plan.top) * sy,
    )


@with_logging("compositing")
def composite(subject: ImageAsset, overlay: ImageAsset, plan: PlacementPlan) -> bytes:
    """
    Render the overlay onto a copy of the subject and encode as PNG.

    The overlay is scaled to plan.size and alpha-composited with its top-left
    corner at (plan.left, plan.top); whatever falls outside the canvas is
    clipped. Only the visible part is resampled, so memory stays bounded by
    the subject size. The output always has the subject's pixel dimensions.

    Raises:
        CompositingFailureError: decode, resize, render or encode failed
    """
    try:
        base = subject.to_image()
        keep_alpha = "A" in base.getbands() or "transparency" in base.info
        canvas = base.convert("RGBA")

        result = canvas
        visible = visible_region(plan, canvas.size)
        if visible is not None:
            source = overlay.to_image().convert("RGBA")
            garment = source.resize(
                (visible[2] - visible[0], visible[3] - visible[1]),
                Image.Resampling.LANCZOS,
                box=source_box(plan, visible, source.size)
            )

            layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
            layer.paste(garment, (visible[0], visible[1]))
            result = Image.alpha_composite(canvas, layer)

        if not keep_alpha:
            result = result.convert("RGB")

        buffer = io.BytesIO()
        result.save(buffer, format="PNG")
        return buffer.getvalue()

    except Exception as e:
        raise CompositingFailureError(
            f"Compositing failed: {e}",
            details={"error_type": type(e).__name__}
        ) from e
