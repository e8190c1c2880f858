import pytest

from src.core.exceptions import InvalidParameterError, MalformedOverlayError
from src.engines.tryon.placement import compute_placement, clamp_anchor
from src.engines.tryon.schemas import AnchorPoint, AnchorSource


def test_aspect_ratio_preserved():
    plan = compute_placement(1000, 800, AnchorPoint(x=200, y=100), 300, 600, target_width=150)
    assert plan.overlay_width == 150
    assert plan.overlay_height == 300


def test_offsets_center_overlay_on_anchor():
    plan = compute_placement(1000, 800, AnchorPoint(x=200, y=100), 300, 600, target_width=150)
    assert plan.left == 125
    assert plan.top == -50


def test_default_fraction_when_no_hint():
    plan = compute_placement(400, 300, AnchorPoint(x=200, y=150), 100, 200, default_fraction=0.45)
    assert plan.overlay_width == pytest.approx(180)
    assert plan.overlay_height == pytest.approx(360)
    assert (plan.left, plan.top) == (110, -30)


@pytest.mark.parametrize("hint", [0, -20, float("nan"), None])
def test_non_positive_hint_falls_back_to_default(hint):
    plan = compute_placement(400, 300, AnchorPoint(x=200, y=150), 100, 100, target_width=hint, default_fraction=0.5)
    assert plan.overlay_width == 200


def test_vision_suggested_width_used_without_hint():
    anchor = AnchorPoint(x=200, y=150, source=AnchorSource.VISION, suggested_width=120)
    plan = compute_placement(400, 300, anchor, 100, 100)
    assert plan.overlay_width == 120


def test_hint_beats_vision_suggestion():
    anchor = AnchorPoint(x=200, y=150, source=AnchorSource.VISION, suggested_width=120)
    plan = compute_placement(400, 300, anchor, 100, 100, target_width=60)
    assert plan.overlay_width == 60


@pytest.mark.parametrize("width,height", [(0, 100), (100, 0), (-5, 10)])
def test_zero_overlay_dimension_is_malformed(width, height):
    with pytest.raises(MalformedOverlayError) as exc_info:
        compute_placement(400, 300, AnchorPoint(x=10, y=10), width, height)
    assert exc_info.value.code == 400
    assert exc_info.value.kind == "MalformedOverlay"


def test_anchor_outside_canvas_is_clamped():
    plan = compute_placement(400, 300, AnchorPoint(x=-50, y=900), 100, 100, target_width=100)
    # Anchor pinned to (0, 300)
    assert plan.left == -50
    assert plan.top == 250


def test_offsets_are_not_clamped_to_canvas():
    plan = compute_placement(400, 300, AnchorPoint(x=395, y=5), 100, 100, target_width=100)
    assert plan.left == 345
    assert plan.top == -45
    assert plan.left + plan.size[0] > 400


def test_clamp_anchor_keeps_in_range_point():
    anchor = AnchorPoint(x=10, y=20, source=AnchorSource.VISION)
    assert clamp_anchor(anchor, 100, 100) is anchor


def test_placement_is_deterministic():
    args = (640, 480, AnchorPoint(x=321.7, y=99.2), 256, 128)
    assert compute_placement(*args, target_width=77) == compute_placement(*args, target_width=77)


def test_vision_suggestion_capped_at_subject_width():
    anchor = AnchorPoint(x=200, y=150, source=AnchorSource.VISION, suggested_width=5e8)
    plan = compute_placement(400, 300, anchor, 100, 200)
    assert plan.size == (400, 800)


def test_oversized_hint_is_rejected():
    with pytest.raises(InvalidParameterError) as exc_info:
        compute_placement(400, 300, AnchorPoint(x=200, y=150), 100, 200, target_width=1e9)
    assert exc_info.value.code == 400
    assert exc_info.value.kind == "InvalidParameter"
    assert exc_info.value.details["field"] == "overlay_width"


def test_hint_at_scale_limit_is_accepted():
    plan = compute_placement(400, 300, AnchorPoint(x=200, y=150), 100, 200, target_width=1600, max_scale=4.0)
    assert plan.overlay_width == 1600
