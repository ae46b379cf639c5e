import pytest

from errors import ValidationError
from geometry import (
    DocBox, PageTransform, crop_percent_to_box, doc_to_fitz_y, normalize_rect,
    visual_to_native,
)
from models import CropPercent


# ── PageTransform ────────────────────────────────────────────────────────────

def test_scale_factors_are_independent_per_axis():
    tf = PageTransform(600, 800, 300, 200)
    assert tf.sx == pytest.approx(0.5)
    assert tf.sy == pytest.approx(0.25)


def test_point_maps_to_bottom_up_space():
    tf = PageTransform(600, 800, 300, 400)
    assert tf.to_document(10, 10) == pytest.approx((5, 395))
    assert tf.to_document(0, 800) == pytest.approx((0, 0))


@pytest.mark.parametrize("x, y", [(0, 0), (10, 10), (599.5, 1.25), (123.4, 789.9)])
@pytest.mark.parametrize("dims", [(600, 800, 300, 400), (1000, 700, 595.28, 841.89)])
def test_round_trip_recovers_screen_point(x, y, dims):
    tf = PageTransform(*dims)
    assert tf.to_screen(*tf.to_document(x, y)) == pytest.approx((x, y))


def test_box_is_anchored_at_its_bottom_left():
    tf = PageTransform(600, 800, 300, 400)
    box = tf.box_to_document(10, 10, 20, 30)
    assert box == DocBox(x=5, y=380, width=10, height=15)


def test_box_dragged_up_left_is_normalized():
    tf = PageTransform(600, 800, 300, 400)
    assert tf.box_to_document(30, 40, -20, -30) == tf.box_to_document(10, 10, 20, 30)


@pytest.mark.parametrize("dims", [(0, 800, 300, 400), (600, -1, 300, 400), (600, 800, 0, 400)])
def test_transform_rejects_non_positive_sizes(dims):
    with pytest.raises(ValidationError):
        PageTransform(*dims)


# ── normalize_rect ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("w", [25.0, -25.0])
@pytest.mark.parametrize("h", [10.0, -10.0])
def test_normalize_rect_all_sign_combinations(w, h):
    x, y = 50.0, 60.0
    nx, ny, nw, nh = normalize_rect(x, y, w, h)
    assert nw >= 0 and nh >= 0
    assert nw * nh == pytest.approx(abs(w * h))
    assert nx == min(x, x + w)
    assert ny == min(y, y + h)


def test_normalize_rect_zero_extent():
    assert normalize_rect(5, 5, 0, 0) == (5, 5, 0, 0)


# ── Crop and PyMuPDF helpers ─────────────────────────────────────────────────

def test_crop_percent_to_box_default_margins():
    box = crop_percent_to_box(CropPercent(), 300, 400)
    assert box.x == pytest.approx(30)
    assert box.y == pytest.approx(40)
    assert box.width == pytest.approx(240)
    assert box.height == pytest.approx(320)


def test_crop_top_strip_lands_at_top_of_pdf_space():
    box = crop_percent_to_box(CropPercent(0, 0, 100, 25), 300, 400)
    assert box.y == pytest.approx(300)
    assert box.y + box.height == pytest.approx(400)


def test_doc_to_fitz_y_flips():
    assert doc_to_fitz_y(395, 400) == 5


@pytest.mark.parametrize("rotation, expected", [
    (0, (10, 20)),
    (90, (20, 390)),
    (180, (290, 380)),
    (270, (280, 10)),
    (360, (10, 20)),
])
def test_visual_to_native(rotation, expected):
    assert visual_to_native(10, 20, rotation, 300, 400) == pytest.approx(expected)
