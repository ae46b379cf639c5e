"""Coordinate conversion between the on-screen page image and PDF space.

Coordinate notes
----------------
Screen space has its origin at the top-left of the rendered page image with
Y growing downwards, measured in pixels.  PDF user space has its origin at
the bottom-left with Y growing upwards, measured in points.  X and Y are
scaled independently because a page may be rendered with a non-uniform
aspect (e.g. a fit-to-width preview).

PyMuPDF's ``page.rect`` is rotation-aware, but its ``draw_*`` methods work
in the **native** (pre-rotation) top-down space.  ``visual_to_native()``
bridges the two for pages carrying ``/Rotate``.
"""
from dataclasses import dataclass
from typing import Tuple

from errors import ValidationError
from models import CropPercent, Point


@dataclass(frozen=True)
class DocBox:
    """Axis-aligned box in PDF space, anchored at its bottom-left corner."""
    x: float
    y: float
    width: float
    height: float


def normalize_rect(x: float, y: float, w: float, h: float) -> Tuple[float, float, float, float]:
    """Return *(x, y, w, h)* with non-negative extent anchored at the minimum corner."""
    return min(x, x + w), min(y, y + h), abs(w), abs(h)


@dataclass(frozen=True)
class PageTransform:
    render_width: float
    render_height: float
    page_width: float
    page_height: float

    def __post_init__(self):
        if min(self.render_width, self.render_height) <= 0:
            raise ValidationError(
                f"Render size must be positive, got "
                f"{self.render_width}×{self.render_height}"
            )
        if min(self.page_width, self.page_height) <= 0:
            raise ValidationError(
                f"Page size must be positive, got "
                f"{self.page_width}×{self.page_height}"
            )

    @property
    def sx(self) -> float:
        return self.page_width / self.render_width

    @property
    def sy(self) -> float:
        return self.page_height / self.render_height

    def scale_x(self, v: float) -> float:
        return v * self.sx

    def scale_y(self, v: float) -> float:
        return v * self.sy

    def to_document(self, x: float, y: float) -> Point:
        return x * self.sx, self.page_height - y * self.sy

    def to_screen(self, doc_x: float, doc_y: float) -> Point:
        return doc_x / self.sx, (self.page_height - doc_y) / self.sy

    def box_to_document(self, x: float, y: float, w: float, h: float) -> DocBox:
        """Map a top-left anchored screen box to a bottom-left anchored DocBox."""
        nx, ny, nw, nh = normalize_rect(x, y, w, h)
        return DocBox(
            x=nx * self.sx,
            y=self.page_height - (ny + nh) * self.sy,
            width=nw * self.sx,
            height=nh * self.sy,
        )


def crop_percent_to_box(rect: CropPercent, page_width: float, page_height: float) -> DocBox:
    """Convert a top-down percentage rectangle to an absolute bottom-up box."""
    crop_w = rect.width / 100 * page_width
    crop_h = rect.height / 100 * page_height
    return DocBox(
        x=rect.x / 100 * page_width,
        y=page_height - rect.y / 100 * page_height - crop_h,
        width=crop_w,
        height=crop_h,
    )


def doc_to_fitz_y(doc_y: float, page_height: float) -> float:
    """Flip a bottom-up PDF Y coordinate to PyMuPDF's top-down convention."""
    return page_height - doc_y


def visual_to_native(vx: float, vy: float, rotation: int,
                     mediabox_w: float, mediabox_h: float) -> Point:
    """Convert top-down visual (``page.rect``) coords to PyMuPDF draw coords."""
    rot = rotation % 360
    if rot == 90:
        return vy, mediabox_h - vx
    if rot == 180:
        return mediabox_w - vx, mediabox_h - vy
    if rot == 270:
        return mediabox_w - vy, vx
    return vx, vy
