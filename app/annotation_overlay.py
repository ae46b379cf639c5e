"""Annotation overlay: paint annotations and the live gesture on the page image.

Annotations are stored in the capture space of their page (the render size
frozen when the first one was drawn).  Both public functions take *scale*,
the ratio of the current rendering to that capture space, and paint through
``painter.scale`` so zooming never moves an annotation.
The look matches what ``pdf_exporter`` writes into the PDF.
"""
from functools import lru_cache
from typing import Iterable

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import QColor, QFont, QImage, QPainter, QPainterPath, QPen, QPixmap

import drawing_session as ds
import pdf_exporter
from geometry import normalize_rect
from models import (
    Annotation, ImageAnnotation, NoteAnnotation, PathAnnotation,
    RectAnnotation, TextAnnotation,
)

_RECT_COLOR = QColor(0, 0, 255)
_NOTE_COLOR = QColor("#ffeb3b")
_HINT_BG    = QColor(0, 0, 0, 178)


def _qcolor(rgb, opacity: float = 1.0) -> QColor:
    r, g, b = rgb
    return QColor.fromRgbF(r, g, b, opacity)


@lru_cache(maxsize=32)
def _decode(data: bytes) -> QImage:
    return QImage.fromData(data)


# ── Public drawing helpers ────────────────────────────────────────────────────

def draw_annotations(pixmap: QPixmap, annotations: Iterable[Annotation],
                     scale: float = 1.0) -> QPixmap:
    """Return a *copy* of *pixmap* with *annotations* painted in order.

    *scale* maps the page's capture space onto the current rendering
    (current size / recorded size), for pages annotated at another zoom.
    """
    result = pixmap.copy()
    painter = QPainter(result)
    painter.setRenderHint(QPainter.RenderHint.Antialiasing)
    painter.scale(scale, scale)
    for ann in annotations:
        _draw_one(painter, ann)
    painter.end()
    return result


def draw_preview(pixmap: QPixmap, state: ds.State, scale: float = 1.0) -> None:
    """Draw the in-progress gesture on *pixmap* **in place**."""
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.RenderHint.Antialiasing)
    if isinstance(state, ds.PendingPlacement):
        _draw_hint(painter, "Click on the page to place the image")
        painter.end()
        return
    painter.scale(scale, scale)
    if isinstance(state, ds.DrawingPath):
        if state.tool == ds.TOOL_HIGHLIGHT:
            color = _qcolor(ds.HIGHLIGHT_COLOR, ds.HIGHLIGHT_OPACITY)
            width = ds.HIGHLIGHT_WIDTH
        else:
            color = _qcolor(ds.PEN_COLOR)
            width = ds.PEN_WIDTH
        _stroke_points(painter, state.points, color, width)
    elif isinstance(state, ds.DrawingRect):
        painter.setPen(QPen(_RECT_COLOR, pdf_exporter.RECT_BORDER_WIDTH))
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRect(QRectF(*normalize_rect(state.x, state.y, state.width, state.height)))
    painter.end()


# ── Internal helpers ──────────────────────────────────────────────────────────

def _stroke_points(painter: QPainter, points, color: QColor, width: float):
    if not points:
        return
    pen = QPen(color, width, Qt.PenStyle.SolidLine,
               Qt.PenCapStyle.RoundCap, Qt.PenJoinStyle.RoundJoin)
    painter.setPen(pen)
    path = QPainterPath(QPointF(*points[0]))
    for p in points[1:]:
        path.lineTo(QPointF(*p))
    painter.drawPath(path)


def _draw_hint(painter: QPainter, text: str):
    font = QFont()
    font.setPixelSize(13)
    painter.setFont(font)
    box = QRectF(10, 10, painter.fontMetrics().horizontalAdvance(text) + 16, 26)
    painter.fillRect(box, _HINT_BG)
    painter.setPen(QColor("white"))
    painter.drawText(box, Qt.AlignmentFlag.AlignCenter, text)


def _draw_text_at(painter: QPainter, x: float, y: float, text: str, px: float):
    font = QFont("Helvetica")
    font.setPixelSize(max(1, round(px)))
    painter.setFont(font)
    painter.setPen(QColor("black"))
    painter.drawText(QPointF(x, y), text)


def _draw_one(painter: QPainter, ann: Annotation):
    if isinstance(ann, PathAnnotation):
        _stroke_points(painter, ann.points, _qcolor(ann.color, ann.opacity), ann.stroke_width)

    elif isinstance(ann, TextAnnotation):
        # y is the baseline, as in the PDF
        _draw_text_at(painter, ann.x, ann.y, ann.content, ann.font_size)

    elif isinstance(ann, RectAnnotation):
        painter.setPen(QPen(_RECT_COLOR, pdf_exporter.RECT_BORDER_WIDTH))
        painter.setBrush(Qt.BrushStyle.NoBrush)
        painter.drawRect(QRectF(*normalize_rect(ann.x, ann.y, ann.width, ann.height)))

    elif isinstance(ann, ImageAnnotation):
        img = _decode(ann.image_bytes)
        if not img.isNull():
            painter.drawImage(QRectF(ann.x, ann.y, ann.width, ann.height), img)

    elif isinstance(ann, NoteAnnotation):
        painter.fillRect(QRectF(ann.x, ann.y, pdf_exporter.NOTE_WIDTH,
                                pdf_exporter.NOTE_HEIGHT), _NOTE_COLOR)
        dx, dy = pdf_exporter.NOTE_TEXT_OFFSET
        _draw_text_at(painter, ann.x + dx, ann.y + dy, ann.content,
                      pdf_exporter.NOTE_FONT_SIZE)
