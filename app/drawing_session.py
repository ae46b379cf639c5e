"""Drawing session: the active tool and the gesture currently in progress.

The session is an explicit state machine.  Each state is an immutable record,
so an in-progress gesture can never exist without the tool that started it:

    Idle(tool) ── pointer_down (pen/highlight) ──▶ DrawingPath ── pointer_up ──▶ Idle
    Idle(rect) ── pointer_down ──▶ DrawingRect ── pointer_up ──▶ Idle(rect)
    Idle(text|note) ── click ──▶ PendingInput ── confirm/cancel ──▶ Idle(view)
    any ── stage_image ──▶ PendingPlacement ── click ──▶ Idle(view)

Committed annotations are appended to the session's AnnotationStore under
the current (1-based) page number.
"""
import logging
import os
from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

import fitz  # pymupdf

from errors import ValidationError
from models import (
    Annotation, AnnotationStore, ImageAnnotation, NoteAnnotation,
    PathAnnotation, Point, RectAnnotation, TextAnnotation,
)

logger = logging.getLogger(__name__)

TOOL_VIEW      = "view"
TOOL_PEN       = "pen"
TOOL_HIGHLIGHT = "highlight"
TOOL_RECT      = "rect"
TOOL_TEXT      = "text"
TOOL_IMAGE     = "image"
TOOL_NOTE      = "note"

TOOLS = (TOOL_VIEW, TOOL_PEN, TOOL_HIGHLIGHT, TOOL_RECT,
         TOOL_TEXT, TOOL_IMAGE, TOOL_NOTE)

# Fixed per-tool stroke styles (not user-configurable at capture time)
PEN_COLOR       = (1.0, 0.0, 0.0)
PEN_WIDTH       = 2.0
PEN_OPACITY     = 1.0
HIGHLIGHT_COLOR   = (1.0, 1.0, 0.0)
HIGHLIGHT_WIDTH   = 20.0
HIGHLIGHT_OPACITY = 0.5

RECT_MIN_DRAG = 5          # px; smaller drags are accidental clicks
IMAGE_MAX_SIZE = 200       # px box a staged image is fitted into
TEXT_FONT_SIZE = 16

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_MAGIC = b"\xff\xd8\xff"


# ── States ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Idle:
    tool: str


@dataclass(frozen=True)
class DrawingPath:
    tool: str                   # pen | highlight
    points: Tuple[Point, ...]


@dataclass(frozen=True)
class DrawingRect:
    x: float
    y: float
    width: float = 0.0          # live extent, negative when dragging up/left
    height: float = 0.0
    tool: str = TOOL_RECT


@dataclass(frozen=True)
class PendingInput:
    tool: str                   # text | note
    page: int
    x: float
    y: float
    value: str = ""


@dataclass(frozen=True)
class PendingPlacement:
    image_bytes: bytes
    mime_kind: str
    width: float                # staged size in screen units, already fitted
    height: float
    tool: str = TOOL_IMAGE


State = Union[Idle, DrawingPath, DrawingRect, PendingInput, PendingPlacement]


# ── Stroke styles ─────────────────────────────────────────────────────────────

def stroke(points: Tuple[Point, ...], highlight: bool = False) -> PathAnnotation:
    """A pen or highlighter path in that tool's fixed style."""
    if highlight:
        return PathAnnotation(points, HIGHLIGHT_COLOR, HIGHLIGHT_WIDTH,
                              opacity=HIGHLIGHT_OPACITY, highlight=True)
    return PathAnnotation(points, PEN_COLOR, PEN_WIDTH, opacity=PEN_OPACITY)


# ── Image helpers ─────────────────────────────────────────────────────────────

def sniff_image_kind(data: bytes, filename: Optional[str] = None) -> str:
    """Return ``"png"`` or ``"jpeg"``; raise ValidationError for anything else."""
    if data.startswith(_PNG_MAGIC):
        return "png"
    if data.startswith(_JPEG_MAGIC):
        return "jpeg"
    ext = os.path.splitext(filename or "")[1].lower()
    if ext == ".png":
        return "png"
    if ext in (".jpg", ".jpeg"):
        return "jpeg"
    raise ValidationError("Only PNG and JPEG images can be placed")


def fit_image(width: float, height: float, limit: float = IMAGE_MAX_SIZE) -> Tuple[float, float]:
    """Scale *(width, height)* down to fit a *limit* square, never up."""
    if width <= 0 or height <= 0:
        raise ValidationError(f"Image has no size ({width}×{height})")
    factor = min(limit / width, limit / height, 1.0)
    return width * factor, height * factor


def probe_image(data: bytes) -> Tuple[int, int]:
    """Decode *data* just far enough to learn its pixel size."""
    try:
        pix = fitz.Pixmap(data)
    except Exception as exc:
        raise ValidationError(f"Cannot decode image: {exc}") from exc
    return pix.width, pix.height


# ── Session ───────────────────────────────────────────────────────────────────

class DrawingSession:
    def __init__(self, store: AnnotationStore, page: int = 1):
        self._store = store
        self._page = page
        self._state: State = Idle(TOOL_VIEW)

    @property
    def state(self) -> State:
        return self._state

    @property
    def tool(self) -> str:
        return self._state.tool

    @property
    def page(self) -> int:
        return self._page

    @property
    def store(self) -> AnnotationStore:
        return self._store

    def preview(self) -> Optional[State]:
        """Return the gesture to draw on top of the page, if one is in progress."""
        if isinstance(self._state, (DrawingPath, DrawingRect, PendingPlacement)):
            return self._state
        return None

    def set_tool(self, tool: str) -> None:
        if tool not in TOOLS:
            raise ValidationError(f"Unknown tool {tool!r}")
        if isinstance(self._state, PendingPlacement) and tool == TOOL_IMAGE:
            return
        if isinstance(self._state, PendingInput):
            self.confirm_text()
        elif not isinstance(self._state, Idle):
            logger.debug("Tool change discards in-progress %s", type(self._state).__name__)
        self._state = Idle(tool)

    def set_page(self, page: int) -> None:
        """Switch pages.  Pending text is confirmed, gestures are dropped."""
        if page < 1:
            raise ValidationError(f"Page numbers start at 1, got {page}")
        if isinstance(self._state, PendingInput):
            self.confirm_text()
        elif isinstance(self._state, (DrawingPath, DrawingRect)):
            self._state = Idle(self._state.tool)
        self._page = page

    # ── Pointer gestures (pen / highlight / rect) ────────────────────────────

    def pointer_down(self, x: float, y: float) -> None:
        st = self._state
        if not isinstance(st, Idle):
            return
        if st.tool in (TOOL_PEN, TOOL_HIGHLIGHT):
            self._state = DrawingPath(st.tool, ((x, y),))
        elif st.tool == TOOL_RECT:
            self._state = DrawingRect(x, y)

    def pointer_move(self, x: float, y: float) -> None:
        st = self._state
        if isinstance(st, DrawingPath):
            self._state = replace(st, points=st.points + ((x, y),))
        elif isinstance(st, DrawingRect):
            self._state = replace(st, width=x - st.x, height=y - st.y)

    def pointer_up(self) -> Optional[Annotation]:
        """Finish the drag (also used for pointer-leave).  Returns the new annotation."""
        st = self._state
        if isinstance(st, DrawingPath):
            self._state = Idle(st.tool)
            ann = stroke(st.points, highlight=st.tool == TOOL_HIGHLIGHT)
            return self._commit(self._page, ann)
        if isinstance(st, DrawingRect):
            self._state = Idle(TOOL_RECT)
            if abs(st.width) > RECT_MIN_DRAG or abs(st.height) > RECT_MIN_DRAG:
                return self._commit(self._page, RectAnnotation(st.x, st.y, st.width, st.height))
            logger.debug("Rect %.1f×%.1f below drag threshold, discarded", st.width, st.height)
        return None

    # ── Clicks (text / note anchor, image placement) ─────────────────────────

    def click(self, x: float, y: float) -> Optional[Annotation]:
        st = self._state
        if isinstance(st, Idle) and st.tool in (TOOL_TEXT, TOOL_NOTE):
            self._state = PendingInput(st.tool, self._page, x, y)
        elif isinstance(st, PendingPlacement):
            ann = ImageAnnotation(x, y, st.width, st.height,
                                  image_bytes=st.image_bytes, mime_kind=st.mime_kind)
            self._state = Idle(TOOL_VIEW)
            return self._commit(self._page, ann)
        return None

    def update_text(self, value: str) -> None:
        if isinstance(self._state, PendingInput):
            self._state = replace(self._state, value=value)

    def confirm_text(self, value: Optional[str] = None) -> Optional[Annotation]:
        """Commit pending text or note (blur / explicit confirm)."""
        st = self._state
        if not isinstance(st, PendingInput):
            return None
        self._state = Idle(TOOL_VIEW)
        content = (st.value if value is None else value).strip()
        if not content:
            logger.debug("Empty %s input discarded", st.tool)
            return None
        if st.tool == TOOL_NOTE:
            ann = NoteAnnotation(st.x, st.y, content)
        else:
            ann = TextAnnotation(st.x, st.y, content, font_size=TEXT_FONT_SIZE)
        return self._commit(st.page, ann)

    def cancel_text(self) -> None:
        if isinstance(self._state, PendingInput):
            self._state = Idle(TOOL_VIEW)

    # ── Images ───────────────────────────────────────────────────────────────

    def stage_image(self, image_bytes: bytes, filename: Optional[str] = None) -> PendingPlacement:
        """Validate and size an image; the next click places it."""
        kind = sniff_image_kind(image_bytes, filename)
        w, h = fit_image(*probe_image(image_bytes))
        if isinstance(self._state, PendingInput):
            self.confirm_text()
        self._state = PendingPlacement(image_bytes, kind, w, h)
        logger.debug("Staged %s image at %.0f×%.0f", kind, w, h)
        return self._state

    # ── Internal ─────────────────────────────────────────────────────────────

    def _commit(self, page: int, ann: Annotation) -> Annotation:
        self._store.add(page, ann)
        logger.debug("Committed %s on page %d", ann.kind, page)
        return ann
