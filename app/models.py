"""Data models for PDF Workbench."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from errors import ValidationError

Point = Tuple[float, float]
Color = Tuple[float, float, float]


# ── Annotation records ────────────────────────────────────────────────────────
# Geometry is in screen pixels as captured, relative to the RenderSize the
# page had at capture time.  Records are never mutated once committed.

@dataclass(frozen=True)
class PathAnnotation:
    points: Tuple[Point, ...]
    color: Color
    stroke_width: float
    opacity: float = 1.0
    highlight: bool = False
    kind: str = field(default="path", init=False)


@dataclass(frozen=True)
class TextAnnotation:
    x: float
    y: float
    content: str
    font_size: float = 16.0
    kind: str = field(default="text", init=False)


@dataclass(frozen=True)
class RectAnnotation:
    x: float
    y: float
    width: float    # may be negative when dragged up/left
    height: float
    kind: str = field(default="rect", init=False)


@dataclass(frozen=True)
class ImageAnnotation:
    x: float
    y: float
    width: float
    height: float
    image_bytes: bytes = field(repr=False)
    mime_kind: str = "png"   # "png" | "jpeg"
    kind: str = field(default="image", init=False)


@dataclass(frozen=True)
class NoteAnnotation:
    x: float
    y: float
    content: str
    kind: str = field(default="note", init=False)


Annotation = Union[PathAnnotation, TextAnnotation, RectAnnotation,
                   ImageAnnotation, NoteAnnotation]


@dataclass(frozen=True)
class RenderSize:
    """Pixel size a page had when it was last rasterised for display."""
    width: float
    height: float


RenderDimensions = Dict[int, RenderSize]


@dataclass(frozen=True)
class CropPercent:
    """Crop rectangle in percent of the displayed page, origin top-left."""
    x: float = 10.0
    y: float = 10.0
    width: float = 80.0
    height: float = 80.0


@dataclass
class EditorSettings:
    debug_mode: bool = False        # verbose logging and per-save log files
    hi_dpr: bool = True             # use high DPI rendering (Retina); disable for speed
    default_zoom: float = 1.2
    output_dir: str = ""            # empty = next to the source document
    last_document: Optional[str] = None


# ── Annotation store ──────────────────────────────────────────────────────────

class AnnotationStore:
    """Per-page, insertion-ordered annotation lists keyed by 1-based page number."""

    def __init__(self):
        self._pages: Dict[int, List[Annotation]] = {}

    def add(self, page: int, annotation: Annotation) -> None:
        if page < 1:
            raise ValidationError(f"Page numbers start at 1, got {page}")
        self._pages.setdefault(page, []).append(annotation)

    def for_page(self, page: int) -> Tuple[Annotation, ...]:
        return tuple(self._pages.get(page, ()))

    def pages(self) -> List[int]:
        """Return page numbers that carry annotations, ascending."""
        return sorted(p for p, anns in self._pages.items() if anns)

    def count(self) -> int:
        return sum(len(anns) for anns in self._pages.values())

    def undo_last(self, page: int) -> Optional[Annotation]:
        """Remove and return the most recent annotation on *page*, if any."""
        anns = self._pages.get(page)
        if not anns:
            return None
        removed = anns.pop()
        if not anns:
            del self._pages[page]
        return removed

    def clear(self) -> None:
        self._pages.clear()

    def __len__(self) -> int:
        return self.count()
