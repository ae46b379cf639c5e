"""Commit annotations by replaying them into a fresh copy of the source PDF.

Coordinate notes
----------------
Annotations are stored in screen pixels of the page image they were drawn
on.  At save time every page gets its own ``PageTransform`` built from the
render size recorded for that page and the page's real size, so edits made
at different zoom levels all land in the right place.

``PageTransform`` yields bottom-up PDF coordinates.  PyMuPDF draws top-down
and, for pages with ``/Rotate``, in the native (pre-rotation) space, so
``PageCanvas`` flips Y back and then applies ``visual_to_native()`` before
calling any ``page.draw_*`` / ``insert_*`` method.

Save pipeline
-------------
1. parse the freshly fetched source bytes
2. resolve encryption (skipped with a warning if unsupported)
3. replay each page's annotations in stored order; one failing annotation
   is logged and skipped
4. serialise; this is the only stage whose failure aborts the save
"""
import functools
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import fitz  # pymupdf

import data_store
from document_session import EditorSession, open_pdf
from errors import (
    AnnotationApplyError, EncryptionUnsupportedError, SerializeError,
    ValidationError, WorkbenchError,
)
from geometry import DocBox, PageTransform, doc_to_fitz_y, visual_to_native
from models import (
    Annotation, AnnotationStore, ImageAnnotation, NoteAnnotation,
    PathAnnotation, RectAnnotation, RenderDimensions, RenderSize, TextAnnotation,
)

logger = logging.getLogger(__name__)


# ── Appearance constants (screen units, scaled per page at replay) ────────────
_BLACK       = (0.0, 0.0, 0.0)
RECT_COLOR   = (0.0, 0.0, 1.0)
RECT_BORDER_WIDTH = 3
NOTE_COLOR   = (1.0, 0.92, 0.23)     # #ffeb3b
NOTE_WIDTH   = 150
NOTE_HEIGHT  = 100
NOTE_FONT_SIZE = 14
NOTE_TEXT_OFFSET = (10, 20)          # from the note's top-left corner
_FONT = "helv"                       # base-14, Latin-1 only

# Font files tried, in order, for text Helvetica cannot encode.
# PDF_WORKBENCH_FONT, when set, is tried first.
UNICODE_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/TTF/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/noto/NotoSans-Regular.ttf",
    "/System/Library/Fonts/Supplemental/Arial Unicode.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    "C:/Windows/Fonts/arial.ttf",
    "C:/Windows/Fonts/segoeui.ttf",
]


# ── Diagnostic log ────────────────────────────────────────────────────────────

class SaveLog:
    """Timestamped ``"<ISO timestamp>: <message>"`` entries for one save attempt.

    Every entry is mirrored to :mod:`logging` so the console shows the same
    trail the user can download after a failed save.
    """

    def __init__(self):
        self.entries: List[str] = []

    def add(self, msg: str, level: int = logging.INFO) -> None:
        self.entries.append(data_store.format_log_entry(msg))
        logger.log(level, msg)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class SaveResult:
    data: bytes
    log: List[str]
    warnings: List[str] = field(default_factory=list)
    # page number -> primitives emitted per annotation, in stored order
    report: Dict[int, List[int]] = field(default_factory=dict)
    failed: int = 0


# ── Encryption ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EncryptionSettings:
    """Password protection: printing allowed, every other permission denied."""
    password: str

    def save_kwargs(self) -> dict:
        return {
            "encryption": fitz.PDF_ENCRYPT_AES_256,
            "owner_pw": self.password,
            "user_pw": self.password,
            "permissions": fitz.PDF_PERM_PRINT | fitz.PDF_PERM_PRINT_HQ,
        }


def _encryption_supported(doc: fitz.Document) -> bool:
    return doc.is_pdf and hasattr(fitz, "PDF_ENCRYPT_AES_256")


def prepare_encryption(doc: fitz.Document, password: str) -> EncryptionSettings:
    if not _encryption_supported(doc):
        raise EncryptionUnsupportedError(
            "This document cannot be encrypted; saving without a password"
        )
    return EncryptionSettings(password)


# ── Fonts ─────────────────────────────────────────────────────────────────────

def _font_paths() -> List[str]:
    override = os.environ.get("PDF_WORKBENCH_FONT")
    return ([override] if override else []) + list(UNICODE_FONT_CANDIDATES)


@functools.lru_cache(maxsize=None)
def _load_font(path: str) -> Optional[fitz.Font]:
    try:
        return fitz.Font(fontfile=path)
    except Exception as exc:
        logger.warning("Unusable font file %s: %s", path, exc)
        return None


def find_unicode_font(text: str) -> Optional[str]:
    """Return the first candidate font file with a glyph for every character."""
    needed = {ord(c) for c in text if not c.isspace()}
    for path in _font_paths():
        if not os.path.isfile(path):
            continue
        font = _load_font(path)
        if font is not None and all(font.has_glyph(cp) for cp in needed):
            return path
    return None


def font_for(text: str) -> dict:
    """``insert_text`` font arguments able to render *text*."""
    if all(ord(c) < 256 for c in text):
        return {"fontname": _FONT}
    path = find_unicode_font(text)
    if path is None:
        missing = "".join(sorted({c for c in text if ord(c) >= 256}))
        raise AnnotationApplyError(
            f"No installed font can render {missing!r}; set PDF_WORKBENCH_FONT"
            " to a TrueType font that covers it"
        )
    # one resource name per font file so pages can mix fonts
    return {"fontname": f"FU{_font_paths().index(path)}", "fontfile": path}


# ── Drawing target ────────────────────────────────────────────────────────────

class PageCanvas:
    """Draw PDF-space (bottom-up) primitives onto one PyMuPDF page."""

    def __init__(self, page: fitz.Page):
        self._page = page
        self.rotation = page.rotation
        self.width = page.rect.width      # visual, rotation-aware
        self.height = page.rect.height
        if self.rotation in (90, 270):
            self._nw, self._nh = self.height, self.width
        else:
            self._nw, self._nh = self.width, self.height

    def native_point(self, doc_x: float, doc_y: float) -> fitz.Point:
        vy = doc_to_fitz_y(doc_y, self.height)
        return fitz.Point(*visual_to_native(doc_x, vy, self.rotation, self._nw, self._nh))

    def native_rect(self, box: DocBox) -> fitz.Rect:
        p1 = self.native_point(box.x, box.y)
        p2 = self.native_point(box.x + box.width, box.y + box.height)
        return fitz.Rect(p1, p2).normalize()

    def line(self, start: Tuple[float, float], end: Tuple[float, float],
             color, width: float, opacity: float = 1.0) -> None:
        self._page.draw_line(
            self.native_point(*start), self.native_point(*end),
            color=color, width=width, stroke_opacity=opacity, lineCap=1,
        )

    def rect(self, box: DocBox, color=None, fill=None, width: float = 1.0) -> None:
        self._page.draw_rect(self.native_rect(box), color=color, fill=fill,
                             width=width if color is not None else 0)

    def text(self, doc_x: float, doc_y: float, content: str, size: float) -> None:
        """Insert *content* with its first baseline starting at *(doc_x, doc_y)*.

        Raises AnnotationApplyError when the text needs glyphs that neither
        Helvetica nor any installed Unicode font provides.
        """
        self._page.insert_text(
            self.native_point(doc_x, doc_y), content,
            fontsize=size, color=_BLACK, rotate=self.rotation, **font_for(content),
        )

    def image(self, box: DocBox, data: bytes, mime_kind: str) -> None:
        rect = self.native_rect(box)
        if mime_kind == "jpeg":
            # JPEG streams are embedded as-is (DCT data is kept)
            self._page.insert_image(rect, stream=data, keep_proportion=False,
                                    rotate=self.rotation)
        elif mime_kind == "png":
            # Decode PNG first so an alpha channel survives as a soft mask
            pix = fitz.Pixmap(data)
            self._page.insert_image(rect, pixmap=pix, keep_proportion=False,
                                    rotate=self.rotation)
        else:
            raise AnnotationApplyError(f"Unsupported image kind {mime_kind!r}")


# ── Replay ────────────────────────────────────────────────────────────────────

def replay_annotation(canvas: PageCanvas, ann: Annotation, tf: PageTransform) -> int:
    """Draw one annotation; return the number of primitives emitted."""
    if isinstance(ann, PathAnnotation):
        pts = [tf.to_document(x, y) for x, y in ann.points]
        if len(pts) < 2:
            return 0
        width = tf.scale_x(ann.stroke_width)
        for a, b in zip(pts, pts[1:]):
            canvas.line(a, b, ann.color, width, ann.opacity)
        return len(pts) - 1

    if isinstance(ann, TextAnnotation):
        x, y = tf.to_document(ann.x, ann.y)
        canvas.text(x, y, ann.content, tf.scale_y(ann.font_size))
        return 1

    if isinstance(ann, RectAnnotation):
        box = tf.box_to_document(ann.x, ann.y, ann.width, ann.height)
        canvas.rect(box, color=RECT_COLOR, width=tf.scale_x(RECT_BORDER_WIDTH))
        return 1

    if isinstance(ann, ImageAnnotation):
        box = tf.box_to_document(ann.x, ann.y, ann.width, ann.height)
        canvas.image(box, ann.image_bytes, ann.mime_kind)
        return 1

    if isinstance(ann, NoteAnnotation):
        box = tf.box_to_document(ann.x, ann.y, NOTE_WIDTH, NOTE_HEIGHT)
        canvas.rect(box, fill=NOTE_COLOR)
        dx, dy = NOTE_TEXT_OFFSET
        canvas.text(box.x + tf.scale_x(dx), box.y + box.height - tf.scale_y(dy),
                    ann.content, tf.scale_y(NOTE_FONT_SIZE))
        return 2

    raise AnnotationApplyError(f"Unknown annotation type {type(ann).__name__}")


def _describe(ann: Annotation) -> str:
    if isinstance(ann, PathAnnotation):
        kind = "highlight" if ann.highlight else "pen"
        return (f"path ({kind}) points={len(ann.points)} width={ann.stroke_width}"
                f" opacity={ann.opacity}")
    if isinstance(ann, (TextAnnotation, NoteAnnotation)):
        return f"{ann.kind} at ({ann.x:.1f}, {ann.y:.1f}) {ann.content!r}"
    return (f"{ann.kind} at ({ann.x:.1f}, {ann.y:.1f})"
            f" size {ann.width:.1f}×{ann.height:.1f}")


def commit_annotations(
    source_bytes: bytes,
    store: AnnotationStore,
    render_sizes: RenderDimensions,
    password: str = "",
    log: Optional[SaveLog] = None,
) -> SaveResult:
    """Replay *store* onto *source_bytes* and return the serialised result.

    Raises ParseError/ValidationError if the source cannot be loaded and
    SerializeError if the output cannot be written.  Per-annotation failures
    are logged, counted in ``SaveResult.failed`` and otherwise ignored.
    """
    log = log if log is not None else SaveLog()
    warnings: List[str] = []
    report: Dict[int, List[int]] = {}
    failed = 0

    log.add("Loading PDF…")
    try:
        doc = open_pdf(source_bytes)
    except WorkbenchError as exc:
        log.add(f"CRITICAL ERROR: {exc}", logging.ERROR)
        raise
    try:
        # Encryption is resolved before any page is touched and applied when
        # the document is written.
        encryption: Optional[EncryptionSettings] = None
        if password:
            log.add("Encrypting PDF with password…")
            try:
                encryption = prepare_encryption(doc, password)
            except EncryptionUnsupportedError as exc:
                log.add(f"WARNING: {exc}", logging.WARNING)
                warnings.append(str(exc))

        log.add(f"Applying annotations ({store.count()} on {len(store.pages())} page(s))…")
        for page_no in store.pages():
            if not 1 <= page_no <= doc.page_count:
                log.add(f"Page {page_no} not in document ({doc.page_count} pages), skipped",
                        logging.WARNING)
                continue
            canvas = PageCanvas(doc[page_no - 1])
            rendered = render_sizes.get(page_no) or RenderSize(canvas.width, canvas.height)
            anns = store.for_page(page_no)
            try:
                tf = PageTransform(rendered.width, rendered.height, canvas.width, canvas.height)
            except ValidationError as exc:
                log.add(f"Page {page_no}: {exc}; {len(anns)} annotation(s) skipped",
                        logging.WARNING)
                failed += len(anns)
                continue
            log.add(
                f"Page {page_no}: page {canvas.width:.2f}×{canvas.height:.2f} pt"
                f" rot={canvas.rotation} rendered {rendered.width:.0f}×{rendered.height:.0f} px"
                f" sx={tf.sx:.4f} sy={tf.sy:.4f}"
            )
            counts: List[int] = []
            for i, ann in enumerate(anns):
                try:
                    n = replay_annotation(canvas, ann, tf)
                except Exception as exc:
                    failed += 1
                    counts.append(0)
                    log.add(f"Error processing annotation {i} on page {page_no}"
                            f" ({ann.kind}): {exc}", logging.WARNING)
                    continue
                counts.append(n)
                log.add(f"  ann[{i}] {_describe(ann)} -> {n} primitive(s)", logging.DEBUG)
            report[page_no] = counts

        log.add("Saving modified PDF…")
        save_kwargs = encryption.save_kwargs() if encryption else {}
        try:
            data = doc.tobytes(garbage=3, deflate=True, **save_kwargs)
        except Exception as exc:
            log.add(f"CRITICAL ERROR: {exc}", logging.ERROR)
            raise SerializeError(f"Could not save the PDF: {exc}", log.entries) from exc
    finally:
        doc.close()

    log.add(f"Save OK ({len(data)} bytes, {failed} annotation(s) failed)")
    return SaveResult(data=data, log=list(log.entries), warnings=warnings,
                      report=report, failed=failed)


def save_document(session: EditorSession, log: Optional[SaveLog] = None) -> SaveResult:
    """Fetch the session's source afresh and commit its annotations.

    Runs under the session's operation gate; a concurrent save or page edit
    raises OperationInProgressError before anything is fetched.
    """
    log = log if log is not None else SaveLog()
    with session.gate.hold("save"):
        log.add("Starting save process…")
        log.add(f"Fetching original file from: {session.location}")
        try:
            source = session.fetch_source()
        except WorkbenchError as exc:
            log.add(f"CRITICAL ERROR: {exc}", logging.ERROR)
            raise
        return commit_annotations(source, session.store, session.render_dimensions(),
                                  password=session.password, log=log)
