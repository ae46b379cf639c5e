"""Document handle, operation gate and the per-document editing session."""
import logging
import os
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import fitz  # pymupdf

import data_store
from drawing_session import DrawingSession
from errors import OperationInProgressError, ParseError, ValidationError
from models import AnnotationStore, RenderDimensions, RenderSize

logger = logging.getLogger(__name__)


def open_pdf(data: bytes) -> fitz.Document:
    """Parse *data* as a PDF.  The caller owns (and must close) the result."""
    if not data:
        raise ValidationError("Document is empty")
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise ParseError(f"Not a readable PDF: {exc}") from exc
    if not doc.is_pdf:
        doc.close()
        raise ParseError("Only PDF documents are supported")
    if doc.needs_pass:
        doc.close()
        raise ParseError("The document is password protected")
    if doc.page_count == 0:
        doc.close()
        raise ParseError("PDF has no pages")
    return doc


class DocumentHandle:
    """Byte buffer plus derived page count and per-page (visual) size."""

    def __init__(self, data: bytes, name: str = "document.pdf"):
        doc = open_pdf(data)
        try:
            self.page_sizes: List[Tuple[float, float]] = [
                (page.rect.width, page.rect.height) for page in doc
            ]
        finally:
            doc.close()
        self.data = bytes(data)
        self.name = name

    @property
    def page_count(self) -> int:
        return len(self.page_sizes)

    def page_size(self, page: int) -> Tuple[float, float]:
        """Return *(width, height)* in points of 1-based *page*."""
        if not 1 <= page <= self.page_count:
            raise ValidationError(f"Page {page} out of range 1..{self.page_count}")
        return self.page_sizes[page - 1]


class OperationGate:
    """Serialise read-modify-write operations on one document.

    A second operation is refused rather than queued, so the caller can tell
    the user instead of silently stacking edits.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._current: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def current(self) -> Optional[str]:
        return self._current

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise OperationInProgressError(
                f"Cannot start {name}: {self._current or 'another operation'} is still running"
            )
        self._current = name
        logger.debug("Gate acquired for %s", name)
        try:
            yield
        finally:
            self._current = None
            self._lock.release()
            logger.debug("Gate released after %s", name)


class EditorSession:
    """Everything the annotation editor knows about one open document."""

    def __init__(self, location: str,
                 fetcher: Callable[[str], bytes] = data_store.fetch_document,
                 name: Optional[str] = None):
        self.location = location
        self._fetch = fetcher
        self.handle = DocumentHandle(fetcher(location),
                                     name or os.path.basename(location) or "document.pdf")
        self.store = AnnotationStore()
        self.render_sizes: RenderDimensions = {}
        self.drawing = DrawingSession(self.store)
        self.password = ""
        self.gate = OperationGate()

    @property
    def name(self) -> str:
        return self.handle.name

    def record_render_size(self, page: int, width: float, height: float) -> RenderSize:
        """Remember the pixel size *page* was last rasterised at.

        Once a page carries annotations its size is frozen, since their
        geometry is only valid in the space they were captured in.  Returns
        the size pointer input on *page* must be expressed in.
        """
        size = self.render_sizes.get(page)
        if size is None or not self.store.for_page(page):
            size = self.render_sizes[page] = RenderSize(width, height)
        elif (size.width, size.height) != (width, height):
            logger.debug("Page %d keeps capture size %.0f×%.0f (rendered %.0f×%.0f)",
                         page, size.width, size.height, width, height)
        return size

    def fetch_source(self) -> bytes:
        """Fetch the original bytes again; never reuse the in-memory copy."""
        return self._fetch(self.location)

    def render_dimensions(self) -> Dict[int, RenderSize]:
        return dict(self.render_sizes)
