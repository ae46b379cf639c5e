"""Page structure editing: rotate, delete, reorder and crop.

Every operation goes through ``PageOrganizer._update()``: load the current
bytes, mutate (or rebuild into a new document), serialise, then swap the
bytes in and clear the selection.  If anything raises, the previous bytes
and selection are left exactly as they were.

Reordering never moves page objects in place.  A new document is built by
copying pages from the source in the target order (``rebuild()``), which
keeps resources shared between pages intact.
"""
import logging
from typing import Callable, Iterable, List, Optional, Set, Union

import fitz  # pymupdf

import data_store
from document_session import DocumentHandle, OperationGate, open_pdf
from errors import SerializeError, ValidationError, WorkbenchError
from geometry import crop_percent_to_box
from models import CropPercent
from pdf_exporter import PageCanvas

logger = logging.getLogger(__name__)

ROTATE_LEFT = -90
ROTATE_RIGHT = 90


def move_index(count: int, source: int, target: int) -> List[int]:
    """Return the page order after moving *source* to *target* (0-based)."""
    if not (0 <= source < count and 0 <= target < count):
        raise ValidationError(f"Cannot move page {source} to {target} in a {count}-page document")
    order = list(range(count))
    order.insert(target, order.pop(source))
    return order


def rebuild(source: fitz.Document, order: Iterable[int]) -> fitz.Document:
    """Copy pages of *source* into a new document in *order*."""
    order = list(order)
    new_doc = fitz.open()
    try:
        for k, idx in enumerate(order):
            # keep the graft map until the last copy so shared objects are reused
            new_doc.insert_pdf(source, from_page=idx, to_page=idx,
                               final=k == len(order) - 1)
    except Exception:
        new_doc.close()
        raise
    return new_doc


def clamp_crop(rect: CropPercent) -> CropPercent:
    """Clamp a percent rectangle to the page; reject one with no area left."""
    x = max(0.0, min(100.0, rect.x))
    y = max(0.0, min(100.0, rect.y))
    width = max(0.0, min(100.0 - x, rect.width))
    height = max(0.0, min(100.0 - y, rect.height))
    if width <= 0 or height <= 0:
        raise ValidationError("Crop area is empty")
    return CropPercent(x, y, width, height)


class PageOrganizer:
    def __init__(self, data: bytes, name: str = "document.pdf",
                 gate: Optional[OperationGate] = None):
        self._handle = DocumentHandle(data, name)
        self.selection: Set[int] = set()
        self.gate = gate or OperationGate()

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def data(self) -> bytes:
        return self._handle.data

    @property
    def name(self) -> str:
        return self._handle.name

    @property
    def page_count(self) -> int:
        return self._handle.page_count

    def output_name(self) -> str:
        return data_store.output_filename("organized", self.name)

    def toggle_selection(self, index: int) -> None:
        if index in self.selection:
            self.selection.discard(index)
        else:
            self.selection.add(index)

    def select(self, indices: Iterable[int]) -> None:
        self.selection = set(indices)

    def clear_selection(self) -> None:
        self.selection.clear()

    # ── Operations ───────────────────────────────────────────────────────────

    def rotate(self, delta: int) -> bool:
        """Add *delta* (±90) to the rotation of every selected page."""
        if delta not in (ROTATE_LEFT, ROTATE_RIGHT):
            raise ValidationError(f"Rotation must be ±90°, got {delta}")
        if not self.selection:
            logger.warning("Please select pages to rotate.")
            return False
        selected = sorted(i for i in self.selection if 0 <= i < self.page_count)

        def mutate(doc: fitz.Document):
            for i in selected:
                page = doc[i]
                page.set_rotation((page.rotation + delta) % 360)

        self._update("rotate", mutate)
        logger.info("Rotated %d page(s) by %+d°", len(selected), delta)
        return True

    def delete_selected(self, confirm: Optional[Callable[[int], bool]] = None) -> bool:
        """Delete the selected pages.  *confirm* gets the count and may veto."""
        if not self.selection:
            return False
        if confirm is not None and not confirm(len(self.selection)):
            return False
        # Descending so earlier removals don't shift later indices
        doomed = sorted((i for i in self.selection if 0 <= i < self.page_count), reverse=True)
        if len(doomed) >= self.page_count:
            raise ValidationError("Cannot delete every page of the document")

        def mutate(doc: fitz.Document):
            for i in doomed:
                doc.delete_page(i)

        self._update("delete", mutate)
        logger.info("Deleted %d page(s)", len(doomed))
        return True

    def reorder(self, source: int, target: int) -> bool:
        """Move page *source* to position *target* by rebuilding the document."""
        if source == target:
            return False
        order = move_index(self.page_count, source, target)
        self._update("reorder", lambda doc: rebuild(doc, order))
        logger.info("Moved page %d to position %d", source + 1, target + 1)
        return True

    def apply_order(self, order: List[int]) -> None:
        """Rebuild the document with pages in an arbitrary permutation."""
        if sorted(order) != list(range(self.page_count)):
            raise ValidationError(f"{order} is not a permutation of the document's pages")
        self._update("reorder", lambda doc: rebuild(doc, order))

    def crop(self, page_index: int, rect: CropPercent) -> None:
        """Set the crop box of one page from a top-down percent rectangle."""
        if not 0 <= page_index < self.page_count:
            raise ValidationError(f"Page {page_index + 1} out of range 1..{self.page_count}")
        rect = clamp_crop(rect)

        def mutate(doc: fitz.Document):
            page = doc[page_index]
            canvas = PageCanvas(page)
            box = crop_percent_to_box(rect, canvas.width, canvas.height)
            native = canvas.native_rect(box)
            # set_cropbox wants mediabox-relative coords; page coords start at the old crop
            ox, oy = page.cropbox_position
            page.set_cropbox(fitz.Rect(native.x0 + ox, native.y0 + oy,
                                       native.x1 + ox, native.y1 + oy))

        self._update("crop", mutate)
        logger.info("Cropped page %d to %s", page_index + 1, rect)

    # ── Transaction ──────────────────────────────────────────────────────────

    def _update(self, label: str,
                mutator: Callable[[fitz.Document], Union[fitz.Document, None]]) -> None:
        with self.gate.hold(label):
            doc = open_pdf(self._handle.data)
            try:
                try:
                    result = mutator(doc)
                except WorkbenchError:
                    raise
                except Exception as exc:
                    logger.exception("%s failed", label)
                    raise WorkbenchError(f"Error modifying PDF: {exc}") from exc
                target = result if isinstance(result, fitz.Document) else doc
                try:
                    new_bytes = target.tobytes(garbage=4, deflate=True)
                except Exception as exc:
                    raise SerializeError(f"Could not save the PDF: {exc}") from exc
                finally:
                    if target is not doc:
                        target.close()
            finally:
                doc.close()
            self._handle = DocumentHandle(new_bytes, self.name)
            self.selection.clear()
