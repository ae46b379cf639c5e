"""Page organizer panel: thumbnails plus rotate / delete / reorder / crop."""
import logging
import os
from typing import Callable, List, Optional

import fitz  # pymupdf
from PySide6.QtCore import QRectF, QSize, QThreadPool, Qt, Signal
from PySide6.QtGui import QColor, QIcon, QImage, QPainter, QPen, QPixmap
from PySide6.QtWidgets import (
    QAbstractItemView, QDialog, QDialogButtonBox, QDoubleSpinBox, QFileDialog,
    QFormLayout, QHBoxLayout, QLabel, QListView, QListWidget, QListWidgetItem,
    QMessageBox, QPushButton, QVBoxLayout, QWidget,
)

import data_store
from errors import WorkbenchError
from models import CropPercent, EditorSettings
from page_organizer import ROTATE_LEFT, ROTATE_RIGHT, PageOrganizer
from workers import Worker

logger = logging.getLogger(__name__)

_THUMB_SIZE = 160
_PREVIEW_SIZE = 480


def _render(page: fitz.Page, box: int) -> QPixmap:
    """Rasterise *page* to fit a *box*-pixel square."""
    zoom = box / max(page.rect.width, page.rect.height)
    pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
    img = QImage(pix.samples, pix.width, pix.height, pix.stride,
                 QImage.Format.Format_RGB888)
    return QPixmap.fromImage(img.copy())


class _CropCanvas(QLabel):
    """Page preview on which a crop rectangle is dragged (percent units)."""

    changed = Signal(object)   # CropPercent

    def __init__(self, pixmap: QPixmap, rect: CropPercent, parent=None):
        super().__init__(parent)
        self._pixmap = pixmap
        self._rect = rect
        self._origin = None
        self.setFixedSize(pixmap.size())
        self.setCursor(Qt.CursorShape.CrossCursor)

    def set_rect(self, rect: CropPercent):
        self._rect = rect
        self.update()

    def _percent(self, event):
        x = max(0.0, min(1.0, event.position().x() / self.width())) * 100
        y = max(0.0, min(1.0, event.position().y() / self.height())) * 100
        return x, y

    def mousePressEvent(self, event):
        if event.button() == Qt.MouseButton.LeftButton:
            self._origin = self._percent(event)

    def mouseMoveEvent(self, event):
        if self._origin is None:
            return
        (x0, y0), (x1, y1) = self._origin, self._percent(event)
        self._rect = CropPercent(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))
        self.update()
        self.changed.emit(self._rect)

    def mouseReleaseEvent(self, event):
        self._origin = None

    def paintEvent(self, event):
        p = QPainter(self)
        p.drawPixmap(0, 0, self._pixmap)
        w, h = self.width(), self.height()
        r = self._rect
        box = QRectF(r.x * w / 100, r.y * h / 100, r.width * w / 100, r.height * h / 100)
        shade = QColor(0, 0, 0, 110)
        p.fillRect(QRectF(0, 0, w, box.top()), shade)
        p.fillRect(QRectF(0, box.bottom(), w, h - box.bottom()), shade)
        p.fillRect(QRectF(0, box.top(), box.left(), box.height()), shade)
        p.fillRect(QRectF(box.right(), box.top(), w - box.right(), box.height()), shade)
        p.setPen(QPen(QColor(0, 120, 215), 2, Qt.PenStyle.DashLine))
        p.drawRect(box)
        p.end()


class CropDialog(QDialog):
    """Pick the visible area of a page as a top-down percent rectangle."""

    def __init__(self, preview: QPixmap, page_label: str, parent=None):
        super().__init__(parent)
        self.setWindowTitle(f"Crop {page_label}")
        layout = QVBoxLayout(self)

        self._canvas = _CropCanvas(preview, CropPercent(), self)
        self._canvas.changed.connect(self._on_canvas_changed)
        layout.addWidget(self._canvas, alignment=Qt.AlignmentFlag.AlignCenter)

        form = QFormLayout()
        self._spins = {}
        defaults = CropPercent()
        for name in ("x", "y", "width", "height"):
            spin = QDoubleSpinBox()
            spin.setRange(0.0, 100.0)
            spin.setDecimals(1)
            spin.setSuffix(" %")
            spin.setValue(getattr(defaults, name))
            spin.valueChanged.connect(self._on_spin_changed)
            form.addRow(name.capitalize() + ":", spin)
            self._spins[name] = spin
        layout.addLayout(form)

        buttons = QDialogButtonBox(
            QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel
        )
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def crop_rect(self) -> CropPercent:
        return CropPercent(**{k: s.value() for k, s in self._spins.items()})

    def _on_spin_changed(self, _value):
        self._canvas.set_rect(self.crop_rect())

    def _on_canvas_changed(self, rect: CropPercent):
        for name, spin in self._spins.items():
            spin.blockSignals(True)
            spin.setValue(getattr(rect, name))
            spin.blockSignals(False)


class _PageGrid(QListWidget):
    """Icon grid whose drag-and-drop reports a (source, target) move."""

    moved = Signal(int, int)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setViewMode(QListView.ViewMode.IconMode)
        self.setIconSize(QSize(_THUMB_SIZE, _THUMB_SIZE))
        self.setResizeMode(QListView.ResizeMode.Adjust)
        self.setMovement(QListView.Movement.Snap)
        self.setSpacing(8)
        self.setSelectionMode(QAbstractItemView.SelectionMode.ExtendedSelection)
        self.setDragDropMode(QAbstractItemView.DragDropMode.InternalMove)
        self.setDefaultDropAction(Qt.DropAction.MoveAction)

    def dropEvent(self, event):
        source = self.currentRow()
        target_item = self.itemAt(event.position().toPoint())
        target = self.row(target_item) if target_item is not None else self.count() - 1
        # The document is rebuilt and the grid reloaded; Qt must not move items itself
        event.ignore()
        if source >= 0 and target >= 0 and source != target:
            self.moved.emit(source, target)


class OrganizerPanel(QWidget):
    status_message = Signal(str)

    def __init__(self, settings: Optional[EditorSettings] = None, parent=None):
        super().__init__(parent)
        self.organizer: Optional[PageOrganizer] = None
        self._source_path: Optional[str] = None
        # the main window's Settings menu edits this same object
        self._settings = settings if settings is not None else data_store.load_settings()
        self._pool = QThreadPool.globalInstance()
        self._worker: Optional[Worker] = None

        layout = QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)

        bar = QHBoxLayout()
        self._buttons: List[QPushButton] = []
        for label, tip, slot in [
            ("⟲ Rotate left",  "Rotate the selected pages 90° counter-clockwise",
             lambda: self.rotate(ROTATE_LEFT)),
            ("⟳ Rotate right", "Rotate the selected pages 90° clockwise",
             lambda: self.rotate(ROTATE_RIGHT)),
            ("Delete",         "Delete the selected pages", self.delete_selected),
            ("Crop…",          "Crop the selected page", self.crop_selected),
            ("Download",       "Write organized_<name>", self.download),
        ]:
            btn = QPushButton(label)
            btn.setToolTip(tip)
            btn.clicked.connect(slot)
            bar.addWidget(btn)
            self._buttons.append(btn)
        bar.addStretch(1)
        self._count_label = QLabel("")
        bar.addWidget(self._count_label)
        layout.addLayout(bar)

        self._grid = _PageGrid()
        self._grid.moved.connect(self.reorder)
        layout.addWidget(self._grid, stretch=1)

        self._set_enabled(False)

    # ── Public API ────────────────────────────────────────────────────────────

    def load_document(self, path: str) -> None:
        """Open *path* for organizing.  Raises WorkbenchError if it is not usable."""
        data = data_store.fetch_document(path)
        self.organizer = PageOrganizer(data, os.path.basename(path))
        self._source_path = path
        self._refresh()
        self._set_enabled(True)
        data_store.dbg(f"Organizer loaded {path} ({self.organizer.page_count} page(s))")

    def rotate(self, delta: int):
        if not self._sync_selection():
            self.status_message.emit("Please select pages to rotate.")
            return
        self._run(self.organizer.rotate, delta)

    def delete_selected(self):
        if not self._sync_selection():
            return
        n = len(self.organizer.selection)
        answer = QMessageBox.question(
            self, "Delete pages",
            f"Delete {n} page(s)? This cannot be undone.",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
        )
        if answer != QMessageBox.StandardButton.Yes:
            return
        # Confirmation already given above
        self._run(self.organizer.delete_selected)

    def reorder(self, source: int, target: int):
        if self.organizer is not None:
            self._run(self.organizer.reorder, source, target)

    def crop_selected(self):
        if not self._sync_selection():
            self.status_message.emit("Select a page to crop.")
            return
        index = min(self.organizer.selection)
        doc = fitz.open(stream=self.organizer.data, filetype="pdf")
        try:
            preview = _render(doc[index], _PREVIEW_SIZE)
        finally:
            doc.close()
        dlg = CropDialog(preview, f"page {index + 1}", self)
        if dlg.exec():
            self._run(self.organizer.crop, index, dlg.crop_rect())

    def download(self):
        if self.organizer is None:
            return
        directory = data_store.output_dir_for(self._source_path, self._settings)
        default = os.path.join(directory, self.organizer.output_name())
        path, _ = QFileDialog.getSaveFileName(self, "Save organized PDF", default,
                                              "PDF files (*.pdf)")
        if not path:
            return
        try:
            written = data_store.write_output(self.organizer.data, os.path.basename(path),
                                              os.path.dirname(path))
        except OSError as exc:
            QMessageBox.critical(self, "Download failed", str(exc))
            return
        self.status_message.emit(f"Saved {written}")

    # ── Internal ──────────────────────────────────────────────────────────────

    def _sync_selection(self) -> bool:
        if self.organizer is None:
            return False
        self.organizer.select(self._grid.row(item) for item in self._grid.selectedItems())
        return bool(self.organizer.selection)

    def _run(self, op: Callable, *args):
        """Run one organizer operation on the worker pool."""
        if self._worker is not None or self.organizer.gate.busy:
            QMessageBox.information(self, "Busy", "Another page operation is still running.")
            return
        worker = Worker(op, *args)
        worker.signals.finished.connect(self._on_done)
        worker.signals.failed.connect(self._on_failed)
        self._worker = worker
        self._set_enabled(False)
        self._pool.start(worker)

    def _on_done(self, changed):
        self._worker = None
        self._set_enabled(True)
        if changed is False:
            return
        self._refresh()
        self.status_message.emit("Pages updated")

    def _on_failed(self, exc: Exception):
        self._worker = None
        self._set_enabled(True)
        if not isinstance(exc, WorkbenchError):
            logger.error("Unexpected organizer error", exc_info=exc)
        QMessageBox.critical(self, "Page operation failed", f"Error modifying PDF: {exc}")

    def _refresh(self):
        self._grid.clear()
        doc = fitz.open(stream=self.organizer.data, filetype="pdf")
        try:
            for i, page in enumerate(doc):
                item = QListWidgetItem(QIcon(_render(page, _THUMB_SIZE)), f"Page {i + 1}")
                item.setData(Qt.ItemDataRole.UserRole, i)
                self._grid.addItem(item)
        finally:
            doc.close()
        self._count_label.setText(f"{self.organizer.page_count} page(s)")

    def _set_enabled(self, enabled: bool):
        for btn in self._buttons:
            btn.setEnabled(enabled and self.organizer is not None)
        self._grid.setEnabled(enabled)
