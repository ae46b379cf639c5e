"""Center panel: annotation editor for one document.

Pages are rasterised with PyMuPDF (fitz).  Pointer input is reported in
logical pixels of the page image and fed to the session's DrawingSession;
committed annotations are painted back with ``annotation_overlay``.

Each page has a *capture space*: the render size recorded for it by the
session.  While a page has no annotations the capture space follows the
zoom; once it carries annotations it is frozen and input at other zoom
levels is scaled into it.
"""
import logging
import os
import time
from typing import Dict, Optional, Tuple

import fitz  # pymupdf
from PySide6.QtCore import QObject, QEvent, QPoint, QThreadPool, Qt, Signal
from PySide6.QtGui import QFont, QImage, QPixmap
from PySide6.QtWidgets import (
    QApplication, QFileDialog, QHBoxLayout, QInputDialog, QLabel, QLineEdit,
    QMessageBox, QPlainTextEdit, QPushButton, QScrollArea, QSizePolicy,
    QVBoxLayout, QWidget,
)

import annotation_overlay
import data_store
import drawing_session as ds
import pdf_exporter
from document_session import EditorSession
from errors import SerializeError, WorkbenchError
from models import EditorSettings
from workers import Worker

logger = logging.getLogger(__name__)

_KEY_TOOL_MAP = {
    Qt.Key.Key_V: ds.TOOL_VIEW,
    Qt.Key.Key_P: ds.TOOL_PEN,
    Qt.Key.Key_H: ds.TOOL_HIGHLIGHT,
    Qt.Key.Key_R: ds.TOOL_RECT,
    Qt.Key.Key_T: ds.TOOL_TEXT,
    Qt.Key.Key_N: ds.TOOL_NOTE,
}

_TOOL_BUTTONS = [
    (ds.TOOL_VIEW,      "☞", "View (V)"),
    (ds.TOOL_PEN,       "✎", "Pen (P)"),
    (ds.TOOL_HIGHLIGHT, "▮", "Highlight (H)"),
    (ds.TOOL_RECT,      "▭", "Rectangle (R)"),
    (ds.TOOL_TEXT,      "T", "Text (T)"),
    (ds.TOOL_NOTE,      "✉", "Sticky note (N)"),
    (ds.TOOL_IMAGE,     "🖼", "Image (I)"),
]

_WHEEL_ZOOM_DIVISOR = 800.0  # wheel-delta units that equal a 1× zoom step
_INLINE_EDITOR_WIDTH = 200
_IMAGE_FILTER = "Images (*.png *.jpg *.jpeg)"


def _pm_logical_size(pm: Optional[QPixmap]) -> Tuple[int, int]:
    """Return *(width, height)* of *pm* in device-independent (logical) pixels."""
    if pm and not pm.isNull():
        dpr = pm.devicePixelRatio()
        return int(pm.width() / dpr), int(pm.height() / dpr)
    return 1, 1


class InlineTextEdit(QPlainTextEdit):
    """Floating editor for text and note annotations.

    * Ctrl+Enter commits.
    * Escape cancels.
    * Clicking away (focusOut) commits; empty text is discarded by the session.
    """

    committed = Signal(str)
    cancelled = Signal()

    def __init__(self, font_px: int, note: bool = False, parent=None):
        super().__init__(parent)
        self._done = False
        self.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        font = QFont("Helvetica")
        font.setPixelSize(max(6, font_px))
        self.setFont(font)
        self.document().setDefaultFont(font)
        bg = "#ffeb3b" if note else "#ffffff"
        self.setStyleSheet(
            f"QPlainTextEdit {{ background-color: {bg}; border: 1px solid #888;"
            " padding: 1px; }"
        )
        self.setFixedHeight(self.fontMetrics().height() * 3 + 8)

    def commit(self):
        if not self._done:
            self._done = True
            self.committed.emit(self.toPlainText())

    def keyPressEvent(self, event):
        if event.key() == Qt.Key.Key_Escape:
            if not self._done:
                self._done = True
                self.cancelled.emit()
        elif (event.key() in (Qt.Key.Key_Return, Qt.Key.Key_Enter)
              and event.modifiers() & Qt.KeyboardModifier.ControlModifier):
            self.commit()
        else:
            super().keyPressEvent(event)

    def focusOutEvent(self, event):
        self.commit()
        super().focusOutEvent(event)


class _ToolShortcutFilter(QObject):
    """App-level event filter: tool shortcuts, page navigation, undo."""

    def __init__(self, panel: "EditorPanel", parent=None):
        super().__init__(parent)
        self._panel = panel

    def eventFilter(self, obj, event):
        if event.type() != QEvent.Type.KeyPress or not self._panel.isVisible():
            return False
        # Don't steal keys while any text-input widget has focus
        fw = QApplication.focusWidget()
        if isinstance(fw, (QLineEdit, QPlainTextEdit)):
            return False
        if self._panel.session is None:
            return False

        key = event.key()
        relevant = (Qt.KeyboardModifier.ShiftModifier
                    | Qt.KeyboardModifier.ControlModifier
                    | Qt.KeyboardModifier.AltModifier
                    | Qt.KeyboardModifier.MetaModifier)
        mods = event.modifiers() & relevant
        alt = Qt.KeyboardModifier.AltModifier
        ctrl = Qt.KeyboardModifier.ControlModifier

        if not mods and key in _KEY_TOOL_MAP:
            self._panel.set_active_tool(_KEY_TOOL_MAP[key])
            return True
        if not mods and key == Qt.Key.Key_I:
            self._panel.pick_image()
            return True
        if not mods and key == Qt.Key.Key_Escape:
            self._panel.set_active_tool(ds.TOOL_VIEW)
            return True
        if mods == ctrl and key == Qt.Key.Key_Z:
            self._panel.undo_last()
            return True
        if mods == alt and key == Qt.Key.Key_Left:
            self._panel.prev_page()
            return True
        if mods == alt and key == Qt.Key.Key_Right:
            self._panel.next_page()
            return True
        return False


class ClickableLabel(QLabel):
    """QLabel that emits mouse signals in logical pixels of its pixmap."""

    pressed  = Signal(float, float)
    moved    = Signal(float, float)
    released = Signal(float, float)
    left     = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setMouseTracking(True)

    def _pos(self, event) -> Tuple[float, float]:
        w, h = _pm_logical_size(self.pixmap())
        return (
            max(0.0, min(float(w), event.position().x())),
            max(0.0, min(float(h), event.position().y())),
        )

    def mousePressEvent(self, event):
        if event.button() == Qt.MouseButton.LeftButton:
            self.pressed.emit(*self._pos(event))
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event):
        self.moved.emit(*self._pos(event))
        event.accept()

    def mouseReleaseEvent(self, event):
        if event.button() == Qt.MouseButton.LeftButton:
            self.released.emit(*self._pos(event))
        super().mouseReleaseEvent(event)

    def leaveEvent(self, event):
        self.left.emit()
        super().leaveEvent(event)


class EditorPanel(QWidget):
    annotations_changed = Signal()
    status_message      = Signal(str)
    saved               = Signal(str)   # path of the written file

    def __init__(self, parent=None):
        super().__init__(parent)
        self.session: Optional[EditorSession] = None
        self._settings = EditorSettings()
        self._doc: Optional[fitz.Document] = None
        self._zoom: float = 1.2
        self._hi_dpr: bool = True
        self._capture_scale: float = 1.0     # current render / capture space
        self._raw_pixmap: Optional[QPixmap] = None
        self._base_pixmap: Optional[QPixmap] = None
        self._inline_editor: Optional[InlineTextEdit] = None
        self._page_cache: Dict[int, QPixmap] = {}
        self._pool = QThreadPool.globalInstance()
        self._save_worker: Optional[Worker] = None
        self._saving: Optional[tuple] = None

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        # ── Toolbar ──────────────────────────────────────────────────────────
        toolbar = QWidget()
        tb = QHBoxLayout(toolbar)
        tb.setContentsMargins(4, 4, 4, 4)
        tb.setSpacing(2)

        self._tool_buttons: Dict[str, QPushButton] = {}
        for tool_id, label, tip in _TOOL_BUTTONS:
            btn = QPushButton(label)
            btn.setToolTip(tip)
            btn.setCheckable(True)
            btn.setFixedWidth(36)
            btn.clicked.connect(lambda checked, t=tool_id: self._on_tool_clicked(t))
            tb.addWidget(btn)
            self._tool_buttons[tool_id] = btn

        tb.addSpacing(12)
        self._undo_btn = QPushButton("Undo")
        self._undo_btn.setToolTip("Remove the last annotation on this page (Ctrl+Z)")
        self._undo_btn.clicked.connect(self.undo_last)
        tb.addWidget(self._undo_btn)

        self._password_btn = QPushButton("Password…")
        self._password_btn.setToolTip("Protect the saved PDF with a password")
        self._password_btn.clicked.connect(self.prompt_password)
        tb.addWidget(self._password_btn)

        self._save_btn = QPushButton("Save")
        self._save_btn.setToolTip("Write the annotations into edited_<name>")
        self._save_btn.clicked.connect(self.save)
        tb.addWidget(self._save_btn)

        tb.addStretch(1)

        # ── Page navigation ──
        self._prev_btn = QPushButton("◀")
        self._prev_btn.setToolTip("Previous page (Alt+Left)")
        self._prev_btn.setFixedWidth(32)
        self._prev_btn.clicked.connect(self.prev_page)
        tb.addWidget(self._prev_btn)

        self._page_counter = QLabel("Page — / —")
        self._page_counter.setFixedWidth(80)
        self._page_counter.setAlignment(Qt.AlignmentFlag.AlignCenter)
        tb.addWidget(self._page_counter)

        self._next_btn = QPushButton("▶")
        self._next_btn.setToolTip("Next page (Alt+Right)")
        self._next_btn.setFixedWidth(32)
        self._next_btn.clicked.connect(self.next_page)
        tb.addWidget(self._next_btn)

        tb.addSpacing(12)

        # ── Zoom controls ──
        zoom_out = QPushButton("−")
        zoom_out.setFixedWidth(32)
        zoom_out.setToolTip("Zoom out")
        zoom_out.clicked.connect(self._zoom_out)
        tb.addWidget(zoom_out)
        self._zoom_label = QLabel("120%")
        self._zoom_label.setFixedWidth(50)
        self._zoom_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        tb.addWidget(self._zoom_label)
        zoom_in = QPushButton("+")
        zoom_in.setFixedWidth(32)
        zoom_in.setToolTip("Zoom in")
        zoom_in.clicked.connect(self._zoom_in)
        tb.addWidget(zoom_in)

        toolbar.setSizePolicy(QSizePolicy.Policy.Preferred, QSizePolicy.Policy.Fixed)
        layout.addWidget(toolbar)

        # ── Scroll area ───────────────────────────────────────────────────────
        self._scroll = QScrollArea()
        self._scroll.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._scroll.setWidgetResizable(False)

        self._page_label = ClickableLabel()
        self._page_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._page_label.pressed.connect(self._on_page_pressed)
        self._page_label.moved.connect(self._on_page_moved)
        self._page_label.released.connect(self._on_page_released)
        self._page_label.left.connect(self._on_page_left)
        self._scroll.setWidget(self._page_label)
        layout.addWidget(self._scroll, stretch=1)

        self._scroll.viewport().installEventFilter(self)

        self._show_placeholder()
        self._sync_tool_buttons()

        self._shortcut_filter = _ToolShortcutFilter(self)
        QApplication.instance().installEventFilter(self._shortcut_filter)

    # ── Public API ────────────────────────────────────────────────────────────

    def load_session(self, session: Optional[EditorSession],
                     settings: Optional[EditorSettings] = None):
        self._cancel_inline_editor()
        if self._doc:
            self._doc.close()
            self._doc = None
        self._page_cache.clear()
        self.session = session
        if settings is not None:
            self._settings = settings
            self._zoom = settings.default_zoom
            self._hi_dpr = settings.hi_dpr
        if session is None:
            self._show_placeholder()
            return
        try:
            self._doc = fitz.open(stream=session.handle.data, filetype="pdf")
        except Exception as exc:
            logger.exception("Cannot display %s", session.name)
            self._show_placeholder(f"Cannot display this PDF.\n({exc})")
            return
        data_store.dbg(f"Editor loaded {session.name} ({self._doc.page_count} page(s))")
        self._sync_tool_buttons()
        self._render_page()

    def clear(self):
        self.load_session(None)

    def set_hi_dpr(self, enabled: bool):
        if enabled != self._hi_dpr:
            self._hi_dpr = enabled
            self._page_cache.clear()
            if self._doc:
                self._render_page()

    def set_active_tool(self, tool: str):
        if self.session is None:
            return
        self._commit_pending_text()
        previous = self.session.drawing.tool
        self.session.drawing.set_tool(tool)
        if previous != tool:
            data_store.dbg(f"Tool changed: {previous!r} → {tool!r}")
        self._sync_tool_buttons()
        self._update_display()

    def prev_page(self):
        if self.session and self._doc and self._current_page > 1:
            self._go_to_page(self._current_page - 1)

    def next_page(self):
        if self.session and self._doc and self._current_page < self._doc.page_count:
            self._go_to_page(self._current_page + 1)

    def undo_last(self):
        if self.session is None:
            return
        removed = self.session.store.undo_last(self._current_page)
        if removed is not None:
            data_store.dbg(f"Undo removed {removed.kind} on page {self._current_page}")
            self._rebuild_base_and_display()
            self.annotations_changed.emit()

    def pick_image(self):
        """Ask for a PNG/JPEG file and stage it for placement."""
        if self.session is None:
            return
        self._commit_pending_text()
        path, _ = QFileDialog.getOpenFileName(self, "Choose image", "", _IMAGE_FILTER)
        if not path:
            self._sync_tool_buttons()
            return
        try:
            with open(path, "rb") as f:
                data = f.read()
            staged = self.session.drawing.stage_image(data, os.path.basename(path))
        except (OSError, WorkbenchError) as exc:
            QMessageBox.warning(self, "Image", str(exc))
            self._sync_tool_buttons()
            return
        self.status_message.emit(
            f"Click on the page to place the image ({staged.width:.0f}×{staged.height:.0f})"
        )
        self._sync_tool_buttons()
        self._update_display()

    def prompt_password(self):
        if self.session is None:
            return
        pw, ok = QInputDialog.getText(
            self, "Password protection",
            "Password for the saved PDF (leave empty to remove):",
            QLineEdit.EchoMode.Password, self.session.password,
        )
        if not ok:
            return
        self.session.password = pw
        self._password_btn.setText("Password ✓" if pw else "Password…")
        self.status_message.emit("Password set" if pw else "Password removed")

    # ── Save ──────────────────────────────────────────────────────────────────

    def save(self):
        session = self.session
        if session is None:
            return
        self._commit_pending_text()
        if session.gate.busy:
            QMessageBox.information(
                self, "Save", f"Please wait: {session.gate.current} is still running."
            )
            return
        log = pdf_exporter.SaveLog()
        worker = Worker(pdf_exporter.save_document, session, log)
        worker.signals.finished.connect(self._on_saved)
        worker.signals.failed.connect(self._on_save_failed)
        self._save_worker = worker
        self._saving = (session, log)
        self._save_btn.setEnabled(False)
        self.status_message.emit("Saving…")
        self._pool.start(worker)

    def _on_saved(self, result: pdf_exporter.SaveResult):
        session, _log = self._saving
        self._save_worker = None
        self._save_btn.setEnabled(True)
        directory = data_store.output_dir_for(session.location, self._settings)
        filename = data_store.output_filename("edited", session.name)
        try:
            path = data_store.write_output(result.data, filename, directory)
        except OSError as exc:
            logger.exception("Writing %s failed", filename)
            QMessageBox.critical(self, "Save failed", f"Could not write {filename}:\n{exc}")
            return
        if data_store.is_debug():
            data_store.write_diagnostic_log(result.log, directory,
                                            data_store.save_log_filename(filename))
        if result.warnings:
            QMessageBox.warning(self, "Saved with warnings", "\n".join(result.warnings))
        if result.failed:
            self.status_message.emit(
                f"Saved {path} ({result.failed} annotation(s) could not be applied)"
            )
        else:
            self.status_message.emit(f"Saved {path}")
        self.saved.emit(path)

    def _on_save_failed(self, exc: Exception):
        session, log = self._saving
        self._save_worker = None
        self._save_btn.setEnabled(True)
        if not isinstance(exc, WorkbenchError):
            logger.error("Unexpected error during save", exc_info=exc)
        entries = exc.log if isinstance(exc, SerializeError) and exc.log else log.entries
        self.status_message.emit("Save failed")
        answer = QMessageBox.critical(
            self, "Save failed",
            f"Error saving PDF: {exc}\n\nWrite the diagnostic log to a file?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
        )
        if answer == QMessageBox.StandardButton.Yes and entries:
            directory = data_store.output_dir_for(session.location, self._settings)
            try:
                path = data_store.write_diagnostic_log(entries, directory)
            except OSError as err:
                QMessageBox.warning(self, "Diagnostic log", f"Could not write the log:\n{err}")
                return
            self.status_message.emit(f"Diagnostic log written to {path}")

    # ── Rendering ─────────────────────────────────────────────────────────────

    @property
    def _current_page(self) -> int:
        return self.session.drawing.page if self.session else 1

    def _show_placeholder(self, message: str = "No PDF loaded.\nUse File → Open PDF…"):
        self._raw_pixmap = None
        self._base_pixmap = None
        self._page_label.setPixmap(QPixmap())
        self._page_label.setText(message)
        self._page_label.resize(400, 300)
        self._page_counter.setText("Page — / —")
        for w in (self._prev_btn, self._next_btn, self._save_btn, self._undo_btn,
                  self._password_btn):
            w.setEnabled(False)

    def _go_to_page(self, page: int):
        self._commit_pending_text()
        self.session.drawing.set_page(page)
        data_store.dbg(f"Navigating to page {page}")
        self._sync_tool_buttons()
        self._render_page()

    def _render_page(self):
        """Rasterise the current page (or take it from the cache), then overlay."""
        if not self._doc or self.session is None:
            self._show_placeholder()
            return
        t0 = time.perf_counter()
        page_no = self._current_page
        n = self._doc.page_count
        self._page_counter.setText(f"Page {page_no} / {n}")
        self._prev_btn.setEnabled(page_no > 1)
        self._next_btn.setEnabled(page_no < n)
        for w in (self._save_btn, self._undo_btn, self._password_btn):
            w.setEnabled(True)
        self._save_btn.setEnabled(self._save_worker is None)

        dpr = self.devicePixelRatio() if self._hi_dpr else 1.0
        raw = self._page_cache.get(page_no)
        if raw is None:
            try:
                raw = self._render_page_pixmap(page_no, dpr)
            except Exception as exc:
                logger.warning("Failed to render page %d: %s", page_no, exc)
                self._show_placeholder(
                    f"Cannot render page {page_no}.\nThe PDF may be corrupted."
                )
                return
            self._page_cache[page_no] = raw

        w, h = _pm_logical_size(raw)
        capture = self.session.record_render_size(page_no, w, h)
        self._capture_scale = w / capture.width if capture.width else 1.0

        self._raw_pixmap = raw
        self._zoom_label.setText(f"{int(self._zoom * 100)}%")
        self._rebuild_base_and_display()
        data_store.dbg(f"Page {page_no} shown in {time.perf_counter() - t0:.3f}s")

    def _render_page_pixmap(self, page_no: int, dpr: float) -> QPixmap:
        page = self._doc[page_no - 1]
        data_store.dbg(f"Rendering page {page_no}/{self._doc.page_count} "
                       f"at zoom {self._zoom:.2f} dpr {dpr:.1f} "
                       f"(page size: {page.rect.width:.0f}×{page.rect.height:.0f} pt)")
        mat = fitz.Matrix(self._zoom * dpr, self._zoom * dpr)
        pix = page.get_pixmap(matrix=mat, alpha=False)
        img = QImage(pix.samples, pix.width, pix.height,
                     pix.stride, QImage.Format.Format_RGB888)
        raw = QPixmap.fromImage(img)
        raw.setDevicePixelRatio(dpr)
        return raw

    def _rebuild_base_and_display(self):
        if self._raw_pixmap is None or self.session is None:
            return
        self._base_pixmap = annotation_overlay.draw_annotations(
            self._raw_pixmap, self.session.store.for_page(self._current_page),
            scale=self._capture_scale,
        )
        self._update_display()

    def _update_display(self):
        if self._base_pixmap is None or self.session is None:
            return
        display = self._base_pixmap
        state = self.session.drawing.preview()
        if state is not None:
            display = self._base_pixmap.copy()
            annotation_overlay.draw_preview(display, state, scale=self._capture_scale)
        self._page_label.setPixmap(display)
        self._page_label.resize(*_pm_logical_size(display))

    def _sync_tool_buttons(self):
        tool = self.session.drawing.tool if self.session else ds.TOOL_VIEW
        for t, btn in self._tool_buttons.items():
            btn.setChecked(t == tool)
            btn.setEnabled(self.session is not None)
        if tool == ds.TOOL_VIEW:
            self._page_label.setCursor(Qt.CursorShape.ArrowCursor)
        else:
            self._page_label.setCursor(Qt.CursorShape.CrossCursor)

    # ── Mouse handlers ────────────────────────────────────────────────────────

    def _to_capture(self, x: float, y: float) -> Tuple[float, float]:
        s = self._capture_scale or 1.0
        return x / s, y / s

    def _on_page_pressed(self, x: float, y: float):
        if self.session is None or self._raw_pixmap is None:
            return
        drawing = self.session.drawing
        cx, cy = self._to_capture(x, y)
        state = drawing.state
        if isinstance(state, ds.PendingPlacement):
            if drawing.click(cx, cy) is not None:
                self.annotations_changed.emit()
            self._sync_tool_buttons()
            self._rebuild_base_and_display()
            return
        if isinstance(state, ds.Idle) and state.tool in (ds.TOOL_TEXT, ds.TOOL_NOTE):
            drawing.click(cx, cy)
            self._start_text_edit(x, y)
            return
        drawing.pointer_down(cx, cy)
        self._update_display()

    def _on_page_moved(self, x: float, y: float):
        if self.session is None:
            return
        if isinstance(self.session.drawing.state, (ds.DrawingPath, ds.DrawingRect)):
            self.session.drawing.pointer_move(*self._to_capture(x, y))
            self._update_display()

    def _on_page_released(self, x: float, y: float):
        if self.session is None:
            return
        if isinstance(self.session.drawing.state, (ds.DrawingPath, ds.DrawingRect)):
            self.session.drawing.pointer_move(*self._to_capture(x, y))
            self._finish_gesture()

    def _on_page_left(self):
        if self.session and isinstance(self.session.drawing.state,
                                       (ds.DrawingPath, ds.DrawingRect)):
            self._finish_gesture()

    def _finish_gesture(self):
        ann = self.session.drawing.pointer_up()
        if ann is not None:
            self.annotations_changed.emit()
        self._rebuild_base_and_display()

    # ── Inline text editor ────────────────────────────────────────────────────

    def _start_text_edit(self, x: float, y: float):
        self._cancel_inline_editor()
        state = self.session.drawing.state
        note = state.tool == ds.TOOL_NOTE
        size = pdf_exporter.NOTE_FONT_SIZE if note else ds.TEXT_FONT_SIZE
        vp = self._scroll.viewport()
        # text is anchored at its baseline; lift the editor by one line
        top = int(y - size * self._capture_scale) if not note else int(y)
        pos = self._page_label.mapTo(vp, QPoint(int(x), top))

        editor = InlineTextEdit(round(size * self._capture_scale), note, vp)
        editor.resize(_INLINE_EDITOR_WIDTH, editor.height())
        editor.move(pos)
        editor.show()
        editor.setFocus()
        editor.textChanged.connect(lambda: self._on_text_changed(editor))
        self._inline_editor = editor

        def _commit(text: str):
            if self._inline_editor is editor:
                self._inline_editor = None
            editor.deleteLater()
            if self.session is None:
                return
            if self.session.drawing.confirm_text(text) is not None:
                self.annotations_changed.emit()
            self._sync_tool_buttons()
            self._rebuild_base_and_display()

        def _cancel():
            if self._inline_editor is editor:
                self._inline_editor = None
            editor.deleteLater()
            if self.session is not None:
                self.session.drawing.cancel_text()
                self._sync_tool_buttons()

        editor.committed.connect(_commit)
        editor.cancelled.connect(_cancel)

    def _on_text_changed(self, editor: InlineTextEdit):
        if self.session is not None and editor is self._inline_editor:
            self.session.drawing.update_text(editor.toPlainText())

    def _commit_pending_text(self):
        """Confirm an open text/note editor before page changes or saving."""
        if self._inline_editor is not None:
            self._inline_editor.commit()

    def _cancel_inline_editor(self):
        editor = self._inline_editor
        if editor is not None:
            self._inline_editor = None
            editor.blockSignals(True)
            editor.deleteLater()
            if self.session is not None:
                self.session.drawing.cancel_text()

    # ── Tools / zoom ──────────────────────────────────────────────────────────

    def _on_tool_clicked(self, tool: str):
        if tool == ds.TOOL_IMAGE:
            self.pick_image()
        else:
            self.set_active_tool(tool)

    def eventFilter(self, obj, event):
        """Ctrl + wheel and pinch gestures on the viewport zoom the page."""
        if obj is self._scroll.viewport():
            t = event.type()
            if t == QEvent.Type.Wheel:
                if event.modifiers() & Qt.KeyboardModifier.ControlModifier:
                    delta = event.angleDelta().y()
                    if delta:
                        self._apply_zoom(self._zoom * (1.0 + delta / _WHEEL_ZOOM_DIVISOR))
                    return True
            elif t == QEvent.Type.NativeGesture:
                if event.gestureType() == Qt.NativeGestureType.ZoomNativeGesture:
                    self._apply_zoom(self._zoom * (1.0 + event.value()))
                    return True
        return super().eventFilter(obj, event)

    def _apply_zoom(self, new_zoom: float):
        """Set zoom to *new_zoom* (clamped to [0.5, 3.0]) and re-render."""
        new_zoom = max(0.5, min(3.0, new_zoom))
        if abs(new_zoom - self._zoom) > 0.005:
            self._commit_pending_text()
            self._zoom = new_zoom
            self._page_cache.clear()
            self._render_page()

    def _zoom_in(self):
        self._apply_zoom(self._zoom + 0.2)

    def _zoom_out(self):
        self._apply_zoom(self._zoom - 0.2)
