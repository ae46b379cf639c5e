"""Main entry point for the PDF Workbench native app."""
import logging
import os
import subprocess
import sys
from typing import Optional

from PySide6.QtGui import QAction
from PySide6.QtWidgets import (
    QApplication, QFileDialog, QInputDialog, QMainWindow, QMessageBox, QTabWidget,
)

import data_store
from document_session import EditorSession
from errors import WorkbenchError
from models import EditorSettings
from organizer_panel import OrganizerPanel
from pdf_viewer import EditorPanel

logger = logging.getLogger(__name__)

_PDF_FILTER = "PDF files (*.pdf)"


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("PDF Workbench")
        self.resize(1200, 900)

        self._settings: EditorSettings = data_store.load_settings()
        data_store.set_debug(self._settings.debug_mode)
        self._last_output_dir: Optional[str] = None

        self._setup_ui()
        self._load_session()

    def _setup_ui(self):
        file_menu = self.menuBar().addMenu("File")
        file_menu.addAction("Open PDF…").triggered.connect(self._open_pdf)
        file_menu.addAction("Open URL…").triggered.connect(self._open_url)
        file_menu.addAction("Organize Pages…").triggered.connect(self._organize_pages)
        file_menu.addSeparator()
        file_menu.addAction("Show Output Folder").triggered.connect(self._show_output_folder)
        file_menu.addSeparator()
        quit_action = file_menu.addAction("Quit")
        quit_action.triggered.connect(self.close)

        settings_menu = self.menuBar().addMenu("Settings")
        self._debug_action = QAction("Debug logging", self, checkable=True)
        self._debug_action.setChecked(self._settings.debug_mode)
        self._debug_action.setMenuRole(QAction.MenuRole.NoRole)
        self._debug_action.toggled.connect(self._on_debug_toggled)
        settings_menu.addAction(self._debug_action)
        self._hidpi_action = QAction("High-DPI rendering", self, checkable=True)
        self._hidpi_action.setChecked(self._settings.hi_dpr)
        self._hidpi_action.setMenuRole(QAction.MenuRole.NoRole)
        self._hidpi_action.toggled.connect(self._on_hidpi_toggled)
        settings_menu.addAction(self._hidpi_action)
        settings_menu.addAction("Output Folder…").triggered.connect(self._choose_output_dir)

        self._tabs = QTabWidget()
        self.setCentralWidget(self._tabs)

        self._editor = EditorPanel()
        self._editor.status_message.connect(self._show_status)
        self._editor.saved.connect(self._on_saved)
        self._tabs.addTab(self._editor, "Annotate")

        self._organizer = OrganizerPanel(self._settings)
        self._organizer.status_message.connect(self._show_status)
        self._tabs.addTab(self._organizer, "Organize")

    def _load_session(self):
        data_store.dbg("Loading previous session…")
        last = self._settings.last_document
        if last and (os.path.isfile(last) or last.startswith(("http://", "https://"))):
            try:
                self._open_document(last)
                return
            except WorkbenchError as exc:
                QMessageBox.warning(
                    self, "Load Error",
                    f"Could not reopen {last}:\n{exc}\n\nPlease open a PDF."
                )
        data_store.dbg("No previous document to restore")

    # ── Documents ─────────────────────────────────────────────────────────────

    def _open_pdf(self):
        start = os.path.dirname(self._settings.last_document or "") or os.getcwd()
        path, _ = QFileDialog.getOpenFileName(self, "Open PDF", start, _PDF_FILTER)
        if path:
            self._open_with_feedback(path)

    def _open_url(self):
        url, ok = QInputDialog.getText(self, "Open URL", "PDF address (http/https):")
        if ok and url.strip():
            self._open_with_feedback(url.strip())

    def _open_with_feedback(self, location: str):
        try:
            self._open_document(location)
        except WorkbenchError as exc:
            QMessageBox.critical(self, "Open failed", str(exc))

    def _open_document(self, location: str):
        session = EditorSession(location)
        self._editor.load_session(session, self._settings)
        self._tabs.setCurrentWidget(self._editor)
        self._settings.last_document = location
        data_store.save_settings(self._settings)
        self.setWindowTitle(f"PDF Workbench — {session.name}")
        logger.info("Opened %s (%d page(s))", location, session.handle.page_count)

    def _organize_pages(self):
        start = os.path.dirname(self._settings.last_document or "") or os.getcwd()
        path, _ = QFileDialog.getOpenFileName(self, "Organize pages", start, _PDF_FILTER)
        if not path:
            return
        try:
            self._organizer.load_document(path)
        except WorkbenchError as exc:
            QMessageBox.critical(self, "Open failed", str(exc))
            return
        self._tabs.setCurrentWidget(self._organizer)

    # ── Settings ──────────────────────────────────────────────────────────────

    def _on_debug_toggled(self, enabled: bool):
        self._settings.debug_mode = enabled
        data_store.set_debug(enabled)
        data_store.save_settings(self._settings)
        data_store.dbg("Debug logging enabled")

    def _on_hidpi_toggled(self, enabled: bool):
        self._settings.hi_dpr = enabled
        self._editor.set_hi_dpr(enabled)
        data_store.save_settings(self._settings)

    def _choose_output_dir(self):
        path = QFileDialog.getExistingDirectory(self, "Output folder",
                                                self._settings.output_dir or os.getcwd())
        if path:
            self._settings.output_dir = path
            data_store.save_settings(self._settings)

    # ── Status ────────────────────────────────────────────────────────────────

    def _show_status(self, message: str):
        self.statusBar().showMessage(message, 8000)

    def _on_saved(self, path: str):
        self._last_output_dir = os.path.dirname(path)

    def _show_output_folder(self):
        folder = self._last_output_dir or self._settings.output_dir
        if folder:
            _open_path(folder)
        else:
            self._show_status("Nothing saved yet")


def _open_path(path: str) -> None:
    """Open *path* with the platform's default handler (file or directory)."""
    if not os.path.exists(path):
        return
    try:
        if sys.platform == "darwin":
            subprocess.Popen(["open", path])
        elif sys.platform == "win32":
            os.startfile(path)  # type: ignore[attr-defined]
        else:
            subprocess.Popen(["xdg-open", path])
    except OSError as exc:
        logger.warning("Could not open %s: %s", path, exc)


def main():
    settings = data_store.load_settings()
    data_store.configure_logging(settings.debug_mode)
    app = QApplication(sys.argv)
    app.setApplicationName("PDF Workbench")
    window = MainWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
