"""Settings persistence, logging setup and document retrieval."""
import json
import logging
import os
import urllib.error
import urllib.request
from datetime import datetime
from typing import Iterable, Optional

from errors import FetchError
from models import EditorSettings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DIAGNOSTIC_LOG_NAME = "save_error_log.txt"
_FETCH_TIMEOUT_S = 30


# ── App-level data dir (persists settings and the last opened document) ──────

_APP_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR: str = os.environ.get(
    "PDF_WORKBENCH_DATA_DIR", os.path.join(os.path.dirname(_APP_DIR), "data")
)


def session_config_path() -> str:
    return os.path.join(DATA_DIR, "session_config.json")


def ensure_data_dir():
    os.makedirs(DATA_DIR, exist_ok=True)


# ── Logging ───────────────────────────────────────────────────────────────────

_debug = False


def configure_logging(debug: bool = False) -> None:
    """Install the root handler once; later calls only change the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    set_debug(debug)


def set_debug(enabled: bool) -> None:
    global _debug
    _debug = bool(enabled)
    logging.getLogger().setLevel(logging.DEBUG if _debug else logging.INFO)


def is_debug() -> bool:
    return _debug


def dbg(msg: str) -> None:
    logger.debug(msg)


# ── Settings ──────────────────────────────────────────────────────────────────

def load_settings() -> EditorSettings:
    """Read the session config; fall back to defaults if missing or unreadable."""
    path = session_config_path()
    if not os.path.exists(path):
        return EditorSettings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EditorSettings()
    zoom = float(data.get("default_zoom", 1.2))
    return EditorSettings(
        debug_mode=bool(data.get("debug_mode", False)),
        hi_dpr=bool(data.get("hi_dpr", True)),
        default_zoom=max(0.5, min(3.0, zoom)),
        output_dir=str(data.get("output_dir", "") or ""),
        last_document=data.get("last_document"),
    )


def save_settings(settings: EditorSettings) -> None:
    ensure_data_dir()
    config = {
        "debug_mode": settings.debug_mode,
        "hi_dpr": settings.hi_dpr,
        "default_zoom": settings.default_zoom,
        "output_dir": settings.output_dir,
        "last_document": settings.last_document,
    }
    with open(session_config_path(), "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
        f.write("\n")


# ── Retrieval ─────────────────────────────────────────────────────────────────

def fetch_document(location: str) -> bytes:
    """Return fresh bytes for *location* (local path or http(s) URL).

    HTTP requests bypass caches so the base document always reflects the
    latest external state.
    """
    if not location:
        raise FetchError("No document location given")
    if location.startswith(("http://", "https://")):
        req = urllib.request.Request(
            location, headers={"Cache-Control": "no-cache", "Pragma": "no-cache"}
        )
        try:
            with urllib.request.urlopen(req, timeout=_FETCH_TIMEOUT_S) as resp:
                data = resp.read()
        except (urllib.error.URLError, OSError) as exc:
            raise FetchError(f"Could not fetch {location}: {exc}") from exc
    else:
        try:
            with open(location, "rb") as f:
                data = f.read()
        except OSError as exc:
            raise FetchError(f"Could not read {location}: {exc}") from exc
    logger.debug("Fetched %d bytes from %s", len(data), location)
    return data


# ── Output ────────────────────────────────────────────────────────────────────

def output_filename(prefix: str, original: str) -> str:
    """Return e.g. ``edited_report.pdf`` for prefix ``edited`` and ``/x/report.pdf``."""
    base = os.path.basename(original) or "document.pdf"
    return f"{prefix}_{base}"


def save_log_filename(output_name: str) -> str:
    """``edited_report.pdf`` -> ``edited_report.log``."""
    return os.path.splitext(output_name)[0] + ".log"


def output_dir_for(source: Optional[str], settings: EditorSettings) -> str:
    if settings.output_dir:
        return settings.output_dir
    if source and not source.startswith(("http://", "https://")):
        return os.path.dirname(os.path.abspath(source))
    return os.getcwd()


def write_output(data: bytes, filename: str, directory: str) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, filename)
    with open(path, "wb") as f:
        f.write(data)
    logger.info("Wrote %d bytes to %s", len(data), path)
    return path


def format_log_entry(message: str, when: Optional[datetime] = None) -> str:
    stamp = (when or datetime.now().astimezone()).isoformat()
    return f"{stamp}: {message}"


def write_diagnostic_log(entries: Iterable[str], directory: str,
                         filename: str = DIAGNOSTIC_LOG_NAME) -> str:
    """Write a save log, one entry per line."""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, filename)
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(entries))
        f.write("\n")
    return path
