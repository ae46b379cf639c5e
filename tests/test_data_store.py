import io
import json
import logging
import os
from datetime import datetime, timezone

import pytest

import data_store
from errors import FetchError
from models import EditorSettings


# ── Settings ─────────────────────────────────────────────────────────────────

def test_load_settings_defaults_when_missing():
    assert data_store.load_settings() == EditorSettings()


def test_settings_round_trip(tmp_data_dir):
    settings = EditorSettings(debug_mode=True, hi_dpr=False, default_zoom=2.0,
                              output_dir="/tmp/out", last_document="/tmp/a.pdf")
    data_store.save_settings(settings)
    assert os.path.isfile(tmp_data_dir / "session_config.json")
    assert data_store.load_settings() == settings


def test_corrupt_settings_fall_back_to_defaults(tmp_data_dir):
    os.makedirs(tmp_data_dir)
    (tmp_data_dir / "session_config.json").write_text("{not json")
    assert data_store.load_settings() == EditorSettings()


def test_zoom_is_clamped(tmp_data_dir):
    os.makedirs(tmp_data_dir)
    (tmp_data_dir / "session_config.json").write_text(json.dumps({"default_zoom": 9}))
    assert data_store.load_settings().default_zoom == 3.0


# ── Retrieval ────────────────────────────────────────────────────────────────

def test_fetch_local_file(tmp_path):
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-data")
    assert data_store.fetch_document(str(path)) == b"%PDF-data"


def test_fetch_missing_file_raises(tmp_path):
    with pytest.raises(FetchError):
        data_store.fetch_document(str(tmp_path / "nope.pdf"))


def test_fetch_without_location_raises():
    with pytest.raises(FetchError):
        data_store.fetch_document("")


def test_fetch_url_bypasses_caches(monkeypatch):
    seen = {}

    class _Resp(io.BytesIO):
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

    def fake_urlopen(req, timeout):
        seen["headers"] = {k.lower(): v for k, v in req.header_items()}
        seen["url"] = req.full_url
        return _Resp(b"remote bytes")

    monkeypatch.setattr(data_store.urllib.request, "urlopen", fake_urlopen)
    assert data_store.fetch_document("https://example.org/a.pdf") == b"remote bytes"
    assert seen["url"] == "https://example.org/a.pdf"
    assert seen["headers"]["cache-control"] == "no-cache"


def test_fetch_url_failure_raises(monkeypatch):
    def fake_urlopen(req, timeout):
        raise data_store.urllib.error.URLError("unreachable")

    monkeypatch.setattr(data_store.urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(FetchError):
        data_store.fetch_document("http://example.org/a.pdf")


# ── Output ───────────────────────────────────────────────────────────────────

def test_output_filename_uses_basename():
    assert data_store.output_filename("edited", "/x/y/report.pdf") == "edited_report.pdf"
    assert data_store.output_filename("organized", "") == "organized_document.pdf"


def test_output_dir_prefers_setting(tmp_path):
    assert data_store.output_dir_for("/a/b.pdf", EditorSettings(output_dir="/out")) == "/out"
    src = tmp_path / "src.pdf"
    assert data_store.output_dir_for(str(src), EditorSettings()) == str(tmp_path)
    assert data_store.output_dir_for("https://h/x.pdf", EditorSettings()) == os.getcwd()


def test_write_output(tmp_path):
    path = data_store.write_output(b"abc", "edited_x.pdf", str(tmp_path / "out"))
    assert open(path, "rb").read() == b"abc"


def test_log_entry_format():
    when = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
    assert data_store.format_log_entry("Saving", when) == "2024-05-01T12:30:00+00:00: Saving"


def test_write_diagnostic_log(tmp_path):
    path = data_store.write_diagnostic_log(["a: one", "b: two"], str(tmp_path))
    assert os.path.basename(path) == "save_error_log.txt"
    assert open(path, encoding="utf-8").read() == "a: one\nb: two\n"


# ── Logging ──────────────────────────────────────────────────────────────────

def test_set_debug_changes_root_level():
    root = logging.getLogger()
    old_level, old_debug = root.level, data_store.is_debug()
    try:
        data_store.set_debug(True)
        assert data_store.is_debug()
        assert root.level == logging.DEBUG
        data_store.set_debug(False)
        assert root.level == logging.INFO
    finally:
        data_store.set_debug(old_debug)
        root.setLevel(old_level)


def test_write_save_log_with_custom_name(tmp_path):
    name = data_store.save_log_filename("edited_a.pdf")
    path = data_store.write_diagnostic_log(["x"], str(tmp_path), name)
    assert os.path.basename(path) == "edited_a.log"


def test_save_log_filename_replaces_extension():
    assert data_store.save_log_filename("edited_report.pdf") == "edited_report.log"
    assert data_store.save_log_filename("edited_notes") == "edited_notes.log"
