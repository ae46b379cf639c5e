import re

import fitz  # pymupdf
import pytest

import drawing_session as ds
import pdf_exporter
from conftest import build_pdf, build_two_tone, color_bbox, rotate_pdf
from document_session import EditorSession
from errors import OperationInProgressError, ParseError, SerializeError, ValidationError
from models import (
    AnnotationStore, ImageAnnotation, NoteAnnotation, PathAnnotation,
    RectAnnotation, RenderSize, TextAnnotation,
)


def _pen(*points):
    return PathAnnotation(tuple(points), ds.PEN_COLOR, ds.PEN_WIDTH)


def _drawings(data: bytes, page: int = 1):
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return doc[page - 1].get_drawings()
    finally:
        doc.close()


# ── Replay ───────────────────────────────────────────────────────────────────

def test_three_point_stroke_replays_as_two_segments():
    store = AnnotationStore()
    store.add(1, _pen((10, 10), (20, 10), (20, 20)))
    result = pdf_exporter.commit_annotations(
        build_pdf(1), store, {1: RenderSize(600, 800)}
    )

    assert result.report == {1: [2]}
    assert result.failed == 0
    lines = [d for d in _drawings(result.data) if d["items"][0][0] == "l"]
    assert len(lines) == 2
    for d in lines:
        assert d["width"] == pytest.approx(1.0)      # 2 px × sx 0.5
        assert d["color"] == pytest.approx((1, 0, 0))
        assert d.get("stroke_opacity", 1.0) == pytest.approx(1.0)
    start, end = lines[0]["items"][0][1], lines[0]["items"][0][2]
    assert (start.x, start.y) == pytest.approx((5, 5))
    assert (end.x, end.y) == pytest.approx((10, 5))


@pytest.mark.parametrize("n", [2, 5, 17])
def test_path_emits_n_minus_one_segments(n):
    store = AnnotationStore()
    store.add(1, _pen(*[(i * 10, i * 5) for i in range(n)]))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {1: RenderSize(300, 400)})
    assert result.report[1] == [n - 1]


def test_single_point_path_draws_nothing():
    store = AnnotationStore()
    store.add(1, _pen((10, 10)))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    assert result.report[1] == [0]


def test_missing_render_size_uses_page_size():
    store = AnnotationStore()
    store.add(1, _pen((10, 10), (20, 10)))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    start = _drawings(result.data)[0]["items"][0][1]
    assert (start.x, start.y) == pytest.approx((10, 10))


def test_text_is_written_into_page_content():
    store = AnnotationStore()
    store.add(2, TextAnnotation(100, 300, "Checked"))
    result = pdf_exporter.commit_annotations(build_pdf(2), store, {2: RenderSize(300, 400)})
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        assert "Checked" in doc[1].get_text()
        assert "Checked" not in doc[0].get_text()
    finally:
        doc.close()


def test_rect_and_note_primitives():
    store = AnnotationStore()
    store.add(1, RectAnnotation(10, 10, 50, 40))
    store.add(1, NoteAnnotation(100, 100, "hi"))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {1: RenderSize(300, 400)})
    assert result.report[1] == [1, 2]
    drawings = _drawings(result.data)
    assert any(d.get("color") and d["color"] == pytest.approx(pdf_exporter.RECT_COLOR)
               for d in drawings)
    assert any(d.get("fill") and d["fill"] == pytest.approx(pdf_exporter.NOTE_COLOR, abs=0.01)
               for d in drawings)


def test_image_is_embedded(png_bytes):
    store = AnnotationStore()
    store.add(1, ImageAnnotation(20, 20, 40, 20, image_bytes=png_bytes))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {1: RenderSize(300, 400)})
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        assert len(doc[0].get_images()) == 1
    finally:
        doc.close()


def test_failing_annotation_is_isolated():
    store = AnnotationStore()
    store.add(1, ImageAnnotation(0, 0, 10, 10, image_bytes=b"\x89PNG\r\n\x1a\nbroken"))
    store.add(1, _pen((0, 0), (10, 10), (20, 0)))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {1: RenderSize(300, 400)})
    assert result.failed == 1
    assert result.report[1] == [0, 2]
    assert any("Error processing annotation 0 on page 1" in e for e in result.log)


def test_highlight_is_half_transparent():
    store = AnnotationStore()
    store.add(1, PathAnnotation(((10, 50), (120, 50)), ds.HIGHLIGHT_COLOR, ds.HIGHLIGHT_WIDTH,
                                opacity=ds.HIGHLIGHT_OPACITY, highlight=True))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    (stroke,) = _drawings(result.data)
    assert stroke["color"] == pytest.approx((1, 1, 0))
    assert stroke["stroke_opacity"] == pytest.approx(0.5)
    assert stroke["width"] == pytest.approx(20)


def test_rect_dragged_up_and_left_is_normalized():
    store = AnnotationStore()
    store.add(1, RectAnnotation(100, 100, -50, -40))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    (rect,) = _drawings(result.data)
    r = rect["rect"]
    assert (r.x0, r.y0, r.x1, r.y1) == pytest.approx((50, 60, 100, 100), abs=2)


def test_jpeg_is_embedded_without_recompression():
    jpeg = build_two_tone(fmt="jpeg")
    store = AnnotationStore()
    store.add(1, ImageAnnotation(20, 20, 40, 20, image_bytes=jpeg, mime_kind="jpeg"))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    assert result.failed == 0
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        xref = doc[0].get_images()[0][0]
        assert doc.xref_get_key(xref, "Filter") == ("name", "/DCTDecode")
    finally:
        doc.close()


# ── Rotated pages ────────────────────────────────────────────────────────────

def _visual_size(rotation: int):
    return RenderSize(400, 300) if rotation in (90, 270) else RenderSize(300, 400)


@pytest.mark.parametrize("rotation", [0, 90, 180, 270])
def test_rect_lands_where_it_was_drawn_on_rotated_page(rotation):
    store = AnnotationStore()
    store.add(1, RectAnnotation(40, 60, 100, 50))
    result = pdf_exporter.commit_annotations(
        rotate_pdf(build_pdf(1), rotation), store, {1: _visual_size(rotation)}
    )
    assert result.failed == 0
    box = color_bbox(result.data, (0, 0, 255))
    assert box == pytest.approx((40, 60, 140, 110), abs=2)


@pytest.mark.parametrize("rotation", [0, 90, 180, 270])
def test_image_keeps_its_orientation_on_rotated_page(rotation):
    store = AnnotationStore()
    store.add(1, ImageAnnotation(60, 80, 80, 40, image_bytes=build_two_tone()))
    result = pdf_exporter.commit_annotations(
        rotate_pdf(build_pdf(1), rotation), store, {1: _visual_size(rotation)}
    )
    assert color_bbox(result.data, (255, 0, 0)) == pytest.approx((60, 80, 100, 120), abs=2)
    assert color_bbox(result.data, (0, 0, 255)) == pytest.approx((100, 80, 140, 120), abs=2)


@pytest.mark.parametrize("rotation", [0, 90, 180, 270])
def test_text_is_upright_at_its_anchor_on_rotated_page(rotation):
    doc = fitz.open()
    doc.new_page(width=300, height=400)
    blank = doc.tobytes()
    doc.close()
    store = AnnotationStore()
    store.add(1, TextAnnotation(50, 100, "WWWWWW", font_size=20))
    result = pdf_exporter.commit_annotations(
        rotate_pdf(blank, rotation), store, {1: _visual_size(rotation)}
    )
    x0, y0, x1, y1 = color_bbox(result.data, (0, 0, 0), tolerance=100)
    # glyphs run rightwards from the anchor and sit above the baseline
    assert x0 == pytest.approx(50, abs=3)
    assert x1 > x0 + 3 * (y1 - y0)
    assert 80 <= y0 < y1 <= 102


# ── Fonts ────────────────────────────────────────────────────────────────────

def test_latin1_text_uses_helvetica():
    assert pdf_exporter.font_for("Café crème") == {"fontname": "helv"}


def test_text_no_font_can_render_is_reported(monkeypatch):
    monkeypatch.delenv("PDF_WORKBENCH_FONT", raising=False)
    monkeypatch.setattr(pdf_exporter, "UNICODE_FONT_CANDIDATES", [])
    store = AnnotationStore()
    store.add(1, TextAnnotation(10, 30, "Tiếng Việt"))
    store.add(1, _pen((0, 0), (10, 10)))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    assert result.failed == 1
    assert result.report[1] == [0, 1]
    assert any("No installed font can render" in e for e in result.log)


def test_vietnamese_text_is_embedded_with_unicode_font():
    if pdf_exporter.find_unicode_font("Tiếng Việt") is None:
        pytest.skip("no Unicode TrueType font installed")
    store = AnnotationStore()
    store.add(1, TextAnnotation(10, 30, "Tiếng Việt"))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {})
    assert result.failed == 0
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        assert "Tiếng Việt" in doc[0].get_text()
    finally:
        doc.close()


def test_pages_outside_document_are_skipped():
    store = AnnotationStore()
    store.add(5, _pen((0, 0), (10, 10)))
    result = pdf_exporter.commit_annotations(build_pdf(2), store, {})
    assert 5 not in result.report
    assert any("Page 5 not in document" in e for e in result.log)


def test_page_annotations_use_their_own_render_size():
    store = AnnotationStore()
    store.add(1, _pen((10, 10), (20, 10)))
    store.add(2, _pen((10, 10), (20, 10)))
    result = pdf_exporter.commit_annotations(
        build_pdf(2), store, {1: RenderSize(600, 800), 2: RenderSize(300, 400)}
    )
    p1 = _drawings(result.data, 1)[0]["items"][0][1]
    p2 = _drawings(result.data, 2)[0]["items"][0][1]
    assert (p1.x, p1.y) == pytest.approx((5, 5))
    assert (p2.x, p2.y) == pytest.approx((10, 10))


# ── Log ──────────────────────────────────────────────────────────────────────

def test_log_entries_are_timestamped():
    result = pdf_exporter.commit_annotations(build_pdf(1), AnnotationStore(), {})
    assert result.log
    for entry in result.log:
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}.*: .+", entry)


# ── Encryption ───────────────────────────────────────────────────────────────

def test_password_encrypts_output():
    result = pdf_exporter.commit_annotations(build_pdf(1), AnnotationStore(), {},
                                             password="s3cret")
    assert result.warnings == []
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        assert doc.needs_pass
        assert doc.authenticate("s3cret")
        assert "Page 1" in doc[0].get_text()
    finally:
        doc.close()


def test_unsupported_encryption_degrades_to_warning(monkeypatch):
    monkeypatch.setattr(pdf_exporter, "_encryption_supported", lambda doc: False)
    store = AnnotationStore()
    store.add(1, _pen((0, 0), (10, 10)))
    result = pdf_exporter.commit_annotations(build_pdf(1), store, {}, password="pw")
    assert len(result.warnings) == 1
    assert result.report[1] == [1]
    doc = fitz.open(stream=result.data, filetype="pdf")
    try:
        assert not doc.needs_pass
    finally:
        doc.close()


# ── Fatal errors ─────────────────────────────────────────────────────────────

def test_serialize_failure_aborts_with_log(monkeypatch):
    def boom(self, *args, **kwargs):
        raise RuntimeError("disk full")

    data = build_pdf(1)
    monkeypatch.setattr(fitz.Document, "tobytes", boom)
    with pytest.raises(SerializeError) as excinfo:
        pdf_exporter.commit_annotations(data, AnnotationStore(), {})
    assert excinfo.value.log
    assert "CRITICAL ERROR" in excinfo.value.log[-1]


def test_unparseable_source_raises_parse_error():
    with pytest.raises(ParseError):
        pdf_exporter.commit_annotations(b"%PDF-1.7 nothing else", AnnotationStore(), {})


def test_empty_source_is_rejected():
    with pytest.raises(ValidationError):
        pdf_exporter.commit_annotations(b"", AnnotationStore(), {})


# ── save_document ────────────────────────────────────────────────────────────

def test_save_fetches_source_afresh():
    fetches = []

    def fetch(location):
        fetches.append(location)
        return build_pdf(1)

    session = EditorSession("memory://doc.pdf", fetcher=fetch, name="doc.pdf")
    session.store.add(1, _pen((0, 0), (10, 10)))
    result = pdf_exporter.save_document(session)
    assert fetches == ["memory://doc.pdf", "memory://doc.pdf"]
    assert result.report == {1: [1]}


def test_save_rejected_while_another_operation_runs():
    session = EditorSession("x.pdf", fetcher=lambda loc: build_pdf(1))
    with session.gate.hold("crop"):
        with pytest.raises(OperationInProgressError):
            pdf_exporter.save_document(session)
    assert not session.gate.busy
