import fitz  # pymupdf
import pytest
from fastapi.testclient import TestClient

import data_store


def build_pdf(pages: int = 3, width: float = 300, height: float = 400) -> bytes:
    """Return a PDF whose pages read "Page 1", "Page 2", ..."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((40, 60), f"Page {i + 1}", fontsize=18)
    data = doc.tobytes()
    doc.close()
    return data


def page_texts(data: bytes):
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return [page.get_text().strip() for page in doc]
    finally:
        doc.close()


def build_png(width: int = 40, height: int = 20) -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.clear_with(200)
    return pix.tobytes("png")


def build_two_tone(width: int = 40, height: int = 20, fmt: str = "png") -> bytes:
    """Left half red, right half blue; shows whether an image was flipped or turned."""
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.set_rect(fitz.IRect(0, 0, width // 2, height), (255, 0, 0))
    pix.set_rect(fitz.IRect(width // 2, 0, width, height), (0, 0, 255))
    return pix.tobytes(fmt)


def rotate_pdf(data: bytes, rotation: int) -> bytes:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        for page in doc:
            page.set_rotation(rotation)
        return doc.tobytes()
    finally:
        doc.close()


def color_bbox(data: bytes, rgb, page: int = 1, tolerance: int = 60):
    """Bounding box (x0, y0, x1, y1) of the pixels close to *rgb* on the rendered page.

    Rendering is at 72 dpi, so pixels are points of the page as displayed.
    """
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pix = doc[page - 1].get_pixmap(alpha=False)
    finally:
        doc.close()
    samples, n, stride = pix.samples, pix.n, pix.stride
    xs, ys = [], []
    for y in range(pix.height):
        row = y * stride
        for x in range(pix.width):
            i = row + x * n
            if all(abs(samples[i + c] - rgb[c]) <= tolerance for c in range(3)):
                xs.append(x)
                ys.append(y)
    if not xs:
        return None
    return min(xs), min(ys), max(xs) + 1, max(ys) + 1


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """Redirect all settings reads/writes to a temporary directory."""
    monkeypatch.setattr(data_store, 'DATA_DIR', str(tmp_path / "data"))
    return tmp_path / "data"


@pytest.fixture()
def pdf_bytes():
    return build_pdf()


@pytest.fixture()
def png_bytes():
    return build_png()


@pytest.fixture()
def client():
    from web_api import app
    return TestClient(app)
