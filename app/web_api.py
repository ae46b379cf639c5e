"""Headless HTTP surface: annotate and organize PDFs sent as base64 JSON.

Serve ``web_api:app`` with any ASGI server from the ``app`` directory.
"""
import logging
import os
import time
from typing import Callable
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

import data_store
from api_schemas import (
    CropRequest, DeleteRequest, EditRequest, ReorderRequest, RotateRequest,
)
from errors import (
    FetchError, OperationInProgressError, ParseError, SerializeError,
    ValidationError, WorkbenchError,
)
from models import AnnotationStore
from page_organizer import PageOrganizer
from pdf_exporter import SaveLog, commit_annotations

data_store.configure_logging(data_store.is_debug())
logger = logging.getLogger(__name__)

app = FastAPI(title="PDF Workbench API")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    t0 = time.perf_counter()
    logger.info("REQUEST  %s %s", request.method, request.url.path)
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    logger.info("RESPONSE %s %s — status: %d, time: %.1fms",
                request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# ── Error mapping ─────────────────────────────────────────────────────────────

_STATUS = [
    (ValidationError, 400),
    (ParseError, 422),
    (OperationInProgressError, 409),
    (FetchError, 502),
    (SerializeError, 500),
]


@app.exception_handler(WorkbenchError)
async def workbench_error(request: Request, exc: WorkbenchError):
    status = next((code for cls, code in _STATUS if isinstance(exc, cls)), 400)
    body = {"detail": str(exc)}
    if isinstance(exc, SerializeError):
        body["log"] = exc.log
    logger.warning("%s %s failed (%d): %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content=body)


def _pdf_response(data: bytes, filename: str, **headers) -> StreamingResponse:
    headers["Content-Disposition"] = f"attachment; filename*=UTF-8''{quote(filename)}"
    return StreamingResponse(iter([data]), media_type="application/pdf", headers=headers)


def _source_name(filename: str) -> str:
    return os.path.basename(filename) or "document.pdf"


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/")
def root():
    return {"status": "ok", "message": "PDF Workbench API"}


@app.post("/api/edit")
def edit_document(body: EditRequest):
    store = AnnotationStore()
    render_sizes = {}
    for page in body.pages:
        render_sizes[page.page] = page.render.to_model()
        for ann in page.annotations:
            store.add(page.page, ann.to_model())
    logger.info("POST /api/edit — %d annotation(s) on %d page(s)",
                store.count(), len(store.pages()))
    result = commit_annotations(body.document, store, render_sizes,
                                password=body.password, log=SaveLog())
    name = data_store.output_filename("edited", _source_name(body.filename))
    headers = {"X-Failed-Annotations": str(result.failed)}
    if result.warnings:
        headers["X-Save-Warnings"] = "; ".join(result.warnings)
    return _pdf_response(result.data, name, **headers)


def _organize(body, operation: Callable[[PageOrganizer], object]) -> StreamingResponse:
    organizer = PageOrganizer(body.document, _source_name(body.filename))
    operation(organizer)
    return _pdf_response(organizer.data, organizer.output_name(),
                         **{"X-Page-Count": str(organizer.page_count)})


def _select(organizer: PageOrganizer, pages) -> None:
    bad = [p for p in pages if not 1 <= p <= organizer.page_count]
    if bad:
        raise ValidationError(f"Pages {bad} out of range 1..{organizer.page_count}")
    organizer.select(p - 1 for p in pages)


@app.post("/api/organize/rotate")
def rotate_pages(body: RotateRequest):
    def op(organizer: PageOrganizer):
        _select(organizer, body.pages)
        organizer.rotate(body.delta)
    return _organize(body, op)


@app.post("/api/organize/delete")
def delete_pages(body: DeleteRequest):
    def op(organizer: PageOrganizer):
        _select(organizer, body.pages)
        # the request itself is the confirmation
        organizer.delete_selected()
    return _organize(body, op)


@app.post("/api/organize/reorder")
def reorder_pages(body: ReorderRequest):
    return _organize(body, lambda o: o.reorder(body.source - 1, body.target - 1))


@app.post("/api/organize/crop")
def crop_page(body: CropRequest):
    return _organize(body, lambda o: o.crop(body.page - 1, body.rect.to_model()))
