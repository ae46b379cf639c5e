"""Request bodies for the HTTP API.

Documents and images travel as base64 strings.  Annotations are tagged by
``kind`` and geometry is in pixels of the page image the client rendered,
whose size is sent alongside as ``render``.
"""
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Base64Bytes, ConfigDict, Field

import drawing_session as ds
from models import (
    Annotation, CropPercent, ImageAnnotation, NoteAnnotation, RectAnnotation,
    RenderSize, TextAnnotation,
)


class PathIn(BaseModel):
    """Pen stroke, or highlighter when ``highlight`` is set; the style is the tool's."""
    model_config = ConfigDict(extra="forbid")

    kind: Literal["path"]
    points: List[Tuple[float, float]] = Field(min_length=1)
    highlight: bool = False

    def to_model(self) -> Annotation:
        return ds.stroke(tuple(self.points), highlight=self.highlight)


class TextIn(BaseModel):
    kind: Literal["text"]
    x: float
    y: float
    content: str = Field(min_length=1)
    font_size: float = Field(default=ds.TEXT_FONT_SIZE, gt=0)

    def to_model(self) -> Annotation:
        return TextAnnotation(self.x, self.y, self.content, font_size=self.font_size)


class RectIn(BaseModel):
    kind: Literal["rect"]
    x: float
    y: float
    width: float
    height: float

    def to_model(self) -> Annotation:
        return RectAnnotation(self.x, self.y, self.width, self.height)


class ImageIn(BaseModel):
    kind: Literal["image"]
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    image: Base64Bytes
    filename: Optional[str] = None

    def to_model(self) -> Annotation:
        # raises ValidationError for anything but PNG/JPEG
        mime_kind = ds.sniff_image_kind(self.image, self.filename)
        return ImageAnnotation(self.x, self.y, self.width, self.height,
                               image_bytes=self.image, mime_kind=mime_kind)


class NoteIn(BaseModel):
    kind: Literal["note"]
    x: float
    y: float
    content: str = Field(min_length=1)

    def to_model(self) -> Annotation:
        return NoteAnnotation(self.x, self.y, self.content)


AnnotationIn = Annotated[
    Union[PathIn, TextIn, RectIn, ImageIn, NoteIn],
    Field(discriminator="kind"),
]


class RenderSizeIn(BaseModel):
    width: float = Field(gt=0)
    height: float = Field(gt=0)

    def to_model(self) -> RenderSize:
        return RenderSize(self.width, self.height)


class PageAnnotationsIn(BaseModel):
    page: int = Field(ge=1)
    render: RenderSizeIn
    annotations: List[AnnotationIn] = []


class DocumentIn(BaseModel):
    document: Base64Bytes
    filename: str = "document.pdf"


class EditRequest(DocumentIn):
    password: str = ""
    pages: List[PageAnnotationsIn] = []


class RotateRequest(DocumentIn):
    pages: List[int] = Field(min_length=1)      # 1-based
    delta: Literal[-90, 90]


class DeleteRequest(DocumentIn):
    pages: List[int] = Field(min_length=1)      # 1-based


class ReorderRequest(DocumentIn):
    source: int = Field(ge=1)
    target: int = Field(ge=1)


class CropIn(BaseModel):
    x: float = 10.0
    y: float = 10.0
    width: float = 80.0
    height: float = 80.0

    def to_model(self) -> CropPercent:
        return CropPercent(self.x, self.y, self.width, self.height)


class CropRequest(DocumentIn):
    page: int = Field(ge=1)
    rect: CropIn = CropIn()
