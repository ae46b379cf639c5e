import pytest

from errors import ValidationError
from models import AnnotationStore, NoteAnnotation, RectAnnotation, TextAnnotation


def test_store_keeps_insertion_order_per_page():
    store = AnnotationStore()
    a, b, c = RectAnnotation(0, 0, 1, 1), TextAnnotation(1, 1, "x"), NoteAnnotation(2, 2, "n")
    store.add(3, a)
    store.add(1, b)
    store.add(3, c)
    assert store.for_page(3) == (a, c)
    assert store.pages() == [1, 3]
    assert store.count() == 3
    assert len(store) == 3


def test_store_rejects_page_zero():
    with pytest.raises(ValidationError):
        AnnotationStore().add(0, RectAnnotation(0, 0, 1, 1))


def test_undo_last_removes_most_recent():
    store = AnnotationStore()
    first, second = TextAnnotation(0, 0, "a"), TextAnnotation(0, 0, "b")
    store.add(2, first)
    store.add(2, second)
    assert store.undo_last(2) is second
    assert store.undo_last(2) is first
    assert store.undo_last(2) is None
    assert store.pages() == []


def test_records_are_immutable():
    ann = TextAnnotation(0, 0, "a")
    with pytest.raises(AttributeError):
        ann.content = "b"
    assert ann.kind == "text"
