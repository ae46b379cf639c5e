"""Run blocking document work (save, page edits) off the GUI thread."""
import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, QRunnable, Signal

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    finished = Signal(object)   # return value of the job
    failed = Signal(object)     # the exception it raised


class Worker(QRunnable):
    """Call ``fn(*args, **kwargs)`` on the global thread pool.

    Exactly one of ``signals.finished`` / ``signals.failed`` is emitted.
    Keep a reference to the worker's signals until one of them fires.
    """

    def __init__(self, fn: Callable[..., Any], *args, **kwargs):
        super().__init__()
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.signals = WorkerSignals()

    def run(self):
        try:
            result = self.fn(*self.args, **self.kwargs)
        except Exception as exc:
            logger.debug("Worker job %s raised %r", getattr(self.fn, "__name__", self.fn), exc)
            self.signals.failed.emit(exc)
            return
        self.signals.finished.emit(result)
