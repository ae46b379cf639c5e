"""Exception taxonomy shared by the editor, the organizer and the HTTP API."""
from typing import List, Optional


class WorkbenchError(Exception):
    """Base class for every error the workbench reports to the user."""


class ValidationError(WorkbenchError):
    """Unsupported input, rejected before any processing starts."""


class FetchError(WorkbenchError):
    """The source document could not be retrieved."""


class ParseError(WorkbenchError):
    """The source document is malformed or not a PDF."""


class AnnotationApplyError(WorkbenchError):
    """A single annotation could not be replayed (non-fatal)."""


class EncryptionUnsupportedError(WorkbenchError):
    """The loaded document cannot be encrypted; the save continues without it."""


class SerializeError(WorkbenchError):
    """Writing the output document failed; the whole save is aborted."""

    def __init__(self, message: str, log: Optional[List[str]] = None):
        super().__init__(message)
        self.log: List[str] = list(log or [])


class OperationInProgressError(WorkbenchError):
    """Another save or page operation is still running on this document."""
