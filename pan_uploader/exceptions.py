"""
Upload Errors

Every failure the uploader raises derives from UploadError so callers can
catch one type. Cancellation is deliberately absent: a cancelled session
resolves to None and fires the 'cancel' event instead of raising.
"""

from typing import Optional


class UploadError(Exception):
    """Base class for all upload failures."""


class PlanningError(UploadError):
    """The source file or the chunk layout is unusable."""


class ReadError(PlanningError):
    """A chunk could not be read from the source file."""


class ChunkTransferError(UploadError):
    """A chunk failed on every attempt."""

    def __init__(self, message: str, part_number: int, attempts: int):
        super().__init__(message)
        self.part_number = part_number
        self.attempts = attempts


class ApiError(UploadError):
    """
    The open platform answered with a non-zero code.

    The message keeps the server's own reason so it can be shown as-is.
    """

    def __init__(self, code: int, message: str = '', trace_id: Optional[str] = None):
        self.code = code
        self.reason = message or 'no message'
        self.trace_id = trace_id
        super().__init__(
            f"code:{code}, x-traceID:{trace_id}, message:{self.reason}"
        )


class TaskCreationError(UploadError):
    """The create-task call was rejected or could not be made."""


class CompletionError(UploadError):
    """The finish or merge-status call was rejected or could not be made."""


class PollTimeoutError(UploadError):
    """The server never confirmed the merge within the polling budget."""

    def __init__(self, attempts: int):
        super().__init__(f"Merge not confirmed after {attempts} status checks")
        self.attempts = attempts
