"""
pan_uploader - Sliced uploads to the 123pan open platform

Splits large files into server-sized chunks, uploads them concurrently
with retry, supports pause/resume/cancel, and waits for the server-side
merge.
"""

from .config import UploadConfig, DuplicatePolicy, load_config
from .exceptions import (
    UploadError, PlanningError, ReadError, ChunkTransferError, ApiError,
    TaskCreationError, CompletionError, PollTimeoutError,
)
from .session import UploadSession, UploadResult, SessionStatus
from .transfer import ProgressEvent, ProgressPhase

__version__ = '0.1.0'

__all__ = [
    'UploadSession',
    'UploadResult',
    'SessionStatus',
    'UploadConfig',
    'DuplicatePolicy',
    'load_config',
    'ProgressEvent',
    'ProgressPhase',
    'UploadError',
    'PlanningError',
    'ReadError',
    'ChunkTransferError',
    'ApiError',
    'TaskCreationError',
    'CompletionError',
    'PollTimeoutError',
]
