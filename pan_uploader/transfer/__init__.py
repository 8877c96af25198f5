"""
Transfer Module - Chunk Upload Engine

Bounded-concurrency scheduling, per-chunk upload with retry, progress
aggregation and merge polling.
"""

from .progress import ProgressAggregator, ProgressEvent, ProgressPhase
from .scheduler import ChunkScheduler, PassOutcome
from .uploader import ChunkUploader
from .poller import CompletionPoller, PollState

__all__ = [
    'ProgressAggregator',
    'ProgressEvent',
    'ProgressPhase',
    'ChunkScheduler',
    'PassOutcome',
    'ChunkUploader',
    'CompletionPoller',
    'PollState',
]
