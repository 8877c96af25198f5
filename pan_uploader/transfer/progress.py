"""
Upload Progress

Every in-flight chunk owns one key of the progress map and only ever
replaces its own value, so concurrent workers need no lock and a retried
chunk cannot be counted twice.
"""

from enum import Enum
from typing import Any, Dict
from dataclasses import dataclass, field


class ProgressPhase(str, Enum):
    INIT = 'init'
    PREUPLOAD = 'preupload'
    UPLOADING = 'uploading'
    MERGING = 'merging'
    COMPLETE = 'complete'


@dataclass
class ProgressEvent:
    """Payload of the 'progress' event."""
    phase: ProgressPhase
    loaded: int
    total: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.total == 0:
            return 1.0
        return self.loaded / self.total

    @property
    def progress_percent(self) -> float:
        return self.progress * 100

    def to_dict(self) -> dict:
        return {
            'event': self.phase.value,
            'progress': self.progress,
            'data': {
                'loaded': self.loaded,
                'total': self.total,
                **self.extra,
            },
        }


class ProgressAggregator:
    """
    Merges per-chunk byte counters into one overall figure.

    `loaded` is reported as a high-water mark so a retry that restarts a
    chunk from zero does not make the bar go backwards. Pausing lowers it
    by exactly the paused chunks' contribution.
    """

    def __init__(self, total: int):
        self.total = total
        self._chunks: Dict[int, int] = {}
        self._reported = 0

    def _sum(self) -> int:
        return min(sum(self._chunks.values()), self.total)

    def update(self, part_number: int, loaded: int) -> int:
        """
        Replace the byte count of one chunk.

        Returns:
            The loaded figure to report
        """
        self._chunks[part_number] = max(loaded, 0)
        self._reported = max(self._reported, self._sum())
        return self._reported

    def reset(self, part_number: int) -> int:
        """Forget the bytes of a chunk that will restart from its own offset 0."""
        previous = self._chunks.get(part_number, 0)
        self._chunks[part_number] = 0
        self._reported = max(self._reported - previous, self._sum())
        return self._reported

    def complete_all(self) -> int:
        """Pin the figure to the total once the server holds every byte."""
        self._reported = self.total
        return self._reported

    @property
    def loaded(self) -> int:
        return self._reported

    @property
    def fraction(self) -> float:
        if self.total == 0:
            return 1.0
        return self._reported / self.total

    def chunk_loaded(self, part_number: int) -> int:
        return self._chunks.get(part_number, 0)

    def snapshot(self, phase: ProgressPhase, **extra) -> ProgressEvent:
        return ProgressEvent(phase=phase, loaded=self._reported, total=self.total, extra=extra)
