"""
File Chunker

Design Decision: Chunk Size
===========================

The server decides. The create-task call returns the authoritative slice
size and every part except the last must be exactly that long, so the
planner never picks a size on its own. DEFAULT_CHUNK_SIZE (4MB) only
stands in until the server has answered.

Design Decision: Reading
========================

Options Considered:
1. Read the whole file once and slice it
   - Memory grows with file size
2. One shared handle with seek + read
   - Concurrent workers would race on the file position
3. One handle per chunk read, bounded bursts
   - Memory bounded by chunk size, no shared position

Decision: Option 3
- Each read opens its own aiofiles handle at the chunk offset
- Data arrives in bursts of at most 64KB and is joined once at the end,
  because the destination PUT needs the whole chunk body in one request
"""

import asyncio
import hashlib
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union
from dataclasses import dataclass, field

import aiofiles

from ..config import DEFAULT_CHUNK_SIZE
from ..exceptions import PlanningError, ReadError

logger = logging.getLogger(__name__)

# Upper bound of a single read from disk
READ_BURST_SIZE = 64 * 1024


class ChunkStatus(str, Enum):
    """Lifecycle of a single chunk."""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    ERROR = 'error'
    ABORTED = 'aborted'


class CancelHandle:
    """
    Cancellation token for one run of one chunk.

    The scheduler binds the asyncio task running the chunk; cancel() marks
    the handle and cancels that task mid-flight. A handle is never reused:
    a resumed chunk gets a fresh one.
    """

    def __init__(self):
        self._cancelled = False
        self._runner: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, runner: asyncio.Task):
        self._runner = runner

    def cancel(self) -> bool:
        """Abort the run. Returns False if already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        return True


@dataclass
class ChunkTask:
    """One planned byte range of the source file."""
    part_number: int  # 1-based, stable for the session
    offset: int
    length: int
    status: ChunkStatus = ChunkStatus.PENDING
    handle: CancelHandle = field(default_factory=CancelHandle)
    attempts: int = 0

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.length

    def renew_handle(self) -> CancelHandle:
        """Mint a fresh handle and put the task back to pending."""
        self.handle = CancelHandle()
        self.status = ChunkStatus.PENDING
        return self.handle


class ChunkPlanner:
    """
    Splits a file size into fixed-size chunk descriptors.

    Features:
    - Server-provided slice size
    - 1-based part numbers
    - Descriptors tile [0, size) exactly once
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise PlanningError(f"Slice size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size

    def get_chunk_count(self, file_size: int) -> int:
        """Calculate number of chunks for a file of given size."""
        return (file_size + self.chunk_size - 1) // self.chunk_size

    def get_chunk_bounds(self, part_number: int, file_size: int) -> Tuple[int, int]:
        """
        Get byte range for a specific part.

        Returns:
            (start_offset, length) tuple
        """
        start = (part_number - 1) * self.chunk_size
        length = min(self.chunk_size, file_size - start)
        return start, length

    def plan(self, file_size: int) -> List[ChunkTask]:
        """Build the ordered chunk tasks for a file of given size."""
        if file_size < 0:
            raise PlanningError(f"File size must not be negative, got {file_size}")

        tasks = []
        for part_number in range(1, self.get_chunk_count(file_size) + 1):
            start, length = self.get_chunk_bounds(part_number, file_size)
            tasks.append(ChunkTask(part_number=part_number, offset=start, length=length))
        return tasks


class ChunkReader:
    """Reads chunk bodies from the source file."""

    def __init__(self, file_path: Union[str, Path], burst_size: int = READ_BURST_SIZE):
        self.file_path = Path(file_path)
        self.burst_size = burst_size

    async def read(self, offset: int, length: int) -> bytes:
        """
        Read exactly `length` bytes starting at `offset`.

        Raises:
            ReadError: file missing, unreadable, or shorter than expected
        """
        parts: List[bytes] = []
        remaining = length

        try:
            async with aiofiles.open(self.file_path, 'rb') as f:
                await f.seek(offset)
                while remaining > 0:
                    data = await f.read(min(remaining, self.burst_size))
                    if not data:
                        break
                    parts.append(data)
                    remaining -= len(data)
        except OSError as e:
            raise ReadError(f"Failed to read {self.file_path}: {e}") from e

        if remaining:
            raise ReadError(
                f"Short read from {self.file_path}: expected {length} bytes "
                f"at offset {offset}, got {length - remaining}"
            )

        return b''.join(parts)

    async def read_chunk(self, task: ChunkTask) -> bytes:
        return await self.read(task.offset, task.length)


async def md5_file(file_path: Union[str, Path], burst_size: int = READ_BURST_SIZE) -> str:
    """
    Compute the MD5 hex digest of an entire file.

    This is the 'etag' the server uses to recognise content it already has.
    """
    hasher = hashlib.md5()

    try:
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                data = await f.read(burst_size)
                if not data:
                    break
                hasher.update(data)
    except OSError as e:
        raise ReadError(f"Failed to hash {file_path}: {e}") from e

    return hasher.hexdigest()
