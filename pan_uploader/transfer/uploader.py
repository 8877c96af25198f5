"""
Chunk Uploader

Uploads one chunk: read the bytes, ask for a presigned URL, PUT the bytes.

Retry policy: any failure other than a deliberate cancel retries the whole
sequence after `retry_delay` seconds, including a fresh URL (presigned URLs
may be single-use or expire). A PlanningError from the read is the
exception: the source no longer matches the plan and it is raised at once.
After `retry_times` retries the chunk is marked 'error' and
ChunkTransferError is raised.

A cancel through the chunk's CancelHandle is the pause path: the chunk is
marked 'aborted' and the upload returns None without raising.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..api.upload import UploadApi
from ..exceptions import ChunkTransferError, PlanningError
from ..file.chunker import CancelHandle, ChunkReader, ChunkStatus, ChunkTask

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ChunkTask, int], None]
DebugCallback = Callable[[Dict[str, Any]], None]
Sleep = Callable[[float], Awaitable[Any]]


class ChunkUploader:
    """Uploads the chunks of one upload task (one preupload id)."""

    def __init__(self, api: UploadApi, reader: ChunkReader, preupload_id: str,
                 retry_times: int = 3, retry_delay: float = 3.0,
                 on_progress: Optional[ProgressCallback] = None,
                 on_debug: Optional[DebugCallback] = None,
                 sleep: Sleep = asyncio.sleep):
        self.api = api
        self.reader = reader
        self.preupload_id = preupload_id
        self.retry_times = retry_times
        self.retry_delay = retry_delay
        self._on_progress = on_progress
        self._on_debug = on_debug
        self._sleep = sleep

        # Statistics
        self.chunks_uploaded = 0
        self.bytes_uploaded = 0
        self.failed_attempts = 0

    async def upload_chunk(self, task: ChunkTask) -> Optional[int]:
        """
        Upload a chunk, retrying on failure.

        Returns:
            The part number on success, None if the chunk was cancelled

        Raises:
            ChunkTransferError: every attempt failed
            PlanningError: the chunk could not be read from the source
        """
        handle = task.handle
        attempt = 0

        try:
            while True:
                if handle.cancelled:
                    self._mark_aborted(task, handle)
                    return None

                attempt += 1
                task.attempts += 1
                task.status = ChunkStatus.RUNNING

                try:
                    await self._attempt(task, handle)
                except PlanningError as e:
                    # The source no longer matches the plan; retrying cannot help
                    task.status = ChunkStatus.ERROR
                    logger.error(f"Chunk {task.part_number} cannot be read: {e}")
                    raise
                except Exception as e:
                    self.failed_attempts += 1
                    will_retry = attempt <= self.retry_times
                    self._debug({
                        'msg': 'chunk upload attempt failed',
                        'chunk': task.part_number,
                        'attempt': attempt,
                        'retry': will_retry,
                        'error': e,
                    })
                    if not will_retry:
                        task.status = ChunkStatus.ERROR
                        logger.error(f"Chunk {task.part_number} failed after "
                                     f"{attempt} attempts: {e}")
                        raise ChunkTransferError(
                            f"Chunk {task.part_number} failed after {attempt} attempts: {e}",
                            part_number=task.part_number,
                            attempts=attempt,
                        ) from e

                    logger.warning(f"Chunk {task.part_number} attempt {attempt} failed "
                                   f"({e}), retrying in {self.retry_delay}s")
                    await self._sleep(self.retry_delay)
                    continue

                task.status = ChunkStatus.COMPLETED
                self.chunks_uploaded += 1
                self.bytes_uploaded += task.length
                logger.debug(f"Uploaded chunk {task.part_number} "
                             f"({task.length:,} bytes, attempt {attempt})")
                return task.part_number

        except asyncio.CancelledError:
            if not handle.cancelled:
                raise
            self._mark_aborted(task, handle)
            return None

    async def _attempt(self, task: ChunkTask, handle: CancelHandle):
        data = await self.reader.read_chunk(task)
        destination = await self.api.get_upload_url(self.preupload_id, task.part_number)

        def report(sent: int):
            # A cancelled run must not write over a resumed run's progress
            if handle.cancelled or self._on_progress is None:
                return
            self._on_progress(task, min(sent, task.length))

        await self.api.put_chunk(destination.presigned_url, data, on_progress=report)

    def _mark_aborted(self, task: ChunkTask, handle: CancelHandle):
        if task.handle is handle:
            task.status = ChunkStatus.ABORTED
        logger.debug(f"Chunk {task.part_number} aborted")

    def _debug(self, data: Dict[str, Any]):
        if self._on_debug:
            self._on_debug(data)

    def get_stats(self) -> dict:
        """Get uploader statistics."""
        return {
            'chunks_uploaded': self.chunks_uploaded,
            'bytes_uploaded': self.bytes_uploaded,
            'failed_attempts': self.failed_attempts,
        }
