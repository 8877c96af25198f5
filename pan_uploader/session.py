"""
Upload Session - Main Controller

Orchestrates one sliced upload end to end:
1. Create the upload task (the server may recognise the file and reuse it)
2. Plan chunks from the server's slice size
3. Upload chunks through the scheduler
4. Ask the server to merge, polling if the merge is asynchronous

The session is the only owner of the upload status. pause(), resume() and
cancel() may be called from listeners or other tasks while upload() runs.

Status transitions:

    pending -> running -> (paused <-> running) -> completed
                       -> error
    pending / running / paused -> cancel
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Dict, List, Optional, TypeVar, Union
from dataclasses import dataclass

import httpx

from .api.upload import UploadApi
from .config import DEFAULT_CHUNK_SIZE, UploadConfig
from .events import EventEmitter
from .exceptions import PlanningError, UploadError
from .file.chunker import ChunkPlanner, ChunkReader, ChunkStatus, ChunkTask, md5_file
from .transfer.poller import CompletionPoller
from .transfer.progress import ProgressAggregator, ProgressPhase
from .transfer.scheduler import ChunkScheduler, PassOutcome
from .transfer.uploader import ChunkUploader

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SessionStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    ERROR = 'error'
    CANCEL = 'cancel'

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.CANCEL)


@dataclass
class UploadResult:
    """Payload of the 'completed' event and return value of upload()."""
    file_id: str
    filename: str

    def to_dict(self) -> dict:
        return {'fileId': self.file_id, 'filename': self.filename}


class UploadSession:
    """
    Uploads one local file into a folder of the drive.

    Usage:
        session = UploadSession('big.iso', token, parent_file_id=0)
        session.on('progress', lambda p: print(p.progress_percent))
        result = await session.upload()
    """

    def __init__(self, file_path: Union[str, Path], token: str,
                 parent_file_id: int = 0,
                 config: Optional[UploadConfig] = None,
                 api: Optional[UploadApi] = None,
                 filename: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize an upload session.

        Args:
            file_path: Local file to upload
            token: Access token
            parent_file_id: Destination folder id, 0 for the root
            config: Upload policy (defaults if not provided)
            api: Remote operations; built from token and config if not provided
            transport: httpx transport for the API built here (tests, proxies)
            filename: Name on the drive (default: the local basename)

        Raises:
            PlanningError: the file does not exist or is not a regular file
        """
        self.config = (config or UploadConfig()).validate()
        self.file_path = Path(file_path)
        self.filename = filename or self.file_path.name
        self.token = token
        self.parent_file_id = parent_file_id

        try:
            stat = self.file_path.stat()
        except OSError as e:
            raise PlanningError(f"Cannot read {self.file_path}: {e}") from e
        if not self.file_path.is_file():
            raise PlanningError(f"Not a regular file: {self.file_path}")
        self.size = stat.st_size

        self._api = api
        self._owns_api = api is None
        self._transport = transport

        # Events
        self._emitter = EventEmitter()
        self.on = self._emitter.on
        self.once = self._emitter.once
        self.off = self._emitter.off

        # State
        self._status = SessionStatus.PENDING
        self.chunk_size = DEFAULT_CHUNK_SIZE
        self.preupload_id: Optional[str] = None
        self._tasks: Dict[int, ChunkTask] = {}
        self._progress = ProgressAggregator(self.size)
        self._reader = ChunkReader(self.file_path, burst_size=self.config.read_burst_size)
        self._scheduler: Optional[ChunkScheduler] = None
        self._uploader: Optional[ChunkUploader] = None
        self._wakeup = asyncio.Event()
        self._call: Optional[asyncio.Future] = None
        # Set once every chunk is stored; nothing is left to pause after that
        self._chunks_done = False

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def tasks(self) -> List[ChunkTask]:
        return [self._tasks[n] for n in sorted(self._tasks)]

    @property
    def progress(self) -> ProgressAggregator:
        return self._progress

    # === Lifecycle ===

    async def upload(self) -> Optional[UploadResult]:
        """
        Run the upload.

        Returns:
            The stored file, or None if the session was cancelled

        Raises:
            UploadError: the upload failed (the 'error' event has fired)
        """
        if self._status is SessionStatus.CANCEL:
            return None
        if self._status is not SessionStatus.PENDING:
            raise UploadError(f"Upload already started (status: {self._status.value})")

        self._status = SessionStatus.RUNNING
        self._emitter.emit('start')
        self._emit_progress(ProgressPhase.INIT)

        if self._api is None:
            self._api = UploadApi(self.token, self.config, transport=self._transport)

        try:
            return await self._run()
        except asyncio.CancelledError:
            if self._status is SessionStatus.CANCEL:
                logger.debug("Pending call aborted by cancel")
                return None
            self._abort_work()
            raise
        except Exception as e:
            if self._status is SessionStatus.CANCEL:
                logger.debug(f"Ignoring error raised after cancel: {e}")
                return None
            self._status = SessionStatus.ERROR
            self._abort_work()
            logger.error(f"Upload of {self.filename} failed: {e}")
            self._emitter.emit('error', e)
            raise
        finally:
            if self._owns_api:
                await self._api.aclose()

    async def _run(self) -> Optional[UploadResult]:
        api = self._api
        self._emit_progress(ProgressPhase.PREUPLOAD)

        etag = await self._guard(md5_file(self.file_path, self.config.read_burst_size))
        created = await self._guard(api.create_task(
            self.parent_file_id, self.filename, self.size, etag, self.config.duplicate
        ))
        self.preupload_id = created.preupload_id

        if created.reuse:
            logger.info(f"{self.filename} already stored on the server, skipping upload")
            return self._complete(created.file_id or created.preupload_id)

        if created.slice_size <= 0:
            raise PlanningError(f"Server returned an invalid slice size: {created.slice_size}")
        self.chunk_size = created.slice_size

        tasks = ChunkPlanner(self.chunk_size).plan(self.size)
        self._tasks = {task.part_number: task for task in tasks}
        logger.info(f"Uploading {self.filename}: {self.size:,} bytes in "
                    f"{len(tasks)} chunks of {self.chunk_size:,} bytes")

        if not await self._upload_chunks(tasks):
            return None
        self._chunks_done = True

        finish = await self._guard(api.finish(self.preupload_id))
        file_id = finish.file_id

        if finish.async_upload and not finish.completed:
            self._emit_progress(ProgressPhase.MERGING, message='checking merge status')
            poller = CompletionPoller(
                api.check_merge,
                interval=self.config.poll_interval,
                max_times=self.config.poll_max_times,
                on_tick=self._on_poll_tick,
            )
            merged = await self._guard(poller.run(self.preupload_id))
            self._debug({'msg': 'merge completed', 'poll_count': poller.attempts})
            file_id = merged.file_id or file_id

        return self._complete(file_id or created.file_id or self.preupload_id)

    async def _upload_chunks(self, tasks: List[ChunkTask]) -> bool:
        """
        Run every chunk to completion, waiting out pauses.

        Returns:
            True when every chunk is stored, False if cancelled
        """
        self._uploader = ChunkUploader(
            self._api, self._reader, self.preupload_id,
            retry_times=self.config.retry_times,
            retry_delay=self.config.retry_delay,
            on_progress=self._on_chunk_progress,
            on_debug=self._debug,
        )
        self._scheduler = ChunkScheduler(
            self._uploader.upload_chunk,
            concurrency=self.config.concurrency,
            on_completed=self._on_chunk_completed,
        )
        if self._status is SessionStatus.PAUSED:
            self._scheduler.pause()

        for task in tasks:
            self._scheduler.submit(task)

        while True:
            outcome = await self._scheduler.join()
            if self._status is SessionStatus.CANCEL:
                return False
            if outcome is PassOutcome.COMPLETE:
                return True

            completed = sorted(self._scheduler.completed)
            self._debug({
                'msg': 'completed parts',
                'parts': completed,
                'total': len(tasks),
                'uploaded': len(completed),
            })

            if self._status is SessionStatus.PAUSED:
                logger.info(f"Upload paused ({len(completed)}/{len(tasks)} chunks stored)")
                await self._wakeup.wait()
                continue

            raise UploadError(
                f"Upload incomplete: {len(completed)}/{len(tasks)} chunks uploaded"
            )

    async def _guard(self, aw: Awaitable[T]) -> T:
        """Run a remote step so that cancel() can abort it."""
        self._call = asyncio.ensure_future(aw)
        try:
            result = await self._call
        finally:
            self._call = None
        # cancel() may land after the step finished but before we resumed
        if self._status is SessionStatus.CANCEL:
            raise asyncio.CancelledError()
        return result

    def _complete(self, file_id: str) -> Optional[UploadResult]:
        if self._status.is_terminal:
            logger.debug(f"Not completing {self.filename}: already {self._status.value}")
            return None

        self._progress.complete_all()
        self._emit_progress(ProgressPhase.COMPLETE)

        result = UploadResult(file_id=file_id, filename=self.filename)
        self._status = SessionStatus.COMPLETED
        logger.info(f"Uploaded {self.filename} as file {file_id}")
        self._emitter.emit('completed', result)
        return result

    def _abort_work(self):
        if self._scheduler is not None:
            self._scheduler.clear()

    # === Control ===

    def pause(self) -> bool:
        """
        Pause a running upload.

        In-flight chunks are aborted and will restart from their own first
        byte on resume.

        Returns:
            False if the session was not running
        """
        if self._status is not SessionStatus.RUNNING:
            return False
        if self._chunks_done:
            logger.debug("Ignoring pause: every chunk is already stored")
            return False

        self._status = SessionStatus.PAUSED
        self._wakeup.clear()

        if self._scheduler is not None:
            for task in self._scheduler.pause():
                self._progress.reset(task.part_number)

        logger.info(f"Pausing upload of {self.filename}")
        return True

    def resume(self) -> bool:
        """
        Resume a paused upload.

        Returns:
            False if the session was not paused
        """
        if self._status is not SessionStatus.PAUSED:
            return False

        self._status = SessionStatus.RUNNING

        if self._scheduler is not None:
            aborted = [task for task in self.tasks if task.status is ChunkStatus.ABORTED]
            logger.info(f"Resuming upload of {self.filename} ({len(aborted)} chunks restarted)")
            self._scheduler.resume(aborted)

        self._wakeup.set()
        return True

    def cancel(self) -> bool:
        """
        Cancel the upload. Safe to call repeatedly.

        Returns:
            False if the session had already ended
        """
        if self._status.is_terminal:
            return False

        self._status = SessionStatus.CANCEL
        self._abort_work()
        if self._call is not None and not self._call.done():
            self._call.cancel()
        self._wakeup.set()

        logger.info(f"Cancelled upload of {self.filename}")
        self._emitter.emit('cancel')
        return True

    # === Reporting ===

    def _emit_progress(self, phase: ProgressPhase, **extra):
        self._emitter.emit('progress', self._progress.snapshot(phase, **extra))

    def _on_chunk_progress(self, task: ChunkTask, sent: int):
        self._progress.update(task.part_number, sent)
        self._emit_progress(
            ProgressPhase.UPLOADING,
            chunk=task.part_number,
            chunk_progress=sent / task.length if task.length else 1.0,
        )

    def _on_chunk_completed(self, part_number: int):
        task = self._tasks[part_number]
        self._progress.update(part_number, task.length)
        logger.debug(f"Chunk {part_number}/{len(self._tasks)} stored")

    def _on_poll_tick(self, poll_count: int):
        self._emit_progress(
            ProgressPhase.MERGING,
            poll_count=poll_count,
            message=f"checking merge status: attempt {poll_count}",
        )

    def _debug(self, data: dict):
        self._emitter.emit('debug', data)

    def get_stats(self) -> dict:
        """Get session statistics."""
        return {
            'status': self._status.value,
            'filename': self.filename,
            'size': self.size,
            'chunk_size': self.chunk_size,
            'chunks': len(self._tasks),
            'loaded': self._progress.loaded,
            'uploader': self._uploader.get_stats() if self._uploader else None,
        }
