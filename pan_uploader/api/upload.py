"""
Upload API

The five remote operations behind a sliced upload:

1. create_task     - announce the file, get slice size and preupload id
2. get_upload_url  - presigned destination for one slice
3. put_chunk       - PUT the slice bytes to that destination
4. finish          - ask the server to merge the slices
5. check_merge     - poll an asynchronous merge

Slice bodies go straight to object storage with a separate, unauthenticated
client; everything else goes through the authenticated ApiClient.
"""

import logging
from typing import AsyncIterator, Callable, Optional

import httpx

from ..config import UploadConfig
from ..exceptions import CompletionError, TaskCreationError, UploadError
from .http import ApiClient
from .models import CreateTaskResult, FinishResult, MergeStatus, UploadUrl

logger = logging.getLogger(__name__)

# Granularity of upload progress reports
SEND_BURST_SIZE = 64 * 1024

BytesCallback = Callable[[int], None]


class UploadApi:
    """Remote operations used by UploadSession."""

    def __init__(self, token: str, config: Optional[UploadConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or UploadConfig()
        self.api = ApiClient(
            token=token,
            base_url=self.config.api_base_url,
            timeout=self.config.api_timeout,
            transport=transport,
        )
        self._storage = httpx.AsyncClient(
            timeout=self.config.transfer_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> 'UploadApi':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self.api.aclose()
        await self._storage.aclose()

    async def create_task(self, parent_file_id: int, filename: str, size: int,
                          etag: str, duplicate: int) -> CreateTaskResult:
        """
        Create the upload task.

        Raises:
            TaskCreationError: with the server's reason when rejected
        """
        try:
            data = await self.api.post('/upload/v1/file/create', json={
                'parentFileID': parent_file_id,
                'filename': filename,
                'size': size,
                'etag': etag,
                'duplicate': int(duplicate),
            })
            return CreateTaskResult.model_validate(data or {})
        except (UploadError, httpx.HTTPError, ValueError) as e:
            raise TaskCreationError(f"Failed to create upload task: {e}") from e

    async def get_upload_url(self, preupload_id: str, slice_no: int) -> UploadUrl:
        """Presigned URL for one slice. Single-use: ask again for every attempt."""
        data = await self.api.post('/upload/v1/file/get_upload_url', json={
            'preuploadID': preupload_id,
            'sliceNo': slice_no,
        })
        return UploadUrl.model_validate(data)

    async def put_chunk(self, url: str, data: bytes,
                        on_progress: Optional[BytesCallback] = None):
        """
        PUT a slice body, reporting bytes handed to the connection.

        The body is streamed in SEND_BURST_SIZE pieces with an explicit
        Content-Length, so the request is not sent chunk-encoded.
        """
        async def body() -> AsyncIterator[bytes]:
            sent = 0
            for start in range(0, len(data), SEND_BURST_SIZE):
                piece = data[start:start + SEND_BURST_SIZE]
                yield piece
                sent += len(piece)
                if on_progress:
                    on_progress(sent)

        response = await self._storage.put(
            url,
            content=body(),
            headers={
                'Content-Type': 'application/octet-stream',
                'Content-Length': str(len(data)),
            },
        )
        response.raise_for_status()

    async def finish(self, preupload_id: str) -> FinishResult:
        try:
            data = await self.api.post('/upload/v1/file/upload_complete', json={
                'preuploadID': preupload_id,
            })
            return FinishResult.model_validate(data or {})
        except (UploadError, httpx.HTTPError, ValueError) as e:
            raise CompletionError(f"Failed to complete upload: {e}") from e

    async def check_merge(self, preupload_id: str) -> MergeStatus:
        try:
            data = await self.api.post('/upload/v1/file/check_merge', json={
                'preuploadID': preupload_id,
            })
            return MergeStatus.model_validate(data or {})
        except (UploadError, httpx.HTTPError, ValueError) as e:
            raise CompletionError(f"Failed to check merge status: {e}") from e
