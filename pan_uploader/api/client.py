"""
Account and Directory Client

Token acquisition, folder creation and listing. The uploader itself only
needs a token and a parent folder id; this client provides both.
"""

import logging
from typing import List, Optional

import httpx

from ..config import DEFAULT_API_BASE_URL
from ..exceptions import ApiError, UploadError
from .http import ApiClient
from .models import AccessToken, DirectoryCreated, FileItem, FileListPage, UserInfo

logger = logging.getLogger(__name__)

# Listing page size; a shorter page is the last one
PAGE_SIZE = 100

# Server messages the recursive mkdir reacts to
FOLDER_EXISTS_MESSAGE = '该目录下已经有同名文件夹'
INVALID_NAME_MESSAGE = '文件名要小于256个字符且不能包含以下任何字符'


async def get_access_token(client_id: str, client_secret: str,
                           base_url: str = DEFAULT_API_BASE_URL,
                           transport: Optional[httpx.AsyncBaseTransport] = None) -> AccessToken:
    """Exchange developer credentials for an access token."""
    async with ApiClient(base_url=base_url, transport=transport) as api:
        data = await api.post('/api/v1/access_token', json={
            'clientID': client_id,
            'clientSecret': client_secret,
        })
    token = AccessToken.model_validate(data)
    logger.info(f"Access token obtained, expires at {token.expired_at or 'unknown'}")
    return token


class PanClient:
    """
    Directory management on the user's drive.

    Provides:
    - mkdir / mkdir_recursive
    - paginated file listing
    - user info
    """

    def __init__(self, token: str, base_url: str = DEFAULT_API_BASE_URL,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api = ApiClient(token=token, base_url=base_url, timeout=timeout,
                             transport=transport)

    async def __aenter__(self) -> 'PanClient':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self.api.aclose()

    async def mkdir(self, name: str, parent_id: int = 0) -> int:
        """
        Create a folder.

        Returns:
            The new folder's id
        """
        data = await self.api.post('/upload/v1/file/mkdir', json={
            'name': name,
            'parentID': parent_id,
        })
        return DirectoryCreated.model_validate(data).dir_id

    async def mkdir_recursive(self, path: str) -> int:
        """
        Make sure every folder of `path` (e.g. /a/b/c) exists.

        Existing folders are looked up and reused.

        Returns:
            Id of the deepest folder (0 for the root)
        """
        current_id = 0
        for name in [p for p in path.split('/') if p]:
            try:
                current_id = await self.mkdir(name, current_id)
                logger.debug(f"Created folder {name!r} ({current_id})")
            except ApiError as e:
                if INVALID_NAME_MESSAGE in e.reason:
                    raise UploadError(f"Invalid folder name {name!r}: {e.reason}") from e
                if FOLDER_EXISTS_MESSAGE not in e.reason:
                    raise
                folder = await self.find_folder(name, current_id)
                if folder is None:
                    raise UploadError(f"Failed to create folder {path!r}: "
                                      f"{name!r} exists but could not be found") from e
                current_id = folder.file_id
                logger.debug(f"Reusing folder {name!r} ({current_id})")
        return current_id

    async def find_folder(self, name: str, parent_id: int) -> Optional[FileItem]:
        """Find a live (not trashed) folder by name, walking every page."""
        last_file_id = 0
        while True:
            page = await self.get_file_list(parent_file_id=parent_id,
                                            last_file_id=last_file_id)
            for item in page.file_list:
                if item.filename == name and item.is_folder and not item.is_trashed:
                    return item
            if len(page.file_list) < PAGE_SIZE or page.last_file_id == -1:
                return None
            last_file_id = page.last_file_id

    async def get_file_list(self, parent_file_id: int = 0, last_file_id: int = 0,
                            limit: int = PAGE_SIZE, search_data: str = '',
                            search_mode: int = 0) -> FileListPage:
        """Fetch one page of a folder listing."""
        data = await self.api.get('/api/v2/file/list', params={
            'parentFileId': parent_file_id,
            'lastFileId': last_file_id,
            'limit': limit,
            'searchData': search_data or None,
            'searchMode': search_mode,
        })
        return FileListPage.model_validate(data)

    async def list_all(self, parent_file_id: int = 0) -> List[FileItem]:
        """Every entry of a folder, following pagination."""
        items: List[FileItem] = []
        last_file_id = 0
        while True:
            page = await self.get_file_list(parent_file_id=parent_file_id,
                                            last_file_id=last_file_id)
            items.extend(page.file_list)
            if len(page.file_list) < PAGE_SIZE or page.last_file_id == -1:
                return items
            last_file_id = page.last_file_id

    async def get_user_info(self) -> UserInfo:
        data = await self.api.get('/api/v1/user/info')
        return UserInfo.model_validate(data)
