"""
Response models for the 123pan open platform.

Field names follow the wire (camelCase) through aliases; file ids are
normalised to strings and a zero or empty id means "not assigned yet".
"""

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class PanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class FileRef(PanModel):
    file_id: Optional[str] = Field(default=None, alias='fileID')

    @field_validator('file_id', mode='before')
    @classmethod
    def normalise_file_id(cls, value: Any) -> Optional[str]:
        if value in (None, '', 0, '0'):
            return None
        return str(value)


class CreateTaskResult(FileRef):
    """Answer to the create-task call."""
    preupload_id: str = Field(default='', alias='preuploadID')
    reuse: bool = False
    slice_size: int = Field(default=0, alias='sliceSize')


class UploadUrl(PanModel):
    presigned_url: str = Field(alias='presignedURL')
    is_multipart: bool = Field(default=False, alias='isMultipart')


class FinishResult(FileRef):
    """Answer to the finish call; async_upload means the merge runs in the background."""
    async_upload: bool = Field(
        default=False, validation_alias=AliasChoices('asyncUpload', 'async', 'async_upload')
    )
    completed: bool = False


class MergeStatus(FileRef):
    completed: bool = False


class AccessToken(PanModel):
    access_token: str = Field(alias='accessToken')
    expired_at: str = Field(default='', alias='expiredAt')


class DirectoryCreated(PanModel):
    dir_id: int = Field(alias='dirID')


class FileItem(PanModel):
    """One entry of a directory listing. type 0 is a file, 1 a folder."""
    file_id: int = Field(alias='fileId')
    filename: str
    parent_file_id: int = Field(default=0, alias='parentFileId')
    type: int = 0
    etag: str = ''
    size: int = 0
    category: int = 0
    status: int = 0
    trashed: int = 0
    create_at: str = Field(default='', alias='createAt')
    update_at: str = Field(default='', alias='updateAt')

    @property
    def is_folder(self) -> bool:
        return self.type == 1

    @property
    def is_trashed(self) -> bool:
        return self.trashed == 1


class FileListPage(PanModel):
    last_file_id: int = Field(default=-1, alias='lastFileId')
    file_list: List[FileItem] = Field(default_factory=list, alias='fileList')


class UserInfo(PanModel):
    uid: int
    nickname: str = ''
    passport: str = ''
    mail: str = ''
    space_used: int = Field(default=0, alias='spaceUsed')
    space_permanent: int = Field(default=0, alias='spacePermanent')
    space_temp: int = Field(default=0, alias='spaceTemp')
    vip: bool = False
    direct_traffic: int = Field(default=0, alias='directTraffic')
