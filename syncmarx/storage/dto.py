# storage/dto.py
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DIRECTORY_MIME_TYPE = "inode/directory"

_EXTENSION_RE = re.compile(r"(?<=.)\.[^.]*$")


def strip_extension(name: str) -> str:
    """
    Removes the last `.ext` suffix from a remote file name.
    A name that only starts with a dot (e.g. `.hidden`) is returned unchanged.
    """
    return _EXTENSION_RE.sub("", name, count=1)


class Credentials(BaseModel):
    """
    The OAuth2 token pair a provider works with.
    Serialized with the `accessToken` / `refreshToken` keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class TokenInfo(BaseModel):
    """Metadata returned by a successful token verification."""

    model_config = ConfigDict(extra="allow")

    scope: Optional[str] = None
    expires_in: Optional[int] = None
    email: Optional[str] = None
    refreshed: bool = False


class RemoteObject(BaseModel):
    """One entry of a backend's raw file listing."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    mime_type: str = Field("", alias="mimeType")

    @property
    def is_folder(self) -> bool:
        return self.mime_type in (FOLDER_MIME_TYPE, DIRECTORY_MIME_TYPE)


class ProfileFile(BaseModel):
    """
    A remote file that holds one bookmark profile.
    `name` is the remote name without its extension.
    """

    id: str
    name: str


class UploadRequest(BaseModel):
    id: Optional[str] = None
    file_name: Optional[str] = None
    contents: Any = None
    compression: bool = False


class DownloadResult(BaseModel):
    contents: Any = None
    compressed: bool = False
