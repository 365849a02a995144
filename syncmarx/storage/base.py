# storage/base.py
from abc import ABC, abstractmethod
from typing import List, Optional
from .dto import Credentials, DownloadResult, ProfileFile, UploadRequest


class StorageProvider(ABC):
    """
    Capability interface every storage backend (Google Drive, Dropbox, ...)
    must implement. It carries no state: each backend owns its credentials
    and HTTP/SDK clients privately.
    """

    @abstractmethod
    def get_type(self) -> str:
        """Returns the provider identifier, e.g. 'googledrive'."""
        pass

    @abstractmethod
    def authorize(self, credentials: Credentials):
        """
        Stores the token pair and verifies it once against the backend.

        :param credentials: The access/refresh token pair.
        :raises AuthError: If the tokens cannot be verified or refreshed.
        """
        pass

    @abstractmethod
    def set_credentials(self, credentials: Credentials):
        """Stores the token pair without contacting the backend."""
        pass

    @abstractmethod
    def deauthorize(self):
        """
        Best-effort notifies the backend, then always clears local credentials.
        """
        pass

    @abstractmethod
    def is_authed(self) -> bool:
        pass

    @abstractmethod
    def get_credentials(self) -> Optional[Credentials]:
        """
        Returns a copy of the current token pair, or None when not authorized.
        The access token may differ from the one passed to `authorize`
        after a silent refresh.
        """
        pass

    @abstractmethod
    def upload(self, request: UploadRequest):
        """
        Creates or updates a profile file with the encoded request contents.

        :param request: Target (id or file name), contents and compression flag.
        """
        pass

    @abstractmethod
    def download(self, file_id: str) -> DownloadResult:
        """
        Downloads and decodes a profile file.

        :param file_id: The id of the profile file.
        :return: The decoded contents and the codec path used.
        """
        pass

    @abstractmethod
    def list(self) -> List[ProfileFile]:
        """
        Lists the profile files stored in the application's container.
        """
        pass
