# manager.py
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import Settings, get_settings
from .dbox import DropboxProvider
from .exceptions import InvalidProfileNameError, ProfileNotFoundError, StorageProviderError
from .gdrive import GoogleDriveProvider
from .storage.base import StorageProvider
from .storage.dto import Credentials, ProfileFile, UploadRequest

PROVIDERS: Dict[str, Callable[[Settings], StorageProvider]] = {
    "googledrive": GoogleDriveProvider,
    "dropbox": DropboxProvider,
}

# Profile names become remote file names.
PROFILE_NAME_RE = re.compile(r"^[\w\-. ]+$")


def format_rejection(error: Exception, default_text: str) -> str:
    """
    Returns the message to show the user for a failed operation.
    Only StorageProviderError messages are considered user-friendly.
    """
    if isinstance(error, StorageProviderError):
        return str(error)
    return default_text


def create_provider(provider_type: str, settings: Settings) -> StorageProvider:
    try:
        factory = PROVIDERS[provider_type]
    except KeyError:
        raise StorageProviderError(f"Unknown storage provider: {provider_type}") from None
    return factory(settings)


class SyncManager:
    """
    Owns the active storage provider and the selected profile, and exposes
    the operations a front end needs (auth, push, pull, profiles).

    The provider is created by `init` and released by `shutdown`; a manager
    must be initialized before any other call.
    """

    def __init__(self, settings: Optional[Settings] = None, provider_factory=create_provider):
        self.settings = settings or get_settings()
        self.provider_factory = provider_factory
        self._provider: Optional[StorageProvider] = None
        self.profile_name: Optional[str] = self.settings.PROFILE_NAME
        self.compression: bool = self.settings.COMPRESSION
        self.last_sync_time: Optional[datetime] = None
        self._profiles: List[ProfileFile] = []

    @property
    def provider(self) -> StorageProvider:
        if self._provider is None:
            raise RuntimeError("SyncManager.init() must be called first.")
        return self._provider

    def init(self, provider_type: Optional[str] = None):
        provider_type = provider_type or self.settings.STORAGE_PROVIDER
        logging.info(f"Using {provider_type} storage provider.")
        self._provider = self.provider_factory(provider_type, self.settings)
        self._profiles = []

    def shutdown(self):
        self._provider = None
        self._profiles = []

    def auth(self, provider_type: str, credentials: Credentials):
        if self._provider is None or self._provider.get_type() != provider_type:
            self.init(provider_type)
        self.provider.authorize(credentials)
        logging.info("Authorization successful")

    def revoke_auth(self, credentials: Optional[Credentials] = None):
        """
        Signs out of the provider. `credentials` are the stored tokens to
        revoke when the provider was never authorized in this process.
        """
        provider_type = self.provider.get_type()
        if credentials is not None:
            self.provider.set_credentials(credentials)
        try:
            self.provider.deauthorize()
        finally:
            logging.info(f"{provider_type} access token has been removed")
            self.init(provider_type)

    def get_profiles(self) -> List[ProfileFile]:
        self._profiles = self.provider.list()
        return self._profiles

    def get_current_profile(self) -> Optional[ProfileFile]:
        if not self.profile_name:
            return None
        return next((p for p in self._profiles if p.name == self.profile_name), None)

    def select_profile(self, name: str):
        self.profile_name = name

    def create_profile(self, name: str, contents: Any) -> List[ProfileFile]:
        if not PROFILE_NAME_RE.match(name):
            raise InvalidProfileNameError(f"Invalid profile name: {name}")
        self.profile_name = name
        self.push(contents)
        return self.get_profiles()

    def push(self, contents: Any):
        if not self.profile_name:
            raise StorageProviderError("No profile selected.")

        current = self.get_current_profile()
        self.provider.upload(
            UploadRequest(
                id=current.id if current else None,
                file_name=self.profile_name,
                contents=contents,
                compression=self.compression,
            )
        )
        self.last_sync_time = datetime.now(timezone.utc)
        logging.info(f"Pushed profile '{self.profile_name}'.")

    def pull(self) -> Any:
        if not self.profile_name:
            raise StorageProviderError("No profile selected.")

        current = self.get_current_profile()
        if current is None:
            self.get_profiles()
            current = self.get_current_profile()
        if current is None:
            raise ProfileNotFoundError(f"Profile '{self.profile_name}' not found.")

        result = self.provider.download(current.id)
        self.compression = result.compressed
        self.last_sync_time = datetime.now(timezone.utc)
        logging.info(f"Pulled profile '{self.profile_name}' (compressed={result.compressed}).")
        return result.contents
