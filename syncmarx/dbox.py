# dbox.py
import dropbox
from dropbox.exceptions import ApiError, AuthError, DropboxException
from dropbox.files import FileMetadata as DropboxFileMetadata, WriteMode
import logging
from typing import List, Optional

import requests

from .codec import PayloadCodec
from .config import Settings, get_settings
from .exceptions import (
    InvalidRequestError,
    NotAuthorizedError,
    ProfileNotFoundError,
    ProviderTransportError,
)
from .storage.base import StorageProvider
from .storage.dto import (
    DIRECTORY_MIME_TYPE,
    Credentials,
    DownloadResult,
    ProfileFile,
    RemoteObject,
    UploadRequest,
    strip_extension,
)
from .tokens import TokenLifecycleManager, TokenRejected

PROVIDER_TYPE = "dropbox"

# SDK and network failures are both reported as transport errors.
TRANSPORT_ERRORS = (DropboxException, requests.exceptions.RequestException)


class DropboxProvider(StorageProvider):
    """
    Dropbox implementation of the StorageProvider interface.
    Profile files live in a single folder at `/<APP_FOLDER_NAME>`.
    """

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.tokens = TokenLifecycleManager(
            self._introspect,
            self.settings.refresh_token_url(PROVIDER_TYPE),
            session=session,
            timeout=self.settings.HTTP_TIMEOUT,
        )
        self.codec = PayloadCodec(self.settings.PAYLOAD_ENCRYPTION_KEY)
        self.folder_path = "/" + self.settings.APP_FOLDER_NAME.strip("/")

    def get_type(self) -> str:
        return PROVIDER_TYPE

    def get_credentials(self) -> Optional[Credentials]:
        creds = self.tokens.credentials
        return creds.model_copy() if creds else None

    def is_authed(self) -> bool:
        return bool(self.tokens.access_token)

    def set_credentials(self, credentials: Credentials):
        self.tokens.set_credentials(credentials)

    def authorize(self, credentials: Credentials):
        self.tokens.set_credentials(credentials)
        self.tokens.verify()
        logging.info("Dropbox authorization successful.")

    def deauthorize(self):
        if self.tokens.access_token:
            try:
                self._client().auth_token_revoke()
                logging.info("Dropbox access token revoked.")
            except TRANSPORT_ERRORS as e:
                logging.warning(f"Failed to revoke Dropbox token: {e}")
        self.tokens.clear()

    def get_or_create_container(self) -> RemoteObject:
        """Returns the app folder, creating it if it does not exist yet."""
        dbx = self._client()
        try:
            metadata = dbx.files_get_metadata(self.folder_path)
            logging.info(f"Dropbox folder '{self.folder_path}' exists.")
        except ApiError as e:
            if not (e.error.is_path() and e.error.get_path().is_not_found()):
                logging.error(f"Error accessing Dropbox folder '{self.folder_path}': {e}")
                raise ProviderTransportError(f"Failed to access app folder: {e}") from e

            logging.info(f"Dropbox folder '{self.folder_path}' not found, creating it...")
            try:
                metadata = dbx.files_create_folder_v2(self.folder_path).metadata
            except TRANSPORT_ERRORS as create_e:
                logging.error(f"Failed to create Dropbox folder '{self.folder_path}': {create_e}")
                raise ProviderTransportError(
                    f"Could not create folder '{self.folder_path}' in Dropbox."
                ) from create_e
        except TRANSPORT_ERRORS as e:
            raise ProviderTransportError(f"Failed to access app folder: {e}") from e

        return RemoteObject(id=metadata.id, name=metadata.name, mime_type=DIRECTORY_MIME_TYPE)

    def list(self) -> List[ProfileFile]:
        """
        Returns the files in the app folder, handling pagination automatically.
        """
        self.tokens.verify()
        self.get_or_create_container()

        dbx = self._client()
        try:
            logging.info(f"Listing files in Dropbox path: '{self.folder_path}'")
            result = dbx.files_list_folder(self.folder_path)
            all_entries = list(result.entries)
            while result.has_more:
                logging.info("Found more files, continuing listing...")
                result = dbx.files_list_folder_continue(result.cursor)
                all_entries.extend(result.entries)
        except TRANSPORT_ERRORS as e:
            logging.error(f"Failed to list files in Dropbox path '{self.folder_path}': {e}")
            raise ProviderTransportError(f"Failed to list files: {e}") from e

        return [
            ProfileFile(id=entry.id, name=strip_extension(entry.name))
            for entry in all_entries
            if isinstance(entry, DropboxFileMetadata)
        ]

    def upload(self, request: UploadRequest):
        if not request.id and not request.file_name:
            raise InvalidRequestError("Error, profile id and file name were not specified")

        files = self.list()
        existing = None
        if request.id:
            existing = next((f for f in files if f.id == request.id), None)
        if existing is None and request.file_name:
            existing = next((f for f in files if f.name == request.file_name), None)
        if existing is None and not request.file_name:
            raise ProfileNotFoundError(f"Profile file with ID '{request.id}' not found.")

        remote_path = existing.id if existing else f"{self.folder_path}/{request.file_name}.txt"
        body = self.codec.encode(request.contents, request.compression).encode("utf-8")
        try:
            logging.info(f"Uploading {len(body)} bytes to {remote_path}...")
            self._client().files_upload(body, remote_path, mode=WriteMode("overwrite"))
        except TRANSPORT_ERRORS as e:
            logging.error(f"Failed to upload file to '{remote_path}': {e}")
            raise ProviderTransportError(f"Upload failed: {e}", phase="content") from e

    def download(self, file_id: str) -> DownloadResult:
        files = self.list()
        existing = next((f for f in files if f.id == file_id), None)
        if existing is None:
            raise ProfileNotFoundError(f"Profile file with ID '{file_id}' not found.")

        try:
            logging.info(f"Downloading {existing.name} ({file_id})...")
            _, response = self._client().files_download(file_id)
            content = response.content
        except TRANSPORT_ERRORS as e:
            logging.error(f"Failed to download file '{file_id}': {e}")
            raise ProviderTransportError(f"Download failed: {e}") from e

        return self.codec.decode_bytes(content)

    def _client(self) -> dropbox.Dropbox:
        token = self.tokens.access_token
        if not token:
            raise NotAuthorizedError("Not signed in. Please authorize a storage provider.")
        return dropbox.Dropbox(oauth2_access_token=token, app_key=self.settings.DROPBOX_APP_KEY)

    def _introspect(self, access_token: str) -> dict:
        try:
            account = dropbox.Dropbox(oauth2_access_token=access_token).users_get_current_account()
        except AuthError as e:
            raise TokenRejected(str(e)) from e
        return {"account_id": account.account_id, "email": account.email}
