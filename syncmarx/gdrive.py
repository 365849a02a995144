# gdrive.py
import logging
from enum import Enum
from typing import Iterator, List, Optional

import requests

from .codec import PayloadCodec
from .config import Settings, get_settings
from .exceptions import (
    InvalidRequestError,
    ProfileNotFoundError,
    ProviderTransportError,
)
from .storage.base import StorageProvider
from .storage.dto import (
    FOLDER_MIME_TYPE,
    Credentials,
    DownloadResult,
    ProfileFile,
    RemoteObject,
    UploadRequest,
    strip_extension,
)
from .tokens import TokenLifecycleManager, TokenRejected

PROVIDER_TYPE = "googledrive"

TOKENINFO_URL = "https://www.googleapis.com/oauth2/v3/tokeninfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
FILES_URL = "https://www.googleapis.com/drive/v3/files"
UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

LIST_FIELDS = "nextPageToken, files(id, name, mimeType)"


def _describe(e: Exception) -> str:
    response = getattr(e, "response", None)
    if response is not None:
        return f"HTTP {response.status_code}: {response.text}"
    return str(e)


class DriveFileLister:
    """Raw, paginated access to the Drive `files.list` endpoint."""

    def __init__(self, tokens: TokenLifecycleManager, timeout: Optional[float] = None):
        self.tokens = tokens
        self.timeout = timeout

    def list_objects(self, query: str = "trashed = false", all_drives: bool = False) -> List[RemoteObject]:
        return list(self._iter_objects(query, all_drives))

    def _iter_objects(self, query: str, all_drives: bool) -> Iterator[RemoteObject]:
        params = {"q": query, "fields": LIST_FIELDS}
        if all_drives:
            params["includeItemsFromAllDrives"] = "true"
            params["supportsAllDrives"] = "true"

        while True:
            try:
                response = self.tokens.session.get(
                    FILES_URL,
                    params=params,
                    headers=self.tokens.auth_headers(),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                logging.error(f"Failed to list Google Drive files: {_describe(e)}")
                raise ProviderTransportError(f"Failed to list files: {_describe(e)}") from e

            for item in data.get("files", []):
                yield RemoteObject(**item)

            page_token = data.get("nextPageToken")
            if not page_token:
                return
            logging.info("Found more files, continuing listing...")
            params = {**params, "pageToken": page_token}


class ContainerBootstrap:
    """Finds the application folder, creating it on first use."""

    def __init__(self, lister: DriveFileLister, folder_name: str):
        self.lister = lister
        self.folder_name = folder_name

    def get_or_create_container(self) -> RemoteObject:
        objects = self.lister.list_objects(all_drives=True)
        folder = next(
            (o for o in objects if o.is_folder and o.name == self.folder_name),
            None,
        )
        if folder:
            logging.info(f"App folder found: {folder.id}")
            return folder

        logging.info("App folder not found, creating new one...")
        tokens = self.lister.tokens
        try:
            response = tokens.session.post(
                FILES_URL,
                params={"fields": "id, name, mimeType"},
                json={"name": self.folder_name, "mimeType": FOLDER_MIME_TYPE},
                headers=tokens.auth_headers(),
                timeout=self.lister.timeout,
            )
            response.raise_for_status()
            created = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logging.error(f"Failed to create folder '{self.folder_name}': {_describe(e)}")
            raise ProviderTransportError(
                f"Could not create folder '{self.folder_name}' in Google Drive: {_describe(e)}"
            ) from e

        # Drive omits fields that were not requested; fill in what we sent.
        created.setdefault("name", self.folder_name)
        created.setdefault("mimeType", FOLDER_MIME_TYPE)
        folder = RemoteObject(**created)
        logging.info(f"App folder created: {folder.id}")
        return folder


class RemoteCatalog:
    """Lists the profile files inside the application folder."""

    def __init__(self, tokens: TokenLifecycleManager, lister: DriveFileLister, bootstrap: ContainerBootstrap):
        self.tokens = tokens
        self.lister = lister
        self.bootstrap = bootstrap

    def list_profile_files(self) -> List[ProfileFile]:
        self.tokens.verify()
        container = self.bootstrap.get_or_create_container()
        return self.list_in(container)

    def list_in(self, container: RemoteObject) -> List[ProfileFile]:
        objects = self.lister.list_objects(
            query=f"'{container.id}' in parents and trashed = false"
        )
        files = [
            ProfileFile(id=o.id, name=strip_extension(o.name))
            for o in objects
            if not o.is_folder
        ]
        logging.info(f"Found {len(files)} profile files.")
        return files


class UploadPhase(str, Enum):
    IDLE = "idle"
    METADATA_SENT = "metadata_sent"
    CONTENT_TRANSFERRING = "content_transferring"
    COMPLETE = "complete"
    FAILED = "failed"


class ResumableUpload:
    """
    One Drive resumable upload session.

    Phase 1 (`initiate`) sends the file metadata and the size/type of the
    coming body, and receives a session URL in the `Location` header.
    Phase 2 (`transfer`) PUTs the body to that URL. When phase 2 fails the
    session URL is kept, so `transfer` may be called again on its own.
    """

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        body: bytes,
        metadata: dict,
        file_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.tokens = tokens
        self.body = body
        self.metadata = metadata
        self.file_id = file_id
        self.timeout = timeout
        self.state = UploadPhase.IDLE
        self.failed_phase: Optional[str] = None
        self.location: Optional[str] = None
        self.result: Optional[dict] = None

    @property
    def is_update(self) -> bool:
        return self.file_id is not None

    def run(self) -> dict:
        self.initiate()
        return self.transfer()

    def initiate(self) -> str:
        url = f"{UPLOAD_URL}/{self.file_id}" if self.is_update else UPLOAD_URL
        method = "PATCH" if self.is_update else "POST"
        headers = {
            **self.tokens.auth_headers(),
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Length": str(len(self.body)),
            "X-Upload-Content-Type": "text/plain",
        }

        logging.info(f"Initiating resumable upload ({method}) for '{self.metadata.get('name')}'...")
        try:
            response = self.tokens.session.request(
                method,
                url,
                params={"uploadType": "resumable"},
                json=self.metadata,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            self._fail("metadata")
            raise ProviderTransportError(
                f"Upload session could not be started: {_describe(e)}", phase="metadata"
            ) from e

        location = response.headers.get("Location")
        if not location:
            self._fail("metadata")
            raise ProviderTransportError(
                "Upload session response did not include a session location.",
                phase="metadata",
            )

        self.location = location
        self.state = UploadPhase.METADATA_SENT
        return location

    def transfer(self) -> dict:
        if not self.location:
            raise InvalidRequestError("Upload session has not been initiated.")

        self.state = UploadPhase.CONTENT_TRANSFERRING
        self.failed_phase = None
        logging.info(f"Uploading {len(self.body)} bytes to the upload session...")
        try:
            response = self.tokens.session.put(
                self.location,
                data=self.body,
                headers={**self.tokens.auth_headers(), "Content-Type": "text/plain"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            self.result = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self._fail("content")
            raise ProviderTransportError(
                f"Upload content transfer failed: {_describe(e)}", phase="content"
            ) from e

        self.state = UploadPhase.COMPLETE
        logging.info(f"Upload complete: {self.result}")
        return self.result

    def _fail(self, phase: str):
        self.state = UploadPhase.FAILED
        self.failed_phase = phase
        logging.error(f"Upload failed during the {phase} phase.")


class ResumableTransfer:
    """Uploads and downloads profile files."""

    def __init__(
        self,
        tokens: TokenLifecycleManager,
        bootstrap: ContainerBootstrap,
        catalog: RemoteCatalog,
        codec: PayloadCodec,
        timeout: Optional[float] = None,
    ):
        self.tokens = tokens
        self.bootstrap = bootstrap
        self.catalog = catalog
        self.codec = codec
        self.timeout = timeout
        self.last_upload: Optional[ResumableUpload] = None

    def upload(self, request: UploadRequest):
        if not request.id and not request.file_name:
            raise InvalidRequestError("Error, profile id and file name were not specified")

        self.tokens.verify()
        container = self.bootstrap.get_or_create_container()
        files = self.catalog.list_in(container)

        existing = None
        if request.id:
            existing = next((f for f in files if f.id == request.id), None)
        if existing is None and request.file_name:
            existing = next((f for f in files if f.name == request.file_name), None)
        if existing is None and not request.file_name:
            raise ProfileNotFoundError(f"Profile file with ID '{request.id}' not found.")

        text = self.codec.encode(request.contents, request.compression)
        metadata = {
            "name": existing.name if existing else request.file_name,
            "mimeType": "text/plain",
        }
        if not existing:
            metadata["parents"] = [container.id]

        self.last_upload = ResumableUpload(
            self.tokens,
            text.encode("utf-8"),
            metadata,
            file_id=existing.id if existing else None,
            timeout=self.timeout,
        )
        self.last_upload.run()

    def download(self, file_id: str) -> DownloadResult:
        self.tokens.verify()
        container = self.bootstrap.get_or_create_container()
        files = self.catalog.list_in(container)
        existing = next((f for f in files if f.id == file_id), None)
        if existing is None:
            raise ProfileNotFoundError(f"Profile file with ID '{file_id}' not found.")

        logging.info(f"Downloading profile '{existing.name}' ({existing.id})...")
        try:
            response = self.tokens.session.get(
                f"{FILES_URL}/{existing.id}",
                params={"alt": "media"},
                headers=self.tokens.auth_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            if e.response is not None and e.response.status_code == 404:
                raise ProfileNotFoundError(
                    f"Profile file with ID '{file_id}' not found in Google Drive."
                ) from e
            logging.error(f"Failed to download file with ID '{file_id}': {_describe(e)}")
            raise ProviderTransportError(f"Download failed: {_describe(e)}") from e

        logging.info("File downloaded!")
        return self.codec.decode_bytes(response.content)


class GoogleDriveProvider(StorageProvider):
    """
    Google Drive implementation of the StorageProvider interface,
    talking to the Drive v3 REST API directly.
    """

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        timeout = self.settings.HTTP_TIMEOUT
        self.tokens = TokenLifecycleManager(
            self._introspect,
            self.settings.refresh_token_url(PROVIDER_TYPE),
            session=session,
            timeout=timeout,
        )
        self.lister = DriveFileLister(self.tokens, timeout=timeout)
        self.bootstrap = ContainerBootstrap(self.lister, self.settings.APP_FOLDER_NAME)
        self.catalog = RemoteCatalog(self.tokens, self.lister, self.bootstrap)
        self.transfer = ResumableTransfer(
            self.tokens,
            self.bootstrap,
            self.catalog,
            PayloadCodec(self.settings.PAYLOAD_ENCRYPTION_KEY),
            timeout=timeout,
        )

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
        logging.info("Google Drive authorization successful.")

    def deauthorize(self):
        # Revoking a Google token revokes the grant for every installation
        # of the app, so it only happens when explicitly enabled.
        if self.settings.GDRIVE_REVOKE_ON_DEAUTHORIZE and self.tokens.access_token:
            try:
                response = self.tokens.session.post(
                    REVOKE_URL,
                    data={"token": self.tokens.access_token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.settings.HTTP_TIMEOUT,
                )
                response.raise_for_status()
                logging.info("Google Drive token revoked.")
            except requests.exceptions.RequestException as e:
                logging.warning(f"Failed to revoke Google Drive token: {_describe(e)}")
        else:
            logging.info("Leaving Google Drive access token to expire on its own.")

        self.tokens.clear()

    def upload(self, request: UploadRequest):
        self.transfer.upload(request)

    @property
    def last_upload(self) -> Optional[ResumableUpload]:
        return self.transfer.last_upload

    def download(self, file_id: str) -> DownloadResult:
        return self.transfer.download(file_id)

    def list(self) -> List[ProfileFile]:
        return self.catalog.list_profile_files()

    def _introspect(self, access_token: str) -> dict:
        response = self.tokens.session.get(
            TOKENINFO_URL,
            params={"access_token": access_token},
            timeout=self.settings.HTTP_TIMEOUT,
        )
        if response.status_code in (400, 401):
            raise TokenRejected(response.text)
        response.raise_for_status()
        return response.json()
