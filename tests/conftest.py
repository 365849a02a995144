# tests/conftest.py
import pytest
import requests
from unittest.mock import MagicMock

from syncmarx.config import Settings, get_settings
from syncmarx.gdrive import FILES_URL, REVOKE_URL, TOKENINFO_URL
from syncmarx.storage.dto import FOLDER_MIME_TYPE


def _make_response(status=200, json_data=None, headers=None, content=b""):
    """Builds a mock `requests.Response`."""
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.headers = headers or {}
    response.content = content
    response.text = content.decode("utf-8", errors="replace") if content else ""
    if json_data is None:
        response.json.side_effect = ValueError("No JSON body")
    else:
        response.json.return_value = json_data
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status} Error", response=response
        )
    return response


class FakeDrive:
    """
    Routes the HTTP calls a GoogleDriveProvider makes to canned responses.
    `root_objects` is what the account-wide listing sees, `folder_files`
    what a listing scoped to the app folder sees.
    """

    def __init__(self):
        self.tokeninfo = _make_response(
            json_data={"scope": "drive.file", "expires_in": "3599", "email": "user@example.com"}
        )
        self.refresh = _make_response(json_data={"access_token": "new_token", "expires_in": 3599})
        self.revoke = _make_response(json_data={})
        self.root_objects = []
        self.folder_files = []
        self.downloads = {}
        self.created_folder = {"id": "folder_new", "name": "syncmarx", "mimeType": FOLDER_MIME_TYPE}
        self.session_response = _make_response(
            headers={"Location": "https://upload.example.com/session/1"}
        )
        self.transfer_response = _make_response(json_data={"id": "file_1", "name": "profile"})

        self.session = MagicMock(spec=requests.Session)
        self.session.get.side_effect = self._get
        self.session.post.side_effect = self._post
        self.session.request.side_effect = lambda method, url, **kwargs: self.session_response
        self.session.put.side_effect = lambda url, **kwargs: self.transfer_response

    def _get(self, url, params=None, **kwargs):
        if url == TOKENINFO_URL:
            return self.tokeninfo
        if url == FILES_URL:
            if "in parents" in params["q"]:
                return _make_response(json_data={"files": list(self.folder_files)})
            return _make_response(json_data={"files": list(self.root_objects)})
        file_id = url.rsplit("/", 1)[1]
        if file_id in self.downloads:
            return _make_response(content=self.downloads[file_id])
        return _make_response(status=404)

    def _post(self, url, **kwargs):
        if url == FILES_URL:
            self.root_objects.append(dict(self.created_folder))
            return _make_response(json_data={"id": self.created_folder["id"]})
        if url == REVOKE_URL:
            return self.revoke
        return self.refresh

    def folder_creations(self):
        return [c for c in self.session.post.call_args_list if c.args[0] == FILES_URL]


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def settings(tmp_path):
    """
    Real settings with test values, so no environment or .env file is needed.
    """
    return Settings(
        STORAGE_PROVIDER="googledrive",
        PRODUCTION=False,
        APP_FOLDER_NAME="syncmarx",
        PAYLOAD_ENCRYPTION_KEY="test-passphrase",
        DROPBOX_APP_KEY="test_app_key",
        BASE_DIR=tmp_path,
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """get_settings() may have cached a real instance during collection."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
