# tests/test_main.py
import json

import pytest
from unittest.mock import patch

from syncmarx.exceptions import AuthTransportError, RefreshFailedError
from syncmarx.main import initialize_manager, load_credentials, main, save_credentials
from syncmarx.storage.dto import Credentials, ProfileFile

STORED = Credentials(access_token="stored_token", refresh_token="stored_refresh")


@pytest.fixture
def cli(settings):
    """Runs `main` against test settings with a mocked SyncManager."""
    with patch("syncmarx.main.get_settings", return_value=settings), \
            patch("syncmarx.main.setup_logging"), \
            patch("syncmarx.main.SyncManager") as MockManager:
        manager = MockManager.return_value
        manager.provider.get_credentials.return_value = Credentials(
            access_token="fresh_token", refresh_token="stored_refresh"
        )
        yield manager


def test_credentials_file_round_trip(settings):
    save_credentials(settings, "googledrive", STORED)

    data = json.loads(settings.CREDENTIALS_PATH.read_text())
    assert data == {
        "provider": "googledrive",
        "credentials": {"accessToken": "stored_token", "refreshToken": "stored_refresh"},
    }
    assert load_credentials(settings) == STORED


def test_save_none_removes_credentials_file(settings):
    save_credentials(settings, "googledrive", STORED)

    save_credentials(settings, "googledrive", None)

    assert not settings.CREDENTIALS_PATH.exists()
    assert load_credentials(settings) is None


def test_initialize_manager_without_credentials(settings):
    with pytest.raises(FileNotFoundError, match="syncmarx auth"):
        initialize_manager(settings)


def test_profiles_command(cli, settings, capsys):
    save_credentials(settings, "googledrive", STORED)
    cli.get_profiles.return_value = [ProfileFile(id="1", name="home")]

    assert main(["profiles"]) == 0

    assert "1\thome" in capsys.readouterr().out
    cli.auth.assert_called_once_with("googledrive", STORED)
    # A silently refreshed token is written back.
    assert load_credentials(settings).access_token == "fresh_token"


def test_push_command(cli, settings, tmp_path):
    save_credentials(settings, "googledrive", STORED)
    bookmarks = tmp_path / "bookmarks.json"
    bookmarks.write_text(json.dumps({"title": "root"}))

    assert main(["push", str(bookmarks), "--profile", "home", "--compress"]) == 0

    cli.select_profile.assert_called_once_with("home")
    cli.push.assert_called_once_with({"title": "root"})
    assert cli.compression is True


def test_push_create_command(cli, settings, tmp_path):
    save_credentials(settings, "googledrive", STORED)
    bookmarks = tmp_path / "bookmarks.json"
    bookmarks.write_text("[]")

    assert main(["push", str(bookmarks), "--profile", "laptop", "--create"]) == 0

    cli.create_profile.assert_called_once_with("laptop", [])
    cli.push.assert_not_called()


def test_pull_command_to_file(cli, settings, tmp_path):
    save_credentials(settings, "googledrive", STORED)
    cli.pull.return_value = {"title": "root"}
    output = tmp_path / "out.json"

    assert main(["pull", "--profile", "home", "-o", str(output)]) == 0

    assert json.loads(output.read_text()) == {"title": "root"}


def test_auth_command_with_tokens(cli, settings):
    assert main(["auth", "--access-token", "a", "--refresh-token", "r"]) == 0

    cli.auth.assert_called_once_with("googledrive", Credentials(access_token="a", refresh_token="r"))
    assert load_credentials(settings).access_token == "fresh_token"


def test_auth_command_dropbox_requires_token(cli, settings, capsys):
    settings.STORAGE_PROVIDER = "dropbox"

    with patch("syncmarx.main.gdrive_authenticate") as mock_flow:
        assert main(["auth"]) == 1

    mock_flow.assert_not_called()
    cli.auth.assert_not_called()
    assert "--access-token" in capsys.readouterr().err


def test_auth_command_dropbox_with_tokens(cli, settings):
    settings.STORAGE_PROVIDER = "dropbox"

    assert main(["auth", "--access-token", "a", "--refresh-token", "r"]) == 0

    cli.auth.assert_called_once_with("dropbox", Credentials(access_token="a", refresh_token="r"))


def test_auth_command_runs_google_flow(cli, settings):
    settings.GDRIVE_CLIENT_SECRETS_FILE = "client_secrets.json"
    google_creds = Credentials(access_token="google", refresh_token="g")

    with patch("syncmarx.main.gdrive_authenticate", return_value=google_creds) as mock_flow:
        assert main(["auth"]) == 0

    mock_flow.assert_called_once_with("client_secrets.json")
    cli.auth.assert_called_once_with("googledrive", google_creds)


def test_deauth_command(cli, settings):
    save_credentials(settings, "googledrive", STORED)

    assert main(["deauth"]) == 0

    cli.revoke_auth.assert_called_once_with(STORED)
    assert not settings.CREDENTIALS_PATH.exists()


def test_failure_shows_generic_message(cli, settings, capsys):
    save_credentials(settings, "googledrive", STORED)
    cli.get_profiles.side_effect = AuthTransportError("HTTP 503: backend unavailable")

    assert main(["profiles"]) == 1

    err = capsys.readouterr().err
    assert "Could not retrieve profiles" in err


def test_failure_shows_user_facing_message(cli, settings, capsys):
    save_credentials(settings, "googledrive", STORED)
    cli.pull.side_effect = RefreshFailedError("Your session has expired. Please sign in again.")

    assert main(["pull"]) == 1

    assert "Please sign in again." in capsys.readouterr().err
