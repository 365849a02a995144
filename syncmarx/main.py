# main.py
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import Settings, get_settings
from .exceptions import StorageProviderError
from .gdrive_auth import credentials_from_token_json, gdrive_authenticate
from .manager import SyncManager, format_rejection
from .storage.dto import Credentials


def setup_logging():
    """Configures logging to file and console explicitly."""
    settings = get_settings()
    log_level_name = settings.LOG_LEVEL.upper()

    # Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_name)

    # Clear any existing handlers to prevent duplicate logs on re-runs or implicit configs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Log to stderr so pulled payloads can be piped from stdout
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    try:
        file_handler = logging.FileHandler(settings.LOG_FILE)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except IOError as e:
        root_logger.error(f"Failed to set up file logging to {settings.LOG_FILE}: {e}")

    # Reducing "noise" from third-party libraries
    logging.getLogger("dropbox").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google_auth_oauthlib").setLevel(logging.WARNING)


def load_credentials(settings: Settings) -> Optional[Credentials]:
    path = settings.CREDENTIALS_PATH
    if not path.is_file():
        return None
    data = json.loads(path.read_text())
    return Credentials(**data["credentials"])


def save_credentials(settings: Settings, provider_type: str, credentials: Optional[Credentials]):
    path = settings.CREDENTIALS_PATH
    if credentials is None:
        if path.is_file():
            path.unlink()
        return
    payload = {
        "provider": provider_type,
        "credentials": credentials.model_dump(by_alias=True),
    }
    path.write_text(json.dumps(payload, indent=2))
    logging.info(f"Credentials saved to {path}")


def initialize_manager(settings: Settings) -> SyncManager:
    """
    Creates the SyncManager and signs in with the stored credentials.
    Raises if no credentials are stored or they are rejected.
    """
    manager = SyncManager(settings)
    manager.init(settings.STORAGE_PROVIDER)

    credentials = load_credentials(settings)
    if credentials is None:
        raise FileNotFoundError(
            f"No stored credentials at {settings.CREDENTIALS_PATH}. Run 'syncmarx auth' first."
        )
    manager.auth(settings.STORAGE_PROVIDER, credentials)
    return manager


def cmd_auth(args, settings: Settings):
    if args.access_token:
        credentials = Credentials(access_token=args.access_token, refresh_token=args.refresh_token)
    elif settings.STORAGE_PROVIDER != "googledrive":
        raise StorageProviderError(
            f"Sign-in for {settings.STORAGE_PROVIDER} needs an existing token. "
            "Pass --access-token (and --refresh-token)."
        )
    elif args.token_json:
        credentials = credentials_from_token_json(Path(args.token_json).read_text())
    else:
        if not settings.GDRIVE_CLIENT_SECRETS_FILE:
            raise ValueError("GDRIVE_CLIENT_SECRETS_FILE must be set to run the OAuth flow.")
        credentials = gdrive_authenticate(settings.GDRIVE_CLIENT_SECRETS_FILE)

    manager = SyncManager(settings)
    manager.auth(settings.STORAGE_PROVIDER, credentials)
    save_credentials(settings, settings.STORAGE_PROVIDER, manager.provider.get_credentials())
    print(f"Authorized with {settings.STORAGE_PROVIDER}.")


def cmd_deauth(args, settings: Settings):
    manager = SyncManager(settings)
    manager.init(settings.STORAGE_PROVIDER)
    credentials = load_credentials(settings)
    if credentials is not None:
        manager.revoke_auth(credentials)
    save_credentials(settings, settings.STORAGE_PROVIDER, None)
    print("Signed out.")


def cmd_profiles(args, settings: Settings):
    manager = initialize_manager(settings)
    try:
        for profile in manager.get_profiles():
            print(f"{profile.id}\t{profile.name}")
    finally:
        save_credentials(settings, settings.STORAGE_PROVIDER, manager.provider.get_credentials())


def cmd_push(args, settings: Settings):
    manager = initialize_manager(settings)
    try:
        contents = json.loads(Path(args.file).read_text())
        if args.compress is not None:
            manager.compression = args.compress
        manager.get_profiles()
        if args.create:
            manager.create_profile(args.profile or settings.PROFILE_NAME or "", contents)
        else:
            if args.profile:
                manager.select_profile(args.profile)
            manager.push(contents)
        print(f"Pushed profile '{manager.profile_name}'.")
    finally:
        save_credentials(settings, settings.STORAGE_PROVIDER, manager.provider.get_credentials())


def cmd_pull(args, settings: Settings):
    manager = initialize_manager(settings)
    try:
        if args.profile:
            manager.select_profile(args.profile)
        contents = manager.pull()
        text = json.dumps(contents, indent=2)
        if args.output:
            Path(args.output).write_text(text)
            logging.info(f"Profile written to {args.output}")
        else:
            print(text)
    finally:
        save_credentials(settings, settings.STORAGE_PROVIDER, manager.provider.get_credentials())


COMMANDS = {
    "auth": (cmd_auth, "Could not authorize with the storage provider"),
    "deauth": (cmd_deauth, "An unknown error occured"),
    "profiles": (cmd_profiles, "Could not retrieve profiles"),
    "push": (cmd_push, "Failed to push bookmark data"),
    "pull": (cmd_pull, "Failed to pull bookmark data"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Synchronize bookmark profiles with Google Drive or Dropbox."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    auth = sub.add_parser("auth", help="Authorize and store credentials.")
    auth.add_argument("--token-json", help="Import an authorized-user token JSON file.")
    auth.add_argument("--access-token", help="Use an existing access token.")
    auth.add_argument("--refresh-token", help="Refresh token to pair with --access-token.")

    sub.add_parser("deauth", help="Sign out and remove stored credentials.")
    sub.add_parser("profiles", help="List remote profiles.")

    push = sub.add_parser("push", help="Upload a JSON bookmark file to a profile.")
    push.add_argument("file")
    push.add_argument("--profile")
    push.add_argument("--create", action="store_true", help="Create the profile.")
    push.add_argument("--compress", dest="compress", action="store_true", default=None)
    push.add_argument("--no-compress", dest="compress", action="store_false")

    pull = sub.add_parser("pull", help="Download a profile as JSON.")
    pull.add_argument("--profile")
    pull.add_argument("--output", "-o")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging()
    settings = get_settings()
    handler, fallback = COMMANDS[args.command]

    try:
        handler(args, settings)
    except Exception as e:
        logging.error(f"Command '{args.command}' failed: {e}", exc_info=True)
        print(format_rejection(e, fallback), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
