# gdrive_auth.py
import json
import logging
import os

from google_auth_oauthlib.flow import InstalledAppFlow
from google.oauth2.credentials import Credentials as GoogleCredentials

from .storage.dto import Credentials

# Only files created by the app are visible with this scope.
SCOPES = ["https://www.googleapis.com/auth/drive.file"]


def credentials_from_token_json(token_json: str) -> Credentials:
    """
    Converts an authorized-user token JSON (as written by google-auth)
    into the token pair used by the providers.
    """
    creds = GoogleCredentials.from_authorized_user_info(json.loads(token_json), SCOPES)
    return Credentials(access_token=creds.token or "", refresh_token=creds.refresh_token)


def gdrive_authenticate(client_secrets_file: str, port: int = 0) -> Credentials:
    """
    Handles the OAuth 2.0 flow for Google Drive API.
    Opens a browser for consent and returns the resulting token pair.
    """
    if not os.path.exists(client_secrets_file):
        raise FileNotFoundError(
            f"Client secrets file not found: {client_secrets_file}"
        )

    flow = InstalledAppFlow.from_client_secrets_file(client_secrets_file, SCOPES)
    creds = flow.run_local_server(port=port)
    logging.info("Google Drive authorization flow completed.")

    if not creds.refresh_token:
        logging.warning(
            "No refresh token was issued; the access token cannot be renewed once it expires."
        )
    return Credentials(access_token=creds.token, refresh_token=creds.refresh_token)
