# tokens.py
import logging
import threading
from typing import Callable, Optional

import requests

from .exceptions import (
    AuthError,
    AuthTransportError,
    NotAuthorizedError,
    RefreshFailedError,
)
from .storage.dto import Credentials, TokenInfo


class TokenRejected(Exception):
    """
    Raised by an introspection callable when the backend reports the
    access token as invalid or expired.
    """
    pass


class TokenLifecycleManager:
    """
    Owns a provider's access/refresh token pair.

    `verify()` runs before every privileged call: the backend-specific
    `introspect` callable checks the access token, and a rejected token is
    silently exchanged for a new one through the auth server's refresh
    endpoint. The stored access token is replaced in place, under a lock.
    """

    def __init__(
        self,
        introspect: Callable[[str], dict],
        refresh_url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self._introspect = introspect
        self.refresh_url = refresh_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._credentials: Optional[Credentials] = None
        self._lock = threading.Lock()

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @property
    def access_token(self) -> Optional[str]:
        return self._credentials.access_token if self._credentials else None

    def set_credentials(self, credentials: Credentials):
        with self._lock:
            self._credentials = credentials.model_copy()

    def clear(self):
        with self._lock:
            self._credentials = None

    def auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def verify(self) -> TokenInfo:
        """
        Verifies the access token, refreshing it once if the backend rejects it.

        Raises:
            NotAuthorizedError: If no credentials are stored.
            RefreshFailedError: If the token is rejected and cannot be refreshed.
            AuthTransportError: For any other failure while verifying.
        """
        token = self.access_token
        if not token:
            if self._credentials is not None and self._credentials.refresh_token:
                logging.info("No access token stored. Fetching one with the refresh token...")
                return self._refresh(token or "")
            raise NotAuthorizedError("Not signed in. Please authorize a storage provider.")

        logging.info("Verifying access token...")
        try:
            data = self._introspect(token)
        except TokenRejected:
            logging.info("Access token expired. Attempting to fetch new token...")
            return self._refresh(token)
        except AuthError:
            raise
        except Exception as e:
            logging.error(f"Problem checking token: {e}")
            raise AuthTransportError(f"Token verification failed: {e}") from e

        if not data:
            raise AuthTransportError("No response from provider while verifying token.")

        logging.debug(f"Token info: {data}")
        return TokenInfo(**data)

    def _refresh(self, rejected_token: str) -> TokenInfo:
        with self._lock:
            if self._credentials is None:
                raise NotAuthorizedError("Not signed in. Please authorize a storage provider.")

            # Another caller refreshed while we were waiting for the lock.
            if self._credentials.access_token != rejected_token:
                return TokenInfo(refreshed=True)

            refresh_token = self._credentials.refresh_token
            if not refresh_token:
                raise RefreshFailedError(
                    "Your session has expired. Please sign in again."
                )

            try:
                response = self.session.post(
                    self.refresh_url,
                    data={"refresh_token": refresh_token},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                logging.error(f"Failed to refresh access token: {e}")
                raise RefreshFailedError(
                    "Your session has expired and could not be renewed. Please sign in again."
                ) from e

            new_token = data.get("access_token") if isinstance(data, dict) else None
            if not new_token:
                logging.error(f"Refresh response did not contain an access token: {data}")
                raise RefreshFailedError(
                    "Your session has expired and could not be renewed. Please sign in again."
                )

            self._credentials.access_token = new_token
            logging.info("Obtained new token!")

        info = {k: v for k, v in data.items() if k not in ("access_token", "refresh_token")}
        return TokenInfo(**info, refreshed=True)
