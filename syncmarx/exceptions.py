# exceptions.py


class StorageProviderError(Exception):
    """An error whose message is safe to show to the user as-is."""
    pass


class NotAuthorizedError(StorageProviderError):
    """The provider holds no credentials."""
    pass


class InvalidProfileNameError(StorageProviderError):
    pass


class AuthError(Exception):
    """Base class for token verification failures."""
    pass


class AuthTransportError(AuthError):
    """Token introspection failed for a reason other than an expired token."""
    pass


class RefreshFailedError(AuthError, StorageProviderError):
    """The access token expired and could not be exchanged for a new one."""
    pass


class ProviderError(Exception):
    """Base class for storage operation failures."""
    pass


class ProviderTransportError(ProviderError):
    """
    An HTTP or SDK call to the backend failed.

    `phase` names the upload phase that failed ("metadata" or "content"),
    or is None outside of an upload.
    """

    def __init__(self, message: str, phase: str | None = None):
        super().__init__(message)
        self.phase = phase


class ProfileNotFoundError(ProviderError):
    pass


class InvalidRequestError(ProviderError):
    pass


class PayloadDecodeError(Exception):
    """Remote content is neither plain JSON nor a readable encrypted payload."""
    pass
