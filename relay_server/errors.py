# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""Exception hierarchy.

Nothing here is fatal to the process: every exception is caught at the
boundary that owns it (frame decoding, backend calls, management routes)
and turned into a False/zero result or a structured error payload.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class MessageDecodeError(RelayError, ValueError):
    """An inbound frame or management request body could not be decoded."""

    def __init__(self, message: str, code: str = "INVALID_MESSAGE"):
        super().__init__(message)
        self.code = code


# --------------------------------------------------------------------- #
# Backend
# --------------------------------------------------------------------- #


class BackendError(RelayError):
    """Base class for failures talking to the backend application."""


class BackendUnavailableError(BackendError):
    """Transport failure, timeout, or an OPEN circuit breaker."""


class BackendResponseError(BackendError):
    """Non-2xx status or a body that is not a JSON object."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationRejectedError(BackendError):
    """The backend answered, but declared the auth token invalid."""

    def __init__(self, message: str, auth_token: str | None = None, uid: str | None = None):
        super().__init__(message)
        self.auth_token = auth_token
        self.uid = uid


class InvalidServiceKeyError(BackendError):
    """A service key did not match the configured secret."""
