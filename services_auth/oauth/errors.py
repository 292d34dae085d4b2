"""Error kinds raised by the services authentication flow.

Every error is terminal for the call that raised it; nothing here is
retried internally. Callers surface the error to the user and, for
WrongStateError / NotInitializedError, restart the flow.
"""


class ServicesAuthError(Exception):
    """Base error for the services authentication flow."""

    pass


class InvalidURLError(ServicesAuthError):
    """The authorization server URL is not a usable http(s) URL."""

    pass


class NotInitializedError(ServicesAuthError):
    """No authorization session has been started."""

    def __init__(self, message: str = "Authorization flow has not been initialized"):
        super().__init__(message)


class WrongStateError(ServicesAuthError):
    """The callback state does not match the live session."""

    def __init__(self, message: str = "State mismatch in callback - possible CSRF attack"):
        super().__init__(message)


class ServerReportedError(ServicesAuthError):
    """The authorization server reported an error.

    Attributes:
        error: OAuth error code (e.g. "access_denied")
        description: Optional human-readable description
    """

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description or None
        message = f"Authorization server returned an error: {error}"
        if self.description:
            message += f" ({self.description})"
        super().__init__(message)


class TransportWriteError(ServicesAuthError):
    """The token exchange request could not be sent."""

    pass


class TransportReadError(ServicesAuthError):
    """The token exchange response body could not be read."""

    pass


class InvalidServerResponseError(ServicesAuthError):
    """The token endpoint answered with an unusable response.

    Attributes:
        status_code: HTTP status when the failure is status-based, else None
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class DeserializationError(ServicesAuthError):
    """The token endpoint response body is not the expected JSON shape."""

    pass


class CollaboratorPersistError(ServicesAuthError):
    """The metadata store failed to persist a service token."""

    pass
