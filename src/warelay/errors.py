"""Exception hierarchy shared by every relay component."""


class RelayError(Exception):
    """Base class for all warelay failures."""


class AuthError(RelayError):
    """The token endpoint did not issue an access token."""


class InitError(RelayError):
    """A session transport could not be started."""


class SendError(RelayError):
    """The session transport rejected an outbound send."""


class MediaError(RelayError):
    """Media could not be downloaded, fetched or hosted."""


class ValidationError(RelayError):
    """A reply request is malformed or missing required fields."""


class DispatchError(RelayError):
    """Processing a valid reply request failed part-way."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail
