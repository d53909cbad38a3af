"""Error taxonomy shared by the token manager, Graph client and notifier."""

from __future__ import annotations

UNAUTHORIZED = 401


class GraphChimeError(Exception):
    """Base class for all graph-chime errors."""


class AuthError(GraphChimeError):
    """The refresh-token exchange failed or returned no usable access token."""


class UpstreamError(GraphChimeError):
    """A Microsoft Graph call failed.

    ``status_code`` is ``None`` when the request never produced a response
    (connect error, timeout) or the body could not be decoded.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == UNAUTHORIZED


class SoundFileNotFound(GraphChimeError):
    """The notification sound file does not exist."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path
