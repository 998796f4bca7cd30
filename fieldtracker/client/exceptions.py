"""Errors raised by the offline client."""
from typing import Optional


class SyncError(Exception):
    """Base class for client sync failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(SyncError):
    """Network failure, timeout or server 5xx. Worth retrying."""


class RejectedError(SyncError):
    """The server refused the request as invalid. Retrying will not help."""


class AuthenticationError(SyncError):
    """Token or license rejected. Needs the user, never retried silently."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[list[str]] = None):
        super().__init__(message, status_code)
        self.errors = errors or []


class TrackingError(Exception):
    """A worker action that is not allowed in the current local state."""
