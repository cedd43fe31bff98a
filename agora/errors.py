"""Error taxonomy shared by the trust engine, the moderation service and the API.

Every error carries a user-safe ``message`` and the HTTP ``status_code`` the web
layer answers with.  Store failures surface as :class:`DependencyError` with an
operation-specific message; the underlying exception is chained, never echoed.
"""

from __future__ import annotations


class AgoraError(Exception):
    """Base error; should be caught at the boundary and rendered."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AgoraError):
    """Raised when required input is missing or malformed."""

    status_code = 400


class ConflictError(AgoraError):
    """Raised when an operation conflicts with the current state."""

    status_code = 400


class DuplicateError(ConflictError):
    """Raised when creating something whose unique key already exists."""

    status_code = 409


class AuthenticationError(AgoraError):
    """Raised for bad credentials, suspicious or blocked contexts."""

    status_code = 401


class AuthorizationError(AgoraError):
    """Raised when the actor lacks the relationship an operation requires."""

    status_code = 403


class NotFoundError(AgoraError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class DependencyError(AgoraError):
    """Raised when the document store fails for reasons outside input validity."""

    status_code = 500
