from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes the HTTP ``status_code`` and a stable ``error_code``.
    The ``message`` is what clients see in the response envelope.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    # When set, the HTTP layer also expires the refresh_token cookie
    clears_refresh_cookie: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class BadRequestError(ValidationError):
    """Request is malformed, e.g. an empty ``params`` object."""
    pass


class ConflictError(ServiceError):
    """Duplicate user on registration.

    Existing clients expect 400 for this, not 409.
    """
    status_code = 400
    error_code = "conflict"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentialsError(AuthenticationError):
    pass


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class RefreshExpiredError(ForbiddenError):
    """Refresh token expired; the stored session has been dropped."""
    clears_refresh_cookie = True


class InvalidRefreshTokenError(ForbiddenError):
    pass


class NoSessionStoredError(ForbiddenError):
    pass


class TokenMismatchError(ForbiddenError):
    """Presented refresh token is not the one currently stored for the user."""


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class UserNotFoundError(NotFoundError):
    pass


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class SigningError(ServerError):
    pass


class HashingFailure(ServerError):
    pass


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "ConflictError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "ForbiddenError",
    "RefreshExpiredError",
    "InvalidRefreshTokenError",
    "NoSessionStoredError",
    "TokenMismatchError",
    "NotFoundError",
    "UserNotFoundError",
    "ServerError",
    "SigningError",
    "HashingFailure",
]
