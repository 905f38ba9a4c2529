from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to transport responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

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
    """Input failed a policy check (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCredentials(ServiceError):
    """Login failed. Unknown user and wrong password are indistinguishable (401)."""
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Invalid username or password", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AuthenticationRequired(ServiceError):
    """No usable credential was presented (401)."""
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication required", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AuthorizationDenied(ServiceError):
    """Caller is authenticated but lacks the required privilege (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate username (409)."""
    status_code = 409
    error_code = "conflict"


class StorageError(ServiceError):
    """Persistence failed. The message stays opaque to callers (500)."""
    status_code = 500
    error_code = "server_error"

    def __init__(self, message: str = "internal server error", **kwargs) -> None:
        super().__init__(message, **kwargs)


class HashingError(ServiceError):
    """Password hashing library fault or a corrupt stored hash (500)."""
    status_code = 500
    error_code = "server_error"

    def __init__(self, message: str = "internal server error", **kwargs) -> None:
        super().__init__(message, **kwargs)


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCredentials",
    "AuthenticationRequired",
    "AuthorizationDenied",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "HashingError",
]
