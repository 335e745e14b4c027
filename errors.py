"""Domain error kinds raised by handlers and rendered as the error envelope."""
from typing import Any, Optional

from fastapi import status


class ApiError(Exception):
    """Base class; subclasses pin the HTTP status and a default message."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": "error", "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class BadRequest(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class Unauthenticated(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized, no token"


class InvalidCredentials(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid email or password"


class AccountDisabled(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Account is deactivated. Please contact support."


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(ApiError):
    # duplicate email; 400 keeps parity with existing clients
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "User already exists with this email"
