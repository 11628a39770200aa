from __future__ import annotations

from fastapi import status


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP response.

    ``message`` is what the client sees in the ``error`` field of the JSON
    body, so it must never contain stack traces or raw store payloads.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized - Please log in"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden - Admin access required"


class InvalidRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Missing required fields"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflicts with the current state"


class IdentityCreationFailed(ServiceError):
    default_message = "Failed to create authentication user"


class ProfileCreationFailed(ServiceError):
    default_message = "Failed to create user profile"


class InternalError(ServiceError):
    default_message = "An unexpected error occurred"
