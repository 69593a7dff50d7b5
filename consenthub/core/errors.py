"""Service-level exception taxonomy.

Services raise these; the HTTP layer turns them into the standard failure
envelope via the handler registered in consenthub.main.create_app(). Each
class carries the HTTP status and the machine-readable error code used in
that envelope, so routes never need their own try/except translation.
"""

from __future__ import annotations

from fastapi import status


class ConsentHubError(Exception):
    """Base class for all expected, client-visible failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "bad_request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ConsentHubError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"


class InvalidStateError(ConsentHubError):
    """The resource is not in a state that permits the requested change."""

    status_code = status.HTTP_409_CONFLICT
    error_code = "invalid_state"


class ConcurrentModificationError(InvalidStateError):
    """Another writer changed the resource since it was read."""

    error_code = "concurrent_modification"


class ValidationError(ConsentHubError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "validation_error"


class UpstreamFailure(ConsentHubError):
    """A downstream dependency (database, external system) failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "upstream_failure"


class AuthFailure(ConsentHubError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "auth_failure"


class ForbiddenError(AuthFailure):
    """Authenticated, but not allowed to act on this resource."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "forbidden"
