"""
Error taxonomy

Shared by the HTTP API and every client adapter so callers never branch on
which backend produced a failure. Each error knows the HTTP status it is
reported with.
"""

from typing import Dict, Type


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(ServiceError):
    status_code = 400
    default_message = "Invalid input"


class InvalidCredentials(ServiceError):
    status_code = 400
    default_message = "Invalid email or password"


class Unauthorized(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidToken(Unauthorized):
    default_message = "Invalid token"


class Forbidden(ServiceError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class Conflict(ServiceError):
    status_code = 409
    default_message = "Conflict"


class NotSupported(ServiceError):
    status_code = 501
    default_message = "Not supported"


class BackendUnavailable(ServiceError):
    status_code = 503
    default_message = "Backend unavailable"


_BY_STATUS: Dict[int, Type[ServiceError]] = {
    400: InvalidInput,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    409: Conflict,
    422: InvalidInput,
    501: NotSupported,
    503: BackendUnavailable,
}


def error_for_status(status_code: int, message: str = None) -> ServiceError:
    """Rebuild the error an API response describes."""
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        cls = BackendUnavailable if status_code >= 500 else ServiceError
    return cls(message)
