"""Translation of service errors into HTTP responses."""
from fastapi import HTTPException, status

from ..services.errors import (
    Conflict, DependencyFailure, IncompleteData, InvalidState, NotFound, ServiceError, Unauthorized,
)

STATUS_BY_ERROR = (
    (Unauthorized, status.HTTP_403_FORBIDDEN),
    (InvalidState, status.HTTP_409_CONFLICT),
    (IncompleteData, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (DependencyFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: ServiceError) -> HTTPException:
    """HTTPException with detail {"code", "message", "fields"?}."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_class, code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            status_code = code
            break

    detail = {"code": exc.code, "message": exc.message}
    if isinstance(exc, IncompleteData) and exc.field_errors:
        detail["fields"] = exc.field_errors
    return HTTPException(status_code=status_code, detail=detail)
