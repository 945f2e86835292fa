from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from src.core.portal import (
    PortalError,
    PortalInputError,
    PortalNotFoundError,
    PortalPersistenceError,
    PortalRateLimitedError,
    PortalServiceUnavailableError,
    PortalUnauthorizedError,
    PortalVerificationError,
)

_ERROR_STATUS: tuple[tuple[type[PortalError], int, str, str], ...] = (
    (
        PortalInputError,
        status.HTTP_400_BAD_REQUEST,
        "INVALID_INPUT",
        "Invalid decision",
    ),
    (
        PortalUnauthorizedError,
        status.HTTP_401_UNAUTHORIZED,
        "UNAUTHORIZED",
        "Invalid or expired token",
    ),
    (
        PortalNotFoundError,
        status.HTTP_404_NOT_FOUND,
        "NOT_FOUND",
        "Proposal not found",
    ),
    (
        PortalRateLimitedError,
        status.HTTP_429_TOO_MANY_REQUESTS,
        "TOO_MANY_ATTEMPTS",
        "Too many invalid attempts. Try again later.",
    ),
    (
        PortalVerificationError,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "VERIFICATION_FAILED",
        "Database update verification failed",
    ),
    (
        PortalPersistenceError,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "PERSISTENCE_FAILED",
        "Database update failed",
    ),
    (
        PortalServiceUnavailableError,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "SERVICE_UNAVAILABLE",
        "Proposal store is unavailable",
    ),
)

_DETAIL_MESSAGES: dict[str, str] = {
    "INVALID_REQUEST_BODY": "Invalid request body",
}


def portal_error_response(exc: PortalError) -> JSONResponse:
    for error_type, status_code, error_code, message in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        raise exc

    message = _DETAIL_MESSAGES.get(str(exc), message)
    content: dict[str, Any] = {"error": error_code, "message": message}
    if not isinstance(exc, (PortalUnauthorizedError, PortalRateLimitedError)):
        content["detail"] = str(exc)
    if isinstance(exc, PortalVerificationError):
        content["proposalId"] = exc.proposal_id
        content["expected"] = exc.expected
        content["actual"] = exc.actual
    return JSONResponse(status_code=status_code, content=content)
