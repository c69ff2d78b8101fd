"""Error handling middleware for the lab API.

Route and dependency code raises ``APIError`` subclasses; this middleware
turns them into the JSON body described by ``ErrorResponse``. Chat backend
failures that escape a route are reported as a bad gateway, and anything
else is logged with its stack trace and hidden behind a generic message.
"""

import logging
import time
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse
from src.services.chat_errors import ChatAPIError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Application error carrying its HTTP status and error type."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Machine-readable category for the client.
            details: Optional extra context (e.g. the current phase).
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Request is well formed but not acceptable in the session's state."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="validation_error",
            details=details,
        )


class ServiceUnavailableError(APIError):
    """A component created in the lifespan is not running."""

    def __init__(self, message: str = "Service unavailable") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="service_unavailable",
        )


class RateLimitError(APIError):
    """Client sent too many chat requests in the current window."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 60,
        limit: int | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type="rate_limit_exceeded",
        )
        self.retry_after = retry_after
        self.limit = limit


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Build the JSON response for an error."""
    body = ErrorResponse(
        error=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


def _rate_limit_response(error: RateLimitError, request_id: str | None) -> JSONResponse:
    response = create_error_response(
        error_type=error.error_type,
        message=error.message,
        status_code=error.status_code,
        request_id=request_id,
    )
    response.headers["Retry-After"] = str(error.retry_after)
    if error.limit is not None:
        response.headers["X-RateLimit-Limit"] = str(error.limit)
    response.headers["X-RateLimit-Remaining"] = "0"
    response.headers["X-RateLimit-Reset"] = str(int(time.time()) + error.retry_after)
    return response


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Catch exceptions raised below and format them as ``ErrorResponse``.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: The route's response or the formatted error.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except RateLimitError as e:
        logger.warning("Rate limit exceeded on %s (retry after %ss)", request.url.path, e.retry_after)
        return _rate_limit_response(e, request_id)

    except APIError as e:
        logger.warning("API error on %s: %s - %s", request.url.path, e.error_type, e.message)
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except ChatAPIError as e:
        logger.error("Chat backend failure on %s: %s", request.url.path, e)
        return create_error_response(
            error_type="chat_backend_error",
            message=str(e),
            status_code=status.HTTP_502_BAD_GATEWAY,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning("HTTP exception on %s: %s - %s", request.url.path, e.status_code, e.detail)
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error("Unhandled exception on %s: %s\n%s", request.url.path, e, traceback.format_exc())
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
