"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from evalshop.schemas.common import ErrorResponse
from evalshop.services.exceptions import (
    CouponValidationError,
    InvalidSignatureError,
    MalformedNotificationError,
    PricingError,
    PurchaseNotEditableError,
    PurchaseNotFoundError,
    PurchaseValidationError,
    UnknownGatewayError,
    UnresolvableProgramError,
)

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

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
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class BadRequestError(APIError):
    """Malformed request error."""

    def __init__(self, message: str = "Bad request", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="bad_request",
            details=details,
        )


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ValidationError(APIError):
    """Request validation error."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="validation_error",
            details=details,
        )


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
        )


class ConflictError(APIError):
    """Request conflicts with the current state of a resource."""

    def __init__(self, message: str = "Conflict", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type="conflict",
            details=details,
        )


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


def translate_domain_error(exc: Exception) -> APIError | None:
    """Map a service-layer exception onto the API error it surfaces as.

    Args:
        exc: Exception raised below the route layer.

    Returns:
        APIError | None: The API error, or None for unexpected exceptions.
    """
    if isinstance(exc, CouponValidationError):
        return ValidationError(exc.message, details=[{"loc": ["coupon_code"], "msg": exc.message, "type": exc.code}])
    if isinstance(exc, PurchaseValidationError):
        loc = [exc.field] if exc.field else None
        return ValidationError(str(exc), details=[{"loc": loc, "msg": str(exc), "type": "purchase_validation"}])
    if isinstance(exc, UnresolvableProgramError):
        return ValidationError(str(exc), details=[{"msg": str(exc), "type": "unresolvable_program"}])
    if isinstance(exc, PricingError):
        return ValidationError(str(exc), details=[{"msg": str(exc), "type": "pricing_error"}])
    if isinstance(exc, (PurchaseNotFoundError, UnknownGatewayError)):
        return NotFoundError(str(exc))
    if isinstance(exc, PurchaseNotEditableError):
        return ConflictError(str(exc))
    if isinstance(exc, MalformedNotificationError):
        return BadRequestError(str(exc))
    if isinstance(exc, InvalidSignatureError):
        return AuthenticationError(str(exc))
    return None


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Domain exceptions from the service layer are translated to API errors;
    anything else becomes a generic 500 with the stack trace logged.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        api_error = e if isinstance(e, APIError) else translate_domain_error(e)
        if api_error is not None:
            logger.warning(
                "API error: %s - %s",
                api_error.error_type,
                api_error.message,
                extra={"request_id": request_id, "status_code": api_error.status_code, "path": request.url.path},
            )
            return create_error_response(
                error_type=api_error.error_type,
                message=api_error.message,
                status_code=api_error.status_code,
                details=api_error.details,
                request_id=request_id,
            )

        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
