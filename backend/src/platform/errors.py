"""
Consistent error handling for the credential service.

All API errors MUST use these standard error classes and shapes.
Stack traces are NEVER returned to clients, and neither are token values:
credential errors are translated to AppError with a fixed code per type.

Standard HTTP status codes:
- 400: Bad Request (unsupported provider, bad state, denied or failed authorization)
- 404: Not Found (no stored credential)
- 409: Conflict (re-authorization required)
- 500: Internal Server Error (encryption misconfiguration or corrupt ciphertext)
- 502: Bad Gateway (provider rejected a refresh or returned garbage)
- 503: Service Unavailable (provider timed out; retryable)
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.credentials.errors import (
    AuthorizationDeniedError,
    CipherError,
    CodeExchangeError,
    CredentialError,
    CredentialNotFoundError,
    InvalidOrExpiredState,
    ProviderResponseError,
    ProviderTimeoutError,
    RefreshFailedError,
    RefreshUnavailableError,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# Credential error type -> (HTTP status, error code). First match wins.
CREDENTIAL_ERROR_STATUS = (
    (UnsupportedProviderError, status.HTTP_400_BAD_REQUEST, "UNSUPPORTED_PROVIDER"),
    (InvalidOrExpiredState, status.HTTP_400_BAD_REQUEST, "INVALID_STATE"),
    (AuthorizationDeniedError, status.HTTP_400_BAD_REQUEST, "AUTHORIZATION_DENIED"),
    (CodeExchangeError, status.HTTP_400_BAD_REQUEST, "CODE_EXCHANGE_FAILED"),
    (CredentialNotFoundError, status.HTTP_404_NOT_FOUND, "CREDENTIAL_NOT_FOUND"),
    (RefreshUnavailableError, status.HTTP_409_CONFLICT, "REAUTHORIZATION_REQUIRED"),
    (RefreshFailedError, status.HTTP_502_BAD_GATEWAY, "REFRESH_FAILED"),
    (ProviderResponseError, status.HTTP_502_BAD_GATEWAY, "PROVIDER_ERROR"),
    (ProviderTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE, "PROVIDER_TIMEOUT"),
    (CipherError, status.HTTP_500_INTERNAL_SERVER_ERROR, "CREDENTIAL_ENCRYPTION_ERROR"),
)


def credential_error_to_app_error(error: CredentialError) -> AppError:
    """
    Translate a credential error into the standard API error.

    SECURITY: cipher failures get a generic message; key configuration
    and ciphertext details stay server-side.
    """
    details: dict[str, Any] = {}
    if isinstance(error, AuthorizationDeniedError):
        details["provider_error"] = error.provider_error
    elif isinstance(error, (UnsupportedProviderError, RefreshUnavailableError)):
        details["provider"] = error.provider
    elif isinstance(error, ProviderTimeoutError):
        details["retryable"] = True

    for error_type, status_code, code in CREDENTIAL_ERROR_STATUS:
        if isinstance(error, error_type):
            message = str(error)
            if isinstance(error, CipherError):
                message = "Stored credential could not be processed"
            return AppError(code=code, message=message, status_code=status_code, details=details)

    return AppError(
        code="CREDENTIAL_ERROR",
        message="Credential operation failed",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    # Check header first (from upstream services/load balancer)
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    # Check request state (set by middleware)
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


def _error_response(request: Request, error: AppError) -> JSONResponse:
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "error_code": error.code,
            "status_code": error.status_code,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={"X-Correlation-ID": correlation_id},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return _error_response(request, exc)


async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
    return _error_response(request, credential_error_to_app_error(exc))


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that assigns correlation IDs and catches anything the
    exception handlers did not.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        # Generate or extract correlation ID
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            # Add correlation ID to response headers
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except HTTPException as e:
            # Convert FastAPI HTTPException to standard format
            logger.warning(
                "HTTP exception",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content={
                    "error": {
                        "code": "HTTP_ERROR",
                        "message": str(e.detail),
                        "details": {},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            # Log full exception for debugging (server-side only)
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            # Return generic error to client (no stack trace!)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )


def register_error_handlers(app: FastAPI) -> None:
    """Install the standard error shape on an application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(CredentialError, credential_error_handler)
    app.add_middleware(ErrorHandlerMiddleware)
