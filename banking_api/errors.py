"""
Application Error Module

Error taxonomy shared by the main API and the auth service. Every error carries
the HTTP status it maps to and a short client-safe message; internal causes are
logged, never returned.
"""

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("banking_api.errors")


class AppError(Exception):
    """Base class for errors that map to an HTTP response"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Unexpected error"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_message(self) -> Dict[str, str]:
        """Response body for this error"""
        return {"error": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.message!r})"


class BadRequestError(AppError):
    """Malformed request payload"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request payload"


class ValidationError(AppError):
    """Missing or invalid input"""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Validation failed"


class AuthenticationError(AppError):
    """Bad credentials, or a missing, invalid or expired token"""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    """Authenticated but not allowed"""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class UnexpectedError(AppError):
    """Internal, transport or serialization failure"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Unexpected error"


class ServiceUnavailableError(UnexpectedError):
    """The companion auth service cannot be reached"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Auth service unavailable"


_ERRORS_BY_STATUS: Dict[int, Type[AppError]] = {
    cls.status_code: cls
    for cls in (
        BadRequestError, ValidationError, AuthenticationError, ForbiddenError,
        NotFoundError, UnexpectedError, ServiceUnavailableError,
    )
}


def error_for_status(status_code: int, message: str = "") -> AppError:
    """Build the error matching an HTTP status received from another service"""
    error_cls = _ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        error = UnexpectedError(message)
        error.status_code = status_code if 400 <= status_code < 600 else error.status_code
        return error
    return error_cls(message)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.as_message())


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Request validation failed for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Invalid request payload"},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on an application"""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
