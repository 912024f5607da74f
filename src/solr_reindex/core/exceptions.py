"""Custom exceptions and exception handlers."""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from solr_reindex.core.logging import get_logger

logger = get_logger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


# ==================== Reindex Errors ====================


class ReindexError(AppException):
    """Base class for errors raised by the reindex orchestration."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message, status_code=self.http_status)


class InvalidCursorError(ReindexError):
    """Cursor is malformed or belongs to another key space. Never retried."""

    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class TransientCopyError(ReindexError):
    """Network, timeout, rate-limit or 5xx failure. Retried per backoff policy."""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class FatalCopyError(ReindexError):
    """Schema mismatch, authorization failure or malformed document. Never retried."""

    http_status = status.HTTP_502_BAD_GATEWAY


class DuplicateJobError(ReindexError):
    """A live execution unit already holds the job."""

    http_status = status.HTTP_409_CONFLICT


class LostWorkerError(ReindexError):
    """Execution unit disappeared without reporting a terminal state."""


class JobNotFoundError(ReindexError):
    """No job is registered under the requested id."""

    http_status = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(ReindexError):
    """Requested lifecycle operation is not allowed from the job's current state."""

    http_status = status.HTTP_409_CONFLICT


class OwnershipLostError(ReindexError):
    """Another writer changed the job; this execution no longer holds write authority."""

    http_status = status.HTTP_409_CONFLICT


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle custom application exceptions.

    Args:
        request: The incoming request.
        exc: The exception that was raised.

    Returns:
        JSONResponse: Error response.
    """
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(f"Application error: {exc.message}", exc_info=True)
    else:
        logger.warning(f"{exc.__class__.__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": exc.__class__.__name__},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions.

    Args:
        request: The incoming request.
        exc: The HTTP exception that was raised.

    Returns:
        JSONResponse: Error response.
    """
    logger.warning(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse: Error response.
    """
    logger.error(f"Unhandled error: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )
