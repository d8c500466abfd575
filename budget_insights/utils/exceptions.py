"""
Custom exceptions for the insights engine.
All business logic and technical exceptions are defined here.
"""

from contextlib import asynccontextmanager
from typing import Any, List, Optional

import structlog

logger = structlog.get_logger()


class AppException(Exception):
    """Base exception for all engine exceptions."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        status_code: int = 500,
        details: Optional[List[str]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or []
        super().__init__(self.message)


class ValidationError(AppException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details=details
        )


class NotFoundError(AppException):
    """Raised when a resource is not found."""

    def __init__(
        self,
        message: str = "Resource not found",
        resource_type: str = "resource",
        resource_id: Optional[str] = None
    ):
        if resource_id:
            message = f"{resource_type.title()} with ID '{resource_id}' not found"

        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details=[f"Resource type: {resource_type}"]
        )


class DataSourceError(AppException):
    """Raised when a ledger, cache or store collaborator fails."""

    def __init__(
        self,
        message: str = "Data source operation failed",
        source: str = "unknown",
        details: Optional[List[str]] = None
    ):
        self.source = source
        super().__init__(
            message=message,
            code="DATA_SOURCE_ERROR",
            status_code=502,
            details=details or [f"Source: {source}"]
        )


@asynccontextmanager
async def data_source_guard(source: str, operation: str, **context: Any):
    """Wrap unexpected collaborator failures in a DataSourceError carrying context."""
    try:
        yield
    except AppException:
        raise
    except Exception as e:
        logger.error(
            "Data source operation failed",
            source=source,
            operation=operation,
            error=str(e),
            **context
        )
        details = [f"Source: {source}", f"Operation: {operation}"]
        details.extend(f"{key}: {value}" for key, value in context.items())
        raise DataSourceError(
            message=f"{source} {operation} failed: {e}",
            source=source,
            details=details
        ) from e
