#!/usr/bin/env python3
"""
Error handlers for the web application.

Engine errors from ``notification.errors`` are mapped to HTTP statuses
here so routers can let them propagate.
"""

import logging
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

from notification.errors import (
    ConfigurationError,
    NotFoundError,
    NotificationError,
    PermissionDeniedError,
    PreconditionError,
    TokenValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = (
    (NotFoundError, 404),
    (PreconditionError, 409),
    (PermissionDeniedError, 403),
    (TokenValidationError, 400),
    (ConfigurationError, 500),
)


def _error_response(status_code: int, error: str, error_type: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "type": error_type,
            **extra
        }
    )


def status_for(exc: NotificationError) -> int:
    for error_class, status_code in _STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def notification_exception_handler(
    request: Request,
    exc: NotificationError
) -> JSONResponse:
    """
    Handle notification engine exceptions.

    Args:
        request: The FastAPI request.
        exc: The engine exception.

    Returns:
        JSONResponse with error details; token errors carry their ``code``.
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"Service error in {request.url.path}: {exc}", exc_info=True)
    else:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc}")

    extra = {"code": exc.code} if isinstance(exc, TokenValidationError) else {}
    return _error_response(status_code, str(exc), exc.__class__.__name__, **extra)


async def value_error_handler(
    request: Request,
    exc: ValueError
) -> JSONResponse:
    """Invalid input detected below the request models."""
    return _error_response(400, str(exc), "ValueError")


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """
    Handle FastAPI HTTP exceptions with consistent format.

    Args:
        request: The FastAPI request.
        exc: The HTTP exception.

    Returns:
        JSONResponse with error details.
    """
    return _error_response(exc.status_code, exc.detail, "HTTPException")


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Args:
        request: The FastAPI request.
        exc: The exception.

    Returns:
        JSONResponse with error details.
    """
    logger.exception(f"Unexpected error in {request.url.path}")
    return _error_response(500, "Internal server error", "InternalError")
