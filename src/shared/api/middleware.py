"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core import (
    ApplicationException,
    ConflictException,
    PartialFailureException,
    ResourceNotFoundException,
    StoreUnavailableException,
    ValidationException,
)
from shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    The id is stored on the request state and in the logging context so
    every log line of the request carries it.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Get existing correlation ID or generate new one
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)

            response_time = time.perf_counter() - start_time
            logger.info(
                "Request completed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "response_time_ms": int(response_time * 1000)
                }
            )

            return response

        except Exception as e:
            response_time = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int(response_time * 1000)
                }
            )
            raise


def _error_body(request: Request, exc: ApplicationException) -> dict:
    return {
        "detail": exc.message,
        "error_type": type(exc).__name__,
        "details": exc.details,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
    }


async def validation_exception_handler(request: Request, exc: ValidationException) -> JSONResponse:
    return JSONResponse(status_code=422, content=_error_body(request, exc))


async def not_found_exception_handler(request: Request, exc: ResourceNotFoundException) -> JSONResponse:
    return JSONResponse(status_code=404, content=_error_body(request, exc))


async def conflict_exception_handler(request: Request, exc: ConflictException) -> JSONResponse:
    """Stale view or concurrent change; the client must refresh."""
    body = _error_body(request, exc)
    body["refresh_required"] = True
    return JSONResponse(status_code=409, content=body)


async def partial_failure_handler(request: Request, exc: PartialFailureException) -> JSONResponse:
    """
    The assignment pointer was updated but the audit append failed.

    The change stands (202) and the response tells the caller to refresh;
    legacy repair closes the audit gap on the next touch.
    """
    return JSONResponse(
        status_code=202,
        content={
            "case_id": exc.case_id,
            "action": exc.operation,
            "outcome": "partial_failure",
            "epoch_id": exc.epoch_id,
            "previous_epoch_id": None,
            "warnings": [exc.message],
            "refresh_required": True,
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        }
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableException) -> JSONResponse:
    body = _error_body(request, exc)
    body["retryable"] = True
    return JSONResponse(status_code=503, content=body, headers={"Retry-After": "5"})


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Any other application error (repository, configuration, domain)."""
    logger.error(
        "Application error",
        extra={
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_message": exc.message
        }
    )
    return JSONResponse(status_code=500, content=_error_body(request, exc))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details in production
    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map the application exception taxonomy onto HTTP status codes."""
    app.add_exception_handler(ValidationException, validation_exception_handler)
    app.add_exception_handler(ResourceNotFoundException, not_found_exception_handler)
    app.add_exception_handler(ConflictException, conflict_exception_handler)
    app.add_exception_handler(PartialFailureException, partial_failure_handler)
    app.add_exception_handler(StoreUnavailableException, store_unavailable_handler)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
