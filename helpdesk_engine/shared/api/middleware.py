"""
Shared API Middleware
======================

Common middleware and exception handlers for the engine's FastAPI app.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Tuple, Type

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk_engine.core import (
    ApplicationException,
    AuthorizationException,
    CapacityExceededException,
    ConfigurationException,
    ConflictException,
    InvalidTransitionException,
    NoEligibleAgentsException,
    NotPendingException,
    ResourceNotFoundException,
    StorageUnavailableException,
    ValidationException,
)
from helpdesk_engine.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Most specific first: lookup walks this in order and takes the first isinstance match.
ERROR_RESPONSES: Tuple[Tuple[Type[ApplicationException], int, str], ...] = (
    (NotPendingException, status.HTTP_409_CONFLICT, "already_taken"),
    (InvalidTransitionException, status.HTTP_409_CONFLICT, "invalid_transition"),
    (CapacityExceededException, status.HTTP_409_CONFLICT, "capacity_exceeded"),
    (ConflictException, status.HTTP_409_CONFLICT, "conflict"),
    (NoEligibleAgentsException, status.HTTP_422_UNPROCESSABLE_ENTITY, "no_eligible_agents"),
    (AuthorizationException, status.HTTP_403_FORBIDDEN, "forbidden"),
    (ResourceNotFoundException, status.HTTP_404_NOT_FOUND, "not_found"),
    (ValidationException, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error"),
    (StorageUnavailableException, status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable"),
    (ConfigurationException, status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error"),
)


def error_response_for(exc: ApplicationException) -> Tuple[int, str]:
    """HTTP status and machine code for an application error."""
    for exc_type, status_code, code in ERROR_RESPONSES:
        if isinstance(exc, exc_type):
            return status_code, code
    return status.HTTP_400_BAD_REQUEST, "application_error"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Correlation IDs are essential for tracing requests through
    distributed systems and linking logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Get existing correlation ID or generate new one
        correlation_id = request.headers.get(CORRELATION_HEADER, str(uuid.uuid4()))

        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
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
                "actor_id": request.headers.get("X-Actor-Id"),
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
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


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map domain and storage errors to HTTP responses with a machine code."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    status_code, code = error_response_for(exc)

    log_extra: Dict = {"correlation_id": correlation_id, "path": request.url.path, "code": code, "error_details": exc.details}
    if status_code >= 500:
        logger.error(exc.message, extra=log_extra)
    else:
        logger.info(exc.message, extra=log_extra)

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "code": code,
            "details": exc.details,
            "correlation_id": correlation_id,
        }
    )


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

    # Don't expose internal details outside development
    container = getattr(request.app.state, "container", None)
    is_dev = container is not None and container.settings.environment == "development"

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
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
