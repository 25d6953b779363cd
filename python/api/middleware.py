"""
FastAPI Middleware for the Entity Screening API

Provides CORS configuration, request logging, and error handling that maps
screening exceptions onto the standard error envelope.
"""

import os
import re
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Callable, List

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from log_utils import sanitize_for_logging
from screening.errors import (
    AggregationInvariantError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Default allowed origins for localhost development
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:8080",
    "http://localhost:8000",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
    "http://127.0.0.1:8000",
]

EXPOSED_HEADERS = ["X-Request-ID", "X-Processing-Time-MS"]
ALLOWED_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]


def _build_cors_regex_pattern(allowed_origins: List[str]) -> tuple:
    """Build regex pattern for CORS from allowed origins list.

    Wildcard origins such as ``https://*.example.com`` match any single
    subdomain label.

    Returns:
        Tuple of (combined_regex_pattern or None, exact_origins list)
    """
    regex_patterns = []
    exact_origins = []

    for origin in allowed_origins:
        if "*" in origin:
            regex_patterns.append(re.escape(origin).replace(r"\*", r"[\w-]+"))
        else:
            exact_origins.append(origin)

    if not regex_patterns:
        return None, exact_origins

    combined_regex = "|".join(f"({p})" for p in regex_patterns)
    if exact_origins:
        exact_escaped = "|".join(re.escape(o) for o in exact_origins)
        combined_regex = f"({combined_regex})|({exact_escaped})"

    return combined_regex, exact_origins


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the application.

    Restricts origins to localhost by default. Origins can be customized via
    the CORS_ORIGINS environment variable (comma-separated, wildcards allowed).
    """
    cors_origins_env = os.getenv("CORS_ORIGINS", "")
    if cors_origins_env:
        allowed_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    else:
        allowed_origins = DEFAULT_CORS_ORIGINS

    combined_regex, exact_origins = _build_cors_regex_pattern(allowed_origins)

    if combined_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=combined_regex,
            allow_credentials=True,
            allow_methods=ALLOWED_METHODS,
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=exact_origins,
            allow_credentials=True,
            allow_methods=ALLOWED_METHODS,
            allow_headers=["*"],
            expose_headers=EXPOSED_HEADERS,
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs."""

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = sanitize_for_logging(request.headers.get("X-Request-ID", "")) or str(uuid.uuid4())

        request.state.request_id = request_id
        request.state.start_time = start_time

        # Sanitize path to prevent log injection
        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise

        processing_time_ms = int((time.time() - start_time) * 1000)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

        logger.info(
            "Response: status=%d processing_time_ms=%d request_id=%s",
            response.status_code,
            processing_time_ms,
            request_id,
        )
        return response


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    suggestion: str = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion

    return JSONResponse(status_code=status_code, content={"error": error_detail})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.warning(
        "Validation error: code=%s field=%s message=%s request_id=%s",
        exc.code, exc.field, sanitize_for_logging(str(exc)), _request_id(request),
    )
    return create_error_response(
        code=exc.code,
        message=str(exc),
        status_code=422,
        field=exc.field,
        suggestion=exc.suggestion,
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Pydantic request body errors, reported with the first failing field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = ".".join(location) or None

    logger.warning(
        "Request validation failed: field=%s errors=%d request_id=%s",
        field, len(errors), _request_id(request),
    )
    return create_error_response(
        code="VALIDATION_ERROR",
        message=first.get("msg", "Invalid request"),
        status_code=422,
        field=field,
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info(
        "Not found: resource=%s id=%s request_id=%s",
        exc.resource_type, sanitize_for_logging(exc.resource_id), _request_id(request),
    )
    return create_error_response(
        code="NOT_FOUND",
        message=str(exc),
        status_code=404,
    )


async def transient_store_error_handler(request: Request, exc: TransientStoreError) -> JSONResponse:
    logger.error(
        "Store unavailable: error=%s request_id=%s",
        sanitize_for_logging(str(exc)), _request_id(request),
    )
    return create_error_response(
        code="STORE_UNAVAILABLE",
        message="Screening storage is temporarily unavailable. Please retry.",
        status_code=503,
    )


async def aggregation_error_handler(request: Request, exc: AggregationInvariantError) -> JSONResponse:
    logger.critical(
        "Scoring policy error: error=%s request_id=%s",
        sanitize_for_logging(str(exc)), _request_id(request),
    )
    return create_error_response(
        code="SCORING_POLICY_ERROR",
        message="Risk scoring is misconfigured. Please contact administrator.",
        status_code=500,
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error(
        "Configuration error: error=%s request_id=%s",
        sanitize_for_logging(str(exc)), _request_id(request),
    )
    return create_error_response(
        code="CONFIGURATION_ERROR",
        message="Service configuration is invalid. Please contact administrator.",
        status_code=503,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions."""
    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        _request_id(request),
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler. Sanitizes error messages to prevent information leakage."""
    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        _request_id(request),
    )
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(TransientStoreError, transient_store_error_handler)
    app.add_exception_handler(AggregationInvariantError, aggregation_error_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
