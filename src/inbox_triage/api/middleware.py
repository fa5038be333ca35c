"""
FastAPI middleware for logging, metrics, and error handling.
"""

import time
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from inbox_triage.errors import (
    ClassificationCancelled,
    ClassificationError,
    InvalidStateError,
    NotFoundError,
)

logger = structlog.get_logger(__name__)


def setup_logging_middleware(app: FastAPI) -> None:
    """
    Setup request/response logging middleware.

    Logs all requests with:
    - Request method, path, query params
    - Response status code
    - Processing time
    """

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query_params=str(request.query_params),
            user_id=request.headers.get("X-User-Id"),
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            process_time = time.time() - start_time

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                process_time_ms=round(process_time * 1000, 2),
            )

            response.headers["X-Process-Time"] = str(process_time)

            return response

        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                process_time_ms=round(process_time * 1000, 2),
                error=str(e),
                exc_info=True,
            )
            raise


def setup_error_handling_middleware(app: FastAPI) -> None:
    """
    Setup global error handling middleware.

    Catches unhandled exceptions and returns consistent error responses.
    """

    @app.middleware("http")
    async def handle_errors(request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(
                "unhandled_exception",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "detail": str(e) if app.debug else "An unexpected error occurred",
                },
            )


def _error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Map pipeline errors to HTTP responses.

    NotFoundError → 404, InvalidStateError (and NoActionToUndo) → 400,
    ClassificationError → 502, ClassificationCancelled → 503.
    """

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(404, str(exc) or "Not found")

    @app.exception_handler(InvalidStateError)
    async def handle_invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
        logger.info("request_rejected", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return _error_response(400, str(exc))

    @app.exception_handler(ClassificationError)
    async def handle_classification_error(request: Request, exc: ClassificationError) -> JSONResponse:
        logger.warning("classification_request_failed", path=request.url.path, item_id=exc.item_id, error=str(exc))
        return _error_response(502, str(exc))

    @app.exception_handler(ClassificationCancelled)
    async def handle_cancelled(request: Request, exc: ClassificationCancelled) -> JSONResponse:
        return _error_response(503, "Service is shutting down")


def setup_metrics_middleware(app: FastAPI) -> None:
    """
    Setup basic metrics middleware.

    Tracks:
    - Request count per endpoint
    - Response time per endpoint
    - Status code distribution

    Note: For production, use prometheus-fastapi-instrumentator
    """

    @app.middleware("http")
    async def collect_metrics(request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.debug(
            "request_metrics",
            endpoint=request.url.path,
            method=request.method,
            status_code=response.status_code,
            duration_seconds=process_time,
        )

        return response
