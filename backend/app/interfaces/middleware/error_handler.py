"""
Codelab Grader - Error Handling
Consistent error response format
"""

import traceback
from typing import Callable

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import GradingError

logger = structlog.get_logger(__name__)


async def grading_error_handler(request: Request, exc: GradingError) -> JSONResponse:
    """Map grading errors to ``{error, detail, retryable}`` responses."""
    request_id = getattr(request.state, "request_id", None)
    logger.info(
        "Grading request failed",
        error=exc.code,
        status_code=exc.status_code,
        reason=getattr(exc, "reason", None),
        path=request.url.path,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "detail": exc.detail,
            "retryable": exc.retryable,
            "request_id": request_id,
        },
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.

    Catches all unhandled exceptions and returns consistent error responses.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        try:
            return await call_next(request)

        except Exception as exc:
            request_id = getattr(request.state, "request_id", None)

            logger.error(
                "Unhandled exception",
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
                method=request.method,
                request_id=request_id,
                traceback=traceback.format_exc(),
            )

            error_code, status_code, detail = self._classify_error(exc)

            return JSONResponse(
                status_code=status_code,
                content={
                    "error": error_code,
                    "detail": detail,
                    "retryable": status_code == 503,
                    "request_id": request_id,
                },
            )

    def _classify_error(self, exc: Exception) -> tuple[str, int, str]:
        """
        Classify exception and return error details.

        Returns:
            Tuple of (error_code, status_code, detail)
        """
        from redis.exceptions import ConnectionError as RedisConnectionError
        from sqlalchemy.exc import OperationalError

        if isinstance(exc, OperationalError):
            return "DATABASE_ERROR", 503, "Database operation failed"

        if isinstance(exc, RedisConnectionError):
            return "CACHE_ERROR", 503, "Cache service unavailable"

        if isinstance(exc, ValueError):
            return "VALIDATION_ERROR", 400, str(exc)

        return "INTERNAL_ERROR", 500, "An unexpected error occurred"
