"""
API Middleware

Request context for logs, and translation of toolhost errors into
HTTP responses.
"""

import time
from collections.abc import Callable
from uuid import uuid4

from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from toolhost.core.exceptions import (
    ConfigurationError,
    DuplicateServerError,
    ExecutionTimeoutError,
    NotPermittedError,
    ServerBusyError,
    ServerNotFoundError,
    StartTimeoutError,
    ToolHostError,
)
from toolhost.observability.logging import get_logger

logger = get_logger("toolhost.api")

# Most specific first
_STATUS_CODES: tuple[tuple[type[ToolHostError], int], ...] = (
    (ServerNotFoundError, 404),
    (NotPermittedError, 403),
    (ServerBusyError, 409),
    (DuplicateServerError, 409),
    (StartTimeoutError, 504),
    (ExecutionTimeoutError, 504),
    (ConfigurationError, 400),
)


def status_code_for(error: ToolHostError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


async def toolhost_error_handler(request: Request, exc: Exception) -> Response:
    """Render a ToolHostError as a JSON body with a mapped status code."""
    assert isinstance(exc, ToolHostError)
    status = status_code_for(exc)
    if status >= 500:
        logger.error("Request failed", error=exc, path=request.url.path, code=exc.code)
    return JSONResponse(status_code=status, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: Exception) -> Response:
    """Render a model validation failure raised inside a route as 422."""
    assert isinstance(exc, ValidationError)
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid server definition",
            "context": {"errors": errors},
        },
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every log record written during a request with its request id,
    and reports the id and timing in response headers.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get("X-Request-Id", str(uuid4()))
        request.state.request_id = request_id

        start_time = time.perf_counter()
        with logger.context(request_id=request_id):
            response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response
