"""
Core middleware and exception handler registration for the FastAPI application.

Provides request tracking, timing and the mapping of application
exceptions to JSON error responses.
"""
from __future__ import annotations

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from fee_settlement.core.exceptions import BaseAppException
from fee_settlement.core.logging import get_logger, request_id as request_id_var

logger = get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each incoming request.

    The request ID is stored in request.state, bound to the logging
    context variable and echoed back as X-Request-ID.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        req_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = req_id
        token = request_id_var.set(req_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[self.header_name] = req_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that measures and logs request processing time.

    Adds X-Process-Time header to responses with the processing duration in seconds.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        logger.info(
            "Request completed",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "method": request.method,
                "path": str(request.url.path),
                "status_code": response.status_code,
                "process_time": f"{process_time:.4f}s",
            }
        )
        return response


async def app_exception_handler(request: Request, exc: BaseAppException) -> JSONResponse:
    """Render application exceptions with their own status code"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.error_code.value} - {exc.message}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "http_method": request.method,
        }
    )
    payload = exc.to_dict()
    payload["error"]["timestamp"] = int(time.time())
    return JSONResponse(status_code=exc.status_code, content=payload)


def register_middlewares(app: FastAPI) -> None:
    """
    Register core middlewares and exception handlers.

    Middlewares are registered in reverse order of execution; the
    request ID middleware runs first so the timing log carries the id.
    """
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(BaseAppException, app_exception_handler)

    logger.debug("Core middlewares registered", extra={
        "middlewares": ["RequestIDMiddleware", "TimingMiddleware"],
    })


__all__ = [
    "RequestIDMiddleware",
    "TimingMiddleware",
    "app_exception_handler",
    "register_middlewares",
]
