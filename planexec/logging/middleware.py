"""
FastAPI middleware for structured request logging
"""

import time
from typing import Callable, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import (
    generate_request_id,
    get_logger,
    log_request_end,
    log_request_start,
)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each HTTP request and tags the response with X-Request-ID"""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[List[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/health", "/metrics"]
        self.logger = get_logger("planexec.middleware")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or generate_request_id()
        request.state.request_id = request_id

        log_request_start(
            method=request.method,
            path=request.url.path,
            request_id=request_id,
            query_params=dict(request.query_params),
            user_agent=request.headers.get("user-agent")
        )

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                request_id=request_id,
                duration_ms=(time.time() - start_time) * 1000,
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        log_request_end(
            method=request.method,
            path=request.url.path,
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=(time.time() - start_time) * 1000
        )
        response.headers["X-Request-ID"] = request_id
        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Logs 4xx and 5xx responses"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = get_logger("planexec.error")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        if 400 <= response.status_code < 500:
            self.logger.warning(
                "Client error",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                request_id=getattr(request.state, 'request_id', None)
            )
        elif response.status_code >= 500:
            self.logger.error(
                "Server error",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                request_id=getattr(request.state, 'request_id', None)
            )

        return response
