"""
Logging Middleware
Smart QR Health - AI Analysis Pipeline

Logs every HTTP request with timing and a request ID, which is echoed back in
the X-Request-ID header.
"""

import time
import uuid
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging_config import RequestLogger

logger = logging.getLogger(__name__)
request_logger = RequestLogger(logger)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Per-request access logging."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "[%s] %s %s -> ERROR (%.1fms) %s",
                request_id, request.method, request.url.path, duration_ms, exc,
            )
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        request_logger.log_request(
            request_id, request.method, request.url.path, response.status_code, duration_ms
        )
        response.headers["X-Request-ID"] = request_id
        return response
