"""
Rate Limiting Middleware
Smart QR Health - AI Analysis Pipeline

Sliding window rate limiting per client IP for the endpoints that call the
AI model or accept uploads.
"""

import re
import time
import logging
from collections import defaultdict, deque
from typing import Deque, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)

LIMITED_PATHS = (
    re.compile(r"^/api/v1/reports/upload$"),
    re.compile(r"^/api/v1/reports/overall-analysis$"),
    re.compile(r"^/api/v1/patients/[^/]+/ai-refresh$"),
)


def is_rate_limited_path(method: str, path: str) -> bool:
    return method == "POST" and any(p.match(path) for p in LIMITED_PATHS)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window rate limiter.
    Default: 10 requests per 60 seconds per IP.
    """

    def __init__(self, app, max_requests: int = None, window_seconds: int = None):
        super().__init__(app)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep = 0.0
        logger.info("Rate limiter: %d req/%ds per IP", self.max_requests, self.window_seconds)

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _prune(self, window: Deque[float], now: float) -> None:
        while window and window[0] < now - self.window_seconds:
            window.popleft()

    def sweep(self, now: float) -> None:
        """Forget clients with no requests left inside the window."""
        for client_ip in list(self._windows):
            window = self._windows[client_ip]
            self._prune(window, now)
            if not window:
                del self._windows[client_ip]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next):
        if not is_rate_limited_path(request.method, request.url.path):
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        now = time.time()
        if now - self._last_sweep >= self.window_seconds:
            self.sweep(now)
        window = self._windows[client_ip]
        self._prune(window, now)

        if len(window) >= self.max_requests:
            remaining_wait = int(window[0] + self.window_seconds - now + 1)
            logger.warning("Rate limit exceeded for IP %s", client_ip)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "detail": f"Maximum {self.max_requests} requests per {self.window_seconds} seconds.",
                    "retry_after_seconds": remaining_wait,
                    "disclaimer": settings.disclaimer,
                },
                headers={"Retry-After": str(remaining_wait)},
            )

        window.append(now)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(self.max_requests - len(window))
        response.headers["X-RateLimit-Window"] = str(self.window_seconds)
        return response
