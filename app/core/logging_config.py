"""
Structured Logging Configuration
Smart QR Health - AI Analysis Pipeline

Configures stdlib logging and provides contextual loggers for HTTP requests,
AI calls and analysis jobs.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from app.core.config import settings


def configure_logging() -> None:
    """Configure application-wide logging."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
        if settings.log_format != "json"
        else "%(message)s",
        stream=sys.stdout,
    )

    # Quieten noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RequestLogger:
    """Contextual logger for HTTP requests and outbound AI calls."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_request(
        self, request_id: str, method: str, path: str, status: int, duration_ms: float
    ) -> None:
        level = logging.WARNING if status >= 400 else logging.INFO
        self.logger.log(
            level,
            "[%s] %s %s -> %d (%.1fms)", request_id, method, path, status, duration_ms,
            extra={
                "request_id": request_id,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "timestamp": _now_iso(),
            },
        )

    def log_ai_call(
        self, model: str, duration_ms: float, ok: bool, tokens: Optional[int] = None
    ) -> None:
        self.logger.info(
            "AI call model=%s ok=%s tokens=%s (%.0fms)", model, ok, tokens, duration_ms,
            extra={
                "model": model,
                "ok": ok,
                "tokens_used": tokens,
                "duration_ms": round(duration_ms, 2),
                "timestamp": _now_iso(),
            },
        )


class JobLogger:
    """Records the outcome of each patient analysis job."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_success(self, patient_id: str, source: str, duration_ms: float) -> None:
        self.logger.info(
            "AI job SUCCESS patient=%s source=%s (%.0fms)", patient_id, source, duration_ms,
            extra={
                "patient_id": patient_id,
                "ai_gen_status": "SUCCESS",
                "source": source,
                "duration_ms": round(duration_ms, 2),
            },
        )

    def log_failure(
        self, patient_id: str, error: str, retry_count: int, next_retry_at: datetime
    ) -> None:
        self.logger.warning(
            "AI job FAILED patient=%s: %s | retry #%d scheduled at %s",
            patient_id, error, retry_count, next_retry_at.isoformat(),
            extra={
                "patient_id": patient_id,
                "ai_gen_status": "FAILED",
                "error": error,
                "ai_retry_count": retry_count,
                "ai_next_retry_at": next_retry_at.isoformat(),
            },
        )
