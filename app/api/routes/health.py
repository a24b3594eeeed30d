"""
Health & Diagnostics Routes
Smart QR Health - AI Analysis Pipeline

Endpoints:
  GET /api/v1/health      System health check
  GET /api/v1/test-llm    Quick LLM connectivity test
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.database.session import check_database_connection
from app.schemas.report import HealthResponse
from app.services.ai_service import ai_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Health"])


def _ai_configured() -> bool:
    try:
        settings.get_ai_api_key()
        return True
    except ValueError:
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="System health check",
    description="Returns the status of the database and the background retry worker.",
)
async def health_check(request: Request):
    db_ok = await check_database_connection()

    worker = getattr(request.app.state, "retry_worker", None)
    if worker is None or not settings.retry_worker_enabled:
        worker_status = "disabled"
    else:
        worker_status = "running" if worker.is_running else "stopped"

    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=settings.app_version,
        database="healthy" if db_ok else "unhealthy",
        retry_worker=worker_status,
        ai_configured=_ai_configured(),
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/test-llm",
    summary="Test LLM connectivity",
    description=(
        "Sends a simple 'Hello' message to Gemini and returns the response. "
        "Use this to verify that the AI API key and model are correctly configured."
    ),
    responses={
        200: {"description": "LLM responded successfully"},
        503: {"description": "LLM unavailable or misconfigured"},
    },
)
async def test_llm():
    logger.info("LLM connectivity test requested")
    result = await ai_service.test_connection()

    if result.get("status") == "ok":
        return {
            "status": "ok",
            "model": result.get("model"),
            "response": result.get("response"),
            "disclaimer": settings.disclaimer,
        }

    # 503 so monitoring picks it up
    return JSONResponse(
        status_code=503,
        content={
            "status": "error",
            "error": result.get("error", "Unknown error"),
            "hint": "Check MEDICAL_AI_API_KEY in your .env file and verify the model name.",
            "disclaimer": settings.disclaimer,
        },
    )
