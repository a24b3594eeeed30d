"""
FastAPI Application Entry Point
Smart QR Health - AI Analysis Pipeline

Patient records, medical report uploads and AI health summaries with
background retry of failed analyses.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.core.config import settings
from app.core.logging_config import configure_logging
from app.database.session import AsyncSessionLocal, init_db
from app.api.middleware.rate_limiter import RateLimitMiddleware
from app.api.middleware.logging_middleware import LoggingMiddleware
from app.api.routes import admin, health, patients, reports
from app.services.ai_service import ai_service
from app.services.job_processor import AIJobProcessor
from app.services.report_analyzer import ReportAnalyzer
from app.services.retry_worker import RetryWorker
from app.services.summary_generator import SummaryGenerator

# Configure logging before anything else
configure_logging()
logger = logging.getLogger(__name__)


def build_pipeline(session_factory=AsyncSessionLocal):
    """Wire the job processor and retry worker around one session factory."""
    processor = AIJobProcessor(
        session_factory,
        summary_generator=SummaryGenerator(ai_service),
        report_analyzer=ReportAnalyzer(ai_service, settings.report_text_max_chars),
        uploads_dir=settings.uploads_dir,
    )
    worker = RetryWorker(processor, session_factory)
    return processor, worker


# -- Lifespan (startup/shutdown) -----------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"  Environment: {settings.app_env}")
    logger.info(f"  AI Model:    {settings.ai_model}")

    try:
        settings.get_ai_api_key()
        logger.info("  AI API key: configured")
    except ValueError as e:
        logger.warning(f"  AI API key WARNING: {e}")

    try:
        await init_db()
        logger.info("  Database: initialized")
    except Exception as e:
        logger.warning(f"  Database WARNING: {e}")

    os.makedirs(settings.uploads_dir, exist_ok=True)

    processor, worker = build_pipeline()
    app.state.job_processor = processor
    app.state.retry_worker = worker
    if settings.retry_worker_enabled:
        worker.start()
        logger.info(
            f"  Retry worker: every {settings.retry_worker_interval_seconds:.0f}s, "
            f"batch {settings.retry_worker_batch_size}"
        )
    else:
        logger.info("  Retry worker: disabled")

    logger.info(f"  {settings.app_name} is ready at http://localhost:{settings.port}")
    yield

    logger.info("Shutting down...")
    await worker.stop()
    await ai_service.close()
    logger.info("Shutdown complete.")


# -- FastAPI App ---------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Patient health records with AI-generated health summaries and "
        "medical report analysis.\n\n"
        f"**DISCLAIMER:** {settings.disclaimer}"
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# -- Middleware (outermost first) ----------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RateLimitMiddleware)

# -- Routes -------------------------------------------------------------------
app.include_router(health.router)
app.include_router(patients.router)
app.include_router(reports.router)
app.include_router(admin.router)


# -- Global Exception Handler -------------------------------------------------
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
            "disclaimer": settings.disclaimer,
        },
    )


# -- Uploaded Report Files ----------------------------------------------------
os.makedirs(settings.uploads_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")


# -- Root API Info ------------------------------------------------------------
@app.get("/api", include_in_schema=False)
async def api_info():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "disclaimer": settings.disclaimer,
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production(),
        log_level=settings.log_level.lower(),
    )
