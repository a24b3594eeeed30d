"""
Reports API Routes
Smart QR Health - AI Analysis Pipeline

Endpoints:
  POST   /api/v1/reports/upload            - Upload a report file, analyze in background
  POST   /api/v1/reports/overall-analysis  - Re-analyze a patient's latest report now
  GET    /api/v1/reports/{id}              - Get single report analysis
  PUT    /api/v1/reports/{id}              - Update report, re-analyze in background
  DELETE /api/v1/reports/{id}              - Delete a report
"""

import os
import logging
from datetime import datetime
from typing import Optional

import aiofiles
from fastapi import (
    APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile,
)
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_job_processor
from app.core.config import settings
from app.database.session import get_db
from app.schemas.enums import AIGenStatus, ReportType
from app.schemas.patient import JobResponse
from app.schemas.report import (
    ErrorResponse,
    OverallAnalysisRequest,
    ReportResponse,
    ReportUpdate,
)
from app.services.job_processor import AIJobProcessor
from app.services.record_service import RecordService
from app.utils.file_handler import build_stored_filename, get_extension

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/reports", tags=["Medical Reports"])


# ── Upload ─────────────────────────────────────────────────────────
@router.post(
    "/upload",
    response_model=ReportResponse,
    status_code=201,
    summary="Upload a medical report",
    description=(
        "Upload a PDF, image or TXT report for a patient. The report is stored "
        "immediately; AI analysis runs after the response is sent."
    ),
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
    },
)
async def upload_report(
    background_tasks: BackgroundTasks,
    patient_id: str = Form(...),
    title: str = Form(..., min_length=1, max_length=255),
    report_type: ReportType = Form(ReportType.OTHER),
    description: str = Form(""),
    report_date: Optional[datetime] = Form(None),
    file: UploadFile = File(..., description="Medical report (PDF, image or TXT, max 10MB)"),
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    # ── Validate file type ─────────────────────────────────────────
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    file_ext = get_extension(file.filename)
    if file_ext not in settings.allowed_extensions_list:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '.{file_ext}'. Allowed: {', '.join(settings.allowed_extensions_list)}",
        )

    # ── Validate file size ─────────────────────────────────────────
    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.max_file_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.max_file_size_mb}MB",
        )

    patient = await RecordService.get_patient(db, patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")

    # ── Store file ─────────────────────────────────────────────────
    os.makedirs(settings.uploads_dir, exist_ok=True)
    stored_name = build_stored_filename(file.filename)
    async with aiofiles.open(os.path.join(settings.uploads_dir, stored_name), "wb") as out:
        await out.write(content)

    report = await RecordService.create_report(
        db=db,
        patient_id=patient_id,
        title=title,
        description=description,
        report_type=report_type,
        report_date=report_date,
        report_file_url=f"/uploads/{stored_name}",
    )
    await db.commit()

    logger.info("Report %s uploaded (%s); analysis scheduled", report.id, file.filename)
    background_tasks.add_task(processor.process_report_job, report.id)
    return ReportResponse.model_validate(report)


# ── Overall Analysis ───────────────────────────────────────────────
@router.post(
    "/overall-analysis",
    response_model=JobResponse,
    summary="Re-analyze the patient's latest report",
)
async def overall_analysis(
    payload: OverallAnalysisRequest,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    if not await RecordService.get_patient(db, payload.patient_id):
        raise HTTPException(status_code=404, detail=f"Patient {payload.patient_id} not found")

    status = await processor.analyze_latest_report(payload.patient_id)
    return JobResponse(
        patient_id=payload.patient_id,
        ai_gen_status=status,
        message="Analysis complete" if status == AIGenStatus.SUCCESS else "Analysis failed; retry scheduled",
    )


# ── Get Single Report ──────────────────────────────────────────────
@router.get("/{report_id}", response_model=ReportResponse, summary="Get a specific report")
async def get_report(report_id: str, db: AsyncSession = Depends(get_db)):
    report = await RecordService.get_report(db, report_id)
    if not report:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return ReportResponse.model_validate(report)


# ── Update Report ──────────────────────────────────────────────────
@router.put("/{report_id}", response_model=ReportResponse, summary="Update a report")
async def update_report(
    report_id: str,
    payload: ReportUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    report = await RecordService.get_report(db, report_id)
    if not report:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    report = await RecordService.update_report(db, report, changes)
    await db.commit()

    background_tasks.add_task(processor.process_report_job, report.id)
    return ReportResponse.model_validate(report)


# ── Delete Report ──────────────────────────────────────────────────
@router.delete("/{report_id}", status_code=204, summary="Delete a report")
async def delete_report(report_id: str, db: AsyncSession = Depends(get_db)):
    """Permanently delete a report record. The patient's AI summary is left as is."""
    deleted = await RecordService.delete_report(db=db, report_id=report_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
