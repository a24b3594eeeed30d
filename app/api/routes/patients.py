"""
Patients API Routes
Smart QR Health - AI Analysis Pipeline

Endpoints:
  POST   /api/v1/patients                     - Create patient, run AI job
  GET    /api/v1/patients                     - List patients
  GET    /api/v1/patients/{id}                - Get patient
  PUT    /api/v1/patients/{id}                - Update patient directly, run AI job
  POST   /api/v1/patients/{id}/edit-requests  - Propose changes for admin approval
  GET    /api/v1/patients/{id}/ai-summary     - AI summary with staleness info
  POST   /api/v1/patients/{id}/ai-refresh     - Re-run the AI job now
  GET    /api/v1/patients/{id}/reports        - Reports of a patient
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_job_processor
from app.database.session import get_db
from app.schemas.patient import (
    EditRequestResponse,
    JobResponse,
    PatientAISummaryResponse,
    PatientCreate,
    PatientResponse,
    PatientUpdate,
)
from app.schemas.enums import AIGenStatus
from app.schemas.report import ReportListResponse, ReportResponse
from app.services.job_processor import AIJobProcessor
from app.services.record_service import RecordService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/patients", tags=["Patients"])


async def _get_patient_or_404(db: AsyncSession, patient_id: str):
    patient = await RecordService.get_patient(db, patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {patient_id} not found")
    return patient


async def _ensure_email_free(db: AsyncSession, email: str, patient_id: str = None) -> None:
    existing = await RecordService.get_patient_by_email(db, email)
    if existing and existing.id != patient_id:
        raise HTTPException(status_code=400, detail="Patient with this email already exists")


# ── Create ─────────────────────────────────────────────────────────
@router.post("", response_model=PatientResponse, status_code=201, summary="Create a patient")
async def create_patient(
    payload: PatientCreate,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    """Create a patient record and generate its first AI summary."""
    if payload.email:
        await _ensure_email_free(db, payload.email)

    patient = await RecordService.create_patient(db, payload)
    await db.commit()

    # Failures are recorded on the patient and retried; never an HTTP error
    await processor.process_patient_job(patient.id)
    await db.refresh(patient)
    return PatientResponse.model_validate(patient)


# ── Read ───────────────────────────────────────────────────────────
@router.get("", response_model=List[PatientResponse], summary="List patients")
async def list_patients(db: AsyncSession = Depends(get_db)):
    patients = await RecordService.list_patients(db)
    return [PatientResponse.model_validate(p) for p in patients]


@router.get("/{patient_id}", response_model=PatientResponse, summary="Get a patient")
async def get_patient(patient_id: str, db: AsyncSession = Depends(get_db)):
    patient = await _get_patient_or_404(db, patient_id)
    return PatientResponse.model_validate(patient)


# ── Update ─────────────────────────────────────────────────────────
@router.put("/{patient_id}", response_model=PatientResponse, summary="Update a patient")
async def update_patient(
    patient_id: str,
    payload: PatientUpdate,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    """Privileged direct update; refreshes the AI summary afterwards."""
    patient = await _get_patient_or_404(db, patient_id)
    changes = payload.changes()
    if changes.get("email"):
        await _ensure_email_free(db, changes["email"], patient_id)

    patient = await RecordService.apply_patient_changes(db, patient, changes)
    await db.commit()

    await processor.process_patient_job(patient.id)
    await db.refresh(patient)
    return PatientResponse.model_validate(patient)


@router.post(
    "/{patient_id}/edit-requests",
    response_model=EditRequestResponse,
    status_code=202,
    summary="Propose a profile change for admin approval",
)
async def request_patient_edit(
    patient_id: str,
    payload: PatientUpdate,
    db: AsyncSession = Depends(get_db),
):
    await _get_patient_or_404(db, patient_id)
    changes = payload.changes()
    if not changes:
        raise HTTPException(status_code=400, detail="No changes requested")
    request = await RecordService.create_edit_request(db, patient_id, changes)
    return EditRequestResponse.model_validate(request)


# ── AI Summary ─────────────────────────────────────────────────────
@router.get(
    "/{patient_id}/ai-summary",
    response_model=PatientAISummaryResponse,
    summary="Get the patient's AI health summary",
)
async def get_ai_summary(patient_id: str, db: AsyncSession = Depends(get_db)):
    patient = await _get_patient_or_404(db, patient_id)
    return PatientAISummaryResponse.from_patient(patient)


@router.post(
    "/{patient_id}/ai-refresh",
    response_model=JobResponse,
    summary="Re-run the AI analysis job for a patient",
)
async def refresh_ai_summary(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    await _get_patient_or_404(db, patient_id)
    status = await processor.process_patient_job(patient_id)
    return JobResponse(
        patient_id=patient_id,
        ai_gen_status=status,
        message="AI analysis updated" if status == AIGenStatus.SUCCESS else "AI analysis failed; retry scheduled",
    )


# ── Reports ────────────────────────────────────────────────────────
@router.get(
    "/{patient_id}/reports",
    response_model=ReportListResponse,
    summary="List a patient's reports",
)
async def list_patient_reports(patient_id: str, db: AsyncSession = Depends(get_db)):
    await _get_patient_or_404(db, patient_id)
    items, total = await RecordService.list_reports_for_patient(db, patient_id)
    return ReportListResponse(
        items=[ReportResponse.model_validate(r) for r in items],
        total=total,
    )
