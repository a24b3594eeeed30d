"""
Admin API Routes
Smart QR Health - AI Analysis Pipeline

Endpoints:
  GET  /api/v1/admin/edit-requests                - Pending patient edit requests
  POST /api/v1/admin/edit-requests/{id}/approve   - Apply changes, run AI job
  POST /api/v1/admin/edit-requests/{id}/reject    - Close without applying
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_job_processor
from app.database.session import get_db
from app.schemas.enums import EditRequestStatus
from app.schemas.patient import EditRequestResponse
from app.services.job_processor import AIJobProcessor
from app.services.record_service import RecordService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


async def _get_pending_request_or_error(db: AsyncSession, request_id: str):
    request = await RecordService.get_edit_request(db, request_id)
    if not request:
        raise HTTPException(status_code=404, detail=f"Edit request {request_id} not found")
    if request.status != EditRequestStatus.PENDING.value:
        raise HTTPException(
            status_code=400, detail=f"Edit request {request_id} is already {request.status}"
        )
    return request


@router.get(
    "/edit-requests",
    response_model=List[EditRequestResponse],
    summary="List pending patient edit requests",
)
async def list_edit_requests(db: AsyncSession = Depends(get_db)):
    requests = await RecordService.list_pending_edit_requests(db)
    return [EditRequestResponse.model_validate(r) for r in requests]


@router.post(
    "/edit-requests/{request_id}/approve",
    response_model=EditRequestResponse,
    summary="Approve an edit request",
)
async def approve_edit_request(
    request_id: str,
    db: AsyncSession = Depends(get_db),
    processor: AIJobProcessor = Depends(get_job_processor),
):
    """Apply the requested changes to the patient and refresh the AI summary."""
    request = await _get_pending_request_or_error(db, request_id)
    patient = await RecordService.get_patient(db, request.patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail=f"Patient {request.patient_id} not found")

    await RecordService.apply_patient_changes(db, patient, request.requested_changes or {})
    request = await RecordService.close_edit_request(db, request, EditRequestStatus.APPROVED)
    await db.commit()
    logger.info("Edit request %s approved for patient %s", request_id, patient.id)

    await processor.process_patient_job(patient.id)
    return EditRequestResponse.model_validate(request)


@router.post(
    "/edit-requests/{request_id}/reject",
    response_model=EditRequestResponse,
    summary="Reject an edit request",
)
async def reject_edit_request(request_id: str, db: AsyncSession = Depends(get_db)):
    request = await _get_pending_request_or_error(db, request_id)
    request = await RecordService.close_edit_request(db, request, EditRequestStatus.REJECTED)
    logger.info("Edit request %s rejected", request_id)
    return EditRequestResponse.model_validate(request)
