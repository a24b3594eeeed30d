"""
Record Service
Smart QR Health - AI Analysis Pipeline

Persistence helpers for patients, edit requests and reports used by the API
layer. AI-derived fields are never written here; that is the job processor's
responsibility.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.patient import Patient, PatientEditRequest
from app.models.report import Report
from app.schemas.enums import EditRequestStatus, ReportStatus, ReportType
from app.schemas.patient import PatientCreate
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Profile fields staff may change through an update or edit request
EDITABLE_PATIENT_FIELDS = {
    "full_name", "email", "age", "gender", "blood_group", "allergies",
    "medical_conditions", "medications", "emergency_contact", "risk_level",
}


class RecordService:
    """CRUD operations for the records the analysis pipeline reads."""

    # ── Patients ─────────────────────────────────────────────────
    @staticmethod
    async def create_patient(db: AsyncSession, data: PatientCreate) -> Patient:
        values = data.model_dump(mode="json")
        if values.get("email"):
            values["email"] = values["email"].lower()
        patient = Patient(**values)
        db.add(patient)
        await db.flush()
        await db.refresh(patient)
        logger.info("Created patient %s", patient.id)
        return patient

    @staticmethod
    async def get_patient(db: AsyncSession, patient_id: str) -> Optional[Patient]:
        return await db.get(Patient, patient_id)

    @staticmethod
    async def get_patient_by_email(db: AsyncSession, email: str) -> Optional[Patient]:
        result = await db.execute(select(Patient).where(Patient.email == email.lower()))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_patients(db: AsyncSession) -> Sequence[Patient]:
        result = await db.execute(select(Patient).order_by(desc(Patient.created_at)))
        return result.scalars().all()

    @staticmethod
    async def apply_patient_changes(
        db: AsyncSession, patient: Patient, changes: Dict[str, Any]
    ) -> Patient:
        """Apply profile changes, ignoring anything outside the editable set."""
        for field, value in changes.items():
            if field not in EDITABLE_PATIENT_FIELDS:
                continue
            if field == "email" and value:
                value = value.lower()
            setattr(patient, field, value)
        await db.flush()
        await db.refresh(patient)
        return patient

    # ── Edit Requests ────────────────────────────────────────────
    @staticmethod
    async def create_edit_request(
        db: AsyncSession, patient_id: str, changes: Dict[str, Any]
    ) -> PatientEditRequest:
        request = PatientEditRequest(patient_id=patient_id, requested_changes=changes)
        db.add(request)
        await db.flush()
        await db.refresh(request)
        logger.info("Edit request %s created for patient %s", request.id, patient_id)
        return request

    @staticmethod
    async def get_edit_request(db: AsyncSession, request_id: str) -> Optional[PatientEditRequest]:
        return await db.get(PatientEditRequest, request_id)

    @staticmethod
    async def list_pending_edit_requests(db: AsyncSession) -> Sequence[PatientEditRequest]:
        result = await db.execute(
            select(PatientEditRequest)
            .where(PatientEditRequest.status == EditRequestStatus.PENDING.value)
            .order_by(PatientEditRequest.created_at)
        )
        return result.scalars().all()

    @staticmethod
    async def close_edit_request(
        db: AsyncSession, request: PatientEditRequest, status: EditRequestStatus
    ) -> PatientEditRequest:
        request.status = status.value
        request.reviewed_at = utcnow()
        await db.flush()
        await db.refresh(request)
        return request

    # ── Reports ──────────────────────────────────────────────────
    @staticmethod
    async def create_report(
        db: AsyncSession,
        patient_id: str,
        title: str,
        description: str = "",
        report_type: ReportType = ReportType.OTHER,
        report_date: Optional[datetime] = None,
        report_file_url: str = "",
    ) -> Report:
        report = Report(
            patient_id=patient_id,
            title=title,
            description=description or "",
            report_type=report_type.value,
            report_date=report_date or utcnow(),
            report_file_url=report_file_url,
            status=ReportStatus.PENDING.value,
        )
        db.add(report)
        await db.flush()
        await db.refresh(report)
        logger.info("Created report %s for patient %s", report.id, patient_id)
        return report

    @staticmethod
    async def get_report(db: AsyncSession, report_id: str) -> Optional[Report]:
        return await db.get(Report, report_id)

    @staticmethod
    async def list_reports_for_patient(
        db: AsyncSession, patient_id: str
    ) -> Tuple[List[Report], int]:
        count_result = await db.execute(
            select(func.count(Report.id)).where(Report.patient_id == patient_id)
        )
        total = count_result.scalar_one()
        result = await db.execute(
            select(Report)
            .where(Report.patient_id == patient_id)
            .order_by(desc(Report.report_date))
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def update_report(db: AsyncSession, report: Report, changes: Dict[str, Any]) -> Report:
        for field, value in changes.items():
            if field == "report_type" and value is not None:
                value = ReportType(value).value
            if isinstance(value, datetime) and value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            setattr(report, field, value)
        # New content means the old analysis no longer applies
        report.status = ReportStatus.PENDING.value
        await db.flush()
        await db.refresh(report)
        return report

    @staticmethod
    async def delete_report(db: AsyncSession, report_id: str) -> bool:
        report = await RecordService.get_report(db, report_id)
        if not report:
            return False
        await db.delete(report)
        await db.flush()
        return True
