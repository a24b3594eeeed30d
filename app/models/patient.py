"""
SQLAlchemy ORM Models - Patients
Smart QR Health - AI Analysis Pipeline
"""

import uuid
from sqlalchemy import (
    Column, String, Text, Integer, DateTime,
    JSON, Boolean, ForeignKey, Index,
)

from app.database.session import Base
from app.schemas.enums import AIGenStatus, EditRequestStatus, RiskLevel
from app.utils.clock import utcnow


class Patient(Base):
    """A hospital patient: clinical profile plus the AI-derived health summary."""

    __tablename__ = "patients"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )

    # Medical profile (maintained by hospital staff)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    age = Column(Integer, nullable=False)
    gender = Column(String(10), nullable=False)
    blood_group = Column(String(3), nullable=False)
    allergies = Column(JSON, nullable=False, default=list)
    medical_conditions = Column(JSON, nullable=False, default=list)
    medications = Column(JSON, nullable=False, default=list)
    emergency_contact = Column(JSON, nullable=True)
    risk_level = Column(String(10), nullable=False, default=RiskLevel.LOW.value)

    # AI-derived summary (written only by the analysis pipeline)
    has_ai_analysis = Column(Boolean, nullable=False, default=False)
    ai_summary = Column(Text, nullable=True)
    ai_risk_level = Column(String(10), nullable=False, default=RiskLevel.LOW.value)
    ai_key_issues = Column(JSON, nullable=False, default=list)
    ai_lifestyle_advice = Column(JSON, nullable=False, default=list)
    ai_analysis = Column(JSON, nullable=True)
    ai_updated_at = Column(DateTime, nullable=True)
    ai_last_updated_at = Column(DateTime, nullable=True)

    # Job state
    ai_gen_status = Column(String(10), nullable=False, default=AIGenStatus.PENDING.value)
    ai_retry_count = Column(Integer, nullable=False, default=0)
    ai_next_retry_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_patients_ai_retry", "ai_gen_status", "ai_next_retry_at"),
    )

    def __repr__(self) -> str:
        return f"<Patient id={self.id} ai_gen_status={self.ai_gen_status}>"


class PatientEditRequest(Base):
    """Profile changes proposed by hospital staff, pending admin approval."""

    __tablename__ = "patient_edit_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    patient_id = Column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_changes = Column(JSON, nullable=False, default=dict)
    status = Column(
        String(10),
        nullable=False,
        default=EditRequestStatus.PENDING.value,
        index=True,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    reviewed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<PatientEditRequest id={self.id} patient={self.patient_id} status={self.status}>"
