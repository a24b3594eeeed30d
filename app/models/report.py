"""
SQLAlchemy ORM Models - Medical Reports
Smart QR Health - AI Analysis Pipeline
"""

import uuid
from sqlalchemy import (
    Column, String, Text, DateTime, JSON, ForeignKey, Index,
)

from app.database.session import Base
from app.schemas.enums import ReportStatus, ReportType
from app.utils.clock import utcnow


class Report(Base):
    """An uploaded medical document and its single-report AI analysis."""

    __tablename__ = "reports"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )
    patient_id = Column(
        String(36),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Document metadata
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    report_type = Column(String(20), nullable=False, default=ReportType.OTHER.value)
    report_date = Column(DateTime, nullable=False, default=utcnow)
    report_file_url = Column(String(512), nullable=False, default="")

    # AI analysis
    ai_category = Column(String(100), nullable=True)
    parameters = Column(JSON, nullable=False, default=list)
    ai_summary = Column(Text, nullable=True)
    risk_level = Column(String(10), nullable=True)
    ai_health_suggestions = Column(JSON, nullable=False, default=list)
    ai_raw = Column(JSON, nullable=True)
    ai_updated_at = Column(DateTime, nullable=True)
    status = Column(String(10), nullable=False, default=ReportStatus.PENDING.value)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_reports_patient_date", "patient_id", "report_date"),
    )

    def __repr__(self) -> str:
        return f"<Report id={self.id} patient={self.patient_id} status={self.status}>"
