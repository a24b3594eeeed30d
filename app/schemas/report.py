"""
Pydantic Schemas - Report Request/Response Models
Smart QR Health - AI Analysis Pipeline
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime

from app.schemas.enums import ReportStatus, ReportType


# ── Requests ───────────────────────────────────────────────────────
class ReportUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    report_type: Optional[ReportType] = None
    report_date: Optional[datetime] = None
    report_file_url: Optional[str] = None


class OverallAnalysisRequest(BaseModel):
    patient_id: str


# ── Report Response ────────────────────────────────────────────────
class ReportResponse(BaseModel):
    """API response for a medical report and its AI analysis."""

    id: str
    patient_id: str
    title: str
    description: str = ""
    report_type: ReportType
    report_date: datetime
    report_file_url: str = ""
    status: ReportStatus

    ai_category: Optional[str] = None
    parameters: List[Dict[str, Any]] = []
    ai_summary: Optional[str] = None
    risk_level: Optional[str] = None
    ai_health_suggestions: List[str] = []
    ai_updated_at: Optional[datetime] = None
    error_message: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReportListResponse(BaseModel):
    items: List[ReportResponse]
    total: int


# ── Health Check ───────────────────────────────────────────────────
class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    retry_worker: str
    ai_configured: bool
    timestamp: datetime


# ── Error Response ─────────────────────────────────────────────────
class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
