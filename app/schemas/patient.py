"""
Pydantic Schemas - Patient Request/Response Models
Smart QR Health - AI Analysis Pipeline
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from app.core.config import settings
from app.schemas.enums import AIGenStatus, BloodGroup, EditRequestStatus, Gender, RiskLevel


class EmergencyContact(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(pattern=r"^[+]?[\d\s\-()]+$")
    email: Optional[str] = None


# ── Requests ───────────────────────────────────────────────────────
class PatientCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=r"^\S+@\S+\.\S+$")
    age: int = Field(ge=0, le=150)
    gender: Gender
    blood_group: BloodGroup
    allergies: List[str] = Field(default_factory=list)
    medical_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    emergency_contact: EmergencyContact
    risk_level: RiskLevel = RiskLevel.LOW


class PatientUpdate(BaseModel):
    """Partial profile update; unset fields are left untouched."""

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=r"^\S+@\S+\.\S+$")
    age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[Gender] = None
    blood_group: Optional[BloodGroup] = None
    allergies: Optional[List[str]] = None
    medical_conditions: Optional[List[str]] = None
    medications: Optional[List[str]] = None
    emergency_contact: Optional[EmergencyContact] = None
    risk_level: Optional[RiskLevel] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, mode="json")


# ── Responses ──────────────────────────────────────────────────────
class PatientResponse(BaseModel):
    id: str
    full_name: str
    email: Optional[str] = None
    age: int
    gender: str
    blood_group: str
    allergies: List[str] = []
    medical_conditions: List[str] = []
    medications: List[str] = []
    emergency_contact: Optional[Dict[str, Any]] = None
    risk_level: str

    has_ai_analysis: bool = False
    ai_summary: Optional[str] = None
    ai_risk_level: Optional[str] = None
    ai_key_issues: List[str] = []
    ai_lifestyle_advice: List[str] = []
    ai_gen_status: AIGenStatus = AIGenStatus.PENDING
    ai_last_updated_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PatientAISummaryResponse(BaseModel):
    """What the patient dashboard shows, including whether it may be out of date."""

    patient_id: str
    has_ai_analysis: bool
    ai_gen_status: AIGenStatus
    ai_summary: Optional[str] = None
    ai_risk_level: Optional[str] = None
    ai_key_issues: List[str] = []
    ai_lifestyle_advice: List[str] = []
    ai_analysis: Optional[Dict[str, Any]] = None
    last_successful_at: Optional[datetime] = None
    ai_retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    disclaimer: str = settings.disclaimer

    @computed_field
    @property
    def stale(self) -> bool:
        """An earlier summary exists but the latest refresh attempt failed."""
        return self.has_ai_analysis and self.ai_gen_status == AIGenStatus.FAILED

    @computed_field
    @property
    def message(self) -> Optional[str]:
        if not self.has_ai_analysis:
            return "No analysis available yet."
        if self.stale:
            if self.last_successful_at is None:
                return "A refresh of your analysis is currently failing."
            return (
                f"Showing the last successful analysis from "
                f"{self.last_successful_at:%Y-%m-%d %H:%M} UTC; a refresh is currently failing."
            )
        return None

    @classmethod
    def from_patient(cls, patient) -> "PatientAISummaryResponse":
        return cls(
            patient_id=patient.id,
            has_ai_analysis=patient.has_ai_analysis,
            ai_gen_status=patient.ai_gen_status,
            ai_summary=patient.ai_summary if patient.has_ai_analysis else None,
            ai_risk_level=patient.ai_risk_level if patient.has_ai_analysis else None,
            ai_key_issues=patient.ai_key_issues or [],
            ai_lifestyle_advice=patient.ai_lifestyle_advice or [],
            ai_analysis=patient.ai_analysis,
            last_successful_at=patient.ai_last_updated_at,
            ai_retry_count=patient.ai_retry_count,
            next_retry_at=patient.ai_next_retry_at,
        )


class JobResponse(BaseModel):
    patient_id: str
    ai_gen_status: Optional[AIGenStatus] = None
    message: str


# ── Edit Requests ──────────────────────────────────────────────────
class EditRequestResponse(BaseModel):
    id: str
    patient_id: str
    requested_changes: Dict[str, Any]
    status: EditRequestStatus
    created_at: datetime
    reviewed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
