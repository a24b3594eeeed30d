"""
AI Output Contracts
Smart QR Health - AI Analysis Pipeline

Pydantic models the external AI response must conform to. Field aliases
match the camelCase keys the model is instructed to emit; anything that does
not validate is treated as a failed call, never as a partial result.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.enums import ParameterStatus, RiskLevel


def _normalize_risk(v):
    if isinstance(v, str):
        return v.strip().capitalize()
    return v


# ── Parameters table ──────────────────────────────────────────────
class ReportParameter(BaseModel):
    """One measured value extracted from a report."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    value: Optional[Union[int, float, str]] = None
    unit: Optional[str] = None
    normal_range: Optional[str] = Field(default=None, alias="normalRange")
    status: Optional[ParameterStatus] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or None
        return v


# ── Patient aggregate summary ─────────────────────────────────────
class SummaryAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_type: str = Field(alias="reportType")
    parameters: List[ReportParameter] = Field(default_factory=list)
    notes: Optional[str] = ""


class PatientAISummary(BaseModel):
    """Schema of the Summary Generator response."""

    model_config = ConfigDict(populate_by_name=True)

    ai_summary: str = Field(alias="aiSummary", min_length=1)
    ai_risk_level: RiskLevel = Field(alias="aiRiskLevel")
    ai_key_issues: List[str] = Field(alias="aiKeyIssues")
    ai_lifestyle_advice: List[str] = Field(alias="aiLifestyleAdvice")
    ai_analysis: SummaryAnalysis = Field(alias="aiAnalysis")
    ai_updated_at: Optional[datetime] = Field(default=None, alias="aiUpdatedAt")

    @field_validator("ai_risk_level", mode="before")
    @classmethod
    def normalize_risk(cls, v):
        return _normalize_risk(v)

    @field_validator("ai_updated_at", mode="before")
    @classmethod
    def discard_unparsable_timestamp(cls, v):
        # Replaced by the server clock; junk here must not fail the response
        if isinstance(v, datetime):
            return v
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.strip().replace("Z", "+00:00"))
            except ValueError:
                return None
        return None


class SummaryResult(BaseModel):
    """Outcome of one Summary Generator call."""

    success: bool
    data: Optional[PatientAISummary] = None
    error: Optional[str] = None


# ── Single report analysis ────────────────────────────────────────
class ReportAnalysis(BaseModel):
    """Schema of the Report Analyzer response."""

    model_config = ConfigDict(populate_by_name=True)

    report_type: str = Field(alias="reportType", min_length=1)
    parameters: List[ReportParameter] = Field(default_factory=list)
    summary: str = Field(min_length=1)
    risk_level: RiskLevel = Field(alias="riskLevel")
    lifestyle_advice: List[str] = Field(default_factory=list, alias="lifestyleAdvice")

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk(cls, v):
        return _normalize_risk(v)


class ReportAnalysisOutcome(BaseModel):
    """
    Tagged result of a report analysis: either an analysis the model actually
    produced, or the reason none is available. Callers must check `available`
    before treating anything as clinical information.
    """

    available: bool
    analysis: Optional[ReportAnalysis] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, analysis: ReportAnalysis) -> "ReportAnalysisOutcome":
        return cls(available=True, analysis=analysis)

    @classmethod
    def unavailable(cls, reason: str) -> "ReportAnalysisOutcome":
        return cls(available=False, reason=reason)
