"""
Summary Generator
Smart QR Health - AI Analysis Pipeline

Turns a patient profile (and optionally the text of their latest report) into
the structured, patient-friendly health summary shown on the dashboard.
Pure over its inputs plus one AI call; never touches storage.
"""

import json
import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.schemas.analysis import PatientAISummary, SummaryResult
from app.services.ai_service import AIServiceError, GeminiAIService, ai_service
from app.utils.clock import utcnow
from app.utils.file_handler import NO_REPORT_TEXT

logger = logging.getLogger(__name__)

# ── Prompt ────────────────────────────────────────────────────────
SUMMARY_SYSTEM_PROMPT = """You are Smart QR Health's clinical assistant AI. You will receive a JSON object containing one patient's data and possibly the extracted text of their medical report. Analyze the data and RETURN ONLY ONE JSON OBJECT that EXACTLY MATCHES the schema below.

OUTPUT SCHEMA (must match exactly):
{
  "aiSummary": "<2-4 sentence patient-friendly summary>",
  "aiRiskLevel": "Low | Medium | High",
  "aiKeyIssues": ["<string>", "..."],
  "aiLifestyleAdvice": ["<string>", "..."],
  "aiAnalysis": {
    "reportType": "<string or 'General Profile'>",
    "parameters": [
      {
        "name": "<string>",
        "value": "<string|number>",
        "unit": "<string>",
        "normalRange": "<string>",
        "status": "LOW | NORMAL | HIGH"
      }
    ],
    "notes": "<string>"
  },
  "aiUpdatedAt": "<ISO8601 timestamp>"
}

RULES:
- If a medical report IS provided, base your analysis primarily on that.
- If NO medical report is provided, you MUST generate the analysis from the patient's PROFILE (age, gender, conditions, medications, allergies). Never answer "Unavailable".
- If the patient has no specific conditions, medications or reports, give general healthy lifestyle advice for their age and gender group.
- aiSummary must be patient-friendly, simple English.
- aiKeyIssues lists abnormal values (status other than NORMAL) or known conditions and allergies.
- aiLifestyleAdvice items are short, actionable and patient-facing.
- If you cannot confidently produce specific parameters, return an empty list for "parameters"."""

SUMMARY_USER_PROMPT = """PATIENT DATA (JSON):
{patient_json}

REPORT CONTENT:
{report_content}

Now analyze and return ONLY the JSON object in the exact schema above."""

NONE_SENTINEL = "none"


def clean_list(items: Optional[Iterable]) -> List[str]:
    """Drop blank entries and the "None" placeholder staff type into forms."""
    if not items:
        return []
    cleaned = []
    for item in items:
        if not isinstance(item, str):
            continue
        value = item.strip()
        if value and value.lower() != NONE_SENTINEL:
            cleaned.append(value)
    return cleaned


class PatientProfile(BaseModel):
    """Snapshot of the profile fields the model is allowed to see."""

    name: str
    age: int
    gender: str
    blood_group: str
    allergies: List[str] = []
    conditions: List[str] = []
    medications: List[str] = []
    risk_level: str
    emergency_contact: str = "Missing"

    @classmethod
    def from_patient(cls, patient) -> "PatientProfile":
        return cls(
            name=patient.full_name,
            age=patient.age,
            gender=patient.gender,
            blood_group=patient.blood_group,
            allergies=clean_list(patient.allergies),
            conditions=clean_list(patient.medical_conditions),
            medications=clean_list(patient.medications),
            risk_level=patient.risk_level,
            emergency_contact="Present" if patient.emergency_contact else "Missing",
        )

    def to_prompt_json(self) -> str:
        return json.dumps(
            {
                "name": self.name,
                "age": self.age,
                "gender": self.gender,
                "bloodGroup": self.blood_group,
                "allergies": self.allergies,
                "conditions": self.conditions,
                "medications": self.medications,
                "riskLevel": self.risk_level,
                "emergencyContact": self.emergency_contact,
            },
            indent=2,
        )


class SummaryGenerator:
    """Generates a patient's aggregate AI summary."""

    def __init__(self, ai: Optional[GeminiAIService] = None, max_report_chars: Optional[int] = None):
        self._ai = ai or ai_service
        self._max_report_chars = max_report_chars or settings.report_text_max_chars

    def build_prompt(self, profile: PatientProfile, report_text: Optional[str] = None) -> str:
        if report_text and report_text.strip():
            report_content = report_text[: self._max_report_chars]
        else:
            report_content = NO_REPORT_TEXT
        return SUMMARY_USER_PROMPT.format(
            patient_json=profile.to_prompt_json(),
            report_content=report_content,
        )

    async def generate(
        self, profile: PatientProfile, report_text: Optional[str] = None
    ) -> SummaryResult:
        """
        Never raises. Returns success=False for call errors, timeouts,
        unparsable output and schema violations alike.
        """
        logger.info("Generating AI summary for %s", profile.name)
        prompt = self.build_prompt(profile, report_text)

        try:
            raw = await self._ai.generate_json(prompt, system_instruction=SUMMARY_SYSTEM_PROMPT)
            summary = PatientAISummary.model_validate(raw)
        except AIServiceError as e:
            logger.error("AI summary call failed: %s", e)
            return SummaryResult(success=False, error=str(e))
        except ValidationError as e:
            logger.error("AI summary did not match schema: %s", e)
            return SummaryResult(
                success=False,
                error=f"AI response did not match the summary schema ({e.error_count()} error(s))",
            )
        except Exception as e:
            logger.error("Unexpected AI summary error: %s", e, exc_info=True)
            return SummaryResult(success=False, error=str(e) or repr(e))

        # The model's own timestamp is not trusted
        summary = summary.model_copy(update={"ai_updated_at": utcnow()})
        return SummaryResult(success=True, data=summary)
