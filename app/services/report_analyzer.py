"""
Report Analyzer
Smart QR Health - AI Analysis Pipeline

Analyzes a single uploaded report file (PDF, image or plain text) and
returns a tagged outcome: an analysis the model actually produced, or the
reason none is available.
"""

import os
import logging
from typing import List, Optional

import aiofiles
from pydantic import ValidationError

from app.core.config import settings
from app.schemas.analysis import ReportAnalysis, ReportAnalysisOutcome, ReportParameter
from app.schemas.enums import ParameterStatus
from app.services.ai_service import AIServiceError, GeminiAIService, ai_service
from app.utils.file_handler import PDF_MIME, TEXT_MIME, extract_text_from_txt

logger = logging.getLogger(__name__)

# ── Prompt ────────────────────────────────────────────────────────
REPORT_SYSTEM_PROMPT = """You are a medical report analysis AI. Analyze the medical report and extract:
1) reportType (CBC, Lipid, Thyroid, KFT, LFT, Sugar, etc.)
2) parameters: array of { name, value, unit, normalRange, status (LOW/NORMAL/HIGH) }
3) summary: 3-5 sentence patient-friendly summary
4) riskLevel: Low | Medium | High
5) lifestyleAdvice: array of 4-6 actionable recommendations

Return STRICT JSON only:
{
  "reportType": "...",
  "parameters": [{"name": "...", "value": 0, "unit": "mg/dL", "normalRange": "70-110", "status": "HIGH"}],
  "summary": "...",
  "riskLevel": "Low",
  "lifestyleAdvice": ["...", "..."]
}"""

ATTACHMENT_PROMPT = "Analyze the attached medical report and provide the analysis in the exact JSON format specified."

TEXT_PROMPT = """Analyze this medical report and provide the analysis in the exact JSON format specified.

REPORT CONTENT:
{text}"""


def derive_key_issues(parameters: List[ReportParameter]) -> List[str]:
    """Phrase every abnormal parameter as "<name> is <status>"."""
    return [
        f"{p.name} is {p.status.value}"
        for p in parameters
        if p.status is not None and p.status != ParameterStatus.NORMAL
    ]


class ReportAnalyzer:
    """Runs the AI analysis of one report file."""

    def __init__(self, ai: Optional[GeminiAIService] = None, max_text_chars: Optional[int] = None):
        self._ai = ai or ai_service
        self._max_text_chars = max_text_chars or settings.report_text_max_chars

    async def analyze(self, file_path: str, mime_type: Optional[str]) -> ReportAnalysisOutcome:
        """Never raises; every failure becomes ReportAnalysisOutcome.unavailable."""
        if not file_path or not os.path.exists(file_path):
            return ReportAnalysisOutcome.unavailable(f"Report file not found: {file_path}")

        is_image = bool(mime_type) and mime_type.startswith("image/")
        if mime_type not in (PDF_MIME, TEXT_MIME) and not is_image:
            return ReportAnalysisOutcome.unavailable(f"Unsupported report type: {mime_type}")

        try:
            async with aiofiles.open(file_path, "rb") as f:
                content = await f.read()

            if mime_type == TEXT_MIME:
                text = extract_text_from_txt(content)[: self._max_text_chars]
                if not text:
                    return ReportAnalysisOutcome.unavailable("Report file contains no text")
                raw = await self._ai.generate_json(
                    TEXT_PROMPT.format(text=text),
                    system_instruction=REPORT_SYSTEM_PROMPT,
                )
            else:
                logger.info("Analyzing %s report %s", mime_type, os.path.basename(file_path))
                raw = await self._ai.generate_json(
                    ATTACHMENT_PROMPT,
                    system_instruction=REPORT_SYSTEM_PROMPT,
                    attachment=content,
                    attachment_mime_type=mime_type,
                )

            analysis = ReportAnalysis.model_validate(raw)

        except AIServiceError as e:
            logger.error("Report analysis call failed: %s", e)
            return ReportAnalysisOutcome.unavailable(str(e))
        except ValidationError as e:
            logger.error("Invalid AI response structure: %s", e)
            return ReportAnalysisOutcome.unavailable(
                f"AI response did not match the report schema ({e.error_count()} error(s))"
            )
        except OSError as e:
            logger.error("Could not read report file %s: %s", file_path, e)
            return ReportAnalysisOutcome.unavailable(f"Could not read report file: {e}")

        logger.info(
            "Report analyzed: type=%s risk=%s parameters=%d",
            analysis.report_type, analysis.risk_level.value, len(analysis.parameters),
        )
        return ReportAnalysisOutcome.ok(analysis)
