"""
AI Job Processor
Smart QR Health - AI Analysis Pipeline

Orchestrates one end-to-end analysis attempt for a single patient:
1. Load patient + latest report with a file
2. Resolve the report to text
3. Call the Summary Generator (or the Report Analyzer for report jobs)
4. Persist the AI fields, or record the failure and schedule a retry

Failures are absorbed and recorded on the patient row (ai_gen_status,
ai_retry_count, ai_next_retry_at); nothing is raised to the caller.
"""

import time
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.logging_config import JobLogger
from app.models.patient import Patient
from app.models.report import Report
from app.schemas.analysis import PatientAISummary, ReportAnalysis
from app.schemas.enums import AIGenStatus, ReportStatus
from app.services.report_analyzer import ReportAnalyzer, derive_key_issues
from app.services.summary_generator import PatientProfile, SummaryGenerator
from app.utils.clock import utcnow
from app.utils.file_handler import detect_mime_type, load_report_text, resolve_upload_path

logger = logging.getLogger(__name__)
job_logger = JobLogger(logger)


class AIJobError(Exception):
    """The summary generator reported a failed attempt."""


# ── Backoff policy ────────────────────────────────────────────────
def backoff_delay(prior_retry_count: int, steps: Optional[List[int]] = None) -> timedelta:
    """
    Delay before the next attempt, keyed on the retry count *before* it is
    incremented. Steps are minutes; the last step repeats forever.
    Default table: 0 -> 2 min, 1 -> 5 min, >=2 -> 10 min.
    """
    steps = steps or settings.retry_backoff_minutes_list
    index = min(max(prior_retry_count or 0, 0), len(steps) - 1)
    return timedelta(minutes=steps[index])


def compute_next_retry_at(
    prior_retry_count: int,
    now: Optional[datetime] = None,
    steps: Optional[List[int]] = None,
) -> datetime:
    return (now or utcnow()) + backoff_delay(prior_retry_count, steps)


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


# ── Job Processor ─────────────────────────────────────────────────
class AIJobProcessor:
    """Runs patient and report analysis jobs against the database."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        summary_generator: Optional[SummaryGenerator] = None,
        report_analyzer: Optional[ReportAnalyzer] = None,
        uploads_dir: Optional[str] = None,
        backoff_steps: Optional[List[int]] = None,
    ):
        self._session_factory = session_factory
        self._summary_generator = summary_generator or SummaryGenerator()
        self._report_analyzer = report_analyzer or ReportAnalyzer(
            max_text_chars=settings.report_text_max_chars
        )
        self._uploads_dir = uploads_dir or settings.uploads_dir
        self._backoff_steps = backoff_steps
        self._locks: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def _patient_lock(self, patient_id: str):
        """At most one in-flight job per patient within this process."""
        entry = self._locks.get(patient_id)
        if entry is None:
            entry = self._locks[patient_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(patient_id, None)

    # ── Public: patient job ──────────────────────────────────────
    async def process_patient_job(self, patient_id: str) -> Optional[AIGenStatus]:
        """
        Recompute a patient's aggregate AI summary.
        Returns the resulting status, or None if the patient does not exist.
        """
        async with self._patient_lock(patient_id):
            return await self._run_patient_job(patient_id)

    async def _run_patient_job(self, patient_id: str) -> Optional[AIGenStatus]:
        logger.info("Processing AI job for patient %s", patient_id)
        wall_start = time.monotonic()

        try:
            async with self._session_factory() as session:
                patient = await session.get(Patient, patient_id)
                if patient is None:
                    logger.info("Patient %s not found, AI job skipped", patient_id)
                    return None
                profile = PatientProfile.from_patient(patient)
                latest = await self._latest_report_with_file(session, patient_id)
                file_url = latest.report_file_url if latest is not None else None

            report_text = None
            if file_url:
                file_path = resolve_upload_path(file_url, self._uploads_dir)
                report_text = await asyncio.to_thread(load_report_text, file_path)

            result = await self._summary_generator.generate(profile, report_text)
            if not result.success or result.data is None:
                raise AIJobError(result.error or "Unknown AI error")

            await self._save_summary(patient_id, result.data)

        except Exception as e:
            await self._record_failure(patient_id, str(e) or repr(e))
            return AIGenStatus.FAILED

        job_logger.log_success(patient_id, "profile", (time.monotonic() - wall_start) * 1000)
        return AIGenStatus.SUCCESS

    # ── Public: report job ───────────────────────────────────────
    async def process_report_job(self, report_id: str) -> Optional[AIGenStatus]:
        """
        Analyze one report, write the result onto the report and then onto
        the owning patient's aggregate. When no analysis is available the
        report is marked FAILED and the patient job runs instead.
        """
        try:
            async with self._session_factory() as session:
                report = await session.get(Report, report_id)
                if report is None:
                    logger.info("Report %s not found, analysis skipped", report_id)
                    return None
                patient_id = report.patient_id
                file_url = report.report_file_url
        except Exception:
            logger.error("Could not load report %s", report_id, exc_info=True)
            return None

        async with self._patient_lock(patient_id):
            return await self._run_report_job(report_id, patient_id, file_url)

    async def _run_report_job(
        self, report_id: str, patient_id: str, file_url: str
    ) -> Optional[AIGenStatus]:
        if not file_url:
            logger.info("Report %s has no file; refreshing profile summary", report_id)
            return await self._run_patient_job(patient_id)

        wall_start = time.monotonic()
        try:
            file_path = resolve_upload_path(file_url, self._uploads_dir)
            outcome = await self._report_analyzer.analyze(file_path, detect_mime_type(file_path))
        except Exception as e:
            error = str(e) or repr(e)
            logger.error("Analysis of report %s crashed: %s", report_id, error, exc_info=True)
            await self._mark_report_failed(report_id, error)
            await self._record_failure(patient_id, error)
            return AIGenStatus.FAILED

        if not outcome.available:
            logger.warning("Analysis unavailable for report %s: %s", report_id, outcome.reason)
            await self._mark_report_failed(report_id, outcome.reason)
            return await self._run_patient_job(patient_id)

        try:
            # Report first: it is cheap to redo, the aggregate depends on it
            await self._save_report_analysis(report_id, outcome.analysis)
            await self._save_report_aggregate(patient_id, outcome.analysis)
        except Exception as e:
            logger.error("Saving analysis of report %s failed: %s", report_id, e, exc_info=True)
            await self._record_failure(patient_id, str(e) or repr(e))
            return AIGenStatus.FAILED

        job_logger.log_success(
            patient_id, f"report:{report_id}", (time.monotonic() - wall_start) * 1000
        )
        return AIGenStatus.SUCCESS

    async def analyze_latest_report(self, patient_id: str) -> Optional[AIGenStatus]:
        """Re-analyze the newest report with a file, or the profile if there is none."""
        report_id = None
        try:
            async with self._session_factory() as session:
                latest = await self._latest_report_with_file(session, patient_id)
                report_id = latest.id if latest is not None else None
        except Exception:
            logger.error("Could not look up latest report for %s", patient_id, exc_info=True)

        if report_id is None:
            return await self.process_patient_job(patient_id)
        return await self.process_report_job(report_id)

    # ── Queries ──────────────────────────────────────────────────
    @staticmethod
    async def _latest_report_with_file(
        session: AsyncSession, patient_id: str
    ) -> Optional[Report]:
        result = await session.execute(
            select(Report)
            .where(Report.patient_id == patient_id, Report.report_file_url != "")
            .order_by(desc(Report.report_date))
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ── Writes ───────────────────────────────────────────────────
    async def _save_summary(self, patient_id: str, summary: PatientAISummary) -> None:
        now = utcnow()
        async with self._session_factory() as session:
            await session.execute(
                update(Patient)
                .where(Patient.id == patient_id)
                .values(
                    ai_summary=summary.ai_summary,
                    ai_risk_level=summary.ai_risk_level.value,
                    ai_key_issues=summary.ai_key_issues,
                    ai_lifestyle_advice=summary.ai_lifestyle_advice,
                    ai_analysis=summary.ai_analysis.model_dump(by_alias=True, mode="json"),
                    **self._success_state(now),
                )
            )
            await session.commit()

    async def _save_report_analysis(self, report_id: str, analysis: ReportAnalysis) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Report)
                .where(Report.id == report_id)
                .values(
                    ai_raw=analysis.model_dump(by_alias=True, mode="json"),
                    ai_category=analysis.report_type,
                    ai_summary=analysis.summary,
                    risk_level=analysis.risk_level.value,
                    parameters=[
                        p.model_dump(by_alias=True, mode="json") for p in analysis.parameters
                    ],
                    ai_health_suggestions=analysis.lifestyle_advice,
                    status=ReportStatus.ANALYZED.value,
                    error_message=None,
                    ai_updated_at=utcnow(),
                )
            )
            await session.commit()

    async def _save_report_aggregate(self, patient_id: str, analysis: ReportAnalysis) -> None:
        now = utcnow()
        async with self._session_factory() as session:
            await session.execute(
                update(Patient)
                .where(Patient.id == patient_id)
                .values(
                    ai_summary=analysis.summary,
                    ai_risk_level=analysis.risk_level.value,
                    ai_key_issues=derive_key_issues(analysis.parameters),
                    ai_lifestyle_advice=analysis.lifestyle_advice,
                    ai_analysis=analysis.model_dump(by_alias=True, mode="json"),
                    **self._success_state(now),
                )
            )
            await session.commit()

    @staticmethod
    def _success_state(now: datetime) -> dict:
        return {
            "has_ai_analysis": True,
            "ai_updated_at": now,
            "ai_last_updated_at": now,
            "ai_gen_status": AIGenStatus.SUCCESS.value,
            "ai_next_retry_at": None,
            "ai_retry_count": 0,
        }

    async def _mark_report_failed(self, report_id: str, reason: Optional[str]) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(Report)
                    .where(Report.id == report_id)
                    .values(status=ReportStatus.FAILED.value, error_message=reason)
                )
                await session.commit()
        except Exception:
            logger.error("Could not mark report %s as failed", report_id, exc_info=True)

    async def _record_failure(self, patient_id: str, error: str) -> None:
        """FAILED + retry count incremented + next retry from the pre-increment count."""
        try:
            async with self._session_factory() as session:
                row = (
                    await session.execute(
                        select(Patient.ai_retry_count).where(Patient.id == patient_id)
                    )
                ).first()
                if row is None:
                    logger.warning("AI job for %s failed and patient no longer exists: %s", patient_id, error)
                    return

                prior_count = row.ai_retry_count or 0
                next_retry_at = compute_next_retry_at(prior_count, steps=self._backoff_steps)
                await session.execute(
                    update(Patient)
                    .where(Patient.id == patient_id)
                    .values(
                        ai_gen_status=AIGenStatus.FAILED.value,
                        ai_retry_count=prior_count + 1,
                        ai_next_retry_at=next_retry_at,
                    )
                )
                await session.commit()
        except Exception:
            logger.error(
                "Could not record AI job failure for patient %s (%s)", patient_id, error,
                exc_info=True,
            )
            return

        job_logger.log_failure(patient_id, error, prior_count + 1, next_retry_at)
