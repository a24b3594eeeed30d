"""
AI Retry Worker
Smart QR Health - AI Analysis Pipeline

Periodically re-submits patients whose last AI job failed and whose
scheduled retry time has passed. One instance per process, owned by the
application lifespan: start() is idempotent, stop() waits for any scan in
flight and releases the timer task.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.patient import Patient
from app.schemas.enums import AIGenStatus
from app.services.job_processor import AIJobProcessor
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class RetryWorker:
    """Serial, batch-capped scanner for due AI job retries."""

    def __init__(
        self,
        processor: AIJobProcessor,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: Optional[float] = None,
        startup_delay_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self._processor = processor
        self._session_factory = session_factory
        self.interval_seconds = (
            settings.retry_worker_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.startup_delay_seconds = (
            settings.retry_worker_startup_delay_seconds
            if startup_delay_seconds is None
            else startup_delay_seconds
        )
        self.batch_size = batch_size or settings.retry_worker_batch_size
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic scan. No-op if already running."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="ai-retry-worker")
        logger.info(
            "AI retry worker started (every %.0fs, batch of %d)",
            self.interval_seconds, self.batch_size,
        )

    async def stop(self) -> None:
        """Signal the loop to exit and wait for the current scan to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop_event = None
        logger.info("AI retry worker stopped")

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for `delay` seconds; True if stop() was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> None:
        # Let storage connections settle after startup
        if await self._wait_or_stop(self.startup_delay_seconds):
            return
        while True:
            await self.run_scan()
            if await self._wait_or_stop(self.interval_seconds):
                return

    async def find_due_patients(self, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Patient.id)
                .where(
                    Patient.ai_gen_status == AIGenStatus.FAILED.value,
                    Patient.ai_next_retry_at <= now,
                )
                .order_by(Patient.ai_next_retry_at)
                .limit(self.batch_size)
            )
            return list(result.scalars().all())

    async def run_scan(self, now: Optional[datetime] = None) -> int:
        """
        One tick: re-process up to `batch_size` due patients, one at a time.
        Returns how many were processed. Scan errors are logged, not raised.
        """
        try:
            candidates = await self.find_due_patients(now)
            if candidates:
                logger.info("AI retry worker found %d candidate(s) for retry", len(candidates))
            for patient_id in candidates:
                logger.info("Re-processing patient %s", patient_id)
                await self._processor.process_patient_job(patient_id)
            return len(candidates)
        except Exception as e:
            logger.error("AI retry worker scan failed: %s", e, exc_info=True)
            return 0
