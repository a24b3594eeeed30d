import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.schemas.enums import AIGenStatus
from app.services.retry_worker import RetryWorker
from app.utils.clock import utcnow
from tests.helpers import load_patient


@pytest.fixture
def worker(processor, session_factory):
    return RetryWorker(
        processor, session_factory,
        interval_seconds=10, startup_delay_seconds=0, batch_size=5,
    )


class TestScan:

    @pytest.mark.asyncio
    async def test_only_due_failed_patients_are_selected(self, worker, make_patient):
        now = utcnow()
        due = await make_patient(ai_gen_status="FAILED", ai_next_retry_at=now - timedelta(minutes=1))
        await make_patient(ai_gen_status="FAILED", ai_next_retry_at=now + timedelta(minutes=5))
        await make_patient(ai_gen_status="SUCCESS", ai_next_retry_at=None)
        await make_patient(ai_gen_status="PENDING", ai_next_retry_at=now - timedelta(minutes=1))

        assert await worker.find_due_patients(now) == [due.id]

    @pytest.mark.asyncio
    async def test_batch_is_capped_and_oldest_first(self, worker, make_patient):
        now = utcnow()
        patients = []
        for minutes_ago in range(10, 0, -1):
            patients.append(
                await make_patient(
                    ai_gen_status="FAILED",
                    ai_next_retry_at=now - timedelta(minutes=minutes_ago),
                )
            )

        due = await worker.find_due_patients(now)

        assert due == [p.id for p in patients[:5]]

    @pytest.mark.asyncio
    async def test_scan_reprocesses_and_clears_retry(self, worker, session_factory, make_patient):
        patient = await make_patient(
            ai_gen_status="FAILED", ai_retry_count=2,
            ai_next_retry_at=utcnow() - timedelta(seconds=1),
        )

        assert await worker.run_scan() == 1

        saved = await load_patient(session_factory, patient.id)
        assert saved.ai_gen_status == AIGenStatus.SUCCESS.value
        assert saved.ai_retry_count == 0
        assert saved.ai_next_retry_at is None

    @pytest.mark.asyncio
    async def test_scan_error_is_swallowed(self, session_factory):
        processor = AsyncMock()
        broken = RetryWorker(processor, session_factory, batch_size=5)
        broken.find_due_patients = AsyncMock(side_effect=RuntimeError("db gone"))

        assert await broken.run_scan() == 0
        processor.process_patient_job.assert_not_called()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, worker):
        worker.run_scan = AsyncMock(return_value=0)

        worker.start()
        worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert worker.run_scan.await_count == 1

    @pytest.mark.asyncio
    async def test_stop_ends_the_loop(self, worker):
        worker.run_scan = AsyncMock(return_value=0)

        worker.start()
        assert worker.is_running is True
        await worker.stop()

        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_stop_before_start_is_safe(self, worker):
        await worker.stop()
        assert worker.is_running is False
