"""
Force an AI summary refresh for one patient.

Usage:
  python scripts/force_ai_update.py patient@example.com

Runs the patient analysis job immediately, regardless of retry schedule, and
prints the resulting AI state.
"""

import os
import sys
import asyncio
import logging
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.logging_config import configure_logging
from app.database.session import AsyncSessionLocal, engine, init_db
from app.models.patient import Patient
from app.services.ai_service import ai_service
from app.services.job_processor import AIJobProcessor
from app.services.record_service import RecordService

logger = logging.getLogger("force_ai_update")


async def force_update(email: str) -> int:
    await init_db()

    async with AsyncSessionLocal() as session:
        patient = await RecordService.get_patient_by_email(session, email)
        if patient is None:
            logger.error("No patient with email %s", email)
            return 1
        patient_id = patient.id

    processor = AIJobProcessor(AsyncSessionLocal)
    status = await processor.process_patient_job(patient_id)

    async with AsyncSessionLocal() as session:
        patient = await session.get(Patient, patient_id)
        logger.info("Status:       %s", status.value if status else "skipped")
        logger.info("Risk level:   %s", patient.ai_risk_level)
        logger.info("Summary:      %s", patient.ai_summary)
        logger.info("Retry count:  %d", patient.ai_retry_count)
        if patient.ai_next_retry_at:
            logger.info("Next retry:   %s", patient.ai_next_retry_at.isoformat())

    await ai_service.close()
    await engine.dispose()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-run the AI summary job for one patient.")
    parser.add_argument("email", help="Email address of the patient")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(force_update(args.email)))


if __name__ == "__main__":
    main()
