import os
import tempfile

# Environment must be in place before app modules read settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["MEDICAL_AI_API_KEY"] = "test-key"
os.environ["RETRY_WORKER_ENABLED"] = "false"
os.environ["RATE_LIMIT_REQUESTS"] = "1000"
os.environ["UPLOADS_DIR"] = tempfile.mkdtemp(prefix="sqh-uploads-")

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.config import settings
from app.database.session import Base, build_engine, build_session_factory, get_db
from app.models.patient import Patient
from app.models.report import Report
from app.services.job_processor import AIJobProcessor
from app.services.report_analyzer import ReportAnalyzer
from app.services.retry_worker import RetryWorker
from app.services.summary_generator import SummaryGenerator
from tests.helpers import summary_payload


@pytest_asyncio.fixture
async def engine():
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def fake_ai():
    ai = AsyncMock()
    ai.generate_json = AsyncMock(return_value=summary_payload())
    return ai


@pytest.fixture
def uploads_dir():
    return settings.uploads_dir


@pytest.fixture
def processor(session_factory, fake_ai, uploads_dir):
    return AIJobProcessor(
        session_factory,
        summary_generator=SummaryGenerator(fake_ai),
        report_analyzer=ReportAnalyzer(fake_ai),
        uploads_dir=uploads_dir,
    )


@pytest.fixture
def make_patient(session_factory):
    async def _make(**overrides) -> Patient:
        values = {
            "full_name": "Asha Rao",
            "email": None,
            "age": 52,
            "gender": "Female",
            "blood_group": "B+",
            "allergies": ["Penicillin"],
            "medical_conditions": ["Type 2 diabetes"],
            "medications": ["Metformin"],
            "emergency_contact": {"name": "Ravi Rao", "phone": "+91 98450 00000"},
            "risk_level": "Medium",
        }
        values.update(overrides)
        async with session_factory() as session:
            patient = Patient(**values)
            session.add(patient)
            await session.commit()
            await session.refresh(patient)
            return patient

    return _make


@pytest.fixture
def make_report(session_factory):
    async def _make(patient_id: str, **overrides) -> Report:
        values = {
            "patient_id": patient_id,
            "title": "Blood sugar panel",
            "report_type": "Lab",
            "report_file_url": "",
        }
        values.update(overrides)
        async with session_factory() as session:
            report = Report(**values)
            session.add(report)
            await session.commit()
            await session.refresh(report)
            return report

    return _make


@pytest.fixture
def write_upload(uploads_dir):
    """Write a file into the uploads dir and return its stored URL."""
    def _write(name: str, content: bytes) -> str:
        with open(os.path.join(uploads_dir, name), "wb") as f:
            f.write(content)
        return f"/uploads/{name}"

    return _write


@pytest_asyncio.fixture
async def client(session_factory, processor):
    from app.main import app

    app.state.job_processor = processor
    app.state.retry_worker = RetryWorker(processor, session_factory)

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
