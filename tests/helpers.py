"""Payload builders and lookups shared by the test modules."""

from app.models.patient import Patient
from app.models.report import Report


def summary_payload(**overrides):
    payload = {
        "aiSummary": "Your blood sugar is slightly high but otherwise you are doing well.",
        "aiRiskLevel": "Medium",
        "aiKeyIssues": ["Type 2 diabetes"],
        "aiLifestyleAdvice": ["Walk 30 minutes a day", "Limit sugary drinks"],
        "aiAnalysis": {
            "reportType": "General Profile",
            "parameters": [],
            "notes": "Based on profile only.",
        },
        "aiUpdatedAt": "2001-01-01T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def report_payload(**overrides):
    payload = {
        "reportType": "Sugar",
        "parameters": [
            {"name": "Fasting Glucose", "value": 132, "unit": "mg/dL", "normalRange": "70-110", "status": "HIGH"},
            {"name": "HbA1c", "value": 5.4, "unit": "%", "normalRange": "4-5.6", "status": "NORMAL"},
        ],
        "summary": "Your fasting glucose is above the normal range.",
        "riskLevel": "high",
        "lifestyleAdvice": ["Reduce refined carbohydrates", "Recheck in 3 months"],
    }
    payload.update(overrides)
    return payload


async def load_patient(session_factory, patient_id: str) -> Patient:
    async with session_factory() as session:
        return await session.get(Patient, patient_id)


async def load_report(session_factory, report_id: str) -> Report:
    async with session_factory() as session:
        return await session.get(Report, report_id)
