import pytest

from app.api.middleware.rate_limiter import RateLimitMiddleware, is_rate_limited_path
from app.services.ai_service import AIServiceError
from tests.helpers import load_patient, load_report, report_payload

PATIENT = {
    "full_name": "Asha Rao",
    "email": "Asha.Rao@Example.com",
    "age": 52,
    "gender": "Female",
    "blood_group": "B+",
    "allergies": ["Penicillin"],
    "medical_conditions": ["Type 2 diabetes"],
    "medications": ["Metformin"],
    "emergency_contact": {"name": "Ravi Rao", "phone": "+91 98450 00000"},
}


class TestPatients:

    @pytest.mark.asyncio
    async def test_create_runs_ai_job(self, client):
        response = await client.post("/api/v1/patients", json=PATIENT)

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "asha.rao@example.com"
        assert body["has_ai_analysis"] is True
        assert body["ai_gen_status"] == "SUCCESS"

    @pytest.mark.asyncio
    async def test_create_with_ai_down_still_succeeds(self, client, fake_ai):
        fake_ai.generate_json.side_effect = AIServiceError("down")

        response = await client.post("/api/v1/patients", json=PATIENT)

        assert response.status_code == 201
        body = response.json()
        assert body["ai_gen_status"] == "FAILED"
        assert body["has_ai_analysis"] is False

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, client):
        assert (await client.post("/api/v1/patients", json=PATIENT)).status_code == 201
        response = await client.post("/api/v1/patients", json=PATIENT)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client):
        response = await client.post("/api/v1/patients", json={**PATIENT, "age": 200})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_patient_404(self, client):
        assert (await client.get("/api/v1/patients/nope")).status_code == 404
        assert (await client.get("/api/v1/patients/nope/ai-summary")).status_code == 404

    @pytest.mark.asyncio
    async def test_update_reruns_job(self, client, fake_ai):
        created = (await client.post("/api/v1/patients", json=PATIENT)).json()
        calls_before = fake_ai.generate_json.await_count

        response = await client.put(
            f"/api/v1/patients/{created['id']}", json={"medications": ["Metformin", "Atorvastatin"]}
        )

        assert response.status_code == 200
        assert response.json()["medications"] == ["Metformin", "Atorvastatin"]
        assert fake_ai.generate_json.await_count == calls_before + 1


class TestAISummary:

    @pytest.mark.asyncio
    async def test_never_analyzed_message(self, client, make_patient):
        patient = await make_patient()

        body = (await client.get(f"/api/v1/patients/{patient.id}/ai-summary")).json()

        assert body["has_ai_analysis"] is False
        assert body["stale"] is False
        assert body["message"] == "No analysis available yet."
        assert body["disclaimer"]

    @pytest.mark.asyncio
    async def test_stale_after_failed_refresh(self, client, fake_ai):
        created = (await client.post("/api/v1/patients", json=PATIENT)).json()
        fake_ai.generate_json.side_effect = AIServiceError("quota")

        refresh = await client.post(f"/api/v1/patients/{created['id']}/ai-refresh")
        assert refresh.status_code == 200
        assert refresh.json()["ai_gen_status"] == "FAILED"

        body = (await client.get(f"/api/v1/patients/{created['id']}/ai-summary")).json()
        assert body["stale"] is True
        assert body["ai_summary"]
        assert body["ai_retry_count"] == 1
        assert body["next_retry_at"] is not None
        assert "currently failing" in body["message"]


class TestEditRequests:

    @pytest.mark.asyncio
    async def test_approve_applies_changes(self, client, session_factory, make_patient):
        patient = await make_patient()
        created = await client.post(
            f"/api/v1/patients/{patient.id}/edit-requests", json={"allergies": ["Sulfa"]}
        )
        assert created.status_code == 202
        request_id = created.json()["id"]

        pending = (await client.get("/api/v1/admin/edit-requests")).json()
        assert [r["id"] for r in pending] == [request_id]

        approved = await client.post(f"/api/v1/admin/edit-requests/{request_id}/approve")
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"

        saved = await load_patient(session_factory, patient.id)
        assert saved.allergies == ["Sulfa"]
        assert saved.has_ai_analysis is True
        assert (await client.get("/api/v1/admin/edit-requests")).json() == []

    @pytest.mark.asyncio
    async def test_reject_leaves_patient_untouched(self, client, session_factory, make_patient):
        patient = await make_patient()
        request_id = (
            await client.post(f"/api/v1/patients/{patient.id}/edit-requests", json={"age": 60})
        ).json()["id"]

        rejected = await client.post(f"/api/v1/admin/edit-requests/{request_id}/reject")
        assert rejected.json()["status"] == "REJECTED"
        assert (await load_patient(session_factory, patient.id)).age == 52

        again = await client.post(f"/api/v1/admin/edit-requests/{request_id}/approve")
        assert again.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_edit_request_rejected(self, client, make_patient):
        patient = await make_patient()
        response = await client.post(f"/api/v1/patients/{patient.id}/edit-requests", json={})
        assert response.status_code == 400


class TestReports:

    @pytest.mark.asyncio
    async def test_upload_analyzes_in_background(self, client, session_factory, make_patient, fake_ai):
        patient = await make_patient()
        fake_ai.generate_json.return_value = report_payload()

        response = await client.post(
            "/api/v1/reports/upload",
            data={"patient_id": patient.id, "title": "Sugar panel", "report_type": "Lab"},
            files={"file": ("sugar.txt", b"Fasting glucose 132 mg/dL", "text/plain")},
        )

        assert response.status_code == 201
        report_id = response.json()["id"]
        assert response.json()["report_file_url"].startswith("/uploads/")

        saved = await load_report(session_factory, report_id)
        assert saved.status == "ANALYZED"
        listing = (await client.get(f"/api/v1/patients/{patient.id}/reports")).json()
        assert listing["total"] == 1
        assert listing["items"][0]["ai_category"] == "Sugar"

    @pytest.mark.asyncio
    async def test_upload_rejects_unknown_extension(self, client, make_patient):
        patient = await make_patient()
        response = await client.post(
            "/api/v1/reports/upload",
            data={"patient_id": patient.id, "title": "Notes"},
            files={"file": ("notes.docx", b"PK..", "application/octet-stream")},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_upload_for_unknown_patient(self, client):
        response = await client.post(
            "/api/v1/reports/upload",
            data={"patient_id": "nope", "title": "Sugar panel"},
            files={"file": ("sugar.txt", b"Glucose 90", "text/plain")},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_update_delete(self, client, make_patient, make_report):
        patient = await make_patient()
        report = await make_report(patient.id)

        assert (await client.get(f"/api/v1/reports/{report.id}")).status_code == 200

        updated = await client.put(f"/api/v1/reports/{report.id}", json={"title": "Renamed"})
        assert updated.status_code == 200
        assert updated.json()["title"] == "Renamed"

        assert (await client.delete(f"/api/v1/reports/{report.id}")).status_code == 204
        assert (await client.get(f"/api/v1/reports/{report.id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_overall_analysis(self, client, make_patient):
        patient = await make_patient()
        response = await client.post(
            "/api/v1/reports/overall-analysis", json={"patient_id": patient.id}
        )
        assert response.status_code == 200
        assert response.json()["ai_gen_status"] == "SUCCESS"


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["retry_worker"] == "disabled"
        assert body["ai_configured"] is True
        assert "X-Request-ID" in response.headers


class TestRateLimit:

    @pytest.mark.parametrize(
        "method, path, limited",
        [
            ("POST", "/api/v1/reports/upload", True),
            ("POST", "/api/v1/patients/abc/ai-refresh", True),
            ("POST", "/api/v1/reports/overall-analysis", True),
            ("GET", "/api/v1/reports/abc", False),
            ("POST", "/api/v1/patients", False),
        ],
    )
    def test_limited_paths(self, method, path, limited):
        assert is_rate_limited_path(method, path) is limited

    @pytest.mark.asyncio
    async def test_requests_over_limit_get_429(self):
        from fastapi import FastAPI
        from httpx import ASGITransport, AsyncClient

        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, max_requests=2, window_seconds=60)

        @app.post("/api/v1/reports/overall-analysis")
        async def analysis():
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            codes = [
                (await ac.post("/api/v1/reports/overall-analysis")).status_code for _ in range(3)
            ]

        assert codes == [200, 200, 429]

    def test_idle_clients_are_forgotten(self):
        from fastapi import FastAPI

        limiter = RateLimitMiddleware(FastAPI(), max_requests=2, window_seconds=60)
        limiter._windows["10.0.0.1"].append(1000.0)
        limiter._windows["10.0.0.2"].append(1050.0)

        limiter.sweep(now=1070.0)

        assert list(limiter._windows) == ["10.0.0.2"]
        assert len(limiter._windows["10.0.0.2"]) == 1
