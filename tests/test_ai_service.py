import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.core.config import settings
from app.services.ai_service import AIServiceError, GeminiAIService, _extract_json


def _service(text=None, side_effect=None):
    """A service whose SDK client returns `text` (or raises `side_effect`)."""
    service = GeminiAIService()
    generate_content = AsyncMock(
        return_value=SimpleNamespace(text=text, usage_metadata=None),
        side_effect=side_effect,
    )
    service._client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(
        generate_content=generate_content,
    )))
    return service, generate_content


class TestExtractJson:

    def test_plain_object(self):
        assert _extract_json('{"summary": "ok"}') == {"summary": "ok"}

    def test_fenced_object(self):
        assert _extract_json('```json\n{"riskLevel": "Low"}\n```') == {"riskLevel": "Low"}

    def test_object_inside_prose(self):
        raw = 'Here is the analysis you asked for: {"riskLevel": "High"} Hope this helps.'
        assert _extract_json(raw) == {"riskLevel": "High"}

    def test_array_is_rejected(self):
        assert _extract_json('[{"riskLevel": "High"}]') is None

    def test_garbage(self):
        assert _extract_json("I cannot help with that.") is None
        assert _extract_json("") is None


class TestGenerateJson:

    @pytest.mark.asyncio
    async def test_fenced_response_is_parsed(self):
        service, call = _service('```json\n{"aiSummary": "fine"}\n```')

        result = await service.generate_json("prompt", system_instruction="system")

        assert result == {"aiSummary": "fine"}
        assert call.await_args.kwargs["contents"] == "prompt"

    @pytest.mark.asyncio
    async def test_json_embedded_in_prose(self):
        service, _ = _service('Sure! {"aiSummary": "fine", "aiRiskLevel": "Low"} Anything else?')
        result = await service.generate_json("prompt", system_instruction="system")
        assert result["aiRiskLevel"] == "Low"

    @pytest.mark.asyncio
    async def test_non_json_text_raises(self):
        service, _ = _service("The report looks normal to me.")
        with pytest.raises(AIServiceError, match="not a valid JSON object"):
            await service.generate_json("prompt", system_instruction="system")

    @pytest.mark.asyncio
    async def test_json_array_raises(self):
        service, _ = _service('[{"aiSummary": "fine"}]')
        with pytest.raises(AIServiceError):
            await service.generate_json("prompt", system_instruction="system")

    @pytest.mark.asyncio
    async def test_empty_response_raises(self):
        service, _ = _service(None)
        with pytest.raises(AIServiceError):
            await service.generate_json("prompt", system_instruction="system")

    @pytest.mark.asyncio
    async def test_sdk_error_is_wrapped(self):
        service, _ = _service(side_effect=RuntimeError("429 RESOURCE_EXHAUSTED"))
        with pytest.raises(AIServiceError, match="RESOURCE_EXHAUSTED"):
            await service.generate_json("prompt", system_instruction="system")

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, monkeypatch):
        monkeypatch.setattr(settings, "ai_timeout_seconds", 0.05)

        async def hang(**kwargs):
            await asyncio.sleep(1)

        service, _ = _service(side_effect=hang)
        with pytest.raises(AIServiceError, match="timed out"):
            await service.generate_json("prompt", system_instruction="system")

    @pytest.mark.asyncio
    async def test_attachment_goes_before_prompt(self):
        service, call = _service('{"summary": "ok"}')

        await service.generate_json(
            "analyze this", system_instruction="system",
            attachment=b"%PDF-1.4", attachment_mime_type="application/pdf",
        )

        contents = call.await_args.kwargs["contents"]
        assert len(contents) == 2
        assert contents[1] == "analyze this"

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "medical_ai_api_key", "")
        monkeypatch.delenv("MEDICAL_AI_API_KEY", raising=False)
        service = GeminiAIService()

        with pytest.raises(AIServiceError, match="MEDICAL_AI_API_KEY"):
            await service.generate_json("prompt", system_instruction="system")
