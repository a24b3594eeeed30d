"""
AI Service - Google Gemini Integration (google-genai AsyncClient)
Smart QR Health - AI Analysis Pipeline

The single boundary to the external model. Every call either returns a parsed
JSON object or raises AIServiceError; callers never see SDK exceptions.
"""

import re
import json
import time
import logging
import asyncio
from typing import Optional

from google import genai
from google.genai import types

from app.core.config import settings
from app.core.logging_config import RequestLogger

logger = logging.getLogger(__name__)
request_logger = RequestLogger(logger)


class AIServiceError(Exception):
    """The external AI call failed, timed out, or returned unusable output."""


# ── JSON extraction ───────────────────────────────────────────────
def _extract_json(raw: str) -> Optional[dict]:
    """3-pass JSON extraction from a model response."""
    if not raw:
        return None
    # Pass 1: direct parse
    try:
        parsed = json.loads(raw.strip())
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass
    # Pass 2: strip markdown fences
    cleaned = re.sub(r"```(?:json)?\s*|\s*```", "", raw, flags=re.IGNORECASE).strip()
    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass
    # Pass 3: extract first {...} block
    m = re.search(r"\{[\s\S]*\}", raw)
    if m:
        try:
            parsed = json.loads(m.group(0))
            return parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            pass
    logger.warning("JSON extraction failed. Preview: %.200s", raw)
    return None


# ── AI Service ────────────────────────────────────────────────────
class GeminiAIService:
    """Uses google-genai Client.aio for native async calls, no threading needed."""

    def __init__(self):
        self._client: Optional[genai.Client] = None
        self._model_name: str = settings.ai_model

    @property
    def model_name(self) -> str:
        return self._model_name

    def _ensure_initialized(self) -> None:
        """Create Client once. Raises ValueError if API key missing."""
        if self._client is not None:
            return
        api_key = settings.get_ai_api_key()
        self._client = genai.Client(api_key=api_key)
        self._model_name = settings.ai_model
        if self._model_name.startswith("models/"):
            self._model_name = self._model_name[len("models/"):]
        logger.info("Gemini client initialized, model: %s", self._model_name)

    # ── Public: structured JSON call ─────────────────────────────
    async def generate_json(
        self,
        prompt: str,
        system_instruction: str,
        attachment: Optional[bytes] = None,
        attachment_mime_type: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
    ) -> dict:
        """
        Send one request and return the parsed JSON object.

        `attachment` is passed inline (PDF document understanding or image
        vision) ahead of the text prompt.
        """
        try:
            self._ensure_initialized()
        except ValueError as e:
            raise AIServiceError(str(e)) from e

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=settings.ai_temperature,
            max_output_tokens=max_output_tokens or settings.ai_max_tokens,
            response_mime_type="application/json",
        )
        if attachment is not None:
            contents = [
                types.Part.from_bytes(data=attachment, mime_type=attachment_mime_type),
                prompt,
            ]
        else:
            contents = prompt

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model_name,
                    contents=contents,
                    config=config,
                ),
                timeout=settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            request_logger.log_ai_call(self._model_name, (time.monotonic() - start) * 1000, ok=False)
            raise AIServiceError(
                f"AI call timed out after {settings.ai_timeout_seconds:.0f}s"
            ) from e
        except Exception as e:
            request_logger.log_ai_call(self._model_name, (time.monotonic() - start) * 1000, ok=False)
            err = str(e) or repr(e)
            raise AIServiceError(f"{type(e).__name__}: {err}") from e

        raw = getattr(response, "text", "") or ""
        usage = getattr(response, "usage_metadata", None)
        tokens = getattr(usage, "total_token_count", None) if usage else None

        parsed = _extract_json(raw)
        request_logger.log_ai_call(
            self._model_name, (time.monotonic() - start) * 1000, ok=parsed is not None, tokens=tokens
        )
        if parsed is None:
            raise AIServiceError("AI response was not a valid JSON object")
        return parsed

    # ── Public: test connection ───────────────────────────────────
    async def test_connection(self) -> dict:
        try:
            self._ensure_initialized()
            logger.info("Testing Gemini connection with model=%s", self._model_name)
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model_name,
                    contents="Say hello in one sentence.",
                ),
                timeout=30.0,
            )
            reply = getattr(response, "text", "no text") or "no text"
            logger.info("Gemini test OK: %s", reply[:80])
            return {"status": "ok", "model": self._model_name, "response": reply[:300]}
        except ValueError as e:
            return {"status": "error", "error": str(e)}
        except Exception as e:
            err = str(e) or repr(e)
            logger.error("LLM test failed: %s: %s", type(e).__name__, err)
            return {"status": "error", "error": err}

    async def close(self) -> None:
        self._client = None
        logger.info("AI service closed")


# Singleton
ai_service = GeminiAIService()
