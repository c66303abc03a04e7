"""Speech synthesis via the Gemini TTS model. Returns raw PCM; see audio.py for WAV wrapping."""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from changewatch.config import GeminiSettings

log = structlog.get_logger()


class GeminiSpeech:
    def __init__(self, client: httpx.AsyncClient, settings: GeminiSettings) -> None:
        self._client = client
        self._settings = settings

    async def synthesize(self, text: str, voice: str) -> bytes | None:
        """Return 16-bit 24 kHz mono PCM for ``text``, or None on any failure."""
        if not self._settings.api_key:
            log.info("synthesis_skipped", reason="missing_api_key")
            return None

        url = f"{self._settings.base_url}/models/{self._settings.tts_model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": f"Read this changelog summary:\n\n{text}"}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
            },
        }
        try:
            response = await self._client.post(
                url, params={"key": self._settings.api_key}, json=body
            )
        except httpx.HTTPError as exc:
            log.warning("synthesis_request_failed", error=str(exc))
            return None

        if not response.is_success:
            log.warning("synthesis_request_failed", status_code=response.status_code)
            return None

        try:
            encoded = response.json()["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
            pcm = base64.b64decode(encoded, validate=True)
        except (ValueError, KeyError, IndexError, TypeError):
            log.warning("synthesis_response_invalid", exc_info=True)
            return None
        return pcm or None
