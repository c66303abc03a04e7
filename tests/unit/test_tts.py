"""Unit tests for changewatch.tts."""

from __future__ import annotations

import base64
import json

import httpx
import respx

from changewatch.config import GeminiSettings
from changewatch.tts import GeminiSpeech

TTS_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-2.5-flash-preview-tts:generateContent"
)


def _audio_response(data: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={"candidates": [{"content": {"parts": [{"inlineData": {"data": data}}]}}]},
    )


class TestGeminiSpeech:
    async def test_returns_decoded_pcm(self) -> None:
        pcm = b"\x01\x00\x02\x00"
        with respx.mock:
            route = respx.post(TTS_URL).mock(
                return_value=_audio_response(base64.b64encode(pcm).decode())
            )
            async with httpx.AsyncClient() as client:
                speech = GeminiSpeech(client, GeminiSettings(api_key="k"))
                result = await speech.synthesize("Hello there", "Kore")

            assert result == pcm
            body = json.loads(route.calls.last.request.content)
            assert body["generationConfig"]["responseModalities"] == ["AUDIO"]
            voice = body["generationConfig"]["speechConfig"]["voiceConfig"]
            assert voice["prebuiltVoiceConfig"]["voiceName"] == "Kore"
            assert body["contents"][0]["parts"][0]["text"].endswith("Hello there")

    async def test_missing_api_key(self) -> None:
        async with httpx.AsyncClient() as client:
            assert await GeminiSpeech(client, GeminiSettings()).synthesize("x", "Charon") is None

    async def test_http_error(self) -> None:
        with respx.mock:
            respx.post(TTS_URL).mock(return_value=httpx.Response(429))
            async with httpx.AsyncClient() as client:
                speech = GeminiSpeech(client, GeminiSettings(api_key="k"))
                assert await speech.synthesize("x", "Charon") is None

    async def test_missing_audio_part(self) -> None:
        with respx.mock:
            respx.post(TTS_URL).mock(
                return_value=httpx.Response(200, json={"candidates": [{"content": {"parts": []}}]})
            )
            async with httpx.AsyncClient() as client:
                speech = GeminiSpeech(client, GeminiSettings(api_key="k"))
                assert await speech.synthesize("x", "Charon") is None

    async def test_invalid_base64(self) -> None:
        with respx.mock:
            respx.post(TTS_URL).mock(return_value=_audio_response("@@not-base64@@"))
            async with httpx.AsyncClient() as client:
                speech = GeminiSpeech(client, GeminiSettings(api_key="k"))
                assert await speech.synthesize("x", "Charon") is None

    async def test_empty_audio(self) -> None:
        with respx.mock:
            respx.post(TTS_URL).mock(return_value=_audio_response(""))
            async with httpx.AsyncClient() as client:
                speech = GeminiSpeech(client, GeminiSettings(api_key="k"))
                assert await speech.synthesize("x", "Charon") is None
