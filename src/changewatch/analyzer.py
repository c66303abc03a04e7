"""Changelog analysis via the Gemini ``generateContent`` REST endpoint."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

import httpx
import structlog
from pydantic import ValidationError

from changewatch.models.analysis import AnalysisResult

if TYPE_CHECKING:
    from changewatch.config import GeminiSettings

log = structlog.get_logger()

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_PROMPT_TEMPLATE = """Analyze this changelog and return JSON:
{{
  "tldr": "150-200 word summary",
  "categories": {{
    "critical_breaking_changes": [],
    "removals": [{{"feature": "", "severity": "", "why": ""}}],
    "major_features": [],
    "important_fixes": [],
    "new_slash_commands": [],
    "terminal_improvements": [],
    "api_changes": []
  }},
  "action_items": [],
  "sentiment": "positive|neutral|critical"
}}

Changelog:
{changelog}"""


def extract_json_object(text: str) -> dict | None:
    """Parse a JSON object from model output.

    Tries the whole text first, then the span from the first ``{`` to the
    last ``}`` for responses that wrap the payload in prose.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text)
        if match is None:
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def response_text(payload: dict) -> str | None:
    """Return ``candidates[0].content.parts[0].text`` or None."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None


class GeminiAnalyzer:
    """Summarizes changelog content into an AnalysisResult."""

    def __init__(self, client: httpx.AsyncClient, settings: GeminiSettings) -> None:
        self._client = client
        self._settings = settings

    async def analyze(self, content: str) -> AnalysisResult | None:
        """Return a structured summary, or None when unavailable or unparseable."""
        if not self._settings.api_key:
            log.info("analysis_skipped", reason="missing_api_key")
            return None

        url = f"{self._settings.base_url}/models/{self._settings.analysis_model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": _PROMPT_TEMPLATE.format(changelog=content)}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            response = await self._client.post(
                url, params={"key": self._settings.api_key}, json=body
            )
        except httpx.HTTPError as exc:
            log.warning("analysis_request_failed", error=str(exc))
            return None

        if not response.is_success:
            log.warning("analysis_request_failed", status_code=response.status_code)
            return None

        try:
            text = response_text(response.json())
        except ValueError:
            text = None
        if text is None:
            log.warning("analysis_response_empty")
            return None

        data = extract_json_object(text)
        if data is None:
            log.warning("analysis_response_unparseable", length=len(text))
            return None

        try:
            return AnalysisResult.model_validate(data)
        except ValidationError:
            log.warning("analysis_response_invalid", exc_info=True)
            return None
