"""Notification email rendering and delivery via the Resend REST API."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from html import escape
from typing import TYPE_CHECKING

import httpx
import structlog

if TYPE_CHECKING:
    from changewatch.config import EmailSettings
    from changewatch.models.analysis import AnalysisResult

log = structlog.get_logger()

_SENTIMENT_MARKERS = {"positive": "🎉", "critical": "⚠️", "neutral": "📋"}

_STYLE = """
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
    h1 { color: #d97706; }
    h2 { color: #374151; margin-top: 24px; }
    .tldr { background: #fef3c7; padding: 16px; border-radius: 8px; margin-bottom: 24px; }
    .section { margin-bottom: 20px; }
    .breaking { border-left: 4px solid #ef4444; background: #fef2f2; padding: 12px; border-radius: 0 8px 8px 0; }
    .feature { border-left: 4px solid #14b8a6; padding-left: 12px; }
    .fix { border-left: 4px solid #6b7280; padding-left: 12px; }
    ul { padding-left: 20px; }
    li { margin-bottom: 8px; }
    .audio-note { background: #e0f2fe; padding: 12px; border-radius: 8px; margin-top: 16px; }
    .footer { margin-top: 32px; padding-top: 16px; border-top: 1px solid #e5e7eb; font-size: 14px; color: #6b7280; }
"""  # noqa: E501


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes


def email_subject(analysis: AnalysisResult) -> str:
    return f"🆕 {analysis.version} Released"


def _section(title: str, items: list[str], css_class: str = "") -> str:
    if not items:
        return ""
    rows = "".join(f"<li>{item}</li>" for item in items)
    classes = f"section {css_class}".strip()
    return f'\n  <div class="{classes}">\n    <h2>{title}</h2>\n    <ul>{rows}</ul>\n  </div>\n'


def render_email_html(analysis: AnalysisResult, *, has_audio: bool = True) -> str:
    """Render an analysis into a standalone HTML document. All model text is escaped."""
    marker = _SENTIMENT_MARKERS.get(analysis.sentiment, "📋")
    categories = analysis.categories

    parts = [
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '  <meta charset="utf-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <style>{_STYLE}  </style>\n</head>\n<body>\n"
        f"  <h1>{marker} {escape(analysis.version)} Released</h1>\n"
        f'  <div class="tldr">\n    <strong>TL;DR:</strong> {escape(analysis.tldr)}\n  </div>\n',
        _section(
            "🚨 Critical Breaking Changes",
            [escape(item) for item in categories.critical_breaking_changes],
            "breaking",
        ),
        _section(
            "⚠️ Removals",
            [
                f"<strong>{escape(r.feature)}</strong> ({escape(r.severity)}): {escape(r.why)}"
                for r in categories.removals
            ],
        ),
        _section(
            "✨ Major Features", [escape(item) for item in categories.major_features], "feature"
        ),
        _section("🔧 Important Fixes", [escape(item) for item in categories.important_fixes], "fix"),
        _section("⌨️ New Slash Commands", [escape(item) for item in categories.new_slash_commands]),
        _section("📋 Action Items", [escape(item) for item in analysis.action_items]),
    ]
    if has_audio:
        parts.append(
            '  <div class="audio-note">\n'
            "    🎧 <strong>Audio summary attached!</strong> "
            "Listen to the changelog summary on the go.\n  </div>\n"
        )
    parts.append(
        '  <div class="footer">\n'
        "    <p>This email was automatically sent by Changelog Tracker</p>\n"
        "  </div>\n</body>\n</html>\n"
    )
    return "".join(parts)


class ResendMailer:
    """Sends HTML email with an optional attachment. Never raises on delivery failure."""

    def __init__(self, client: httpx.AsyncClient, settings: EmailSettings) -> None:
        self._client = client
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.resend_api_key and self._settings.notify_email)

    @property
    def default_recipient(self) -> str:
        return self._settings.notify_email

    async def send(
        self,
        to_address: str,
        subject: str,
        html_body: str,
        attachment: EmailAttachment | None = None,
    ) -> bool:
        if not self._settings.resend_api_key or not to_address:
            log.warning("email_not_configured")
            return False

        payload: dict[str, object] = {
            "from": self._settings.from_address,
            "to": [to_address],
            "subject": subject,
            "html": html_body,
        }
        if attachment is not None:
            payload["attachments"] = [
                {
                    "filename": attachment.filename,
                    "content": base64.b64encode(attachment.content).decode("ascii"),
                }
            ]

        try:
            response = await self._client.post(
                f"{self._settings.base_url}/emails",
                headers={"Authorization": f"Bearer {self._settings.resend_api_key}"},
                json=payload,
            )
        except httpx.HTTPError as exc:
            log.warning("email_send_failed", error=str(exc))
            return False

        if not response.is_success:
            log.warning("email_send_failed", status_code=response.status_code, body=response.text)
            return False

        log.info("email_sent", to=to_address, subject=subject)
        return True
