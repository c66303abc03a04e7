"""Monitoring service: the operations the driving layer (HTTP API) calls.

Receives its collaborators at construction and holds no web framework
imports. api.py handles request parsing and response shaping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from changewatch.errors import (
    FetchError,
    InvalidInputError,
    NotConfiguredError,
    NotFoundError,
    ParseError,
)
from changewatch.mailer import email_subject, render_email_html
from changewatch.models.monitor import MonitorStatus, UrlTestResult
from changewatch.models.sources import SourceUpdateInput
from changewatch.parser import parse_latest_version, require_latest_version
from changewatch.preferences import EMAIL_NOTIFICATIONS_ENABLED, MONITORING_KEYS
from changewatch.scheduler import derive_monitoring_state

if TYPE_CHECKING:
    from collections.abc import Mapping

    from changewatch.config import MonitorSettings
    from changewatch.models.analysis import AnalysisResult
    from changewatch.models.sources import Source, VersionRecord
    from changewatch.pipeline import CheckOutcome, NotificationPipeline
    from changewatch.preferences import Preferences
    from changewatch.protocols import FetcherProtocol, MailerProtocol
    from changewatch.registry import SourceRegistry
    from changewatch.scheduler import MonitorScheduler

log = structlog.get_logger()

PREVIEW_LENGTH = 500
MAX_HISTORY_LIMIT = 500


class MonitorService:
    def __init__(
        self,
        *,
        registry: SourceRegistry,
        preferences: Preferences,
        fetcher: FetcherProtocol,
        pipeline: NotificationPipeline,
        scheduler: MonitorScheduler,
        mailer: MailerProtocol,
    ) -> None:
        self._registry = registry
        self._preferences = preferences
        self._fetcher = fetcher
        self._pipeline = pipeline
        self._scheduler = scheduler
        self._mailer = mailer

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def trigger_check(self) -> dict[str, CheckOutcome]:
        """Check all active sources now and wait for the result."""
        return await self._pipeline.run_for_all_active_sources()

    async def trigger_check_for_source(self, source_id: str) -> CheckOutcome:
        source = await self._registry.get(source_id)
        return await self._pipeline.check_source(source)

    async def notify_latest(
        self, source_id: str | None = None, voice: str | None = None
    ) -> tuple[Source, str, CheckOutcome]:
        """Analyze and email a source's current latest version on demand.

        Does not read or write detection history. Uses the first active
        source when ``source_id`` is None.
        """
        self._require_mailer()
        if source_id is not None:
            source = await self._registry.get(source_id)
        else:
            active = await self._registry.list_active()
            if not active:
                raise NotFoundError("No active sources configured")
            source = active[0]

        markdown = await self._fetcher.fetch(source.url)
        entry = require_latest_version(markdown, source.url)
        log.info("notify_latest_started", source_id=source.id, version=entry.version)
        outcome = await self._pipeline.deliver(source, entry, claim=False, voice=voice)
        return source, entry.version, outcome

    async def send_analysis(self, analysis: AnalysisResult) -> bool:
        """Email an analysis supplied by the caller, without audio or history."""
        self._require_mailer()
        sent = await self._mailer.send(
            self._mailer.default_recipient,
            email_subject(analysis),
            render_email_html(analysis, has_audio=False),
        )
        log.info("analysis_email_requested", version=analysis.version, sent=sent)
        return sent

    def _require_mailer(self) -> None:
        if not self._mailer.configured:
            raise NotConfiguredError(
                "Email configuration missing",
                suggestion="Set CHANGEWATCH__EMAIL__RESEND_API_KEY and "
                "CHANGEWATCH__EMAIL__NOTIFY_EMAIL.",
            )

    # ------------------------------------------------------------------
    # Status and history
    # ------------------------------------------------------------------

    async def get_status(self) -> MonitorStatus:
        state = derive_monitoring_state(await self._preferences.all())
        return MonitorStatus(
            enabled=await self._preferences.get(EMAIL_NOTIFICATIONS_ENABLED) == "true",
            interval_ms=state.interval_ms,
            last_known_version=await self._registry.last_known_version(),
            is_running=self._scheduler.is_running,
            schedule_expression=self._scheduler.expression,
        )

    async def list_history(self, limit: int = 20) -> list[VersionRecord]:
        if limit < 1:
            raise InvalidInputError("limit must be a positive integer")
        return await self._registry.list_history(min(limit, MAX_HISTORY_LIMIT))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def update_setting(self, key: str, value: str) -> None:
        """Persist a setting; monitoring keys re-derive the scheduler state."""
        await self._preferences.set(key, value)
        if key in MONITORING_KEYS:
            await self.restore()

    async def update_settings(self, values: Mapping[str, str]) -> None:
        """Persist several settings, then re-derive the scheduler state once."""
        for key, value in values.items():
            await self._preferences.set(key, value)
        if MONITORING_KEYS.intersection(values):
            await self.restore()

    async def restore(self) -> None:
        """Bring the scheduler in line with the persisted settings."""
        state = derive_monitoring_state(await self._preferences.all())
        log.info(
            "monitor_state_derived", should_run=state.should_run, interval_ms=state.interval_ms
        )
        self._scheduler.apply(state)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def seed_default_source(self, settings: MonitorSettings) -> Source | None:
        """Register the configured default source when no sources exist yet."""
        if not settings.seed_default_source or await self._registry.count() > 0:
            return None
        source = await self._registry.create(
            settings.default_source_name, settings.default_source_url
        )
        log.info("default_source_seeded", source_id=source.id, url=source.url)
        return source

    async def preview_source(self, source_id: str) -> tuple[Source, str]:
        """Fetch the raw changelog markdown for a stored source."""
        source = await self._registry.get(source_id)
        return source, await self._fetcher.fetch(source.url)

    async def test_url(self, url: str) -> UrlTestResult:
        """Check whether ``url`` serves a parseable changelog. Invalid URLs raise."""
        try:
            SourceUpdateInput(url=url)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

        try:
            markdown = await self._fetcher.fetch(url)
        except FetchError as exc:
            return UrlTestResult(valid=False, message=f"Failed to fetch URL: {exc.message}")

        entry = parse_latest_version(markdown)
        if entry is None:
            return UrlTestResult(
                valid=False,
                message=f"Could not parse a version from this URL. {ParseError(url).suggestion}",
            )

        preview = entry.content[:PREVIEW_LENGTH]
        if len(entry.content) > PREVIEW_LENGTH:
            preview += "..."
        return UrlTestResult(valid=True, latest_version=entry.version, preview=preview)
