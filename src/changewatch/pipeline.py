"""Per-source notification pipeline.

One check cycle runs these stages in order and stops at the first one that
does not produce a result:

  fetch → parse → compare → record → gate → analyze → synthesize → email → mark

Every stage boundary is inside ``check_source``'s error boundary, so one
source's failure never aborts the multi-source batch.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections import defaultdict
from typing import TYPE_CHECKING, Literal

import structlog

from changewatch.audio import pcm_to_wav
from changewatch.errors import FetchError, ParseError
from changewatch.mailer import EmailAttachment, email_subject, render_email_html
from changewatch.parser import require_latest_version
from changewatch.preferences import EMAIL_NOTIFICATIONS_ENABLED, NOTIFICATION_VOICE

if TYPE_CHECKING:
    from changewatch.cache import Cache
    from changewatch.models.analysis import AnalysisResult
    from changewatch.models.sources import ParsedChangelogEntry, Source
    from changewatch.preferences import Preferences
    from changewatch.protocols import (
        AnalyzerProtocol,
        FetcherProtocol,
        MailerProtocol,
        SpeechProtocol,
    )
    from changewatch.registry import SourceRegistry

log = structlog.get_logger()

CheckOutcome = Literal[
    "fetch_failed",
    "parse_failed",
    "unchanged",
    "recorded",  # new version stored, notifications disabled
    "analysis_unavailable",
    "already_notified",
    "send_failed",
    "notified",
    "error",
]

DEFAULT_VOICE = "Charon"


def attachment_filename(source_name: str, version: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", source_name.lower()).strip("-") or "changelog"
    return f"{slug}-{version}-summary.wav"


def text_fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class NotificationPipeline:
    """Drives detection and notification for monitored sources."""

    def __init__(
        self,
        *,
        registry: SourceRegistry,
        preferences: Preferences,
        cache: Cache,
        fetcher: FetcherProtocol,
        analyzer: AnalyzerProtocol,
        speech: SpeechProtocol,
        mailer: MailerProtocol,
        default_voice: str = DEFAULT_VOICE,
    ) -> None:
        self._registry = registry
        self._preferences = preferences
        self._cache = cache
        self._fetcher = fetcher
        self._analyzer = analyzer
        self._speech = speech
        self._mailer = mailer
        self._default_voice = default_voice
        # Scheduler ticks and on-demand checks for the same source run one at a time.
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def run_for_all_active_sources(self) -> dict[str, CheckOutcome]:
        """Check every active source sequentially. Never raises."""
        try:
            sources = await self._registry.list_active()
        except Exception:
            log.error("monitor_list_sources_failed", exc_info=True)
            return {}

        if not sources:
            log.info("monitor_no_active_sources")
            return {}

        log.info("monitor_check_started", source_count=len(sources))
        outcomes: dict[str, CheckOutcome] = {}
        for source in sources:
            outcomes[source.id] = await self.check_source(source)
        log.info("monitor_check_finished", outcomes=outcomes)
        return outcomes

    async def check_source(self, source: Source) -> CheckOutcome:
        """Run one check cycle for ``source``. Never raises."""
        source_log = log.bind(source_id=source.id, source_name=source.name)
        async with self._locks[source.id]:
            try:
                return await self._check_source(source, source_log)
            except Exception:
                source_log.error("source_check_failed", exc_info=True)
                return "error"

    async def _check_source(
        self, source: Source, source_log: structlog.typing.FilteringBoundLogger
    ) -> CheckOutcome:
        source_log.info("source_check_started", url=source.url)

        try:
            markdown = await self._fetcher.fetch(source.url)
        except FetchError as exc:
            source_log.warning(
                "source_fetch_failed", status_code=exc.status_code, message=exc.message
            )
            return "fetch_failed"

        try:
            entry = require_latest_version(markdown, source.url)
        except ParseError as exc:
            source_log.warning("source_parse_failed", message=exc.message)
            return "parse_failed"

        last_known = await self._registry.last_known_version(source.id)
        if last_known == entry.version:
            source_log.info("source_unchanged", version=entry.version)
            return "unchanged"

        source_log.info("new_version_detected", version=entry.version, previous=last_known)
        await self._registry.record_version(entry.version, source.id)

        if await self._preferences.get(EMAIL_NOTIFICATIONS_ENABLED) != "true":
            source_log.info("notification_skipped", reason="notifications_disabled")
            return "recorded"

        return await self.deliver(source, entry, claim=True)

    async def deliver(
        self,
        source: Source,
        entry: ParsedChangelogEntry,
        *,
        claim: bool,
        voice: str | None = None,
    ) -> CheckOutcome:
        """Analyze, synthesize and email one version block.

        With ``claim=True`` the history record is claimed before sending so at
        most one run emails a given (version, source). The claim is released
        unless the send succeeds, cancellation included. Exceptions propagate
        to the caller.
        """
        source_log = log.bind(source_id=source.id, source_name=source.name, version=entry.version)

        analysis = await self._analysis_for(source, entry)
        if analysis is None:
            source_log.warning("analysis_unavailable")
            return "analysis_unavailable"

        if voice is None:
            voice = await self._preferences.get(NOTIFICATION_VOICE) or self._default_voice
        audio = await self._audio_for(analysis.tldr, voice, source_log)

        if claim and not await self._registry.claim_notification(entry.version, source.id):
            source_log.info("notification_skipped", reason="already_notified")
            return "already_notified"

        attachment = (
            EmailAttachment(attachment_filename(source.name, entry.version), audio)
            if audio is not None
            else None
        )
        sent = False
        try:
            sent = await self._mailer.send(
                self._mailer.default_recipient,
                email_subject(analysis),
                render_email_html(analysis, has_audio=attachment is not None),
                attachment,
            )
        finally:
            # Also runs on cancellation during shutdown.
            if claim and not sent:
                await self._registry.release_notification(entry.version, source.id)

        if not sent:
            source_log.warning("send_failed")
            return "send_failed"

        source_log.info("notification_sent", with_audio=attachment is not None)
        return "notified"

    async def _analysis_for(
        self, source: Source, entry: ParsedChangelogEntry
    ) -> AnalysisResult | None:
        key = f"{source.name} {entry.version}"
        cached = await self._cache.get_analysis(key)
        if cached is not None:
            log.debug("analysis_cache_hit", key=key)
            return cached.analysis

        analysis = await self._analyzer.analyze(entry.content)
        if analysis is None:
            return None
        analysis = analysis.model_copy(update={"version": key})
        await self._cache.set_analysis(key, analysis)
        return analysis

    async def _audio_for(
        self, text: str, voice: str, source_log: structlog.typing.FilteringBoundLogger
    ) -> bytes | None:
        """Return WAV audio for ``text``. Failures are logged and yield None."""
        text_hash = text_fingerprint(text)
        try:
            cached = await self._cache.get_audio(text_hash, voice)
            if cached is not None:
                source_log.debug("audio_cache_hit", voice=voice)
                return cached.audio_data

            pcm = await self._speech.synthesize(text, voice)
            if pcm is None:
                source_log.warning("synthesis_unavailable", voice=voice)
                return None

            wav = pcm_to_wav(pcm)
            await self._cache.set_audio(text_hash, voice, wav)
            return wav
        except Exception:
            source_log.warning("synthesis_unavailable", voice=voice, exc_info=True)
            return None
