"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan)
and attached to ``app.state.changewatch`` for the route handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from changewatch.analyzer import GeminiAnalyzer
from changewatch.cache import Cache
from changewatch.fetcher import ChangelogFetcher
from changewatch.mailer import ResendMailer
from changewatch.monitor import MonitorService
from changewatch.pipeline import NotificationPipeline
from changewatch.preferences import Preferences
from changewatch.registry import SourceRegistry
from changewatch.scheduler import MonitorScheduler
from changewatch.tts import GeminiSpeech

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from changewatch.config import Settings


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    db: aiosqlite.Connection
    http_client: httpx.AsyncClient
    registry: SourceRegistry
    preferences: Preferences
    cache: Cache
    fetcher: ChangelogFetcher
    pipeline: NotificationPipeline
    scheduler: MonitorScheduler
    monitor: MonitorService


def build_app_state(
    settings: Settings, db: aiosqlite.Connection, http_client: httpx.AsyncClient
) -> AppState:
    """Wire every component around one database connection and one HTTP client."""
    registry = SourceRegistry(db)
    preferences = Preferences(db)
    cache = Cache(db)
    fetcher = ChangelogFetcher(http_client)
    mailer = ResendMailer(http_client, settings.email)
    pipeline = NotificationPipeline(
        registry=registry,
        preferences=preferences,
        cache=cache,
        fetcher=fetcher,
        analyzer=GeminiAnalyzer(http_client, settings.gemini),
        speech=GeminiSpeech(http_client, settings.gemini),
        mailer=mailer,
        default_voice=settings.monitor.default_voice,
    )
    scheduler = MonitorScheduler(pipeline.run_for_all_active_sources)
    monitor = MonitorService(
        registry=registry,
        preferences=preferences,
        fetcher=fetcher,
        pipeline=pipeline,
        scheduler=scheduler,
        mailer=mailer,
    )
    return AppState(
        settings=settings,
        db=db,
        http_client=http_client,
        registry=registry,
        preferences=preferences,
        cache=cache,
        fetcher=fetcher,
        pipeline=pipeline,
        scheduler=scheduler,
        monitor=monitor,
    )
