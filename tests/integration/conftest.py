"""Integration test fixtures.

Provides a fully wired AppState with in-memory SQLite and a real httpx
client (outbound calls are intercepted with respx), plus an ASGI client
for the Starlette app. Store fixtures come from tests/conftest.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from changewatch.api import create_app
from changewatch.config import Settings
from changewatch.state import build_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import aiosqlite

    from changewatch.state import AppState


@pytest.fixture()
async def app_state(db: aiosqlite.Connection) -> AsyncIterator[AppState]:
    """Full AppState with test credentials for Gemini and Resend."""
    settings = Settings(
        gemini={"api_key": "test-gemini-key"},
        email={"resend_api_key": "test-resend-key", "notify_email": "me@example.com"},
    )
    async with httpx.AsyncClient() as http_client:
        state = build_app_state(settings, db, http_client)
        yield state
        await state.scheduler.shutdown()


@pytest.fixture()
async def client(app_state: AppState) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(app_state)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as ac:
        yield ac
