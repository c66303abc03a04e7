"""Changelog fetcher.

All outbound HTTP (changelogs, Gemini, Resend) goes through a single
httpx.AsyncClient created at startup. The lifespan owns the client lifecycle;
components receive it via constructor injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from changewatch.errors import FetchError

if TYPE_CHECKING:
    from changewatch.config import FetcherSettings

log = structlog.get_logger()


def build_http_client(settings: FetcherSettings | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    timeout = settings.timeout_seconds if settings is not None else 30.0
    user_agent = settings.user_agent if settings is not None else "changewatch/1.0"
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


class ChangelogFetcher:
    """Retrieves changelog documents. No retries; the pipeline owns that decision."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(self, url: str) -> str:
        """Return the response body as text.

        Raises FetchError on network errors and non-2xx responses.
        """
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise FetchError(url, detail=str(exc)) from exc

        if not response.is_success:
            raise FetchError(url, status_code=response.status_code)

        log.info(
            "fetch_complete",
            url=url,
            status_code=response.status_code,
            content_length=len(response.text),
        )
        return response.text
