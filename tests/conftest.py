"""Shared test fixtures for the changewatch test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from changewatch.cache import Cache
from changewatch.db import init_db
from changewatch.models.analysis import AnalysisCategories, AnalysisResult, Removal
from changewatch.preferences import Preferences
from changewatch.registry import SourceRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

CHANGELOG_URL = "https://example.com/CHANGELOG.md"

SAMPLE_CHANGELOG = """# Changelog

## 2.0.74

- Added `/terminal-setup` command
- Fixed a crash when resuming sessions

```bash
## not a header inside a fence? still captured
```

## 2.0.73

- Older entry
"""


@pytest.fixture()
async def db() -> AsyncIterator[aiosqlite.Connection]:
    """In-memory SQLite with the full schema applied."""
    async with aiosqlite.connect(":memory:") as conn:
        await init_db(conn)
        yield conn


@pytest.fixture()
def registry(db: aiosqlite.Connection) -> SourceRegistry:
    return SourceRegistry(db)


@pytest.fixture()
def cache(db: aiosqlite.Connection) -> Cache:
    return Cache(db)


@pytest.fixture()
def preferences(db: aiosqlite.Connection) -> Preferences:
    return Preferences(db)


@pytest.fixture()
def sample_changelog() -> str:
    return SAMPLE_CHANGELOG


@pytest.fixture()
def sample_analysis() -> AnalysisResult:
    return AnalysisResult(
        version="Claude Code 2.0.74",
        tldr="A small release with a new terminal setup command.",
        categories=AnalysisCategories(
            critical_breaking_changes=["Config format changed"],
            removals=[Removal(feature="legacy mode", severity="low", why="unused")],
            major_features=["/terminal-setup command"],
            important_fixes=["Session resume crash"],
            new_slash_commands=["/terminal-setup"],
        ),
        action_items=["Re-run setup"],
        sentiment="positive",
    )
