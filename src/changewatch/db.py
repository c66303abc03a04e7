"""SQLite schema and connection setup."""

from __future__ import annotations

from pathlib import Path

import aiosqlite
import structlog

log = structlog.get_logger()

_CREATE_SOURCES_TABLE = """
CREATE TABLE IF NOT EXISTS sources (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    url             TEXT NOT NULL UNIQUE,
    is_active       INTEGER NOT NULL DEFAULT 1,
    last_version    TEXT,
    last_checked_at TEXT,
    created_at      TEXT NOT NULL
)
"""

_CREATE_HISTORY_TABLE = """
CREATE TABLE IF NOT EXISTS version_history (
    version     TEXT NOT NULL,
    source_id   TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    detected_at TEXT NOT NULL,
    notified    INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (version, source_id)
)
"""

_CREATE_ANALYSIS_TABLE = """
CREATE TABLE IF NOT EXISTS analysis_cache (
    version       TEXT PRIMARY KEY,
    analysis_json TEXT NOT NULL,
    created_at    TEXT NOT NULL
)
"""

_CREATE_AUDIO_TABLE = """
CREATE TABLE IF NOT EXISTS audio_cache (
    id         TEXT PRIMARY KEY,
    text_hash  TEXT NOT NULL,
    voice      TEXT NOT NULL,
    audio_data BLOB NOT NULL,
    created_at TEXT NOT NULL
)
"""

_CREATE_SETTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_sources_active ON sources(is_active)",
    "CREATE INDEX IF NOT EXISTS idx_history_detected ON version_history(detected_at)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_audio_hash_voice ON audio_cache(text_hash, voice)",
)


async def init_db(db: aiosqlite.Connection) -> None:
    """Create tables and set WAL mode. Called once at startup."""
    await db.execute("PRAGMA journal_mode = WAL")
    await db.execute("PRAGMA foreign_keys = ON")
    for statement in (
        _CREATE_SOURCES_TABLE,
        _CREATE_HISTORY_TABLE,
        _CREATE_ANALYSIS_TABLE,
        _CREATE_AUDIO_TABLE,
        _CREATE_SETTINGS_TABLE,
        *_CREATE_INDEXES,
    ):
        await db.execute(statement)
    await db.commit()


async def connect(db_path: str) -> aiosqlite.Connection:
    """Open the database file, creating parent directories and schema as needed."""
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    await init_db(db)
    log.info("database_ready", path=str(path))
    return db
