"""SQLite caches for AI analyses and synthesized audio.

All cache operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as cache miss by callers),
write failures are logged and ignored. A broken cache costs an extra AI call,
never a missed notification.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime

import aiosqlite
import structlog
from pydantic import ValidationError

from changewatch.models.analysis import AnalysisResult
from changewatch.models.cache import AnalysisCacheEntry, AudioCacheEntry, AudioCacheInfo

log = structlog.get_logger()


class Cache:
    """Analysis cache keyed by version label, audio cache keyed by (text_hash, voice)."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Analysis cache
    # ------------------------------------------------------------------

    async def get_analysis(self, version: str) -> AnalysisCacheEntry | None:
        """Read a cached analysis. Returns ``None`` on miss, read failure or bad JSON."""
        try:
            cursor = await self._db.execute(
                "SELECT version, analysis_json, created_at FROM analysis_cache WHERE version = ?",
                (version,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return AnalysisCacheEntry(
                version=row[0],
                analysis=AnalysisResult.model_validate_json(row[1]),
                created_at=datetime.fromisoformat(row[2]),
            )
        except aiosqlite.Error:
            log.warning("cache_read_error", key=f"analysis:{version}", exc_info=True)
            return None
        except ValidationError:
            log.warning("cache_entry_invalid", key=f"analysis:{version}", exc_info=True)
            return None

    async def set_analysis(self, version: str, analysis: AnalysisResult) -> None:
        """Write (or overwrite) an analysis. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO analysis_cache (version, analysis_json, created_at) "
                "VALUES (?, ?, ?)",
                (version, analysis.model_dump_json(), datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=f"analysis:{version}", exc_info=True)

    async def list_analyses(self) -> list[tuple[str, datetime]]:
        """Return ``(version, created_at)`` pairs, newest first."""
        try:
            cursor = await self._db.execute(
                "SELECT version, created_at FROM analysis_cache ORDER BY created_at DESC"
            )
            return [(row[0], datetime.fromisoformat(row[1])) for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_list_error", table="analysis_cache", exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Audio cache
    # ------------------------------------------------------------------

    async def get_audio(self, text_hash: str, voice: str) -> AudioCacheEntry | None:
        """Read the newest audio entry for a text/voice pair."""
        try:
            cursor = await self._db.execute(
                "SELECT id, text_hash, voice, audio_data, created_at FROM audio_cache "
                "WHERE text_hash = ? AND voice = ? ORDER BY created_at DESC LIMIT 1",
                (text_hash, voice),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return AudioCacheEntry(
                id=row[0],
                text_hash=row[1],
                voice=row[2],
                audio_data=bytes(row[3]),
                created_at=datetime.fromisoformat(row[4]),
            )
        except aiosqlite.Error:
            log.warning("cache_read_error", key=f"audio:{text_hash}:{voice}", exc_info=True)
            return None

    async def set_audio(self, text_hash: str, voice: str, audio_data: bytes) -> str | None:
        """Store audio for a text/voice pair, replacing any entry for the pair in one statement.

        Returns the new entry id, or ``None`` if the write failed.
        """
        entry_id = f"{text_hash}_{voice}_{int(time.time() * 1000)}"
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO audio_cache (id, text_hash, voice, audio_data, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (entry_id, text_hash, voice, audio_data, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=f"audio:{text_hash}:{voice}", exc_info=True)
            return None
        return entry_id

    async def list_audio(self) -> list[AudioCacheInfo]:
        try:
            cursor = await self._db.execute(
                "SELECT id, text_hash, voice, LENGTH(audio_data), created_at FROM audio_cache "
                "ORDER BY created_at DESC"
            )
            return [
                AudioCacheInfo(
                    id=row[0],
                    text_hash=row[1],
                    voice=row[2],
                    size=row[3],
                    created_at=datetime.fromisoformat(row[4]),
                )
                for row in await cursor.fetchall()
            ]
        except aiosqlite.Error:
            log.warning("cache_list_error", table="audio_cache", exc_info=True)
            return []

    async def delete_audio(self, entry_id: str) -> None:
        """Delete an audio entry by id. Deleting a missing id is a no-op."""
        try:
            await self._db.execute("DELETE FROM audio_cache WHERE id = ?", (entry_id,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_delete_error", key=f"audio:{entry_id}", exc_info=True)
