"""Flat key/value settings persisted in SQLite.

Distinct from ``changewatch.config``: config is deployment-time (env/YAML),
preferences are user-editable at runtime through the API.
"""

from __future__ import annotations

import aiosqlite

EMAIL_NOTIFICATIONS_ENABLED = "emailNotificationsEnabled"
NOTIFICATION_CHECK_INTERVAL = "notificationCheckInterval"
NOTIFICATION_VOICE = "notificationVoice"

MONITORING_KEYS: frozenset[str] = frozenset(
    {EMAIL_NOTIFICATIONS_ENABLED, NOTIFICATION_CHECK_INTERVAL}
)


class Preferences:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value)
        )
        await self._db.commit()

    async def all(self) -> dict[str, str]:
        cursor = await self._db.execute("SELECT key, value FROM settings")
        return {row[0]: row[1] for row in await cursor.fetchall()}
