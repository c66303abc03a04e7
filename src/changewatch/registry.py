"""Source registry and version detection history.

Unlike the caches, storage errors here propagate to the caller. The connection
is shared with the other stores, so constraint failures are never followed by
a rollback: SQLite already undoes the failed statement alone.
"""

from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from changewatch.errors import ConflictError, InvalidInputError, NotFoundError
from changewatch.models.sources import Source, SourceCreateInput, SourceUpdateInput, VersionRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

log = structlog.get_logger()

_ID_ALPHABET = string.ascii_lowercase + string.digits

_SOURCE_COLUMNS = "id, name, url, is_active, last_version, last_checked_at, created_at"


def _new_source_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"src_{int(time.time() * 1000)}_{suffix}"


def _row_to_source(row: Iterable) -> Source:
    id_, name, url, is_active, last_version, last_checked_at, created_at = row
    return Source(
        id=id_,
        name=name,
        url=url,
        is_active=bool(is_active),
        last_version=last_version,
        last_checked_at=datetime.fromisoformat(last_checked_at) if last_checked_at else None,
        created_at=datetime.fromisoformat(created_at),
    )


def _invalid_input(exc: ValueError) -> InvalidInputError:
    return InvalidInputError(
        message=str(exc),
        suggestion=(
            "Provide a non-empty name and an absolute URL "
            "such as https://example.com/CHANGELOG.md."
        ),
    )


class SourceRegistry:
    """SQLite-backed store of monitored sources and their detection history."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def create(self, name: str, url: str) -> Source:
        """Register a new active source. Raises ConflictError on a duplicate URL."""
        try:
            validated = SourceCreateInput(name=name, url=url)
        except ValueError as exc:
            raise _invalid_input(exc) from exc

        source = Source(
            id=_new_source_id(),
            name=validated.name,
            url=validated.url,
            is_active=True,
            created_at=datetime.now(UTC),
        )
        try:
            await self._db.execute(
                "INSERT INTO sources (id, name, url, is_active, created_at) VALUES (?, ?, ?, 1, ?)",
                (source.id, source.name, source.url, source.created_at.isoformat()),
            )
            await self._db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"A source with URL {url!r} already exists") from exc

        log.info("source_created", source_id=source.id, name=source.name, url=source.url)
        return source

    async def list_all(self) -> list[Source]:
        cursor = await self._db.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at ASC, rowid ASC"
        )
        return [_row_to_source(row) for row in await cursor.fetchall()]

    async def list_active(self) -> list[Source]:
        cursor = await self._db.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE is_active = 1 "
            "ORDER BY created_at ASC, rowid ASC"
        )
        return [_row_to_source(row) for row in await cursor.fetchall()]

    async def get(self, source_id: str) -> Source:
        cursor = await self._db.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(f"Source {source_id!r} not found")
        return _row_to_source(row)

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM sources")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def update(
        self,
        source_id: str,
        *,
        name: str | None = None,
        url: str | None = None,
        is_active: bool | None = None,
    ) -> None:
        """Apply a partial update. URL uniqueness is re-checked by the database."""
        try:
            validated = SourceUpdateInput(name=name, url=url, is_active=is_active)
        except ValueError as exc:
            raise _invalid_input(exc) from exc

        assignments: list[str] = []
        params: list[object] = []
        if validated.name is not None:
            assignments.append("name = ?")
            params.append(validated.name)
        if validated.url is not None:
            assignments.append("url = ?")
            params.append(validated.url)
        if validated.is_active is not None:
            assignments.append("is_active = ?")
            params.append(1 if validated.is_active else 0)

        if not assignments:
            raise InvalidInputError(
                message="No updates provided",
                suggestion="Supply at least one of name, url, is_active.",
            )

        params.append(source_id)
        try:
            cursor = await self._db.execute(
                f"UPDATE sources SET {', '.join(assignments)} WHERE id = ?", params
            )
            await self._db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"A source with URL {url!r} already exists") from exc

        if cursor.rowcount == 0:
            raise NotFoundError(f"Source {source_id!r} not found")
        log.info("source_updated", source_id=source_id, fields=len(assignments))

    async def delete(self, source_id: str) -> None:
        """Delete a source and its detection history."""
        await self._db.execute("DELETE FROM version_history WHERE source_id = ?", (source_id,))
        cursor = await self._db.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        await self._db.commit()
        if cursor.rowcount == 0:
            raise NotFoundError(f"Source {source_id!r} not found")
        log.info("source_deleted", source_id=source_id)

    # ------------------------------------------------------------------
    # Version history
    # ------------------------------------------------------------------

    async def last_known_version(self, source_id: str | None = None) -> str | None:
        """Most recently detected version, for one source or across all sources."""
        if source_id is not None:
            cursor = await self._db.execute(
                "SELECT version FROM version_history WHERE source_id = ? "
                "ORDER BY detected_at DESC, rowid DESC LIMIT 1",
                (source_id,),
            )
        else:
            cursor = await self._db.execute(
                "SELECT version FROM version_history ORDER BY detected_at DESC, rowid DESC LIMIT 1"
            )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def record_version(self, version: str, source_id: str) -> bool:
        """Insert-if-absent a history row and advance the source's bookkeeping.

        The source update is unconditional so ``last_checked_at`` reflects the
        detection even when the row already existed. Returns True when a new
        history row was inserted.
        """
        now = datetime.now(UTC).isoformat()
        cursor = await self._db.execute(
            "INSERT OR IGNORE INTO version_history (version, source_id, detected_at, notified) "
            "VALUES (?, ?, ?, 0)",
            (version, source_id, now),
        )
        inserted = cursor.rowcount == 1
        await self._db.execute(
            "UPDATE sources SET last_version = ?, last_checked_at = ? WHERE id = ?",
            (version, now, source_id),
        )
        await self._db.commit()
        return inserted

    async def claim_notification(self, version: str, source_id: str) -> bool:
        """Atomically flip ``notified`` from false to true.

        Returns False when the record is missing or another run already
        claimed it, so at most one caller goes on to send the email.
        """
        cursor = await self._db.execute(
            "UPDATE version_history SET notified = 1 "
            "WHERE version = ? AND source_id = ? AND notified = 0",
            (version, source_id),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    async def release_notification(self, version: str, source_id: str) -> None:
        """Undo a claim after a failed send."""
        await self._db.execute(
            "UPDATE version_history SET notified = 0 WHERE version = ? AND source_id = ?",
            (version, source_id),
        )
        await self._db.commit()

    async def get_record(self, version: str, source_id: str) -> VersionRecord | None:
        cursor = await self._db.execute(
            "SELECT version, source_id, detected_at, notified FROM version_history "
            "WHERE version = ? AND source_id = ?",
            (version, source_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return VersionRecord(
            version=row[0],
            source_id=row[1],
            detected_at=datetime.fromisoformat(row[2]),
            notified=bool(row[3]),
        )

    async def list_history(self, limit: int = 20) -> list[VersionRecord]:
        """Recent detections, newest first."""
        cursor = await self._db.execute(
            "SELECT version, source_id, detected_at, notified FROM version_history "
            "ORDER BY detected_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [
            VersionRecord(
                version=row[0],
                source_id=row[1],
                detected_at=datetime.fromisoformat(row[2]),
                notified=bool(row[3]),
            )
            for row in await cursor.fetchall()
        ]
