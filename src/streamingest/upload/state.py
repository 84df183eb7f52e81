"""Async SQLite record store for video records.

Wraps aiosqlite to provide the read/update operations the pipeline needs.
Each write method commits immediately -- no transactions are held across
``await`` boundaries.

Concurrent writers use last-write-wins: a reconciler's terminal merge and
a user edit of the same record are not isolated from each other.  The
terminal merge itself is conditional on ``status = 'processing'`` so it
can succeed at most once per ingestion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from streamingest.database import EDITABLE_COLUMNS, SCHEMA_SQL
from streamingest.models import VideoRecord, VideoStatus
from streamingest.upload.fsm import can_transition

logger = logging.getLogger(__name__)

# Columns a terminal merge may fill in alongside the status.
_MERGE_COLUMNS = ("size_bytes", "duration_seconds", "thumbnail_url", "download_url")


class AsyncVideoStore:
    """Async SQLite store for :class:`VideoRecord` rows.

    Usage::

        async with AsyncVideoStore("data/videos.db") as store:
            record = await store.get_by_remote_id(uid)
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open an aiosqlite connection with WAL mode and ensure the schema."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> AsyncVideoStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    async def get_record(self, record_id: int) -> VideoRecord | None:
        db = self._ensure_connected()
        cursor = await db.execute("SELECT * FROM videos WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        return VideoRecord.from_row(row) if row else None

    async def get_by_remote_id(self, remote_resource_id: str) -> VideoRecord | None:
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT * FROM videos WHERE remote_resource_id = ?", (remote_resource_id,)
        )
        row = await cursor.fetchone()
        return VideoRecord.from_row(row) if row else None

    async def get_row(self, record_id: int) -> dict[str, Any] | None:
        """Return the raw row as a dict, including user-editable columns."""
        db = self._ensure_connected()
        cursor = await db.execute("SELECT * FROM videos WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_processing(self) -> list[VideoRecord]:
        """Return records still waiting for a terminal status (recovery candidates)."""
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT * FROM videos WHERE status = 'processing' ORDER BY id"
        )
        rows = await cursor.fetchall()
        return [VideoRecord.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Write operations (each commits immediately)
    # ------------------------------------------------------------------

    async def create_record(self, record: VideoRecord) -> VideoRecord:
        """Insert a new record in ``processing`` state and return it with its id."""
        db = self._ensure_connected()
        uploaded_at = record.uploaded_at or self._now_iso()
        cursor = await db.execute(
            """INSERT INTO videos
                   (remote_resource_id, collection_key, filename, view_url,
                    status, size_bytes, uploaded_at)
               VALUES (?, ?, ?, ?, 'processing', ?, ?)""",
            (
                record.remote_resource_id,
                record.collection_key,
                record.filename,
                record.view_url,
                record.size_bytes,
                uploaded_at,
            ),
        )
        await db.commit()
        record.id = cursor.lastrowid
        record.status = VideoStatus.PROCESSING
        record.uploaded_at = uploaded_at
        logger.debug("Created record %s for %s", record.id, record.remote_resource_id)
        return record

    async def merge_terminal(
        self,
        remote_resource_id: str,
        status: VideoStatus,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Write a terminal status plus any non-empty detail fields.

        Fields that are ``None`` keep their stored value.  The update only
        applies while the record is still ``processing``.

        Returns:
            ``True`` if the record was updated, ``False`` if it no longer
            exists or already holds a terminal status.
        """
        db = self._ensure_connected()
        cursor = await db.execute(
            "SELECT status FROM videos WHERE remote_resource_id = ?", (remote_resource_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            logger.warning("No record for %s; terminal status %s dropped", remote_resource_id, status.value)
            return False
        if not can_transition(row["status"], status):
            logger.debug(
                "Record %s already %s; ignoring %s", remote_resource_id, row["status"], status.value
            )
            return False

        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [status.value, self._now_iso()]
        for column in _MERGE_COLUMNS:
            value = (fields or {}).get(column)
            if value is not None:
                assignments.append(f"{column} = ?")
                params.append(value)
        params.append(remote_resource_id)

        cursor = await db.execute(
            f"""UPDATE videos SET {', '.join(assignments)}
                WHERE remote_resource_id = ? AND status = 'processing'""",
            params,
        )
        await db.commit()
        return cursor.rowcount == 1

    async def mark_failed(self, remote_resource_id: str) -> bool:
        """Move a ``processing`` record to ``error`` (failed transfer)."""
        return await self.merge_terminal(remote_resource_id, VideoStatus.ERROR)

    async def update_fields(self, record_id: int, fields: dict[str, Any]) -> bool:
        """Apply a user edit.  Stream-owned columns cannot be changed here."""
        unknown = set(fields) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        db = self._ensure_connected()
        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        params = [fields[c] for c in columns] + [self._now_iso(), record_id]
        cursor = await db.execute(
            f"UPDATE videos SET {assignments}, updated_at = ? WHERE id = ?",
            params,
        )
        await db.commit()
        return cursor.rowcount == 1

    async def delete_record(self, record_id: int) -> bool:
        db = self._ensure_connected()
        cursor = await db.execute("DELETE FROM videos WHERE id = ?", (record_id,))
        await db.commit()
        return cursor.rowcount == 1
