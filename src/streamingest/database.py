"""SQLite database layer for video records.

Manages schema initialization, WAL mode pragmas and the status audit log.
The ingestion pipeline writes through
:class:`~streamingest.upload.state.AsyncVideoStore`; this synchronous
wrapper owns the schema and serves read-only listings for the CLI.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from streamingest.models import VideoRecord, VideoStatus

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- One row per ingested video
CREATE TABLE IF NOT EXISTS videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_resource_id TEXT NOT NULL UNIQUE,
    collection_key TEXT NOT NULL,
    filename TEXT NOT NULL,
    view_url TEXT NOT NULL,

    status TEXT NOT NULL DEFAULT 'processing'
        CHECK(status IN ('processing', 'ready', 'error')),

    size_bytes INTEGER,
    duration_seconds REAL,
    thumbnail_url TEXT,
    download_url TEXT,
    title TEXT,
    notes TEXT,

    uploaded_at TEXT,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_videos_status ON videos(status);
CREATE INDEX IF NOT EXISTS idx_videos_collection ON videos(collection_key);

-- Status transition audit log
CREATE TABLE IF NOT EXISTS _status_log (
    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_resource_id TEXT NOT NULL,
    old_status TEXT,
    new_status TEXT,
    timestamp TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE TRIGGER IF NOT EXISTS log_video_status_change
    AFTER UPDATE OF status ON videos
    FOR EACH ROW
    WHEN OLD.status != NEW.status
    BEGIN
        INSERT INTO _status_log(remote_resource_id, old_status, new_status)
        VALUES (NEW.remote_resource_id, OLD.status, NEW.status);
    END;
"""

# Columns a user edit may change; stream fields are owned by the pipeline.
EDITABLE_COLUMNS = frozenset({"title", "notes", "filename"})


class Database:
    """Synchronous SQLite wrapper owning the ``videos`` schema.

    Usage::

        with Database("data/videos.db") as db:
            for record in db.list_records():
                ...
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self._setup_schema()

    def _setup_schema(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def list_records(self, status: VideoStatus | None = None) -> list[VideoRecord]:
        """Return records ordered by id, optionally filtered by status."""
        if status is None:
            cursor = self.conn.execute("SELECT * FROM videos ORDER BY id")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM videos WHERE status = ? ORDER BY id", (status.value,)
            )
        return [VideoRecord.from_row(row) for row in cursor.fetchall()]

    def get_status_counts(self) -> dict[str, int]:
        """Return ``{status: count}`` across all records."""
        cursor = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM videos GROUP BY status"
        )
        return {row["status"]: row["n"] for row in cursor.fetchall()}

    def get_status_history(self, remote_resource_id: str) -> list[tuple[str | None, str]]:
        """Return ``(old_status, new_status)`` transitions for a video, oldest first."""
        cursor = self.conn.execute(
            """SELECT old_status, new_status FROM _status_log
               WHERE remote_resource_id = ? ORDER BY log_id""",
            (remote_resource_id,),
        )
        return [(row["old_status"], row["new_status"]) for row in cursor.fetchall()]
