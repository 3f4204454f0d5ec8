"""Persisted per-file sync state (SQLite).

One row per absolute file path records the hash of the last content seen,
when it changed, when it last synced, and where it is in the
pending -> syncing -> complete/error cycle.
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config

__all__ = [
    "SyncError",
    "StateStoreError",
    "SyncStatus",
    "SyncState",
    "StatusCounts",
    "SyncStateStore",
]

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for sync pipeline errors."""

    pass


class StateStoreError(SyncError):
    """The sync state database could not be read or written."""

    pass


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class SyncState:
    """Sync record for one file."""

    file_path: str
    content_hash: str
    last_modified_at: int
    status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[int] = None
    workflow_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncState":
        """Create from database row."""
        try:
            status = SyncStatus(row["status"])
        except ValueError:
            logger.warning(f"Unknown status {row['status']!r} for {row['file_path']}, treating as pending")
            status = SyncStatus.PENDING
        return cls(
            file_path=row["file_path"],
            content_hash=row["content_hash"],
            last_modified_at=row["last_modified_at"],
            status=status,
            last_synced_at=row["last_synced_at"],
            workflow_id=row["workflow_id"],
        )


@dataclass
class StatusCounts:
    """Number of records in each status."""

    pending: int = 0
    syncing: int = 0
    complete: int = 0
    error: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.syncing + self.complete + self.error


_COLUMNS = "file_path, content_hash, last_synced_at, last_modified_at, workflow_id, status"


class SyncStateStore:
    """SQLite-backed store of SyncState records."""

    def __init__(self, db_path: Optional[Path] = None):
        """Open (creating if needed) the state database.

        Args:
            db_path: Path to SQLite database file (default: <data dir>/sync.db)
        """
        if db_path is None:
            db_path = Config.get_database_path()

        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()
        logger.debug(f"Sync state database opened at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path), timeout=10)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Cursor that commits on success and rolls back on any failure."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StateStoreError(f"Cannot open sync database: {e}") from e
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StateStoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_state (
                    file_path TEXT PRIMARY KEY,
                    content_hash TEXT NOT NULL,
                    last_synced_at INTEGER,
                    last_modified_at INTEGER NOT NULL,
                    workflow_id TEXT,
                    status TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_state_status ON sync_state(status)"
            )

    def get(self, file_path: str) -> Optional[SyncState]:
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT {_COLUMNS} FROM sync_state WHERE file_path = ?",
                (file_path,),
            )
            row = cursor.fetchone()
            return SyncState.from_row(row) if row else None

    def upsert(self, state: SyncState) -> None:
        """Insert or replace the record for `state.file_path`."""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                INSERT INTO sync_state ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    content_hash = excluded.content_hash,
                    last_synced_at = excluded.last_synced_at,
                    last_modified_at = excluded.last_modified_at,
                    workflow_id = excluded.workflow_id,
                    status = excluded.status
                """,
                (
                    state.file_path,
                    state.content_hash,
                    state.last_synced_at,
                    state.last_modified_at,
                    state.workflow_id,
                    SyncStatus(state.status).value,
                ),
            )

    def mark_pending(self, file_path: str, content_hash: str, modified_at: Optional[int] = None) -> None:
        """Record newly detected content.

        Only hash, status and modification time are written; workflow_id and
        last_synced_at from an earlier success are kept.
        """
        if modified_at is None:
            modified_at = int(time.time())
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO sync_state (file_path, content_hash, last_modified_at, status)
                VALUES (?, ?, ?, 'pending')
                ON CONFLICT(file_path) DO UPDATE SET
                    content_hash = excluded.content_hash,
                    last_modified_at = excluded.last_modified_at,
                    status = 'pending'
                """,
                (file_path, content_hash, modified_at),
            )

    def mark_syncing(self, file_path: str, content_hash: Optional[str] = None) -> bool:
        """Flag an upload attempt as started.

        Returns:
            False if there is no record (or its hash differs from `content_hash`)
        """
        query = "UPDATE sync_state SET status = 'syncing' WHERE file_path = ?"
        params: tuple = (file_path,)
        if content_hash is not None:
            query += " AND content_hash = ?"
            params += (content_hash,)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount > 0

    def mark_complete(
        self,
        file_path: str,
        workflow_id: str,
        content_hash: Optional[str] = None,
        synced_at: Optional[int] = None,
    ) -> bool:
        """Record a successful upload.

        Only a record that is currently syncing can complete. With
        `content_hash`, the record must also still hold that hash, so content
        that changed during the upload is never marked complete.

        Returns:
            True if the record was updated
        """
        if synced_at is None:
            synced_at = int(time.time())
        query = """
            UPDATE sync_state
            SET status = 'complete', workflow_id = ?, last_synced_at = ?
            WHERE file_path = ? AND status = 'syncing'
        """
        params: tuple = (workflow_id, synced_at, file_path)
        if content_hash is not None:
            query += " AND content_hash = ?"
            params += (content_hash,)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount > 0

    def update_status(self, file_path: str, status: SyncStatus) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE sync_state SET status = ? WHERE file_path = ?",
                (SyncStatus(status).value, file_path),
            )

    def list_by_status(self, status: SyncStatus) -> list[SyncState]:
        """Records in `status`, oldest change first."""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT {_COLUMNS} FROM sync_state
                WHERE status = ?
                ORDER BY last_modified_at ASC
                """,
                (SyncStatus(status).value,),
            )
            return [SyncState.from_row(row) for row in cursor.fetchall()]

    def list_pending(self) -> list[SyncState]:
        return self.list_by_status(SyncStatus.PENDING)

    def status_counts(self) -> StatusCounts:
        counts = StatusCounts()
        with self._cursor() as cursor:
            cursor.execute("SELECT status, COUNT(*) FROM sync_state GROUP BY status")
            for row in cursor.fetchall():
                status = row[0]
                if hasattr(counts, status) and status != "total":
                    setattr(counts, status, row[1])
        return counts

    def close(self) -> None:
        """Close this thread's database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
