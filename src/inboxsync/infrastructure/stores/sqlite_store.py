"""SQLite record sink and watermark store."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

from loguru import logger

from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.domain.entities.email_record import EmailRecord
from inboxsync.domain.errors import (
    DuplicateRecordError,
    MessageError,
    StoreError,
    StoreReadError,
)


def watermark_to_row(watermark: Watermark) -> dict[str, Any]:
    return {
        "received_at": watermark.received_at.isoformat() if watermark.received_at else None,
        "last_uid": watermark.last_uid,
        "uidvalidity": watermark.uidvalidity,
        "boundary_ids": json.dumps(sorted(watermark.boundary_ids)),
    }


def row_to_watermark(row: Any) -> Watermark:
    received_at = row["received_at"]
    if isinstance(received_at, str):
        received_at = datetime.fromisoformat(received_at)
    if received_at is not None and received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    return Watermark(
        received_at=received_at,
        last_uid=row["last_uid"],
        uidvalidity=row["uidvalidity"],
        boundary_ids=frozenset(json.loads(row["boundary_ids"] or "[]")),
    )


class SQLiteMailStore:
    """SQLite-backed RecordSink and WatermarkStore."""

    def __init__(self, db_path: str | Path = "data/inboxsync.db"):
        self.db_path = Path(db_path)
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            conn.executescript("""
                PRAGMA journal_mode=WAL;

                CREATE TABLE IF NOT EXISTS email_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL UNIQUE,
                    source_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    provenance TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'new',
                    received_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_email_records_received
                    ON email_records(received_at);

                CREATE TABLE IF NOT EXISTS watermarks (
                    mailbox TEXT PRIMARY KEY,
                    received_at TEXT,
                    last_uid INTEGER,
                    uidvalidity INTEGER,
                    boundary_ids TEXT NOT NULL DEFAULT '[]',
                    updated_at TEXT NOT NULL
                );
            """)
            logger.info(f"SQLite database initialized at {self.db_path}")

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def insert(self, record: EmailRecord) -> None:
        """Insert one record; a second insert of the same message_id is a duplicate."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self._connection() as conn:
                conn.execute(
                    """INSERT INTO email_records
                       (message_id, source_id, sender, subject, body, provenance, status, received_at, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.message_id,
                        record.source_id,
                        record.sender,
                        record.subject,
                        record.body,
                        record.provenance,
                        record.status,
                        record.received_at.isoformat(),
                        now,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Record {record.message_id} already stored") from e
        except sqlite3.Error as e:
            raise MessageError(f"SQLite insert failed: {e}", stage="persist") from e
        logger.debug(f"Stored record {record.message_id}")

    def read(self, mailbox: str) -> Optional[Watermark]:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT * FROM watermarks WHERE mailbox = ?",
                    (mailbox,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreReadError(f"SQLite watermark read failed: {e}") from e

        if row is None:
            logger.debug(f"No watermark stored for {mailbox}")
            return None
        return row_to_watermark(row)

    def advance(self, mailbox: str, watermark: Watermark) -> None:
        row = watermark_to_row(watermark)
        try:
            with self._connection() as conn:
                conn.execute(
                    """INSERT INTO watermarks (mailbox, received_at, last_uid, uidvalidity, boundary_ids, updated_at)
                       VALUES (:mailbox, :received_at, :last_uid, :uidvalidity, :boundary_ids, :updated_at)
                       ON CONFLICT(mailbox) DO UPDATE SET
                           received_at = excluded.received_at,
                           last_uid = excluded.last_uid,
                           uidvalidity = excluded.uidvalidity,
                           boundary_ids = excluded.boundary_ids,
                           updated_at = excluded.updated_at""",
                    {**row, "mailbox": mailbox, "updated_at": datetime.now(timezone.utc).isoformat()},
                )
        except sqlite3.Error as e:
            raise StoreError(f"SQLite watermark write failed: {e}") from e

    def health_check(self) -> dict[str, Any]:
        try:
            with self._connection() as conn:
                conn.execute("SELECT 1")
            return {"status": "healthy", "backend": "sqlite", "path": str(self.db_path)}
        except sqlite3.Error as e:
            logger.error(f"SQLite health check failed: {e}")
            return {"status": "unhealthy", "backend": "sqlite", "error": str(e)}

    def count_records(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM email_records").fetchone()[0]
