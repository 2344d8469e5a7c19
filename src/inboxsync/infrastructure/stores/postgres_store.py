"""PostgreSQL record sink and watermark store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.domain.entities.email_record import EmailRecord
from inboxsync.domain.errors import (
    DuplicateRecordError,
    MessageError,
    StoreError,
    StoreReadError,
)
from inboxsync.infrastructure.settings import Settings, get_settings
from inboxsync.infrastructure.stores.sqlite_store import row_to_watermark, watermark_to_row


class PostgresMailStore:
    """PostgreSQL-backed RecordSink and WatermarkStore."""

    def __init__(self, settings: Settings | None = None):
        """Initialize PostgreSQL store."""
        self.settings = settings or get_settings()
        self._connection: psycopg.Connection | None = None

    def connect(self) -> psycopg.Connection:
        """Establish connection to PostgreSQL."""
        if self._connection is None or self._connection.closed:
            logger.info(f"Connecting to PostgreSQL at {self.settings.postgres_host}:{self.settings.postgres_port}")
            try:
                self._connection = psycopg.connect(
                    self.settings.postgres_dsn,
                    autocommit=True,
                    row_factory=dict_row,
                    connect_timeout=self.settings.postgres_connect_timeout,
                )
            except psycopg.Error as e:
                raise StoreError(f"Cannot connect to PostgreSQL: {e}") from e
            logger.info("PostgreSQL connection established")
        return self._connection

    def disconnect(self) -> None:
        """Close PostgreSQL connection."""
        if self._connection is not None and not self._connection.closed:
            self._connection.close()
            self._connection = None
            logger.info("PostgreSQL connection closed")

    @property
    def connection(self) -> psycopg.Connection:
        """Get or create PostgreSQL connection."""
        if self._connection is None or self._connection.closed:
            return self.connect()
        return self._connection

    def setup_schema(self) -> None:
        """Set up database schema for the application."""
        conn = self.connect()
        with conn.transaction(), conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS email_records (
                    id BIGSERIAL PRIMARY KEY,
                    message_id TEXT NOT NULL UNIQUE,
                    source_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    body TEXT NOT NULL,
                    provenance TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'new',
                    received_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_email_records_received ON email_records(received_at);

                CREATE TABLE IF NOT EXISTS watermarks (
                    mailbox TEXT PRIMARY KEY,
                    received_at TIMESTAMP WITH TIME ZONE,
                    last_uid BIGINT,
                    uidvalidity BIGINT,
                    boundary_ids TEXT NOT NULL DEFAULT '[]',
                    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );
            """)
        logger.info("Database schema setup complete")

    def insert(self, record: EmailRecord) -> None:
        try:
            with self.connection.transaction(), self.connection.cursor() as cur:
                cur.execute(
                    """INSERT INTO email_records
                       (message_id, source_id, sender, subject, body, provenance, status, received_at)
                       VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                       ON CONFLICT (message_id) DO NOTHING""",
                    (
                        record.message_id,
                        record.source_id,
                        record.sender,
                        record.subject,
                        record.body,
                        record.provenance,
                        record.status,
                        record.received_at,
                    ),
                )
                inserted = cur.rowcount
        except psycopg.Error as e:
            raise MessageError(f"PostgreSQL insert failed: {e}", stage="persist") from e
        except StoreError as e:
            raise MessageError(str(e), stage="persist") from e

        if inserted == 0:
            raise DuplicateRecordError(f"Record {record.message_id} already stored")
        logger.debug(f"Stored record {record.message_id}")

    def read(self, mailbox: str) -> Optional[Watermark]:
        try:
            with self.connection.cursor() as cur:
                cur.execute("SELECT * FROM watermarks WHERE mailbox = %s", (mailbox,))
                row = cur.fetchone()
        except (psycopg.Error, StoreError) as e:
            raise StoreReadError(f"PostgreSQL watermark read failed: {e}") from e

        if row is None:
            logger.debug(f"No watermark stored for {mailbox}")
            return None
        return row_to_watermark(row)

    def advance(self, mailbox: str, watermark: Watermark) -> None:
        row = watermark_to_row(watermark)
        row["received_at"] = watermark.received_at
        try:
            with self.connection.transaction(), self.connection.cursor() as cur:
                cur.execute(
                    """INSERT INTO watermarks (mailbox, received_at, last_uid, uidvalidity, boundary_ids, updated_at)
                       VALUES (%(mailbox)s, %(received_at)s, %(last_uid)s, %(uidvalidity)s, %(boundary_ids)s, %(updated_at)s)
                       ON CONFLICT (mailbox) DO UPDATE SET
                           received_at = EXCLUDED.received_at,
                           last_uid = EXCLUDED.last_uid,
                           uidvalidity = EXCLUDED.uidvalidity,
                           boundary_ids = EXCLUDED.boundary_ids,
                           updated_at = EXCLUDED.updated_at""",
                    {**row, "mailbox": mailbox, "updated_at": datetime.now(timezone.utc)},
                )
        except psycopg.Error as e:
            raise StoreError(f"PostgreSQL watermark write failed: {e}") from e

    def health_check(self) -> dict[str, Any]:
        """Check PostgreSQL connection health."""
        try:
            with self.connection.cursor() as cur:
                cur.execute("SELECT version() AS version")
                version = cur.fetchone()["version"]
            return {
                "status": "healthy",
                "backend": "postgres",
                "host": self.settings.postgres_host,
                "database": self.settings.postgres_db,
                "version": version,
            }
        except (psycopg.Error, StoreError) as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return {
                "status": "unhealthy",
                "backend": "postgres",
                "host": self.settings.postgres_host,
                "database": self.settings.postgres_db,
                "error": str(e),
            }

