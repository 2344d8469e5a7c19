"""Store implementations."""

from inboxsync.infrastructure.stores.postgres_store import PostgresMailStore
from inboxsync.infrastructure.stores.sqlite_store import SQLiteMailStore

__all__ = [
    "PostgresMailStore",
    "SQLiteMailStore",
]
