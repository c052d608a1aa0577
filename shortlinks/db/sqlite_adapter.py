"""
SQLite Database Adapter

This module implements the DatabaseAdapter interface for SQLite.
All SQLite-specific configuration and behavior is encapsulated here.

Key characteristics:
- File-based (single .db file)
- Single writer at a time (file locking); concurrent writers wait on the busy timeout
- Foreign keys are off by default and must be enabled per connection
- UPSERT (ON CONFLICT DO UPDATE ... RETURNING) requires SQLite 3.35+
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool
from sqlalchemy.sql.dml import Insert

from shortlinks.db.interface import DatabaseAdapter

# Seconds a connection waits for the write lock before failing
BUSY_TIMEOUT_SECONDS = 30


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    # Needed for ON DELETE CASCADE from api_keys to rate_limit_windows
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter implementation.

    This adapter handles all SQLite-specific configuration and operations.
    """

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        """
        Create SQLite async engine with appropriate configuration.

        SQLite-specific configuration:
        - NullPool: a fresh connection per session (file-based, no pooling needed)
        - check_same_thread=False: Required for async SQLite operations
        - timeout: busy timeout so concurrent writers queue instead of failing
        - PRAGMA foreign_keys=ON on every new connection

        Args:
            database_url: SQLite connection string (sqlite+aiosqlite:///...)
            **kwargs: Additional engine options (merged with SQLite defaults)

        Returns:
            Configured AsyncEngine for SQLite
        """
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        engine = create_async_engine(
            database_url,
            poolclass=self.get_pool_class(),
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )
        event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
        return engine

    def get_pool_class(self) -> type[NullPool]:
        return NullPool

    def get_connect_args(self) -> dict[str, Any]:
        return {
            "check_same_thread": False,
            "timeout": BUSY_TIMEOUT_SECONDS,
        }

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {
            "echo": False  # Set to True only for SQL debugging in development
        }

    def insert(self, model: Any) -> Insert:
        return sqlite_insert(model)

    def get_dialect_name(self) -> str:
        return "sqlite"
