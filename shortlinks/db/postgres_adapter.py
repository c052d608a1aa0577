"""
PostgreSQL Database Adapter

Implements the DatabaseAdapter interface for PostgreSQL (asyncpg driver).
Used for production deployments where several service instances share
one database and therefore one set of rate-limit counters.
"""

from typing import Any, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import Pool
from sqlalchemy.sql.dml import Insert

from shortlinks.db.interface import DatabaseAdapter


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL adapter using SQLAlchemy's default queue pool."""

    def create_engine(self, database_url: str, **kwargs) -> AsyncEngine:
        engine_kwargs = self.get_engine_kwargs()
        engine_kwargs.update(kwargs)

        return create_async_engine(
            database_url,
            connect_args=self.get_connect_args(),
            **engine_kwargs
        )

    def get_pool_class(self) -> Optional[type[Pool]]:
        return None

    def get_connect_args(self) -> dict[str, Any]:
        return {}

    def get_engine_kwargs(self) -> dict[str, Any]:
        return {
            "echo": False,
            "pool_pre_ping": True,  # drop stale connections before reuse
            "pool_size": 10,
            "max_overflow": 20,
        }

    def insert(self, model: Any) -> Insert:
        return pg_insert(model)

    def get_dialect_name(self) -> str:
        return "postgresql"
