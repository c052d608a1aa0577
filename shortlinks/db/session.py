"""
Database Session Management

This module handles async database connections using SQLAlchemy's async engine.
Uses a database abstraction layer to support different database backends.

Nothing here is created at import time: the engine and session factory are
built by the service container on startup (see shortlinks.core.container)
and handed to the stores that need them.
"""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from shortlinks.db.interface import DatabaseAdapter
from shortlinks.db.postgres_adapter import PostgreSQLAdapter
from shortlinks.db.sqlite_adapter import SQLiteAdapter


def get_database_adapter(database_url: str) -> DatabaseAdapter:
    """
    Pick the database adapter matching the connection string.

    Args:
        database_url: SQLAlchemy URL (sqlite+aiosqlite://... or postgresql+asyncpg://...)

    Returns:
        DatabaseAdapter instance
    """
    if database_url.startswith("postgresql"):
        return PostgreSQLAdapter()
    return SQLiteAdapter()


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Create the async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=SQLModelAsyncSession,
        expire_on_commit=False,  # Prevents SQLAlchemy from expiring objects after commit
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create any missing tables (local development and tests)."""
    # Registers the table classes on SQLModel.metadata
    from shortlinks.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function for FastAPI to get database session.

    This function:
    - Creates a new async session from the container's factory
    - Yields it to the endpoint
    - Automatically commits on success
    - Rolls back on exception

    Usage in FastAPI:
        @router.get("/endpoint")
        async def endpoint(session: AsyncSession = Depends(get_session)):
            pass
    """
    session_maker = request.app.state.container.session_maker
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
