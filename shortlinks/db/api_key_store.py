"""
Credential Store

Persistence for API key records. Every operation runs in its own short
transaction taken from the injected session factory, so a validation or
revocation is committed independently of whatever request triggered it.

Database failures are reported as StorageUnavailableError; a missing record
is never an error (lookups return None, delete returns False).
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlinks.core.exceptions import StorageUnavailableError
from shortlinks.db.models import ApiKey

logger = logging.getLogger(__name__)


class ApiKeyStore:
    """Credential store backed by the api_keys table."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Credential store failed to {operation}: {e}")
                raise StorageUnavailableError(
                    f"credential store failed to {operation}",
                    original_error=e
                ) from e

    async def find_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        async with self._transaction("look up API key") as session:
            result = await session.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
            return result.scalar_one_or_none()

    async def get(self, api_key_id: str) -> Optional[ApiKey]:
        async with self._transaction("load API key") as session:
            result = await session.execute(select(ApiKey).where(ApiKey.id == api_key_id))
            return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[ApiKey]:
        async with self._transaction("list API keys") as session:
            statement = (
                select(ApiKey)
                .where(ApiKey.user_id == user_id)
                .order_by(ApiKey.created_at.desc())
            )
            result = await session.execute(statement)
            return list(result.scalars().all())

    async def insert(self, api_key: ApiKey) -> ApiKey:
        async with self._transaction("insert API key") as session:
            session.add(api_key)
            await session.flush()
        return api_key

    async def update_last_used(self, api_key_id: str, timestamp: datetime) -> None:
        async with self._transaction("update API key usage") as session:
            statement = (
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=timestamp)
            )
            await session.execute(statement)

    async def delete(self, api_key_id: str) -> bool:
        """Hard-delete a key. Its rate-limit windows go with it (ON DELETE CASCADE)."""
        async with self._transaction("delete API key") as session:
            result = await session.execute(delete(ApiKey).where(ApiKey.id == api_key_id))
            return result.rowcount > 0
