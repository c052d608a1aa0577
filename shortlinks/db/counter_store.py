"""
Rate-Limit Counter Store

Persists per-key, per-window request counts in rate_limit_windows.

Increments are single native upsert statements
(INSERT ... ON CONFLICT DO UPDATE SET request_count = request_count + 1),
so concurrent callers never lose updates and no application-level lock is
held while waiting on the database. increment_below() adds a WHERE guard to
the conflict branch, turning the upsert into a compare-and-increment: the
stored count can never pass the limit, whatever the interleaving.
"""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlinks.core.exceptions import RaceRetryExhaustedError, StorageUnavailableError
from shortlinks.db.interface import DatabaseAdapter
from shortlinks.db.models import RateLimitWindow

logger = logging.getLogger(__name__)

# One retry after a lock timeout or constraint race, then give up
MAX_INCREMENT_ATTEMPTS = 2


class CounterStore:
    """Counter store backed by the rate_limit_windows table."""

    def __init__(self, session_maker: async_sessionmaker, adapter: DatabaseAdapter):
        self.session_maker = session_maker
        self.adapter = adapter

    async def find_count(self, api_key_id: str, window_start_ms: int) -> Optional[int]:
        """
        Read the stored count for a window.

        Returns:
            The count, or None if no request has been recorded in that window
        """
        statement = select(RateLimitWindow.request_count).where(
            RateLimitWindow.api_key_id == api_key_id,
            RateLimitWindow.window_start_ms == window_start_ms,
        )
        try:
            async with self.session_maker() as session:
                result = await session.execute(statement)
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageUnavailableError("counter store read failed", original_error=e) from e

    async def atomic_increment(self, api_key_id: str, window_start_ms: int) -> int:
        """
        Insert the window at 1 or increment it by 1.

        Returns:
            The count after the increment
        """
        return await self._upsert(api_key_id, window_start_ms, limit=None)

    async def increment_below(
        self,
        api_key_id: str,
        window_start_ms: int,
        limit: int
    ) -> Optional[int]:
        """
        Insert the window at 1, or increment it only while its count is below limit.

        Args:
            api_key_id: Credential the window belongs to
            window_start_ms: Epoch-aligned window start
            limit: Maximum count the window may reach (must be >= 1)

        Returns:
            The count after the increment, or None if the window was already full
            (nothing is written in that case)
        """
        return await self._upsert(api_key_id, window_start_ms, limit=limit)

    async def delete_older_than(self, cutoff_ms: int) -> int:
        """Delete every window that started strictly before cutoff_ms."""
        statement = delete(RateLimitWindow).where(RateLimitWindow.window_start_ms < cutoff_ms)
        try:
            async with self.session_maker() as session:
                result = await session.execute(statement)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise StorageUnavailableError("counter store cleanup failed", original_error=e) from e

    def _build_upsert(self, api_key_id: str, window_start_ms: int, limit: Optional[int]):
        statement = self.adapter.insert(RateLimitWindow).values(
            api_key_id=api_key_id,
            window_start_ms=window_start_ms,
            request_count=1,
        )
        statement = statement.on_conflict_do_update(
            index_elements=["api_key_id", "window_start_ms"],
            set_={"request_count": RateLimitWindow.request_count + 1},
            where=(RateLimitWindow.request_count < limit) if limit is not None else None,
        )
        return statement.returning(RateLimitWindow.request_count)

    async def _upsert(
        self,
        api_key_id: str,
        window_start_ms: int,
        limit: Optional[int]
    ) -> Optional[int]:
        statement = self._build_upsert(api_key_id, window_start_ms, limit)

        for attempt in range(1, MAX_INCREMENT_ATTEMPTS + 1):
            try:
                async with self.session_maker() as session:
                    result = await session.execute(statement)
                    new_count = result.scalar_one_or_none()
                    await session.commit()
                    return new_count
            except (IntegrityError, OperationalError) as e:
                if attempt < MAX_INCREMENT_ATTEMPTS:
                    logger.warning(
                        f"Counter increment for key {api_key_id} window {window_start_ms} "
                        f"failed ({e.__class__.__name__}), retrying"
                    )
                    continue
                raise RaceRetryExhaustedError(
                    "counter increment failed after retry",
                    original_error=e
                ) from e
            except SQLAlchemyError as e:
                raise StorageUnavailableError("counter increment failed", original_error=e) from e
