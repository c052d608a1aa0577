"""
Background Task Helpers

Provides helpers for work that runs outside the request/response cycle:
- Click counting after a redirect (creates its own session, since the
  endpoint's session is closed once the response is sent)
- The periodic sweep that removes expired rate-limit windows
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlinks.core.exceptions import StorageUnavailableError
from shortlinks.services.link_service import LinkService
from shortlinks.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


async def increment_click_count_background(
    session_maker: async_sessionmaker,
    link_id: str
) -> None:
    """
    Background task to increment a link's click count.

    Failures are logged and never affect the redirect that triggered them.

    Args:
        session_maker: Session factory from the service container
        link_id: The link that was followed
    """
    try:
        async with session_maker() as session:
            link_service = LinkService(session)
            await link_service.increment_click_count(link_id)
            await session.commit()
    except Exception as e:
        logger.error(
            f"Failed to increment click count for {link_id}: {str(e)}",
            exc_info=True
        )


async def run_rate_limit_cleanup(
    rate_limiter: RateLimiter,
    retention_ms: int,
    interval_seconds: float
) -> None:
    """
    Periodically delete rate-limit windows older than retention_ms.

    Runs until cancelled. A failed sweep is logged and retried on the next tick.
    """
    logger.info(
        f"Rate limit cleanup started: retention={retention_ms}ms, "
        f"interval={interval_seconds}s"
    )
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await rate_limiter.cleanup(retention_ms)
        except StorageUnavailableError as e:
            logger.warning(f"Rate limit cleanup failed: {e}")
