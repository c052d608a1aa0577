"""
Service Container

Builds every long-lived object the service needs and owns their lifecycle.

Design:
- Created once per process by the application lifespan, stored on app.state
- Engine, session factory, stores and services are constructed explicitly and
  injected into each other; nothing is lazily initialized at module level
- Each instance keeps its own cleanup task; the counters themselves live in
  the shared database, so several instances enforce one quota per key
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from shortlinks.core.setting import Settings
from shortlinks.db.api_key_store import ApiKeyStore
from shortlinks.db.counter_store import CounterStore
from shortlinks.db.interface import DatabaseAdapter
from shortlinks.db.session import create_session_maker, get_database_adapter, init_models
from shortlinks.services.api_keys import ApiKeyService
from shortlinks.services.background_tasks import run_rate_limit_cleanup
from shortlinks.services.rate_limiter import RateLimitConfig, RateLimiter
from shortlinks.services.request_gate import RequestGate

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Holds the engine, stores and services for one running instance."""

    def __init__(
        self,
        settings: Settings,
        adapter: DatabaseAdapter,
        engine: AsyncEngine,
        session_maker: async_sessionmaker
    ):
        self.settings = settings
        self.adapter = adapter
        self.engine = engine
        self.session_maker = session_maker

        self.api_key_store = ApiKeyStore(session_maker)
        self.counter_store = CounterStore(session_maker, adapter)

        self.rate_limit_config = RateLimitConfig.from_settings(settings)
        self.rate_limiter = RateLimiter(self.counter_store, self.rate_limit_config)
        self.api_keys = ApiKeyService(self.api_key_store)
        self.gate = RequestGate(
            self.api_keys,
            self.rate_limiter,
            default_user_id=settings.DEFAULT_USER_ID,
        )

        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    async def create(cls, settings: Settings) -> "ServiceContainer":
        """
        Connect to the database and build all services.

        Creates missing tables when AUTO_CREATE_TABLES is enabled.
        """
        adapter = get_database_adapter(settings.DATABASE_URL)
        engine = adapter.create_engine(settings.DATABASE_URL)

        if settings.AUTO_CREATE_TABLES:
            await init_models(engine)

        container = cls(settings, adapter, engine, create_session_maker(engine))
        logger.info(
            f"Service container ready: dialect={adapter.get_dialect_name()}, "
            f"rate_limit={settings.RATE_LIMIT_MAX}/{settings.RATE_LIMIT_WINDOW_MS}ms"
        )
        return container

    def start_background_tasks(self) -> None:
        """Start the periodic rate-limit cleanup (no-op if the interval is 0)."""
        interval = self.settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
        if interval <= 0 or self._cleanup_task is not None:
            return

        self._cleanup_task = asyncio.create_task(
            run_rate_limit_cleanup(
                self.rate_limiter,
                retention_ms=self.settings.RATE_LIMIT_RETENTION_MS,
                interval_seconds=interval,
            )
        )

    async def close(self) -> None:
        """Stop background work and release database connections."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self.engine.dispose()
        logger.info("Service container closed")
