"""
Shared test fixtures.

Every test gets its own file-backed SQLite database under tmp_path. An
in-memory database would not work here: the SQLite engine uses NullPool, so
each session would open a fresh, empty in-memory database.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from shortlinks.core.container import ServiceContainer
from shortlinks.core.rate_limit import limiter
from shortlinks.core.setting import Settings

# Aligned to a 60s window boundary
FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path}/test.db",
        "RATE_LIMIT_MAX": 5,
        "RATE_LIMIT_WINDOW_MS": 60000,
        "RATE_LIMIT_CLEANUP_INTERVAL_SECONDS": 0,
        "BASE_URL": "http://sho.rt",
        "AUTO_CREATE_TABLES": True,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_redirect_limiter():
    """slowapi keeps its counters in process memory; start every test clean."""
    limiter.reset()
    yield


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def container(settings):
    container = await ServiceContainer.create(settings)
    try:
        yield container
    finally:
        await container.close()


@pytest_asyncio.fixture
async def issued_key(container):
    """(ApiKey, plaintext key) owned by user_1."""
    return await container.api_keys.issue("user_1", "test key")


@pytest_asyncio.fixture
async def session(container):
    async with container.session_maker() as session:
        yield session
