"""
Fixed-Window Rate Limiter

Decides whether a request made with a given API key is permitted under a
fixed-window quota and records permitted requests in the counter store.

Window bucketing:
    window_start = floor(now_ms / window_ms) * window_ms
    reset_at     = window_start + window_ms

Windows are aligned to the epoch, not to the first request, so every key
shares the same boundaries at any instant. A burst straddling a boundary can
therefore be admitted up to 2 x max_requests times within a short span. This
is a known coarseness of the fixed-window algorithm and is kept as is.

Order of operations in check_and_increment:
1. Read the current count; a full window is denied without touching the store.
2. Otherwise increment with a guarded upsert that only succeeds while the
   stored count is still below the limit. A caller that lost the race to the
   last slot is denied, and nothing is written for it.

Quota is charged on admission: nothing is rolled back if the request later
fails or is cancelled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from shortlinks.core.setting import Settings
from shortlinks.db.counter_store import CounterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Process-wide quota: max_requests per window_ms, applied to every key."""
    max_requests: int
    window_ms: int

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitConfig":
        return cls(
            max_requests=settings.RATE_LIMIT_MAX,
            window_ms=settings.RATE_LIMIT_WINDOW_MS,
        )


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single check_and_increment call."""
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    retry_after_ms: Optional[int] = None


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a key's current window."""
    count: int
    remaining: int
    reset_at: datetime
    limit: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def from_epoch_ms(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


def window_start_for(now_ms: int, window_ms: int) -> int:
    """Start of the epoch-aligned window containing now_ms."""
    return (now_ms // window_ms) * window_ms


class RateLimiter:
    """
    Fixed-window limiter over a CounterStore.

    The clock is injectable so tests (and callers that already hold a
    timestamp) can pin "now"; every public method also accepts an explicit now.
    """

    def __init__(
        self,
        store: CounterStore,
        config: RateLimitConfig,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.config = config
        self.clock = clock

    def _now_ms(self, now: Optional[datetime]) -> int:
        return to_epoch_ms(now if now is not None else self.clock())

    def _denied(self, now_ms: int, reset_ms: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_at=from_epoch_ms(reset_ms),
            limit=self.config.max_requests,
            retry_after_ms=max(0, reset_ms - now_ms),
        )

    async def check_and_increment(
        self,
        api_key_id: str,
        now: Optional[datetime] = None
    ) -> RateLimitResult:
        """
        Check the quota for api_key_id and record the request if it is allowed.

        Args:
            api_key_id: Credential being charged
            now: Point in time to evaluate (defaults to the limiter clock)

        Returns:
            RateLimitResult; denied results carry retry_after_ms and never
            consume quota

        Raises:
            StorageUnavailableError: If the counter store cannot be reached
        """
        now_ms = self._now_ms(now)
        window_ms = self.config.window_ms
        max_requests = self.config.max_requests
        window_start = window_start_for(now_ms, window_ms)
        reset_ms = window_start + window_ms

        count = await self.store.find_count(api_key_id, window_start) or 0
        if count >= max_requests:
            return self._denied(now_ms, reset_ms)

        new_count = await self.store.increment_below(api_key_id, window_start, max_requests)
        if new_count is None:
            # Window filled up between the read and the increment
            logger.debug(f"Key {api_key_id} lost the race for the last slot in window {window_start}")
            return self._denied(now_ms, reset_ms)

        # Derived from the stored count after our increment, not the count read
        # above: under contention other callers may have landed in between
        return RateLimitResult(
            allowed=True,
            remaining=max(0, max_requests - new_count),
            reset_at=from_epoch_ms(reset_ms),
            limit=max_requests,
        )

    async def get_status(
        self,
        api_key_id: str,
        now: Optional[datetime] = None
    ) -> RateLimitStatus:
        """Report the current window for api_key_id without recording anything."""
        now_ms = self._now_ms(now)
        window_start = window_start_for(now_ms, self.config.window_ms)

        count = await self.store.find_count(api_key_id, window_start) or 0
        return RateLimitStatus(
            count=count,
            remaining=max(0, self.config.max_requests - count),
            reset_at=from_epoch_ms(window_start + self.config.window_ms),
            limit=self.config.max_requests,
        )

    async def cleanup(self, retention_ms: int, now: Optional[datetime] = None) -> int:
        """
        Delete windows that started more than retention_ms before now.

        Only strictly older windows are removed, so a sweep never races with
        increments on a window that is still being written to (as long as
        retention_ms >= window_ms).

        Returns:
            Number of deleted window records
        """
        cutoff = self._now_ms(now) - retention_ms
        deleted = await self.store.delete_older_than(cutoff)
        if deleted:
            logger.info(f"Removed {deleted} expired rate limit windows")
        return deleted
