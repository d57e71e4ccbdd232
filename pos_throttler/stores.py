"""Counter stores: atomic increment-with-expiry backends for the throttler.

``MemoryCounterStore`` is per-process. In any scaled deployment each
instance enforces its own windows; use ``RedisCounterStore`` to share them.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from pos_throttler.config import Settings
from pos_throttler.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class CounterStore(Protocol):
    """Pluggable storage for per-key window counters."""

    async def increment_and_get_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit for *key*; return ``(total_hits, time_remaining_ms)``."""
        ...

    async def cleanup(self) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


@dataclass
class _Window:
    count: int
    expires_at: float  # time.monotonic() timestamp


class MemoryCounterStore:
    def __init__(self) -> None:
        self._windows: dict[str, _Window] = {}
        self._lock = asyncio.Lock()

    async def increment_and_get_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        now = time.monotonic()

        async with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.expires_at:
                self._windows[key] = _Window(count=1, expires_at=now + window_seconds)
                return 1, window_seconds * 1000

            window.count += 1
            return window.count, round((window.expires_at - now) * 1000)

    async def cleanup(self) -> None:
        """Remove expired windows (call periodically)."""
        now = time.monotonic()
        async with self._lock:
            stale = [key for key, w in self._windows.items() if now >= w.expires_at]
            for key in stale:
                del self._windows[key]
        if stale:
            logger.debug("Dropped %d expired throttle windows", len(stale))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        """Number of tracked keys (for monitoring)."""
        return len(self._windows)


# INCR, then start the expiry clock only on the hit that created the key.
# Runs server-side so concurrent callers never lose an update.
_INCREMENT_SCRIPT = """
local hits = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {hits, ttl}
"""


class RedisCounterStore:
    """Shared windows for multi-instance deployments, expired by Redis itself."""

    def __init__(self, client: redis.Redis, key_prefix: str = "throttle:") -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._script = client.register_script(_INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "throttle:") -> "RedisCounterStore":
        client = redis.from_url(url, socket_timeout=2, socket_connect_timeout=2)
        return cls(client, key_prefix=key_prefix)

    async def increment_and_get_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        try:
            hits, ttl_ms = await self._script(
                keys=[self._key_prefix + key],
                args=[window_seconds * 1000],
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(f"Redis counter store unavailable: {exc}") from exc
        return int(hits), int(ttl_ms)

    async def cleanup(self) -> None:
        # Keys carry their own PEXPIRE; nothing to sweep.
        return None

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except Exception as exc:
            logger.warning("Error closing Redis client: %s", exc)


def build_store(settings: Settings) -> CounterStore:
    if settings.rate_limit_store == "redis":
        logger.info("Using Redis counter store")
        return RedisCounterStore.from_url(settings.redis_url, key_prefix=settings.redis_key_prefix)
    logger.info("Using in-memory counter store")
    return MemoryCounterStore()
