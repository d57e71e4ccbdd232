"""Request throttler: maps (key, policy, window state) to an accept/reject decision.

Knows nothing about HTTP. Holds no mutable state of its own; all window
state lives in the injected CounterStore, which owns atomicity.
"""
import asyncio
import logging

from pos_throttler.errors import InvalidPolicy, StoreUnavailable
from pos_throttler.models import ThrottleDecision, ThrottlePolicy
from pos_throttler.stores import CounterStore

logger = logging.getLogger(__name__)


class RequestThrottler:
    def __init__(self, store: CounterStore) -> None:
        self._store = store

    @property
    def store(self) -> CounterStore:
        return self._store

    async def evaluate(self, key: str, policy: ThrottlePolicy) -> ThrottleDecision:
        """Count one hit for *key* and decide whether it fits in *policy*.

        Rejected calls are counted too, so instant retries are never free.
        Raises InvalidPolicy for an empty key or a non-policy argument and
        StoreUnavailable when the store fails. Never retries.
        """
        if not isinstance(key, str) or not key:
            raise InvalidPolicy("throttle key must be a non-empty string")
        if not isinstance(policy, ThrottlePolicy):
            raise InvalidPolicy(f"expected ThrottlePolicy, got {type(policy).__name__}")

        # Shielded: if the host request is cancelled, an issued increment
        # still lands so the count stays accurate.
        orphaned = False

        def _reap(task: asyncio.Future) -> None:
            # Retrieve the exception so an orphaned failure is logged, not dropped.
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None and orphaned:
                logger.warning("Counter store failed after caller cancelled for %s: %s", key, exc)

        increment = asyncio.ensure_future(
            self._store.increment_and_get_window(key, policy.window_seconds)
        )
        increment.add_done_callback(_reap)
        try:
            total_hits, remaining_ms = await asyncio.shield(increment)
        except asyncio.CancelledError:
            orphaned = True
            raise
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"counter store error: {exc}") from exc

        allowed = total_hits <= policy.limit
        if not allowed:
            logger.info("Rate limit exceeded for %s (%d/%d)", key, total_hits, policy.limit)
        return ThrottleDecision(
            allowed=allowed,
            total_hits=total_hits,
            remaining=max(0, policy.limit - total_hits),
            reset_after_ms=max(0, remaining_ms),
        )
