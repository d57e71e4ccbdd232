"""Throttler exception hierarchy.

All throttling exceptions inherit from :class:`ThrottlerError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pos_throttler.models import ThrottleDecision, ThrottlePolicy


class ThrottlerError(Exception):
    """Base exception for all throttling errors."""


class InvalidPolicy(ThrottlerError, ValueError):
    """Raised when a policy or key is malformed (limit or window below 1, empty key)."""


class StoreUnavailable(ThrottlerError):
    """Raised when the counter store cannot be reached or fails."""


class RateLimitExceeded(ThrottlerError):
    """Raised by the HTTP guard when a request is rejected.

    Carries everything the 429 response needs so the handler does not
    have to recompute it.
    """

    def __init__(self, policy: ThrottlePolicy, decision: ThrottleDecision, reset_at_ms: int) -> None:
        super().__init__(
            f"rate limit exceeded: {decision.total_hits}/{policy.limit} "
            f"per {policy.window_seconds}s"
        )
        self.policy = policy
        self.decision = decision
        self.reset_at_ms = reset_at_ms
