"""Throttle value types and Pydantic response models."""
import math
from dataclasses import dataclass

from pydantic import BaseModel

from pos_throttler.errors import InvalidPolicy


@dataclass(frozen=True)
class ThrottlePolicy:
    """Max ``limit`` requests per ``window_seconds`` for one key."""

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        for name in ("limit", "window_seconds"):
            value = getattr(self, name)
            # bool is an int subclass; True must not pass as limit=1
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPolicy(f"{name} must be an integer, got {value!r}")
            if value < 1:
                raise InvalidPolicy(f"{name} must be >= 1, got {value}")


def throttle(limit: int, ttl_seconds: int) -> ThrottlePolicy:
    """Explicit per-endpoint policy, e.g. ``throttle(10, 60)``."""
    return ThrottlePolicy(limit=limit, window_seconds=ttl_seconds)


# Named presets
STRICT = ThrottlePolicy(limit=5, window_seconds=60)  # login, password reset, PIN checks
NORMAL = ThrottlePolicy(limit=100, window_seconds=60)
RELAXED = ThrottlePolicy(limit=1000, window_seconds=60)  # read-only traffic


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    total_hits: int
    remaining: int
    reset_after_ms: int

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.reset_after_ms / 1000)


class RateLimitErrorBody(BaseModel):
    statusCode: int
    message: str
    error: str


class PolicyEntry(BaseModel):
    method: str
    path: str
    limit: int | None
    window_seconds: int | None
    skipped: bool = False


class PolicyListResponse(BaseModel):
    enabled: bool
    default: PolicyEntry
    endpoints: list[PolicyEntry]
