"""Key and policy derivation: request descriptor -> (ThrottleKey, ThrottlePolicy)."""
from dataclasses import dataclass

from fastapi import Request

from pos_throttler.models import NORMAL, ThrottlePolicy


def client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Extract the caller's network address.

    X-Forwarded-For is only honoured when the service sits behind a reverse
    proxy that overwrites it; otherwise clients could pick their own bucket.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else "unknown"


def principal_id(request: Request) -> str | None:
    """Authenticated user id, as left on request.state by the auth layer."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None or user_id == "":
        return None
    return str(user_id)


def caller_id(principal: str | None, address: str) -> str:
    # Callers sharing an address share a budget until they authenticate.
    if principal:
        return f"user:{principal}"
    return f"ip:{address}"


def throttle_key(method: str, route_pattern: str, caller: str) -> str:
    """e.g. ``POST:/auth/login:ip:1.2.3.4``. Always the route pattern, never the raw path."""
    return f"{method.upper()}:{route_pattern}:{caller}"


@dataclass(frozen=True)
class PolicyRule:
    method: str
    path: str
    policy: ThrottlePolicy | None  # None = exempt


class PolicyMap:
    """Per-endpoint throttle configuration, filled in at route-registration time.

    Explicit overrides win; everything else gets the default policy. Usage::

        policies = PolicyMap(default=NORMAL)
        policies.set("POST", "/auth/login", STRICT)
        policies.skip("GET", "/health")
    """

    def __init__(self, default: ThrottlePolicy = NORMAL) -> None:
        if not isinstance(default, ThrottlePolicy):
            raise TypeError("default must be a ThrottlePolicy")
        self.default = default
        self._rules: dict[tuple[str, str], PolicyRule] = {}

    def set(self, method: str, path: str, policy: ThrottlePolicy) -> "PolicyMap":
        if not isinstance(policy, ThrottlePolicy):
            raise TypeError("policy must be a ThrottlePolicy")
        self._put(PolicyRule(method.upper(), path, policy))
        return self

    def skip(self, method: str, path: str) -> "PolicyMap":
        self._put(PolicyRule(method.upper(), path, None))
        return self

    def _put(self, rule: PolicyRule) -> None:
        self._rules[(rule.method, rule.path)] = rule

    def resolve(self, method: str, path: str) -> ThrottlePolicy | None:
        """Policy for a route pattern, or None if the route is exempt."""
        rule = self._rules.get((method.upper(), path))
        if rule is None:
            return self.default
        return rule.policy

    def rules(self) -> list[PolicyRule]:
        return sorted(self._rules.values(), key=lambda r: (r.path, r.method))
