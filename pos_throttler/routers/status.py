"""Rate-limit introspection router."""
from fastapi import APIRouter, Request

from pos_throttler.guard import ThrottleGuard
from pos_throttler.models import PolicyEntry, PolicyListResponse

router = APIRouter(prefix="/rate-limit")


@router.get("/policies", response_model=PolicyListResponse)
async def list_policies(request: Request) -> PolicyListResponse:
    guard: ThrottleGuard = request.app.state.throttle_guard
    default = guard.policies.default
    endpoints = [
        PolicyEntry(
            method=rule.method,
            path=rule.path,
            limit=rule.policy.limit if rule.policy else None,
            window_seconds=rule.policy.window_seconds if rule.policy else None,
            skipped=rule.policy is None,
        )
        for rule in guard.policies.rules()
    ]
    return PolicyListResponse(
        enabled=guard.enabled,
        default=PolicyEntry(method="*", path="*", limit=default.limit, window_seconds=default.window_seconds),
        endpoints=endpoints,
    )
