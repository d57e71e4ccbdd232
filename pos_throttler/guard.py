"""FastAPI adapter: runs the throttler per request and shapes the HTTP response."""
import logging
import time
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from pos_throttler.errors import RateLimitExceeded, StoreUnavailable
from pos_throttler.models import RateLimitErrorBody, ThrottleDecision, ThrottlePolicy
from pos_throttler.policies import PolicyMap, caller_id, client_ip, principal_id, throttle_key
from pos_throttler.throttler import RequestThrottler

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS_MESSAGE = "Too many requests. Please try again later."
STORE_UNAVAILABLE_MESSAGE = "Rate limiter unavailable."


def rate_limit_headers(policy: ThrottlePolicy, decision: ThrottleDecision, reset_at_ms: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(policy.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(reset_at_ms),
    }


class ThrottleGuard:
    """App-level dependency: ``FastAPI(dependencies=[Depends(guard)])``.

    The matched route is already on the request scope when dependencies run,
    so the key uses its pattern (``/orders/{order_id}``), not the raw path.
    """

    def __init__(
        self,
        throttler: RequestThrottler,
        policies: PolicyMap,
        *,
        enabled: bool = True,
        fail_open: bool = True,
        trust_forwarded_for: bool = False,
        principal_resolver: Callable[[Request], str | None] = principal_id,
    ) -> None:
        self.throttler = throttler
        self.policies = policies
        self.enabled = enabled
        self.fail_open = fail_open
        self.trust_forwarded_for = trust_forwarded_for
        self.principal_resolver = principal_resolver

    async def __call__(self, request: Request) -> None:
        if not self.enabled:
            return

        # No matched route pattern, no key: the raw path must never be a bucket.
        pattern = getattr(request.scope.get("route"), "path", None)
        if not pattern:
            return
        method = request.method
        policy = self.policies.resolve(method, pattern)
        if policy is None:
            return

        caller = caller_id(
            self.principal_resolver(request),
            client_ip(request, self.trust_forwarded_for),
        )
        key = throttle_key(method, pattern, caller)

        try:
            decision = await self.throttler.evaluate(key, policy)
        except StoreUnavailable as exc:
            if self.fail_open:
                logger.warning("Counter store unavailable, allowing %s: %s", key, exc)
                return
            logger.warning("Counter store unavailable, rejecting %s: %s", key, exc)
            raise

        reset_at_ms = int(time.time() * 1000) + decision.reset_after_ms
        # Picked up by rate_limit_headers_middleware, whatever the endpoint returns.
        request.state.rate_limit = rate_limit_headers(policy, decision, reset_at_ms)
        if not decision.allowed:
            raise RateLimitExceeded(policy, decision, reset_at_ms)


async def rate_limit_headers_middleware(request: Request, call_next) -> Response:
    """Attach X-RateLimit-* to every throttled response.

    Covers endpoints that return a Response directly or raise HTTPException,
    which never see headers set on a dependency's Response.
    """
    response = await call_next(request)
    headers = getattr(request.state, "rate_limit", None)
    if headers:
        for name, value in headers.items():
            response.headers.setdefault(name, value)
    return response


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = rate_limit_headers(exc.policy, exc.decision, exc.reset_at_ms)
    headers["Retry-After"] = str(exc.decision.retry_after_seconds)
    body = RateLimitErrorBody(
        statusCode=status.HTTP_429_TOO_MANY_REQUESTS,
        message=TOO_MANY_REQUESTS_MESSAGE,
        error="ThrottlerException",
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(),
        headers=headers,
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    body = RateLimitErrorBody(
        statusCode=status.HTTP_503_SERVICE_UNAVAILABLE,
        message=STORE_UNAVAILABLE_MESSAGE,
        error="StoreUnavailable",
    )
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump())


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
