"""POS Throttler — FastAPI entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from pos_throttler.config import Settings, settings
from pos_throttler.guard import ThrottleGuard, install_exception_handlers, rate_limit_headers_middleware
from pos_throttler.models import RELAXED, ThrottlePolicy
from pos_throttler.policies import PolicyMap
from pos_throttler.routers import status
from pos_throttler.stores import CounterStore, build_store
from pos_throttler.throttler import RequestThrottler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def default_policies(config: Settings) -> PolicyMap:
    # Raises InvalidPolicy at startup on a bad RATE_LIMIT_MAX / RATE_LIMIT_TTL.
    default = ThrottlePolicy(limit=config.rate_limit_max, window_seconds=config.rate_limit_ttl)
    policies = PolicyMap(default=default)
    policies.skip("GET", "/health")
    policies.set("GET", "/rate-limit/policies", RELAXED)
    return policies


def create_app(
    config: Settings = settings,
    store: CounterStore | None = None,
    policies: PolicyMap | None = None,
) -> FastAPI:
    store = store if store is not None else build_store(config)
    policies = policies if policies is not None else default_policies(config)
    guard = ThrottleGuard(
        RequestThrottler(store),
        policies,
        enabled=config.rate_limit_enabled,
        fail_open=config.rate_limit_fail_open,
        trust_forwarded_for=config.trust_forwarded_for,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Throttling %s (default %d req / %ds, fail-%s)",
            "enabled" if guard.enabled else "disabled",
            policies.default.limit,
            policies.default.window_seconds,
            "open" if guard.fail_open else "closed",
        )

        async def _cleanup_loop():
            while True:
                await asyncio.sleep(config.store_cleanup_interval_seconds)
                try:
                    await store.cleanup()
                except Exception:
                    logger.exception("Cleanup loop iteration failed")

        cleanup_task = asyncio.create_task(_cleanup_loop())
        cleanup_task.add_done_callback(lambda t: logger.error("Cleanup task terminated: %s", t.exception()) if not t.cancelled() and t.exception() else None)

        yield

        cleanup_task.cancel()
        try:
            await store.close()
        except Exception:
            logger.exception("Error closing counter store")

    app = FastAPI(
        title=config.app_name,
        lifespan=lifespan,
        dependencies=[Depends(guard)],
    )
    app.state.throttle_guard = guard
    install_exception_handlers(app)
    app.middleware("http")(rate_limit_headers_middleware)
    app.include_router(status.router)

    @app.get("/health")
    async def health():
        if await store.ping():
            return {"status": "ok", "store": "reachable"}
        return JSONResponse(status_code=503, content={"status": "degraded", "store": "unreachable"})

    return app


app = create_app()
