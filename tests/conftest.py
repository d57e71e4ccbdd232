"""Shared fixtures for the throttler test suite.

HTTP tests run the real app from ``main.create_app`` (real guard, real
throttler, real in-memory store) plus a few POS-shaped routes. Only the
auth layer is faked: a middleware copies ``X-Test-User`` to
``request.state.user_id`` the way the real auth layer would.
"""
import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from main import create_app, default_policies
from pos_throttler.config import Settings
from pos_throttler.errors import StoreUnavailable
from pos_throttler.models import STRICT, throttle
from pos_throttler.policies import PolicyMap
from pos_throttler.stores import MemoryCounterStore
from pos_throttler.throttler import RequestThrottler


class BrokenStore(MemoryCounterStore):
    """Counter store whose backend is down."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def increment_and_get_window(self, key: str, window_seconds: int) -> tuple[int, int]:
        self.calls += 1
        raise StoreUnavailable("connection refused")

    async def ping(self) -> bool:
        return False


@pytest.fixture
def store():
    return MemoryCounterStore()


@pytest.fixture
def broken_store():
    return BrokenStore()


@pytest.fixture
def throttler(store):
    return RequestThrottler(store)


@pytest.fixture
def policies() -> PolicyMap:
    p = default_policies(Settings())
    p.set("POST", "/auth/login", STRICT)
    p.set("GET", "/orders/{order_id}", throttle(2, 60))
    return p


@pytest.fixture
def build_app(store, policies):
    """Return a factory so tests can swap the store or settings."""

    def _build(store=store, policies=policies, **overrides) -> FastAPI:
        app = create_app(config=Settings(**overrides), store=store, policies=policies)

        @app.middleware("http")
        async def fake_auth(request: Request, call_next):
            user = request.headers.get("X-Test-User")
            if user:
                request.state.user_id = user
            return await call_next(request)

        @app.post("/auth/login")
        async def login() -> dict:
            return {"ok": True}

        @app.get("/orders/{order_id}")
        async def get_order(order_id: int) -> dict:
            return {"id": order_id}

        @app.get("/menu")
        async def menu() -> dict:
            return {"items": []}

        @app.get("/receipts/{receipt_id}")
        async def get_receipt(receipt_id: int) -> JSONResponse:
            return JSONResponse({"id": receipt_id, "total": "12.50"})

        @app.get("/tables/{table_id}")
        async def get_table(table_id: int) -> dict:
            raise HTTPException(status_code=404, detail="Table not found")

        return app

    return _build


@pytest.fixture
def app(build_app):
    return build_app()


@pytest_asyncio.fixture
async def client(app):
    """httpx.AsyncClient using ASGITransport — bypasses lifespan."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
