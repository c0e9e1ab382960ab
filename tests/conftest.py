"""Shared test fixtures for the billpay storefront."""

import os

# Keep uploads from the module-level app out of the working tree
os.environ.setdefault("UPLOAD_DIR", "/tmp/billpay-test-uploads")

from collections.abc import AsyncGenerator  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import fakeredis.aioredis  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from billpay.core.catalog import StaticCatalog  # noqa: E402
from billpay.core.lifecycle import TransactionLifecycle  # noqa: E402
from billpay.core.locks import TransactionLocks  # noqa: E402
from billpay.main import app  # noqa: E402
from billpay.models import Base, Transaction  # noqa: E402
from billpay.rate_limit import limiter  # noqa: E402
from billpay.schemas.gateway import GatewayOutcome, GatewayResult  # noqa: E402
from billpay.storage.proof_storage import LocalProofStorage  # noqa: E402

# ---------------------------------------------------------------------------
# Fake Redis (drop-in async replacement)
# ---------------------------------------------------------------------------


def _make_fake_redis():
    """Create a fakeredis instance that behaves like redis.asyncio.Redis."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest_asyncio.fixture()
async def redis_client():
    """Provide a fake Redis client."""
    client = _make_fake_redis()
    yield client
    await client.aclose()


# ---------------------------------------------------------------------------
# Database: file-backed SQLite per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billpay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Core collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def locks(redis_client) -> TransactionLocks:
    """Short waits so contention tests fail fast."""
    return TransactionLocks(redis_client, ttl=5.0, wait=0.2, poll_interval=0.01)


def gateway_result(
    outcome: GatewayOutcome = GatewayOutcome.SUCCESS,
    provider_ref: str | None = "REF123",
    message: str = "",
    raw_payload: Any = None,
) -> GatewayResult:
    return GatewayResult(
        outcome=outcome,
        provider_ref=provider_ref,
        message=message,
        raw_payload=raw_payload if raw_payload is not None else {"status": outcome.value},
    )


@pytest.fixture()
def gateway() -> AsyncMock:
    """Gateway stub; every call succeeds with ref REF123 unless reconfigured."""
    gw = AsyncMock()
    gw.settle.return_value = gateway_result()
    gw.check_status.return_value = gateway_result()
    gw.inquire.return_value = gateway_result(provider_ref=None)
    return gw


@pytest.fixture()
def lifecycle(session_factory, gateway, locks) -> TransactionLifecycle:
    return TransactionLifecycle(session_factory, gateway, locks)


@pytest.fixture()
def make_purchase(lifecycle):
    """Factory creating a pending PLN50 purchase; keyword overrides allowed."""

    async def _make(**overrides) -> Transaction:
        fields: dict[str, Any] = {
            "product_code": "PLN50",
            "customer_number": "081234567890",
            "price": 50500,
            "product_name": "PLN Token 50k",
            "category_code": "PLN",
        }
        fields.update(overrides)
        return await lifecycle.create_purchase(
            fields.pop("product_code"),
            fields.pop("customer_number"),
            fields.pop("price"),
            **fields,
        )

    return _make


# ---------------------------------------------------------------------------
# HTTP client fixture (FastAPI app wired to SQLite + fakeredis)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def client(
    engine, session_factory, redis_client, gateway, locks, tmp_path
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the FastAPI app.

    Lifespan is not run; app.state is populated directly.
    """
    limiter.reset()
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis = redis_client
    app.state.gateway = gateway
    app.state.locks = locks
    app.state.catalog = StaticCatalog()
    app.state.proof_storage = LocalProofStorage(tmp_path / "uploads")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def png_bytes() -> bytes:
    """A tiny (not necessarily valid) PNG payload."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
