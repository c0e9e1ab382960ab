"""Dependency injection for FastAPI."""

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import QueuePool

from billpay.adapters.indotel_gateway import IndotelGateway
from billpay.config import Settings, get_settings
from billpay.core.catalog import GatewayCatalog, StaticCatalog
from billpay.core.lifecycle import TransactionLifecycle
from billpay.core.locks import TransactionLocks
from billpay.exceptions import GatewayNotConfigured
from billpay.repositories.protocols import CatalogProviderProtocol
from billpay.storage.proof_storage import LocalProofStorage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lifespan helpers, called from main.py to create and destroy shared resources
# ---------------------------------------------------------------------------


def _register_pool_events(engine: AsyncEngine) -> None:
    """Log pool overflow; checkouts are only interesting at debug level."""
    pool = engine.pool
    if not isinstance(pool, QueuePool):
        return

    @event.listens_for(pool, "checkout")
    def _on_checkout(_dbapi_conn, _conn_record, _conn_proxy):
        logger.debug("Pool checkout: size=%s checked_out=%s", pool.size(), pool.checkedout())

    @event.listens_for(pool, "overflow")
    def _on_overflow(_dbapi_conn):
        logger.warning("Pool overflow: size=%s overflow=%s", pool.size(), pool.overflow())


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async database engine."""
    engine = create_async_engine(
        str(settings.database_url),
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        echo=settings.debug,
    )
    _register_pool_events(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory bound to *engine*."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def create_redis(settings: Settings) -> Redis:
    """Create the async Redis client."""
    return Redis.from_url(str(settings.redis_url), decode_responses=True)


def create_gateway(settings: Settings) -> IndotelGateway | None:
    """Gateway client, or ``None`` when credentials are not configured."""
    try:
        return IndotelGateway.from_settings(settings)
    except GatewayNotConfigured:
        logger.warning("Indotel credentials missing; approval and gateway routes disabled")
        return None


def create_locks(settings: Settings, redis: Redis) -> TransactionLocks:
    return TransactionLocks(
        redis, ttl=settings.transaction_lock_ttl, wait=settings.transaction_lock_wait
    )


def create_catalog(
    settings: Settings, gateway: IndotelGateway | None, redis: Redis
) -> CatalogProviderProtocol:
    """Static catalog unless ``catalog_source=gateway`` and a gateway is configured."""
    static = StaticCatalog()
    if settings.catalog_source != "gateway":
        return static
    if gateway is None:
        logger.warning("catalog_source=gateway but the gateway is not configured; using static")
        return static
    return GatewayCatalog(
        gateway,
        redis,
        cache_ttl=settings.catalog_cache_ttl,
        fallback=static if settings.catalog_fallback_to_static else None,
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies: pull resources from app.state (set in lifespan)
# ---------------------------------------------------------------------------


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session from app.state.

    Owns the unit-of-work lifecycle: commits on success, rolls back on
    exception.  Repositories should call ``session.flush()`` (not
    ``session.commit()``) so that all writes within a single request
    are committed atomically.
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_redis(request: Request) -> AsyncGenerator[Redis, None]:
    """Dependency that provides the Redis client from app.state."""
    yield request.app.state.redis


def get_gateway(request: Request) -> IndotelGateway:
    """The configured gateway client.

    Raises:
        GatewayNotConfigured: If the app started without Indotel credentials.
    """
    gateway = request.app.state.gateway
    if gateway is None:
        raise GatewayNotConfigured()
    return gateway


def get_locks(request: Request) -> TransactionLocks:
    return request.app.state.locks


def get_catalog(request: Request) -> CatalogProviderProtocol:
    return request.app.state.catalog


def get_proof_storage(request: Request) -> LocalProofStorage:
    return request.app.state.proof_storage


# ---------------------------------------------------------------------------
# Standalone infrastructure for the Celery worker (no FastAPI app)
# ---------------------------------------------------------------------------


@dataclass
class InfrastructureContainer:
    """Holds shared async resources for non-FastAPI entry-points.

    Callers create and own the container; ``close()`` releases everything.
    """

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    gateway: IndotelGateway | None
    locks: TransactionLocks

    @classmethod
    def from_settings(cls, settings: Settings) -> "InfrastructureContainer":
        """Factory that wires up engine, session factory, Redis and the gateway."""
        engine = create_engine(settings)
        redis = create_redis(settings)
        return cls(
            engine=engine,
            session_factory=create_session_factory(engine),
            redis=redis,
            gateway=create_gateway(settings),
            locks=create_locks(settings, redis),
        )

    def lifecycle(self) -> TransactionLifecycle:
        return TransactionLifecycle(self.session_factory, self.gateway, self.locks)

    async def verify(self) -> None:
        """Verify DB and Redis connectivity. Call before doing any work."""
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("Database connectivity verified")
        await self.redis.ping()  # type: ignore[misc]  # redis.asyncio typing quirk
        logger.info("Redis connectivity verified")

    async def close(self) -> None:
        """Dispose of all managed resources."""
        if self.gateway is not None:
            await self.gateway.aclose()
        await self.redis.aclose()
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Type aliases for cleaner dependency injection
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db_session)]
RedisClient = Annotated[Redis, Depends(get_redis)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Gateway = Annotated[IndotelGateway, Depends(get_gateway)]
Locks = Annotated[TransactionLocks, Depends(get_locks)]
Catalog = Annotated[CatalogProviderProtocol, Depends(get_catalog)]
ProofStorage = Annotated[LocalProofStorage, Depends(get_proof_storage)]
