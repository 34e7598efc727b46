"""Async database engine and session management.

Provides:
    - _get_engine: The SQLAlchemy async engine (lazy singleton).
    - _get_session_factory: A sessionmaker bound to the engine.
    - get_async_session: FastAPI dependency that yields a session per request.
    - session_scope: Unit-of-work context manager for jobs and scripts.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

Every service call runs inside one session. The session is committed only
when the call returns normally, so a failing operation leaves every entity
it touched unchanged.

Usage in FastAPI:
    @app.get("/listings/{listing_id}")
    async def get_listing(session: AsyncSession = Depends(get_async_session)):
        ...

Usage elsewhere:
    async with session_scope() as session:
        await OfferService(session).expire_offers()
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace_exchange.config import get_settings
from marketplace_exchange.infrastructure.notifications import (
    deliver_notifications,
    discard_notifications,
)
from marketplace_exchange.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = get_logger(__name__)

# Module-level singletons (initialized lazily)
_engine = None
_session_factory = None


def build_engine(database_url: str, **overrides) -> AsyncEngine:
    """Create an async engine, applying pool settings where the backend has a pool."""
    settings = get_settings()
    options: dict = {"echo": settings.db_echo_sql, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )
    options.update(overrides)
    return create_async_engine(database_url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _get_engine():
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url)
        logger.info(
            "database.engine_created",
            backend=make_url(settings.database_url).get_backend_name(),
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(_get_engine())
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session.

    The session is automatically committed on success or rolled back on error.
    """
    async with session_scope() as session:
        yield session


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Run one unit of work: commit on success, roll back on any exception.

    Notifications queued during the unit of work go out only after the
    commit; a rollback drops them.
    """
    factory = factory or _get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_notifications(session)
            raise
        await deliver_notifications(session)


async def init_db() -> None:
    """Initialize the database engine and create tables if they don't exist.

    Called during FastAPI's lifespan startup. In production, use Alembic
    migrations instead of create_all.
    """
    from marketplace_exchange.infrastructure.database.orm_models import Base

    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def close_db() -> None:
    """Dispose of the database engine. Called during FastAPI's lifespan shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
