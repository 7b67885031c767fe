"""Async database engine and session management.

Provides:
    - build_engine: An engine for any URL; in-memory SQLite gets a StaticPool.
    - get_engine / get_session_factory: Process-wide singletons for the app.
    - init_db / close_db: Lifecycle hooks for FastAPI's lifespan.

The escrow store opens one short session per operation from the factory, so
no transaction stays open while a chain submission is in flight.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from streampay_escrow.config import get_settings
from streampay_escrow.logging_config import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, **pool_options: Any) -> AsyncEngine:
    """Create an async engine.

    In-memory SQLite lives on a single connection, so every session must
    share it (StaticPool) and pool sizing options do not apply.
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url:
            return create_async_engine(database_url, poolclass=StaticPool)
        return create_async_engine(database_url)
    return create_async_engine(database_url, pool_pre_ping=True, **pool_options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            echo=settings.db_echo_sql,
        )
        logger.info(
            "database.engine_created",
            dialect=_engine.dialect.name,
            pool_size=settings.db_pool_size,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    from streampay_escrow.infrastructure.database.orm_models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create the engine; create tables when running in development.

    Other environments expect the schema to be provisioned already.
    """
    engine = get_engine()
    if get_settings().is_development:
        await create_tables(engine)
        logger.info("database.tables_created", dialect=engine.dialect.name)
    else:
        logger.info("database.skipping_create_all", env=get_settings().app_env)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
