"""
Database Connection Management

Async engine and session factory with SQLAlchemy 2.0. PostgreSQL (asyncpg)
in deployments, SQLite (aiosqlite) in tests and local demos; the rollup's
upserts go through dialect_insert so both accept ON CONFLICT.
"""

from contextlib import asynccontextmanager
import time
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from gear_popularity.config import get_settings
from gear_popularity.database.models import Base

logger = structlog.get_logger(__name__)
settings = get_settings()

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(url: Optional[str] = None, **engine_options: Any) -> AsyncEngine:
    """
    Create the engine and session factory, then probe the connection.

    Args:
        url: Database URL; defaults to the configured PostgreSQL URL
        **engine_options: Extra create_async_engine options (e.g. poolclass)
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.warning("Database already initialized")
        return _engine

    url = url or settings.database.async_url
    backend = make_url(url).get_backend_name()

    engine_config: Dict[str, Any] = {"echo": settings.database.echo}
    if backend == "postgresql":
        # Short-lived rollup and API sessions; pgbouncer does the pooling
        engine_config.update(pool_pre_ping=True, poolclass=NullPool)
    engine_config.update(engine_options)

    _engine = create_async_engine(url, **engine_config)
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Failed to connect to database", backend=backend, error=str(e))
        await close_database()
        raise

    logger.info("Database connection established", backend=backend)
    return _engine


async def close_database() -> None:
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database engine disposed")


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


async def create_tables() -> None:
    """Create the catalog mirror and popularity tables (tests and demos)"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created", tables=len(Base.metadata.tables))


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Unit-of-work session: commits when the block exits cleanly, rolls back
    and re-raises otherwise, including when the enclosing task is cancelled.

    Example:
        async with get_db() as db:
            await record_event(db, "canon-eos-r5", "view", weights)
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _async_session_factory()
    try:
        yield session
        await session.commit()
    except BaseException as e:
        logger.debug("Rolling back session", error_type=type(e).__name__)
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_db_dependency() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency wrapping get_db()"""
    async with get_db() as session:
        yield session


def dialect_insert(session: AsyncSession, model):
    """INSERT for the session's dialect, exposing on_conflict_do_update and `.excluded`"""
    dialect = session.bind.dialect.name
    try:
        insert = _UPSERT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"Upsert not supported for dialect: {dialect}") from None
    return insert(model)


async def check_database_health() -> Dict[str, Any]:
    """Round-trip a SELECT 1 and report latency"""
    start = time.perf_counter()
    try:
        async with get_db() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError, RuntimeError) as e:
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "backend": get_engine().dialect.name,
        "latency_ms": round((time.perf_counter() - start) * 1000, 2),
    }
