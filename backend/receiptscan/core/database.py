"""Database configuration and session management.

This module constructs an asynchronous SQLAlchemy engine and session
factory for the application.  The connection string comes from
``DATABASE_URL``; plain ``sqlite://`` and ``postgresql://`` URLs are
upgraded to their async drivers (aiosqlite and psycopg respectively).

The engine and session factory defined here are only used at the edges
(FastAPI dependencies, the Dramatiq worker).  Services receive a session
factory explicitly so tests can hand them an in-memory database.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from receiptscan.core.config import database_url

logger = logging.getLogger(__name__)

# Declarative base
Base = declarative_base()


def normalise_async_url(url: str) -> str:
    """Return ``url`` with an async-capable driver."""
    url_obj = make_url(url)
    driver = url_obj.drivername or ""
    if driver == "sqlite":
        url_obj = url_obj.set(drivername="sqlite+aiosqlite")
    elif driver in {"postgresql", "postgres", "postgresql+psycopg2", "postgresql+asyncpg"}:
        url_obj = url_obj.set(drivername="postgresql+psycopg")
    return url_obj.render_as_string(hide_password=False)


def build_engine(url: str, **kwargs: Any):
    engine_kwargs: dict[str, Any] = dict(echo=False, pool_pre_ping=True)
    engine_kwargs.update(kwargs)
    return create_async_engine(normalise_async_url(url), **engine_kwargs)


def build_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(database_url())

# Create session factory
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a database session.

    This function is intended for FastAPI dependency injection.  Each
    session is scoped to the request and closed after use.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind=None) -> None:
    """Create all tables defined on the declarative ``Base``.

    Typically called during application startup in development; production
    deployments manage the schema out of band.
    """
    target = bind if bind is not None else engine
    # Import all models to ensure metadata is populated
    from receiptscan.models import tables  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready (%s)", _masked_url(target))


def _masked_url(target) -> str:
    return target.url.render_as_string(hide_password=True)


def get_db_debug_info() -> Dict[str, Any]:
    """Return non-sensitive information about the current DB engine for debugging."""
    url_obj = make_url(str(engine.url))
    return {
        "drivername": url_obj.drivername,
        "host": url_obj.host,
        "port": url_obj.port,
        "database": url_obj.database,
        "url": url_obj.render_as_string(hide_password=True),
    }
