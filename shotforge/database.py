"""Async database engine and session management.

This module provides the async SQLAlchemy 2.0 engine and session factory
backing StorageService. The engine is created lazily so importing the
package never touches the database.

Usage:
    from shotforge.database import get_session_factory, init_models

    session_factory = get_session_factory()
    await init_models(get_engine())
    storage = StorageService(session_factory)
"""

import os
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shotforge.config import get_database_url
from shotforge.models import Base


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Return the process-wide engine for DATABASE_URL."""
    database_url = get_database_url()
    options: dict[str, object] = {"echo": os.getenv("DATABASE_ECHO", "").lower() == "true"}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=5, pool_pre_ping=True)
    return create_async_engine(database_url, **options)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,  # CRITICAL: prevents attribute expiration after commit
    )


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_test_engine(
    database_url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple["AsyncEngine", async_sessionmaker[AsyncSession]]:
    """Create an async engine for testing.

    Args:
        database_url: Test database URL (defaults to in-memory SQLite).

    Returns:
        Tuple of (engine, async_session_factory) for testing.
    """
    test_engine = create_async_engine(
        database_url,
        echo=False,
    )
    test_session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return test_engine, test_session_factory
