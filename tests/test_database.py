"""Tests for database engine and session management.

Tests the lazily created engine, the session factory configuration and
table creation for the stored_records table.
"""

import os
from unittest.mock import patch

import pytest
from sqlalchemy import inspect, text

from shotforge.config import get_database_url
from shotforge.database import create_test_engine, get_engine, get_session_factory, init_models
from shotforge.services.storage import StorageService


@pytest.fixture
def clear_engine_caches():
    """Reset cached URL/engine/session factory around a test."""
    for cached in (get_database_url, get_engine, get_session_factory):
        cached.cache_clear()
    yield
    for cached in (get_database_url, get_engine, get_session_factory):
        cached.cache_clear()


class TestGetEngine:
    def test_engine_uses_configured_url(self, clear_engine_caches):
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite+aiosqlite:///:memory:"}):
            engine = get_engine()

        assert str(engine.url) == "sqlite+aiosqlite:///:memory:"
        assert engine.echo is False

    def test_engine_and_factory_are_cached(self, clear_engine_caches):
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite+aiosqlite:///:memory:"}):
            assert get_engine() is get_engine()
            assert get_session_factory() is get_session_factory()

    def test_echo_enabled_from_environment(self, clear_engine_caches):
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite+aiosqlite:///:memory:", "DATABASE_ECHO": "true"}):
            assert get_engine().echo is True

    def test_session_factory_does_not_expire_on_commit(self, clear_engine_caches):
        """Test that session factory has expire_on_commit=False.

        Objects must stay readable after commit without a refresh.
        """
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite+aiosqlite:///:memory:"}):
            factory = get_session_factory()

        assert factory.kw["expire_on_commit"] is False


@pytest.mark.asyncio
async def test_create_test_engine_creates_working_connection():
    """Test that create_test_engine creates a working async engine."""
    engine, session_factory = create_test_engine()

    async with session_factory() as session:
        result = await session.execute(text("SELECT 1"))
        assert result.scalar() == 1

    await engine.dispose()


@pytest.mark.asyncio
async def test_init_models_creates_stored_records_table(tmp_path):
    """[P1] init_models() creates the table StorageService writes to."""
    engine, session_factory = create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")

    await init_models(engine)
    await init_models(engine)  # idempotent

    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    assert "stored_records" in tables

    storage = StorageService(session_factory)
    await storage.put("assets", {"id": "img_1", "project_id": "proj_1"})
    assert await storage.count("assets") == 1

    await engine.dispose()
