"""
Unit Tests - Settings, Connection and Locks
"""
import asyncio
import logging

import pytest
import structlog
from pydantic import ValidationError
from sqlalchemy import inspect

from movie_warehouse.config import Settings
from movie_warehouse.config.logging import configure_logging, service_context, warehouse_handlers
from movie_warehouse.database import close_database, get_session_factory, init_database
from movie_warehouse.warehouse.locks import WarehouseLocks


class TestSettings:
    """Tests for environment-driven settings"""

    def test_defaults(self):
        settings = Settings()

        assert settings.database.url.startswith("sqlite+aiosqlite")
        assert settings.load.max_reject_details == 10000
        assert settings.load.advisory_locks is True

    def test_environment_overrides(self, monkeypatch):
        """Test prefixed variables reach their section"""
        monkeypatch.setenv("WAREHOUSE_DB_URL", "postgresql+asyncpg://wh@localhost/movies")
        monkeypatch.setenv("LOAD_MAX_REJECT_DETAILS", "50")
        monkeypatch.setenv("LOG_FORMAT", "text")

        settings = Settings()

        assert settings.database.url == "postgresql+asyncpg://wh@localhost/movies"
        assert settings.load.max_reject_details == 50
        assert settings.monitoring.log_format == "text"

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "moon")
        with pytest.raises(ValidationError):
            Settings()


@pytest.fixture
def restore_logging():
    """Put the root logger and structlog back after a logging test"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in warehouse_handlers(root):
        root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)
    structlog.reset_defaults()


class TestLogging:
    """Tests for configure_logging"""

    def test_reconfigure_keeps_one_handler(self, restore_logging):
        """Test repeated calls replace the warehouse handler and leave others alone"""
        foreign = logging.NullHandler()
        restore_logging.addHandler(foreign)

        configure_logging("DEBUG")
        configure_logging("WARNING", log_format="text")

        assert len(warehouse_handlers(restore_logging)) == 1
        assert foreign in restore_logging.handlers
        assert restore_logging.level == logging.WARNING
        restore_logging.removeHandler(foreign)

    def test_events_carry_service_identity(self, test_settings):
        add_service_context = service_context(test_settings)

        event = add_service_context(None, "info", {"event": "Batch committed"})

        assert event["service"] == test_settings.app_name
        assert event["environment"] == test_settings.app_env
        assert event["service_version"] == test_settings.version


class TestConnection:
    """Tests for engine lifecycle"""

    async def test_init_creates_schema(self, tmp_path):
        """Test init_database connects and creates the warehouse tables"""
        engine = await init_database(f"sqlite+aiosqlite:///{tmp_path / 'init.db'}")
        try:
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda c: inspect(c).get_table_names())
            assert {"dim_movie", "dim_director", "dim_studio", "fact_movie_performance"} <= set(tables)
            assert {"surrogate_key_map", "surrogate_key_counters", "load_batches"} <= set(tables)
            assert get_session_factory() is not None
        finally:
            await close_database()

    def test_factory_requires_init(self):
        with pytest.raises(RuntimeError):
            get_session_factory()


class TestWarehouseLocks:
    """Tests for per-entity write locks"""

    async def test_hold_sorts_and_releases(self):
        locks = WarehouseLocks()

        async with locks.hold(["dim_studio", "dim_director", "dim_studio"]) as held:
            assert held == ["dim_director", "dim_studio"]
            assert locks.is_locked("dim_director")

        assert not locks.is_locked("dim_director")
        assert not locks.is_locked("dim_studio")

    async def test_second_holder_waits(self):
        """Test overlapping holders run one after the other"""
        locks = WarehouseLocks()
        events = []

        async def writer(name, names):
            async with locks.hold(names):
                events.append(f"{name} start")
                await asyncio.sleep(0.01)
                events.append(f"{name} end")

        await asyncio.gather(
            writer("a", ["dim_movie", "dim_director"]),
            writer("b", ["dim_director"]),
        )

        assert events == ["a start", "a end", "b start", "b end"]

    async def test_advisory_locks_skip_sqlite(self, test_db):
        """Test advisory locks are PostgreSQL only"""
        assert await WarehouseLocks.take_advisory_locks(test_db, ["dim_movie"]) is False
