"""
Test Suite Configuration
"""
from datetime import date
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from movie_warehouse.config import Settings
from movie_warehouse.database.connection import create_schema, create_session_factory
from movie_warehouse.warehouse.catalog import build_movie_catalog
from movie_warehouse.warehouse.coordinator import LoadCoordinator
from movie_warehouse.warehouse.key_registry import SurrogateKeyRegistry
from movie_warehouse.warehouse.normalizer import SourceRecord
from movie_warehouse.warehouse.reconciler import SCDReconciler


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings()


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite warehouse, one per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'warehouse.db'}",
        echo=False,
    )
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def catalog():
    return build_movie_catalog()


@pytest.fixture
def registry() -> SurrogateKeyRegistry:
    return SurrogateKeyRegistry()


@pytest.fixture
def reconciler(catalog, registry) -> SCDReconciler:
    return SCDReconciler(catalog, registry)


@pytest.fixture
def coordinator(session_factory, catalog, test_settings) -> LoadCoordinator:
    return LoadCoordinator(
        session_factory=session_factory,
        catalog=catalog,
        settings=test_settings,
    )


@pytest.fixture
def director_record():
    """Build a dim_director source record"""
    def build(person_id="nm0000001", name="J. Smith", as_of=date(2020, 1, 1), birth_year=1950):
        return SourceRecord(
            entity="dim_director",
            key=person_id,
            as_of=as_of,
            attributes={"credited_name": name, "birth_year": birth_year},
        )
    return build


@pytest.fixture
def movie_record():
    """Build a dim_movie source record"""
    def build(title_id="tt0000001", title="The Long Take", as_of=date(2020, 1, 1), **overrides):
        attributes = {
            "primary_title": title,
            "original_title": title,
            "release_year": 2019,
            "runtime_minutes": 112,
            "genres": "Drama",
            "content_rating": "PG-13",
        }
        attributes.update(overrides)
        return SourceRecord(entity="dim_movie", key=title_id, as_of=as_of, attributes=attributes)
    return build


@pytest.fixture
def performance_record():
    """Build a fact_movie_performance source record"""
    def build(
        title_id="tt0000001",
        director_id="nm0000001",
        as_of=date(2020, 6, 1),
        rating="7.4",
        votes=1200,
        **overrides,
    ):
        attributes = {
            "title_id": title_id,
            "director_id": director_id,
            "average_rating": rating,
            "num_votes": votes,
            "gross_revenue": "1500000.00",
        }
        attributes.update(overrides)
        return SourceRecord(
            entity="fact_movie_performance",
            key=title_id,
            as_of=as_of,
            attributes=attributes,
        )
    return build
