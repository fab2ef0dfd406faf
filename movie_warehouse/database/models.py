"""
Database Models - Movie Catalog Star Schema

Dimension tables carry SCD Type 2 history: one row per version, all versions
of a business key sharing one surrogate key. Fact tables hold one row per
grain key and point at the exact dimension version active at the fact's
as-of date.

Dimension Tables:
- DimMovie: Title attributes
- DimDirector: Director credits
- DimStudio: Studio ownership

Fact Tables:
- FactMoviePerformance: Ratings, votes and box-office measures per movie

Load bookkeeping:
- SurrogateKeyMap / SurrogateKeyCounter: durable key registry
- LoadBatch: batch status and watermark
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKeyConstraint,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Open-ended effective_to for the current version of a dimension row
OPEN_END_DATE = date(9999, 12, 31)


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class BatchStatus(str, Enum):
    """Load batch status enumeration"""
    IN_PROGRESS = "in_progress"
    COMMITTED = "committed"
    FAILED = "failed"


# =============================================================================
# SHARED COLUMNS
# =============================================================================

class SCD2Mixin:
    """
    SCD Type 2 history columns.

    (surrogate_key, version) identifies a row. effective_from and
    effective_to are both inclusive; the current version ends on
    OPEN_END_DATE. last_change_as_of is the as-of date of the newest record
    applied to the row, which moves past effective_from on in-place
    corrections.
    """

    surrogate_key: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    business_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date] = mapped_column(Date, nullable=False, default=OPEN_END_DATE)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_change_as_of: Mapped[date] = mapped_column(Date, nullable=False)

    # Audit
    load_batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_batch_id: Mapped[Optional[str]] = mapped_column(String(64))


class FactMixin:
    """Grain and audit columns shared by fact tables."""

    grain_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    load_batch_id: Mapped[str] = mapped_column(String(64), nullable=False)


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class DimMovie(SCD2Mixin, Base):
    """
    Movie Dimension Table

    Business key is the external title id (e.g. an IMDb tconst).
    """
    __tablename__ = "dim_movie"

    primary_title: Mapped[Optional[str]] = mapped_column(String(500))
    original_title: Mapped[Optional[str]] = mapped_column(String(500))
    release_year: Mapped[Optional[int]] = mapped_column(Integer)
    runtime_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    genres: Mapped[Optional[str]] = mapped_column(String(200))
    content_rating: Mapped[Optional[str]] = mapped_column(String(20))

    __table_args__ = (
        Index("ix_dim_movie_current", "business_key", "is_current"),
    )


class DimDirector(SCD2Mixin, Base):
    """
    Director Dimension Table

    Business key is the external person id (e.g. an IMDb nconst).
    """
    __tablename__ = "dim_director"

    credited_name: Mapped[Optional[str]] = mapped_column(String(200))
    birth_year: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_dim_director_current", "business_key", "is_current"),
    )


class DimStudio(SCD2Mixin, Base):
    """
    Studio Dimension Table

    Ownership changes (parent_company) are version-tracked.
    """
    __tablename__ = "dim_studio"

    studio_name: Mapped[Optional[str]] = mapped_column(String(200))
    parent_company: Mapped[Optional[str]] = mapped_column(String(200))
    country: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        Index("ix_dim_studio_current", "business_key", "is_current"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class FactMoviePerformance(FactMixin, Base):
    """
    Movie Performance Fact Table

    Grain: one row per movie. Each dimension reference is stored as the
    surrogate key plus the version active at as_of_date.
    """
    __tablename__ = "fact_movie_performance"

    movie_key: Mapped[int] = mapped_column(Integer, nullable=False)
    movie_version: Mapped[int] = mapped_column(Integer, nullable=False)
    director_key: Mapped[int] = mapped_column(Integer, nullable=False)
    director_version: Mapped[int] = mapped_column(Integer, nullable=False)
    studio_key: Mapped[Optional[int]] = mapped_column(Integer)
    studio_version: Mapped[Optional[int]] = mapped_column(Integer)

    # Measures
    average_rating: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    num_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_revenue: Mapped[Optional[Decimal]] = mapped_column(Numeric(16, 2))
    budget: Mapped[Optional[Decimal]] = mapped_column(Numeric(16, 2))

    __table_args__ = (
        ForeignKeyConstraint(
            ["movie_key", "movie_version"],
            ["dim_movie.surrogate_key", "dim_movie.version"],
        ),
        ForeignKeyConstraint(
            ["director_key", "director_version"],
            ["dim_director.surrogate_key", "dim_director.version"],
        ),
        ForeignKeyConstraint(
            ["studio_key", "studio_version"],
            ["dim_studio.surrogate_key", "dim_studio.version"],
        ),
        Index("ix_fact_movie_performance_movie", "movie_key"),
        Index("ix_fact_movie_performance_director", "director_key"),
    )


# =============================================================================
# LOAD BOOKKEEPING
# =============================================================================

class SurrogateKeyMap(Base):
    """
    Surrogate Key Registry

    Durable business key -> surrogate key mapping, one key space per
    dimension. Rows are never updated or deleted.
    """
    __tablename__ = "surrogate_key_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dimension_name: Mapped[str] = mapped_column(String(64), nullable=False)
    business_key: Mapped[str] = mapped_column(String(64), nullable=False)
    surrogate_key: Mapped[int] = mapped_column(Integer, nullable=False)
    created_batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint("dimension_name", "business_key", name="uq_key_map_business_key"),
        UniqueConstraint("dimension_name", "surrogate_key", name="uq_key_map_surrogate_key"),
    )


class SurrogateKeyCounter(Base):
    """Last allocated surrogate key per dimension."""
    __tablename__ = "surrogate_key_counters"

    dimension_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LoadBatch(Base):
    """
    Load Batch Table

    One row per batch id. Only committed batches advance the watermark.
    """
    __tablename__ = "load_batches"

    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[BatchStatus] = mapped_column(SQLEnum(BatchStatus), nullable=False)
    watermark: Mapped[Optional[datetime]] = mapped_column(DateTime)
    records_received: Mapped[int] = mapped_column(Integer, default=0)
    report: Mapped[Optional[dict]] = mapped_column(JSON)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_load_batches_status", "status"),
    )
