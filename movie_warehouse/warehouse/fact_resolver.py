"""
Fact Resolver

Resolves each dimension reference of a fact to the version active on the
fact's as-of date, then inserts the fact or updates it in place. Facts keep
no history; only dimensions are versioned.

The stored as_of_date and load_batch_id record the last record applied to
a grain. A replayed batch never overwrites a grain that it or a later
batch already wrote on the same or a later date.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movie_warehouse.warehouse.catalog import DimensionSpec, WarehouseCatalog
from movie_warehouse.warehouse.exceptions import (
    DimensionNotFoundError,
    DurabilityError,
    StaleRecordError,
)
from movie_warehouse.warehouse.key_registry import SurrogateKeyRegistry
from movie_warehouse.warehouse.stages import BatchContext, BatchStage

logger = structlog.get_logger(__name__)


def _fit_to_column(model, name: str, value: Any) -> Any:
    """Round decimals to the column scale so stored and incoming values compare equal."""
    scale = getattr(model.__table__.c[name].type, "scale", None)
    if isinstance(value, Decimal) and scale is not None:
        return value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)
    return value


class FactAction(str, Enum):
    """Outcome of resolving one fact record"""
    INSERTED = "inserted"
    UPDATED = "updated"
    NO_CHANGE = "no_change"


@dataclass
class ResolvedReference:
    """A dimension version pinned by a fact"""
    dimension: str
    surrogate_key: int
    version: int


@dataclass
class FactResult:
    action: FactAction
    grain_key: str
    references: Dict[str, Optional[ResolvedReference]]
    changed_fields: List[str] = field(default_factory=list)


class FactResolver:
    """
    Loads fact rows against already-reconciled dimensions.

    Example:
        resolver = FactResolver(catalog, registry)
        result = await resolver.resolve(
            session, "fact_movie_performance", "tt0000001",
            {"average_rating": Decimal("7.4"), "num_votes": 1200},
            {"movie": "tt0000001", "director": "nm0000001", "studio": None},
            date(2021, 7, 1), "batch-3", context,
        )
    """

    def __init__(self, catalog: WarehouseCatalog, registry: SurrogateKeyRegistry):
        self.catalog = catalog
        self.registry = registry

    async def version_as_of(
        self,
        session: AsyncSession,
        dimension: DimensionSpec,
        business_key: str,
        as_of: date,
    ) -> Optional[ResolvedReference]:
        """The dimension version whose effective range contains as_of."""
        surrogate_key = await self.registry.lookup(session, dimension.name, business_key)
        if surrogate_key is None:
            return None

        model = dimension.model
        result = await session.execute(
            select(model.version).where(
                model.surrogate_key == surrogate_key,
                model.effective_from <= as_of,
                model.effective_to >= as_of,
            )
        )
        version = result.scalar_one_or_none()
        if version is None:
            return None
        return ResolvedReference(dimension.name, surrogate_key, version)

    async def resolve(
        self,
        session: AsyncSession,
        fact_name: str,
        grain_key: str,
        measures: Mapping[str, Any],
        dimension_business_keys: Mapping[str, Optional[str]],
        as_of: date,
        batch_id: str,
        context: BatchContext,
    ) -> FactResult:
        """
        Resolve and load one fact record.

        Args:
            dimension_business_keys: Business key per reference, keyed by the
                reference's column prefix (e.g. "movie", "director")

        Raises:
            LoadOrderingError: The batch has not finished its dimension stage
            DimensionNotFoundError: A reference has no version at as_of
            StaleRecordError: as_of precedes the stored fact
            DurabilityError: The fact write could not be flushed
        """
        context.require(BatchStage.FACTS)
        fact = self.catalog.fact(fact_name)

        references: Dict[str, Optional[ResolvedReference]] = {}
        for ref in fact.references:
            business_key = dimension_business_keys.get(ref.column_prefix)
            if business_key is None:
                if ref.required:
                    raise DimensionNotFoundError(
                        f"{fact_name}/{grain_key}: no {ref.dimension} key given"
                    )
                references[ref.column_prefix] = None
                continue

            resolved = await self.version_as_of(
                session, self.catalog.dimension(ref.dimension), business_key, as_of
            )
            if resolved is None:
                raise DimensionNotFoundError(
                    f"{fact_name}/{grain_key}: {ref.dimension} {business_key} "
                    f"has no version active on {as_of}"
                )
            references[ref.column_prefix] = resolved

        values: Dict[str, Any] = {"as_of_date": as_of}
        for ref in fact.references:
            resolved = references[ref.column_prefix]
            values[ref.key_column] = resolved.surrogate_key if resolved else None
            values[ref.version_column] = resolved.version if resolved else None
        for name in fact.measure_names:
            values[name] = _fit_to_column(fact.model, name, measures.get(name))

        existing = await session.get(fact.model, grain_key)
        if existing is None:
            session.add(fact.model(grain_key=grain_key, load_batch_id=batch_id, **values))
            await self._flush(session, fact_name, grain_key)
            return FactResult(FactAction.INSERTED, grain_key, references)

        if context.replay and as_of <= existing.as_of_date:
            # Applied when the batch first committed, possibly superseded since
            return FactResult(FactAction.NO_CHANGE, grain_key, references)

        if as_of < existing.as_of_date:
            raise StaleRecordError(
                f"{fact_name}/{grain_key}: as_of {as_of} precedes stored fact "
                f"as_of {existing.as_of_date}"
            )

        changed = [name for name, value in values.items() if getattr(existing, name) != value]
        if not changed:
            return FactResult(FactAction.NO_CHANGE, grain_key, references)

        for name in changed:
            setattr(existing, name, values[name])
        existing.load_batch_id = batch_id
        await self._flush(session, fact_name, grain_key)

        logger.debug("Fact updated", fact=fact_name, grain_key=grain_key, changed=changed)
        return FactResult(FactAction.UPDATED, grain_key, references, changed)

    async def _flush(self, session: AsyncSession, fact_name: str, grain_key: str) -> None:
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error("Fact write failed", fact=fact_name, grain_key=grain_key, error=str(e))
            raise DurabilityError(f"Could not write {fact_name} row for {grain_key}") from e
