"""
SCD Reconciler

Compares an incoming dimension record with the current version of its
business key and applies the SCD decision:

- no current version: insert version 1
- nothing differs: no change
- only type-1 attributes differ: overwrite them on the current version
- a type-2 attribute differs: close the current version the day before the
  incoming as-of date and insert the next version

History is never rewritten for late data. A record is superseded when it
is dated before the last change applied to the current row, or, in a
replayed batch, when a later batch has changed the row on the same date.
A superseded record is a no change when its type-2 attributes match the
version in effect on its as-of date (type-1 values keep no history, so the
later correction stands) and is rejected as stale otherwise.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movie_warehouse.database.models import OPEN_END_DATE
from movie_warehouse.warehouse.catalog import DimensionSpec, SCDType, WarehouseCatalog
from movie_warehouse.warehouse.exceptions import DurabilityError, StaleRecordError
from movie_warehouse.warehouse.key_registry import SurrogateKeyRegistry

logger = structlog.get_logger(__name__)


class ReconcileAction(str, Enum):
    """Outcome of reconciling one dimension record"""
    INSERTED = "inserted"
    NO_CHANGE = "no_change"
    CORRECTED_IN_PLACE = "corrected_in_place"
    NEW_VERSION = "new_version"


@dataclass
class ReconcileResult:
    """What the reconciler did for one record"""
    action: ReconcileAction
    surrogate_key: int
    version: int
    changed_fields: List[str] = field(default_factory=list)
    closed_at: Optional[date] = None
    effective_from: Optional[date] = None


class SCDReconciler:
    """
    Applies SCD type 1 / type 2 handling to dimension records.

    Example:
        reconciler = SCDReconciler(catalog, registry)
        result = await reconciler.reconcile(
            session, "dim_director", "nm0000001", None,
            {"credited_name": "John Smith", "birth_year": 1950},
            date(2021, 6, 1), "batch-2",
        )
    """

    def __init__(self, catalog: WarehouseCatalog, registry: SurrogateKeyRegistry):
        self.catalog = catalog
        self.registry = registry

    async def current_version(
        self,
        session: AsyncSession,
        dimension: DimensionSpec,
        surrogate_key: int,
    ):
        model = dimension.model
        result = await session.execute(
            select(model).where(
                model.surrogate_key == surrogate_key,
                model.is_current.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def version_on(
        self,
        session: AsyncSession,
        dimension: DimensionSpec,
        surrogate_key: int,
        as_of: date,
    ):
        """The version whose inclusive effective range covers as_of."""
        model = dimension.model
        result = await session.execute(
            select(model).where(
                model.surrogate_key == surrogate_key,
                model.effective_from <= as_of,
                model.effective_to >= as_of,
            )
        )
        return result.scalar_one_or_none()

    async def history(
        self,
        session: AsyncSession,
        dimension_name: str,
        business_key: str,
    ) -> list:
        """All versions of a business key, oldest first."""
        model = self.catalog.dimension(dimension_name).model
        result = await session.execute(
            select(model)
            .where(model.business_key == business_key)
            .order_by(model.version)
        )
        return list(result.scalars().all())

    async def reconcile(
        self,
        session: AsyncSession,
        dimension_name: str,
        business_key: str,
        surrogate_key: Optional[int],
        attributes: Mapping[str, Any],
        as_of: date,
        batch_id: str,
        replay: bool = False,
    ) -> ReconcileResult:
        """
        Reconcile one typed record against the dimension.

        `attributes` is the full attribute image; a missing attribute is
        treated as null. When `surrogate_key` is None the registry is asked
        for it. `replay` marks a batch id that has already committed.

        Raises:
            StaleRecordError: superseded record that contradicts history
            DurabilityError: the row write could not be flushed
        """
        dimension = self.catalog.dimension(dimension_name)
        if surrogate_key is None:
            surrogate_key = await self.registry.assign_or_get(
                session, dimension_name, business_key, batch_id
            )

        incoming = {name: attributes.get(name) for name in dimension.attribute_names}
        current = await self.current_version(session, dimension, surrogate_key)

        if current is None:
            row = dimension.model(
                surrogate_key=surrogate_key,
                version=1,
                business_key=business_key,
                effective_from=as_of,
                effective_to=OPEN_END_DATE,
                is_current=True,
                last_change_as_of=as_of,
                load_batch_id=batch_id,
                **incoming,
            )
            session.add(row)
            await self._flush(session, dimension_name, business_key)
            return ReconcileResult(
                ReconcileAction.INSERTED, surrogate_key, 1, effective_from=as_of
            )

        if replay and as_of <= current.last_change_as_of:
            last_writer = current.updated_batch_id or current.load_batch_id
            if last_writer == batch_id:
                # The row still holds this batch's final image for the key
                return ReconcileResult(ReconcileAction.NO_CHANGE, surrogate_key, current.version)
            superseded = True
        else:
            superseded = as_of < current.last_change_as_of

        if superseded:
            earlier = await self.version_on(session, dimension, surrogate_key, as_of)
            if earlier is not None and all(
                getattr(earlier, name) == incoming[name] for name in dimension.tracked_attributes
            ):
                return ReconcileResult(ReconcileAction.NO_CHANGE, surrogate_key, earlier.version)
            raise StaleRecordError(
                f"{dimension_name}/{business_key}: as_of {as_of} is superseded by the "
                f"change applied as of {current.last_change_as_of}"
            )

        changed = [
            name for name, value in incoming.items() if getattr(current, name) != value
        ]
        if not changed:
            return ReconcileResult(ReconcileAction.NO_CHANGE, surrogate_key, current.version)

        tracked = [n for n in changed if dimension.scd_type_of(n) == SCDType.TYPE_2]

        # A same-day type-2 change would close the version before it started
        if not tracked or as_of == current.effective_from:
            for name in changed:
                setattr(current, name, incoming[name])
            current.last_change_as_of = as_of
            current.updated_batch_id = batch_id
            await self._flush(session, dimension_name, business_key)
            logger.debug(
                "Dimension row corrected in place",
                dimension=dimension_name,
                business_key=business_key,
                changed=changed,
            )
            return ReconcileResult(
                ReconcileAction.CORRECTED_IN_PLACE, surrogate_key, current.version, changed
            )

        closed_at = as_of - timedelta(days=1)
        current.effective_to = closed_at
        current.is_current = False
        current.updated_batch_id = batch_id

        next_version = current.version + 1
        session.add(
            dimension.model(
                surrogate_key=surrogate_key,
                version=next_version,
                business_key=business_key,
                effective_from=as_of,
                effective_to=OPEN_END_DATE,
                is_current=True,
                last_change_as_of=as_of,
                load_batch_id=batch_id,
                **incoming,
            )
        )
        await self._flush(session, dimension_name, business_key)

        logger.debug(
            "Dimension version created",
            dimension=dimension_name,
            business_key=business_key,
            version=next_version,
            tracked_changes=tracked,
        )
        return ReconcileResult(
            ReconcileAction.NEW_VERSION,
            surrogate_key,
            next_version,
            changed,
            closed_at=closed_at,
            effective_from=as_of,
        )

    async def _flush(self, session: AsyncSession, dimension_name: str, business_key: str) -> None:
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Dimension row write failed",
                dimension=dimension_name,
                business_key=business_key,
                error=str(e),
            )
            raise DurabilityError(
                f"Could not write {dimension_name} row for {business_key}"
            ) from e
