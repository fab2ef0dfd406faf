"""
Surrogate Key Registry

Single source of truth for surrogate keys. Each dimension has its own key
space backed by a counter row; a business key is mapped once and keeps its
key for life. A key is only handed out after its mapping has been flushed
to the database.
"""

import asyncio
from collections import defaultdict
from typing import Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movie_warehouse.database.models import SurrogateKeyCounter, SurrogateKeyMap
from movie_warehouse.warehouse.exceptions import DurabilityError

logger = structlog.get_logger(__name__)


class SurrogateKeyRegistry:
    """
    Allocates and looks up surrogate keys.

    Allocation for a dimension runs under that dimension's lock, and the
    counter is advanced with a single UPDATE so concurrent writers on the
    database side cannot hand out the same value either.

    Example:
        registry = SurrogateKeyRegistry()
        key = await registry.assign_or_get(session, "dim_director", "nm0000001", "batch-1")
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def lookup(
        self,
        session: AsyncSession,
        dimension_name: str,
        business_key: str,
    ) -> Optional[int]:
        """Existing surrogate key for a business key, or None."""
        result = await session.execute(
            select(SurrogateKeyMap.surrogate_key).where(
                SurrogateKeyMap.dimension_name == dimension_name,
                SurrogateKeyMap.business_key == business_key,
            )
        )
        return result.scalar_one_or_none()

    async def assign_or_get(
        self,
        session: AsyncSession,
        dimension_name: str,
        business_key: str,
        batch_id: str,
    ) -> int:
        """
        Return the surrogate key for a business key, allocating one if needed.

        Raises:
            DurabilityError: The new mapping could not be persisted
        """
        async with self._locks[dimension_name]:
            existing = await self.lookup(session, dimension_name, business_key)
            if existing is not None:
                return existing

            try:
                surrogate_key = await self._next_value(session, dimension_name)
                session.add(
                    SurrogateKeyMap(
                        dimension_name=dimension_name,
                        business_key=business_key,
                        surrogate_key=surrogate_key,
                        created_batch_id=batch_id,
                    )
                )
                await session.flush()
            except SQLAlchemyError as e:
                logger.error(
                    "Surrogate key persist failed",
                    dimension=dimension_name,
                    business_key=business_key,
                    error=str(e),
                )
                raise DurabilityError(
                    f"Could not persist surrogate key for {dimension_name}/{business_key}"
                ) from e

        logger.debug(
            "Surrogate key allocated",
            dimension=dimension_name,
            business_key=business_key,
            surrogate_key=surrogate_key,
        )
        return surrogate_key

    async def _next_value(self, session: AsyncSession, dimension_name: str) -> int:
        result = await session.execute(
            update(SurrogateKeyCounter)
            .where(SurrogateKeyCounter.dimension_name == dimension_name)
            .values(last_value=SurrogateKeyCounter.last_value + 1)
            .returning(SurrogateKeyCounter.last_value)
            .execution_options(synchronize_session=False)
        )
        value = result.scalar_one_or_none()
        if value is not None:
            return value

        # First key for this dimension
        session.add(SurrogateKeyCounter(dimension_name=dimension_name, last_value=1))
        await session.flush()
        return 1
