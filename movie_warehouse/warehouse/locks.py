"""
Warehouse write locks.

One writer per entity at a time. Within a process this is an asyncio.Lock
per dimension or fact; on PostgreSQL the same names are also taken as
transaction-scoped advisory locks so separate loader processes serialize.
Locks are always acquired in sorted name order.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger(__name__)

ADVISORY_LOCK_NAMESPACE = "movie_warehouse"


class WarehouseLocks:
    """Per-entity write locks for batch loads."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def is_locked(self, name: str) -> bool:
        return name in self._locks and self._locks[name].locked()

    @asynccontextmanager
    async def hold(self, names: Iterable[str]) -> AsyncIterator[List[str]]:
        """Hold the locks for every named entity."""
        ordered = sorted(set(names))
        acquired: List[asyncio.Lock] = []
        try:
            for name in ordered:
                if self.is_locked(name):
                    logger.info("Waiting for entity lock", entity=name)
                lock = self._locks[name]
                await lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    @staticmethod
    async def take_advisory_locks(session: AsyncSession, names: Iterable[str]) -> bool:
        """
        Take PostgreSQL transaction-level advisory locks.

        Returns False without doing anything on other databases.
        """
        if session.get_bind().dialect.name != "postgresql":
            return False
        for name in sorted(set(names)):
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:lock_name))"),
                {"lock_name": f"{ADVISORY_LOCK_NAMESPACE}:{name}"},
            )
        return True
