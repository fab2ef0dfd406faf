"""
Load Coordinator

The single entry point that mutates the warehouse. A batch runs in stages:

1. Normalize every record and partition dimensions from facts
2. Reconcile dimension groups in the catalog's load order
3. Resolve facts against the reconciled dimensions
4. Mark the batch committed with its watermark

Stages 2-4 share one transaction, so a batch is either fully visible or
not visible at all. Rejected records are reported and the batch goes on.
A durability failure rolls everything back, marks the batch failed and
leaves the watermark where it was. Re-running a committed batch is safe:
the same input reconciles to no change.
"""

import asyncio
import time
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from movie_warehouse.config import Settings, get_settings
from movie_warehouse.database.connection import get_session_factory
from movie_warehouse.database.models import BatchStatus, LoadBatch, utc_now
from movie_warehouse.warehouse.catalog import WarehouseCatalog, build_movie_catalog
from movie_warehouse.warehouse.exceptions import (
    DurabilityError,
    LoadOrderingError,
    RecordRejected,
    RejectReason,
    WatermarkRegressionError,
)
from movie_warehouse.warehouse.fact_resolver import FactAction, FactResolver
from movie_warehouse.warehouse.key_registry import SurrogateKeyRegistry
from movie_warehouse.warehouse.locks import WarehouseLocks
from movie_warehouse.warehouse.normalizer import (
    NormalizedRecord,
    Rejection,
    SourceRecord,
    normalize,
)
from movie_warehouse.warehouse.reconciler import ReconcileAction, SCDReconciler
from movie_warehouse.warehouse.report import LoadReport
from movie_warehouse.warehouse.stages import BatchContext, BatchStage

logger = structlog.get_logger(__name__)

Watermark = Union[datetime, date, str, None]

_RECONCILE_COUNTERS = {
    ReconcileAction.INSERTED: "inserted",
    ReconcileAction.NEW_VERSION: "new_versions",
    ReconcileAction.CORRECTED_IN_PLACE: "updated",
    ReconcileAction.NO_CHANGE: "unchanged",
}

_FACT_COUNTERS = {
    FactAction.INSERTED: "inserted",
    FactAction.UPDATED: "updated",
    FactAction.NO_CHANGE: "unchanged",
}


def coerce_watermark(value: Watermark) -> Optional[datetime]:
    """Watermarks are stored as naive UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    elif not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class LoadCoordinator:
    """
    Runs batches through normalization, dimension and fact loading.

    Example:
        coordinator = LoadCoordinator()
        report = await coordinator.run("2024-06-01", records, watermark=datetime(2024, 6, 1))
        print(report.status, report.total_inserted, report.total_rejected)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        catalog: Optional[WarehouseCatalog] = None,
        registry: Optional[SurrogateKeyRegistry] = None,
        locks: Optional[WarehouseLocks] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.catalog = catalog or build_movie_catalog()
        self.registry = registry or SurrogateKeyRegistry()
        self.locks = locks or WarehouseLocks()
        self.reconciler = SCDReconciler(self.catalog, self.registry)
        self.resolver = FactResolver(self.catalog, self.registry)

    # -------------------------------------------------------------------------
    # Batch bookkeeping
    # -------------------------------------------------------------------------

    async def get_batch(self, batch_id: str) -> Optional[LoadBatch]:
        async with self.session_factory() as session:
            return await session.get(LoadBatch, batch_id)

    async def current_watermark(self) -> Optional[datetime]:
        """Highest watermark of any committed batch."""
        async with self.session_factory() as session:
            return await self._committed_watermark(session)

    @staticmethod
    async def _committed_watermark(session: AsyncSession) -> Optional[datetime]:
        result = await session.execute(
            select(func.max(LoadBatch.watermark)).where(
                LoadBatch.status == BatchStatus.COMMITTED
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _check_watermark(report: LoadReport, committed: Optional[datetime]) -> None:
        if report.replay or report.watermark is None or committed is None:
            return
        if report.watermark < committed:
            raise WatermarkRegressionError(
                f"WATERMARK_REGRESSION: {report.watermark.isoformat()} is older than "
                f"committed watermark {committed.isoformat()}"
            )

    async def _check_batch_state(self, session: AsyncSession, report: LoadReport) -> None:
        """
        Re-read replay status and the committed watermark under the write locks.

        Another loader process may have committed between the early check and
        the advisory locks.
        """
        batch = await session.get(LoadBatch, report.batch_id)
        if batch is not None and batch.status == BatchStatus.COMMITTED:
            report.replay = True
        self._check_watermark(report, await self._committed_watermark(session))

    async def _mark_in_progress(self, report: LoadReport) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                batch = await session.get(LoadBatch, report.batch_id)
                if batch is None:
                    batch = LoadBatch(batch_id=report.batch_id, status=BatchStatus.IN_PROGRESS)
                    session.add(batch)
                batch.status = BatchStatus.IN_PROGRESS
                batch.watermark = report.watermark
                batch.records_received = report.records_received
                batch.started_at = report.started_at
                batch.completed_at = None
                batch.report = None
                batch.error_message = None

    async def _mark_failed(self, report: LoadReport, error: str) -> None:
        # A failed replay leaves the earlier commit as it was
        if report.replay:
            return
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    batch = await session.get(LoadBatch, report.batch_id)
                    if batch is None:
                        batch = LoadBatch(batch_id=report.batch_id, status=BatchStatus.FAILED)
                        session.add(batch)
                    batch.status = BatchStatus.FAILED
                    batch.records_received = report.records_received
                    batch.started_at = report.started_at
                    batch.completed_at = utc_now()
                    batch.error_message = error
        except SQLAlchemyError as e:
            logger.error("Could not record batch failure", error=str(e))

    async def _write_committed(self, session: AsyncSession, report: LoadReport) -> None:
        batch = await session.get(LoadBatch, report.batch_id)
        if batch is None:
            batch = LoadBatch(batch_id=report.batch_id, status=BatchStatus.IN_PROGRESS)
            session.add(batch)

        watermark = report.watermark
        if report.replay and batch.watermark is not None:
            watermark = max(batch.watermark, watermark) if watermark else batch.watermark
            report.watermark = watermark

        batch.status = BatchStatus.COMMITTED
        batch.watermark = watermark
        batch.records_received = report.records_received
        batch.report = report.summary()
        batch.error_message = None
        batch.completed_at = report.committed_at

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _normalize_batch(
        self,
        records: List[SourceRecord],
        report: LoadReport,
    ) -> Dict[str, List[NormalizedRecord]]:
        """Normalize and group records by entity, each group in as-of order."""
        groups: Dict[str, List[NormalizedRecord]] = defaultdict(list)
        max_details = self.settings.load.max_reject_details

        for index, record in enumerate(records):
            if record.entity not in self.catalog.entity_names:
                report.add_reject(
                    record.entity,
                    None if record.key is None else str(record.key),
                    index,
                    RejectReason.UNKNOWN_ENTITY,
                    f"unknown entity {record.entity!r}",
                    max_details,
                )
                continue

            result = normalize(record, self.catalog.schema_for(record.entity), index)
            if isinstance(result, Rejection):
                report.add_reject(
                    result.entity, result.key, result.index, result.reason, result.detail, max_details
                )
                continue
            groups[record.entity].append(result)

        for group in groups.values():
            group.sort(key=lambda r: (r.as_of, r.index))
        return groups

    async def _load_dimensions(
        self,
        session: AsyncSession,
        groups: Dict[str, List[NormalizedRecord]],
        report: LoadReport,
    ) -> None:
        max_details = self.settings.load.max_reject_details

        for dimension_name in self.catalog.load_order:
            records = groups.get(dimension_name, [])
            if not records:
                continue
            counts = report.counts_for(dimension_name)

            for record in records:
                try:
                    surrogate_key = await self.registry.assign_or_get(
                        session, dimension_name, record.key, report.batch_id
                    )
                    result = await self.reconciler.reconcile(
                        session,
                        dimension_name,
                        record.key,
                        surrogate_key,
                        record.values,
                        record.as_of,
                        report.batch_id,
                        replay=report.replay,
                    )
                except RecordRejected as e:
                    report.add_reject(
                        dimension_name, record.key, record.index, e.reason, e.detail, max_details
                    )
                    continue
                counter = _RECONCILE_COUNTERS[result.action]
                setattr(counts, counter, getattr(counts, counter) + 1)

            logger.info("Dimension loaded", dimension=dimension_name, **counts.model_dump())

    async def _load_facts(
        self,
        session: AsyncSession,
        groups: Dict[str, List[NormalizedRecord]],
        report: LoadReport,
        context: BatchContext,
    ) -> None:
        max_details = self.settings.load.max_reject_details

        for fact in self.catalog.facts:
            records = groups.get(fact.name, [])
            if not records:
                continue
            counts = report.counts_for(fact.name)

            for record in records:
                business_keys = {
                    ref.column_prefix: record.values.get(ref.field) for ref in fact.references
                }
                measures = {name: record.values.get(name) for name in fact.measure_names}
                try:
                    result = await self.resolver.resolve(
                        session,
                        fact.name,
                        record.key,
                        measures,
                        business_keys,
                        record.as_of,
                        report.batch_id,
                        context,
                    )
                except RecordRejected as e:
                    report.add_reject(
                        fact.name, record.key, record.index, e.reason, e.detail, max_details
                    )
                    continue
                counter = _FACT_COUNTERS[result.action]
                setattr(counts, counter, getattr(counts, counter) + 1)

            logger.info("Fact loaded", fact=fact.name, **counts.model_dump())

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(
        self,
        batch_id: str,
        records: Iterable[SourceRecord],
        watermark: Watermark = None,
    ) -> LoadReport:
        """
        Load one batch.

        Args:
            batch_id: Caller-chosen batch identifier; re-use it to retry
            records: Cleaned source records, dimensions and facts mixed
            watermark: Source watermark this batch brings the warehouse up to

        Returns:
            LoadReport: Always returned, with status committed or failed

        Raises:
            LoadOrderingError: Stage invariant broken (programming error)
        """
        records = list(records)
        report = LoadReport(
            batch_id=batch_id,
            status=BatchStatus.IN_PROGRESS,
            watermark=coerce_watermark(watermark),
            records_received=len(records),
            started_at=utc_now(),
        )
        started = time.perf_counter()

        structlog.contextvars.bind_contextvars(batch_id=batch_id)
        try:
            async with self.locks.hold(self.catalog.entity_names):
                await self._run_locked(report, records)
        finally:
            report.duration_seconds = round(time.perf_counter() - started, 3)
            structlog.contextvars.unbind_contextvars("batch_id")

        return report

    async def _run_locked(self, report: LoadReport, records: List[SourceRecord]) -> None:
        context = BatchContext(report.batch_id)

        try:
            # Early refusal; repeated under the write locks below
            previous = await self.get_batch(report.batch_id)
            report.replay = previous is not None and previous.status == BatchStatus.COMMITTED
            self._check_watermark(report, await self.current_watermark())

            logger.info(
                "Starting batch load",
                records=report.records_received,
                watermark=str(report.watermark),
                replay=report.replay,
            )
            if not report.replay:
                await self._mark_in_progress(report)

            groups = self._normalize_batch(records, report)

            async with self.session_factory() as session:
                async with session.begin():
                    if self.settings.load.advisory_locks:
                        await self.locks.take_advisory_locks(session, self.catalog.entity_names)
                    await self._check_batch_state(session, report)
                    context.replay = report.replay

                    context.advance(BatchStage.DIMENSIONS)
                    await self._load_dimensions(session, groups, report)

                    context.advance(BatchStage.FACTS)
                    await self._load_facts(session, groups, report, context)

                    context.advance(BatchStage.COMMIT)
                    report.status = BatchStatus.COMMITTED
                    report.committed_at = utc_now()
                    await self._write_committed(session, report)

        except WatermarkRegressionError as e:
            logger.warning("Batch refused", reason=str(e))
            await self._mark_failed(report, str(e))
            self._fail(report, str(e))
            return
        except LoadOrderingError as e:
            logger.error("Batch stage ordering violated", error=str(e))
            await self._mark_failed(report, str(e))
            self._fail(report, str(e))
            raise
        except (DurabilityError, SQLAlchemyError) as e:
            logger.error("Batch load failed", error=str(e), error_type=type(e).__name__)
            await self._mark_failed(report, str(e))
            self._fail(report, str(e))
            return
        except asyncio.CancelledError:
            logger.warning("Batch load cancelled before commit")
            await self._mark_failed(report, "cancelled")
            self._fail(report, "cancelled")
            raise

        logger.info(
            "Batch committed",
            inserted=report.total_inserted,
            updated=report.total_updated,
            rejected=report.total_rejected,
        )

    @staticmethod
    def _fail(report: LoadReport, message: str) -> None:
        report.status = BatchStatus.FAILED
        report.committed_at = None
        report.error_message = message
        for counts in report.counts.values():
            counts.clear_changes()
