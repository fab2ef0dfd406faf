"""
Prefect Workflow Orchestration - Warehouse Load

Thin flow around LoadCoordinator.run. Retry timing belongs to the
deployment; a retried flow re-runs the same batch id, which the
coordinator treats idempotently.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from prefect import flow, task, get_run_logger

from movie_warehouse.database import BatchStatus, close_database, init_database
from movie_warehouse.ingestion import read_records
from movie_warehouse.warehouse import LoadCoordinator, SourceRecord


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="read_cleaned_records",
    description="Read cleaned entity files into source records",
)
def read_cleaned_records(inputs: Dict[str, Dict[str, str]]) -> List[SourceRecord]:
    """Read every configured entity file"""
    logger = get_run_logger()

    records: List[SourceRecord] = []
    for entity, source in inputs.items():
        entity_records = read_records(
            source["path"],
            entity,
            source["key_column"],
            source.get("as_of_column", "as_of"),
        )
        logger.info(f"Read {len(entity_records)} {entity} records from {source['path']}")
        records.extend(entity_records)
    return records


@task(
    name="run_warehouse_load",
    description="Run one warehouse load batch",
)
async def run_warehouse_load(
    batch_id: str,
    records: List[SourceRecord],
    watermark: Optional[datetime],
) -> dict:
    """Load the batch and return its report"""
    logger = get_run_logger()

    await init_database()
    try:
        report = await LoadCoordinator().run(batch_id, records, watermark)
    finally:
        await close_database()

    logger.info(
        f"Batch {batch_id} {report.status.value}: "
        f"{report.total_inserted} inserted, {report.total_updated} updated, "
        f"{report.total_rejected} rejected"
    )
    if report.status != BatchStatus.COMMITTED:
        raise RuntimeError(f"Batch {batch_id} failed: {report.error_message}")
    return report.model_dump(mode="json")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="warehouse_load",
    description="Incremental star-schema load for cleaned movie records",
)
async def warehouse_load(
    batch_id: str,
    inputs: Dict[str, Dict[str, str]],
    watermark: Optional[datetime] = None,
) -> dict:
    """
    Load one batch.

    Args:
        batch_id: Batch identifier, stable across retries
        inputs: entity -> {"path": ..., "key_column": ..., "as_of_column": ...}
        watermark: Source watermark this batch brings the warehouse up to
    """
    records = read_cleaned_records(inputs)
    return await run_warehouse_load(batch_id, records, watermark)


if __name__ == "__main__":
    import asyncio

    asyncio.run(
        warehouse_load(
            batch_id=datetime.now(timezone.utc).strftime("%Y%m%d"),
            inputs={
                "dim_director": {"path": "data/clean/directors.csv", "key_column": "person_id"},
                "dim_studio": {"path": "data/clean/studios.csv", "key_column": "studio_id"},
                "dim_movie": {"path": "data/clean/movies.csv", "key_column": "title_id"},
                "fact_movie_performance": {
                    "path": "data/clean/performance.csv",
                    "key_column": "title_id",
                },
            },
        )
    )
