"""
Run one warehouse load batch from cleaned files.

Example:
    python scripts/run_load.py --batch-id 2024-06-01 --watermark 2024-06-01T00:00:00 \
        --input dim_director=data/clean/directors.csv:person_id \
        --input dim_movie=data/clean/movies.csv:title_id \
        --input fact_movie_performance=data/clean/performance.parquet:title_id
"""

import argparse
import asyncio
import sys
from typing import List

from movie_warehouse.config.logging import configure_logging
from movie_warehouse.database import BatchStatus, close_database, init_database
from movie_warehouse.ingestion import read_records
from movie_warehouse.warehouse import LoadCoordinator, SourceRecord


def parse_input(spec: str) -> tuple:
    """entity=path:key_column"""
    try:
        entity, rest = spec.split("=", 1)
        path, key_column = rest.rsplit(":", 1)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected entity=path:key_column, got {spec!r}"
        ) from None
    return entity, path, key_column


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load cleaned movie records into the warehouse")
    parser.add_argument("--batch-id", required=True, help="Batch identifier (re-use to retry)")
    parser.add_argument("--watermark", default=None, help="ISO timestamp this batch loads up to")
    parser.add_argument(
        "--input",
        dest="inputs",
        action="append",
        type=parse_input,
        required=True,
        help="entity=path:key_column, repeatable",
    )
    parser.add_argument("--as-of-column", default="as_of", help="Column holding the as-of date")
    parser.add_argument("--database-url", default=None, help="Override WAREHOUSE_DB_URL")
    return parser


async def main(argv: List[str]) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    records: List[SourceRecord] = []
    for entity, path, key_column in args.inputs:
        records.extend(read_records(path, entity, key_column, args.as_of_column))

    await init_database(args.database_url)
    try:
        report = await LoadCoordinator().run(args.batch_id, records, args.watermark)
    finally:
        await close_database()

    print(report.model_dump_json(indent=2))
    return 0 if report.status == BatchStatus.COMMITTED else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
