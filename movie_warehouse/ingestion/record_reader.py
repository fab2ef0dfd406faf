"""
Cleaned Record Reader

Reads the cleaned files produced upstream (CSV, JSON Lines or Parquet) with
Polars and turns each row into a SourceRecord for the load coordinator.
"""

from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Union

import polars as pl
import structlog

from movie_warehouse.warehouse.normalizer import SourceRecord

logger = structlog.get_logger(__name__)


class FileFormat(str, Enum):
    """Supported file formats"""
    CSV = "csv"
    JSONL = "jsonl"
    PARQUET = "parquet"


def _read_frame(path: Path, file_format: FileFormat) -> pl.DataFrame:
    if file_format == FileFormat.CSV:
        # Everything as text; typing is the normalizer's job
        return pl.read_csv(
            path,
            infer_schema_length=0,
            null_values=["", "NULL", "null", "None", "NA", "N/A", "\\N"],
        )
    if file_format == FileFormat.JSONL:
        return pl.read_ndjson(path)
    if file_format == FileFormat.PARQUET:
        return pl.read_parquet(path)
    raise ValueError(f"Unsupported file format: {file_format}")


def records_from_frame(
    df: pl.DataFrame,
    entity: str,
    key_column: str,
    as_of_column: str = "as_of",
) -> Iterator[SourceRecord]:
    """
    Yield one SourceRecord per row.

    Null cells are left out of the attribute mapping.
    """
    missing = [c for c in (key_column, as_of_column) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns for {entity}: {missing}")

    for row in df.iter_rows(named=True):
        attributes = {
            name: value
            for name, value in row.items()
            if name != as_of_column and value is not None
        }
        yield SourceRecord(
            entity=entity,
            key=row[key_column],
            as_of=row[as_of_column],
            attributes=attributes,
        )


def read_records(
    path: Union[str, Path],
    entity: str,
    key_column: str,
    as_of_column: str = "as_of",
    file_format: Optional[FileFormat] = None,
) -> List[SourceRecord]:
    """
    Read a cleaned file into SourceRecords.

    Args:
        path: File to read
        entity: Dimension or fact name the rows belong to
        key_column: Column holding the business or grain key
        as_of_column: Column holding the as-of date
        file_format: Defaults to the file extension
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    file_format = file_format or FileFormat(path.suffix.lstrip(".").lower())
    df = _read_frame(path, file_format)
    records = list(records_from_frame(df, entity, key_column, as_of_column))

    logger.info("Read cleaned records", file=str(path), entity=entity, rows=len(records))
    return records
