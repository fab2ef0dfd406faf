"""
Record Normalizer

Validates a cleaned source record against its entity schema and coerces
every field to its declared type. Pure: no I/O, no state. A record that
fails is returned as a Rejection so the batch can carry on.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Sequence, Union

from movie_warehouse.warehouse.catalog import FieldSpec, FieldType
from movie_warehouse.warehouse.exceptions import RejectReason

_INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")

# Width of the business_key and grain_key columns
MAX_KEY_LENGTH = 64


@dataclass
class SourceRecord:
    """A cleaned record as handed over by the upstream producer"""
    entity: str
    key: Any
    as_of: Any
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedRecord:
    """A record whose key, as-of date and fields are typed"""
    entity: str
    key: str
    as_of: date
    values: Dict[str, Any]
    index: Optional[int] = None


@dataclass
class Rejection:
    """A record that cannot be loaded, and why"""
    entity: str
    key: Optional[str]
    reason: RejectReason
    detail: str
    index: Optional[int] = None


class _Mismatch(ValueError):
    pass


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def _to_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise _Mismatch(f"expected string, got {type(value).__name__}")


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise _Mismatch("expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return int(value)
    if isinstance(value, str) and _INTEGER_PATTERN.match(value.strip()):
        return int(value.strip())
    raise _Mismatch(f"expected integer, got {value!r}")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise _Mismatch(f"expected date, got {value!r}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise _Mismatch("expected decimal, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise _Mismatch(f"expected decimal, got {value!r}") from None
    else:
        raise _Mismatch(f"expected decimal, got {type(value).__name__}")
    if not result.is_finite():
        raise _Mismatch(f"expected finite decimal, got {value!r}")
    return result


_COERCERS: Dict[FieldType, Callable[[Any], Any]] = {
    FieldType.STRING: _to_string,
    FieldType.INTEGER: _to_integer,
    FieldType.DATE: _to_date,
    FieldType.DECIMAL: _to_decimal,
}


def normalize(
    record: SourceRecord,
    schema: Sequence[FieldSpec],
    index: Optional[int] = None,
) -> Union[NormalizedRecord, Rejection]:
    """
    Type a source record against its schema.

    Every schema field appears in the result; optional fields that are
    absent come back as None. Fields outside the schema are dropped.

    Args:
        record: Cleaned source record
        schema: Expected fields for the record's entity
        index: Position of the record in its batch, carried into rejects

    Returns:
        NormalizedRecord, or Rejection with a reason code
    """
    def reject(reason: RejectReason, detail: str, key: Optional[str] = None) -> Rejection:
        return Rejection(record.entity, key, reason, detail, index)

    if _is_missing(record.key):
        return reject(RejectReason.BUSINESS_KEY_EMPTY, "business key is empty")
    try:
        key = _to_string(record.key)
    except _Mismatch as e:
        return reject(RejectReason.TYPE_MISMATCH, f"key: {e}")
    if len(key) > MAX_KEY_LENGTH:
        return reject(RejectReason.TYPE_MISMATCH, f"key longer than {MAX_KEY_LENGTH} characters")

    if _is_missing(record.as_of):
        return reject(RejectReason.MISSING_REQUIRED_FIELD, "as_of is missing", key)
    try:
        as_of = _to_date(record.as_of)
    except _Mismatch as e:
        return reject(RejectReason.TYPE_MISMATCH, f"as_of: {e}", key)

    values: Dict[str, Any] = {}
    for spec in schema:
        raw = record.attributes.get(spec.name)
        if _is_missing(raw):
            if spec.required:
                return reject(
                    RejectReason.MISSING_REQUIRED_FIELD, f"{spec.name} is missing", key
                )
            values[spec.name] = None
            continue
        try:
            values[spec.name] = _COERCERS[spec.field_type](raw)
        except _Mismatch as e:
            return reject(RejectReason.TYPE_MISMATCH, f"{spec.name}: {e}", key)

    return NormalizedRecord(record.entity, key, as_of, values, index)
