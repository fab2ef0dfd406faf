"""
Warehouse Load Errors

Validation and referential errors reject a single record and the batch
continues. Durability errors fail the whole batch. Ordering errors are
programming mistakes and always propagate.
"""

from enum import Enum
from typing import Optional


class RejectReason(str, Enum):
    """Reason codes recorded against rejected records"""
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    BUSINESS_KEY_EMPTY = "BUSINESS_KEY_EMPTY"
    STALE_AS_OF_DATE = "STALE_AS_OF_DATE"
    DIMENSION_NOT_FOUND = "DIMENSION_NOT_FOUND"
    UNKNOWN_ENTITY = "UNKNOWN_ENTITY"


class WarehouseError(Exception):
    """Base class for warehouse load errors"""


class CatalogError(WarehouseError):
    """Invalid dimension or fact declaration"""


class RecordRejected(WarehouseError):
    """A single record cannot be loaded; the batch continues."""

    reason: RejectReason = RejectReason.TYPE_MISMATCH

    def __init__(self, message: str, reason: Optional[RejectReason] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason
        self.detail = message


class StaleRecordError(RecordRejected):
    """Record as-of date precedes the data already loaded for its key."""

    reason = RejectReason.STALE_AS_OF_DATE


class DimensionNotFoundError(RecordRejected):
    """Fact references a dimension member with no version at its as-of date."""

    reason = RejectReason.DIMENSION_NOT_FOUND


class DurabilityError(WarehouseError):
    """A key assignment or row write could not be persisted."""


class LoadOrderingError(WarehouseError):
    """Fact stage invoked before the dimension stage completed."""


class WatermarkRegressionError(WarehouseError):
    """Batch watermark is older than the committed watermark."""
