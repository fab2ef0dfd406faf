"""
Load Report

Returned by every run, including failed ones.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from movie_warehouse.database.models import BatchStatus
from movie_warehouse.warehouse.exceptions import RejectReason


class EntityCounts(BaseModel):
    """Per-entity outcome counts"""
    inserted: int = 0
    new_versions: int = 0
    updated: int = 0
    unchanged: int = 0
    rejected: int = 0

    def clear_changes(self) -> None:
        self.inserted = 0
        self.new_versions = 0
        self.updated = 0
        self.unchanged = 0


class RejectedRecord(BaseModel):
    """A record the batch did not load"""
    entity: str
    key: Optional[str] = None
    index: Optional[int] = None
    reason: RejectReason
    detail: str


class LoadReport(BaseModel):
    """Result of one batch run"""
    batch_id: str
    status: BatchStatus
    watermark: Optional[datetime] = None
    replay: bool = False
    records_received: int = 0
    started_at: datetime
    committed_at: Optional[datetime] = None
    duration_seconds: float = 0
    counts: Dict[str, EntityCounts] = Field(default_factory=dict)
    rejects: List[RejectedRecord] = Field(default_factory=list)
    rejects_truncated: bool = False
    error_message: Optional[str] = None

    def counts_for(self, entity: str) -> EntityCounts:
        if entity not in self.counts:
            self.counts[entity] = EntityCounts()
        return self.counts[entity]

    def add_reject(
        self,
        entity: str,
        key: Optional[str],
        index: Optional[int],
        reason: RejectReason,
        detail: str,
        max_details: Optional[int] = None,
    ) -> None:
        self.counts_for(entity).rejected += 1
        if max_details is not None and len(self.rejects) >= max_details:
            self.rejects_truncated = True
            return
        self.rejects.append(
            RejectedRecord(entity=entity, key=key, index=index, reason=reason, detail=detail)
        )

    @property
    def total_inserted(self) -> int:
        return sum(c.inserted + c.new_versions for c in self.counts.values())

    @property
    def total_updated(self) -> int:
        return sum(c.updated for c in self.counts.values())

    @property
    def total_rejected(self) -> int:
        return sum(c.rejected for c in self.counts.values())

    def summary(self) -> dict:
        """JSON-safe summary stored on the batch row."""
        return {
            "counts": {name: c.model_dump() for name, c in self.counts.items()},
            "rejected": self.total_rejected,
            "rejects_truncated": self.rejects_truncated,
        }
