"""
Batch stages.

A batch moves strictly forward: normalize, dimensions, facts, commit.
"""

from dataclasses import dataclass
from enum import IntEnum

from movie_warehouse.warehouse.exceptions import LoadOrderingError


class BatchStage(IntEnum):
    NORMALIZE = 1
    DIMENSIONS = 2
    FACTS = 3
    COMMIT = 4


@dataclass
class BatchContext:
    """Tracks which stage a batch is in, and whether it re-runs a committed batch."""
    batch_id: str
    stage: BatchStage = BatchStage.NORMALIZE
    replay: bool = False

    def advance(self, stage: BatchStage) -> None:
        if stage != self.stage + 1:
            raise LoadOrderingError(
                f"Batch {self.batch_id} cannot move from {self.stage.name} to {stage.name}"
            )
        self.stage = stage

    def require(self, stage: BatchStage) -> None:
        if self.stage != stage:
            raise LoadOrderingError(
                f"Batch {self.batch_id} is in stage {self.stage.name}, expected {stage.name}"
            )
