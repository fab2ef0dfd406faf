"""
Dimensional Loading Engine
"""
from .catalog import WarehouseCatalog, build_movie_catalog
from .coordinator import LoadCoordinator
from .exceptions import DurabilityError, LoadOrderingError, RejectReason
from .normalizer import SourceRecord, normalize
from .report import LoadReport

__all__ = [
    "WarehouseCatalog",
    "build_movie_catalog",
    "LoadCoordinator",
    "DurabilityError",
    "LoadOrderingError",
    "RejectReason",
    "SourceRecord",
    "normalize",
    "LoadReport",
]
