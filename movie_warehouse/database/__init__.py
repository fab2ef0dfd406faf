"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    create_schema,
    create_session_factory,
    get_session_factory,
)
from .models import Base, BatchStatus, OPEN_END_DATE

__all__ = [
    "init_database",
    "close_database",
    "create_schema",
    "create_session_factory",
    "get_session_factory",
    "Base",
    "BatchStatus",
    "OPEN_END_DATE",
]
