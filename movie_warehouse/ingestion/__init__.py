"""
Data Ingestion Module
"""
from .record_reader import FileFormat, read_records, records_from_frame

__all__ = [
    "FileFormat",
    "read_records",
    "records_from_frame",
]
