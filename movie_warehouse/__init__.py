"""
Movie Catalog Warehouse Loader

Incremental star-schema loader for cleaned movie-catalog records.
"""

__version__ = "1.0.0"
