"""
Star Schema Output Module
"""
from .writer import MemoryStarWriter, StarSchemaWriter
from .parquet_writer import ParquetStarWriter

__all__ = [
    "StarSchemaWriter",
    "MemoryStarWriter",
    "ParquetStarWriter",
]
