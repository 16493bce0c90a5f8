"""
Star Schema Transformation Module
"""
from .models import BatchResult, MergedStarSchema, RunCounters, RunSummary
from .star_builder import StarSchemaBuilder, aggregate_fact, check_star_integrity
from .merger import DimensionMerger

__all__ = [
    "BatchResult",
    "MergedStarSchema",
    "RunCounters",
    "RunSummary",
    "StarSchemaBuilder",
    "aggregate_fact",
    "check_star_integrity",
    "DimensionMerger",
]
