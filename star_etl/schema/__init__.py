"""
Schema Inference Module
"""
from .analyzer import (
    ColumnClassification,
    ColumnProfile,
    DataType,
    SchemaAnalyzer,
    SchemaInfo,
    validate_star_schema,
)

__all__ = [
    "ColumnClassification",
    "ColumnProfile",
    "DataType",
    "SchemaAnalyzer",
    "SchemaInfo",
    "validate_star_schema",
]
