"""
Data Quality Module
"""
from .validators import (
    ChainedValidator,
    RecordValidator,
    ValidationResult,
    ValidationSeverity,
    ValidationStatus,
    create_record_validator,
)
from .schema_validator import XmlSchemaValidator, find_schema_file, has_internal_dtd

__all__ = [
    "ChainedValidator",
    "RecordValidator",
    "ValidationResult",
    "ValidationSeverity",
    "ValidationStatus",
    "XmlSchemaValidator",
    "create_record_validator",
    "find_schema_file",
    "has_internal_dtd",
]
