"""
Pipeline exception taxonomy.

Per-unit errors (ParseError, ValidationError) are caught at the batch boundary
and recorded in the error summary. SchemaInferenceError and
MergeConsistencyError abort the run.
"""

from typing import Optional


class StarSchemaError(Exception):
    """Base class for all pipeline errors"""


class SchemaInferenceError(StarSchemaError):
    """The schema sample contained no usable rows"""


class UnitError(StarSchemaError):
    """Failure isolated to a single source unit"""

    status = "error"

    def __init__(self, unit: str, message: str):
        super().__init__(f"{unit}: {message}")
        self.unit = unit
        self.message = message


class ParseError(UnitError):
    """A source unit could not be parsed into rows"""

    status = "parse_error"


class ValidationError(UnitError):
    """A source unit failed validation"""

    status = "validation_error"


class MergeConsistencyError(StarSchemaError):
    """Merged star schema violates a structural invariant"""

    def __init__(self, message: str, dimension: Optional[str] = None):
        super().__init__(message if dimension is None else f"{dimension}: {message}")
        self.dimension = dimension
