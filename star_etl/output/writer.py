"""
Writer interface for the merged star schema.

The orchestrator hands over finished tables only; physical encoding and
location belong to the writer.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import polars as pl

from star_etl.schema.analyzer import SchemaInfo
from star_etl.transformation.models import RunSummary


class StarSchemaWriter(ABC):
    """Receives the fact table, dimension tables and error summary of a run"""

    @abstractmethod
    def write_fact(self, rows: pl.DataFrame) -> None:
        """Write the merged fact table"""

    @abstractmethod
    def write_dimension(self, name: str, rows: pl.DataFrame) -> None:
        """Write one merged dimension table"""

    @abstractmethod
    def write_errors(self, rows: pl.DataFrame) -> None:
        """Write the per-unit error summary"""

    def write_schema(self, schema: SchemaInfo) -> None:
        """Document the inferred schema (optional)"""

    def write_summary(self, summary: RunSummary) -> None:
        """Record the run summary (optional)"""


class MemoryStarWriter(StarSchemaWriter):
    """Keeps written tables in memory"""

    def __init__(self):
        self.fact: Optional[pl.DataFrame] = None
        self.dimensions: Dict[str, pl.DataFrame] = {}
        self.errors: Optional[pl.DataFrame] = None
        self.schema: Optional[SchemaInfo] = None
        self.summary: Optional[RunSummary] = None

    def write_fact(self, rows: pl.DataFrame) -> None:
        self.fact = rows

    def write_dimension(self, name: str, rows: pl.DataFrame) -> None:
        self.dimensions[name] = rows

    def write_errors(self, rows: pl.DataFrame) -> None:
        self.errors = rows

    def write_schema(self, schema: SchemaInfo) -> None:
        self.schema = schema

    def write_summary(self, summary: RunSummary) -> None:
        self.summary = summary
