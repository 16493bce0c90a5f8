"""
Star schema containers passed between the builder, merger and orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import polars as pl
from pydantic import BaseModel

ERROR_SUMMARY_SCHEMA = {"file": pl.Utf8, "error": pl.Utf8, "type": pl.Utf8, "batch_id": pl.Int64}


def empty_error_summary() -> pl.DataFrame:
    return pl.DataFrame(schema=ERROR_SUMMARY_SCHEMA)


@dataclass(frozen=True)
class RunCounters:
    """Per-unit outcome counts; combined with + after all batches finish"""
    total: int = 0
    successful: int = 0
    validation_failed: int = 0
    parse_failed: int = 0
    validated: int = 0

    @property
    def failed(self) -> int:
        return self.validation_failed + self.parse_failed

    @property
    def validation_skipped(self) -> int:
        """Admitted units that no validator accepted explicitly"""
        return self.successful - self.validated

    def __add__(self, other: "RunCounters") -> "RunCounters":
        return RunCounters(
            total=self.total + other.total,
            successful=self.successful + other.successful,
            validation_failed=self.validation_failed + other.validation_failed,
            parse_failed=self.parse_failed + other.parse_failed,
            validated=self.validated + other.validated,
        )

    @classmethod
    def combine(cls, counters: List["RunCounters"]) -> "RunCounters":
        result = cls()
        for item in counters:
            result = result + item
        return result


@dataclass
class BatchResult:
    """
    Star schema built from a single batch.

    Surrogate keys in `fact` and `dimensions` are batch-local; they are only
    meaningful together with this batch's own dimension tables.
    """
    batch_id: int
    fact: pl.DataFrame
    dimensions: Dict[str, pl.DataFrame] = field(default_factory=dict)
    error_summary: pl.DataFrame = field(default_factory=empty_error_summary)
    counters: RunCounters = field(default_factory=RunCounters)

    @property
    def is_empty(self) -> bool:
        return self.fact.height == 0


@dataclass
class MergedStarSchema:
    """Globally keyed fact table plus one dimension table per dimension name"""
    fact: pl.DataFrame
    dimensions: Dict[str, pl.DataFrame] = field(default_factory=dict)

    def dimension(self, name: str) -> Optional[pl.DataFrame]:
        return self.dimensions.get(name)

    @property
    def total_rows(self) -> int:
        return self.fact.height + sum(d.height for d in self.dimensions.values())


class RunStatus(str, Enum):
    """Outcome of a whole conversion run"""
    COMPLETED = "completed"
    FAILED = "failed"


class RunSummary(BaseModel):
    """Counts and timings of one conversion run"""
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: float = 0
    total_units: int = 0
    successful_units: int = 0
    failed_units: int = 0
    validation_failed: int = 0
    parse_failed: int = 0
    validated_units: int = 0
    validation_skipped: int = 0
    batch_count: int = 0
    batch_size: int = 0
    fact_rows: int = 0
    dimension_count: int = 0
    validation_enabled: bool = True
    status: RunStatus = RunStatus.COMPLETED

    @property
    def success_rate(self) -> float:
        """Percentage of units that reached the batch"""
        if self.total_units == 0:
            return 0.0
        return (self.successful_units / self.total_units) * 100

    @property
    def validation_rate(self) -> Optional[float]:
        """Percentage of schema-checked units that passed; None when none were checked"""
        checked = self.validated_units + self.validation_failed
        if checked == 0:
            return None
        return (self.validated_units / checked) * 100

    @classmethod
    def from_counters(
        cls,
        counters: RunCounters,
        started_at: datetime,
        completed_at: datetime,
        **kwargs,
    ) -> "RunSummary":
        return cls(
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            total_units=counters.total,
            successful_units=counters.successful,
            failed_units=counters.failed,
            validation_failed=counters.validation_failed,
            parse_failed=counters.parse_failed,
            validated_units=counters.validated,
            validation_skipped=counters.validation_skipped,
            status=RunStatus.COMPLETED if counters.successful > 0 else RunStatus.FAILED,
            **kwargs,
        )
