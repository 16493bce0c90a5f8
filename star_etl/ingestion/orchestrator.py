"""
Batch Orchestrator

Drives a conversion run end to end:
1. infer the schema from the first sample units
2. split the units into fixed-size batches
3. parse, validate and build every batch on a bounded worker pool
4. merge all batch results once every batch has finished
5. hand the merged star schema and error summary to the writer

Unit lifecycle: queued -> parsing -> (validating) -> success |
validation_error | parse_error. Failed units are recorded in the error
summary and never abort their batch or sibling batches.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import polars as pl
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.exceptions import SchemaInferenceError, UnitError
from star_etl.ingestion.sources import RowSource, SourceUnit, UnitValidator
from star_etl.output.writer import StarSchemaWriter
from star_etl.schema.analyzer import SchemaAnalyzer, SchemaInfo, validate_star_schema
from star_etl.schema.frames import Row
from star_etl.transformation.merger import DimensionMerger
from star_etl.transformation.models import (
    ERROR_SUMMARY_SCHEMA,
    BatchResult,
    MergedStarSchema,
    RunCounters,
    RunStatus,
    RunSummary,
    empty_error_summary,
)
from star_etl.transformation.star_builder import StarSchemaBuilder

logger = structlog.get_logger(__name__)


class UnitStatus(str, Enum):
    """Processing state of one source unit"""
    QUEUED = "queued"
    PARSING = "parsing"
    VALIDATING = "validating"
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    PARSE_ERROR = "parse_error"


TERMINAL_STATES = {UnitStatus.SUCCESS, UnitStatus.VALIDATION_ERROR, UnitStatus.PARSE_ERROR}


@dataclass
class UnitResult:
    """Outcome of parsing and validating one source unit"""
    unit: str
    status: UnitStatus = UnitStatus.QUEUED
    rows: List[Row] = field(default_factory=list)
    error: Optional[str] = None
    validated: Optional[bool] = None
    transitions: List[UnitStatus] = field(default_factory=lambda: [UnitStatus.QUEUED])

    def advance(self, status: UnitStatus) -> "UnitResult":
        self.status = status
        self.transitions.append(status)
        return self

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class RunResult:
    """Everything a run produced"""
    star: MergedStarSchema
    error_summary: pl.DataFrame
    summary: RunSummary
    schema: Optional[SchemaInfo] = None

    @property
    def succeeded(self) -> bool:
        return self.summary.status == RunStatus.COMPLETED


def partition(units: Sequence[SourceUnit], batch_size: int) -> List[List[SourceUnit]]:
    """Split units into consecutive batches of at most batch_size"""
    return [list(units[i:i + batch_size]) for i in range(0, len(units), batch_size)]


class BatchOrchestrator:
    """
    Runs parse -> validate -> build per batch in parallel, then merges.

    Example:
        orchestrator = BatchOrchestrator(config, XmlRecordSource(config), writer=writer)
        result = orchestrator.run(sorted(Path("input").glob("*.xml")))
    """

    def __init__(
        self,
        config: ConversionSettings,
        source: RowSource,
        validator: Optional[UnitValidator] = None,
        writer: Optional[StarSchemaWriter] = None,
    ):
        self.config = config
        self.source = source
        self.validator = validator
        self.writer = writer
        self.analyzer = SchemaAnalyzer(config)
        self.builder = StarSchemaBuilder(config)
        self.merger = DimensionMerger(config)

    @property
    def validation_enabled(self) -> bool:
        return self.validator is not None and self.config.enable_validation

    def process_unit(self, unit: SourceUnit) -> UnitResult:
        """Parse and optionally validate one unit; failures are captured, not raised"""
        result = UnitResult(unit=self.source.unit_name(unit))
        log = logger.bind(unit=result.unit)

        result.advance(UnitStatus.PARSING)
        try:
            result.rows = list(self.source.parse(unit))
        except Exception as e:
            result.error = e.message if isinstance(e, UnitError) else str(e)
            log.error("Unit failed to parse", error=result.error)
            return result.advance(UnitStatus.PARSE_ERROR)

        if self.validation_enabled:
            result.advance(UnitStatus.VALIDATING)
            try:
                verdict = self.validator.validate(unit, result.rows)
            except Exception as e:
                result.error = f"Schema validation failed: {e.message if isinstance(e, UnitError) else e}"
                result.rows = []
                log.error("Unit failed validation", error=result.error)
                return result.advance(UnitStatus.VALIDATION_ERROR)

            if verdict.valid is False:
                result.error = f"Schema validation failed: {verdict.first_error}"
                result.rows = []
                log.error("Unit failed validation", error=result.error)
                return result.advance(UnitStatus.VALIDATION_ERROR)
            result.validated = verdict.valid
            if verdict.valid:
                log.debug("Unit validated", schema=verdict.schema_used)

        log.debug("Unit parsed", rows=result.row_count)
        return result.advance(UnitStatus.SUCCESS)

    def process_batch(
        self,
        batch_id: int,
        units: Sequence[SourceUnit],
        schema: SchemaInfo,
    ) -> BatchResult:
        """Process the units of one batch sequentially and build its star schema"""
        log = logger.bind(batch_id=batch_id)
        log.info("Starting batch", units=len(units))

        unit_results = [self.process_unit(unit) for unit in units]

        successful = [r for r in unit_results if r.status == UnitStatus.SUCCESS]
        failed = [r for r in unit_results if r.status != UnitStatus.SUCCESS]
        counters = RunCounters(
            total=len(unit_results),
            successful=len(successful),
            validation_failed=sum(1 for r in failed if r.status == UnitStatus.VALIDATION_ERROR),
            parse_failed=sum(1 for r in failed if r.status == UnitStatus.PARSE_ERROR),
            validated=sum(1 for r in successful if r.validated is True),
        )

        errors = pl.DataFrame(
            {
                "file": [r.unit for r in failed],
                "error": [r.error for r in failed],
                "type": [r.status.value for r in failed],
                "batch_id": [batch_id] * len(failed),
            },
            schema=ERROR_SUMMARY_SCHEMA,
        )

        rows = [row for r in successful for row in r.rows]
        result = self.builder.build(rows, schema, batch_id=batch_id)
        result.error_summary = errors
        result.counters = counters

        log.info(
            f"Batch {batch_id} complete: {counters.successful}/{counters.total} successful, {counters.failed} failed",
            fact_rows=result.fact.height,
        )
        return result

    async def infer_schema(self, units: Sequence[SourceUnit]) -> SchemaInfo:
        """
        Infer the schema from rows of the sample units (parsed without validation).

        Raises:
            SchemaInferenceError: no sample unit produced a row
        """
        logger.info("Analyzing schema from sample files", sample_units=len(units))
        semaphore = asyncio.Semaphore(self.config.worker_count)

        async def parse_sample(unit: SourceUnit) -> List[Row]:
            async with semaphore:
                try:
                    return list(await asyncio.to_thread(self.source.parse, unit))
                except Exception as e:
                    logger.warning("Sample unit skipped", unit=self.source.unit_name(unit), error=str(e))
                    return []

        parsed = await asyncio.gather(*(parse_sample(unit) for unit in units))
        sample = [row for rows in parsed for row in rows]
        if not sample:
            raise SchemaInferenceError(f"No data extracted from {len(units)} sample units")
        return self.analyzer.analyze(sample)

    async def run_async(self, units: Iterable[SourceUnit]) -> RunResult:
        """
        Run the full conversion.

        Raises:
            SchemaInferenceError: the schema sample produced no rows
            MergeConsistencyError: the merged star violates its invariants
        """
        started_at = datetime.now()
        units = list(units)

        if not units:
            logger.error("No source units found")
            summary = RunSummary(
                started_at=started_at,
                completed_at=datetime.now(),
                batch_size=self.config.batch_size,
                validation_enabled=self.validation_enabled,
                status=RunStatus.FAILED,
            )
            return RunResult(
                star=MergedStarSchema(fact=pl.DataFrame()),
                error_summary=empty_error_summary(),
                summary=summary,
            )

        for unit in units:
            logger.debug("Queued", unit=self.source.unit_name(unit))

        schema = await self.infer_schema(units[:self.config.schema_sample_size])
        validate_star_schema(schema)

        batches = partition(units, self.config.batch_size)
        logger.info(
            f"Processing {len(batches)} batches of up to {self.config.batch_size} files each",
            workers=self.config.worker_count,
        )

        semaphore = asyncio.Semaphore(self.config.worker_count)

        async def run_batch(batch_id: int, batch: List[SourceUnit]) -> BatchResult:
            async with semaphore:
                return await asyncio.to_thread(self.process_batch, batch_id, batch, schema)

        # Merge barrier: every batch must finish first
        results = await asyncio.gather(
            *(run_batch(batch_id, batch) for batch_id, batch in enumerate(batches, start=1))
        )

        star = self.merger.merge(results)
        counters = RunCounters.combine([r.counters for r in results])
        error_summary = pl.concat([r.error_summary for r in results], how="vertical_relaxed")

        completed_at = datetime.now()
        summary = RunSummary.from_counters(
            counters,
            started_at=started_at,
            completed_at=completed_at,
            batch_count=len(batches),
            batch_size=self.config.batch_size,
            fact_rows=star.fact.height,
            dimension_count=len(star.dimensions),
            validation_enabled=self.validation_enabled,
        )

        if self.writer is not None:
            self._write(star, error_summary, summary, schema)

        self._log_summary(summary)
        return RunResult(star=star, error_summary=error_summary, summary=summary, schema=schema)

    def run(self, units: Iterable[SourceUnit]) -> RunResult:
        """Synchronous entry point for run_async"""
        return asyncio.run(self.run_async(units))

    def _write(
        self,
        star: MergedStarSchema,
        error_summary: pl.DataFrame,
        summary: RunSummary,
        schema: SchemaInfo,
    ) -> None:
        logger.info("Writing results")
        self.writer.write_fact(star.fact)
        for name, dimension in star.dimensions.items():
            self.writer.write_dimension(name, dimension)
        self.writer.write_errors(error_summary)
        self.writer.write_schema(schema)
        self.writer.write_summary(summary)

    @staticmethod
    def _log_summary(summary: RunSummary) -> None:
        fields = dict(
            total=summary.total_units,
            successful=summary.successful_units,
            failed=summary.failed_units,
            success_rate=round(summary.success_rate, 1),
            duration_seconds=round(summary.duration_seconds, 1),
        )
        if summary.validation_enabled:
            fields.update(
                validated=summary.validated_units,
                validation_failed=summary.validation_failed,
                validation_skipped=summary.validation_skipped,
            )
        if summary.status == RunStatus.FAILED:
            logger.error("Processing finished without any successful units", **fields)
        else:
            logger.info("Processing summary", **fields)
