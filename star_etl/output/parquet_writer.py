"""
Parquet Star Writer

Writes the merged star schema to a folder:
- fact_main.parquet and dim_<column>.parquet (snappy by default)
- processing_errors.csv
- processing_manifest.csv (one row appended per run)
- validation_report.csv (when validation is enabled)
- schema_documentation.csv
- parquet_metadata.csv (rows, columns and size of every parquet file)
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

import polars as pl
import pyarrow.parquet as pq
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.output.writer import StarSchemaWriter
from star_etl.schema.analyzer import SchemaInfo
from star_etl.transformation.models import RunSummary

logger = structlog.get_logger(__name__)


class ParquetStarWriter(StarSchemaWriter):
    """
    Writes star schema tables as Parquet files.

    Example:
        writer = ParquetStarWriter("output", config)
        writer.write_fact(star.fact)
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        config: ConversionSettings,
        compression: str = "snappy",
    ):
        self.output_dir = Path(output_dir)
        self.config = config
        self.compression = compression
        self.written: List[Path] = []
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _write_parquet(self, df: pl.DataFrame, name: str) -> Path:
        path = self.output_dir / f"{name}.parquet"
        df.write_parquet(path, compression=self.compression, use_pyarrow=False)
        self.written.append(path)
        logger.info(
            "Wrote table",
            table=name,
            rows=df.height,
            size_mb=round(path.stat().st_size / 1024 ** 2, 2),
        )
        return path

    def write_fact(self, rows: pl.DataFrame) -> None:
        if rows.height == 0:
            logger.warning("No fact data to write")
            return
        self._write_parquet(rows, self.config.fact_name())

    def write_dimension(self, name: str, rows: pl.DataFrame) -> None:
        self._write_parquet(rows, name)

    def write_errors(self, rows: pl.DataFrame) -> None:
        if rows.height == 0:
            return
        error_file = self.output_dir / "processing_errors.csv"
        rows.write_csv(error_file)
        logger.info("Error summary written", file=str(error_file), errors=rows.height)

    def write_schema(self, schema: SchemaInfo) -> None:
        doc = schema.to_frame().select(
            ["column", "classification", "data_type", "unique_count", "null_ratio", "sample_values"]
        ).sort(["classification", "column"])
        doc_file = self.output_dir / "schema_documentation.csv"
        doc.write_csv(doc_file)

        def listing(kind: str) -> str:
            return ", ".join(doc.filter(pl.col("classification") == kind)["column"].to_list())

        summary_text = (
            "Schema Documentation\n"
            "==================\n"
            f"Total Columns: {doc.height}\n"
            f"Measures: {listing('measure')}\n"
            f"Dimensions: {listing('dimension')}\n"
            f"Identifiers: {listing('identifier')}\n"
        )
        (self.output_dir / "schema_documentation_summary.txt").write_text(summary_text, encoding="utf-8")

    def write_summary(self, summary: RunSummary) -> None:
        manifest = pl.DataFrame([{
            "timestamp": (summary.completed_at or datetime.now()).isoformat(timespec="seconds"),
            "total_files": summary.total_units,
            "successful": summary.successful_units,
            "failed": summary.failed_units,
            "validation_failed": summary.validation_failed,
            "success_rate": round(summary.success_rate, 2),
            "duration_seconds": round(summary.duration_seconds, 3),
            "output_location": str(self.output_dir),
            "batch_size": summary.batch_size,
            "validation_enabled": summary.validation_enabled,
            "status": summary.status.value,
        }])

        manifest_file = self.output_dir / "processing_manifest.csv"
        if manifest_file.exists():
            with open(manifest_file, "ab") as fh:
                manifest.write_csv(fh, include_header=False)
        else:
            manifest.write_csv(manifest_file)

        if summary.validation_enabled:
            self.write_validation_report(summary)
        self.write_metadata()

    def write_validation_report(self, summary: RunSummary) -> pl.DataFrame:
        """Validated, failed and skipped counts of the run"""
        rate = summary.validation_rate
        report = pl.DataFrame(
            [{
                "timestamp": (summary.completed_at or datetime.now()).isoformat(timespec="seconds"),
                "total_files": summary.total_units,
                "validated": summary.validated_units,
                "validation_failed": summary.validation_failed,
                "validation_skipped": summary.validation_skipped,
                "validation_rate": round(rate, 2) if rate is not None else None,
                "schema_dir": self.config.schema_dir,
                "validation_mode": "xsd" if self.config.schema_file else "auto",
            }],
            schema_overrides={"validation_rate": pl.Float64},
        )
        report.write_csv(self.output_dir / "validation_report.csv")
        logger.info(
            "Validation summary",
            validated=summary.validated_units,
            failed=summary.validation_failed,
            skipped=summary.validation_skipped,
            validation_rate=report["validation_rate"][0],
        )
        return report

    def write_metadata(self) -> Optional[pl.DataFrame]:
        """Describe every parquet file in the output folder"""
        files = sorted(self.output_dir.glob("*.parquet"))
        if not files:
            return None

        records = []
        for path in files:
            meta = pq.ParquetFile(path).metadata
            records.append({
                "file": path.name,
                "rows": meta.num_rows,
                "columns": meta.num_columns,
                "size_mb": round(path.stat().st_size / 1024 ** 2, 4),
                "compression": self.compression,
                "created": datetime.now().isoformat(timespec="seconds"),
            })

        metadata = pl.DataFrame(records)
        metadata.write_csv(self.output_dir / "parquet_metadata.csv")
        logger.info(
            "Total output",
            files=metadata.height,
            size_mb=round(metadata["size_mb"].sum(), 2),
            rows=int(metadata["rows"].sum()),
        )
        return metadata
