"""
XML to Star Schema conversion entry point.

Wires the XML record source, XSD/DTD validator and Parquet writer into a
BatchOrchestrator.
"""

from pathlib import Path
from typing import Optional, Sequence, Union

import structlog

from star_etl.config.settings import ConversionSettings, Settings, get_settings
from star_etl.ingestion.orchestrator import BatchOrchestrator, RunResult
from star_etl.ingestion.sources import UnitValidator
from star_etl.ingestion.xml_source import XmlRecordSource
from star_etl.output.parquet_writer import ParquetStarWriter
from star_etl.quality.schema_validator import XmlSchemaValidator
from star_etl.quality.validators import ChainedValidator, create_record_validator

logger = structlog.get_logger(__name__)


def find_source_files(input_dir: Union[str, Path], pattern: str = "*.xml") -> list:
    """Source files in a folder, sorted by name"""
    return sorted(Path(input_dir).glob(pattern))


def build_validator(
    config: ConversionSettings,
    required_columns: Sequence[str] = (),
) -> UnitValidator:
    """Schema validation, plus record rules when columns are required"""
    validator = XmlSchemaValidator(config)
    if not required_columns:
        return validator
    return ChainedValidator([validator, create_record_validator(config, required_columns=required_columns)])


def build_orchestrator(
    output_dir: Union[str, Path],
    settings: Settings,
    required_columns: Sequence[str] = (),
) -> BatchOrchestrator:
    """Orchestrator reading XML and writing Parquet"""
    config = settings.conversion
    return BatchOrchestrator(
        config,
        source=XmlRecordSource(config),
        validator=build_validator(config, required_columns),
        writer=ParquetStarWriter(output_dir, config, compression=settings.data_lake.compression),
    )


def convert_directory(
    input_dir: Optional[Union[str, Path]] = None,
    output_dir: Optional[Union[str, Path]] = None,
    settings: Optional[Settings] = None,
    required_columns: Sequence[str] = (),
) -> RunResult:
    """
    Convert every XML file of a folder into a star schema.

    Args:
        input_dir: Folder with source files (defaults to DATA_INPUT_PATH)
        output_dir: Output folder (defaults to DATA_OUTPUT_PATH)
        settings: Application settings (defaults to the cached settings)
        required_columns: Columns every file's rows must carry

    Returns:
        RunResult with the merged star schema and run summary
    """
    settings = settings or get_settings()
    input_dir = Path(input_dir or settings.data_lake.input_path)
    output_dir = Path(output_dir or settings.data_lake.output_path)

    files = find_source_files(input_dir, settings.data_lake.input_pattern)
    logger.info(
        f"Found {len(files)} XML files in {input_dir}",
        output_dir=str(output_dir),
    )

    orchestrator = build_orchestrator(output_dir, settings, required_columns)
    return orchestrator.run(files)
