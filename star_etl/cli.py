"""
Command line entry point.

Usage:
    star-etl --input ./input --output ./output
    python -m star_etl --batch-size 25 --workers 4 --no-validation
    star-etl --schema-dir ./schemas --require name --require price
"""

import argparse
import sys
from typing import List, Optional

import structlog

from star_etl.config.logging import configure_logging
from star_etl.config.settings import ConversionSettings, get_settings
from star_etl.exceptions import MergeConsistencyError, SchemaInferenceError
from star_etl.pipeline import convert_directory

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_NO_SUCCESS = 1
EXIT_FATAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert XML records into a Parquet star schema")
    parser.add_argument("--input", help="Folder containing XML files")
    parser.add_argument("--output", help="Folder receiving the star schema")
    parser.add_argument("--batch-size", type=int, help="Files per batch")
    parser.add_argument("--sample-size", type=int, help="Files sampled for schema inference")
    parser.add_argument("--workers", type=int, help="Parallel batch workers")
    parser.add_argument("--no-validation", action="store_true", help="Skip schema validation")
    parser.add_argument("--schema-dir", help="Folder searched for XSD/DTD files")
    parser.add_argument("--schema-file", help="XSD applied to every file")
    parser.add_argument(
        "--require", action="append", default=[], metavar="COLUMN",
        help="Reject files whose rows lack this column (repeatable)",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", help="Also write the audit log to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, log_file=args.log_file)

    settings = get_settings()
    overrides = {
        "batch_size": args.batch_size,
        "schema_sample_size": args.sample_size,
        "max_workers": args.workers,
        "schema_dir": args.schema_dir,
        "schema_file": args.schema_file,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.no_validation:
        overrides["enable_validation"] = False
    if overrides:
        conversion = ConversionSettings(
            **{**settings.conversion.model_dump(), **overrides}
        )
        settings = settings.model_copy(update={"conversion": conversion})

    try:
        result = convert_directory(args.input, args.output, settings, required_columns=args.require)
    except (SchemaInferenceError, MergeConsistencyError) as e:
        logger.error("Conversion aborted", error=str(e), error_type=type(e).__name__)
        return EXIT_FATAL

    return EXIT_OK if result.succeeded else EXIT_NO_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
