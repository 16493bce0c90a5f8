"""
XML Schema Validation Module

Validates source documents against XSD or DTD files before their rows are
admitted to a batch.

Auto-detection order:
1. a DOCTYPE in the document header -> validate against that DTD
2. an XSD found by find_schema_file
3. a DTD found by find_schema_file
4. nothing found -> verdict unknown (valid=None), the unit is admitted

Schema files are searched in this order, first match wins:
<schema_dir>/<name>.<ext>, <xml_dir>/<name>.<ext>, <schema_dir>/schema.<ext>,
<xml_dir>/schema.<ext>, <schema_dir>/default.<ext>
"""

from itertools import islice
from pathlib import Path
from typing import List, Optional, Sequence, Union

import structlog
from lxml import etree

from star_etl.config.settings import ConversionSettings
from star_etl.ingestion.sources import SourceUnit, UnitValidator, ValidationVerdict
from star_etl.schema.frames import Row

logger = structlog.get_logger(__name__)

INTERNAL_DTD = "internal DTD"
DOCTYPE_SCAN_LINES = 10


def find_schema_file(
    xml_file: Union[str, Path],
    extension: str,
    schema_dir: Union[str, Path],
) -> Optional[Path]:
    """First existing schema file for a document, or None"""
    xml_file = Path(xml_file)
    schema_dir = Path(schema_dir)
    base = xml_file.stem

    candidates = [
        schema_dir / f"{base}.{extension}",
        xml_file.parent / f"{base}.{extension}",
        schema_dir / f"schema.{extension}",
        xml_file.parent / f"schema.{extension}",
        schema_dir / f"default.{extension}",
    ]
    return next((path for path in candidates if path.is_file()), None)


def has_internal_dtd(xml_file: Union[str, Path]) -> bool:
    """True when a DOCTYPE appears in the first lines of the document"""
    try:
        with open(xml_file, "r", encoding="utf-8", errors="replace") as fh:
            return any("<!DOCTYPE" in line for line in islice(fh, DOCTYPE_SCAN_LINES))
    except OSError:
        return False


def _error_messages(error_log) -> List[str]:
    return [f"line {e.line}: {e.message}" for e in error_log] or ["document is invalid"]


def _safe_parser(**options) -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, **options)


def validate_xsd(xml_file: Union[str, Path], schema_file: Union[str, Path]) -> ValidationVerdict:
    """Validate a document against an XSD file"""
    schema_file = Path(schema_file)
    if not schema_file.is_file():
        return ValidationVerdict(valid=None, errors=["No XSD schema file found"])

    try:
        schema = etree.XMLSchema(etree.parse(str(schema_file), _safe_parser()))
        doc = etree.parse(str(xml_file), _safe_parser())
    except (etree.XMLSyntaxError, etree.XMLSchemaParseError, OSError) as e:
        return ValidationVerdict(valid=False, errors=[str(e)], schema_used=str(schema_file))

    if schema.validate(doc):
        return ValidationVerdict(valid=True, schema_used=str(schema_file))
    return ValidationVerdict(
        valid=False,
        errors=_error_messages(schema.error_log),
        schema_used=str(schema_file),
    )


def validate_dtd(
    xml_file: Union[str, Path],
    dtd_file: Optional[Union[str, Path]] = None,
) -> ValidationVerdict:
    """
    Validate a document against an external DTD file, or against the DTD
    its DOCTYPE declares when no file is given.
    """
    if dtd_file is None:
        try:
            etree.parse(str(xml_file), _safe_parser(dtd_validation=True))
        except (etree.XMLSyntaxError, OSError) as e:
            return ValidationVerdict(valid=False, errors=[str(e)], schema_used=INTERNAL_DTD)
        return ValidationVerdict(valid=True, schema_used=INTERNAL_DTD)

    try:
        dtd = etree.DTD(str(dtd_file))
        doc = etree.parse(str(xml_file), _safe_parser())
    except (etree.DTDParseError, etree.XMLSyntaxError, OSError) as e:
        return ValidationVerdict(valid=False, errors=[str(e)], schema_used=str(dtd_file))

    if dtd.validate(doc):
        return ValidationVerdict(valid=True, schema_used=str(dtd_file))
    return ValidationVerdict(
        valid=False,
        errors=_error_messages(dtd.error_log),
        schema_used=str(dtd_file),
    )


class XmlSchemaValidator(UnitValidator):
    """
    Validates XML source files against XSD or DTD schemas.

    Example:
        validator = XmlSchemaValidator(config)
        verdict = validator.validate("input/products.xml", rows)
        verdict.valid, verdict.schema_used
    """

    def __init__(self, config: ConversionSettings):
        self.config = config
        self.schema_dir = Path(config.schema_dir)
        self.schema_file = Path(config.schema_file) if config.schema_file else None

    @property
    def mode(self) -> str:
        return "xsd" if self.schema_file else "auto"

    def validate(self, unit: SourceUnit, rows: Sequence[Row] = ()) -> ValidationVerdict:
        """Verdict for one XML file; the parsed rows are not consulted"""
        path = Path(unit)
        if self.schema_file is not None:
            verdict = validate_xsd(path, self.schema_file)
        else:
            verdict = self.validate_auto(path)

        if verdict.valid is True:
            logger.info("Validated", file=path.name, schema=Path(verdict.schema_used).name)
        elif verdict.valid is False:
            logger.error("Validation failed", file=path.name, error=verdict.first_error)
        else:
            logger.debug("No schema found", file=path.name)
        return verdict

    def validate_auto(self, path: Path) -> ValidationVerdict:
        """Pick DTD or XSD validation from what is available"""
        if has_internal_dtd(path):
            return validate_dtd(path)

        xsd = find_schema_file(path, "xsd", self.schema_dir)
        if xsd is not None:
            return validate_xsd(path, xsd)

        dtd = find_schema_file(path, "dtd", self.schema_dir)
        if dtd is not None:
            return validate_dtd(path, dtd)

        return ValidationVerdict(valid=None, errors=["No schema found for validation"])
