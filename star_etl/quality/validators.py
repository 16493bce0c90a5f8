"""
Record Validation Module

Rule-based validation of the rows parsed from one source unit, run before the
rows are admitted to a batch.

Checks operate on the text frame built from the unit's rows:
- required (not null) columns
- uniqueness
- numeric ranges
- allowed values
- regex patterns
- custom predicates
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.ingestion.sources import SourceUnit, UnitValidator, ValidationVerdict
from star_etl.schema.frames import Row, numeric_cast, rows_to_frame

logger = structlog.get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Rejects the unit
    WARNING = "warning"  # Logged, unit is still admitted


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Result of running every check on one frame"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def error_messages(self) -> List[str]:
        return [
            c.message for c in self.checks
            if not c.passed and c.severity == ValidationSeverity.ERROR
        ]


def _missing(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
    return ValidationCheck(
        name=name,
        passed=False,
        severity=severity,
        message=f"Column '{column}' not found",
    )


class RecordValidator(UnitValidator):
    """
    Validates the rows of a source unit with a chain of checks.

    Example:
        validator = (
            RecordValidator()
            .add_not_null_check("record_id")
            .add_range_check("price", min_value=0)
        )
        verdict = validator.validate("products.xml", rows)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Warnings also reject the unit
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    @property
    def check_count(self) -> int:
        return len(self._checks)

    def reset(self) -> None:
        """Drop all registered checks"""
        self._checks = []

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add check for null values in column"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"not_null_{column}"
            if column not in df.columns:
                return _missing(name, column, severity)

            null_count = df[column].null_count()
            total = df.height
            passed = null_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values" if not passed else f"Column '{column}' has no null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=total,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add check for uniqueness of non-null column values"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"unique_{column}"
            if column not in df.columns:
                return _missing(name, column, severity)

            values = df[column].drop_nulls()
            duplicate_count = values.len() - values.n_unique()
            passed = duplicate_count == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {duplicate_count} duplicate values" if not passed else f"Column '{column}' values are unique",
                details={"duplicate_count": duplicate_count},
                failed_rows=duplicate_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add check that numeric values lie within a range; non-numeric text is ignored"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"range_{column}"
            if column not in df.columns:
                return _missing(name, column, severity)

            values = df.select(numeric_cast(column))[column].drop_nulls()
            out_of_range = 0
            if min_value is not None:
                out_of_range += int((values < min_value).sum())
            if max_value is not None:
                out_of_range += int((values > max_value).sum())
            passed = out_of_range == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside range [{min_value}, {max_value}]" if not passed else "All values in range",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[str],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add check for values in allowed set"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"enum_{column}"
            if column not in df.columns:
                return _missing(name, column, severity)

            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
            ).height
            passed = invalid == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values" if not passed else "All values are valid",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_pattern_check(
        self,
        column: str,
        pattern: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add regex pattern check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            name = f"pattern_{column}"
            if column not in df.columns:
                return _missing(name, column, severity)

            non_matching = df.filter(
                ~pl.col(column).str.contains(pattern) & pl.col(column).is_not_null()
            ).height
            passed = non_matching == 0

            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message=f"Column '{column}' has {non_matching} values not matching pattern" if not passed else "All values match pattern",
                details={"pattern": pattern, "non_matching_count": non_matching},
                failed_rows=non_matching,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_custom_check(
        self,
        name: str,
        check_func: Callable[[pl.DataFrame], bool],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "RecordValidator":
        """Add custom validation check"""
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                passed = bool(check_func(df))
            except Exception as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {e}",
                )
            return ValidationCheck(
                name=name,
                passed=passed,
                severity=severity,
                message="Check passed" if passed else message_on_fail,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def run_checks(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all checks on a frame.

        Args:
            df: Text frame built from a unit's rows

        Returns:
            ValidationResult with all check results
        """
        started_at = datetime.now()
        results = [check_func(df) for check_func in self._checks]

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0:
            status = ValidationStatus.FAILED
        elif warning_count > 0 and self.strict_mode:
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=datetime.now(),
        )

    def validate(self, unit: SourceUnit, rows: Sequence[Row]) -> ValidationVerdict:
        """
        Verdict for one unit: None when no checks are registered, False when
        the check suite fails.
        """
        if not self._checks:
            return ValidationVerdict(valid=None, errors=["No validation checks configured"])
        rows = list(rows)
        if not rows:
            return ValidationVerdict(valid=None, errors=["No rows to validate"])

        result = self.run_checks(rows_to_frame(rows))

        for check in result.checks:
            if not check.passed:
                logger.warning(
                    f"Validation failed: {check.name}",
                    unit=str(unit),
                    message=check.message,
                    severity=check.severity.value,
                )

        if result.status == ValidationStatus.FAILED:
            errors = result.error_messages or [
                c.message for c in result.checks if not c.passed
            ]
            return ValidationVerdict(valid=False, errors=errors, schema_used="record rules")

        return ValidationVerdict(valid=True, schema_used="record rules")


class ChainedValidator(UnitValidator):
    """
    Runs validators in order and stops at the first rejection.

    The verdict is valid when at least one validator accepted the unit and
    none rejected it, unknown when every validator abstained.
    """

    def __init__(self, validators: Sequence[UnitValidator]):
        self.validators = list(validators)

    def validate(self, unit: SourceUnit, rows: Sequence[Row]) -> ValidationVerdict:
        used = []
        for validator in self.validators:
            verdict = validator.validate(unit, rows)
            if verdict.valid is False:
                return verdict
            if verdict.valid:
                used.append(verdict.schema_used or type(validator).__name__)

        if not used:
            return ValidationVerdict(valid=None, errors=["No validator gave a verdict"])
        return ValidationVerdict(valid=True, schema_used=", ".join(used))


def create_record_validator(
    config: ConversionSettings,
    required_columns: Sequence[str] = (),
    strict_mode: bool = False,
) -> RecordValidator:
    """
    Default validator: identifiers present, configured columns required and
    the id attribute unique within the unit (warning only).
    """
    validator = RecordValidator(strict_mode=strict_mode)
    validator.add_not_null_check(config.synthesized_id_column)
    for column in required_columns:
        validator.add_not_null_check(column)
    validator.add_unique_check(config.id_attribute, severity=ValidationSeverity.WARNING)
    return validator
