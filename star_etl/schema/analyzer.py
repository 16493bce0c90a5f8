"""
Schema Analyzer

Infers column roles and coarse data types from a bounded sample of rows.

Every column is profiled once (numeric ratio, distinct count, null ratio,
mean length, sample values) and then classified by an ordered rule list where
the first matching rule wins:

1. identifier    - configured id attribute or the synthesized id column
2. audit         - reserved audit column names
3. measure       - numeric ratio above the configured threshold
4. dimension     - few distinct values relative to the sample
5. potential_key - every sampled value distinct
6. attribute     - everything else
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.exceptions import SchemaInferenceError
from star_etl.schema.frames import Row, numeric_cast, rows_to_frame

logger = structlog.get_logger(__name__)


class ColumnClassification(str, Enum):
    """Role of a column in the star schema"""
    IDENTIFIER = "identifier"
    AUDIT = "audit"
    MEASURE = "measure"
    DIMENSION = "dimension"
    POTENTIAL_KEY = "potential_key"
    ATTRIBUTE = "attribute"


class DataType(str, Enum):
    """Coarse data type of a column"""
    NUMERIC = "numeric"
    MIXED_NUMERIC = "mixed_numeric"
    TEXT = "text"
    STRING = "string"


@dataclass(frozen=True)
class ColumnProfile:
    """Whole-column statistics computed over the sample"""
    column: str
    numeric_ratio: float
    unique_count: int
    null_ratio: float
    mean_length: float
    sample_values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ColumnSchema:
    """A profiled column with its classification and data type"""
    profile: ColumnProfile
    classification: ColumnClassification
    data_type: DataType

    @property
    def column(self) -> str:
        return self.profile.column


@dataclass(frozen=True)
class SchemaInfo:
    """Immutable, ordered column classification produced from one sample"""
    columns: Tuple[ColumnSchema, ...]
    sample_rows: int
    _index: Dict[str, ColumnSchema] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {c.column: c for c in self.columns})

    def __len__(self) -> int:
        return len(self.columns)

    def __contains__(self, column: str) -> bool:
        return column in self._index

    def get(self, column: str) -> Optional[ColumnSchema]:
        return self._index.get(column)

    def classification_of(self, column: str) -> Optional[ColumnClassification]:
        entry = self._index.get(column)
        return entry.classification if entry else None

    def columns_for(self, *classifications: ColumnClassification) -> List[str]:
        """Column names with any of the given classifications, in sample order"""
        wanted = set(classifications)
        return [c.column for c in self.columns if c.classification in wanted]

    def counts(self) -> Dict[str, int]:
        """Number of columns per classification"""
        return {
            kind.value: sum(1 for c in self.columns if c.classification == kind)
            for kind in ColumnClassification
        }

    def to_frame(self) -> pl.DataFrame:
        """Tabular view used for schema documentation"""
        return pl.DataFrame(
            {
                "column": [c.column for c in self.columns],
                "classification": [c.classification.value for c in self.columns],
                "data_type": [c.data_type.value for c in self.columns],
                "numeric_ratio": [c.profile.numeric_ratio for c in self.columns],
                "unique_count": [c.profile.unique_count for c in self.columns],
                "null_ratio": [c.profile.null_ratio for c in self.columns],
                "mean_length": [c.profile.mean_length for c in self.columns],
                "sample_values": ["|".join(c.profile.sample_values) for c in self.columns],
            },
            schema={
                "column": pl.Utf8,
                "classification": pl.Utf8,
                "data_type": pl.Utf8,
                "numeric_ratio": pl.Float64,
                "unique_count": pl.Int64,
                "null_ratio": pl.Float64,
                "mean_length": pl.Float64,
                "sample_values": pl.Utf8,
            },
        )


# (predicate, label) pairs evaluated top to bottom
ClassificationRule = Tuple[Callable[[ColumnProfile, int], bool], ColumnClassification]


def build_classification_rules(config: ConversionSettings) -> List[ClassificationRule]:
    """Ordered classification rules for a configuration"""
    identifiers = set(config.identifier_columns)
    audit = set(config.audit_columns)

    return [
        (lambda p, n: p.column in identifiers, ColumnClassification.IDENTIFIER),
        (lambda p, n: p.column in audit, ColumnClassification.AUDIT),
        (lambda p, n: p.numeric_ratio > config.numeric_threshold, ColumnClassification.MEASURE),
        (
            lambda p, n: p.unique_count < n * config.dimension_ratio
            and p.unique_count < config.dimension_max_unique,
            ColumnClassification.DIMENSION,
        ),
        (lambda p, n: p.unique_count == n, ColumnClassification.POTENTIAL_KEY),
        (lambda p, n: True, ColumnClassification.ATTRIBUTE),
    ]


def classify_column(
    profile: ColumnProfile,
    sample_rows: int,
    config: ConversionSettings,
) -> ColumnClassification:
    """Apply the classification rules; first match wins"""
    for predicate, label in build_classification_rules(config):
        if predicate(profile, sample_rows):
            return label
    return ColumnClassification.ATTRIBUTE


def infer_data_type(profile: ColumnProfile) -> DataType:
    """Coarse data type, independent of classification"""
    if profile.numeric_ratio > 0.95:
        return DataType.NUMERIC
    if profile.numeric_ratio > 0.5:
        return DataType.MIXED_NUMERIC
    if profile.mean_length > 100:
        return DataType.TEXT
    return DataType.STRING


def profile_column(df: pl.DataFrame, column: str) -> ColumnProfile:
    """Compute the profile of one text column; empty denominators yield 0"""
    total = df.height
    values = df[column].drop_nulls()
    non_null = values.len()

    if non_null == 0:
        return ColumnProfile(
            column=column,
            numeric_ratio=0.0,
            unique_count=0,
            null_ratio=1.0 if total else 0.0,
            mean_length=0.0,
        )

    parsed = values.to_frame().select(numeric_cast(column))[column]
    numeric_ratio = parsed.is_not_null().sum() / non_null
    mean_length = values.str.len_chars().mean()
    samples = values.unique(maintain_order=True).head(3).to_list()

    return ColumnProfile(
        column=column,
        numeric_ratio=float(numeric_ratio),
        unique_count=int(values.n_unique()),
        null_ratio=(total - non_null) / total,
        mean_length=float(mean_length or 0.0),
        sample_values=tuple(samples),
    )


class SchemaAnalyzer:
    """
    Infers a SchemaInfo from a bounded sample of rows.

    Example:
        analyzer = SchemaAnalyzer(config)
        schema = analyzer.analyze(sample_rows)
        schema.columns_for(ColumnClassification.MEASURE)
    """

    def __init__(self, config: ConversionSettings):
        self.config = config

    def analyze(self, rows: Sequence[Row]) -> SchemaInfo:
        """
        Profile and classify every column seen in the sample.

        Raises:
            SchemaInferenceError: the sample has no rows
        """
        rows = list(rows)
        if not rows:
            logger.error("No data extracted from sample")
            raise SchemaInferenceError("Schema sample contains no rows")

        return self.analyze_frame(rows_to_frame(rows))

    def analyze_frame(self, df: pl.DataFrame) -> SchemaInfo:
        """Profile and classify the columns of a text DataFrame"""
        if df.height == 0:
            raise SchemaInferenceError("Schema sample contains no rows")

        entries = []
        for column in df.columns:
            profile = profile_column(df, column)
            entries.append(
                ColumnSchema(
                    profile=profile,
                    classification=classify_column(profile, df.height, self.config),
                    data_type=infer_data_type(profile),
                )
            )

        schema = SchemaInfo(columns=tuple(entries), sample_rows=df.height)
        counts = schema.counts()
        logger.info(
            "Schema analysis complete",
            sample_rows=df.height,
            columns=len(schema),
            identifiers=counts["identifier"],
            measures=counts["measure"],
            dimensions=counts["dimension"],
            potential_keys=counts["potential_key"],
            attributes=counts["attribute"],
            audit=counts["audit"],
        )
        return schema


def validate_star_schema(schema: SchemaInfo) -> Dict[str, object]:
    """
    Check that a schema can produce a useful star.

    Returns:
        Dict with "valid", "measures" and "dimensions"
    """
    measures = schema.columns_for(ColumnClassification.MEASURE)
    dimensions = schema.columns_for(ColumnClassification.DIMENSION)

    if not measures:
        logger.warning("No measure columns detected - fact table will only carry record_count")
    if not dimensions:
        logger.warning("No dimension columns detected - no dimension tables will be created")

    return {
        "valid": bool(measures or dimensions),
        "measures": measures,
        "dimensions": dimensions,
    }
