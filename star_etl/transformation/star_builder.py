"""
Star Schema Builder

Turns one batch of rows into a fact table and a set of dimension tables with
batch-local surrogate keys.

Tables:
- fact: identifiers, numeric measures, one <column>_key per dimension,
  audit columns and load metadata (load_date, load_time, batch_id)
- dim_<column>: <column>_key, <column>, created_date, is_active

Source columns never shadow builder columns: a fact-bound source column named
like a builder column gets a _source suffix, and a dimension on created_date
or is_active stores its values in <column>_value.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

import polars as pl
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.schema.analyzer import ColumnClassification, SchemaInfo
from star_etl.schema.frames import Row, numeric_cast, rows_to_frame
from star_etl.transformation.models import BatchResult

logger = structlog.get_logger(__name__)

RECORD_COUNT_COLUMN = "record_count"
METADATA_COLUMNS = ("load_date", "load_time", "batch_id")
DIMENSION_METADATA_COLUMNS = ("created_date", "is_active")
SOURCE_SUFFIX = "_source"


def key_column(column: str) -> str:
    """Surrogate key column name for a dimension column"""
    return f"{column}_key"


def dimension_value_column(column: str) -> str:
    """Value column name inside a dimension table; never a metadata column name"""
    if column in DIMENSION_METADATA_COLUMNS:
        return f"{column}_value"
    return column


def reserved_fact_columns(schema: SchemaInfo) -> Set[str]:
    """Column names the builder itself writes into the fact table"""
    keys = {key_column(col) for col in schema.columns_for(ColumnClassification.DIMENSION)}
    return set(METADATA_COLUMNS) | {RECORD_COUNT_COLUMN} | keys


def build_dimension_table(
    df: pl.DataFrame,
    column: str,
    created_date: Optional[datetime] = None,
) -> pl.DataFrame:
    """
    Distinct non-null values of a column, sorted ascending, keyed 1..K.
    """
    created = (created_date or datetime.now()).date()
    key = key_column(column)
    value = dimension_value_column(column)

    return (
        df.select(pl.col(column).alias(value))
        .drop_nulls()
        .unique()
        .sort(value)
        .with_row_index(name=key, offset=1)
        .with_columns(
            pl.col(key).cast(pl.Int64),
            pl.lit(created, dtype=pl.Date).alias("created_date"),
            pl.lit(True).alias("is_active"),
        )
        .select([key, value, "created_date", "is_active"])
    )


def lookup_key(column: str, dimension: pl.DataFrame) -> pl.Expr:
    """Expression mapping raw values to surrogate keys; unmatched values map to null"""
    key = key_column(column)
    if dimension.height == 0:
        return pl.lit(None, dtype=pl.Int64).alias(key)
    value = dimension_value_column(column)
    return (
        pl.col(column)
        .replace_strict(dimension[value], dimension[key], default=None, return_dtype=pl.Int64)
        .alias(key)
    )


class StarSchemaBuilder:
    """
    Builds a per-batch star schema from rows and an inferred SchemaInfo.

    Example:
        builder = StarSchemaBuilder(config)
        result = builder.build(rows, schema, batch_id=3)
        result.fact, result.dimensions["dim_category"]
    """

    def __init__(self, config: ConversionSettings):
        self.config = config

    def build(
        self,
        rows: Sequence[Row],
        schema: SchemaInfo,
        batch_id: int = 1,
        loaded_at: Optional[datetime] = None,
    ) -> BatchResult:
        """Build fact and dimension tables for one batch of rows"""
        return self.build_frame(rows_to_frame(list(rows)), schema, batch_id, loaded_at)

    def build_frame(
        self,
        df: pl.DataFrame,
        schema: SchemaInfo,
        batch_id: int = 1,
        loaded_at: Optional[datetime] = None,
    ) -> BatchResult:
        if df.height == 0 or len(schema) == 0:
            return BatchResult(batch_id=batch_id, fact=pl.DataFrame(), dimensions={})

        loaded_at = loaded_at or datetime.now()

        measure_cols = self._present(df, schema.columns_for(ColumnClassification.MEASURE))
        dimension_cols = self._present(df, schema.columns_for(ColumnClassification.DIMENSION))
        audit_cols = self._present(df, list(self.config.audit_columns))
        identifier_cols = self._identifier_columns(df, schema)

        renames = self.rename_reserved(df, identifier_cols + measure_cols + audit_cols, schema)
        if renames:
            logger.warning(
                "Renamed source columns that clash with star schema columns",
                batch_id=batch_id,
                renamed=renames,
            )
            df = df.rename(renames)
            identifier_cols = [renames.get(col, col) for col in identifier_cols]
            measure_cols = [renames.get(col, col) for col in measure_cols]
            audit_cols = [renames.get(col, col) for col in audit_cols]

        if not identifier_cols:
            id_col = self.config.synthesized_id_column
            df = df.with_columns(pl.int_range(1, pl.len() + 1, dtype=pl.Int64).alias(id_col))
            identifier_cols = [id_col]

        dimensions = {
            self.config.dimension_name(col): build_dimension_table(df, col, loaded_at)
            for col in dimension_cols
        }

        fact = self.build_fact_table(
            df,
            identifier_cols=identifier_cols,
            measure_cols=measure_cols,
            dimension_cols=dimension_cols,
            audit_cols=audit_cols,
            dimensions=dimensions,
            batch_id=batch_id,
            loaded_at=loaded_at,
        )

        logger.debug(
            "Built batch star schema",
            batch_id=batch_id,
            fact_rows=fact.height,
            measures=len(measure_cols),
            dimensions=len(dimensions),
        )
        return BatchResult(batch_id=batch_id, fact=fact, dimensions=dimensions)

    def build_fact_table(
        self,
        df: pl.DataFrame,
        identifier_cols: List[str],
        measure_cols: List[str],
        dimension_cols: List[str],
        audit_cols: List[str],
        dimensions: Dict[str, pl.DataFrame],
        batch_id: int,
        loaded_at: datetime,
    ) -> pl.DataFrame:
        """Select identifiers, measures and audit columns and attach dimension keys"""
        if measure_cols:
            measures = [numeric_cast(col).alias(col) for col in measure_cols]
        else:
            measures = [pl.lit(1, dtype=pl.Int64).alias(RECORD_COUNT_COLUMN)]

        keys = [
            lookup_key(col, dimensions[self.config.dimension_name(col)])
            for col in dimension_cols
        ]

        # Raw dimension values are not selected, only their keys
        return df.select(
            [pl.col(col) for col in identifier_cols]
            + measures
            + keys
            + [pl.col(col) for col in audit_cols]
            + [
                pl.lit(loaded_at.date(), dtype=pl.Date).alias("load_date"),
                pl.lit(loaded_at.strftime("%H:%M:%S")).alias("load_time"),
                pl.lit(batch_id, dtype=pl.Int64).alias("batch_id"),
            ]
        )

    @staticmethod
    def rename_reserved(df: pl.DataFrame, columns: List[str], schema: SchemaInfo) -> Dict[str, str]:
        """
        New names for fact-bound source columns whose name the builder writes
        itself (load metadata, record_count, dimension keys).
        """
        reserved = reserved_fact_columns(schema)
        taken = set(df.columns) | reserved
        renames = {}
        for col in columns:
            if col not in reserved:
                continue
            name = f"{col}{SOURCE_SUFFIX}"
            while name in taken:
                name = f"{name}{SOURCE_SUFFIX}"
            taken.add(name)
            renames[col] = name
        return renames

    def _identifier_columns(self, df: pl.DataFrame, schema: SchemaInfo) -> List[str]:
        """Identifier columns present in the batch, falling back to reserved names"""
        found = self._present(df, schema.columns_for(ColumnClassification.IDENTIFIER))
        if found:
            return found
        return self._present(df, list(self.config.identifier_columns))

    @staticmethod
    def _present(df: pl.DataFrame, columns: List[str]) -> List[str]:
        return [col for col in columns if col in df.columns]


def aggregate_fact(
    fact: pl.DataFrame,
    group_by: List[str],
    measure_cols: List[str],
) -> pl.DataFrame:
    """Sum, average, min, max and non-null count of each measure per group"""
    aggregations = []
    for col in measure_cols:
        aggregations.extend([
            pl.col(col).sum().alias(f"{col}_sum"),
            pl.col(col).mean().alias(f"{col}_avg"),
            pl.col(col).min().alias(f"{col}_min"),
            pl.col(col).max().alias(f"{col}_max"),
            pl.col(col).count().alias(f"{col}_count"),
        ])
    return fact.group_by(group_by, maintain_order=True).agg(aggregations)


def check_star_integrity(fact: pl.DataFrame, dimensions: Dict[str, pl.DataFrame]) -> Dict[str, object]:
    """
    Report empty tables and duplicate surrogate keys.

    Issues are logged as warnings and returned, never raised.
    """
    issues = []

    if fact.height == 0:
        issues.append("Fact table is empty")

    for name, dimension in dimensions.items():
        if dimension.height == 0:
            issues.append(f"Dimension {name} is empty")
            continue
        key = next((c for c in dimension.columns if c.endswith("_key")), None)
        if key is not None and dimension[key].is_duplicated().any():
            issues.append(f"Duplicate keys in dimension {name}")

    for issue in issues:
        logger.warning("Star schema issue", issue=issue)

    return {"valid": not issues, "issues": issues}
