"""
Dimension Merger

Combines independently built batch star schemas into one globally keyed star.

Each batch numbers its dimension values from 1, so the same key means
different values in different batches. Keys are therefore re-derived from
values:

1. union the values of every batch's table per dimension, sort, key 1..K
2. translate each batch's foreign keys: local key -> value -> global key
3. concatenate the re-keyed fact tables
4. verify that global keys are unique and every foreign key resolves
"""

from typing import Dict, List, Sequence

import polars as pl
import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.exceptions import MergeConsistencyError
from star_etl.transformation.models import BatchResult, MergedStarSchema
from star_etl.transformation.star_builder import dimension_value_column, key_column

logger = structlog.get_logger(__name__)

_GLOBAL_KEY = "__global_key"


class DimensionMerger:
    """
    Merges BatchResults into a MergedStarSchema.

    The merge is a pure function of its inputs: the result does not depend
    on the order in which batches completed.

    Example:
        merger = DimensionMerger(config)
        star = merger.merge(batch_results)
    """

    def __init__(self, config: ConversionSettings):
        self.config = config

    def value_column(self, dimension_name: str) -> str:
        """Dimension column name for a dimension table name"""
        prefix = self.config.dim_prefix
        if prefix and dimension_name.startswith(prefix):
            return dimension_name[len(prefix):]
        return dimension_name

    def merge(self, results: Sequence[BatchResult]) -> MergedStarSchema:
        """
        Merge batch results into one fact table and deduplicated dimensions.

        Raises:
            MergeConsistencyError: keys collide or foreign keys do not resolve
        """
        ordered = sorted(results, key=lambda r: r.batch_id)

        names = sorted({name for r in ordered for name in r.dimensions})
        dimensions = {
            name: self.merge_dimension(
                self.value_column(name),
                [r.dimensions[name] for r in ordered if name in r.dimensions],
            )
            for name in names
        }

        facts = [self.rekey_fact(r, dimensions) for r in ordered if r.fact.height > 0]
        fact = pl.concat(facts, how="diagonal_relaxed") if facts else pl.DataFrame()

        self.validate(fact, dimensions)

        logger.info(
            "Merged batch star schemas",
            batches=len(ordered),
            fact_rows=fact.height,
            dimensions={name: d.height for name, d in dimensions.items()},
        )
        return MergedStarSchema(fact=fact, dimensions=dimensions)

    def merge_dimension(self, column: str, tables: List[pl.DataFrame]) -> pl.DataFrame:
        """One row per distinct value, keyed 1..K in ascending value order"""
        key = key_column(column)
        value = dimension_value_column(column)
        combined = pl.concat(
            [t.select([value, "created_date", "is_active"]) for t in tables],
            how="vertical_relaxed",
        )
        return (
            combined.group_by(value)
            .agg(
                pl.col("created_date").min(),
                pl.col("is_active").any(),
            )
            .sort(value)
            .with_row_index(name=key, offset=1)
            .with_columns(pl.col(key).cast(pl.Int64))
            .select([key, value, "created_date", "is_active"])
        )

    def rekey_fact(self, result: BatchResult, dimensions: Dict[str, pl.DataFrame]) -> pl.DataFrame:
        """Rewrite a batch's foreign keys from batch-local to global keys"""
        fact = result.fact
        rewrites = []

        for name, global_dim in dimensions.items():
            column = self.value_column(name)
            key = key_column(column)
            value = dimension_value_column(column)
            if key not in fact.columns:
                continue

            local_keys = fact[key].drop_nulls()
            local_dim = result.dimensions.get(name)
            if local_dim is None:
                if local_keys.len() > 0:
                    raise MergeConsistencyError(
                        f"batch {result.batch_id} has foreign keys but no dimension table", name
                    )
                continue

            unknown = local_keys.filter(~local_keys.is_in(local_dim[key].implode()))
            if unknown.len() > 0:
                raise MergeConsistencyError(
                    f"batch {result.batch_id} references unknown local keys "
                    f"{sorted(set(unknown.to_list()))[:5]}",
                    name,
                )

            translation = local_dim.select([key, value]).join(
                global_dim.select([value, pl.col(key).alias(_GLOBAL_KEY)]),
                on=value,
                how="left",
            )
            if translation.height == 0:
                rewrites.append(pl.lit(None, dtype=pl.Int64).alias(key))
            else:
                rewrites.append(
                    pl.col(key)
                    .replace_strict(
                        translation[key],
                        translation[_GLOBAL_KEY],
                        default=None,
                        return_dtype=pl.Int64,
                    )
                    .alias(key)
                )

        return fact.with_columns(rewrites) if rewrites else fact

    def validate(self, fact: pl.DataFrame, dimensions: Dict[str, pl.DataFrame]) -> None:
        """Structural checks on the merged star; any violation is fatal"""
        for name, dimension in dimensions.items():
            column = self.value_column(name)
            key = key_column(column)
            value = dimension_value_column(column)

            if dimension[key].is_duplicated().any():
                raise MergeConsistencyError("duplicate global keys after merge", name)
            if dimension[value].is_duplicated().any():
                raise MergeConsistencyError("duplicate values after merge", name)

            if key not in fact.columns:
                continue
            foreign = fact[key].drop_nulls()
            orphans = foreign.filter(~foreign.is_in(dimension[key].implode()))
            if orphans.len() > 0:
                raise MergeConsistencyError(
                    f"{orphans.len()} fact rows reference missing keys", name
                )
