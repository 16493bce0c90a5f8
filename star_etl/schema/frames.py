"""
Row to DataFrame conversion.

Rows are mappings whose key set varies from row to row. The frame column set
is the union of keys in first-seen order and every raw value is carried as a
string so mixed-type columns never fail construction.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

import polars as pl

Row = Mapping[str, Any]


def _to_text(value: Any) -> Optional[str]:
    """Render a scalar as text, keeping nulls"""
    if value is None:
        return None
    if isinstance(value, float) and value != value:  # NaN
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def union_columns(rows: Iterable[Row]) -> List[str]:
    """Union of row keys in first-seen order"""
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def rows_to_frame(rows: List[Row]) -> pl.DataFrame:
    """
    Build a Utf8 DataFrame from schema-less rows.

    Missing keys become nulls.
    """
    columns = union_columns(rows)
    data = {
        col: [_to_text(row.get(col)) for row in rows]
        for col in columns
    }
    return pl.DataFrame(data, schema={col: pl.Utf8 for col in columns})


def numeric_cast(column: str) -> pl.Expr:
    """Expression coercing a text column to Float64 (failures become null)"""
    return pl.col(column).str.strip_chars().cast(pl.Float64, strict=False)
