"""
Test Suite Configuration
"""
from datetime import datetime
from typing import Callable, Dict, List

import pytest

from star_etl.config import ConversionSettings
from star_etl.schema.analyzer import (
    ColumnClassification,
    ColumnProfile,
    ColumnSchema,
    DataType,
    SchemaInfo,
)

LOADED_AT = datetime(2025, 1, 15, 10, 30, 0)


@pytest.fixture
def config() -> ConversionSettings:
    """Conversion settings with a small, fixed worker pool"""
    return ConversionSettings(max_workers=2, batch_size=2, schema_sample_size=10)


@pytest.fixture
def loaded_at() -> datetime:
    return LOADED_AT


@pytest.fixture
def schema_factory() -> Callable[[Dict[str, ColumnClassification]], SchemaInfo]:
    """Build a SchemaInfo directly from column classifications"""
    def make(classifications: Dict[str, ColumnClassification]) -> SchemaInfo:
        entries = tuple(
            ColumnSchema(
                profile=ColumnProfile(
                    column=column,
                    numeric_ratio=1.0 if kind == ColumnClassification.MEASURE else 0.0,
                    unique_count=0,
                    null_ratio=0.0,
                    mean_length=0.0,
                ),
                classification=kind,
                data_type=DataType.NUMERIC if kind == ColumnClassification.MEASURE else DataType.STRING,
            )
            for column, kind in classifications.items()
        )
        return SchemaInfo(columns=entries, sample_rows=10)

    return make


@pytest.fixture
def product_rows() -> List[dict]:
    """40 product rows: numeric price, 3 categories, unique names"""
    categories = ["electronics", "accessories", "toys"]
    return [
        {
            "id": str(i),
            "name": f"Product {i}",
            "price": f"{10 + i * 1.5:.2f}",
            "category": categories[i % 3],
        }
        for i in range(1, 41)
    ]


@pytest.fixture
def batch_a_rows() -> List[dict]:
    return [
        {"id": "a1", "category": "electronics", "price": "799.99"},
        {"id": "a2", "category": "accessories", "price": "49.99"},
        {"id": "a3", "category": "electronics", "price": "899.99"},
    ]


@pytest.fixture
def batch_b_rows() -> List[dict]:
    return [
        {"id": "b1", "category": "accessories", "price": "19.99"},
        {"id": "b2", "category": "toys", "price": "29.99"},
        {"id": "b3", "category": None, "price": "9.99"},
    ]


@pytest.fixture
def category_schema(schema_factory) -> SchemaInfo:
    return schema_factory({
        "id": ColumnClassification.IDENTIFIER,
        "category": ColumnClassification.DIMENSION,
        "price": ColumnClassification.MEASURE,
    })
