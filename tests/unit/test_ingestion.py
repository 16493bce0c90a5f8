"""
Unit Tests - Ingestion (XML source and batch orchestration)
"""
from pathlib import Path

import polars as pl
import pytest

from star_etl.config import ConversionSettings
from star_etl.exceptions import ParseError, SchemaInferenceError, ValidationError
from star_etl.ingestion import (
    BatchOrchestrator,
    InMemoryRowSource,
    UnitStatus,
    UnitValidator,
    XmlRecordSource,
)
from star_etl.ingestion.orchestrator import partition
from star_etl.ingestion.xml_source import extract_business_key
from star_etl.output import MemoryStarWriter
from star_etl.quality import create_record_validator
from star_etl.transformation.models import RunStatus

CATALOG_XML = """<?xml version="1.0" encoding="UTF-8"?>
<!--ORDER:12345-->
<catalog>
  <record id="p1" category="electronics">
    <name>Laptop</name>
    <price>999.99</price>
    <tag>new</tag>
    <tag>sale</tag>
    <size><w>10</w><h>20</h></size>
  </record>
  <record id="p2" category="toys">
    <name>Robot</name>
    <price>49.99</price>
  </record>
</catalog>
"""


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def _product_units(count: int = 4, per_unit: int = 10) -> dict:
    categories = ["electronics", "accessories", "toys"]
    units = {}
    for u in range(count):
        units[f"u{u}.xml"] = [
            {
                "record_id": f"{u}-{i}",
                "id": f"{u}-{i}",
                "category": categories[(u + i) % 3],
                "price": str(10 + i),
            }
            for i in range(per_unit)
        ]
    return units


class _ExplodingValidator(UnitValidator):
    def validate(self, unit, rows):
        raise ValidationError(str(unit), "boom")


class TestXmlRecordSource:
    """Tests for XmlRecordSource"""

    def test_records_flattened(self, tmp_path):
        """Test attributes and child elements become columns"""
        path = _write(tmp_path / "products.xml", CATALOG_XML)

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        assert len(rows) == 2
        first = rows[0]
        assert first["record_id"] == "p1"
        assert first["id"] == "p1"
        assert first["category"] == "electronics"
        assert first["name"] == "Laptop"
        assert first["price"] == "999.99"
        assert first["tag"] == "new"
        assert first["tag.1"] == "sale"
        assert first["size"] == "10 20"
        assert "tag" not in rows[1]

    def test_business_key_from_comment(self, tmp_path):
        path = _write(tmp_path / "products.xml", CATALOG_XML)

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        for row in rows:
            assert row["ORDER"] == "12345"
            assert row["business_key_name"] == "ORDER"
            assert row["business_key_value"] == "12345"

    def test_audit_columns(self, tmp_path):
        path = _write(tmp_path / "products.xml", CATALOG_XML)

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        assert rows[0]["source_file_name"] == "products.xml"
        assert rows[0]["source_file_path"] == str(path)
        assert rows[0]["load_timestamp"]

    def test_audit_columns_disabled(self, tmp_path):
        path = _write(tmp_path / "products.xml", CATALOG_XML)

        rows = XmlRecordSource(ConversionSettings(track_source_file=False)).parse(path)

        assert "source_file_name" not in rows[0]

    def test_sequential_ids_without_id_attribute(self, tmp_path):
        path = _write(tmp_path / "items.xml", """
<items>
  <item><name>a</name></item>
  <item><name>b</name></item>
  <item><name>c</name></item>
</items>""")

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        assert [row["record_id"] for row in rows] == [1, 2, 3]

    def test_root_children_fallback(self, tmp_path):
        path = _write(tmp_path / "orders.xml", """
<orders>
  <order id="o1"><total>10</total></order>
  <order id="o2"><total>20</total></order>
</orders>""")

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        assert [row["total"] for row in rows] == ["10", "20"]

    def test_text_content(self, tmp_path):
        path = _write(tmp_path / "notes.xml", '<notes><record id="n1">hello<tag>x</tag></record></notes>')

        rows = XmlRecordSource(ConversionSettings()).parse(path)

        assert rows[0]["text_content"] == "hello"

    def test_malformed_xml(self, tmp_path):
        path = _write(tmp_path / "broken.xml", "<catalog><record id='1'></catalog>")

        with pytest.raises(ParseError) as exc_info:
            XmlRecordSource(ConversionSettings()).parse(path)

        assert exc_info.value.status == "parse_error"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError):
            XmlRecordSource(ConversionSettings()).parse(tmp_path / "missing.xml")

    def test_unit_name_is_basename(self, tmp_path):
        assert XmlRecordSource(ConversionSettings()).unit_name(tmp_path / "a.xml") == "a.xml"

    def test_business_key_pattern(self):
        assert extract_business_key(["  SKU:AB-1 "]) == ("SKU", "AB-1")
        assert extract_business_key(["just a comment"]) is None
        assert extract_business_key(["A:B:C"]) is None
        assert extract_business_key([]) is None


class TestPartition:
    """Tests for batch partitioning"""

    def test_partition(self):
        assert partition(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]

    def test_partition_empty(self):
        assert partition([], 3) == []


class TestUnitProcessing:
    """Tests for the unit lifecycle"""

    def test_success_transitions(self, config):
        source = InMemoryRowSource({"a.xml": [{"record_id": "1"}]})
        orchestrator = BatchOrchestrator(config, source, validator=create_record_validator(config))

        result = orchestrator.process_unit("a.xml")

        assert result.status == UnitStatus.SUCCESS
        assert result.transitions == [
            UnitStatus.QUEUED, UnitStatus.PARSING, UnitStatus.VALIDATING, UnitStatus.SUCCESS,
        ]
        assert result.row_count == 1
        assert result.validated is True

    def test_validated_and_skipped_counts(self, config, category_schema):
        source = InMemoryRowSource({
            "a.xml": [{"record_id": "1", "category": "x", "price": "1"}],
            "empty.xml": [],
            "b.xml": [{"category": "y", "price": "2"}],
        })
        orchestrator = BatchOrchestrator(config, source, validator=create_record_validator(config))

        counters = orchestrator.process_batch(1, ["a.xml", "empty.xml", "b.xml"], category_schema).counters

        assert counters.successful == 2
        assert counters.validated == 1
        assert counters.validation_skipped == 1
        assert counters.validation_failed == 1

    def test_without_validator(self, config):
        source = InMemoryRowSource({"a.xml": [{"x": "1"}]})
        result = BatchOrchestrator(config, source).process_unit("a.xml")

        assert result.transitions == [UnitStatus.QUEUED, UnitStatus.PARSING, UnitStatus.SUCCESS]

    def test_validation_disabled(self):
        config = ConversionSettings(enable_validation=False, max_workers=1)
        source = InMemoryRowSource({"a.xml": [{"x": "1"}]})
        orchestrator = BatchOrchestrator(config, source, validator=create_record_validator(config))

        assert not orchestrator.validation_enabled
        assert orchestrator.process_unit("a.xml").status == UnitStatus.SUCCESS

    def test_parse_error(self, config):
        source = InMemoryRowSource({"bad.xml": ParseError("bad.xml", "malformed XML")})

        result = BatchOrchestrator(config, source).process_unit("bad.xml")

        assert result.status == UnitStatus.PARSE_ERROR
        assert result.error == "malformed XML"
        assert result.transitions[-2:] == [UnitStatus.PARSING, UnitStatus.PARSE_ERROR]

    def test_unexpected_exception_is_parse_error(self, config):
        source = InMemoryRowSource({"bad.xml": RuntimeError("disk on fire")})

        result = BatchOrchestrator(config, source).process_unit("bad.xml")

        assert result.status == UnitStatus.PARSE_ERROR
        assert result.error == "disk on fire"

    def test_validation_error(self, config):
        source = InMemoryRowSource({"a.xml": [{"x": "1"}]})
        orchestrator = BatchOrchestrator(config, source, validator=create_record_validator(config))

        result = orchestrator.process_unit("a.xml")

        assert result.status == UnitStatus.VALIDATION_ERROR
        assert result.error == "Schema validation failed: Column 'record_id' not found"
        assert result.rows == []

    def test_validator_exception(self, config):
        source = InMemoryRowSource({"a.xml": [{"record_id": "1"}]})
        orchestrator = BatchOrchestrator(config, source, validator=_ExplodingValidator())

        result = orchestrator.process_unit("a.xml")

        assert result.status == UnitStatus.VALIDATION_ERROR
        assert result.error == "Schema validation failed: boom"


class TestBatchOrchestrator:
    """Tests for full orchestrated runs"""

    @pytest.fixture
    def source(self):
        units = _product_units()
        units["bad.xml"] = ParseError("bad.xml", "malformed XML")
        units["invalid.xml"] = [{"category": "toys", "price": "5"}]
        return InMemoryRowSource(units)

    def test_run_isolates_failures(self, config, source):
        """Test failed units are recorded and do not abort the run"""
        writer = MemoryStarWriter()
        orchestrator = BatchOrchestrator(
            config, source, validator=create_record_validator(config), writer=writer,
        )

        result = orchestrator.run(source.units)

        summary = result.summary
        assert summary.status == RunStatus.COMPLETED
        assert summary.total_units == 6
        assert summary.successful_units == 4
        assert summary.parse_failed == 1
        assert summary.validation_failed == 1
        assert summary.batch_count == 3
        assert result.succeeded

        errors = result.error_summary.sort("file")
        assert errors["file"].to_list() == ["bad.xml", "invalid.xml"]
        assert errors["type"].to_list() == ["parse_error", "validation_error"]
        assert errors["batch_id"].to_list() == [3, 3]

        assert result.star.fact.height == 40
        assert result.star.dimension("dim_category")["category"].to_list() == [
            "accessories", "electronics", "toys",
        ]

        assert writer.fact.height == 40
        assert list(writer.dimensions) == ["dim_category"]
        assert writer.errors.height == 2
        assert writer.summary == summary
        assert writer.schema is result.schema

    def test_foreign_keys_resolve(self, config, source):
        result = BatchOrchestrator(config, source, validator=create_record_validator(config)).run(source.units)

        dim = result.star.dimension("dim_category")
        lookup = dict(zip(dim["category_key"].to_list(), dim["category"].to_list()))
        expected = {
            row["record_id"]: row["category"]
            for rows in _product_units().values()
            for row in rows
        }

        fact = result.star.fact
        for record_id, key in zip(fact["record_id"].to_list(), fact["category_key"].to_list()):
            assert lookup[key] == expected[record_id]

    def test_result_independent_of_worker_count(self, source):
        def run(workers: int) -> pl.DataFrame:
            config = ConversionSettings(max_workers=workers, batch_size=2)
            result = BatchOrchestrator(config, source).run(source.units)
            return result.star.fact.drop(["load_date", "load_time"])

        assert run(1).equals(run(3))

    def test_all_units_fail_validation(self, config):
        source = InMemoryRowSource({
            f"u{i}.xml": [{"category": "toys", "price": str(i)}] for i in range(3)
        })
        writer = MemoryStarWriter()
        orchestrator = BatchOrchestrator(
            config, source, validator=create_record_validator(config), writer=writer,
        )

        result = orchestrator.run(source.units)

        assert result.summary.status == RunStatus.FAILED
        assert result.summary.successful_units == 0
        assert result.summary.validation_failed == 3
        assert result.star.fact.height == 0
        assert result.error_summary.height == 3
        assert not result.succeeded

    def test_no_units(self, config):
        result = BatchOrchestrator(config, InMemoryRowSource({})).run([])

        assert result.summary.status == RunStatus.FAILED
        assert result.summary.total_units == 0
        assert result.star.fact.height == 0

    def test_empty_sample_raises(self, config):
        source = InMemoryRowSource({
            "a.xml": ParseError("a.xml", "malformed XML"),
            "b.xml": [],
        })

        with pytest.raises(SchemaInferenceError):
            BatchOrchestrator(config, source).run(source.units)

    def test_sample_limited_to_first_units(self, source):
        config = ConversionSettings(max_workers=2, batch_size=2, schema_sample_size=1)

        result = BatchOrchestrator(config, source).run(source.units)

        assert result.schema.sample_rows == 10

    @pytest.mark.asyncio
    async def test_run_async(self, config, source):
        orchestrator = BatchOrchestrator(config, source, validator=create_record_validator(config))

        result = await orchestrator.run_async(source.units)

        assert result.summary.fact_rows == 40
        assert result.summary.dimension_count == 1
        assert result.summary.validation_enabled
