"""
Unit Tests - End-to-end XML to Parquet conversion
"""
from pathlib import Path

import polars as pl
import pytest

from star_etl.cli import EXIT_FATAL, EXIT_NO_SUCCESS, EXIT_OK, main
from star_etl.config import ConversionSettings, DataLakeSettings, Settings
from star_etl.pipeline import convert_directory, find_source_files
from star_etl.transformation.models import RunStatus

CATEGORIES = ["electronics", "accessories", "toys"]

CATALOG_XSD = """<?xml version="1.0"?>
<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema">
  <xs:element name="catalog">
    <xs:complexType>
      <xs:sequence>
        <xs:element name="record" maxOccurs="unbounded">
          <xs:complexType>
            <xs:sequence>
              <xs:element name="name" type="xs:string"/>
              <xs:element name="price" type="xs:decimal"/>
              <xs:element name="category" type="xs:string"/>
            </xs:sequence>
            <xs:attribute name="id" type="xs:string" use="required"/>
          </xs:complexType>
        </xs:element>
      </xs:sequence>
    </xs:complexType>
  </xs:element>
</xs:schema>
"""


def _catalog(file_index: int, records: int = 10) -> str:
    body = "\n".join(
        f'  <record id="f{file_index}-{i}">'
        f"<name>Product {file_index}-{i}</name>"
        f"<price>{10 + i}.50</price>"
        f"<category>{CATEGORIES[(file_index + i) % 3]}</category>"
        "</record>"
        for i in range(records)
    )
    return f'<?xml version="1.0"?>\n<catalog>\n{body}\n</catalog>\n'


@pytest.fixture
def input_dir(tmp_path) -> Path:
    folder = tmp_path / "input"
    folder.mkdir()
    for index in range(4):
        (folder / f"products_{index}.xml").write_text(_catalog(index), encoding="utf-8")
    (folder / "broken.xml").write_text("<catalog><record>", encoding="utf-8")
    (folder / "notes.txt").write_text("not xml", encoding="utf-8")
    return folder


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        conversion=ConversionSettings(max_workers=2, batch_size=2, schema_dir=str(tmp_path / "schemas")),
        data_lake=DataLakeSettings(output_path=str(tmp_path / "output")),
    )


class TestConvertDirectory:
    """Tests for convert_directory"""

    def test_find_source_files(self, input_dir):
        files = find_source_files(input_dir)

        assert [f.name for f in files] == [
            "broken.xml",
            "products_0.xml",
            "products_1.xml",
            "products_2.xml",
            "products_3.xml",
        ]

    def test_conversion(self, input_dir, tmp_path, settings):
        """Test a folder of XML files becomes a Parquet star schema"""
        output_dir = tmp_path / "output"

        result = convert_directory(input_dir, output_dir, settings)

        assert result.summary.status == RunStatus.COMPLETED
        assert result.summary.total_units == 5
        assert result.summary.successful_units == 4
        assert result.summary.parse_failed == 1

        fact = pl.read_parquet(output_dir / "fact_main.parquet")
        dim = pl.read_parquet(output_dir / "dim_category.parquet")

        assert fact.height == 40
        assert fact["price"].dtype == pl.Float64
        assert "category" not in fact.columns
        assert "source_file_name" in fact.columns
        assert dim["category"].to_list() == ["accessories", "electronics", "toys"]
        assert set(fact["category_key"].to_list()) == {1, 2, 3}

        errors = pl.read_csv(output_dir / "processing_errors.csv")
        assert errors["file"].to_list() == ["broken.xml"]
        assert errors["type"].to_list() == ["parse_error"]

        for name in (
            "processing_manifest.csv",
            "schema_documentation.csv",
            "schema_documentation_summary.txt",
            "parquet_metadata.csv",
            "validation_report.csv",
        ):
            assert (output_dir / name).exists()

    def test_validation_report_without_schema(self, input_dir, tmp_path, settings):
        output_dir = tmp_path / "output"

        result = convert_directory(input_dir, output_dir, settings)

        report = pl.read_csv(output_dir / "validation_report.csv")
        row = report.row(0, named=True)
        assert result.summary.validation_skipped == 4
        assert row["validated"] == 0
        assert row["validation_skipped"] == 4
        assert row["validation_rate"] is None
        assert row["validation_mode"] == "auto"

    def test_schema_rejects_invalid_file(self, input_dir, tmp_path, settings):
        """Test a file violating the folder's schema.xsd is excluded from the star"""
        output_dir = tmp_path / "output"
        (input_dir / "schema.xsd").write_text(CATALOG_XSD, encoding="utf-8")
        (input_dir / "products_9.xml").write_text(
            _catalog(9).replace("<price>10.50</price>", "<price>free</price>"), encoding="utf-8"
        )

        result = convert_directory(input_dir, output_dir, settings)

        assert result.summary.total_units == 6
        assert result.summary.validated_units == 4
        assert result.summary.validation_failed == 1
        assert result.star.fact.height == 40
        assert "f9-0" not in result.star.fact["id"].to_list()

        errors = pl.read_csv(output_dir / "processing_errors.csv").sort("file")
        assert errors["type"].to_list() == ["parse_error", "validation_error"]
        assert errors["file"].to_list() == ["broken.xml", "products_9.xml"]

        row = pl.read_csv(output_dir / "validation_report.csv").row(0, named=True)
        assert row["total_files"] == 6
        assert row["validated"] == 4
        assert row["validation_failed"] == 1
        assert row["validation_skipped"] == 0
        assert row["validation_rate"] == 80.0
        assert row["schema_dir"] == str(tmp_path / "schemas")

    def test_required_columns(self, input_dir, tmp_path, settings):
        output_dir = tmp_path / "output"

        result = convert_directory(input_dir, output_dir, settings, required_columns=["colour"])

        assert result.summary.successful_units == 0
        assert result.summary.validation_failed == 4
        assert result.summary.status == RunStatus.FAILED

    def test_manifest_appends(self, input_dir, tmp_path, settings):
        output_dir = tmp_path / "output"

        convert_directory(input_dir, output_dir, settings)
        convert_directory(input_dir, output_dir, settings)

        manifest = pl.read_csv(output_dir / "processing_manifest.csv")
        assert manifest.height == 2
        assert manifest["successful"].to_list() == [4, 4]

    def test_parquet_metadata(self, input_dir, tmp_path, settings):
        output_dir = tmp_path / "output"

        convert_directory(input_dir, output_dir, settings)

        metadata = pl.read_csv(output_dir / "parquet_metadata.csv")
        rows = dict(zip(metadata["file"].to_list(), metadata["rows"].to_list()))
        assert rows == {"dim_category.parquet": 3, "fact_main.parquet": 40}

    def test_defaults_from_settings(self, input_dir, tmp_path):
        settings = Settings(
            conversion=ConversionSettings(max_workers=1),
            data_lake=DataLakeSettings(input_path=str(input_dir), output_path=str(tmp_path / "out")),
        )

        result = convert_directory(settings=settings)

        assert result.succeeded
        assert (tmp_path / "out" / "fact_main.parquet").exists()


class TestCli:
    """Tests for the command line entry point"""

    def test_success(self, input_dir, tmp_path):
        output_dir = tmp_path / "cli_output"

        code = main([
            "--input", str(input_dir),
            "--output", str(output_dir),
            "--batch-size", "3",
            "--workers", "2",
            "--no-validation",
        ])

        assert code == EXIT_OK
        assert (output_dir / "fact_main.parquet").exists()

    def test_empty_folder(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()

        code = main(["--input", str(empty), "--output", str(tmp_path / "out")])

        assert code == EXIT_NO_SUCCESS

    def test_no_usable_sample(self, tmp_path):
        folder = tmp_path / "broken"
        folder.mkdir()
        (folder / "a.xml").write_text("<catalog>", encoding="utf-8")

        code = main(["--input", str(folder), "--output", str(tmp_path / "out"), "--workers", "1"])

        assert code == EXIT_FATAL

    def test_schema_options(self, input_dir, tmp_path):
        output_dir = tmp_path / "cli_output"
        schema = tmp_path / "catalog.xsd"
        schema.write_text(CATALOG_XSD.replace('type="xs:decimal"', 'type="xs:integer"'), encoding="utf-8")

        code = main([
            "--input", str(input_dir),
            "--output", str(output_dir),
            "--workers", "1",
            "--schema-file", str(schema),
        ])

        assert code == EXIT_NO_SUCCESS
        row = pl.read_csv(output_dir / "validation_report.csv").row(0, named=True)
        assert row["validation_failed"] == 4
        assert row["validation_mode"] == "xsd"
