"""
Star Schema ETL
Centralized Configuration Management

Configuration is read once from the environment (and an optional .env file)
with Pydantic settings. The conversion section is frozen so a single value can
be threaded through the analyzer, builder, merger and orchestrator.
"""

import os
from functools import lru_cache
from typing import Optional, Tuple
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConversionSettings(BaseSettings):
    """Schema inference, star building and batching configuration"""

    model_config = SettingsConfigDict(env_prefix="STAR_", frozen=True)

    # Identifiers
    id_attribute: str = Field(default="id", description="Primary id attribute name")
    synthesized_id_column: str = Field(default="record_id", description="Reserved name of the synthesized id")

    # Classification thresholds
    numeric_threshold: float = Field(default=0.8, description="Numeric ratio above which a column is a measure")
    dimension_ratio: float = Field(default=0.1, description="Max unique/row ratio for dimension columns")
    dimension_max_unique: int = Field(default=50, description="Max distinct values for dimension columns")

    # Batching
    batch_size: int = Field(default=50, description="Source units per batch")
    schema_sample_size: int = Field(default=100, description="Source units sampled for schema inference")
    max_workers: Optional[int] = Field(default=None, description="Worker pool size (None = cores - 1, max 8)")

    # Naming
    fact_prefix: str = Field(default="fact_", description="Fact table name prefix")
    dim_prefix: str = Field(default="dim_", description="Dimension table name prefix")
    audit_columns: Tuple[str, ...] = Field(
        default=("source_file_name", "source_file_path", "load_timestamp"),
        description="Reserved audit column names",
    )

    # Behaviour
    enable_validation: bool = Field(default=True, description="Validate source units before building")
    schema_dir: str = Field(default="./schemas", description="Folder searched for XSD/DTD files")
    schema_file: Optional[str] = Field(default=None, description="XSD applied to every file (skips auto-detection)")
    track_source_file: bool = Field(default=True, description="Attach source audit columns to every row")

    @field_validator("numeric_threshold", "dimension_ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Ratios must lie in (0, 1]"""
        if not 0 < v <= 1:
            raise ValueError("Ratio thresholds must be in (0, 1]")
        return v

    @field_validator("batch_size", "schema_sample_size", "dimension_max_unique")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Sizes must be positive"""
        if v < 1:
            raise ValueError("Sizes must be positive")
        return v

    @field_validator("audit_columns")
    @classmethod
    def validate_audit_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Source name, source path and load timestamp, in that order"""
        if len(v) != 3:
            raise ValueError("audit_columns must name the source name, source path and load timestamp columns")
        return tuple(v)

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_workers must be positive")
        return v

    @property
    def worker_count(self) -> int:
        """Effective worker pool size"""
        if self.max_workers is not None:
            return self.max_workers
        return max(1, min((os.cpu_count() or 2) - 1, 8))

    @property
    def identifier_columns(self) -> Tuple[str, str]:
        """Column names that are always classified as identifiers"""
        return (self.id_attribute, self.synthesized_id_column)

    def dimension_name(self, column: str) -> str:
        """Dimension table name for a dimension column"""
        return f"{self.dim_prefix}{column}"

    def fact_name(self, suffix: str = "main") -> str:
        """Fact table name"""
        return f"{self.fact_prefix}{suffix}"


class DataLakeSettings(BaseSettings):
    """Input and output storage configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    input_path: str = Field(default="./input", description="Folder holding source XML files")
    input_pattern: str = Field(default="*.xml", description="Glob pattern for source files")
    output_path: str = Field(default="./output", description="Folder receiving star schema tables")
    compression: str = Field(default="snappy", description="Parquet compression codec")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="console", alias="LOG_FORMAT", description="Log format: json or console")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE", description="Audit log file path")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="star-etl", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    version: str = Field(default="1.0.0", description="Application version")

    conversion: ConversionSettings = Field(default_factory=ConversionSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
