"""
Star Schema ETL
Configuration Module
"""
from .settings import ConversionSettings, DataLakeSettings, Settings, get_settings

__all__ = ["ConversionSettings", "DataLakeSettings", "Settings", "get_settings"]
