"""
Data Ingestion Module
"""
from .sources import InMemoryRowSource, RowSource, UnitValidator, ValidationVerdict
from .xml_source import XmlRecordSource
from .orchestrator import BatchOrchestrator, RunResult, UnitResult, UnitStatus

__all__ = [
    "RowSource",
    "UnitValidator",
    "ValidationVerdict",
    "InMemoryRowSource",
    "XmlRecordSource",
    "BatchOrchestrator",
    "RunResult",
    "UnitResult",
    "UnitStatus",
]
