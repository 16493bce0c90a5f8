"""
Collaborator interfaces used by the orchestrator.

A RowSource turns a source unit (usually a file path) into rows, a
UnitValidator gives a verdict on those rows before they are admitted to a
batch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from star_etl.exceptions import ParseError
from star_etl.schema.frames import Row

SourceUnit = Union[str, Path]


@dataclass
class ValidationVerdict:
    """Outcome of validating one source unit; valid=None means unknown"""
    valid: Optional[bool]
    errors: List[str] = field(default_factory=list)
    schema_used: Optional[str] = None

    @property
    def first_error(self) -> str:
        return self.errors[0] if self.errors else "unknown validation error"


class RowSource(ABC):
    """Produces the rows of one source unit"""

    @abstractmethod
    def parse(self, unit: SourceUnit) -> Iterable[Row]:
        """
        Parse a unit into rows. Calling it again re-reads the unit.

        Raises:
            ParseError: the unit cannot be parsed
        """

    def unit_name(self, unit: SourceUnit) -> str:
        """Short display name of a unit, used in error summaries"""
        return str(unit)


class UnitValidator(ABC):
    """Gives a verdict on the parsed rows of one unit"""

    @abstractmethod
    def validate(self, unit: SourceUnit, rows: Sequence[Row]) -> ValidationVerdict:
        """Validate rows parsed from a unit"""


class InMemoryRowSource(RowSource):
    """
    Row source backed by a mapping of unit name to rows.

    A unit mapped to an exception instance raises it when parsed, which is
    convenient for exercising error isolation.
    """

    def __init__(self, units: Mapping[str, Any]):
        self._units: Dict[str, Any] = dict(units)

    @property
    def units(self) -> List[str]:
        return list(self._units)

    def parse(self, unit: SourceUnit) -> List[Row]:
        key = str(unit)
        if key not in self._units:
            raise ParseError(key, "unknown source unit")
        payload = self._units[key]
        if isinstance(payload, Exception):
            raise payload
        return [dict(row) for row in payload]
