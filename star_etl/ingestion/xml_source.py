"""
XML Record Source

Flattens XML documents into rows:
- record nodes are record/Record/item/Item elements (or the root's children)
- every attribute becomes a column
- leaf children contribute their text; nested children their joined text
- the first comment of the form NAME:VALUE adds a business key column
- audit columns identify the source file and load time
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import structlog

from star_etl.config.settings import ConversionSettings
from star_etl.exceptions import ParseError
from star_etl.ingestion.sources import RowSource, SourceUnit
from star_etl.schema.frames import Row

logger = structlog.get_logger(__name__)

RECORD_TAGS = {"record", "Record", "item", "Item"}
BUSINESS_KEY_PATTERN = re.compile(r"^([A-Za-z]+):([^:]+)$")


class _CommentTreeBuilder(ET.TreeBuilder):
    """TreeBuilder that also keeps every comment, including the prolog"""

    def __init__(self):
        super().__init__()
        self.comments: List[str] = []

    def comment(self, data):
        self.comments.append(data)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


def _unique_names(names: List[str]) -> List[str]:
    """Make repeated names unique: a, a.1, a.2"""
    counts: Dict[str, int] = {}
    result = []
    for name in names:
        if name in counts:
            counts[name] += 1
            result.append(f"{name}.{counts[name]}")
        else:
            counts[name] = 0
            result.append(name)
    return result


def _text(element: ET.Element) -> str:
    return (element.text or "").strip()


def extract_business_key(comments: List[str]) -> Optional[Tuple[str, str]]:
    """Business key from the first comment, if it reads NAME:VALUE"""
    if not comments:
        return None
    comment = comments[0].strip()
    match = BUSINESS_KEY_PATTERN.match(comment)
    if match is None:
        logger.warning("Comment found but doesn't match pattern", comment=comment)
        return None
    return match.group(1), match.group(2)


class XmlRecordSource(RowSource):
    """
    Parses XML files into rows.

    Example:
        source = XmlRecordSource(config)
        rows = source.parse("input/products.xml")
    """

    def __init__(self, config: ConversionSettings):
        self.config = config

    def unit_name(self, unit: SourceUnit) -> str:
        return Path(unit).name

    def _read(self, path: Path) -> Tuple[ET.Element, List[str]]:
        builder = _CommentTreeBuilder()
        parser = ET.XMLParser(target=builder)
        try:
            with open(path, "rb") as fh:
                for chunk in iter(lambda: fh.read(65536), b""):
                    parser.feed(chunk)
            root = parser.close()
        except ET.ParseError as e:
            raise ParseError(str(path), f"malformed XML: {e}") from e
        except OSError as e:
            raise ParseError(str(path), str(e)) from e
        return root, builder.comments

    def _record_nodes(self, root: ET.Element) -> List[ET.Element]:
        nodes = [el for el in root.iter() if _local_name(el.tag) in RECORD_TAGS]
        if not nodes:
            nodes = [el for el in root if isinstance(el.tag, str)]
        return nodes

    def _record_row(self, node: ET.Element) -> Dict[str, Optional[str]]:
        row: Dict[str, Optional[str]] = {
            self.config.synthesized_id_column: node.get(self.config.id_attribute),
        }
        row.update(node.attrib)

        children = [child for child in node if isinstance(child.tag, str)]
        names = _unique_names([_local_name(child.tag) for child in children])
        for name, child in zip(names, children):
            grandchildren = [g for g in child if isinstance(g.tag, str)]
            if grandchildren:
                row[name] = " ".join(_text(g) for g in grandchildren)
            else:
                row[name] = _text(child)

        text = _text(node)
        if text:
            row["text_content"] = text
        return row

    def parse(self, unit: SourceUnit) -> List[Row]:
        """Parse one XML file into rows"""
        path = Path(unit)
        logger.debug("Processing file", file=path.name)

        root, comments = self._read(path)
        rows = [self._record_row(node) for node in self._record_nodes(root)]

        id_col = self.config.synthesized_id_column
        if rows and all(row[id_col] is None for row in rows):
            for index, row in enumerate(rows, start=1):
                row[id_col] = index

        business_key = extract_business_key(comments)
        if business_key and rows:
            name, value = business_key
            for row in rows:
                row[name] = value
                row["business_key_name"] = name
                row["business_key_value"] = value
            logger.info("Extracted business key", file=path.name, name=name, value=value)

        if self.config.track_source_file and rows:
            name_col, path_col, time_col = self.config.audit_columns
            loaded_at = datetime.now().isoformat(timespec="seconds")
            for row in rows:
                row[name_col] = path.name
                row[path_col] = str(path)
                row[time_col] = loaded_at

        logger.debug("Parsed file", file=path.name, rows=len(rows))
        return rows
