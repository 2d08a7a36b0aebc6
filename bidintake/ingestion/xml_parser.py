"""Structural parser for schedule-export (Bidx/EBSX) XML.

The tree shape varies by exporting system, so nothing is addressed by
path. Containers and items are discovered by element name from the
synonym tables, and each logical field is resolved by trying its
synonyms in order against the item's children and attributes.
"""

from __future__ import annotations

import gzip
import xml.etree.ElementTree as ET
from typing import Optional

from bidintake.canonical.normalize import (
    clean_text,
    normalize_item_number,
    parse_price,
    parse_quantity,
)
from bidintake.exceptions import StructuralParseError
from bidintake.ingestion.base_parser import BaseParser
from bidintake.ingestion.types import ParsedLineItem, ParseResult, ProjectInfo

GZIP_MAGIC = b"\x1f\x8b"
EBSX_CONTAINERS = {"EBSXContainer", "EBSX"}

NO_ITEMS_MESSAGE = "No line items found in Bidx file. The XML structure may not be recognized."


def _local(tag) -> str:
    """Element tag without any {namespace} prefix."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _text_of(element: ET.Element) -> Optional[str]:
    """Element text, falling back to the first child carrying text.

    Covers exports that wrap values as <Quantity><Value>12</Value></Quantity>.
    """
    text = clean_text(element.text)
    if text:
        return text
    for child in element:
        text = clean_text(child.text)
        if text:
            return text
    return None


def decode_xml_bytes(content: bytes) -> str:
    """Decompress gzip payloads, decode, strip BOM and normalize newlines."""
    if content[:2] == GZIP_MAGIC:
        try:
            content = gzip.decompress(content)
        except (OSError, EOFError) as e:
            raise StructuralParseError(f"XML parsing error: gzip decompression failed: {e}")

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        text = content.decode("latin-1")

    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")


class BidxXmlParser(BaseParser):
    """Extracts line items and project header fields from Bidx XML."""

    schema_name = "bidx-xml"

    def _parse(self, content: bytes) -> ParseResult:
        text = decode_xml_bytes(content)
        try:
            root = ET.fromstring(text)
        except (ET.ParseError, ValueError) as e:
            raise StructuralParseError(f"XML parsing error: {e}")

        schema = self.schema_name
        if any(_local(el.tag) in EBSX_CONTAINERS for el in root.iter()):
            schema = "ebsx"

        item_elements, item_tag, container_tag = self._find_items(root)
        project_info = self._project_info(root)

        line_items = self._build_line_items(item_elements)

        stats = {
            "container": container_tag,
            "item_element": item_tag,
            "elements_found": len(item_elements),
        }

        if not line_items:
            xml_syn = self.synonyms.xml
            return ParseResult(
                success=False,
                schema=schema,
                project_info=project_info,
                errors=[
                    f"{NO_ITEMS_MESSAGE} Containers tried: {', '.join(xml_syn.containers)}. "
                    f"Item elements tried: {', '.join(xml_syn.items)}."
                ],
                stats=stats,
            )

        return ParseResult(
            success=True,
            schema=schema,
            line_items=line_items,
            project_info=project_info,
            stats=stats,
        )

    def _find_items(
        self, root: ET.Element
    ) -> tuple[list[ET.Element], Optional[str], Optional[str]]:
        """Locate item elements, preferring those under a known container."""
        xml_syn = self.synonyms.xml

        for container_name in xml_syn.containers:
            containers = [el for el in root.iter() if _local(el.tag) == container_name]
            for container in containers:
                for item_name in xml_syn.items:
                    found = [
                        el for el in container.iter()
                        if el is not container and _local(el.tag) == item_name
                    ]
                    if found:
                        return found, item_name, container_name

        # No container matched: search the whole document
        for item_name in xml_syn.items:
            found = [el for el in root.iter() if _local(el.tag) == item_name]
            if found:
                return found, item_name, None

        return [], None, None

    def _field(self, element: ET.Element, field_name: str) -> Optional[str]:
        """First non-empty value among a field's synonyms."""
        for name in self.synonyms.xml.fields.get(field_name, ()):
            if name.startswith("@"):
                value = clean_text(element.attrib.get(name[1:]))
                if value:
                    return value
                continue
            for child in element:
                if _local(child.tag) == name:
                    value = _text_of(child)
                    if value:
                        return value
        return None

    def _project_info(self, root: ET.Element) -> Optional[ProjectInfo]:
        sources: list[ET.Element] = []
        for node_name in self.synonyms.xml.project_nodes:
            node = next((el for el in root.iter() if _local(el.tag) == node_name), None)
            if node is not None:
                sources.append(node)
        sources.append(root)

        values = {}
        for field_name, synonyms in self.synonyms.xml.project_fields.items():
            for source in sources:
                value = None
                for name in synonyms:
                    child = next((c for c in source if _local(c.tag) == name), None)
                    if child is not None:
                        value = _text_of(child)
                        if value:
                            break
                if value:
                    values[field_name] = value
                    break

        info = ProjectInfo(**{k: v for k, v in values.items() if k in ProjectInfo.__dataclass_fields__})
        return None if info.is_empty else info

    def _build_line_items(self, elements: list[ET.Element]) -> list[ParsedLineItem]:
        items: list[ParsedLineItem] = []
        seen_numbers: dict[str, int] = {}

        for element in elements:
            raw_number = self._field(element, "item_number")
            item_number = normalize_item_number(raw_number)
            description = self._field(element, "description")
            short_description = self._field(element, "short_description")

            if not item_number and not description and not short_description:
                continue  # all-blank element

            line_number = self.start_line + len(items)

            if raw_number and raw_number != item_number:
                alt_item_number = raw_number
            else:
                alt_item_number = self._field(element, "alt_item_number")

            if item_number:
                item_number = self._unique_number(item_number, line_number, seen_numbers)
            else:
                item_number = f"ITEM-{line_number}"

            items.append(
                ParsedLineItem(
                    line_number=line_number,
                    item_number=item_number,
                    alt_item_number=alt_item_number,
                    description=description or short_description or "No description",
                    short_description=short_description,
                    quantity=parse_quantity(self._field(element, "quantity")),
                    unit=self._field(element, "unit") or "LS",
                    unit_price=parse_price(self._field(element, "unit_price")),
                    category=self._field(element, "category"),
                    section=self._field(element, "section"),
                    spec_section=self._field(element, "spec_section"),
                )
            )

        return items
