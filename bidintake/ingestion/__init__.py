"""Per-format parsers and line item persistence."""

from bidintake.ingestion.importer import import_line_items
from bidintake.ingestion.spreadsheet_parser import SpreadsheetParser
from bidintake.ingestion.types import ImportResult, ParsedLineItem, ParseResult, ProjectInfo
from bidintake.ingestion.xml_parser import BidxXmlParser

__all__ = [
    "BidxXmlParser",
    "SpreadsheetParser",
    "ParsedLineItem",
    "ParseResult",
    "ProjectInfo",
    "ImportResult",
    "import_line_items",
]
