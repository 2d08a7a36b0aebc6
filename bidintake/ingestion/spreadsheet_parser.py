"""Heuristic parser for itemized bid spreadsheets.

Column layout is unknown up front: the header row is located by cell
density and each logical field is matched to a column by regex synonyms.
Project header fields are harvested from the rows above the header.
"""

from __future__ import annotations

import csv
import math
import re
from datetime import date, datetime, timedelta
from io import BytesIO, StringIO
from typing import Any, Optional

import pandas as pd

from bidintake.canonical.normalize import (
    clean_text,
    matches_any,
    normalize_item_number,
    parse_price,
    parse_quantity,
    positive_price,
)
from bidintake.exceptions import StructuralParseError
from bidintake.ingestion.base_parser import BaseParser
from bidintake.ingestion.types import ParsedLineItem, ParseResult, ProjectInfo

ZIP_MAGIC = b"PK\x03\x04"  # xlsx
OLE_MAGIC = b"\xd0\xcf\x11\xe0"  # legacy xls

# Excel stores dates as days since 1899-12-30; 25569 is 1970-01-01
EXCEL_EPOCH_OFFSET = 25569
EXCEL_SERIAL_MIN = 40000
EXCEL_SERIAL_MAX = 60000

_CONTRACT_RE = re.compile(r"contract[:\s#]*([a-z0-9\-]+)", re.IGNORECASE)


def _cell(value: Any) -> Any:
    """Blank/NaN cells become None; everything else is returned as-is."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    if value is pd.NaT:
        return None
    return value


def _cell_text(value: Any) -> Optional[str]:
    """Cell as text; integral floats lose their trailing .0."""
    value = _cell(value)
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return clean_text(value)


def excel_serial_to_date(serial: float) -> date:
    return (datetime(1970, 1, 1) + timedelta(days=serial - EXCEL_EPOCH_OFFSET)).date()


def read_csv_rows(content: bytes) -> pd.DataFrame:
    """Read a CSV schedule into a header-less frame.

    Preamble rows (project, county) are usually narrower than the item
    header, so the frame is sized to the widest row rather than the first.
    """
    text = content.decode("utf-8-sig")
    width = max((len(row) for row in csv.reader(StringIO(text))), default=0)
    if width == 0:
        raise ValueError("No columns to parse from file")
    return pd.read_csv(StringIO(text), header=None, names=list(range(width)), dtype=object)


class SpreadsheetParser(BaseParser):
    """Extracts line items from XLSX/XLS/CSV bid schedules."""

    schema_name = "bid-spreadsheet"

    def _read_sheets(self, content: bytes) -> dict[str, pd.DataFrame]:
        try:
            if content[:4] in (ZIP_MAGIC, OLE_MAGIC):
                return pd.read_excel(BytesIO(content), sheet_name=None, header=None, dtype=object)
            return {"CSV": read_csv_rows(content)}
        except Exception as e:
            raise StructuralParseError(f"Unreadable workbook: {e}")

    def _select_sheet(self, sheets: dict[str, pd.DataFrame]) -> tuple[str, pd.DataFrame]:
        for name in self.synonyms.spreadsheet.sheet_priority:
            if name in sheets:
                return name, sheets[name]
        first = next(iter(sheets))
        return first, sheets[first]

    def _parse(self, content: bytes) -> ParseResult:
        sheets = self._read_sheets(content)
        if not sheets:
            return self._failure("No sheets found in the workbook")

        sheet_name, frame = self._select_sheet(sheets)
        rows = [[_cell(v) for v in row] for row in frame.values.tolist()]

        if len(rows) < 2:
            return self._failure(
                "Sheet has insufficient data (need header row + data rows)", sheet_name=sheet_name
            )

        header_index = self._find_header_row(rows)
        headers = [_cell_text(v) or "" for v in rows[header_index]]
        columns = self.identify_columns(headers)

        stats = {"sheet_name": sheet_name, "header_row": header_index, "columns": columns}

        if "item_number" not in columns and "description" not in columns:
            return self._failure(
                "Could not identify item number or description columns. "
                f"Headers found: {', '.join(h for h in headers if h)}",
                **stats,
            )

        project_info = self._harvest_metadata(rows[:header_index])
        line_items = self._build_line_items(rows[header_index + 1:], columns)

        if not line_items:
            return ParseResult(
                success=False,
                schema=self.schema_name,
                project_info=project_info,
                errors=[
                    "No valid line items found in the spreadsheet. "
                    f"Headers found: {', '.join(h for h in headers if h)}"
                ],
                stats=stats,
            )

        return ParseResult(
            success=True,
            schema=self.schema_name,
            line_items=line_items,
            project_info=project_info,
            stats=stats,
        )

    def _find_header_row(self, rows: list[list[Any]]) -> int:
        sheet_syn = self.synonyms.spreadsheet
        for index, row in enumerate(rows[: sheet_syn.header_scan_rows]):
            filled = sum(1 for v in row if v is not None)
            if filled >= sheet_syn.min_header_cells:
                return index
        return 0

    def identify_columns(self, headers: list[str]) -> dict[str, int]:
        """Map each logical field to the first header matching its patterns.

        Fields claim columns independently, so "Item #" can serve as both
        line number and item number.
        """
        columns: dict[str, int] = {}
        for field_name, patterns in self.synonyms.spreadsheet.columns.items():
            for index, header in enumerate(headers):
                if header and matches_any(header, patterns):
                    columns[field_name] = index
                    break
        return columns

    def _harvest_metadata(self, rows: list[list[Any]]) -> Optional[ProjectInfo]:
        keywords = self.synonyms.spreadsheet.metadata_keywords
        info = ProjectInfo()

        def triggered(field_name: str, text: str) -> bool:
            return any(k in text for k in keywords.get(field_name, ()))

        for row in rows:
            values = [v for v in row if v is not None]
            if not values:
                continue
            text = " ".join(str(v) for v in values).lower()

            if not info.project_name and triggered("project_name", text) and len(values) >= 2:
                info.project_name = _cell_text(values[1])

            if not info.contract_number and triggered("contract_number", text):
                match = _CONTRACT_RE.search(text)
                if match:
                    info.contract_number = match.group(1).upper()

            if not info.county and triggered("county", text) and len(values) >= 2:
                county = re.sub("county", "", str(values[1]), flags=re.IGNORECASE).strip()
                info.county = county or None

            if not info.letting_date and triggered("letting_date", text):
                info.letting_date = self._find_date(values)

        return None if info.is_empty else info

    def _find_date(self, values: list[Any]) -> Optional[str]:
        for value in values:
            if isinstance(value, (datetime, pd.Timestamp)):
                return value.date().isoformat()
            if isinstance(value, date):
                return value.isoformat()
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                if EXCEL_SERIAL_MIN < value < EXCEL_SERIAL_MAX:
                    return excel_serial_to_date(value).isoformat()
        return None

    def _build_line_items(
        self, rows: list[list[Any]], columns: dict[str, int]
    ) -> list[ParsedLineItem]:
        items: list[ParsedLineItem] = []
        seen_numbers: dict[str, int] = {}

        for row in rows:
            if sum(1 for v in row if v is not None) < 2:
                continue

            def get(field_name: str) -> Any:
                index = columns.get(field_name)
                if index is None or index >= len(row):
                    return None
                return row[index]

            raw_number = _cell_text(get("item_number")) or ""
            description = _cell_text(get("description")) or ""
            if not raw_number and not description:
                continue

            line_number = self.start_line + len(items)
            item_number = normalize_item_number(raw_number)
            alt_item_number = raw_number if raw_number and raw_number != item_number else None

            if item_number:
                item_number = self._unique_number(item_number, line_number, seen_numbers)
            else:
                item_number = f"ITEM-{line_number}"

            items.append(
                ParsedLineItem(
                    line_number=line_number,
                    item_number=item_number,
                    alt_item_number=alt_item_number,
                    description=description or "No description",
                    quantity=parse_quantity(get("quantity")),
                    unit=(_cell_text(get("unit")) or "LS").upper(),
                    unit_price=positive_price(get("unit_price")),
                    extended_price=parse_price(get("extended_price")),
                )
            )

        return items
