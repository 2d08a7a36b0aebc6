"""Type definitions shared by the bid document parsers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class ImportStatus(str, Enum):
    """Status of a line item import."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    SKIPPED = "SKIPPED"


@dataclass
class ParsedLineItem:
    """Line item in canonical form.

    Every parser produces these, whatever the source layout.
    """

    line_number: int
    item_number: str
    description: str
    quantity: Decimal = Decimal("0")
    unit: str = "LS"
    unit_price: Optional[Decimal] = None
    extended_price: Optional[Decimal] = None
    alt_item_number: Optional[str] = None
    short_description: Optional[str] = None
    category: Optional[str] = None
    section: Optional[str] = None
    spec_section: Optional[str] = None


@dataclass
class ProjectInfo:
    """Project header fields harvested opportunistically from a document."""

    project_name: Optional[str] = None
    contract_number: Optional[str] = None
    county: Optional[str] = None
    route: Optional[str] = None
    letting_date: Optional[str] = None

    def as_dict(self) -> dict[str, str]:
        return {k: v for k, v in self.__dict__.items() if v}

    @property
    def is_empty(self) -> bool:
        return not self.as_dict()


@dataclass
class ParseResult:
    """Outcome of parsing one document.

    success=False with zero items means the input was readable but not
    recognized; errors then lists what was scanned.
    """

    success: bool
    schema: str
    line_items: list[ParsedLineItem] = field(default_factory=list)
    project_info: Optional[ProjectInfo] = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors) if self.errors else ""


@dataclass
class ImportResult:
    """Result of persisting parsed line items for a project."""

    document_id: Optional[str]
    status: ImportStatus
    records_inserted: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    first_line_number: Optional[int] = None
    message: str = ""
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check if import was successful."""
        return self.status in (ImportStatus.SUCCESS, ImportStatus.PARTIAL_SUCCESS)

    @property
    def total_records(self) -> int:
        return self.records_inserted + self.records_skipped + self.records_failed
