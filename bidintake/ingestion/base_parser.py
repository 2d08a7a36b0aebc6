"""Base class for all bid document parsers.

Defines the contract every per-format parser implements and the common
logging/timing wrapper around it.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from bidintake.canonical.synonyms import SynonymTables, load_synonyms
from bidintake.exceptions import StructuralParseError
from bidintake.ingestion.types import ParseResult

logger = logging.getLogger(__name__)


class BaseParser(ABC):
    """Abstract base class for bid document parsers.

    Key principles:
    1. Each parser handles exactly ONE input format
    2. Parsers are stateless and can be retried
    3. Unrecognized input is a ParseResult with success=False, not an exception
    4. Only unreadable input raises, as StructuralParseError
    """

    schema_name: str = "unknown"

    def __init__(self, synonyms: Optional[SynonymTables] = None, start_line: int = 1):
        """Initialize parser.

        Args:
            synonyms: Synonym tables (defaults to the packaged YAML)
            start_line: First line number to assign (incremental imports)
        """
        if start_line < 1:
            raise ValueError(f"start_line must be >= 1, got {start_line}")
        self.synonyms = synonyms or load_synonyms()
        self.start_line = start_line
        self.logger = logging.getLogger(f"{__name__}.{self.schema_name}")

    @abstractmethod
    def _parse(self, content: bytes) -> ParseResult:
        """Parse raw document bytes into canonical line items.

        Raises:
            StructuralParseError: If the document cannot be read at all
        """
        pass

    def parse(self, content: bytes) -> ParseResult:
        """Execute parse with logging and timing.

        This is the public interface called by the dispatcher.

        Raises:
            StructuralParseError: If the document cannot be read at all
        """
        start_time = time.time()
        self.logger.info(f"Parsing {len(content)} bytes as {self.schema_name}")

        try:
            result = self._parse(content)
        except StructuralParseError as e:
            self.logger.error(f"Structural parse failure ({self.schema_name}): {e}")
            raise

        result.stats["duration_seconds"] = round(time.time() - start_time, 3)
        result.stats["items_found"] = len(result.line_items)

        if result.success:
            self.logger.info(
                f"Parsed {len(result.line_items)} line items from {self.schema_name} document"
            )
        else:
            self.logger.warning(
                f"No usable line items in {self.schema_name} document: {result.error_message}"
            )
        return result

    def _unique_number(self, item_number: str, line_number: int, seen: dict[str, int]) -> str:
        """Suffix repeats of an item number with their line so codes stay unique.

        The same pay item often appears in several sections of one bid.
        """
        count = seen.get(item_number, 0) + 1
        seen[item_number] = count
        if count == 1:
            return item_number
        renamed = f"{item_number}-L{line_number}"
        self.logger.debug(f"Duplicate item {item_number}, renaming to {renamed}")
        return renamed

    def _failure(self, message: str, **stats) -> ParseResult:
        return ParseResult(success=False, schema=self.schema_name, errors=[message], stats=stats)
