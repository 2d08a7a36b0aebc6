"""Field normalization shared by all bid document parsers.

Item-number canonicalization plus lenient quantity/price parsing. None of
these functions raise on bad input: a defective cell degrades to a
default rather than failing its row.
"""

from __future__ import annotations

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

# WVDOH-style "201001-000" -> "201.001"
_WVDOH_ITEM_RE = re.compile(r"^(\d{3})(\d{3})-(\d{3})$")

# Currency symbols, thousands separators and whitespace
_NUMERIC_NOISE_RE = re.compile(r"[\s,$€£¥]")

_EMPTY_MARKERS = {"", "nan", "none", "null", "n/a"}


def clean_text(value: Any) -> Optional[str]:
    """Return stripped text, or None for empty/NaN-like cells."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS:
        return None
    return text


def normalize_item_number(value: Any) -> str:
    """Canonicalize a pay item number.

    "201001-000" becomes "201.001"; anything else is returned stripped.
    Applying it twice gives the same result as applying it once.
    """
    text = clean_text(value) or ""
    match = _WVDOH_ITEM_RE.match(text)
    if match:
        return f"{match.group(1)}.{match.group(2)}"
    return text


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        result = Decimal(str(value))
    else:
        text = _NUMERIC_NOISE_RE.sub("", str(value))
        # Accounting negatives: "(1,234.00)"
        if text.startswith("(") and text.endswith(")"):
            text = "-" + text[1:-1]
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    if not result.is_finite():
        return None
    return result


def parse_quantity(value: Any) -> Decimal:
    """Parse a quantity cell; unparsable or negative input yields 0."""
    result = _to_decimal(value)
    if result is None or result < 0:
        return Decimal("0")
    return result


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse a price cell; unparsable input yields None."""
    return _to_decimal(value)


def positive_price(value: Any) -> Optional[Decimal]:
    """Parse a price and keep it only if it is greater than zero."""
    price = parse_price(value)
    if price is None or price <= 0:
        return None
    return price


def matches_any(text: str, patterns: Iterable[re.Pattern]) -> bool:
    """True if any compiled pattern matches the stripped header text."""
    candidate = text.strip()
    return any(p.search(candidate) for p in patterns)


def first_present(values: Iterable[Any]) -> Optional[str]:
    """First value that is non-empty once cleaned."""
    for value in values:
        text = clean_text(value)
        if text:
            return text
    return None
