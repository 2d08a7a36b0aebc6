"""Reference catalog loader.

Loads pay item reference data (category, price range, risk flags) from
a CSV or Excel file into catalog_items, upserting by item code. The
pipeline itself only reads the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bidintake.canonical.normalize import clean_text, normalize_item_number, parse_price
from bidintake.db.models import CatalogItemModel
from bidintake.models import WorkCategory

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("item_code", "description")
FLAG_COLUMNS = ("is_weather_sensitive", "is_lump_sum", "requires_subcontractor", "is_critical_path")
_TRUE_VALUES = {"true", "yes", "y", "1", "x"}


@dataclass
class CatalogLoadResult:
    rows_read: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def read_catalog_file(file_path: Path) -> pd.DataFrame:
    """Read a catalog file into a DataFrame with normalized column names."""
    if not file_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(file_path, dtype=object)
    elif suffix in (".xlsx", ".xls"):
        df = pd.read_excel(file_path, dtype=object)
    else:
        raise ValueError(f"Unsupported file format: {suffix}")

    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Catalog file is missing required columns: {', '.join(missing)}")
    return df


def _flag(value: Any) -> bool:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _risk_factors(value: Any) -> list[str]:
    text = clean_text(value)
    if not text:
        return []
    return [part.strip() for part in text.replace("|", ";").split(";") if part.strip()]


def row_to_catalog_fields(row: pd.Series) -> Optional[dict[str, Any]]:
    """Map one catalog row to CatalogItemModel fields, or None if unusable."""

    def get(column: str) -> Any:
        return row[column] if column in row.index else None

    code = clean_text(get("item_code"))
    description = clean_text(get("description"))
    if not code or not description:
        return None

    category = WorkCategory.parse(clean_text(get("work_category")))
    unit = clean_text(get("unit"))

    fields = {
        "item_code": normalize_item_number(code),
        "description": description,
        "unit": unit.upper() if unit else None,
        "work_category": category.value if category else None,
        "price_low": parse_price(get("price_low")),
        "price_median": parse_price(get("price_median")),
        "price_high": parse_price(get("price_high")),
        "risk_factors": _risk_factors(get("risk_factors")),
        "spec_section": clean_text(get("spec_section")),
    }
    for flag in FLAG_COLUMNS:
        fields[flag] = _flag(get(flag))
    return fields


async def load_catalog(session: AsyncSession, file_path: Path) -> CatalogLoadResult:
    """Upsert catalog rows from a file. Caller commits.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the format or columns are not supported
    """
    df = read_catalog_file(file_path)
    result = CatalogLoadResult(rows_read=len(df))
    logger.info(f"Read {len(df)} catalog rows from {file_path}")

    existing = {
        item.item_code: item
        for item in (await session.execute(select(CatalogItemModel))).scalars().all()
    }

    for idx, row in df.iterrows():
        fields = row_to_catalog_fields(row)
        if fields is None:
            result.skipped += 1
            result.errors.append(f"Row {idx}: missing item code or description")
            continue

        item = existing.get(fields["item_code"])
        if item is None:
            item = CatalogItemModel(**fields)
            session.add(item)
            existing[item.item_code] = item
            result.inserted += 1
        else:
            for key, value in fields.items():
                setattr(item, key, value)
            result.updated += 1

    await session.flush()
    logger.info(
        f"Catalog load: {result.inserted} inserted, {result.updated} updated, {result.skipped} skipped"
    )
    return result
