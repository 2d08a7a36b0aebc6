"""Field normalization and synonym tables for bid documents."""

from bidintake.canonical.normalize import (
    clean_text,
    normalize_item_number,
    parse_price,
    parse_quantity,
)
from bidintake.canonical.synonyms import SynonymTables, load_synonyms

__all__ = [
    "clean_text",
    "normalize_item_number",
    "parse_price",
    "parse_quantity",
    "SynonymTables",
    "load_synonyms",
]
