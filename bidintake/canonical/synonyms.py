"""YAML-driven synonym tables for field discovery.

Parsers never hard-code tag names or header spellings; they read them
from field_synonyms.yaml through this loader.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml

from bidintake.exceptions import ConfigurationError

DEFAULT_SYNONYMS_PATH = Path(__file__).parent / "field_synonyms.yaml"


@dataclass(frozen=True)
class XmlSynonyms:
    containers: tuple[str, ...]
    items: tuple[str, ...]
    project_nodes: tuple[str, ...]
    fields: dict[str, tuple[str, ...]]
    project_fields: dict[str, tuple[str, ...]]


@dataclass(frozen=True)
class SpreadsheetSynonyms:
    sheet_priority: tuple[str, ...]
    columns: dict[str, tuple[re.Pattern, ...]]
    metadata_keywords: dict[str, tuple[str, ...]]
    header_scan_rows: int = 10
    min_header_cells: int = 3


@dataclass(frozen=True)
class SynonymTables:
    xml: XmlSynonyms
    spreadsheet: SpreadsheetSynonyms
    source: Optional[Path] = field(default=None, compare=False)


def _string_lists(
    raw: Optional[dict], section: str, required: bool = True
) -> dict[str, tuple[str, ...]]:
    if not raw and not required:
        return {}
    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError(f"Synonym section '{section}' must be a non-empty mapping")
    return {key: tuple(str(v) for v in values or ()) for key, values in raw.items()}


def _compile_columns(raw: dict) -> dict[str, tuple[re.Pattern, ...]]:
    columns = {}
    for name, patterns in _string_lists(raw, "spreadsheet.columns").items():
        try:
            columns[name] = tuple(re.compile(p, re.IGNORECASE) for p in patterns)
        except re.error as e:
            raise ConfigurationError(f"Invalid header pattern for '{name}': {e}")
    return columns


def parse_synonyms(data: dict, source: Optional[Path] = None) -> SynonymTables:
    """Build SynonymTables from an already-loaded YAML mapping.

    Raises:
        ConfigurationError: If a required section is missing or malformed
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Synonym configuration must be a mapping")

    xml = data.get("xml") or {}
    sheet = data.get("spreadsheet") or {}

    for key in ("containers", "items", "fields"):
        if not xml.get(key):
            raise ConfigurationError(f"Synonym configuration missing xml.{key}")
    if not sheet.get("columns"):
        raise ConfigurationError("Synonym configuration missing spreadsheet.columns")

    return SynonymTables(
        xml=XmlSynonyms(
            containers=tuple(xml["containers"]),
            items=tuple(xml["items"]),
            project_nodes=tuple(xml.get("project_nodes") or ()),
            fields=_string_lists(xml["fields"], "xml.fields"),
            project_fields=_string_lists(
                xml.get("project_fields"), "xml.project_fields", required=False
            ),
        ),
        spreadsheet=SpreadsheetSynonyms(
            sheet_priority=tuple(sheet.get("sheet_priority") or ()),
            columns=_compile_columns(sheet["columns"]),
            metadata_keywords=_string_lists(
                sheet.get("metadata_keywords"), "spreadsheet.metadata_keywords", required=False
            ),
            header_scan_rows=int(sheet.get("header_scan_rows", 10)),
            min_header_cells=int(sheet.get("min_header_cells", 3)),
        ),
        source=source,
    )


@lru_cache(maxsize=4)
def load_synonyms(path: Optional[Path] = None) -> SynonymTables:
    """Load and cache synonym tables.

    Args:
        path: YAML file (defaults to the packaged field_synonyms.yaml)

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    path = path or DEFAULT_SYNONYMS_PATH
    if not path.exists():
        raise ConfigurationError(f"Synonym config not found: {path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    return parse_synonyms(data, source=path)
