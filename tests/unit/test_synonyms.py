"""Unit tests for the YAML synonym tables."""

from __future__ import annotations

import pytest
import yaml

from bidintake.canonical.synonyms import DEFAULT_SYNONYMS_PATH, load_synonyms, parse_synonyms
from bidintake.exceptions import ConfigurationError
from bidintake.ingestion.xml_parser import BidxXmlParser


def default_data() -> dict:
    with DEFAULT_SYNONYMS_PATH.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


class TestLoadSynonyms:
    def test_packaged_tables(self):
        tables = load_synonyms()

        assert "BidItems" in tables.xml.containers
        assert tables.xml.fields["item_number"][0] == "ItemNumber"
        assert "Bid Items" in tables.spreadsheet.sheet_priority
        assert tables.spreadsheet.min_header_cells == 3

    def test_header_patterns_are_case_insensitive(self):
        patterns = load_synonyms().spreadsheet.columns["quantity"]

        assert any(p.search("QTY") for p in patterns)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_synonyms(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("xml: [unclosed\n")

        with pytest.raises(ConfigurationError):
            load_synonyms(path)


class TestParseSynonyms:
    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            parse_synonyms(["BidItems"])

    @pytest.mark.parametrize("key", ["containers", "items", "fields"])
    def test_missing_xml_section(self, key):
        data = default_data()
        del data["xml"][key]

        with pytest.raises(ConfigurationError) as exc_info:
            parse_synonyms(data)

        assert key in str(exc_info.value)

    def test_missing_spreadsheet_columns(self):
        data = default_data()
        del data["spreadsheet"]["columns"]

        with pytest.raises(ConfigurationError):
            parse_synonyms(data)

    def test_invalid_header_pattern(self):
        data = default_data()
        data["spreadsheet"]["columns"]["quantity"] = ["^(qty$"]

        with pytest.raises(ConfigurationError) as exc_info:
            parse_synonyms(data)

        assert "quantity" in str(exc_info.value)

    def test_new_vocabulary_is_a_data_change(self):
        """A new exporter's tags only need adding to the tables."""
        xml = (
            "<Tender><Work><Ref>999.001</Ref><Text>Special Item</Text>"
            "<Amt>4</Amt></Work></Tender>"
        )
        assert BidxXmlParser().parse(xml.encode()).success is False

        data = default_data()
        data["xml"]["containers"].append("Tender")
        data["xml"]["items"].append("Work")
        data["xml"]["fields"]["item_number"].append("Ref")
        data["xml"]["fields"]["description"].append("Text")
        data["xml"]["fields"]["quantity"].append("Amt")

        result = BidxXmlParser(synonyms=parse_synonyms(data)).parse(xml.encode())

        assert result.success is True
        item = result.line_items[0]
        assert item.item_number == "999.001"
        assert item.description == "Special Item"
        assert item.quantity == 4
