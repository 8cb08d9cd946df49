"""
Tests for the distribution file parsers.

Covers MedDRA ASCII and WHO Drug formats, header detection, ATC level
derivation and skipped-line accounting.
"""

import sys
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from core.terminology import DictionaryType, UnsupportedFormatError
from core.terminology.parsers import (
    ParseStats,
    atc_level,
    atc_parent,
    distribution_files,
    file_encoding,
    looks_like_header,
    parse_atc,
    parse_file,
    parse_hlt_pt,
    parse_llt,
    parse_product_ingredients,
    parse_products,
    parse_pt,
    parse_soc,
)


def write(tmp_path, name, lines):
    path = tmp_path / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


class TestMedDRAParsers:
    """Tests for $-delimited MedDRA files."""

    def test_parse_soc(self, tmp_path):
        """SOC lines yield code, name and abbreviation."""
        path = write(tmp_path, "soc.asc", ["10007541$Cardiac disorders$Card$$"])
        records = list(parse_soc(path))

        assert len(records) == 1
        assert records[0].code == 10007541
        assert records[0].name == "Cardiac disorders"
        assert records[0].abbrev == "Card"

    def test_parse_pt_primary_soc(self, tmp_path):
        """PT primary SOC is read from the fourth column."""
        path = write(tmp_path, "pt.asc", ["10043071$Tachycardia$$10007541$$$$$$$$"])
        record = next(parse_pt(path))

        assert record.code == 10043071
        assert record.primary_soc_code == 10007541

    def test_parse_llt_currency(self, tmp_path):
        """LLT currency flag 'Y' is current; anything else is not."""
        path = write(tmp_path, "llt.asc", [
            "50$Fast heart rate$40$$$$$$$Y$$",
            "52$Heart racing$40$$$$$$$N$$",
        ])
        records = list(parse_llt(path))

        assert [r.code for r in records] == [50, 52]
        assert records[0].pt_code == 40
        assert records[0].is_current is True
        assert records[1].is_current is False

    def test_short_llt_line_is_skipped_and_counted(self, tmp_path):
        """LLT lines with fewer than 10 columns are dropped, not raised."""
        path = write(tmp_path, "llt.asc", [
            "50$Fast heart rate$40$$$$$$$Y$$",
            "51$Truncated$40$",
        ])
        stats = ParseStats("llt")
        records = list(parse_llt(path, stats))

        assert len(records) == 1
        assert stats.lines_read == 2
        assert stats.records == 1
        assert stats.lines_skipped == 1

    def test_non_numeric_code_is_skipped(self, tmp_path):
        """Lines whose code does not parse are counted as skipped."""
        path = write(tmp_path, "soc.asc", [
            "abc$Broken$Brk$",
            "10$Cardiac disorders$Card$",
        ])
        stats = ParseStats("soc")
        records = list(parse_soc(path, stats))

        assert [r.code for r in records] == [10]
        assert stats.lines_skipped == 1

    def test_blank_lines_are_ignored(self, tmp_path):
        """Blank lines are neither records nor skipped lines."""
        path = write(tmp_path, "hlt_pt.asc", ["30$40$", "", "   ", "30$42$"])
        stats = ParseStats("hlt_pt")
        records = list(parse_hlt_pt(path, stats))

        assert [(r.parent_code, r.child_code) for r in records] == [(30, 40), (30, 42)]
        assert stats.lines_read == 2
        assert stats.lines_skipped == 0

    def test_parser_is_one_shot(self, tmp_path):
        """A parser generator cannot be restarted."""
        path = write(tmp_path, "soc.asc", ["10$Cardiac disorders$Card$"])
        records = parse_soc(path)

        assert len(list(records)) == 1
        assert list(records) == []

    def test_latin1_file_is_decoded(self, tmp_path):
        """Files that are not valid UTF-8 are read as latin-1."""
        path = tmp_path / "llt.asc"
        path.write_bytes("10030095$Ödème périphérique$10030124$$$$$$$Y$\n".encode("latin-1"))

        record = next(parse_llt(str(path)))

        assert file_encoding(str(path)) == "latin-1"
        assert record.name == "Ödème périphérique"

    def test_utf8_file_with_bom(self, tmp_path):
        path = tmp_path / "soc.asc"
        path.write_bytes("10$Troubles cardiaques$Card$\n".encode("utf-8-sig"))

        record = next(parse_soc(str(path)))

        assert file_encoding(str(path)) == "utf-8-sig"
        assert record.code == 10
        assert record.name == "Troubles cardiaques"


class TestWHODrugParsers:
    """Tests for |-delimited WHO Drug files."""

    def test_header_row_is_detected(self, tmp_path):
        """A leading header row is not parsed as data."""
        path = write(tmp_path, "atc.txt", ["atc_code|atc_name", "N|NERVOUS SYSTEM"])
        stats = ParseStats("atc")
        records = list(parse_atc(path, stats))

        assert [r.code for r in records] == ["N"]
        assert stats.lines_skipped == 0

    def test_file_without_header(self, tmp_path):
        """Files without a header keep their first line."""
        path = write(tmp_path, "atc.txt", ["N|NERVOUS SYSTEM", "N02|ANALGESICS"])
        records = list(parse_atc(path))

        assert [r.code for r in records] == ["N", "N02"]

    def test_looks_like_header(self):
        assert looks_like_header(["drug_code", "drug_name"])
        assert looks_like_header(["Code", "Name"])
        assert not looks_like_header(["N02BE01", "paracetamol"])

    def test_atc_level_and_parent(self, tmp_path):
        """ATC level and parent come from code length."""
        path = write(tmp_path, "atc.txt", [
            "N|NERVOUS SYSTEM",
            "N02|ANALGESICS",
            "N02B|OTHER ANALGESICS AND ANTIPYRETICS",
            "N02BE|Anilides",
            "N02BE01|paracetamol",
        ])
        records = list(parse_atc(path))

        assert [(r.code, r.level, r.parent_code) for r in records] == [
            ("N", 1, None),
            ("N02", 2, "N"),
            ("N02B", 3, "N02"),
            ("N02BE", 4, "N02B"),
            ("N02BE01", 5, "N02BE"),
        ]

    def test_invalid_atc_length_is_skipped(self, tmp_path):
        path = write(tmp_path, "atc.txt", ["N0|Bad length", "N|NERVOUS SYSTEM"])
        stats = ParseStats("atc")
        records = list(parse_atc(path, stats))

        assert [r.code for r in records] == ["N"]
        assert stats.lines_skipped == 1

    def test_atc_helpers(self):
        assert atc_level("A") == 1
        assert atc_level("A01AA01") == 5
        assert atc_level("A0") == 0
        assert atc_parent("A01AA01") == "A01AA"
        assert atc_parent("A") is None

    def test_parse_products(self, tmp_path):
        """Product rows carry their optional columns."""
        path = write(tmp_path, "products.txt", [
            "000001|Tylenol|Tylenol|US|Johnson & Johnson|N02BE01|Tablet|Marketed",
            "000009|Generic",
        ])
        records = list(parse_products(path))

        assert records[0].code == "000001"
        assert records[0].country_code == "US"
        assert records[0].atc_code == "N02BE01"
        assert records[0].marketing_status == "Marketed"
        assert records[1].atc_code is None

    def test_parse_product_ingredients(self, tmp_path):
        path = write(tmp_path, "pi.txt", ["drug_code|ingredient_id|strength", "000001|I001|500 mg"])
        record = next(parse_product_ingredients(path))

        assert record.parent_code == "000001"
        assert record.child_code == "I001"
        assert record.strength == "500 mg"


class TestDistributionLayout:
    """Tests for file key lookup."""

    def test_meddra_load_order(self):
        """Level files come before relationship files."""
        keys = [f.key for f in distribution_files(DictionaryType.MEDDRA)]
        assert keys == ["soc", "hlgt", "hlt", "pt", "llt", "soc_hlgt", "hlgt_hlt", "hlt_pt"]

    def test_product_ingredients_optional(self):
        formats = {f.key: f for f in distribution_files(DictionaryType.WHODRUG)}
        assert formats["product_ingredients"].required is False
        assert formats["products"].required is True

    def test_unknown_file_key(self, tmp_path):
        with pytest.raises(UnsupportedFormatError):
            parse_file(DictionaryType.MEDDRA, "smq_list", str(tmp_path / "x.asc"))

    def test_parse_file_fills_stats_key(self, tmp_path):
        path = write(tmp_path, "soc.asc", ["10$Cardiac disorders$Card$"])
        stats = ParseStats()
        list(parse_file(DictionaryType.MEDDRA, "soc", path, stats))

        assert stats.file_key == "soc"
        assert stats.records == 1
