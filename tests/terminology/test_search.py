"""
Tests for tiered term search.
"""

import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from core.terminology import DictionaryType, Level, MatchTier, SearchEngine
from core.terminology.store import escape_like


class TestSearchBoundaries:
    """Tests for inputs that never reach storage."""

    def test_short_query_skips_storage(self):
        """A one-character query returns [] without touching the store."""
        store = MagicMock()
        store.dictionary_type = DictionaryType.MEDDRA
        engine = SearchEngine(store)

        assert engine.search("a") == []
        assert engine.search("  b  ") == []
        assert engine.search("") == []
        store.resolve_version_id.assert_not_called()
        store.db.connection.assert_not_called()

    def test_min_query_length_is_configurable(self):
        store = MagicMock()
        engine = SearchEngine(store, min_query_length=4)

        assert engine.search("abc") == []
        store.db.connection.assert_not_called()

    def test_no_active_version(self, meddra_service):
        assert meddra_service.search("tachy") == []

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestMedDRASearch:
    """Tests for LLT search with PT and primary SOC denormalised."""

    def test_tachycardia_scenario(self, meddra_service, scenario_files):
        """A parent-only match carries PT and SOC names and ranks below leaf matches."""
        version = meddra_service.import_dictionary("1.0", scenario_files)
        meddra_service.activate_version(version.id)

        results = meddra_service.search("tachy")

        assert len(results) == 1
        hit = results[0]
        assert hit.code == 50
        assert hit.name == "Fast heart rate"
        assert hit.parent_name == "Tachycardia"
        assert hit.top_name == "Cardiac disorders"
        assert hit.tier not in (MatchTier.EXACT, MatchTier.STARTS_WITH)
        assert hit.tier == MatchTier.PARENT_CONTAINS
        assert hit.match_score == 70

    def test_tier_ordering(self, loaded_meddra):
        """Leaf prefix matches rank above parent-only matches."""
        results = loaded_meddra.search("tachy")

        assert [(r.code, r.tier) for r in results] == [
            (51, MatchTier.STARTS_WITH),
            (50, MatchTier.PARENT_CONTAINS),
        ]

    def test_exact_match_first(self, loaded_meddra):
        results = loaded_meddra.search("HYPERTENSION")

        assert results[0].code == 53
        assert results[0].tier == MatchTier.EXACT
        assert results[0].match_score == 100
        assert results[1].code == 54
        assert results[1].tier == MatchTier.PARENT_CONTAINS

    def test_contains_tier(self, loaded_meddra):
        results = loaded_meddra.search("pressure")

        assert [(r.code, r.tier) for r in results] == [(54, MatchTier.CONTAINS)]
        assert results[0].top_code == 11
        assert results[0].top_name == "Vascular disorders"

    def test_non_current_excluded_by_default(self, loaded_meddra):
        codes = [r.code for r in loaded_meddra.search("racing")]
        assert codes == []

        results = loaded_meddra.search("racing", include_non_current=True)
        assert [r.code for r in results] == [52]
        assert results[0].is_current is False

    def test_ties_break_on_name(self, loaded_meddra):
        """Parent-only matches of the same tier are ordered by leaf name."""
        results = loaded_meddra.search("tachycardia", include_non_current=True)

        assert [r.code for r in results] == [51, 50, 52]
        assert results[0].tier == MatchTier.EXACT

    def test_limit(self, loaded_meddra):
        assert len(loaded_meddra.search("tachy", limit=1)) == 1
        assert loaded_meddra.search("tachy", limit=0) == []

    def test_wildcards_match_literally(self, loaded_meddra):
        assert loaded_meddra.search("%%") == []
        assert loaded_meddra.search("__") == []

    def test_search_is_idempotent(self, loaded_meddra):
        """Repeated searches return identical ordering and membership."""
        first = loaded_meddra.search("ta", include_non_current=True)
        second = loaded_meddra.search("ta", include_non_current=True)

        assert first
        assert first == second

    def test_results_carry_leaf_level(self, loaded_meddra):
        assert all(r.level == Level.LLT for r in loaded_meddra.search("heart"))

    def test_explicit_version(self, meddra_service, meddra_files, scenario_files):
        """Searching an inactive version by id does not touch the active one."""
        old = meddra_service.import_dictionary("26.1", scenario_files)
        new = meddra_service.import_dictionary("27.0", meddra_files)
        meddra_service.activate_version(new.id)

        assert [r.code for r in meddra_service.search("tachy", version_id=old.id)] == [50]
        assert [r.code for r in meddra_service.search("tachy")] == [51, 50]


class TestWHODrugSearch:
    """Tests for product search with ATC denormalised."""

    def test_product_search(self, loaded_whodrug):
        results = loaded_whodrug.search("panadol")

        assert len(results) == 1
        hit = results[0]
        assert hit.code == "000002"
        assert hit.tier == MatchTier.STARTS_WITH
        assert hit.parent_code == "N02BE01"
        assert hit.parent_name == "paracetamol"
        assert hit.top_code == "N"
        assert hit.top_name == "NERVOUS SYSTEM"
        assert hit.level == Level.PRODUCT

    def test_atc_name_match(self, loaded_whodrug):
        """Products under a matching ATC entry rank in the parent tier."""
        results = loaded_whodrug.search("paracetamol")

        assert [r.name for r in results] == ["Panadol Extra", "Tylenol"]
        assert all(r.tier == MatchTier.PARENT_CONTAINS for r in results)

    def test_country_filter(self, loaded_whodrug):
        results = loaded_whodrug.search("paracetamol", country_code="US")
        assert [r.name for r in results] == ["Tylenol"]

    def test_search_ingredients(self, loaded_whodrug):
        nodes = loaded_whodrug.search_ingredients("ca")

        assert [n.name for n in nodes] == ["Caffeine"]
        assert nodes[0].level == Level.INGREDIENT

    def test_search_ingredients_short_query(self, loaded_whodrug):
        assert loaded_whodrug.search_ingredients("c") == []


class TestWHODrugNames:
    """Trade and English product names both rank as leaf names."""

    def test_english_name_match(self, extended_whodrug):
        results = extended_whodrug.search("paracetamol tab")

        assert [r.code for r in results] == ["000005"]
        assert results[0].name == "Doliprane"
        assert results[0].tier == MatchTier.STARTS_WITH

    def test_english_name_outranks_parent_match(self, extended_whodrug):
        results = extended_whodrug.search("paracetamol")

        assert [r.name for r in results] == ["Doliprane", "Panadol Extra", "Tylenol"]
        assert [r.tier for r in results] == [
            MatchTier.STARTS_WITH,
            MatchTier.PARENT_CONTAINS,
            MatchTier.PARENT_CONTAINS,
        ]

    def test_exact_english_name(self, extended_whodrug):
        results = extended_whodrug.search("Paracetamol Tablets")
        assert results[0].tier == MatchTier.EXACT

    def test_non_ascii_case_folding(self, extended_whodrug):
        """Upper-case umlauts fold the same way as ASCII letters."""
        results = extended_whodrug.search("ärztemuster")

        assert [r.code for r in results] == ["000006"]
        assert results[0].tier == MatchTier.STARTS_WITH
