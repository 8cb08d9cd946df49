# SAGE Terminology Search
# ========================
"""
Ranked term search.

Matching is a case-insensitive substring test on the leaf term name and
its immediate parent's name. Ranking is tiered, not fuzzy:

1. EXACT           leaf name equals the query
2. STARTS_WITH     leaf name starts with the query
3. CONTAINS        leaf name contains the query
4. PARENT_CONTAINS only the parent name contains the query

Ties break on leaf name, then code, so repeated searches return the same
ordering. MedDRA searches LLTs (parent PT, top = primary SOC); WHO Drug
searches products (parent = ATC entry, top = ATC level 1).

A WHO Drug product has two leaf names, the trade name and the English
name. Both count as leaf names and the product takes the better of the
two tiers, so "paracetamol tab" finds a product whose English name is
"Paracetamol tablets" at STARTS_WITH even when its trade name differs.

Case folding goes through the connection's unicode_lower() function
because SQLite's own LOWER() only folds ASCII letters.
"""

import logging
from typing import Optional, List, Sequence

from .config import DEFAULT_MIN_QUERY_LENGTH, DEFAULT_SEARCH_LIMIT
from .models import DictionaryType, HierarchyNode, Level, MatchTier, SearchResult
from .store import HierarchyStore, escape_like

logger = logging.getLogger(__name__)


_EQUALS = "= ?"
_LIKE = "LIKE ? ESCAPE '\\'"


def _any_column(columns: Sequence[str], test: str) -> str:
    return " OR ".join(f"unicode_lower({column}) {test}" for column in columns)


def tier_sql(columns: Sequence[str]) -> str:
    """CASE expression ranking the best match across the leaf name columns."""
    return f"""
    CASE
        WHEN {_any_column(columns, _EQUALS)} THEN 1
        WHEN {_any_column(columns, _LIKE)} THEN 2
        WHEN {_any_column(columns, _LIKE)} THEN 3
        ELSE 4
    END AS tier
"""


MEDDRA_LEAF_COLUMNS = ("l.name",)
WHODRUG_LEAF_COLUMNS = ("p.name", "p.name_english")

MEDDRA_SEARCH_SQL = """
    SELECT
        l.code, l.name, l.is_current,
        p.code AS parent_code, p.name AS parent_name,
        s.code AS top_code, s.name AS top_name,
        {tier}
    FROM meddra_llt l
    JOIN meddra_pt p
      ON p.version_id = l.version_id AND p.code = l.pt_code
    LEFT JOIN meddra_soc s
      ON s.version_id = p.version_id AND s.code = p.primary_soc_code
    WHERE l.version_id = ?
      AND ({match} OR unicode_lower(p.name) LIKE ? ESCAPE '\\')
      {filters}
    ORDER BY tier, l.name, l.code
    LIMIT ?
"""

WHODRUG_SEARCH_SQL = """
    SELECT
        p.code, p.name, 1 AS is_current,
        COALESCE(a.code, p.atc_code) AS parent_code, a.name AS parent_name,
        t.code AS top_code, t.name AS top_name,
        {tier}
    FROM whodrug_products p
    LEFT JOIN whodrug_atc a
      ON a.version_id = p.version_id AND a.code = p.atc_code
    LEFT JOIN whodrug_atc t
      ON t.version_id = p.version_id AND t.code = SUBSTR(p.atc_code, 1, 1) AND t.level = 1
    WHERE p.version_id = ?
      AND ({match} OR unicode_lower(a.name) LIKE ? ESCAPE '\\')
      {filters}
    ORDER BY tier, p.name, p.code
    LIMIT ?
"""


class SearchEngine:
    """Tiered substring search over one dictionary."""

    def __init__(
        self,
        store: HierarchyStore,
        min_query_length: int = DEFAULT_MIN_QUERY_LENGTH,
        default_limit: int = DEFAULT_SEARCH_LIMIT
    ):
        self.store = store
        self.min_query_length = min_query_length
        self.default_limit = default_limit

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        include_non_current: bool = False,
        version_id: Optional[int] = None,
        country_code: Optional[str] = None
    ) -> List[SearchResult]:
        """
        Search leaf terms.

        Args:
            query: Search text; shorter than min_query_length returns []
            limit: Maximum results (default from configuration)
            include_non_current: Include deprecated LLTs
            version_id: Version to search; defaults to the active version
            country_code: WHO Drug only, restrict products to a country

        Returns:
            List of SearchResult, best tier first
        """
        query = (query or "").strip()
        if len(query) < self.min_query_length:
            return []
        limit = self.default_limit if limit is None else limit
        if limit <= 0:
            return []

        target_version = self.store.resolve_version_id(version_id)
        if target_version is None:
            logger.debug(f"No active {self.store.dictionary_type.value} version; search returns nothing")
            return []

        lowered = query.lower()
        escaped = escape_like(lowered)
        starts_with = f"{escaped}%"
        contains = f"%{escaped}%"

        filters = ""
        extra_params: list = []
        if self.store.dictionary_type == DictionaryType.MEDDRA:
            template = MEDDRA_SEARCH_SQL
            columns = MEDDRA_LEAF_COLUMNS
            leaf_level = Level.LLT
            if not include_non_current:
                filters = "AND l.is_current = 1"
        else:
            template = WHODRUG_SEARCH_SQL
            columns = WHODRUG_LEAF_COLUMNS
            leaf_level = Level.PRODUCT
            if country_code:
                filters = "AND p.country_code = ?"
                extra_params.append(country_code.strip())

        sql = template.format(
            tier=tier_sql(columns),
            match=_any_column(columns, _LIKE),
            filters=filters,
        )
        width = len(columns)
        params = [lowered] * width + [starts_with] * width + [contains] * width
        params.append(target_version)
        params.extend([contains] * width)
        params.append(contains)
        params.extend(extra_params)
        params.append(limit)

        with self.store.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            SearchResult(
                code=row["code"],
                name=row["name"],
                level=leaf_level,
                tier=MatchTier(row["tier"]),
                is_current=bool(row["is_current"]),
                parent_code=row["parent_code"],
                parent_name=row["parent_name"],
                top_code=row["top_code"],
                top_name=row["top_name"],
            )
            for row in rows
        ]

    def search_ingredients(
        self,
        query: str,
        limit: Optional[int] = None,
        version_id: Optional[int] = None
    ) -> List[HierarchyNode]:
        """WHO Drug ingredient lookup by name substring, name ascending."""
        query = (query or "").strip()
        if len(query) < self.min_query_length:
            return []
        if self.store.dictionary_type != DictionaryType.WHODRUG:
            return []
        target_version = self.store.resolve_version_id(version_id)
        if target_version is None:
            return []

        pattern = f"%{escape_like(query.lower())}%"
        with self.store.db.connection() as conn:
            rows = conn.execute("""
                SELECT i.* FROM whodrug_ingredients i
                WHERE i.version_id = ? AND unicode_lower(i.name) LIKE ? ESCAPE '\\'
                ORDER BY i.name, i.code
                LIMIT ?
            """, (target_version, pattern, limit or self.default_limit)).fetchall()

        return [self.store.row_to_node(Level.INGREDIENT, r) for r in rows]
