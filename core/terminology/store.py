# SAGE Terminology Hierarchy Store
# =================================
"""
Version-scoped read primitives over the level and relationship tables.

Every query is qualified by a ScopedCode (version_id, code); joins
between tables always match version_id on both sides. Reads that omit
the version use the active version of the dictionary and return an
empty result when nothing is active.
"""

import logging
import sqlite3
from typing import Optional, List, Dict, Any, Tuple

from .database import TerminologyDB, LevelSpec, Link, LEVEL_SPECS, LINKS
from .errors import UnsupportedFormatError
from .models import (
    Code,
    DictionaryType,
    HierarchyNode,
    Level,
    ScopedCode,
    ATC_LEVELS,
    levels_for,
    top_level,
)

logger = logging.getLogger(__name__)

# Columns mapped onto HierarchyNode fields rather than attributes
_CORE_COLUMNS = {"version_id", "code", "name", "level", "is_current", "primary_soc_code"}
_PARENT_COLUMNS = ("pt_code", "parent_code", "atc_code")

# ATC levels whose children are further ATC entries; products can hang off these too
_ATC_PARENT_LEVELS = (Level.ATC1, Level.ATC2, Level.ATC3, Level.ATC4)


class HierarchyStore:
    """Read access to one dictionary's hierarchy."""

    def __init__(self, db: TerminologyDB, dictionary_type: DictionaryType):
        self.db = db
        self.dictionary_type = DictionaryType(dictionary_type)
        self._levels = levels_for(self.dictionary_type)

    # ==================== VERSION SCOPING ====================

    def active_version_id(self) -> Optional[int]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT id FROM dictionary_versions WHERE dictionary_type = ? AND is_active = 1",
                (self.dictionary_type.value,)
            ).fetchone()
        return row["id"] if row else None

    def resolve_version_id(self, version_id: Optional[int] = None) -> Optional[int]:
        """Explicit version if given, else the active one (None if none is active)."""
        if version_id is not None:
            return version_id
        return self.active_version_id()

    # ==================== LEVEL HELPERS ====================

    def level_spec(self, level: Level) -> LevelSpec:
        try:
            level = Level(level)
        except ValueError:
            raise UnsupportedFormatError(f"Unknown hierarchy level: {level}")
        if level not in self._levels:
            raise UnsupportedFormatError(
                f"Level {level.value} is not part of {self.dictionary_type.value}"
            )
        return LEVEL_SPECS[level]

    def link_below(self, level: Level) -> Optional[Link]:
        return LINKS.get(self.level_spec(level).level)

    def link_above(self, level: Level) -> Optional[Link]:
        level = self.level_spec(level).level
        for link in LINKS.values():
            if link.child == level:
                return link
        return None

    def coerce_code(self, level: Level, code: Any) -> Optional[Code]:
        """Convert a caller-supplied code to the level's storage type."""
        spec = self.level_spec(level)
        if code is None:
            return None
        if spec.code_type is int:
            try:
                return int(str(code).strip())
            except ValueError:
                return None
        code = str(code).strip()
        return code or None

    def scoped(self, level: Level, code: Any, version_id: int) -> Optional[ScopedCode]:
        code = self.coerce_code(level, code)
        if code is None:
            return None
        return ScopedCode(version_id, code)

    def row_to_node(self, level: Level, row: sqlite3.Row) -> HierarchyNode:
        keys = row.keys()
        parent_code = None
        for column in _PARENT_COLUMNS:
            if column in keys:
                parent_code = row[column]
                break

        attributes = {
            k: row[k] for k in keys
            if k not in _CORE_COLUMNS and k not in _PARENT_COLUMNS and row[k] is not None
        }
        if "atc_code" in keys and row["atc_code"] is not None:
            attributes["atc_code"] = row["atc_code"]

        return HierarchyNode(
            level=Level(level),
            code=row["code"],
            name=row["name"],
            version_id=row["version_id"],
            is_current=bool(row["is_current"]) if "is_current" in keys else True,
            primary_parent_code=row["primary_soc_code"] if "primary_soc_code" in keys else None,
            parent_code=parent_code,
            attributes=attributes,
        )

    # ==================== PRIMITIVES ====================

    def by_code(self, level: Level, code: Any, version_id: Optional[int] = None) -> Optional[HierarchyNode]:
        """
        Look up one term.

        Args:
            level: Hierarchy level of the code
            code: Vendor code (coerced to the level's type)
            version_id: Version to read; defaults to the active version

        Returns:
            HierarchyNode, or None when absent or no version is active
        """
        spec = self.level_spec(level)
        version_id = self.resolve_version_id(version_id)
        if version_id is None:
            return None
        key = self.scoped(level, code, version_id)
        if key is None:
            return None

        with self.db.connection() as conn:
            row = conn.execute(f"""
                SELECT t.* FROM {spec.table} t
                WHERE t.version_id = ? AND t.code = ?{spec.filter_sql('t')}
            """, (key.version_id, key.code)).fetchone()

        return self.row_to_node(spec.level, row) if row else None

    def top_level_nodes(self, version_id: Optional[int] = None) -> List[HierarchyNode]:
        """All nodes of the top level, name ascending."""
        version_id = self.resolve_version_id(version_id)
        if version_id is None:
            return []
        spec = self.level_spec(top_level(self.dictionary_type))

        with self.db.connection() as conn:
            rows = conn.execute(f"""
                SELECT t.* FROM {spec.table} t
                WHERE t.version_id = ?{spec.filter_sql('t')}
                ORDER BY t.name, t.code
            """, (version_id,)).fetchall()

        return [self.row_to_node(spec.level, r) for r in rows]

    def children_of(
        self,
        parent_code: Any,
        parent_level: Level,
        version_id: Optional[int] = None
    ) -> List[HierarchyNode]:
        """
        Immediate children of a node, name ascending.

        Under ATC levels 1-4 the child ATC entries come first, followed by
        any products classified directly at that code. Returns an empty list for bottom-level parents, unknown codes,
        or when no version is active. A parent_level of None selects the
        top level.
        """
        if parent_level is None:
            return self.top_level_nodes(version_id)
        link = self.link_below(parent_level)
        version_id = self.resolve_version_id(version_id)
        if link is None or version_id is None:
            return []
        key = self.scoped(parent_level, parent_code, version_id)
        if key is None:
            return []
        child = self.level_spec(link.child)

        if link.edge_table:
            query = f"""
                SELECT DISTINCT c.* FROM {child.table} c
                JOIN {link.edge_table} e
                  ON e.version_id = c.version_id AND e.child_code = c.code
                WHERE e.version_id = ? AND e.parent_code = ?{child.filter_sql('c')}
                ORDER BY c.name, c.code
            """
        else:
            query = f"""
                SELECT c.* FROM {child.table} c
                WHERE c.version_id = ? AND c.{link.child_column} = ?{child.filter_sql('c')}
                ORDER BY c.name, c.code
            """

        with self.db.connection() as conn:
            rows = conn.execute(query, (key.version_id, key.code)).fetchall()

        nodes = [self.row_to_node(child.level, r) for r in rows]
        if link.parent in _ATC_PARENT_LEVELS:
            # Products may be classified at ATC 2-4 as well as ATC 5
            nodes.extend(self._products_classified_at(key))
        return nodes

    def parents_of(self, level: Level, code: Any, version_id: int) -> List[HierarchyNode]:
        """Immediate parents of a node within one version, name ascending."""
        if self.level_spec(level).level == Level.PRODUCT:
            key = self.scoped(level, code, version_id)
            return self._product_classification(key) if key else []
        link = self.link_above(level)
        if link is None:
            return []
        key = self.scoped(level, code, version_id)
        if key is None:
            return []
        child = self.level_spec(level)
        parent = self.level_spec(link.parent)

        if link.edge_table:
            query = f"""
                SELECT DISTINCT p.* FROM {parent.table} p
                JOIN {link.edge_table} e
                  ON e.version_id = p.version_id AND e.parent_code = p.code
                WHERE e.version_id = ? AND e.child_code = ?{parent.filter_sql('p')}
                ORDER BY p.name, p.code
            """
        else:
            query = f"""
                SELECT p.* FROM {parent.table} p
                JOIN {child.table} c
                  ON c.version_id = p.version_id AND c.{link.child_column} = p.code
                WHERE c.version_id = ? AND c.code = ?{child.filter_sql('c')}{parent.filter_sql('p')}
                ORDER BY p.name, p.code
            """

        with self.db.connection() as conn:
            rows = conn.execute(query, (key.version_id, key.code)).fetchall()

        return [self.row_to_node(parent.level, r) for r in rows]

    # ==================== WHO DRUG CLASSIFICATION ====================

    def _products_classified_at(self, key: ScopedCode) -> List[HierarchyNode]:
        """Products whose atc_code is exactly this ATC code, name ascending."""
        with self.db.connection() as conn:
            rows = conn.execute("""
                SELECT p.* FROM whodrug_products p
                WHERE p.version_id = ? AND p.atc_code = ?
                ORDER BY p.name, p.code
            """, (key.version_id, key.code)).fetchall()
        return [self.row_to_node(Level.PRODUCT, r) for r in rows]

    def _product_classification(self, key: ScopedCode) -> List[HierarchyNode]:
        """
        The ATC entry a product is classified under, at whatever level
        its atc_code sits.
        """
        with self.db.connection() as conn:
            row = conn.execute("""
                SELECT a.* FROM whodrug_atc a
                JOIN whodrug_products p
                  ON p.version_id = a.version_id AND p.atc_code = a.code
                WHERE p.version_id = ? AND p.code = ?
            """, (key.version_id, key.code)).fetchone()
        if row is None or row["level"] not in ATC_LEVELS:
            return []
        return [self.row_to_node(ATC_LEVELS[row["level"]], row)]

    # ==================== STATISTICS / DRUG DETAIL ====================

    def level_counts(self, version_id: int) -> Dict[str, int]:
        """Row count per level for one version."""
        counts = {}
        with self.db.connection() as conn:
            for level in self._levels:
                spec = LEVEL_SPECS[level]
                counts[level.value] = conn.execute(f"""
                    SELECT COUNT(*) FROM {spec.table} t
                    WHERE t.version_id = ?{spec.filter_sql('t')}
                """, (version_id,)).fetchone()[0]
        return counts

    def ingredients_of(self, drug_code: str, version_id: int) -> List[Tuple[HierarchyNode, Optional[str]]]:
        """Ingredients of a WHO Drug product with their strength."""
        with self.db.connection() as conn:
            rows = conn.execute("""
                SELECT i.*, pi.strength AS strength
                FROM whodrug_product_ingredients pi
                JOIN whodrug_ingredients i
                  ON i.version_id = pi.version_id AND i.code = pi.child_code
                WHERE pi.version_id = ? AND pi.parent_code = ?
                ORDER BY i.name, i.code
            """, (version_id, str(drug_code).strip())).fetchall()
        return [(self.row_to_node(Level.INGREDIENT, r), r["strength"]) for r in rows]


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
