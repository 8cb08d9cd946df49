# SAGE Terminology Database
# ==========================
"""
SQLite storage for versioned MedDRA and WHO Drug dictionaries.

Every level and relationship row carries version_id; codes are only
unique within a version. Level tables reference dictionary_versions(id)
without ON DELETE CASCADE, so a version can only be removed after its
relationship and level rows are gone.

Relationships between adjacent levels are either:
- an edge table (version_id, parent_code, child_code) for many-to-many
  links (SOC-HLGT, HLGT-HLT, HLT-PT, product-ingredient), or
- a column on the child row for single-parent links (LLT.pt_code,
  ATC.parent_code, product.atc_code).
"""

import os
import sqlite3
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, List, Tuple

from .models import DictionaryType, Level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelSpec:
    """Storage location of one hierarchy level."""
    level: Level
    table: str
    code_type: type
    # Extra filter for levels sharing a table (ATC)
    atc_level: Optional[int] = None

    def filter_sql(self, alias: str) -> str:
        if self.atc_level is None:
            return ""
        return f" AND {alias}.level = {self.atc_level}"


@dataclass(frozen=True)
class Link:
    """Parent/child relationship between two adjacent levels."""
    parent: Level
    child: Level
    edge_table: Optional[str] = None
    child_column: Optional[str] = None


LEVEL_SPECS: Dict[Level, LevelSpec] = {
    Level.SOC: LevelSpec(Level.SOC, "meddra_soc", int),
    Level.HLGT: LevelSpec(Level.HLGT, "meddra_hlgt", int),
    Level.HLT: LevelSpec(Level.HLT, "meddra_hlt", int),
    Level.PT: LevelSpec(Level.PT, "meddra_pt", int),
    Level.LLT: LevelSpec(Level.LLT, "meddra_llt", int),
    Level.ATC1: LevelSpec(Level.ATC1, "whodrug_atc", str, atc_level=1),
    Level.ATC2: LevelSpec(Level.ATC2, "whodrug_atc", str, atc_level=2),
    Level.ATC3: LevelSpec(Level.ATC3, "whodrug_atc", str, atc_level=3),
    Level.ATC4: LevelSpec(Level.ATC4, "whodrug_atc", str, atc_level=4),
    Level.ATC5: LevelSpec(Level.ATC5, "whodrug_atc", str, atc_level=5),
    Level.PRODUCT: LevelSpec(Level.PRODUCT, "whodrug_products", str),
    Level.INGREDIENT: LevelSpec(Level.INGREDIENT, "whodrug_ingredients", str),
}

# Keyed by parent level
LINKS: Dict[Level, Link] = {
    Level.SOC: Link(Level.SOC, Level.HLGT, edge_table="meddra_soc_hlgt"),
    Level.HLGT: Link(Level.HLGT, Level.HLT, edge_table="meddra_hlgt_hlt"),
    Level.HLT: Link(Level.HLT, Level.PT, edge_table="meddra_hlt_pt"),
    Level.PT: Link(Level.PT, Level.LLT, child_column="pt_code"),
    Level.ATC1: Link(Level.ATC1, Level.ATC2, child_column="parent_code"),
    Level.ATC2: Link(Level.ATC2, Level.ATC3, child_column="parent_code"),
    Level.ATC3: Link(Level.ATC3, Level.ATC4, child_column="parent_code"),
    Level.ATC4: Link(Level.ATC4, Level.ATC5, child_column="parent_code"),
    Level.ATC5: Link(Level.ATC5, Level.PRODUCT, child_column="atc_code"),
    Level.PRODUCT: Link(Level.PRODUCT, Level.INGREDIENT, edge_table="whodrug_product_ingredients"),
}

# Deletion order per dictionary: relationship tables, then level tables bottom-up
RELATIONSHIP_TABLES: Dict[DictionaryType, Tuple[str, ...]] = {
    DictionaryType.MEDDRA: ("meddra_soc_hlgt", "meddra_hlgt_hlt", "meddra_hlt_pt"),
    DictionaryType.WHODRUG: ("whodrug_product_ingredients",),
}

LEVEL_TABLES: Dict[DictionaryType, Tuple[str, ...]] = {
    DictionaryType.MEDDRA: ("meddra_llt", "meddra_pt", "meddra_hlt", "meddra_hlgt", "meddra_soc"),
    DictionaryType.WHODRUG: ("whodrug_products", "whodrug_ingredients", "whodrug_atc"),
}


SCHEMA = """
CREATE TABLE IF NOT EXISTS dictionary_versions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    dictionary_type TEXT NOT NULL,
    label TEXT NOT NULL,
    release_date TEXT,
    import_date TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'provisioning',
    leaf_count INTEGER NOT NULL DEFAULT 0,
    term_count INTEGER NOT NULL DEFAULT 0,
    imported_by TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_single_active
    ON dictionary_versions(dictionary_type) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS meddra_soc (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code INTEGER NOT NULL,
    name TEXT NOT NULL,
    abbrev TEXT,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS meddra_hlgt (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code INTEGER NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS meddra_hlt (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code INTEGER NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS meddra_pt (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code INTEGER NOT NULL,
    name TEXT NOT NULL,
    primary_soc_code INTEGER,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS meddra_llt (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code INTEGER NOT NULL,
    name TEXT NOT NULL,
    pt_code INTEGER NOT NULL,
    is_current INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS meddra_soc_hlgt (
    version_id INTEGER NOT NULL,
    parent_code INTEGER NOT NULL,
    child_code INTEGER NOT NULL,
    PRIMARY KEY (version_id, parent_code, child_code)
);

CREATE TABLE IF NOT EXISTS meddra_hlgt_hlt (
    version_id INTEGER NOT NULL,
    parent_code INTEGER NOT NULL,
    child_code INTEGER NOT NULL,
    PRIMARY KEY (version_id, parent_code, child_code)
);

CREATE TABLE IF NOT EXISTS meddra_hlt_pt (
    version_id INTEGER NOT NULL,
    parent_code INTEGER NOT NULL,
    child_code INTEGER NOT NULL,
    PRIMARY KEY (version_id, parent_code, child_code)
);

CREATE TABLE IF NOT EXISTS whodrug_atc (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    level INTEGER NOT NULL,
    parent_code TEXT,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS whodrug_ingredients (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS whodrug_products (
    version_id INTEGER NOT NULL REFERENCES dictionary_versions(id),
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    name_english TEXT,
    country_code TEXT,
    company TEXT,
    atc_code TEXT,
    formulation TEXT,
    marketing_status TEXT,
    PRIMARY KEY (version_id, code)
);

CREATE TABLE IF NOT EXISTS whodrug_product_ingredients (
    version_id INTEGER NOT NULL,
    parent_code TEXT NOT NULL,
    child_code TEXT NOT NULL,
    strength TEXT,
    PRIMARY KEY (version_id, parent_code, child_code)
);

CREATE INDEX IF NOT EXISTS idx_meddra_llt_pt ON meddra_llt(version_id, pt_code);
CREATE INDEX IF NOT EXISTS idx_meddra_soc_hlgt_child ON meddra_soc_hlgt(version_id, child_code);
CREATE INDEX IF NOT EXISTS idx_meddra_hlgt_hlt_child ON meddra_hlgt_hlt(version_id, child_code);
CREATE INDEX IF NOT EXISTS idx_meddra_hlt_pt_child ON meddra_hlt_pt(version_id, child_code);
CREATE INDEX IF NOT EXISTS idx_whodrug_atc_parent ON whodrug_atc(version_id, parent_code);
CREATE INDEX IF NOT EXISTS idx_whodrug_atc_level ON whodrug_atc(version_id, level);
CREATE INDEX IF NOT EXISTS idx_whodrug_products_atc ON whodrug_products(version_id, atc_code);
CREATE INDEX IF NOT EXISTS idx_whodrug_pi_child ON whodrug_product_ingredients(version_id, child_code);
"""


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


class TerminologyDB:
    """
    SQLite database holding every dictionary version.

    Each operation opens a short-lived connection; the context manager
    commits on success and rolls back on any error, so one `with` block
    is one transaction.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the database.

        Args:
            db_path: Path to SQLite database file. Defaults to
                $DATA_DIR/database/terminology.db
        """
        if db_path is None:
            data_dir = Path(os.getenv("DATA_DIR", "data"))
            db_path = data_dir / "database" / "terminology.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    @contextmanager
    def connection(self, immediate: bool = False):
        """
        Context manager for a transactional database connection.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE) so that
                state read inside the transaction cannot change before it commits
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        # SQLite LOWER() only folds ASCII
        conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        """Create tables and indexes if missing."""
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
        logger.debug(f"Terminology schema ready at {self.db_path}")

    def table_names(self) -> List[str]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        return [row["name"] for row in rows]
