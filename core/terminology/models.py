# SAGE Terminology Models
# ========================
"""
Shared types for the terminology engine.

MedDRA Hierarchy (top to bottom):
- SOC (System Organ Class)
- HLGT (High Level Group Term)
- HLT (High Level Term)
- PT (Preferred Term) - carries the primary SOC
- LLT (Lowest Level Term) - single parent PT, may be non-current

WHO Drug Hierarchy (top to bottom):
- ATC levels 1-5
- Product (trade name, attached to an ATC code)
- Ingredient (linked to products)

Pydantic models are used for records handed to collaborators
(versions, progress snapshots, codings); dataclasses for rows read
from the store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Union, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

Code = Union[int, str]


class DictionaryType(str, Enum):
    """Supported terminology distributions."""
    MEDDRA = "meddra"
    WHODRUG = "whodrug"


class Level(str, Enum):
    """Hierarchy levels across both dictionaries."""
    # MedDRA
    SOC = "soc"
    HLGT = "hlgt"
    HLT = "hlt"
    PT = "pt"
    LLT = "llt"

    # WHO Drug
    ATC1 = "atc1"
    ATC2 = "atc2"
    ATC3 = "atc3"
    ATC4 = "atc4"
    ATC5 = "atc5"
    PRODUCT = "product"
    INGREDIENT = "ingredient"


# Ordered top to bottom
LEVEL_ORDER: Dict[DictionaryType, Tuple[Level, ...]] = {
    DictionaryType.MEDDRA: (Level.SOC, Level.HLGT, Level.HLT, Level.PT, Level.LLT),
    DictionaryType.WHODRUG: (
        Level.ATC1, Level.ATC2, Level.ATC3, Level.ATC4, Level.ATC5,
        Level.PRODUCT, Level.INGREDIENT,
    ),
}

ATC_LEVELS = {1: Level.ATC1, 2: Level.ATC2, 3: Level.ATC3, 4: Level.ATC4, 5: Level.ATC5}

LEVEL_LABELS = {
    Level.SOC: "System Organ Class (SOC)",
    Level.HLGT: "High Level Group Term (HLGT)",
    Level.HLT: "High Level Term (HLT)",
    Level.PT: "Preferred Term (PT)",
    Level.LLT: "Lowest Level Term (LLT)",
    Level.ATC1: "Anatomical Main Group",
    Level.ATC2: "Therapeutic Subgroup",
    Level.ATC3: "Pharmacological Subgroup",
    Level.ATC4: "Chemical Subgroup",
    Level.ATC5: "Chemical Substance",
    Level.PRODUCT: "Drug Product",
    Level.INGREDIENT: "Active Ingredient",
}


def levels_for(dictionary_type: DictionaryType) -> Tuple[Level, ...]:
    """Levels of a dictionary, top to bottom."""
    return LEVEL_ORDER[DictionaryType(dictionary_type)]


def top_level(dictionary_type: DictionaryType) -> Level:
    return levels_for(dictionary_type)[0]


def child_level(dictionary_type: DictionaryType, level: Level) -> Optional[Level]:
    """Next level down, or None for the bottom level."""
    order = levels_for(dictionary_type)
    index = order.index(Level(level))
    return order[index + 1] if index + 1 < len(order) else None


def parent_level(dictionary_type: DictionaryType, level: Level) -> Optional[Level]:
    order = levels_for(dictionary_type)
    index = order.index(Level(level))
    return order[index - 1] if index > 0 else None


class VersionStatus(str, Enum):
    """Load state of a dictionary version."""
    PROVISIONING = "provisioning"
    LOADED = "loaded"
    FAILED = "failed"


class ImportStatus(str, Enum):
    """Import pipeline state reported through the progress snapshot."""
    PENDING = "pending"
    PARSING = "parsing"
    IMPORTING = "importing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class MatchTier(int, Enum):
    """Search ranking tiers, best first."""
    EXACT = 1
    STARTS_WITH = 2
    CONTAINS = 3
    PARENT_CONTAINS = 4

    @property
    def score(self) -> int:
        return {1: 100, 2: 90, 3: 80, 4: 70}[self.value]


class ScopedCode(NamedTuple):
    """A vendor code qualified by the dictionary version it belongs to."""
    version_id: int
    code: Code


@dataclass
class HierarchyNode:
    """A single term at one hierarchy level of one version."""
    level: Level
    code: Code
    name: str
    version_id: int
    is_current: bool = True
    primary_parent_code: Optional[Code] = None
    parent_code: Optional[Code] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> ScopedCode:
        return ScopedCode(self.version_id, self.code)


@dataclass
class HierarchyPath:
    """One route from the top level down to a resolved term."""
    nodes: List[HierarchyNode]
    is_primary_path: bool = False

    @property
    def top(self) -> HierarchyNode:
        return self.nodes[0]

    @property
    def leaf(self) -> HierarchyNode:
        return self.nodes[-1]

    def node_at(self, level: Level) -> Optional[HierarchyNode]:
        for node in self.nodes:
            if node.level == level:
                return node
        return None


@dataclass
class SearchResult:
    """Ranked search hit with its parent and top-level terms denormalised."""
    code: Code
    name: str
    level: Level
    tier: MatchTier
    is_current: bool = True
    parent_code: Optional[Code] = None
    parent_name: Optional[str] = None
    top_code: Optional[Code] = None
    top_name: Optional[str] = None

    @property
    def match_score(self) -> int:
        return self.tier.score


@dataclass
class TreeNode:
    """Node returned by the hierarchy browser."""
    key: str
    title: str
    code: Code
    level: Level
    is_leaf: bool
    is_current: Optional[bool] = None


class DictionaryVersion(BaseModel):
    """A loaded (or loading) dictionary release."""
    id: int
    dictionary_type: DictionaryType
    label: str
    release_date: Optional[str] = None
    import_date: datetime
    is_active: bool = False
    status: VersionStatus = VersionStatus.PROVISIONING
    leaf_count: int = 0
    term_count: int = 0
    imported_by: Optional[str] = None


class ImportProgress(BaseModel):
    """Polled snapshot of the running (or last) import."""
    dictionary_type: DictionaryType
    status: ImportStatus = ImportStatus.PENDING
    version_id: Optional[int] = None
    current_file: Optional[str] = None
    files_processed: int = 0
    total_files: int = 0
    records_imported: int = 0
    lines_skipped: int = 0
    error: Optional[str] = None


class CodedLevel(BaseModel):
    """One (level, code, name) link of a coding path."""
    model_config = ConfigDict(frozen=True)

    level: Level
    code: Code
    name: str


class Coding(BaseModel):
    """
    Immutable result of mapping a verbatim term onto a dictionary path.

    A re-coding produces a new Coding; instances cannot be modified.
    """
    model_config = ConfigDict(frozen=True)

    verbatim_text: str
    dictionary_type: DictionaryType
    version_id: int
    version_label: str
    path: Tuple[CodedLevel, ...]
    is_primary_path: bool
    alternative_path_count: int = 0
    ingredients: Tuple[str, ...] = ()
    coded_by: Optional[str] = None
    coded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def code(self) -> Code:
        """Code of the term that was coded (bottom of the path)."""
        return self.path[-1].code

    @property
    def name(self) -> str:
        return self.path[-1].name

    def at(self, level: Level) -> Optional[CodedLevel]:
        """Path entry for a level, if the path covers it."""
        for entry in self.path:
            if entry.level == Level(level):
                return entry
        return None
