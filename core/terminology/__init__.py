# SAGE Terminology Module
# ========================
"""
Versioned MedDRA and WHO Drug dictionary engine.

Provides:
- Streaming parsers for MedDRA ASCII and WHO Drug distributions
- Flat hierarchy (SAS/CSV) import for MedDRA
- Versioned SQLite storage with single-active-version control
- Tiered term search and lazy hierarchy browsing
- Immutable codings with primary path selection
"""

from .errors import (
    TerminologyError,
    DictionaryFileNotFoundError,
    UnsupportedFormatError,
    InvalidStateError,
    NotFoundError,
    VersionNotFoundError,
    NoActiveVersionError,
    ImportFailedError,
)
from .models import (
    DictionaryType,
    Level,
    VersionStatus,
    ImportStatus,
    MatchTier,
    ScopedCode,
    HierarchyNode,
    HierarchyPath,
    SearchResult,
    TreeNode,
    DictionaryVersion,
    ImportProgress,
    CodedLevel,
    Coding,
)
from .config import TerminologyConfig, load_config
from .database import TerminologyDB
from .parsers import ParseStats, parse_file
from .versions import VersionManager
from .loader import BulkLoader
from .store import HierarchyStore
from .search import SearchEngine
from .browser import TreeBrowser
from .resolver import CodingResolver
from .importer import DictionaryImporter
from .service import TerminologyService, get_terminology_service, reset_terminology_services

__all__ = [
    # Errors
    "TerminologyError",
    "DictionaryFileNotFoundError",
    "UnsupportedFormatError",
    "InvalidStateError",
    "NotFoundError",
    "VersionNotFoundError",
    "NoActiveVersionError",
    "ImportFailedError",

    # Models
    "DictionaryType",
    "Level",
    "VersionStatus",
    "ImportStatus",
    "MatchTier",
    "ScopedCode",
    "HierarchyNode",
    "HierarchyPath",
    "SearchResult",
    "TreeNode",
    "DictionaryVersion",
    "ImportProgress",
    "CodedLevel",
    "Coding",

    # Components
    "TerminologyConfig",
    "load_config",
    "TerminologyDB",
    "ParseStats",
    "parse_file",
    "VersionManager",
    "BulkLoader",
    "HierarchyStore",
    "SearchEngine",
    "TreeBrowser",
    "CodingResolver",
    "DictionaryImporter",

    # Service
    "TerminologyService",
    "get_terminology_service",
    "reset_terminology_services",
]
