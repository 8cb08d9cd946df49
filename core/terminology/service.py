# SAGE Terminology Service
# =========================
"""
In-process facade over the terminology engine for one dictionary type.

Collaborators (case management, coding screens, reporting) go through
TerminologyService rather than the individual components. Reads default
to the active version; every read also accepts an explicit version id.
"""

import logging
import threading
from typing import Optional, Dict, List, Any

from .browser import TreeBrowser
from .config import TerminologyConfig, load_config
from .database import TerminologyDB
from .errors import UnsupportedFormatError
from .importer import DictionaryImporter
from .models import (
    Coding,
    DictionaryType,
    DictionaryVersion,
    HierarchyNode,
    HierarchyPath,
    ImportProgress,
    Level,
    SearchResult,
    TreeNode,
)
from .resolver import CodingResolver
from .search import SearchEngine
from .store import HierarchyStore
from .versions import VersionManager

logger = logging.getLogger(__name__)


class TerminologyService:
    """Version control, import, search, browse and coding for one dictionary."""

    def __init__(
        self,
        dictionary_type: DictionaryType,
        db: Optional[TerminologyDB] = None,
        config: Optional[TerminologyConfig] = None
    ):
        """
        Initialize the service.

        Args:
            dictionary_type: MEDDRA or WHODRUG
            db: Shared database; opened from config when omitted
            config: Settings; loaded from the environment when omitted
        """
        try:
            self.dictionary_type = DictionaryType(dictionary_type)
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported dictionary type: {dictionary_type}")

        self.config = config or load_config()
        self.db = db or TerminologyDB(str(self.config.db_path))

        self.versions = VersionManager(self.db, self.dictionary_type)
        self.store = HierarchyStore(self.db, self.dictionary_type)
        self.importer = DictionaryImporter(
            self.db, self.dictionary_type,
            batch_size=self.config.batch_size,
            versions=self.versions,
        )
        self.search_engine = SearchEngine(
            self.store,
            min_query_length=self.config.min_query_length,
            default_limit=self.config.search_limit,
        )
        self.browser = TreeBrowser(self.store)
        self.resolver = CodingResolver(self.store, self.versions)

    # ==================== VERSIONS ====================

    def list_versions(self) -> List[DictionaryVersion]:
        return self.versions.list()

    def get_active_version(self) -> Optional[DictionaryVersion]:
        return self.versions.get_active()

    def get_version(self, version_id: int) -> Optional[DictionaryVersion]:
        return self.versions.get_by_id(version_id)

    def activate_version(self, version_id: int) -> DictionaryVersion:
        self.versions.activate(version_id)
        return self.versions.require(version_id)

    def delete_version(self, version_id: int):
        self.versions.delete(version_id)

    # ==================== IMPORT ====================

    def import_dictionary(
        self,
        label: str,
        file_paths: Dict[str, str],
        release_date: Optional[str] = None,
        imported_by: Optional[str] = None
    ) -> DictionaryVersion:
        """Import a distribution file set into a new, inactive version."""
        return self.importer.run(label, file_paths, release_date=release_date, imported_by=imported_by)

    def import_flat_hierarchy(
        self,
        path: str,
        label: Optional[str] = None,
        release_date: Optional[str] = None,
        imported_by: Optional[str] = None
    ) -> DictionaryVersion:
        """Import a MedDRA flat hierarchy extract into a new, inactive version."""
        return self.importer.run_flat(path, label=label, release_date=release_date, imported_by=imported_by)

    def get_import_progress(self) -> Optional[ImportProgress]:
        return self.importer.get_progress()

    # ==================== READS ====================

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        include_non_current: bool = False,
        version_id: Optional[int] = None,
        country_code: Optional[str] = None
    ) -> List[SearchResult]:
        return self.search_engine.search(
            query,
            limit=limit,
            include_non_current=include_non_current,
            version_id=version_id,
            country_code=country_code,
        )

    def search_ingredients(
        self,
        query: str,
        limit: Optional[int] = None,
        version_id: Optional[int] = None
    ) -> List[HierarchyNode]:
        return self.search_engine.search_ingredients(query, limit=limit, version_id=version_id)

    def browse(
        self,
        parent_code: Optional[Any] = None,
        parent_level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> List[TreeNode]:
        return self.browser.browse(parent_code, parent_level, version_id)

    def get_paths(
        self,
        code: Any,
        level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> List[HierarchyPath]:
        return self.resolver.paths_for(code, level=level, version_id=version_id)

    def resolve_coding(
        self,
        code: Any,
        verbatim_text: str,
        coder_id: Optional[str] = None,
        level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> Coding:
        return self.resolver.resolve(
            code, verbatim_text, coder_id=coder_id, level=level, version_id=version_id
        )

    def get_statistics(self, version_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Summary of one version.

        Returns:
            Dictionary with version metadata and per-level row counts
        """
        version = self.resolver.target_version(version_id)
        return {
            "dictionary_type": self.dictionary_type.value,
            "version_id": version.id,
            "label": version.label,
            "status": version.status.value,
            "is_active": version.is_active,
            "leaf_count": version.leaf_count,
            "term_count": version.term_count,
            "levels": self.store.level_counts(version.id),
        }

    def get_product(self, drug_code: str, version_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        WHO Drug product with its ingredients and ATC classification.

        Returns:
            Dictionary with the product node, ingredients and ATC path, or
            None if the product does not exist in the version
        """
        if self.dictionary_type != DictionaryType.WHODRUG:
            raise UnsupportedFormatError("Products are only available for whodrug")
        version = self.resolver.target_version(version_id)
        product = self.store.by_code(Level.PRODUCT, drug_code, version.id)
        if product is None:
            return None

        paths = self.resolver.paths_from(product)
        atc_path = [n for n in paths[0].nodes if n.level != Level.PRODUCT] if paths else []
        return {
            "product": product,
            "ingredients": [
                {"code": node.code, "name": node.name, "strength": strength}
                for node, strength in self.store.ingredients_of(product.code, version.id)
            ],
            "atc_path": atc_path,
        }


# Singleton instances, one per dictionary type
_services: Dict[DictionaryType, TerminologyService] = {}
_services_lock = threading.Lock()


def get_terminology_service(dictionary_type: DictionaryType) -> TerminologyService:
    """
    Get or create the global TerminologyService for a dictionary type.

    All instances share one TerminologyDB built from load_config().
    """
    dictionary_type = DictionaryType(dictionary_type)
    service = _services.get(dictionary_type)
    if service is not None:
        return service

    with _services_lock:
        if dictionary_type not in _services:
            config = load_config()
            shared = next(iter(_services.values())).db if _services else TerminologyDB(str(config.db_path))
            _services[dictionary_type] = TerminologyService(dictionary_type, db=shared, config=config)
            logger.info(f"Terminology service ready for {dictionary_type.value} ({config.db_path})")
        return _services[dictionary_type]


def reset_terminology_services():
    """Drop cached service instances (tests and configuration reloads)."""
    with _services_lock:
        _services.clear()
