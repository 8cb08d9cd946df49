# SAGE Terminology Coding Resolver
# =================================
"""
Maps a dictionary code plus the reporter's verbatim text onto an
immutable Coding.

MedDRA allows several parents above PT, so a code can reach the top level
by more than one route. Every route is enumerated; the primary path is
the one ending at the PT's primary SOC. Codes without a primary-parent
attribute (HLT, HLGT, SOC, every WHO Drug level) take the first path in
the deterministic ordering as primary.
"""

import logging
from typing import Optional, List, Any, Tuple

from .errors import NoActiveVersionError, NotFoundError
from .models import (
    Coding,
    CodedLevel,
    DictionaryType,
    DictionaryVersion,
    HierarchyNode,
    HierarchyPath,
    Level,
    ATC_LEVELS,
    top_level,
)
from .parsers import atc_level
from .store import HierarchyStore
from .versions import VersionManager

logger = logging.getLogger(__name__)

# Level probing order when the caller does not name one
MEDDRA_DETECTION_ORDER = (Level.LLT, Level.PT, Level.HLT, Level.HLGT, Level.SOC)


class CodingResolver:
    """Path enumeration and Coding construction for one dictionary."""

    def __init__(self, store: HierarchyStore, versions: VersionManager):
        self.store = store
        self.versions = versions
        self.dictionary_type = store.dictionary_type

    # ==================== VERSION / NODE LOOKUP ====================

    def target_version(self, version_id: Optional[int]) -> DictionaryVersion:
        if version_id is not None:
            return self.versions.require(version_id)
        active = self.versions.get_active()
        if active is None:
            raise NoActiveVersionError(self.dictionary_type.value)
        return active

    def _detection_order(self, code: Any) -> Tuple[Level, ...]:
        if self.dictionary_type == DictionaryType.MEDDRA:
            return MEDDRA_DETECTION_ORDER
        order = [Level.PRODUCT]
        level = atc_level(str(code).strip())
        if level:
            order.append(ATC_LEVELS[level])
        order.append(Level.INGREDIENT)
        return tuple(order)

    def locate(self, code: Any, level: Optional[Level], version_id: int) -> Optional[HierarchyNode]:
        """Find a node by code, probing levels when none is given."""
        if level is not None:
            return self.store.by_code(level, code, version_id)
        for candidate in self._detection_order(code):
            node = self.store.by_code(candidate, code, version_id)
            if node is not None:
                return node
        return None

    def require_node(self, code: Any, level: Optional[Level], version_id: int) -> HierarchyNode:
        node = self.locate(code, level, version_id)
        if node is None:
            raise NotFoundError(
                f"{self.dictionary_type.value} code {code} not found in version {version_id}",
                code=code,
                version_id=version_id,
            )
        return node

    # ==================== PATHS ====================

    def _chains_above(self, node: HierarchyNode) -> List[List[HierarchyNode]]:
        """Every upward chain from node, each ordered top to bottom."""
        parents = self.store.parents_of(node.level, node.code, node.version_id)
        if not parents:
            return [[node]]
        chains = []
        for parent in parents:
            for chain in self._chains_above(parent):
                chains.append(chain + [node])
        return chains

    def _primary_top_code(self, node: HierarchyNode) -> Optional[Any]:
        if node.level == Level.PT:
            return node.primary_parent_code
        if node.level == Level.LLT and node.parent_code is not None:
            pt = self.store.by_code(Level.PT, node.parent_code, node.version_id)
            return pt.primary_parent_code if pt else None
        return None

    def paths_from(self, node: HierarchyNode) -> List[HierarchyPath]:
        """
        Enumerate the paths from the top level down to node.

        Returns:
            Paths ordered primary first, then by top-level name. A node
            with no complete path yields one partial path ending at its
            highest reachable ancestor.
        """
        top = top_level(self.dictionary_type)
        chains = self._chains_above(node)
        complete = [c for c in chains if c[0].level == top]
        if not complete:
            chains.sort(key=lambda c: (-len(c), [n.name for n in c]))
            logger.warning(
                f"{self.dictionary_type.value} {node.level.value} {node.code} has no complete path "
                f"to {top.value}; highest ancestor is {chains[0][0].level.value} {chains[0][0].code}"
            )
            return [HierarchyPath(nodes=chains[0], is_primary_path=False)]

        primary_code = self._primary_top_code(node)
        paths = [
            HierarchyPath(
                nodes=chain,
                is_primary_path=primary_code is not None and chain[0].code == primary_code,
            )
            for chain in complete
        ]
        paths.sort(key=lambda p: (not p.is_primary_path, [n.name for n in p.nodes], [n.code for n in p.nodes]))

        if primary_code is None and paths:
            paths[0].is_primary_path = True
        return paths

    def paths_for(
        self,
        code: Any,
        level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> List[HierarchyPath]:
        """
        All hierarchy paths of a code.

        Raises:
            NoActiveVersionError: no version given and none active
            VersionNotFoundError: unknown version id
            NotFoundError: code absent from the version
        """
        version = self.target_version(version_id)
        return self.paths_from(self.require_node(code, level, version.id))

    # ==================== CODING ====================

    def resolve(
        self,
        code: Any,
        verbatim_text: str,
        coder_id: Optional[str] = None,
        level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> Coding:
        """
        Code a verbatim term.

        Args:
            code: Dictionary code chosen by the coder
            verbatim_text: Reporter's original wording
            coder_id: Identity of the coder
            level: Level of the code; detected when omitted
            version_id: Version to code against; defaults to the active version

        Returns:
            Immutable Coding along the primary (or first) path
        """
        version = self.target_version(version_id)
        node = self.require_node(code, level, version.id)

        paths = self.paths_from(node)
        chosen = next((p for p in paths if p.is_primary_path), paths[0])

        ingredients: Tuple[str, ...] = ()
        if node.level == Level.PRODUCT:
            ingredients = tuple(
                ingredient.name for ingredient, _ in self.store.ingredients_of(node.code, version.id)
            )

        coding = Coding(
            verbatim_text=verbatim_text,
            dictionary_type=self.dictionary_type,
            version_id=version.id,
            version_label=version.label,
            path=tuple(CodedLevel(level=n.level, code=n.code, name=n.name) for n in chosen.nodes),
            is_primary_path=chosen.is_primary_path,
            alternative_path_count=len(paths) - 1,
            ingredients=ingredients,
            coded_by=coder_id,
        )
        logger.info(
            f"Coded '{verbatim_text}' to {self.dictionary_type.value} {node.level.value} {node.code} "
            f"(version {version.label}, {len(paths)} path(s))"
        )
        return coding
