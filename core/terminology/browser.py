# SAGE Terminology Tree Browser
# ==============================
"""
Lazy, level-by-level hierarchy browsing.

Each call returns only the immediate children of one node (or the top
level); nothing is cached between calls, so consumers expand nodes on
demand without the store ever materialising a full tree.
"""

import logging
from typing import Optional, List, Any

from .models import HierarchyNode, Level, TreeNode, child_level, top_level
from .store import HierarchyStore

logger = logging.getLogger(__name__)


class TreeBrowser:
    """Stateless child enumeration for hierarchy widgets."""

    def __init__(self, store: HierarchyStore):
        self.store = store

    def _to_tree_node(self, node: HierarchyNode) -> TreeNode:
        below = child_level(self.store.dictionary_type, node.level)
        is_leaf = below is None
        title = node.name
        if node.level.value.startswith("atc"):
            title = f"{node.code} - {node.name}"
        return TreeNode(
            key=f"{node.level.value}-{node.code}",
            title=title,
            code=node.code,
            level=node.level,
            is_leaf=is_leaf,
            is_current=node.is_current if node.level == Level.LLT else None,
        )

    def browse(
        self,
        parent_code: Optional[Any] = None,
        parent_level: Optional[Level] = None,
        version_id: Optional[int] = None
    ) -> List[TreeNode]:
        """
        Children of (parent_code, parent_level), or the top level.

        Args:
            parent_code: Code of the expanded node; None for the top level
            parent_level: Level of the expanded node; None for the top level
            version_id: Version to browse; defaults to the active version

        Returns:
            Ordered TreeNodes, each tagged leaf or non-leaf
        """
        if parent_code is None or parent_level is None:
            nodes = self.store.top_level_nodes(version_id)
            logger.debug(
                f"Browse {self.store.dictionary_type.value} top level "
                f"({top_level(self.store.dictionary_type).value}): {len(nodes)} nodes"
            )
        else:
            nodes = self.store.children_of(parent_code, parent_level, version_id)
        return [self._to_tree_node(n) for n in nodes]
