"""
Browse tree data structures.

Nodes of the DOA browse hierarchy and the forest returned by the builder.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from doa.src.approvers import normalize_approvers
from doa.src.hierarchy.codes import clean_code, code_depth
from doa.src.models import Approver


@dataclass(frozen=True)
class RealNodeId:
    """Identity of a node backed by an input item."""

    item_id: int

    @property
    def key(self) -> str:
        return str(self.item_id)

    @property
    def is_synthetic(self) -> bool:
        return False


@dataclass(frozen=True)
class SyntheticNodeId:
    """Identity of a placeholder node created for a missing ancestor code."""

    code: str

    @property
    def key(self) -> str:
        return f"section:{self.code}"

    @property
    def is_synthetic(self) -> bool:
        return True


NodeId = RealNodeId | SyntheticNodeId


@dataclass
class BrowseNode:
    """
    A node in the browse hierarchy.

    Carries every field of the item it was built from plus its children.
    Synthetic nodes have no item ID and stand in for ancestor codes that
    are missing from the data.
    """

    node_id: NodeId
    code: str
    title: str
    parent_code: str | None = None
    description: str = ""
    comments: str = ""
    function_name: str = ""
    sort_order: int = 0
    approvers: list[Approver] = field(default_factory=list)
    children: list[BrowseNode] = field(default_factory=list)

    def add_child(self, child: BrowseNode) -> None:
        """Append a child node."""
        self.children.append(child)

    @property
    def id(self) -> int | None:
        """Item ID, or None for synthetic nodes."""
        if isinstance(self.node_id, RealNodeId):
            return self.node_id.item_id
        return None

    @property
    def key(self) -> str:
        return self.node_id.key

    @property
    def is_synthetic(self) -> bool:
        return self.node_id.is_synthetic

    @property
    def clean_code(self) -> str:
        return clean_code(self.code)

    @property
    def depth(self) -> int:
        """Number of code segments ("4.2.3" -> 3)."""
        return code_depth(self.code)

    @property
    def is_root(self) -> bool:
        """True for depth-1 codes (chapters)."""
        return self.depth == 1

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def descendant_count(self) -> int:
        """Count all descendants (children, grandchildren, etc.)."""
        count = len(self.children)
        for child in self.children:
            count += child.descendant_count
        return count

    @property
    def sorted_approvers(self) -> list[Approver]:
        """Approval chain deduplicated and ordered for display."""
        return normalize_approvers(self.approvers)

    def get_all_descendants(self) -> list[BrowseNode]:
        """Get all descendants as a flat list (DFS order)."""
        descendants = []
        for child in self.children:
            descendants.append(child)
            descendants.extend(child.get_all_descendants())
        return descendants

    def to_dict(self, include_children: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary for JSON responses.

        Args:
            include_children: If True, recursively include children
        """
        result: dict[str, Any] = {
            "id": self.id,
            "key": self.key,
            "code": self.code,
            "parent_code": self.parent_code,
            "title": self.title,
            "description": self.description,
            "comments": self.comments,
            "function": self.function_name,
            "sort_order": self.sort_order,
            "is_root": self.is_root,
            "is_synthetic": self.is_synthetic,
            "approval_chain": [a.to_dict() for a in self.sorted_approvers],
            "child_count": len(self.children),
        }
        if include_children:
            result["children"] = [child.to_dict(True) for child in self.children]
        return result

    def __repr__(self) -> str:
        """String representation for debugging."""
        title_preview = self.title[:40]
        return f"<BrowseNode {self.key} {self.code} '{title_preview}' children={len(self.children)}>"


@dataclass
class BrowseForest:
    """
    Result of one hierarchy build.

    Attributes:
        roots: Root nodes in numeric code order.
        node_ids: Keys of every node in the forest, real nodes first in
            document order, then synthetic nodes in creation order.
        filtered: Whether a search or function filter was applied.
    """

    roots: list[BrowseNode] = field(default_factory=list)
    node_ids: list[str] = field(default_factory=list)
    filtered: bool = False

    @property
    def total_nodes(self) -> int:
        """Count all nodes including roots."""
        return sum(1 + root.descendant_count for root in self.roots)

    @property
    def chapter_count(self) -> int:
        return len(self.roots)

    @property
    def expanded_ids(self) -> set[str]:
        """Node keys to expand automatically: everything when filtered."""
        return set(self.node_ids) if self.filtered else set()

    def iter_nodes(self) -> Iterator[BrowseNode]:
        """Yield every node, depth-first, roots in order."""
        for root in self.roots:
            yield root
            yield from root.get_all_descendants()

    def find(self, key: str) -> BrowseNode | None:
        """Find a node by its key."""
        for node in self.iter_nodes():
            if node.key == key:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert the forest to a dictionary."""
        return {
            "roots": [root.to_dict(include_children=True) for root in self.roots],
            "node_ids": list(self.node_ids),
            "total_nodes": self.total_nodes,
            "chapter_count": self.chapter_count,
            "filtered": self.filtered,
        }

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<BrowseForest roots={len(self.roots)} nodes={self.total_nodes}>"
