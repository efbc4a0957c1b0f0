"""
Browse tree builder.

Builds the browse forest from the flat list of DOA items.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from doa.src.hierarchy.codes import (
    ancestor_codes,
    clean_code,
    code_depth,
    code_sort_key,
    parent_of,
)
from doa.src.hierarchy.filters import matches_function, matches_search, normalize_function
from doa.src.hierarchy.tree import (
    BrowseForest,
    BrowseNode,
    NodeId,
    RealNodeId,
    SyntheticNodeId,
)
from doa.src.models import BrowseItem

logger = logging.getLogger(__name__)

# Occurrence sort order for synthetic nodes: before any real item
_SYNTHETIC_SORT_ORDER = -1


class _BuildPass:
    """Index maps and scratch state owned by a single build.

    Created per call of BrowseTreeBuilder.build and discarded afterwards.
    """

    def __init__(self, all_items: Sequence[BrowseItem]) -> None:
        self._all_items = all_items
        self._first_by_code: dict[str, BrowseItem] | None = None
        self.occurrences: dict[str, list[tuple[int, NodeId]]] = {}
        self.nodes: dict[NodeId, BrowseNode] = {}
        self.node_ids: list[str] = []
        self.roots: list[BrowseNode] = []
        self.linked: set[NodeId] = set()

    def add_item(self, item: BrowseItem) -> BrowseNode:
        """Create the node for a surviving item and index its code."""
        node_id = RealNodeId(item.id)  # type: ignore[arg-type]
        node = BrowseNode(
            node_id=node_id,
            code=item.code,
            title=item.title,
            parent_code=item.parent_code,
            description=item.description or "",
            comments=item.comments or "",
            function_name=normalize_function(item.function_name),
            sort_order=item.sort_order,
            approvers=list(item.approvers),
        )
        self.nodes[node_id] = node
        self.node_ids.append(node_id.key)
        self.occurrences.setdefault(clean_code(item.code), []).append(
            (item.sort_order, node_id)
        )
        return node

    def resolve_parent(self, parent_code: str, child_sort_order: int) -> NodeId | None:
        """Pick the instance of *parent_code* that a child belongs to.

        Among duplicate codes, the closest occurrence at or before the
        child in document order wins. When every occurrence comes after
        the child, the first one is used.
        """
        occurrences = self.occurrences.get(clean_code(parent_code))
        if not occurrences:
            return None

        best: tuple[int, NodeId] | None = None
        for occurrence in occurrences:
            if occurrence[0] <= child_sort_order and (best is None or occurrence[0] > best[0]):
                best = occurrence
        node_id = best[1] if best is not None else occurrences[0][1]
        assert node_id in self.nodes, f"code index points at unknown node {node_id}"
        return node_id

    def ensure_synthetic(self, code: str) -> NodeId:
        """Return the node for *code*, creating a placeholder if needed."""
        existing = self.occurrences.get(code)
        if existing:
            return existing[0][1]

        node_id = SyntheticNodeId(code)
        source = self._source_item(code)
        node = BrowseNode(
            node_id=node_id,
            code=code,
            title=source.title if source else f"Section {code}",
            parent_code=parent_of(code) or None,
            description=(source.description or "") if source else "",
            comments=(source.comments or "") if source else "",
            function_name=normalize_function(source.function_name) if source else "",
            sort_order=_SYNTHETIC_SORT_ORDER,
            approvers=list(source.approvers) if source else [],
        )
        self.nodes[node_id] = node
        self.node_ids.append(node_id.key)
        self.occurrences[code] = [(_SYNTHETIC_SORT_ORDER, node_id)]
        return node_id

    def scaffold(self, parent_code: str, child_sort_order: int) -> NodeId | None:
        """Create missing ancestors of *parent_code*, most ancestral first.

        Returns:
            The node standing in for *parent_code* itself.
        """
        last: NodeId | None = None
        for ancestor in ancestor_codes(parent_code):
            existing = self.resolve_parent(ancestor, child_sort_order)
            if existing is not None:
                last = existing
                continue

            synthetic_id = self.ensure_synthetic(ancestor)
            synthetic = self.nodes[synthetic_id]
            if synthetic_id not in self.linked:
                if last is not None:
                    self.nodes[last].add_child(synthetic)
                    self.linked.add(synthetic_id)
                elif synthetic.is_root:
                    self.roots.append(synthetic)
                    self.linked.add(synthetic_id)
            last = synthetic_id
        return last

    def link(self, item: BrowseItem, node: BrowseNode) -> None:
        """Attach a real node to its parent, or make it a root."""
        if code_depth(item.code) == 1:
            self.roots.append(node)
            return

        parent_code = BrowseTreeBuilder.parent_code_for(item)
        if not parent_code:
            self.roots.append(node)
            return

        parent_id = self.resolve_parent(parent_code, item.sort_order)
        if parent_id is None:
            parent_id = self.scaffold(parent_code, item.sort_order)

        if parent_id is not None:
            self.nodes[parent_id].add_child(node)
        else:
            self.roots.append(node)

    def _source_item(self, code: str) -> BrowseItem | None:
        """First item in the unfiltered input with this cleaned code."""
        if self._first_by_code is None:
            self._first_by_code = {}
            for item in self._all_items:
                self._first_by_code.setdefault(clean_code(item.code), item)
        return self._first_by_code.get(code)


class BrowseTreeBuilder:
    """
    Builds browse forests from flat DOA items.

    The source data is imperfect historical content: codes repeat,
    parents go missing, and some rows name themselves as parent. The
    builder never raises on such data; every item ends up reachable from
    some root.
    """

    @staticmethod
    def parent_code_for(item: BrowseItem) -> str:
        """Determine the parent code of an item.

        Uses the explicit parent_code when present, otherwise the item's
        own code minus its last segment. An explicit parent that is not
        exactly one level above the item (a self-reference, a sideways or
        deeper code, or one that skips levels) is replaced by the derived
        one, so missing intermediate levels get placeholder sections.

        Examples:
        code "4.2.3", no parent_code -> "4.2"
        code "5.2", parent_code "5.2" -> "5"
        code "3.8.1.", parent_code "3.8.1" -> "3.8"
        code "4.2.3", parent_code "4" -> "4.2"
        """
        own = clean_code(item.code)
        parent = clean_code(item.parent_code) if item.parent_code else parent_of(own)
        if parent and code_depth(parent) != code_depth(own) - 1:
            parent = parent_of(own)
        return parent

    @staticmethod
    def select_items(
        items: Sequence[BrowseItem],
        search: str = "",
        function_name: str = "",
    ) -> list[BrowseItem]:
        """Apply search/function filters and pull in ancestors of matches.

        Args:
            items: Items in document order.
            search: Case-insensitive substring, "" for none.
            function_name: Normalized function name, "" for none.

        Returns:
            Surviving items in document order.
        """
        if not search and not function_name:
            return list(items)

        matched = list(items)
        if search:
            matched = [item for item in matched if matches_search(item, search)]
        if function_name:
            matched = [item for item in matched if matches_function(item, function_name)]
        matched_ids = {item.id for item in matched}

        # Ancestors come from document order and nesting depth, not from
        # code prefixes: parent codes are not always prefixes of child codes.
        needed = set(matched_ids)
        stack: list[BrowseItem] = []
        for item in items:
            depth = code_depth(item.code)
            while stack and code_depth(stack[-1].code) >= depth:
                stack.pop()
            stack.append(item)
            if item.id in matched_ids:
                needed.update(ancestor.id for ancestor in stack)

        return [item for item in items if item.id in needed]

    @staticmethod
    def build(
        items: Sequence[BrowseItem],
        search: str = "",
        function_name: str = "",
    ) -> BrowseForest:
        """Build the browse forest.

        Strategy:
        1. Sort by sort_order (stable), the canonical document order
        2. Filter, keeping ancestors of matches
        3. Create one node per surviving item, indexed by cleaned code
        4. Link each node to the nearest preceding instance of its parent
           code, scaffolding placeholder ancestors when the code is missing
        5. Sort roots numerically by code

        Args:
            items: Flat item list in any order.
            search: Search term, "" for none.
            function_name: Function filter, "" for none.

        Returns:
            BrowseForest with roots and every node key.
        """
        ordered = sorted(items, key=lambda item: item.sort_order)
        surviving = BrowseTreeBuilder.select_items(ordered, search, function_name)

        build = _BuildPass(items)
        nodes = [(item, build.add_item(item)) for item in surviving]
        for item, node in nodes:
            build.link(item, node)

        build.roots.sort(key=lambda node: code_sort_key(node.clean_code))

        forest = BrowseForest(
            roots=build.roots,
            node_ids=build.node_ids,
            filtered=bool(search or function_name),
        )
        logger.debug(
            "Built browse forest: %d of %d items, %d roots, %d nodes",
            len(surviving),
            len(items),
            len(forest.roots),
            len(forest.node_ids),
        )
        return forest
