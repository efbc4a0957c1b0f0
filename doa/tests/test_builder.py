"""Tests for BrowseTreeBuilder."""

from __future__ import annotations

from doa.src.hierarchy.builder import BrowseTreeBuilder
from doa.src.hierarchy.tree import BrowseForest, BrowseNode
from doa.src.models import Approver, BrowseItem

# ===================================================================
# Helpers
# ===================================================================


def _item(
    item_id: int,
    code: str,
    sort_order: int,
    parent_code: str | None = None,
    title: str | None = None,
    **kwargs,
) -> BrowseItem:
    """Create a browse item."""
    return BrowseItem(
        id=item_id,
        code=code,
        title=title or f"Item {code}",
        parent_code=parent_code,
        sort_order=sort_order,
        **kwargs,
    )


def _parent_map(forest: BrowseForest) -> dict[str, str | None]:
    """Map each node key to its parent's key (None for roots)."""
    parents: dict[str, str | None] = {}

    def walk(node: BrowseNode, parent: str | None) -> None:
        parents[node.key] = parent
        for child in node.children:
            walk(child, node.key)

    for root in forest.roots:
        walk(root, None)
    return parents


# ===================================================================
# parent_code_for
# ===================================================================


class TestParentCodeFor:
    """Tests for parent code determination."""

    def test_derived_from_code(self):
        assert BrowseTreeBuilder.parent_code_for(_item(1, "4.2.3", 1)) == "4.2"

    def test_explicit_parent_used(self):
        item = _item(1, "4.3.1", 1, parent_code="2.1")
        assert BrowseTreeBuilder.parent_code_for(item) == "2.1"

    def test_self_reference_guard(self):
        item = _item(1, "5.2", 1, parent_code="5.2")
        assert BrowseTreeBuilder.parent_code_for(item) == "5"

    def test_trailing_dots_cleaned(self):
        item = _item(1, "3.8.1.", 1, parent_code="3.8.1")
        assert BrowseTreeBuilder.parent_code_for(item) == "3.8"

    def test_sideways_parent_rederived(self):
        item = _item(1, "4.1", 1, parent_code="4.2")
        assert BrowseTreeBuilder.parent_code_for(item) == "4"

    def test_deeper_parent_rederived(self):
        item = _item(1, "4.1", 1, parent_code="4.1.7")
        assert BrowseTreeBuilder.parent_code_for(item) == "4"

    def test_skip_level_parent_rederived(self):
        item = _item(1, "4.2.3", 1, parent_code="4")
        assert BrowseTreeBuilder.parent_code_for(item) == "4.2"

    def test_chapter_has_no_parent(self):
        assert BrowseTreeBuilder.parent_code_for(_item(1, "4", 1)) == ""


# ===================================================================
# Structure
# ===================================================================


class TestBuildStructure:
    """Tests for linking, ordering and synthetic ancestors."""

    def test_simple_nesting(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items)
        assert [r.code for r in forest.roots] == ["1", "2"]
        assert [c.code for c in forest.roots[0].children] == ["1.1"]
        assert [c.code for c in forest.roots[1].children] == ["2.1.", "2.2"]

    def test_self_referencing_item_attaches_to_parent(self):
        items = [_item(1, "5", 1), _item(2, "5.2", 2, parent_code="5.2")]
        forest = BrowseTreeBuilder.build(items)
        assert len(forest.roots) == 1
        assert forest.roots[0].children[0].id == 2

    def test_duplicate_code_resolves_to_preceding_instance(self):
        items = [
            _item(1, "2", 1),
            _item(2, "2.1", 2, parent_code="2"),
            _item(3, "2", 5),
        ]
        forest = BrowseTreeBuilder.build(items)
        parents = _parent_map(forest)
        assert parents["2"] == "1"
        assert [r.id for r in forest.roots] == [1, 3]
        assert forest.roots[1].children == []

    def test_duplicate_code_picks_closest_preceding(self):
        items = [
            _item(1, "2", 1),
            _item(2, "2", 3),
            _item(3, "2.1", 4),
        ]
        parents = _parent_map(BrowseTreeBuilder.build(items))
        assert parents["3"] == "2"

    def test_synthetic_ancestors_created(self):
        forest = BrowseTreeBuilder.build([_item(1, "3.1.2", 1)])
        assert len(forest.roots) == 1
        root = forest.roots[0]
        assert root.is_synthetic
        assert root.code == "3"
        assert root.title == "Section 3"
        middle = root.children[0]
        assert middle.is_synthetic
        assert middle.code == "3.1"
        assert [c.id for c in middle.children] == [1]
        assert forest.node_ids == ["1", "section:3", "section:3.1"]
        assert sum(1 for n in forest.iter_nodes() if n.is_synthetic) == 2

    def test_synthetic_ancestor_shared_by_siblings(self):
        items = [_item(1, "7.1.1", 1), _item(2, "7.1.2", 2)]
        forest = BrowseTreeBuilder.build(items)
        assert len(forest.roots) == 1
        assert len(forest.roots[0].children) == 1
        assert [c.id for c in forest.roots[0].children[0].children] == [1, 2]
        assert forest.total_nodes == 4

    def test_synthetic_under_real_ancestor(self):
        items = [_item(1, "3", 1), _item(2, "3.1.1", 2)]
        forest = BrowseTreeBuilder.build(items)
        root = forest.roots[0]
        assert root.id == 1
        assert root.children[0].key == "section:3.1"
        assert root.children[0].children[0].id == 2

    def test_root_ordering_numeric(self):
        items = [_item(1, "10", 1), _item(2, "2", 2), _item(3, "1", 3)]
        forest = BrowseTreeBuilder.build(items)
        assert [r.code for r in forest.roots] == ["1", "2", "10"]

    def test_input_order_irrelevant(self):
        items = [_item(2, "1.1", 2), _item(1, "1", 1)]
        forest = BrowseTreeBuilder.build(items)
        assert forest.roots[0].id == 1
        assert forest.roots[0].children[0].id == 2

    def test_parent_after_child_uses_first_occurrence(self):
        items = [_item(1, "3", 1), _item(2, "3.1.1", 2), _item(3, "3.1", 3)]
        parents = _parent_map(BrowseTreeBuilder.build(items))
        assert parents["2"] == "3"
        assert parents["3"] == "1"

    def test_mutual_parent_codes_do_not_cycle(self):
        items = [
            _item(1, "1", 1),
            _item(2, "1.1", 2, parent_code="1.2"),
            _item(3, "1.2", 3, parent_code="1.1"),
        ]
        parents = _parent_map(BrowseTreeBuilder.build(items))
        assert parents["2"] == "1"
        assert parents["3"] == "1"

    def test_skip_level_parent_gets_intermediate_section(self):
        items = [_item(1, "4", 1), _item(2, "4.2.3", 2, parent_code="4")]
        forest = BrowseTreeBuilder.build(items)
        parents = _parent_map(forest)
        assert parents["2"] == "section:4.2"
        assert parents["section:4.2"] == "1"
        for node in forest.iter_nodes():
            for child in node.children:
                assert len(child.code.split(".")) == len(node.code.split(".")) + 1

    def test_function_names_normalized_on_nodes(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items)
        assert forest.find("4").function_name == "Human Resources"

    def test_empty_input(self):
        forest = BrowseTreeBuilder.build([])
        assert forest.roots == []
        assert forest.total_nodes == 0

    def test_input_items_not_mutated(self, sample_items):
        before = [item.to_dict() for item in sample_items]
        BrowseTreeBuilder.build(sample_items, search="hiring")
        assert [item.to_dict() for item in sample_items] == before


# ===================================================================
# Filtering
# ===================================================================


class TestBuildFiltering:
    """Tests for search/function filtering with ancestor retention."""

    def test_search_keeps_ancestors(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items, search="HIRING")
        assert forest.node_ids == ["3", "4"]
        assert forest.roots[0].id == 3
        assert forest.roots[0].children[0].id == 4

    def test_search_matches_comments(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items, search="r&d")
        assert sorted(forest.node_ids) == ["3", "5"]

    def test_filtered_forest_expands_everything(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items, search="hiring")
        assert forest.filtered
        assert forest.expanded_ids == {"3", "4"}

    def test_unfiltered_forest_expands_nothing(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items)
        assert not forest.filtered
        assert forest.expanded_ids == set()

    def test_function_filter_uses_normalized_names(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items, function_name="Human Resources")
        assert forest.node_ids == ["3", "4", "5"]

    def test_search_and_function_combined(self, sample_items):
        forest = BrowseTreeBuilder.build(
            sample_items, search="salary", function_name="Human Resources"
        )
        assert forest.node_ids == ["3", "5"]

    def test_no_match_gives_empty_forest(self, sample_items):
        forest = BrowseTreeBuilder.build(sample_items, search="zzz")
        assert forest.roots == []
        assert forest.filtered

    def test_synthetic_borrows_from_filtered_out_item(self):
        items = [
            _item(1, "3", 1, title="Finance"),
            _item(2, "3.1.1", 2, title="Budget approval"),
            _item(
                3,
                "3.1",
                3,
                title="Planning",
                function_name="Corproate Finance",
                approvers=[Approver(role="CFO", action="X1")],
            ),
        ]
        forest = BrowseTreeBuilder.build(items, search="budget")
        synthetic = forest.find("section:3.1")
        assert synthetic is not None
        assert synthetic.title == "Planning"
        assert synthetic.function_name == "Corporate Finance"
        assert [a.role for a in synthetic.approvers] == ["CFO"]
        assert forest.find("3") is None
        assert _parent_map(forest)["2"] == "section:3.1"


# ===================================================================
# Properties
# ===================================================================


class TestBuildProperties:
    """Structural guarantees of every build."""

    def _messy_items(self) -> list[BrowseItem]:
        return [
            _item(1, "2", 1),
            _item(2, "2.1", 2, parent_code="2"),
            _item(3, "2", 5),
            _item(4, "2.1.3.", 6),
            _item(5, "5.2", 7, parent_code="5.2"),
            _item(6, "9.9.9", 8, parent_code="8.8"),
            _item(7, "1", 9),
            _item(8, "1.4", 10, parent_code="1.3"),
        ]

    def test_idempotent(self):
        items = self._messy_items()
        first = BrowseTreeBuilder.build(items)
        second = BrowseTreeBuilder.build(items)
        assert first.to_dict() == second.to_dict()

    def test_idempotent_with_filter(self, sample_items):
        first = BrowseTreeBuilder.build(sample_items, search="hiring")
        second = BrowseTreeBuilder.build(sample_items, search="hiring")
        assert first.to_dict() == second.to_dict()

    def test_every_item_exactly_once(self):
        items = self._messy_items()
        forest = BrowseTreeBuilder.build(items)
        real_ids = [n.id for n in forest.iter_nodes() if not n.is_synthetic]
        assert sorted(real_ids) == sorted(item.id for item in items)

    def test_no_orphans(self):
        forest = BrowseTreeBuilder.build(self._messy_items())
        reachable = {n.key for n in forest.iter_nodes()}
        assert reachable == set(forest.node_ids)
        assert len(forest.node_ids) == forest.total_nodes

    def test_parents_walk_toward_shorter_codes(self):
        forest = BrowseTreeBuilder.build(self._messy_items())
        for node in forest.iter_nodes():
            for child in node.children:
                assert node.depth < child.depth

    def test_at_most_one_synthetic_per_code(self):
        forest = BrowseTreeBuilder.build(self._messy_items())
        synthetic = [n.code for n in forest.iter_nodes() if n.is_synthetic]
        assert len(synthetic) == len(set(synthetic))
