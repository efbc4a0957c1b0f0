"""
Hierarchy module - Core of the DOA browse view.

This module rebuilds the document's nested numbering from flat coded items.
"""

from doa.src.hierarchy.builder import BrowseTreeBuilder
from doa.src.hierarchy.codes import clean_code, code_depth, compare_codes
from doa.src.hierarchy.filters import collect_function_names, normalize_function
from doa.src.hierarchy.tree import (
    BrowseForest,
    BrowseNode,
    NodeId,
    RealNodeId,
    SyntheticNodeId,
)

__all__ = [
    "BrowseTreeBuilder",
    "BrowseForest",
    "BrowseNode",
    "NodeId",
    "RealNodeId",
    "SyntheticNodeId",
    "clean_code",
    "code_depth",
    "compare_codes",
    "collect_function_names",
    "normalize_function",
]
