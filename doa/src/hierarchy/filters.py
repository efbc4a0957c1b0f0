"""Search and function-name filtering for browse items."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from doa.src.models import BrowseItem

# Known typos and variants in the source data's function column.
# Keys are matched after trimming.
_FUNCTION_CORRECTIONS: dict[str, str] = {
    "Human Recourses": "Human Resources",
    "Corporate  Finance": "Corporate Finance",
    "Corproate Finance": "Corporate Finance",
    "End user all functions": "End User",
    "End user of all functions": "End User",
    "End user": "End User",
    "Commercial and Marketing": "Commercial & Marketing",
    "Corporate Treasury": "Corporate Treasury",
    "TAQA General Assebmbly": "TAQA General Assembly",
}


def normalize_function(name: str | None) -> str:
    """Correct known typos and inconsistencies in a function name.

    Args:
        name: Raw function name from the data, possibly None.

    Returns:
        The corrected name, the trimmed input when no correction applies,
        or "" for missing/blank names.
    """
    if not name:
        return ""
    trimmed = name.strip()
    return _FUNCTION_CORRECTIONS.get(trimmed, trimmed)


def matches_search(item: BrowseItem, term: str) -> bool:
    """Case-insensitive substring match over code, title, description, comments."""
    needle = term.lower()
    fields = (item.code, item.title, item.description, item.comments)
    return any(needle in value.lower() for value in fields if value)


def matches_function(item: BrowseItem, function_name: str) -> bool:
    """Exact match of the item's normalized function name."""
    return normalize_function(item.function_name) == function_name


def collect_function_names(
    functions: Iterable[str | None],
    items: Iterable[BrowseItem] = (),
) -> list[str]:
    """Build the sorted, deduplicated list of function names for filtering.

    Names come from the known-function list and from the items themselves,
    in case the list misses any.

    Args:
        functions: Known function names (raw).
        items: Browse items whose function names are also collected.

    Returns:
        Sorted list of distinct normalized names, blanks dropped.
    """
    names: set[str] = set()
    for raw in functions:
        normalized = normalize_function(raw)
        if normalized:
            names.add(normalized)
    for item in items:
        normalized = normalize_function(item.function_name)
        if normalized:
            names.add(normalized)
    return sorted(names)
