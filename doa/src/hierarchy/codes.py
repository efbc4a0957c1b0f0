"""
Authority code helpers.

DOA codes are dot-separated positive integers ("4.2.3.1"). Source data
sometimes carries a trailing dot ("3.8.1.") which is stripped before use.
"""

from __future__ import annotations

from functools import cmp_to_key


def clean_code(code: str | None) -> str:
    """Strip one trailing dot from a code.

    Args:
        code: Raw code string, e.g. "3.8.1.".

    Returns:
        The cleaned code ("3.8.1"), or "" for None.
    """
    if not code:
        return ""
    return code[:-1] if code.endswith(".") else code


def code_depth(code: str) -> int:
    """Count the segments of a code after cleaning.

    Args:
        code: A code string like "4.2.3".

    Returns:
        Number of components (e.g., "4.2.3" -> 3).
    """
    return len(clean_code(code).split("."))


def parent_of(code: str) -> str:
    """Drop the last segment of a cleaned code.

    Examples:
    "4.2.3.2" -> "4.2.3"
    "4" -> ""
    """
    parts = clean_code(code).split(".")
    if len(parts) <= 1:
        return ""
    return ".".join(parts[:-1])


def ancestor_codes(code: str) -> list[str]:
    """List every prefix of a code from the most ancestral outwards.

    Example: "3.1.2" -> ["3", "3.1", "3.1.2"]
    """
    parts = clean_code(code).split(".")
    return [".".join(parts[: i + 1]) for i in range(len(parts))]


def _segment_value(segment: str) -> int:
    try:
        return int(segment)
    except ValueError:
        return 0


def compare_codes(a: str, b: str) -> int:
    """Compare two cleaned codes numerically, segment by segment.

    Missing or non-numeric segments count as 0, so "1" and "1.0" compare
    equal and "2" sorts before "10".

    Args:
        a: First code.
        b: Second code.

    Returns:
        Negative, zero, or positive like a classic comparator.
    """
    parts_a = [_segment_value(p) for p in a.split(".")]
    parts_b = [_segment_value(p) for p in b.split(".")]
    for i in range(max(len(parts_a), len(parts_b))):
        val_a = parts_a[i] if i < len(parts_a) else 0
        val_b = parts_b[i] if i < len(parts_b) else 0
        if val_a != val_b:
            return val_a - val_b
    return 0


code_sort_key = cmp_to_key(compare_codes)
