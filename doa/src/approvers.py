"""Approval chain token parsing and ordering.

Action tokens follow the pattern ``[IREXN]\\d*\\*?``:

- I = Initiate, R = Review, E = Endorse, X = Approve, N = Notify
- the optional number is the level within the group
- the optional ``*`` marks a conditional approval
- ``EX`` is the highest endorsement (group E, level 10)

Chains are ordered I -> R -> E -> X -> N, then by level, with
unconditional entries before conditional ones at the same level.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

T = TypeVar("T")

GROUP_PRIORITY: dict[str, int] = {"I": 0, "R": 1, "E": 2, "X": 3, "N": 4}
# Unknown groups sort with N, last
_UNKNOWN_PRIORITY = 4

# Level for a bare group letter: after explicitly numbered tokens
DEFAULT_LEVEL = 100
# Level for tokens that could not be parsed
UNPARSED_LEVEL = 999
UNKNOWN_GROUP = "Z"

_TOKEN_RE = re.compile(r"^([IREXN])([0-9]*)$")
_LEADING_LETTER_RE = re.compile(r"^([A-Z])")
_DIGITS_RE = re.compile(r"([0-9]+)")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ActionToken:
    """Parsed form of an approval action string.

    Attributes:
        group: One of I, R, E, X, N, a best-effort letter, or Z (unknown).
        level: Level within the group (100 = unnumbered, 999 = unparseable).
        original: Normalized display form ("X1", "EX*", ...).
        has_star: Whether the token carried a ``*`` marker.
    """

    group: str
    level: int
    original: str
    has_star: bool


def parse_action_token(action: str | None) -> ActionToken:
    """Parse an approval action string into group, level and display form.

    Examples:
    "x1" -> ActionToken("X", 1, "X1", False)
    "E3*" -> ActionToken("E", 3, "E3*", True)
    "EX" -> ActionToken("E", 10, "EX", False)
    "R" -> ActionToken("R", 100, "R", False)

    Args:
        action: Raw action string, possibly None or empty.

    Returns:
        The parsed token. Never raises.
    """
    if not action or not isinstance(action, str):
        return ActionToken(UNKNOWN_GROUP, UNPARSED_LEVEL, "", False)

    stripped = _WHITESPACE_RE.sub("", action)
    upper = stripped.upper()
    has_star = "*" in upper
    normalized = upper.replace("*", "")

    if normalized == "EX":
        return ActionToken("E", 10, "EX*" if has_star else "EX", has_star)

    match = _TOKEN_RE.match(normalized)
    if match is None:
        group_match = _LEADING_LETTER_RE.match(normalized)
        digits_match = _DIGITS_RE.search(normalized)
        return ActionToken(
            group=group_match.group(1) if group_match else UNKNOWN_GROUP,
            level=int(digits_match.group(1)) if digits_match else UNPARSED_LEVEL,
            original=upper if has_star else stripped,
            has_star=has_star,
        )

    group, digits = match.group(1), match.group(2)
    level = int(digits) if digits else DEFAULT_LEVEL
    display = f"{group}{digits}*" if has_star else f"{group}{digits}"
    return ActionToken(group, level, display, has_star)


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _with_action(entry: T, action: str) -> T:
    """Copy an approver entry with a replaced action, keeping its type."""
    if isinstance(entry, Mapping):
        return {**entry, "action": action}  # type: ignore[return-value]
    if dataclasses.is_dataclass(entry) and not isinstance(entry, type):
        return dataclasses.replace(entry, action=action)
    raise TypeError(f"Unsupported approver entry: {type(entry).__name__}")


def _normalize_role(role: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", (role or "").strip()).lower()


def dedup_key(role: str | None, token: ActionToken) -> str:
    """Key under which two approver entries count as the same requirement."""
    return f"{_normalize_role(role)}|{token.original.upper().replace('*', '')}"


def normalize_approvers(approvers: Sequence[T] | None) -> list[T]:
    """Deduplicate and order an approval chain for display.

    The first occurrence of each (role, token) pair wins; the role is
    compared trimmed, whitespace-collapsed and lower-cased, the token
    upper-cased without its star. Entries are then ordered by group
    precedence, level, unconditional-before-conditional, and input
    position. Each returned entry is a copy of the input entry (dict or
    dataclass) with ``action`` replaced by the normalized display form.

    Args:
        approvers: Entries with ``role`` and ``action`` (dicts or dataclasses).

    Returns:
        New list; the input is not modified.

    Raises:
        TypeError: If an entry is neither a mapping nor a dataclass
            instance. Approvers loaded from storage or the API are always
            ``Approver`` dataclasses, so data defects never reach this.
    """
    if not approvers:
        return []

    seen: set[str] = set()
    kept: list[tuple[int, ActionToken, T]] = []
    for index, entry in enumerate(approvers):
        token = parse_action_token(_field(entry, "action"))
        key = dedup_key(_field(entry, "role"), token)
        if key in seen:
            continue
        seen.add(key)
        kept.append((index, token, entry))

    kept.sort(
        key=lambda row: (
            GROUP_PRIORITY.get(row[1].group, _UNKNOWN_PRIORITY),
            row[1].level,
            row[1].has_star,
            row[0],
        )
    )
    return [_with_action(entry, token.original) for _, token, entry in kept]
