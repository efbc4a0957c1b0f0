"""Data-quality diagnostics for DOA approval chains.

Flags chains with no usable tokens, tokens outside the I/R/E/X/N
scheme, and role/action pairs listed twice on the same item. Issues are
reported, never raised: the browse view still renders such items.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from doa.src.models import BrowseItem

logger = logging.getLogger(__name__)

_VALID_TOKEN_RE = re.compile(r"^[IREXN]\d*\*?$", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_EX_TOKENS = frozenset({"EX", "EX*"})


class IssueKind(str, Enum):
    """Category of a data-quality issue."""

    CHAIN_PARSES_EMPTY = "chain_parses_empty"
    UNRECOGNIZED_TOKEN = "unrecognized_token"
    DUPLICATE_PAIR = "duplicate_pair"


@dataclass
class DataIssue:
    """A single data-quality finding.

    Attributes:
        code: Code of the affected item.
        issue: Issue category.
        detail: Human-readable description.
    """

    code: str
    issue: IssueKind
    detail: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"code": self.code, "issue": self.issue.value, "detail": self.detail}


def _strip(action: str) -> str:
    return _WHITESPACE_RE.sub("", action)


def validate_doa_data(items: Iterable[BrowseItem] | None) -> list[DataIssue]:
    """Run approval-chain diagnostics over a list of items.

    Args:
        items: Items to check.

    Returns:
        List of issues (empty list = all clear).
    """
    if not items:
        return []

    issues: list[DataIssue] = []
    checked = 0
    for item in items:
        checked += 1
        chain = item.approvers
        if not chain:
            continue

        valid = [a for a in chain if a.action and _VALID_TOKEN_RE.match(_strip(a.action))]
        if not valid:
            issues.append(
                DataIssue(
                    code=item.code,
                    issue=IssueKind.CHAIN_PARSES_EMPTY,
                    detail=f"Chain has {len(chain)} entries but no valid tokens",
                )
            )

        for approver in chain:
            if not approver.action:
                continue
            normalized = _strip(approver.action).upper()
            if not _VALID_TOKEN_RE.match(normalized) and normalized not in _EX_TOKENS:
                issues.append(
                    DataIssue(
                        code=item.code,
                        issue=IssueKind.UNRECOGNIZED_TOKEN,
                        detail=(
                            f'Role "{approver.role}" has unrecognized token '
                            f'"{approver.action}"'
                        ),
                    )
                )

        seen: set[str] = set()
        for approver in chain:
            key = f"{approver.role}:{approver.action}"
            if key in seen:
                issues.append(
                    DataIssue(
                        code=item.code,
                        issue=IssueKind.DUPLICATE_PAIR,
                        detail=f"Duplicate (role, token) pair: {key}",
                    )
                )
            seen.add(key)

    logger.info("Validated %d DOA items: %d issues found", checked, len(issues))
    return issues
