"""DOA data models.

Defines domain models for browse items and their approval chains,
roles, countries, value thresholds, users, and application settings.
All models use dataclasses with dictionary serialization. Integer IDs
are assigned by storage on insert.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RiskLevel(str, Enum):
    """Risk classification of a country."""

    SAFE = "safe"
    SPECIAL = "special"
    HIGH_RISK = "high_risk"


class UserRole(str, Enum):
    """Access level of an application user."""

    ADMIN = "admin"
    VIEWER = "viewer"


class ContractType(str, Enum):
    """Contract categories understood by the approval calculator."""

    STANDARD = "standard"
    NON_BINDING = "nonBinding"
    DIRECT_SALES = "directSales"
    DIRECT_SALES_MARKUP = "directSalesMarkup"
    EPF = "epf"


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class Approver:
    """One entry in an item's approval chain.

    Attributes:
        role: Role name, e.g. "CEO".
        action: Raw action token, e.g. "X1", "E3*", "EX".
        kind: Optional classification carried from source data.
        label: Optional display label.
    """

    role: str
    action: str
    kind: str = ""
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "role": self.role,
            "action": self.action,
            "kind": self.kind,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Approver:
        """Deserialize from dictionary."""
        return cls(
            role=data.get("role", ""),
            action=data.get("action", ""),
            kind=data.get("kind", "") or "",
            label=data.get("label", "") or "",
        )


@dataclass
class BrowseItem:
    """A single coded row of the DOA document.

    Attributes:
        id: Unique identifier within one load of data.
        code: Dot-separated code, possibly with a trailing dot.
        title: Display title.
        parent_code: Intended parent's code, when the source provides one.
        description: Optional long description.
        comments: Optional comments.
        function_name: Owning function, as written in the source data.
        sort_order: Canonical document order.
        approvers: Approval chain in source order.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: int | None
    code: str
    title: str
    parent_code: str | None = None
    description: str | None = None
    comments: str | None = None
    function_name: str | None = None
    sort_order: int = 0
    approvers: list[Approver] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "code": self.code,
            "parent_code": self.parent_code,
            "title": self.title,
            "description": self.description,
            "comments": self.comments,
            "function_name": self.function_name,
            "sort_order": self.sort_order,
            "approvers": [a.to_dict() for a in self.approvers],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BrowseItem:
        """Deserialize from dictionary.

        Timestamps are optional so that plain exported rows can be loaded.
        """
        now = datetime.now()
        return cls(
            id=data.get("id"),
            code=data["code"],
            title=data.get("title", ""),
            parent_code=data.get("parent_code"),
            description=data.get("description"),
            comments=data.get("comments"),
            function_name=data.get("function_name"),
            sort_order=data.get("sort_order", 0),
            approvers=[Approver.from_dict(a) for a in data.get("approvers", [])],
            created_at=_parse_dt(data.get("created_at")) or now,
            updated_at=_parse_dt(data.get("updated_at")) or now,
        )


@dataclass
class Role:
    """A role that can appear in approval chains."""

    id: int | None
    name: str
    sort_order: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Country:
    """A country and its risk level for calculator escalation."""

    id: int | None
    name: str
    risk_level: RiskLevel = RiskLevel.SAFE
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "risk_level": self.risk_level.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ThresholdApprover:
    """An approver attached to a value threshold."""

    role: str
    action: str
    label: str = "Approve"
    sort_order: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "role": self.role,
            "action": self.action,
            "label": self.label,
            "sort_order": self.sort_order,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThresholdApprover:
        """Deserialize from dictionary."""
        return cls(
            role=data["role"],
            action=data["action"],
            label=data.get("label") or "Approve",
            sort_order=data.get("sort_order", 0),
        )


@dataclass
class Threshold:
    """A value-based approval tier.

    Attributes:
        id: Storage primary key.
        threshold_id: Stable string key used by the calculator ("over-200m").
        type: Threshold family ("commercial", "non_binding_rfq", ...).
        name: Display name.
        code: DOA code the tier comes from ("4.2.2.1").
        min_value: Lower contract value bound.
        max_value: Upper contract value bound.
        min_capex: Lower capex bound.
        max_capex: Upper capex bound.
        min_markup: Lower markup bound (percent).
        max_markup: Upper markup bound (percent).
        max_gross_margin: Gross margin ceiling (percent).
        condition_text: Free-text condition shown to users.
        notes: Free-text notes.
        sort_order: Display order.
        approvers: Approval chain for this tier.
    """

    id: int | None
    threshold_id: str
    type: str
    name: str
    code: str
    min_value: float | None = None
    max_value: float | None = None
    min_capex: float | None = None
    max_capex: float | None = None
    min_markup: float | None = None
    max_markup: float | None = None
    max_gross_margin: float | None = None
    condition_text: str | None = None
    notes: str | None = None
    sort_order: int = 0
    approvers: list[ThresholdApprover] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "threshold_id": self.threshold_id,
            "type": self.type,
            "name": self.name,
            "code": self.code,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "min_capex": self.min_capex,
            "max_capex": self.max_capex,
            "min_markup": self.min_markup,
            "max_markup": self.max_markup,
            "max_gross_margin": self.max_gross_margin,
            "condition_text": self.condition_text,
            "notes": self.notes,
            "sort_order": self.sort_order,
            "approvers": [a.to_dict() for a in self.approvers],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class User:
    """An application user."""

    id: int | None
    email: str
    display_name: str
    role: UserRole = UserRole.VIEWER
    is_active: bool = True
    last_login_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.value,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class AppSetting:
    """A JSON-valued application setting."""

    key: str
    value: Any
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": self.updated_at.isoformat(),
        }
