"""Approval calculator.

Maps a contract's value, capex, type and country to the DOA value
threshold that governs it and to the ordered approval chain of that
threshold. Thresholds and countries are read from storage once and
cached until ``clear_cache`` is called.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from doa.src.approvers import normalize_approvers
from doa.src.models import ContractType, Country, RiskLevel, Threshold, ThresholdApprover
from doa.src.storage import DoaStorage

logger = logging.getLogger(__name__)

COUNT_X_SETTING = "count_x_without_number"

_M = 1_000_000

# Roles whose X approval already satisfies the special-country rule
_HIGH_LEVEL_ROLES = frozenset({"BOD", "ExCom", "General Assembly"})
_NUMBERED_X_RE = re.compile(r"^X\d+")

_COO_CHAIN = (
    ("Marketing & Commercial", "X1"),
    ("CFO", "X2"),
    ("COO", "X3"),
)
_CEO_CHAIN = _COO_CHAIN + (("CEO", "X4"),)

_ESCALATED_CODE = "4.2.3.1.2"
_ESCALATED_ID = "5m-30m-escalated"


def _chain(pairs: tuple[tuple[str, str], ...]) -> list[ThresholdApprover]:
    return [
        ThresholdApprover(role=role, action=action, sort_order=i)
        for i, (role, action) in enumerate(pairs)
    ]


@dataclass
class CalculatorInput:
    """Contract parameters for an approval evaluation.

    Attributes:
        contract_value: Total contract value (SAR).
        capex_value: Capital expenditure (SAR).
        contract_type: Contract category.
        selected_country: Country name as stored.
        manual_high_risk: Force the high-risk route.
        gross_margin: Gross margin percent.
        operating_profit_percent: Operating profit percent.
        markup_percent: Markup percent (direct sales with markup).
    """

    contract_value: float = 0.0
    capex_value: float = 0.0
    contract_type: ContractType = ContractType.STANDARD
    selected_country: str = ""
    manual_high_risk: bool = False
    gross_margin: float = 100.0
    operating_profit_percent: float = 45.0
    markup_percent: float = 0.0


@dataclass
class ThresholdSummary:
    """The threshold an evaluation landed on."""

    id: str
    type: str
    name: str
    code: str
    notes: str | None = None

    @classmethod
    def from_threshold(cls, threshold: Threshold) -> ThresholdSummary:
        return cls(
            id=threshold.threshold_id,
            type=threshold.type,
            name=threshold.name,
            code=threshold.code,
            notes=threshold.notes,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "code": self.code,
            "notes": self.notes,
        }


@dataclass
class CalculatorFlags:
    """Risk indicators derived from the input."""

    is_high_risk: bool = False
    is_special_country: bool = False
    is_capex_exceeds_10_percent: bool = False
    is_low_operating_profit: bool = False
    capex_percentage: float = 0.0
    was_escalated: bool = False
    escalation_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "is_high_risk": self.is_high_risk,
            "is_special_country": self.is_special_country,
            "is_capex_exceeds_10_percent": self.is_capex_exceeds_10_percent,
            "is_low_operating_profit": self.is_low_operating_profit,
            "capex_percentage": self.capex_percentage,
            "was_escalated": self.was_escalated,
            "escalation_reason": self.escalation_reason,
        }


@dataclass
class CalculatorResult:
    """Outcome of an approval evaluation.

    Attributes:
        threshold: Matched threshold, or None when nothing applies.
        approvers: Normalized approval chain.
        excluded_approvers: Bare ``X`` approvers left out of the count.
        flags: Risk indicators and escalation details.
    """

    threshold: ThresholdSummary | None
    approvers: list[ThresholdApprover] = field(default_factory=list)
    excluded_approvers: list[ThresholdApprover] = field(default_factory=list)
    flags: CalculatorFlags = field(default_factory=CalculatorFlags)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "threshold": self.threshold.to_dict() if self.threshold else None,
            "approvers": [a.to_dict() for a in self.approvers],
            "excluded_approvers": [a.to_dict() for a in self.excluded_approvers],
            "flags": self.flags.to_dict(),
        }


class ApprovalCalculator:
    """Evaluates contracts against the DOA value thresholds.

    Args:
        storage: Storage providing thresholds, countries and settings.
    """

    def __init__(self, storage: DoaStorage) -> None:
        self._storage = storage
        self._thresholds: dict[str, Threshold] | None = None
        self._countries: dict[str, Country] | None = None

    def clear_cache(self) -> None:
        """Drop cached thresholds and countries."""
        self._thresholds = None
        self._countries = None

    def thresholds(self) -> dict[str, Threshold]:
        """Thresholds keyed by threshold_id, in display order."""
        if self._thresholds is None:
            self._thresholds = {t.threshold_id: t for t in self._storage.get_thresholds()}
            logger.debug("Loaded %d thresholds", len(self._thresholds))
        return self._thresholds

    def countries(self) -> dict[str, Country]:
        """Countries keyed by name."""
        if self._countries is None:
            self._countries = {c.name: c for c in self._storage.get_countries()}
        return self._countries

    def thresholds_by_type(self) -> dict[str, list[Threshold]]:
        """All thresholds grouped by their type."""
        grouped: dict[str, list[Threshold]] = {}
        for threshold in self.thresholds().values():
            grouped.setdefault(threshold.type, []).append(threshold)
        return grouped

    def count_x_without_number(self) -> bool:
        """Whether bare ``X`` approvers count toward the chain."""
        setting = self._storage.get_setting(COUNT_X_SETTING)
        if setting is None or not isinstance(setting.value, dict):
            return False
        return bool(setting.value.get("enabled", False))

    def evaluate(self, data: CalculatorInput) -> CalculatorResult:
        """Find the governing threshold and approval chain for a contract.

        Args:
            data: Contract parameters.

        Returns:
            CalculatorResult. The threshold is None when the contract
            value is not positive or the matched threshold is not stored.
        """
        cv = data.contract_value or 0.0
        capex = data.capex_value or 0.0

        country = self.countries().get(data.selected_country)
        flags = CalculatorFlags(
            is_high_risk=data.manual_high_risk
            or (country is not None and country.risk_level == RiskLevel.HIGH_RISK),
            is_special_country=country is not None
            and country.risk_level == RiskLevel.SPECIAL,
        )
        flags.capex_percentage = (capex / cv) * 100 if cv > 0 and capex > 0 else 0.0
        flags.is_capex_exceeds_10_percent = flags.capex_percentage > 10
        flags.is_low_operating_profit = data.operating_profit_percent <= 10

        if cv <= 0:
            return CalculatorResult(threshold=None, flags=flags)

        summary: ThresholdSummary | None = None
        approvers: list[ThresholdApprover] = []

        escalated = self._small_contract_escalation(data, flags)
        if escalated is not None:
            summary, approvers = escalated
        else:
            matched = self.thresholds().get(self._select_threshold_id(data, flags))
            if matched is not None:
                summary = ThresholdSummary.from_threshold(matched)
                approvers = list(matched.approvers)

        if (
            summary is not None
            and flags.is_special_country
            and data.contract_type != ContractType.NON_BINDING
            and not self._has_ceo_level_approval(approvers)
        ):
            country_name = data.selected_country
            flags.was_escalated = True
            flags.escalation_reason = f"Special Country: {country_name} requires CEO approval"
            summary = ThresholdSummary(
                id="special-country-ceo",
                type=summary.type,
                name=f"{summary.name} (Special Country - CEO Required)",
                code=summary.code,
                notes=(
                    f"{summary.notes or ''} SPECIAL COUNTRY: {country_name} requires CEO "
                    "approval regardless of contract value per DOA special country "
                    "designation."
                ),
            )
            approvers = _chain(_CEO_CHAIN)
            logger.info("Special country escalation for %s", country_name)

        ordered = normalize_approvers(approvers)
        if self.count_x_without_number():
            included, excluded = ordered, []
        else:
            included = [a for a in ordered if a.action != "X"]
            excluded = [a for a in ordered if a.action == "X"]

        return CalculatorResult(
            threshold=summary,
            approvers=included,
            excluded_approvers=excluded,
            flags=flags,
        )

    @staticmethod
    def _has_ceo_level_approval(approvers: list[ThresholdApprover]) -> bool:
        for approver in approvers:
            if approver.role in _HIGH_LEVEL_ROLES and approver.action.startswith("X"):
                return True
            if approver.role == "CEO" and _NUMBERED_X_RE.match(approver.action):
                return True
        return False

    @staticmethod
    def _select_threshold_id(data: CalculatorInput, flags: CalculatorFlags) -> str:
        """Decision table from contract parameters to a threshold key."""
        cv = data.contract_value
        capex = data.capex_value or 0.0
        kind = data.contract_type

        # Non-binding quotes ignore country risk
        if kind == ContractType.NON_BINDING:
            if cv > 50 * _M:
                return "nb-over-50m"
            if cv > 18.75 * _M:
                return "nb-18m-50m"
            return "nb-under-18m"

        if flags.is_high_risk:
            return "high-risk"

        if kind == ContractType.EPF:
            if cv <= 50 * _M and capex <= 10 * _M:
                return "epf-50m"
            if capex > 10 * _M:
                return "capex-over-10m"
            if cv <= 200 * _M:
                return "50m-200m"
            return "over-200m"

        if kind == ContractType.DIRECT_SALES_MARKUP:
            if cv > 200 * _M:
                return "over-200m"
            if capex > 10 * _M:
                return "capex-over-10m"
            if cv > 50 * _M:
                return "50m-200m"
            if capex > 5 * _M:
                return "30m-50m"
            return "ds-markup-low" if data.markup_percent < 25 else "ds-markup-high"

        if kind == ContractType.DIRECT_SALES:
            if cv > 200 * _M:
                return "over-200m"
            if cv > 50 * _M:
                return "capex-over-10m" if capex > 10 * _M else "50m-200m"
            if data.gross_margin < 40:
                return "ds-low-margin"
            if cv > 30 * _M:
                return "ds-30m-50m"
            if cv > 18.75 * _M:
                return "ds-18m-30m"
            if cv > 1.875 * _M:
                return "ds-1m-18m"
            return "ds-under-1m"

        # Standard contracts
        if cv > 200 * _M:
            return "over-200m"
        if capex > 10 * _M:
            return "capex-over-10m"
        if cv > 50 * _M:
            return "50m-200m"
        if cv > 30 * _M or capex > 5 * _M:
            return "30m-50m"
        if cv > 5 * _M:
            return "5m-30m"
        return "under-5m"

    @staticmethod
    def _small_contract_escalation(
        data: CalculatorInput, flags: CalculatorFlags
    ) -> tuple[ThresholdSummary, list[ThresholdApprover]] | None:
        """COO-level chain for standard contracts up to 5M with weak economics.

        Returns None when the regular decision table applies.
        """
        capex = data.capex_value or 0.0
        if (
            data.contract_type != ContractType.STANDARD
            or flags.is_high_risk
            or data.contract_value > 5 * _M
            or capex > 5 * _M
        ):
            return None

        high_capex = flags.is_capex_exceeds_10_percent
        low_profit = flags.is_low_operating_profit
        if high_capex and low_profit:
            reason = "Capex exceeds 10% of TCV AND Operating Profit <= 10%"
            name = "<= SAR 5M (Escalated - Multiple Factors)"
            notes = (
                "Capex exceeds 10% of TCV AND Operating Profit <= 10%. Per 4.2.3.1.3 "
                "requirements (fully loaded Operating Profit with net income > 10%), "
                "approval escalated to 4.2.3.1.2 level (COO)."
            )
        elif high_capex:
            reason = "Capex exceeds 10% of TCV"
            name = "<= SAR 5M but Capex > 10% TCV (Escalated)"
            notes = (
                "Capex exceeds 10% of TCV. Per 4.2.3.1.3 requirements, approval "
                "escalated to 4.2.3.1.2 level (COO)."
            )
        elif low_profit:
            reason = "Operating Profit <= 10%"
            name = "<= SAR 5M but Operating Profit <= 10% (Escalated)"
            notes = (
                "Operating Profit is <= 10%. Per 4.2.3.1.3 requirements (fully loaded "
                "Operating Profit with net income > 10%), approval escalated to "
                "4.2.3.1.2 level (COO)."
            )
        else:
            return None

        flags.was_escalated = True
        flags.escalation_reason = reason
        logger.info("Small contract escalated to COO level: %s", reason)
        summary = ThresholdSummary(
            id=_ESCALATED_ID,
            type="commercial",
            name=name,
            code=_ESCALATED_CODE,
            notes=notes,
        )
        return summary, _chain(_COO_CHAIN)
