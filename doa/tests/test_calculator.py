"""Tests for the approval calculator."""

from __future__ import annotations

import pytest

from doa.src.calculator import (
    COUNT_X_SETTING,
    ApprovalCalculator,
    CalculatorInput,
)
from doa.src.models import ContractType, Country, RiskLevel, Threshold, ThresholdApprover
from doa.src.storage import DoaStorage

M = 1_000_000

# ===================================================================
# Helpers
# ===================================================================

_CHAINS: dict[str, list[tuple[str, str]]] = {
    "over-200m": [("CEO", "E1"), ("BOD", "X")],
    "50m-200m": [("CEO", "E1"), ("ExCom", "X")],
    "capex-over-10m": [("CEO", "E1"), ("ExCom", "X")],
    "30m-50m": [("CFO", "X2"), ("CEO", "X4")],
    "5m-30m": [("CFO", "X2"), ("COO", "X3")],
    "under-5m": [("Marketing & Commercial", "X1"), ("CFO", "X2")],
    "high-risk": [("CEO", "X4"), ("CFO", "R1")],
    "epf-50m": [("COO", "X3")],
    "nb-over-50m": [("CEO", "X4")],
    "nb-18m-50m": [("COO", "X3")],
    "nb-under-18m": [("Marketing & Commercial", "X1")],
    "ds-markup-low": [("COO", "X3")],
    "ds-markup-high": [("CFO", "X2")],
    "ds-low-margin": [("CEO", "X4")],
    "ds-30m-50m": [("CEO", "X4")],
    "ds-18m-30m": [("COO", "X3")],
    "ds-1m-18m": [("CFO", "X2")],
    "ds-under-1m": [("Marketing & Commercial", "X1")],
}


def _threshold_type(threshold_id: str) -> str:
    if threshold_id.startswith("nb-"):
        return "non_binding_rfq"
    if threshold_id.startswith("ds-"):
        return "direct_sales"
    return "commercial"


@pytest.fixture
def store(memory_store: DoaStorage) -> DoaStorage:
    """Storage seeded with every threshold the calculator can select."""
    for order, (threshold_id, chain) in enumerate(_CHAINS.items()):
        memory_store.create_threshold(
            Threshold(
                id=None,
                threshold_id=threshold_id,
                type=_threshold_type(threshold_id),
                name=f"Tier {threshold_id}",
                code="4.2",
                notes="Seeded",
                sort_order=order,
                approvers=[
                    ThresholdApprover(role=role, action=action, sort_order=i)
                    for i, (role, action) in enumerate(chain)
                ],
            )
        )
    memory_store.create_country(Country(id=None, name="Oman", risk_level=RiskLevel.SAFE))
    memory_store.create_country(Country(id=None, name="Egypt", risk_level=RiskLevel.SPECIAL))
    memory_store.create_country(Country(id=None, name="Iraq", risk_level=RiskLevel.HIGH_RISK))
    return memory_store


@pytest.fixture
def calculator(store: DoaStorage) -> ApprovalCalculator:
    return ApprovalCalculator(store)


def _evaluate(calculator: ApprovalCalculator, **kwargs) -> str | None:
    result = calculator.evaluate(CalculatorInput(**kwargs))
    return result.threshold.id if result.threshold else None


# ===================================================================
# Flags
# ===================================================================


class TestFlags:
    """Tests for derived risk indicators."""

    def test_non_positive_value_has_no_threshold(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=0, capex_value=5 * M))
        assert result.threshold is None
        assert result.approvers == []
        assert result.flags.capex_percentage == 0

    def test_capex_percentage(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=10 * M, capex_value=2 * M))
        assert result.flags.capex_percentage == pytest.approx(20.0)
        assert result.flags.is_capex_exceeds_10_percent

    def test_low_operating_profit(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=1 * M, operating_profit_percent=10)
        )
        assert result.flags.is_low_operating_profit

    def test_country_flags(self, calculator):
        special = calculator.evaluate(CalculatorInput(contract_value=1, selected_country="Egypt"))
        assert special.flags.is_special_country
        assert not special.flags.is_high_risk
        risky = calculator.evaluate(CalculatorInput(contract_value=1, selected_country="Iraq"))
        assert risky.flags.is_high_risk

    def test_unknown_country_is_not_risky(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=1, selected_country="Nowhere"))
        assert not result.flags.is_high_risk
        assert not result.flags.is_special_country


# ===================================================================
# Band selection
# ===================================================================


class TestStandardBands:
    """Standard contract decision table."""

    @pytest.mark.parametrize(
        ("value", "capex", "expected"),
        [
            (250 * M, 0, "over-200m"),
            (250 * M, 50 * M, "over-200m"),
            (100 * M, 0, "50m-200m"),
            (100 * M, 20 * M, "capex-over-10m"),
            (40 * M, 0, "30m-50m"),
            (40 * M, 11 * M, "capex-over-10m"),
            (10 * M, 0, "5m-30m"),
            (10 * M, 6 * M, "30m-50m"),
            (3 * M, 0, "under-5m"),
            (3 * M, 12 * M, "capex-over-10m"),
            (3 * M, 6 * M, "30m-50m"),
        ],
    )
    def test_bands(self, calculator, value, capex, expected):
        assert _evaluate(calculator, contract_value=value, capex_value=capex) == expected


class TestSmallContractEscalation:
    """COO-level escalation for standard contracts up to 5M."""

    def test_capex_over_ten_percent(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=3 * M, capex_value=1 * M))
        assert result.threshold.id == "5m-30m-escalated"
        assert result.threshold.code == "4.2.3.1.2"
        assert result.flags.was_escalated
        assert result.flags.escalation_reason == "Capex exceeds 10% of TCV"
        assert [(a.role, a.action) for a in result.approvers] == [
            ("Marketing & Commercial", "X1"),
            ("CFO", "X2"),
            ("COO", "X3"),
        ]

    def test_low_operating_profit(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=3 * M, operating_profit_percent=8)
        )
        assert result.flags.escalation_reason == "Operating Profit <= 10%"
        assert "Operating Profit" in result.threshold.name

    def test_both_factors(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=3 * M, capex_value=1 * M, operating_profit_percent=5)
        )
        assert result.threshold.name == "<= SAR 5M (Escalated - Multiple Factors)"

    def test_not_applied_above_five_million(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=10 * M, capex_value=2 * M, operating_profit_percent=5)
        )
        assert result.threshold.id == "5m-30m"
        assert not result.flags.was_escalated


class TestOtherContractTypes:
    """Non-binding, high-risk, EPF and direct sales routes."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(60 * M, "nb-over-50m"), (20 * M, "nb-18m-50m"), (1 * M, "nb-under-18m")],
    )
    def test_non_binding(self, calculator, value, expected):
        assert (
            _evaluate(calculator, contract_value=value, contract_type=ContractType.NON_BINDING)
            == expected
        )

    def test_non_binding_ignores_country_risk(self, calculator):
        threshold_id = _evaluate(
            calculator,
            contract_value=1 * M,
            contract_type=ContractType.NON_BINDING,
            selected_country="Iraq",
        )
        assert threshold_id == "nb-under-18m"

    def test_manual_high_risk(self, calculator):
        assert _evaluate(calculator, contract_value=1 * M, manual_high_risk=True) == "high-risk"

    def test_high_risk_country(self, calculator):
        threshold_id = _evaluate(
            calculator,
            contract_value=300 * M,
            contract_type=ContractType.EPF,
            selected_country="Iraq",
        )
        assert threshold_id == "high-risk"

    @pytest.mark.parametrize(
        ("value", "capex", "expected"),
        [
            (40 * M, 5 * M, "epf-50m"),
            (40 * M, 15 * M, "capex-over-10m"),
            (100 * M, 0, "50m-200m"),
            (300 * M, 0, "over-200m"),
        ],
    )
    def test_epf(self, calculator, value, capex, expected):
        threshold_id = _evaluate(
            calculator, contract_value=value, capex_value=capex, contract_type=ContractType.EPF
        )
        assert threshold_id == expected

    @pytest.mark.parametrize(
        ("value", "capex", "markup", "expected"),
        [
            (300 * M, 0, 0, "over-200m"),
            (10 * M, 12 * M, 0, "capex-over-10m"),
            (60 * M, 0, 0, "50m-200m"),
            (10 * M, 6 * M, 0, "30m-50m"),
            (10 * M, 0, 10, "ds-markup-low"),
            (10 * M, 0, 25, "ds-markup-high"),
        ],
    )
    def test_direct_sales_markup(self, calculator, value, capex, markup, expected):
        threshold_id = _evaluate(
            calculator,
            contract_value=value,
            capex_value=capex,
            markup_percent=markup,
            contract_type=ContractType.DIRECT_SALES_MARKUP,
        )
        assert threshold_id == expected

    @pytest.mark.parametrize(
        ("value", "capex", "margin", "expected"),
        [
            (300 * M, 0, 100, "over-200m"),
            (60 * M, 20 * M, 100, "capex-over-10m"),
            (60 * M, 0, 100, "50m-200m"),
            (10 * M, 0, 30, "ds-low-margin"),
            (40 * M, 0, 100, "ds-30m-50m"),
            (20 * M, 0, 100, "ds-18m-30m"),
            (5 * M, 0, 100, "ds-1m-18m"),
            (1 * M, 0, 100, "ds-under-1m"),
        ],
    )
    def test_direct_sales(self, calculator, value, capex, margin, expected):
        threshold_id = _evaluate(
            calculator,
            contract_value=value,
            capex_value=capex,
            gross_margin=margin,
            contract_type=ContractType.DIRECT_SALES,
        )
        assert threshold_id == expected

    def test_missing_threshold_gives_no_result(self, memory_store):
        result = ApprovalCalculator(memory_store).evaluate(CalculatorInput(contract_value=1 * M))
        assert result.threshold is None
        assert result.approvers == []


# ===================================================================
# Special countries
# ===================================================================


class TestSpecialCountry:
    """CEO escalation for special countries."""

    def test_escalates_when_no_ceo_approval(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=3 * M, selected_country="Egypt")
        )
        assert result.threshold.id == "special-country-ceo"
        assert result.threshold.name == "Tier under-5m (Special Country - CEO Required)"
        assert "SPECIAL COUNTRY: Egypt" in result.threshold.notes
        assert result.flags.escalation_reason == "Special Country: Egypt requires CEO approval"
        assert [a.role for a in result.approvers] == [
            "Marketing & Commercial",
            "CFO",
            "COO",
            "CEO",
        ]

    def test_board_approval_satisfies_rule(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=250 * M, selected_country="Egypt")
        )
        assert result.threshold.id == "over-200m"
        assert not result.flags.was_escalated

    def test_numbered_ceo_approval_satisfies_rule(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(contract_value=40 * M, selected_country="Egypt")
        )
        assert result.threshold.id == "30m-50m"

    def test_not_applied_to_non_binding(self, calculator):
        result = calculator.evaluate(
            CalculatorInput(
                contract_value=1 * M,
                contract_type=ContractType.NON_BINDING,
                selected_country="Egypt",
            )
        )
        assert result.threshold.id == "nb-under-18m"


# ===================================================================
# Approver output
# ===================================================================


class TestApproverOutput:
    """Normalization and bare-X exclusion."""

    def test_bare_x_excluded_by_default(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=250 * M))
        assert [(a.role, a.action) for a in result.approvers] == [("CEO", "E1")]
        assert [(a.role, a.action) for a in result.excluded_approvers] == [("BOD", "X")]

    def test_bare_x_counted_when_enabled(self, calculator, store):
        store.set_setting(COUNT_X_SETTING, {"enabled": True})
        result = calculator.evaluate(CalculatorInput(contract_value=250 * M))
        assert [a.action for a in result.approvers] == ["E1", "X"]
        assert result.excluded_approvers == []

    def test_approvers_sorted(self, calculator):
        result = calculator.evaluate(CalculatorInput(contract_value=1 * M, manual_high_risk=True))
        assert [a.action for a in result.approvers] == ["R1", "X4"]

    def test_to_dict(self, calculator):
        data = calculator.evaluate(CalculatorInput(contract_value=250 * M)).to_dict()
        assert data["threshold"]["id"] == "over-200m"
        assert data["excluded_approvers"][0]["role"] == "BOD"
        assert data["flags"]["was_escalated"] is False


# ===================================================================
# Cache
# ===================================================================


class TestCache:
    """Threshold and country caching."""

    def test_countries_cached_until_cleared(self, calculator, store):
        assert "Qatar" not in calculator.countries()
        store.create_country(Country(id=None, name="Qatar", risk_level=RiskLevel.SPECIAL))
        assert "Qatar" not in calculator.countries()
        calculator.clear_cache()
        assert "Qatar" in calculator.countries()

    def test_thresholds_by_type(self, calculator):
        grouped = calculator.thresholds_by_type()
        assert set(grouped) == {"commercial", "non_binding_rfq", "direct_sales"}
        assert [t.threshold_id for t in grouped["non_binding_rfq"]] == [
            "nb-over-50m",
            "nb-18m-50m",
            "nb-under-18m",
        ]
