"""Tests for CIT add-backs and payable."""

from datetime import date
from decimal import Decimal

import pytest

from vntax.core.errors import InvalidPeriodError
from vntax.rules.cit import CITCalculator, CITExpenseLine
from vntax.rules.engine import RulesEngine
from vntax.rules.models import RuleAction, RuleType
from vntax.rules.repository import InMemoryRuleRepository

from tests.conftest import make_rule

EXPENSES = [
    {"line_id": "L1", "category": "ADMIN_PENALTY", "amount": "5000000"},
    {"line_id": "L2", "category": "RENT", "amount": "25000000", "payment_method": "CASH"},
    {"line_id": "L3", "category": "SALARY", "amount": "30000000", "has_labor_contract": False},
    {"line_id": "L4", "category": "SALARY", "amount": "40000000", "has_labor_contract": True},
    {"line_id": "L5", "category": "ENTERTAINMENT", "amount": "30000000", "payment_method": "BANK_TRANSFER"},
]


@pytest.fixture
def calculator(engine):
    return CITCalculator(engine)


def by_line(result):
    return {a.line_id: a for a in result.adjustments}


class TestDefaultAddBacks:
    async def test_annual_calculation(self, calculator):
        result = await calculator.calculate(EXPENSES, "2024", Decimal("100000000"))

        assert result.period_type == "ANNUAL"
        assert result.total_expenses == Decimal("130000000")
        assert result.total_add_backs == Decimal("70500000")
        assert result.taxable_income == Decimal("170500000")
        assert result.tax_rate == Decimal("20")
        assert result.cit_payable == Decimal("34100000")
        assert result.loss_carried_forward == Decimal("0")
        assert result.failures == []

    async def test_each_line_gets_an_adjustment(self, calculator):
        result = await calculator.calculate(EXPENSES, "2024", Decimal("100000000"))
        lines = by_line(result)

        assert len(result.adjustments) == 6
        assert lines["L1"].rule_code == "CIT_PENALTY"
        assert lines["L1"].add_back_amount == Decimal("5000000")
        assert lines["L2"].rule_code == "CIT_NO_INVOICE"
        assert lines["L3"].rule_code == "CIT_LABOR_NO_CONTRACT"
        assert lines["L4"].add_back_amount == Decimal("0")
        assert lines["L4"].rule_code is None
        assert lines["L5"].add_back_amount == Decimal("0")

    async def test_entertainment_ratio_warns(self, calculator):
        result = await calculator.calculate(EXPENSES, "2024")
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("L5:")
        assert "CIT_ENTERTAINMENT" in result.warnings[0]

    async def test_by_category_lists_add_backs_only(self, calculator):
        result = await calculator.calculate(EXPENSES, "2024")
        totals = {c.category: (c.count, c.amount) for c in result.by_category}
        assert totals == {
            "ADMIN_PENALTY": (1, Decimal("5000000")),
            "RENT": (1, Decimal("25000000")),
            "SALARY": (1, Decimal("30000000")),
            "ENTERTAINMENT_EXCESS": (1, Decimal("10500000")),
        }

    async def test_accepts_models(self, calculator):
        line = CITExpenseLine(line_id="x", category="ADMIN_PENALTY", amount=Decimal("1000"))
        result = await calculator.calculate([line], "2024-Q2")
        assert result.period_type == "QUARTERLY"
        assert result.total_add_backs == Decimal("1000")

    async def test_no_lines(self, calculator):
        result = await calculator.calculate([], "2024", Decimal("1000000"))
        assert result.total_expenses == Decimal("0")
        assert result.taxable_income == Decimal("1000000")
        assert result.cit_payable == Decimal("200000")


class TestLossesAndRates:
    async def test_loss_carried_forward(self, calculator):
        lines = [{"line_id": "p", "category": "ADMIN_PENALTY", "amount": "5000000"}]
        result = await calculator.calculate(lines, "2024", Decimal("-50000000"))
        assert result.taxable_income == Decimal("-45000000")
        assert result.loss_carried_forward == Decimal("45000000")
        assert result.cit_payable == Decimal("0")

    async def test_rate_override(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_CONFIG, code="rate", action=RuleAction.CONFIG_VALUE, value=Decimal("15")),
        ])
        result = await CITCalculator(RulesEngine(repository)).calculate([], "2024", Decimal("1000000"))
        assert result.tax_rate == Decimal("15")
        assert result.cit_payable == Decimal("150000")

    async def test_rate_effective_at_period_end(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_CONFIG, code="rate", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("17"), effective_to=date(2023, 12, 31)),
        ])
        calculator = CITCalculator(RulesEngine(repository))
        assert (await calculator.calculate([], "2023-Q4")).tax_rate == Decimal("17")
        assert (await calculator.calculate([], "2024-Q1")).tax_rate == Decimal("20")

    async def test_payable_rounds_half_up(self, empty_engine):
        result = await CITCalculator(empty_engine).calculate([], "2024", Decimal("12.5"))
        assert result.cit_payable == Decimal("3")


class TestPartialAddBacks:
    """PARTIAL adds back only the excess over the allowed amount."""

    @pytest.fixture
    def calculator(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_ADDBACK, code="GIFT_CAP", action=RuleAction.PARTIAL,
                      value=Decimal("10000000"), condition={"category_in": ["GIFTS"]}),
        ])
        return CITCalculator(RulesEngine(repository))

    async def test_excess_is_added_back(self, calculator):
        result = await calculator.calculate(
            [{"line_id": "g1", "category": "GIFTS", "amount": "15000000"}], "2024"
        )
        [item] = result.adjustments
        assert item.add_back_amount == Decimal("5000000")
        assert item.rule_code == "GIFT_CAP"

    async def test_under_cap_adds_nothing(self, calculator):
        result = await calculator.calculate(
            [{"line_id": "g2", "category": "GIFTS", "amount": "8000000"}], "2024"
        )
        [item] = result.adjustments
        assert item.add_back_amount == Decimal("0")
        assert item.rule_code is None
        assert result.by_category == []

    async def test_partial_without_value_is_a_line_failure(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_ADDBACK, code="NO_CAP", action=RuleAction.PARTIAL),
        ])
        result = await CITCalculator(RulesEngine(repository)).calculate(
            [{"line_id": "z", "category": "GIFTS", "amount": "100"}], "2024"
        )
        assert result.adjustments == []
        assert [f.item_id for f in result.failures] == ["z"]
        assert "NO_CAP" in result.failures[0].error


class TestPeriodCaps:
    """Entertainment and welfare caps over the whole period."""

    async def test_entertainment_excess_is_added_back(self, calculator):
        result = await calculator.calculate(EXPENSES, "2024", Decimal("100000000"))
        excess = by_line(result)["entertainment-excess"]
        assert excess.rule_code == "CIT_ENTERTAINMENT"
        assert excess.gross_amount == Decimal("30000000")
        assert excess.add_back_amount == Decimal("10500000")

    async def test_entertainment_within_cap(self, calculator):
        lines = [
            {"line_id": "e", "category": "ENTERTAINMENT", "amount": "10000000"},
            {"line_id": "r", "category": "RENT", "amount": "90000000"},
        ]
        result = await calculator.calculate(lines, "2024")
        assert "entertainment-excess" not in by_line(result)
        assert result.total_add_backs == Decimal("0")

    async def test_entertainment_already_added_back_is_not_counted(self, calculator):
        lines = [
            {"line_id": "e", "category": "ENTERTAINMENT", "amount": "25000000", "payment_method": "CASH"},
            {"line_id": "r", "category": "RENT", "amount": "75000000"},
        ]
        result = await calculator.calculate(lines, "2024")
        assert by_line(result)["e"].rule_code == "CIT_NO_INVOICE"
        assert "entertainment-excess" not in by_line(result)
        assert result.total_add_backs == Decimal("25000000")

    async def test_entertainment_cap_override(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_CONFIG, code="entertainment_cap", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("5")),
        ])
        lines = [
            {"line_id": "e", "category": "ENTERTAINMENT", "amount": "10000000"},
            {"line_id": "r", "category": "RENT", "amount": "90000000"},
        ]
        result = await CITCalculator(RulesEngine(repository)).calculate(lines, "2024")
        assert by_line(result)["entertainment-excess"].add_back_amount == Decimal("5000000")

    async def test_welfare_above_average_salary(self, calculator):
        lines = [
            {"line_id": "s", "category": "SALARY", "amount": "120000000", "has_labor_contract": True},
            {"line_id": "w", "category": "WELFARE", "amount": "15000000"},
        ]
        result = await calculator.calculate(lines, "2024", Decimal("50000000"))
        excess = by_line(result)["welfare-excess"]
        assert excess.rule_code == "CIT_WELFARE_CAP"
        assert excess.add_back_amount == Decimal("5000000")
        assert result.taxable_income == Decimal("55000000")

    async def test_welfare_with_given_salary(self, calculator):
        lines = [{"line_id": "w", "category": "WELFARE", "amount": "8000000"}]
        result = await calculator.calculate(lines, "2024-Q3", average_monthly_salary=Decimal("6000000"))
        assert by_line(result)["welfare-excess"].add_back_amount == Decimal("2000000")

    async def test_welfare_without_salary_is_not_capped(self, calculator):
        lines = [{"line_id": "w", "category": "WELFARE", "amount": "8000000"}]
        result = await calculator.calculate(lines, "2024")
        assert "welfare-excess" not in by_line(result)
        assert result.total_add_backs == Decimal("0")


class TestInputErrors:
    @pytest.mark.parametrize("period", ["2024-06", "2024-Q5", "24", "", "2024/Q1"])
    async def test_invalid_period(self, calculator, period):
        with pytest.raises(InvalidPeriodError) as exc_info:
            await calculator.calculate(EXPENSES, period)
        assert exc_info.value.field == "period"

    async def test_bad_lines_are_reported_not_fatal(self, calculator):
        lines = EXPENSES + [
            {"line_id": "bad", "category": "RENT", "amount": "lots"},
            {"category": "RENT"},
        ]
        result = await calculator.calculate(lines, "2024", Decimal("100000000"))
        assert [f.item_id for f in result.failures] == ["bad", "#6"]
        assert len(result.adjustments) == 6
        assert result.total_add_backs == Decimal("70500000")
