"""Tests for rule selection, effective windows and config overrides."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from vntax.rules.engine import RulesEngine, is_rule_effective, most_restrictive
from vntax.rules.models import EvaluationContext, RuleAction, RuleMatch, RuleType
from vntax.rules.repository import InMemoryRuleRepository

from tests.conftest import TODAY, make_rule


class FailingRepository:
    async def list_rules(self, rule_type, as_of_date):
        raise ConnectionError("rule store unavailable")


def match(code: str, action: RuleAction) -> RuleMatch:
    return RuleMatch(rule_id=code.lower(), code=code, action=action)


class TestIsRuleEffective:
    def test_inclusive_bounds(self):
        start, end = date(2025, 1, 1), date(2025, 12, 31)
        assert is_rule_effective(start, end, start)
        assert is_rule_effective(start, end, end)
        assert not is_rule_effective(start, end, date(2024, 12, 31))
        assert not is_rule_effective(start, end, date(2026, 1, 1))

    def test_open_bounds(self):
        assert is_rule_effective(None, None, TODAY)
        assert is_rule_effective(None, date(2025, 12, 31), date(1990, 1, 1))
        assert is_rule_effective(date(2020, 1, 1), None, date(2099, 1, 1))


class TestSelect:
    """RulesEngine.select"""

    async def test_rule_without_condition_always_matches(self):
        engine = RulesEngine(InMemoryRuleRepository([make_rule(condition=None)]))
        matches = await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
        assert [m.code for m in matches] == ["TEST_RULE"]

    async def test_matches_ordered_by_priority_then_creation(self):
        repository = InMemoryRuleRepository([
            make_rule(id="a", code="A", priority=50),
            make_rule(id="b", code="B", priority=10),
            make_rule(id="c", code="C", priority=50),
            make_rule(id="d", code="D", priority=10),
        ])
        matches = await RulesEngine(repository).select(RuleType.VAT, EvaluationContext(), TODAY)
        assert [m.code for m in matches] == ["B", "D", "A", "C"]

    async def test_rule_outside_window_never_matches(self):
        repository = InMemoryRuleRepository([
            make_rule(id="old", code="OLD", effective_to=date(2024, 12, 31)),
            make_rule(id="future", code="FUTURE", effective_from=date(2026, 1, 1)),
            make_rule(id="now", code="NOW", effective_from=date(2025, 1, 1), effective_to=TODAY),
        ])
        matches = await RulesEngine(repository).select(RuleType.VAT, EvaluationContext(), TODAY)
        assert [m.code for m in matches] == ["NOW"]

    async def test_inactive_and_other_types_are_skipped(self):
        repository = InMemoryRuleRepository([
            make_rule(id="off", code="OFF", is_active=False),
            make_rule(id="cit", code="CIT", rule_type=RuleType.CIT_ADDBACK),
            make_rule(id="on", code="ON"),
        ])
        matches = await RulesEngine(repository).select("VAT", EvaluationContext(), TODAY)
        assert [m.code for m in matches] == ["ON"]

    async def test_condition_filters_matches(self):
        repository = InMemoryRuleRepository([
            make_rule(id="cash", code="CASH", condition={"payment_method": "CASH", "amount_gte": 20000000}),
        ])
        engine = RulesEngine(repository)
        hit = await engine.select(RuleType.VAT, EvaluationContext(payment_method="CASH", amount=25000000), TODAY)
        miss = await engine.select(RuleType.VAT, EvaluationContext(payment_method="CASH", amount=1000), TODAY)
        assert [m.code for m in hit] == ["CASH"]
        assert miss == []

    async def test_match_carries_action_and_value(self):
        repository = InMemoryRuleRepository([
            make_rule(action=RuleAction.PARTIAL, value=Decimal("0.5"), description="Half", reference="TT96"),
        ])
        [found] = await RulesEngine(repository).select(RuleType.VAT, EvaluationContext(), TODAY)
        assert found.action == RuleAction.PARTIAL
        assert found.resolved_value == Decimal("0.5")
        assert found.message == "Half [TEST_RULE, TT96]"

    async def test_as_of_defaults_to_context_date(self):
        repository = InMemoryRuleRepository([make_rule(effective_to=date(2020, 12, 31))])
        engine = RulesEngine(repository)
        assert await engine.select(RuleType.VAT, EvaluationContext(current_date=date(2020, 6, 1)))
        assert not await engine.select(RuleType.VAT, EvaluationContext(current_date=date(2021, 6, 1)))

    async def test_malformed_rule_never_matches_and_warns_once(self, caplog):
        repository = InMemoryRuleRepository([
            make_rule(id="bad", code="BAD", condition={"no_such_predicate": 1}),
            make_rule(id="good", code="GOOD"),
        ])
        engine = RulesEngine(repository)
        with caplog.at_level(logging.WARNING, logger="vntax.rules.engine"):
            first = await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
            second = await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
        assert [m.code for m in first] == ["GOOD"]
        assert [m.code for m in second] == ["GOOD"]
        warnings = [r for r in caplog.records if "BAD" in r.getMessage()]
        assert len(warnings) == 1

    async def test_non_finite_threshold_never_matches(self):
        repository = InMemoryRuleRepository([
            make_rule(id="nan", code="NAN", condition={"amount_gte": "NaN"}),
            make_rule(id="good", code="GOOD", condition={"amount_gte": 1}),
        ])
        matches = await RulesEngine(repository).select(RuleType.VAT, EvaluationContext(amount=5), TODAY)
        assert [m.code for m in matches] == ["GOOD"]


class TestRuleStoreFailures:
    async def test_empty_store_returns_no_matches(self, empty_engine):
        assert await empty_engine.select(RuleType.VAT, EvaluationContext(), TODAY) == []

    async def test_no_repository_returns_no_matches(self):
        assert await RulesEngine().select(RuleType.VAT, EvaluationContext(), TODAY) == []

    async def test_unavailable_store_falls_back(self, caplog):
        engine = RulesEngine(FailingRepository())
        with caplog.at_level(logging.ERROR, logger="vntax.rules.engine"):
            matches = await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
            value = await engine.get_rule_value(RuleType.CIT_CONFIG, "rate", Decimal("20"), TODAY)
        assert matches == []
        assert value == Decimal("20")
        assert any("rule store unavailable" in r.getMessage() for r in caplog.records)

    async def test_rules_fetched_once_per_type_and_date(self):
        repository = InMemoryRuleRepository([make_rule()])
        engine = RulesEngine(repository)
        for _ in range(3):
            await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
        assert repository.calls == 1
        engine.clear_cache()
        await engine.select(RuleType.VAT, EvaluationContext(), TODAY)
        assert repository.calls == 2


class TestGetRuleValue:
    async def test_default_when_no_rule(self, empty_engine):
        value = await empty_engine.get_rule_value(RuleType.VAT_CONFIG, "cash_threshold", Decimal("20000000"), TODAY)
        assert value == Decimal("20000000")

    async def test_override_from_rule(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_CONFIG, code="rate", action=RuleAction.CONFIG_VALUE, value=Decimal("15")),
        ])
        value = await RulesEngine(repository).get_rule_value(RuleType.CIT_CONFIG, "rate", Decimal("20"), TODAY)
        assert value == Decimal("15")

    async def test_first_matching_rule_wins(self):
        repository = InMemoryRuleRepository([
            make_rule(id="r2", rule_type="CIT_CONFIG", code="rate", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("17"), priority=5),
            make_rule(id="r1", rule_type="CIT_CONFIG", code="rate", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("15"), priority=1),
        ])
        value = await RulesEngine(repository).get_rule_value(RuleType.CIT_CONFIG, "rate", Decimal("20"), TODAY)
        assert value == Decimal("15")

    async def test_expired_override_is_ignored(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.CIT_CONFIG, code="rate", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("25"), effective_to=date(2015, 12, 31)),
        ])
        value = await RulesEngine(repository).get_rule_value(RuleType.CIT_CONFIG, "rate", Decimal("20"), TODAY)
        assert value == Decimal("20")

    async def test_other_keys_are_ignored(self):
        repository = InMemoryRuleRepository([
            make_rule(rule_type=RuleType.VAT_CONFIG, code="car_luxury_cap", action=RuleAction.CONFIG_VALUE,
                      value=Decimal("1")),
        ])
        engine = RulesEngine(repository)
        assert await engine.get_rule_value(RuleType.VAT_CONFIG, "cash_threshold", Decimal("7"), TODAY) == Decimal("7")

    async def test_default_rule_set(self, engine):
        assert await engine.get_rule_value(RuleType.VAT_CONFIG, "cash_threshold", Decimal("0"), TODAY) == Decimal("20000000")
        assert await engine.get_rule_value(RuleType.CIT_CONFIG, "rate", Decimal("0"), TODAY) == Decimal("20")


class TestMostRestrictive:
    def test_reject_beats_partial_and_warn(self):
        matches = [match("W", RuleAction.WARN), match("P", RuleAction.PARTIAL), match("R", RuleAction.REJECT)]
        assert most_restrictive(matches).code == "R"

    def test_partial_beats_warn(self):
        assert most_restrictive([match("W", RuleAction.WARN), match("P", RuleAction.PARTIAL)]).code == "P"

    def test_earliest_wins_tie(self):
        assert most_restrictive([match("R1", RuleAction.REJECT), match("R2", RuleAction.REJECT)]).code == "R1"

    @pytest.mark.parametrize("matches", [[], [match("C", RuleAction.CONFIG_VALUE)]])
    def test_nothing_to_arbitrate(self, matches):
        assert most_restrictive(matches) is None
