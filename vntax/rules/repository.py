"""
Rule store read contract and an in-memory implementation
"""

from datetime import date
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from .models import TaxRule


@runtime_checkable
class RuleRepository(Protocol):
    """Read-only source of tax rules, owned by the persistence layer"""

    async def list_rules(self, rule_type: str, as_of_date: date) -> List[TaxRule]:
        """Active rules of one type effective on as_of_date, in creation order"""
        ...


class InMemoryRuleRepository:
    """Rules held in a list; insertion order is creation order"""

    def __init__(self, rules: Iterable[TaxRule] = ()):
        self.rules: List[TaxRule] = list(rules)
        self.calls = 0

    def add(self, rule: TaxRule) -> None:
        self.rules.append(rule)

    async def list_rules(self, rule_type: str, as_of_date: date) -> List[TaxRule]:
        self.calls += 1
        return [
            r for r in self.rules
            if r.rule_type == getattr(rule_type, "value", rule_type) and r.is_active and r.is_effective(as_of_date)
        ]

    async def list_all(self, rule_type: Optional[str] = None, active_only: bool = False) -> List[TaxRule]:
        return [
            r for r in self.rules
            if (not rule_type or r.rule_type == getattr(rule_type, "value", rule_type))
            and (r.is_active or not active_only)
        ]

    async def get_rule(self, rule_id: str) -> Optional[TaxRule]:
        return next((r for r in self.rules if r.id == rule_id), None)
