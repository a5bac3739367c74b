"""
Rules Engine - selects effective tax rules whose conditions match a context

Rules are fetched per type from an injected RuleRepository and cached for the
lifetime of the engine (one engine per request or batch run). The engine
returns every match in (priority, creation) order and does not arbitrate
between conflicting actions; callers use most_restrictive() for that.
"""

import asyncio
import logging
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .conditions import Malformed, evaluate, parse_condition
from .models import (
    ACTION_SEVERITY,
    EvaluationContext,
    RuleAction,
    RuleMatch,
    TaxRule,
    is_rule_effective,
)
from .repository import RuleRepository

logger = logging.getLogger(__name__)

__all__ = ["RulesEngine", "is_rule_effective", "most_restrictive"]


def rule_type_value(rule_type) -> str:
    """RuleType member or plain string -> stored string"""
    return rule_type.value if isinstance(rule_type, Enum) else str(rule_type)


def most_restrictive(matches: Sequence[RuleMatch]) -> Optional[RuleMatch]:
    """REJECT > PARTIAL > WARN; earliest match wins a tie"""
    best: Optional[RuleMatch] = None
    for match in matches:
        if match.action == RuleAction.CONFIG_VALUE:
            continue
        if best is None or ACTION_SEVERITY[match.action] > ACTION_SEVERITY[best.action]:
            best = match
    return best


class RulesEngine:
    """Main rules engine for Vietnamese tax compliance"""

    def __init__(self, repository: Optional[RuleRepository] = None):
        self.repository = repository
        self.rules_cache: Dict[Tuple[str, date], List[TaxRule]] = {}
        self._lock = asyncio.Lock()
        self._reported_malformed: Set[str] = set()

    async def load_rules(self, rule_type: str, as_of_date: date) -> List[TaxRule]:
        """Fetch rules of one type, cached per (type, date)"""
        rule_type = rule_type_value(rule_type)
        key = (rule_type, as_of_date)
        if key in self.rules_cache:
            return self.rules_cache[key]

        async with self._lock:
            if key in self.rules_cache:
                return self.rules_cache[key]

            rules: List[TaxRule] = []
            if self.repository is not None:
                try:
                    rules = list(await self.repository.list_rules(rule_type, as_of_date))
                except Exception as e:
                    logger.error(f"Error loading {rule_type} rules, falling back to defaults: {e}")
                    rules = []

            self.rules_cache[key] = rules
            logger.debug(f"Loaded {len(rules)} {rule_type} rules as of {as_of_date}")
            return rules

    def clear_cache(self) -> None:
        self.rules_cache.clear()

    def match(
        self,
        rules: Sequence[TaxRule],
        context: EvaluationContext,
        as_of_date: date,
    ) -> List[RuleMatch]:
        """Evaluate already-fetched rules; pure apart from malformed-rule logging"""
        matches = []
        # sorted() is stable: equal priorities keep creation order
        for rule in sorted(rules, key=lambda r: r.priority):
            if not rule.is_active or not rule.is_effective(as_of_date):
                continue

            condition = parse_condition(rule.condition)
            if isinstance(condition, Malformed):
                if rule.id not in self._reported_malformed:
                    self._reported_malformed.add(rule.id)
                    logger.warning(
                        f"Rule {rule.code} ({rule.id}) has a malformed condition and will not match: "
                        f"{condition.reason}"
                    )
                continue

            if evaluate(condition, context):
                matches.append(
                    RuleMatch(
                        rule_id=rule.id,
                        code=rule.code,
                        action=rule.action,
                        resolved_value=rule.value,
                        priority=rule.priority,
                        description=rule.description or rule.name,
                        reference=rule.reference,
                    )
                )
        return matches

    async def select(
        self,
        rule_type: str,
        context: EvaluationContext,
        as_of_date: Optional[date] = None,
    ) -> List[RuleMatch]:
        """
        Rules of rule_type effective on as_of_date whose condition matches

        Args:
            rule_type: RuleType value
            context: facts for one transaction / expense line / employee
            as_of_date: check date (defaults to context.current_date, then today)
        """
        as_of = as_of_date or context.current_date or date.today()
        rules = await self.load_rules(rule_type, as_of)
        return self.match(rules, context, as_of)

    async def get_rule_value(
        self,
        rule_type: str,
        key: str,
        default: Decimal,
        as_of_date: Optional[date] = None,
        context: Optional[EvaluationContext] = None,
    ) -> Decimal:
        """Value of the first matching CONFIG_VALUE rule coded `key`, else default"""
        as_of = as_of_date or (context.current_date if context else None) or date.today()
        ctx = context or EvaluationContext(current_date=as_of)
        for match in await self.select(rule_type, ctx, as_of):
            if match.action == RuleAction.CONFIG_VALUE and match.code == key and match.resolved_value is not None:
                return match.resolved_value
        return default
