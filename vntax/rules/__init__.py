"""
Rules Engine - Deterministic Vietnamese tax rule evaluation
"""

from .models import RuleType, RuleAction, TaxRule, EvaluationContext, RuleMatch
from .conditions import evaluate, parse_condition
from .repository import RuleRepository, InMemoryRuleRepository
from .engine import RulesEngine, is_rule_effective, most_restrictive
from .vat_validation import VATValidator, VATTransaction, VATValidationResult, VATIssuesReport
from .cit import CITCalculator, CITExpenseLine, CITCalculationResult, CITAdjustmentItem
from .pit import PITCalculator, PITMethod, PITCalculationResult, PITBatchResult, TaxBracketDetail

__all__ = [
    "RuleType",
    "RuleAction",
    "TaxRule",
    "EvaluationContext",
    "RuleMatch",
    "evaluate",
    "parse_condition",
    "RuleRepository",
    "InMemoryRuleRepository",
    "RulesEngine",
    "is_rule_effective",
    "most_restrictive",
    "VATValidator",
    "VATTransaction",
    "VATValidationResult",
    "VATIssuesReport",
    "CITCalculator",
    "CITExpenseLine",
    "CITCalculationResult",
    "CITAdjustmentItem",
    "PITCalculator",
    "PITMethod",
    "PITCalculationResult",
    "PITBatchResult",
    "TaxBracketDetail",
]
