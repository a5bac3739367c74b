"""
Rule data model - persisted tax rules, evaluation facts and match results
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class RuleType(str, Enum):
    VAT = "VAT"
    VAT_CONFIG = "VAT_CONFIG"
    CIT_ADDBACK = "CIT_ADDBACK"
    CIT_CONFIG = "CIT_CONFIG"
    PIT_CONFIG = "PIT_CONFIG"


class RuleAction(str, Enum):
    REJECT = "REJECT"
    PARTIAL = "PARTIAL"
    WARN = "WARN"
    CONFIG_VALUE = "CONFIG_VALUE"


# Higher wins when several matches disagree
ACTION_SEVERITY = {
    RuleAction.REJECT: 3,
    RuleAction.PARTIAL: 2,
    RuleAction.WARN: 1,
    RuleAction.CONFIG_VALUE: 0,
}


def is_rule_effective(
    effective_from: Optional[date],
    effective_to: Optional[date],
    check_date: date,
) -> bool:
    """Inclusive on both bounds; a missing bound is open"""
    if effective_from and check_date < effective_from:
        return False
    if effective_to and check_date > effective_to:
        return False
    return True


class TaxRule(BaseModel):
    """A persisted tax policy"""

    model_config = ConfigDict(frozen=True)

    id: str
    code: str
    rule_type: str
    action: RuleAction
    condition: Optional[Any] = None  # raw JSON tree, parsed by the engine
    value: Optional[Decimal] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    priority: int = 100
    category: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    is_active: bool = True

    @field_validator("rule_type", mode="before")
    @classmethod
    def _rule_type_value(cls, v: Any) -> Any:
        return v.value if isinstance(v, Enum) else v

    def is_effective(self, check_date: date) -> bool:
        return is_rule_effective(self.effective_from, self.effective_to, check_date)


class EvaluationContext(BaseModel):
    """Read-only bag of facts for one evaluation"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    # amounts
    amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    vat_amount: Optional[Decimal] = None

    # payment / invoice
    payment_method: Optional[str] = None
    supplier_tax_code: Optional[str] = None
    supplier_status: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    has_valid_invoice: Optional[bool] = None
    current_date: Optional[date] = None

    # vehicle / asset
    asset_type: Optional[str] = None
    vehicle_type: Optional[str] = None
    seats: Optional[int] = None
    original_price: Optional[Decimal] = None
    biz_type: Optional[str] = None

    # labor
    has_labor_contract: Optional[bool] = None
    labor_type: Optional[str] = None
    is_non_resident: Optional[bool] = None
    has_commitment_08: Optional[bool] = None

    # entertainment
    amount_per_person: Optional[Decimal] = None
    total_entertainment: Optional[Decimal] = None
    total_expenses: Optional[Decimal] = None

    # classification
    depreciation_exceeds_tt45: Optional[bool] = None
    category: Optional[str] = None
    expense_type: Optional[str] = None
    usage_purpose: Optional[str] = None


class RuleMatch(BaseModel):
    """A rule whose window and condition matched a context"""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    code: str
    action: RuleAction
    resolved_value: Optional[Decimal] = None
    priority: int = 100
    description: Optional[str] = None
    reference: Optional[str] = None

    @property
    def message(self) -> str:
        """Human-readable explanation naming the rule"""
        text = self.description or self.code
        if self.reference:
            return f"{text} [{self.code}, {self.reference}]"
        return f"{text} [{self.code}]"


class BatchItemError(BaseModel):
    """One failed item of a batch run, keyed by the caller's id"""

    item_id: str
    error: str
