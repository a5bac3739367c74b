"""
CIT Calculation - add-back detection and corporate income tax for a period

Every expense line is matched against CIT_ADDBACK rules. REJECT adds the
whole line back to accounting profit; PARTIAL adds back only the excess over
the rule's allowed amount; WARN is reported without an adjustment.

Two caps are then applied to the period as a whole, each producing one
aggregate adjustment:

    CIT_ENTERTAINMENT   entertainment above entertainment_cap % of total expenses
    CIT_WELFARE_CAP     welfare above welfare_cap_months of average monthly salary

Only amounts not already added back line by line count towards either cap.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from ..core.config import TaxDefaults
from ..core.errors import InvalidPeriodError
from ..core.money import ZERO, format_vnd, percent, round_vnd
from ..core.periods import ANNUAL, QUARTERLY, parse_period, period_type_of
from .engine import RulesEngine, most_restrictive
from .models import BatchItemError, EvaluationContext, RuleAction, RuleType

logger = logging.getLogger(__name__)

ENTERTAINMENT = "ENTERTAINMENT"
WELFARE = "WELFARE"
SALARY_CATEGORIES = ("SALARY", "WAGES")

ENTERTAINMENT_EXCESS = "ENTERTAINMENT_EXCESS"
WELFARE_EXCESS = "WELFARE_EXCESS"


class CITExpenseLine(BaseModel):
    """One expense booked in the period"""

    line_id: str
    category: str
    amount: Decimal
    description: Optional[str] = None
    expense_type: Optional[str] = None
    payment_method: Optional[str] = None
    has_valid_invoice: Optional[bool] = None
    supplier_tax_code: Optional[str] = None
    invoice_date: Optional[date] = None
    has_labor_contract: Optional[bool] = None
    labor_type: Optional[str] = None
    amount_per_person: Optional[Decimal] = None
    depreciation_exceeds_tt45: Optional[bool] = None
    asset_type: Optional[str] = None
    vehicle_type: Optional[str] = None
    seats: Optional[int] = None
    original_price: Optional[Decimal] = None


class CITAdjustmentItem(BaseModel):
    line_id: str
    category: str
    gross_amount: Decimal
    add_back_amount: Decimal = ZERO
    rule_id: Optional[str] = None
    rule_code: Optional[str] = None
    description: Optional[str] = None


class CITCategoryTotal(BaseModel):
    category: str
    count: int
    amount: Decimal


class CITCalculationResult(BaseModel):
    period: str
    period_type: str
    accounting_profit: Decimal
    total_expenses: Decimal
    total_add_backs: Decimal
    taxable_income: Decimal
    tax_rate: Decimal  # percent
    cit_payable: Decimal
    loss_carried_forward: Decimal
    adjustments: List[CITAdjustmentItem] = []
    by_category: List[CITCategoryTotal] = []
    warnings: List[str] = []
    failures: List[BatchItemError] = []


class CITCalculator:
    """Computes taxable income and CIT payable from expense lines"""

    def __init__(self, rules_engine: RulesEngine, defaults: Optional[TaxDefaults] = None):
        self.rules_engine = rules_engine
        self.defaults = defaults or TaxDefaults()

    def _parse_lines(
        self,
        expense_lines: Sequence[Union[CITExpenseLine, Dict[str, Any]]],
        failures: List[BatchItemError],
    ) -> List[CITExpenseLine]:
        lines = []
        for index, raw in enumerate(expense_lines):
            if isinstance(raw, CITExpenseLine):
                lines.append(raw)
                continue
            item_id = str(raw.get("line_id") or f"#{index}") if isinstance(raw, dict) else f"#{index}"
            try:
                lines.append(CITExpenseLine.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping CIT expense line {item_id}: {e}")
                failures.append(BatchItemError(item_id=item_id, error=str(e)))
        return lines

    def _adjust(
        self,
        line: CITExpenseLine,
        context: EvaluationContext,
        rules: Sequence,
        as_of: date,
        warnings: List[str],
    ) -> CITAdjustmentItem:
        matches = self.rules_engine.match(rules, context, as_of)
        for match in matches:
            if match.action == RuleAction.WARN:
                warnings.append(f"{line.line_id}: {match.message}")

        item = CITAdjustmentItem(line_id=line.line_id, category=line.category, gross_amount=line.amount)
        strongest = most_restrictive(matches)
        if strongest is None or strongest.action == RuleAction.WARN:
            return item

        if strongest.action == RuleAction.REJECT:
            add_back = line.amount
        elif strongest.resolved_value is None:
            raise ValueError(f"PARTIAL rule {strongest.code} has no allowed amount")
        else:
            add_back = max(ZERO, line.amount - strongest.resolved_value)

        if add_back == ZERO:
            return item
        return item.model_copy(update={
            "add_back_amount": add_back,
            "rule_id": strongest.rule_id,
            "rule_code": strongest.code,
            "description": strongest.message,
        })

    def _net_amount(self, lines: Sequence[CITExpenseLine], added_back: Dict[str, Decimal], categories) -> Decimal:
        """Amount left after line add-backs; lines that failed evaluation are excluded"""
        return sum(
            (
                line.amount - added_back[line.line_id]
                for line in lines
                if line.category in categories and line.line_id in added_back
            ),
            ZERO,
        )

    async def _aggregate_add_backs(
        self,
        lines: Sequence[CITExpenseLine],
        adjustments: Sequence[CITAdjustmentItem],
        total_expenses: Decimal,
        months: int,
        average_monthly_salary: Optional[Decimal],
        as_of: date,
    ) -> List[CITAdjustmentItem]:
        added_back = {a.line_id: a.add_back_amount for a in adjustments}
        items = []

        entertainment = self._net_amount(lines, added_back, (ENTERTAINMENT,))
        cap_percent = await self.rules_engine.get_rule_value(
            RuleType.CIT_CONFIG, "entertainment_cap", self.defaults.cit_entertainment_cap, as_of_date=as_of
        )
        entertainment_cap = round_vnd(total_expenses * percent(cap_percent))
        if entertainment > entertainment_cap:
            items.append(CITAdjustmentItem(
                line_id="entertainment-excess",
                category=ENTERTAINMENT_EXCESS,
                gross_amount=entertainment,
                add_back_amount=entertainment - entertainment_cap,
                rule_code="CIT_ENTERTAINMENT",
                description=f"Entertainment above {cap_percent}% of total expenses (cap {format_vnd(entertainment_cap)})",
            ))

        welfare = self._net_amount(lines, added_back, (WELFARE,))
        if welfare > ZERO:
            if average_monthly_salary is None:
                average_monthly_salary = self._net_amount(lines, added_back, SALARY_CATEGORIES) / months
            cap_months = await self.rules_engine.get_rule_value(
                RuleType.CIT_CONFIG, "welfare_cap_months", self.defaults.cit_welfare_cap_months, as_of_date=as_of
            )
            welfare_cap = round_vnd(average_monthly_salary * cap_months)
            if welfare_cap > ZERO and welfare > welfare_cap:
                items.append(CITAdjustmentItem(
                    line_id="welfare-excess",
                    category=WELFARE_EXCESS,
                    gross_amount=welfare,
                    add_back_amount=welfare - welfare_cap,
                    rule_code="CIT_WELFARE_CAP",
                    description=f"Welfare above {cap_months} month(s) of average salary (cap {format_vnd(welfare_cap)})",
                ))
            elif welfare_cap == ZERO:
                logger.warning("CIT welfare cap skipped: no average monthly salary for the period")

        return items

    async def calculate(
        self,
        expense_lines: Sequence[Union[CITExpenseLine, Dict[str, Any]]],
        period: str,
        accounting_profit: Decimal = ZERO,
        average_monthly_salary: Optional[Decimal] = None,
    ) -> CITCalculationResult:
        """
        Calculate CIT for an annual (YYYY) or quarterly (YYYY-Qn) period

        average_monthly_salary bounds the welfare cap; when omitted it is the
        deductible SALARY/WAGES total spread over the months of the period.

        Raises:
            InvalidPeriodError: period is monthly or malformed
        """
        period_type = period_type_of(period)
        if period_type not in (ANNUAL, QUARTERLY):
            raise InvalidPeriodError(period, "YYYY or YYYY-Q1..YYYY-Q4")
        _, period_end = parse_period(period)
        as_of = period_end

        failures: List[BatchItemError] = []
        warnings: List[str] = []
        lines = self._parse_lines(expense_lines, failures)

        total_expenses = sum((line.amount for line in lines), ZERO)
        total_entertainment = sum((line.amount for line in lines if line.category == ENTERTAINMENT), ZERO)

        rules = await self.rules_engine.load_rules(RuleType.CIT_ADDBACK, as_of)

        adjustments: List[CITAdjustmentItem] = []
        for line in lines:
            context = EvaluationContext(
                **line.model_dump(exclude={"line_id", "amount", "description"}),
                amount=line.amount,
                total_amount=line.amount,
                current_date=as_of,
                total_entertainment=total_entertainment,
                total_expenses=total_expenses,
            )
            try:
                adjustments.append(self._adjust(line, context, rules, as_of, warnings))
            except ValueError as e:
                logger.warning(f"CIT add-back failed for line {line.line_id}: {e}")
                failures.append(BatchItemError(item_id=line.line_id, error=str(e)))

        months = 12 if period_type == ANNUAL else 3
        adjustments.extend(await self._aggregate_add_backs(
            lines, adjustments, total_expenses, months, average_monthly_salary, as_of
        ))

        total_add_backs = sum((a.add_back_amount for a in adjustments), ZERO)
        taxable_income = accounting_profit + total_add_backs

        tax_rate = await self.rules_engine.get_rule_value(
            RuleType.CIT_CONFIG, "rate", self.defaults.cit_rate, as_of_date=as_of
        )
        cit_payable = round_vnd(max(ZERO, taxable_income) * percent(tax_rate))
        loss_carried_forward = -taxable_income if taxable_income < ZERO else ZERO

        by_category: Dict[str, CITCategoryTotal] = {}
        for item in adjustments:
            if item.add_back_amount == ZERO:
                continue
            total = by_category.get(item.category)
            if total is None:
                by_category[item.category] = CITCategoryTotal(
                    category=item.category, count=1, amount=item.add_back_amount
                )
            else:
                total.count += 1
                total.amount += item.add_back_amount

        logger.info(
            f"CIT {period}: {len(lines)} lines, add-backs {total_add_backs}, "
            f"taxable {taxable_income}, payable {cit_payable}"
        )
        return CITCalculationResult(
            period=period,
            period_type=period_type,
            accounting_profit=accounting_profit,
            total_expenses=total_expenses,
            total_add_backs=total_add_backs,
            taxable_income=taxable_income,
            tax_rate=tax_rate,
            cit_payable=cit_payable,
            loss_carried_forward=loss_carried_forward,
            adjustments=adjustments,
            by_category=list(by_category.values()),
            warnings=warnings,
            failures=failures,
        )
