"""
PIT Calculation - personal income tax on monthly salary and wages

Progressive: 7-bracket ladder on taxable income after insurance, family and
dependent deductions. Flat: 10% (resident, casual or short contract) or 20%
(non-resident) of gross. Bracket arithmetic is pure; only load_pit_config
touches the rule store.
"""

import logging
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ValidationError

from ..core.config import PITConfig
from ..core.errors import MissingFieldError, TaxInputError
from ..core.money import HUNDRED, ZERO, percent, round_vnd, to_decimal
from ..core.periods import period_type_of
from .engine import RulesEngine
from .models import BatchItemError, RuleType

logger = logging.getLogger(__name__)

CASUAL_WORKER_TYPES = ("CASUAL", "PROBATION")


class PITMethod(str, Enum):
    PROGRESSIVE = "PROGRESSIVE"
    FLAT_10 = "FLAT_10"
    FLAT_20 = "FLAT_20"
    EXEMPT = "EXEMPT"


class TaxBracketDetail(BaseModel):
    bracket: int
    lower: Decimal
    upper: Optional[Decimal] = None
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal


class PITCalculationResult(BaseModel):
    employee_id: Optional[str] = None
    employee_name: Optional[str] = None
    period: Optional[str] = None
    method: PITMethod
    method_reason: Optional[str] = None
    gross_income: Decimal
    dependents: int = 0
    insurance_deduction: Decimal = ZERO
    self_deduction: Decimal = ZERO
    dependent_deduction: Decimal = ZERO
    other_deduction: Decimal = ZERO
    total_deduction: Decimal = ZERO
    taxable_income: Decimal = ZERO
    total_tax: Decimal = ZERO
    effective_rate: Decimal = ZERO  # percent of gross, 2 decimals
    brackets: List[TaxBracketDetail] = []


class PITEmployeeInput(BaseModel):
    """One employee's payroll facts for a batch run"""

    employee_id: str
    employee_name: Optional[str] = None
    gross_income: Decimal
    dependents: Optional[int] = None
    insurance_paid: Optional[Decimal] = None
    other_deduction: Decimal = ZERO
    method: Optional[PITMethod] = None
    is_non_resident: bool = False
    worker_type: Optional[str] = None
    contract_months: Optional[int] = None
    has_commitment_08: bool = False


class PITBatchResult(BaseModel):
    period: str
    results: List[PITCalculationResult] = []
    errors: List[BatchItemError] = []
    total_gross: Decimal = ZERO
    total_pit: Decimal = ZERO
    summary: Dict[str, int] = {}


def determine_method(
    gross_income: Decimal,
    is_non_resident: bool = False,
    worker_type: Optional[str] = None,
    contract_months: Optional[int] = None,
    has_commitment_08: bool = False,
    config: Optional[PITConfig] = None,
) -> Tuple[PITMethod, str]:
    """Pick the withholding method from residency and contract facts"""
    config = config or PITConfig()

    if is_non_resident:
        return PITMethod.FLAT_20, "Non-resident individual"

    is_casual = worker_type in CASUAL_WORKER_TYPES or (
        contract_months is not None and contract_months < config.casual_contract_months
    )
    if is_casual:
        if has_commitment_08:
            return PITMethod.EXEMPT, "Commitment 08 filed (estimated annual income below the taxable level)"
        if gross_income < config.flat_rate_threshold:
            return PITMethod.EXEMPT, f"Payment below {config.flat_rate_threshold:,.0f} per payment"
        return PITMethod.FLAT_10, f"Casual or contract under {config.casual_contract_months} months"

    return PITMethod.PROGRESSIVE, f"Labor contract of {config.casual_contract_months} months or more"


async def load_pit_config(
    rules_engine: RulesEngine,
    as_of_date: Optional[date] = None,
    base: Optional[PITConfig] = None,
) -> PITConfig:
    """PITConfig with PIT_CONFIG overrides from the rule store applied"""
    base = base or PITConfig()
    as_of = as_of_date or date.today()

    async def value(key: str, default: Decimal) -> Decimal:
        return await rules_engine.get_rule_value(RuleType.PIT_CONFIG, key, default, as_of_date=as_of)

    overrides = {
        "self_deduction": await value("self_deduction", base.self_deduction),
        "dependent_deduction": await value("dependent_deduction", base.dependent_deduction),
        "insurance_rate": percent(await value("insurance_rate", base.insurance_rate * HUNDRED)),
        "flat_rate_threshold": await value("flat_rate_threshold", base.flat_rate_threshold),
        "flat_rate_resident": percent(await value("flat_rate_resident", base.flat_rate_resident * HUNDRED)),
        "flat_rate_non_resident": percent(
            await value("flat_rate_non_resident", base.flat_rate_non_resident * HUNDRED)
        ),
    }
    return base.model_copy(update=overrides)


class PITCalculator:
    """Stateless PIT arithmetic over an immutable PITConfig"""

    def __init__(self, config: Optional[PITConfig] = None):
        self.config = config or PITConfig()

    def progressive_tax(self, taxable_income: Decimal) -> Tuple[Decimal, List[TaxBracketDetail]]:
        """Tax each [lower, upper) slice at its bracket rate"""
        details: List[TaxBracketDetail] = []
        if taxable_income <= ZERO:
            return ZERO, details

        for b in self.config.brackets:
            if taxable_income <= b.lower:
                break
            top = taxable_income if b.upper is None else min(taxable_income, b.upper)
            in_bracket = top - b.lower
            if in_bracket <= ZERO:
                continue
            details.append(
                TaxBracketDetail(
                    bracket=b.bracket,
                    lower=b.lower,
                    upper=b.upper,
                    rate=b.rate,
                    taxable_amount=in_bracket,
                    tax_amount=round_vnd(in_bracket * b.rate),
                )
            )

        total = sum((d.tax_amount for d in details), ZERO)
        return total, details

    def _flat(self, gross: Decimal, method: PITMethod) -> Tuple[PITMethod, Decimal, List[TaxBracketDetail]]:
        if method == PITMethod.FLAT_20:
            rate = self.config.flat_rate_non_resident
        elif method == PITMethod.FLAT_10 and gross >= self.config.flat_rate_threshold:
            rate = self.config.flat_rate_resident
        else:
            return PITMethod.EXEMPT, ZERO, []

        tax = round_vnd(gross * rate)
        detail = TaxBracketDetail(
            bracket=1,
            lower=ZERO,
            upper=None,
            rate=rate,
            taxable_amount=gross,
            tax_amount=tax,
        )
        return method, tax, [detail]

    def calculate(
        self,
        gross_income: Any,
        dependents: Optional[int],
        insurance_paid: Any = None,
        method: PITMethod = PITMethod.PROGRESSIVE,
        other_deduction: Any = ZERO,
    ) -> PITCalculationResult:
        """
        Calculate PIT for one month's income

        Args:
            gross_income: gross salary/wage for the month
            dependents: registered dependents (required for PROGRESSIVE)
            insurance_paid: compulsory insurance withheld; defaults to
                gross × insurance_rate
            method: PROGRESSIVE, FLAT_10, FLAT_20 or EXEMPT
            other_deduction: other allowable deductions (charity, pension fund)

        Raises:
            MissingFieldError: dependents missing for PROGRESSIVE
            TaxInputError: negative or non-numeric amounts
        """
        try:
            gross = to_decimal(gross_income)
            insurance = to_decimal(insurance_paid)
            other = to_decimal(other_deduction, ZERO)
        except (TypeError, ValueError) as e:
            raise TaxInputError(str(e)) from e
        if gross is None:
            raise MissingFieldError("gross_income")
        if gross < ZERO:
            raise TaxInputError("Gross income cannot be negative", field="gross_income")
        try:
            method = PITMethod(method)
        except ValueError:
            raise TaxInputError(f"Unknown PIT method: {method!r}", field="method")

        if method != PITMethod.PROGRESSIVE:
            applied, tax, details = self._flat(gross, method)
            return PITCalculationResult(
                method=applied,
                gross_income=gross,
                dependents=dependents or 0,
                taxable_income=gross if applied != PITMethod.EXEMPT else ZERO,
                total_tax=tax,
                effective_rate=self._effective_rate(tax, gross),
                brackets=details,
            )

        if dependents is None:
            raise MissingFieldError("dependents")
        if dependents < 0:
            raise TaxInputError("Dependents count cannot be negative", field="dependents")
        if insurance is None:
            insurance = round_vnd(gross * self.config.insurance_rate)
        if insurance < ZERO or other < ZERO:
            raise TaxInputError("Deductions cannot be negative", field="insurance_paid")

        self_deduction = self.config.self_deduction
        dependent_deduction = dependents * self.config.dependent_deduction
        total_deduction = insurance + self_deduction + dependent_deduction + other
        taxable = max(ZERO, gross - total_deduction)
        tax, details = self.progressive_tax(taxable)

        return PITCalculationResult(
            method=PITMethod.PROGRESSIVE,
            gross_income=gross,
            dependents=dependents,
            insurance_deduction=insurance,
            self_deduction=self_deduction,
            dependent_deduction=dependent_deduction,
            other_deduction=other,
            total_deduction=total_deduction,
            taxable_income=taxable,
            total_tax=tax,
            effective_rate=self._effective_rate(tax, gross),
            brackets=details,
        )

    @staticmethod
    def _effective_rate(tax: Decimal, gross: Decimal) -> Decimal:
        if gross <= ZERO:
            return ZERO
        return (tax / gross * HUNDRED).quantize(Decimal("0.01"))

    def calculate_employee(self, employee: PITEmployeeInput, period: Optional[str] = None) -> PITCalculationResult:
        if employee.method is not None:
            method, reason = employee.method, "Method set by caller"
        else:
            method, reason = determine_method(
                employee.gross_income,
                is_non_resident=employee.is_non_resident,
                worker_type=employee.worker_type,
                contract_months=employee.contract_months,
                has_commitment_08=employee.has_commitment_08,
                config=self.config,
            )
        result = self.calculate(
            employee.gross_income,
            employee.dependents,
            insurance_paid=employee.insurance_paid,
            method=method,
            other_deduction=employee.other_deduction,
        )
        return result.model_copy(update={
            "employee_id": employee.employee_id,
            "employee_name": employee.employee_name,
            "period": period,
            "method_reason": reason,
        })

    def calculate_batch(
        self,
        period: str,
        employees: Sequence[Union[PITEmployeeInput, Dict[str, Any]]],
    ) -> PITBatchResult:
        """
        Calculate PIT for a payroll period

        A failing employee is recorded in errors under its id; the others are
        still calculated.
        """
        period_type_of(period)
        batch = PITBatchResult(period=period)
        summary: Dict[str, int] = {m.value: 0 for m in PITMethod}

        for index, raw in enumerate(employees):
            if isinstance(raw, PITEmployeeInput):
                item_id = raw.employee_id
            elif isinstance(raw, dict):
                item_id = str(raw.get("employee_id") or f"#{index}")
            else:
                item_id = f"#{index}"
            try:
                employee = raw if isinstance(raw, PITEmployeeInput) else PITEmployeeInput.model_validate(raw)
                result = self.calculate_employee(employee, period)
            except (ValidationError, TaxInputError) as e:
                logger.warning(f"PIT calculation failed for employee {item_id}: {e}")
                batch.errors.append(BatchItemError(item_id=item_id, error=str(e)))
                continue

            batch.results.append(result)
            batch.total_gross += result.gross_income
            batch.total_pit += result.total_tax
            summary[result.method.value] += 1

        batch.summary = summary
        logger.info(
            f"PIT batch {period}: {len(batch.results)} calculated, {len(batch.errors)} failed, "
            f"total PIT {batch.total_pit}"
        )
        return batch
