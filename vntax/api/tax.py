"""
Tax API routes - VAT validation, CIT, PIT and MST lookup
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..core.money import ZERO
from ..rules.cit import CITCalculationResult, CITCalculator
from ..rules.engine import RulesEngine
from ..rules.pit import (
    PITBatchResult,
    PITCalculationResult,
    PITCalculator,
    PITMethod,
    determine_method,
    load_pit_config,
)
from ..rules.vat_validation import VATIssuesReport, VATTransaction, VATValidationResult, VATValidator
from ..services.tax_code_lookup import TaxCodeLookupResult, TaxCodeLookupService
from .dependencies import get_lookup_service, get_rules_engine

router = APIRouter(prefix="/tax")


class VATIssuesRequest(BaseModel):
    from_date: date
    to_date: date
    transactions: List[Dict[str, Any]]


class CITRequest(BaseModel):
    period: str
    accounting_profit: Decimal = ZERO
    expense_lines: List[Dict[str, Any]] = []
    average_monthly_salary: Optional[Decimal] = None


class PITRequest(BaseModel):
    gross_income: Decimal
    dependents: Optional[int] = None
    insurance_paid: Optional[Decimal] = None
    other_deduction: Decimal = ZERO
    method: Optional[PITMethod] = None
    is_non_resident: bool = False
    worker_type: Optional[str] = None
    contract_months: Optional[int] = None
    has_commitment_08: bool = False
    as_of_date: Optional[date] = None


class PITBatchRequest(BaseModel):
    period: str
    employees: List[Dict[str, Any]]
    as_of_date: Optional[date] = None


@router.post("/vat/validate", response_model=VATValidationResult)
async def validate_vat(
    transaction: VATTransaction,
    engine: RulesEngine = Depends(get_rules_engine),
    lookup: TaxCodeLookupService = Depends(get_lookup_service),
):
    """Validate input VAT deductibility for one purchase"""
    return await VATValidator(engine, lookup).validate(transaction)


@router.post("/vat/issues", response_model=VATIssuesReport)
async def vat_issues(
    request: VATIssuesRequest,
    engine: RulesEngine = Depends(get_rules_engine),
):
    """Issues report over purchases in a date range (no registry lookups)"""
    validator = VATValidator(engine)
    return await validator.issues_report(request.transactions, request.from_date, request.to_date)


@router.post("/cit/calculate", response_model=CITCalculationResult)
async def calculate_cit(
    request: CITRequest,
    engine: RulesEngine = Depends(get_rules_engine),
):
    """Calculate CIT add-backs and payable for a period"""
    return await CITCalculator(engine).calculate(
        request.expense_lines, request.period, request.accounting_profit, request.average_monthly_salary
    )


@router.post("/pit/calculate", response_model=PITCalculationResult)
async def calculate_pit(
    request: PITRequest,
    engine: RulesEngine = Depends(get_rules_engine),
):
    """Calculate PIT for one employee-month"""
    config = await load_pit_config(engine, request.as_of_date)
    if request.method is not None:
        method, reason = request.method, "Method set by caller"
    else:
        method, reason = determine_method(
            request.gross_income,
            is_non_resident=request.is_non_resident,
            worker_type=request.worker_type,
            contract_months=request.contract_months,
            has_commitment_08=request.has_commitment_08,
            config=config,
        )
    result = PITCalculator(config).calculate(
        request.gross_income,
        request.dependents,
        insurance_paid=request.insurance_paid,
        method=method,
        other_deduction=request.other_deduction,
    )
    return result.model_copy(update={"method_reason": reason})


@router.post("/pit/batch", response_model=PITBatchResult)
async def calculate_pit_batch(
    request: PITBatchRequest,
    engine: RulesEngine = Depends(get_rules_engine),
):
    """Calculate PIT for every employee in a payroll period"""
    config = await load_pit_config(engine, request.as_of_date)
    return PITCalculator(config).calculate_batch(request.period, request.employees)


@router.get("/mst/{tax_code}", response_model=TaxCodeLookupResult)
async def lookup_tax_code(
    tax_code: str,
    name: Optional[str] = Query(None, description="Company name to match against the registry"),
    lookup: TaxCodeLookupService = Depends(get_lookup_service),
):
    """Look up a supplier tax code (MST) in the business registry"""
    return await lookup.lookup(tax_code, name)
