"""
VAT Validation - input VAT deductibility for single purchases and period reports
"""

import asyncio
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from ..core.config import TaxDefaults
from ..core.money import ONE, ZERO, format_vnd, round_vnd
from ..services.tax_code_lookup import TaxCodeLookupService
from .engine import RulesEngine, most_restrictive
from .models import BatchItemError, EvaluationContext, RuleAction, RuleType

logger = logging.getLogger(__name__)


class VATTransaction(BaseModel):
    """Facts about one purchase invoice"""

    transaction_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    supplier_tax_code: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_status: Optional[str] = None

    goods_value: Decimal = ZERO
    vat_amount: Decimal = ZERO
    total_amount: Optional[Decimal] = None  # defaults to goods_value + vat_amount

    payment_method: Optional[str] = None
    has_bank_payment: bool = False
    usage_purpose: Optional[str] = None
    category: Optional[str] = None
    amount_per_person: Optional[Decimal] = None

    asset_type: Optional[str] = None
    vehicle_type: Optional[str] = None
    seats: Optional[int] = None
    is_transport_biz: bool = False

    current_date: Optional[date] = None
    skip_registry_lookup: bool = False

    @property
    def payable_amount(self) -> Decimal:
        if self.total_amount is not None:
            return self.total_amount
        return self.goods_value + self.vat_amount


class RegistryCheck(BaseModel):
    found: bool
    registered_name: Optional[str] = None
    name_match: Optional[bool] = None
    name_match_score: Optional[int] = None
    error: Optional[str] = None


class VATValidationResult(BaseModel):
    is_deductible: bool
    is_partial: bool = False
    original_vat_amount: Decimal
    deductible_amount: Decimal
    non_deductible_amount: Decimal
    deduction_ratio: Optional[Decimal] = None
    rejection_code: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []
    applied_rules: List[str] = []
    registry: Optional[RegistryCheck] = None
    summary: str = ""


class VATIssueItem(BaseModel):
    transaction_id: str
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    supplier_name: Optional[str] = None
    supplier_tax_code: Optional[str] = None
    total_amount: Decimal
    vat_amount: Decimal
    deductible_amount: Decimal
    is_deductible: bool
    is_partial: bool
    rejection_code: Optional[str] = None
    errors: List[str] = []
    warnings: List[str] = []


class VATIssuesSummary(BaseModel):
    total_invoices: int = 0
    total_vat: Decimal = ZERO
    deductible_count: int = 0
    deductible_vat: Decimal = ZERO
    non_deductible_count: int = 0
    non_deductible_vat: Decimal = ZERO
    warning_count: int = 0
    partial_count: int = 0
    failed_count: int = 0


class VATIssuesReport(BaseModel):
    from_date: date
    to_date: date
    summary: VATIssuesSummary
    issues: List[VATIssueItem] = []
    failures: List[BatchItemError] = []
    generated_at: datetime


class _Outcome:
    """Mutable accumulator for one validation run"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.applied_rules: List[str] = []
        self.rejection_code: Optional[str] = None
        self.fraction: Decimal = ONE

    def reject(self, code: str, message: str) -> None:
        self.errors.append(message)
        self.applied_rules.append(code)
        if self.rejection_code is None:
            self.rejection_code = code

    def warn(self, code: str, message: str) -> None:
        self.warnings.append(message)
        self.applied_rules.append(code)

    def limit(self, code: str, fraction: Decimal) -> None:
        self.fraction = min(self.fraction, fraction)
        self.applied_rules.append(code)


class VATValidator:
    """Decides whether input VAT on a purchase may be deducted"""

    def __init__(
        self,
        rules_engine: RulesEngine,
        lookup_service: Optional[TaxCodeLookupService] = None,
        defaults: Optional[TaxDefaults] = None,
    ):
        self.rules_engine = rules_engine
        self.lookup_service = lookup_service
        self.defaults = defaults or TaxDefaults()

    def _context(self, tx: VATTransaction, as_of: date) -> EvaluationContext:
        return EvaluationContext(
            amount=tx.payable_amount,
            total_amount=tx.payable_amount,
            vat_amount=tx.vat_amount,
            payment_method=tx.payment_method,
            supplier_tax_code=tx.supplier_tax_code,
            supplier_status=tx.supplier_status,
            invoice_number=tx.invoice_number,
            invoice_date=tx.invoice_date,
            has_valid_invoice=bool(tx.invoice_number and tx.supplier_tax_code),
            current_date=as_of,
            asset_type=tx.asset_type,
            vehicle_type=tx.vehicle_type,
            seats=tx.seats,
            original_price=tx.goods_value,
            biz_type="TRANSPORT" if tx.is_transport_biz else None,
            amount_per_person=tx.amount_per_person,
            category=tx.category,
            usage_purpose=tx.usage_purpose,
        )

    async def _check_registry(self, tx: VATTransaction, outcome: _Outcome) -> Optional[RegistryCheck]:
        if self.lookup_service is None or tx.skip_registry_lookup or not tx.supplier_tax_code:
            return None

        result = await self.lookup_service.lookup(tx.supplier_tax_code, tx.supplier_name)
        if not result.success:
            outcome.warn(
                "VAT_REGISTRY_LOOKUP",
                f"Supplier tax code could not be verified in the registry ({result.error}). Check it manually.",
            )
            return RegistryCheck(found=False, error=result.error)

        check = RegistryCheck(
            found=True,
            registered_name=result.name,
            name_match=result.name_match,
            name_match_score=result.name_match_score,
        )
        if result.name_match is False:
            outcome.warn(
                "VAT_REGISTRY_NAME",
                f"Supplier name matches the registered name only {result.name_match_score}%. "
                f"Registered name: {result.name}",
            )
        return check

    async def validate(self, transaction: VATTransaction) -> VATValidationResult:
        """
        Validate one purchase

        Built-in checks run first, then VAT rules from the rule store. Any
        error blocks deduction; PARTIAL outcomes keep the smallest deductible
        fraction; warnings never block.
        """
        tx = transaction
        as_of = tx.current_date or date.today()
        outcome = _Outcome()

        cash_threshold = await self.rules_engine.get_rule_value(
            RuleType.VAT_CONFIG, "cash_threshold", self.defaults.vat_cash_threshold, as_of_date=as_of
        )
        max_age = await self.rules_engine.get_rule_value(
            RuleType.VAT_CONFIG, "invoice_max_age_years", self.defaults.invoice_max_age_years, as_of_date=as_of
        )
        luxury_cap = await self.rules_engine.get_rule_value(
            RuleType.VAT_CONFIG, "car_luxury_cap", self.defaults.car_luxury_cap, as_of_date=as_of
        )

        # Invoice information
        if not tx.invoice_number:
            outcome.reject("VAT_INVOICE_INFO", "Missing invoice number: input VAT is not deductible without an invoice")
        if not tx.supplier_tax_code:
            outcome.reject("VAT_MISSING_MST", "Missing supplier tax code (MST): input VAT is not deductible")

        registry = await self._check_registry(tx, outcome)

        if tx.supplier_status and tx.supplier_status in self.defaults.bad_supplier_statuses:
            outcome.reject(
                "VAT_SUPPLIER_STATUS",
                f"Supplier status is {tx.supplier_status}: input VAT is not deductible",
            )

        # Non-cash payment
        amount = tx.payable_amount
        if tx.payment_method == "CASH" and not tx.has_bank_payment and amount >= cash_threshold:
            outcome.reject(
                "VAT_NON_CASH",
                f"Cash payment of {format_vnd(amount)} is at or above the {format_vnd(cash_threshold)} "
                f"cash threshold: input VAT is not deductible (pay by bank transfer)",
            )

        if tx.usage_purpose in self.defaults.non_business_purposes:
            outcome.reject(
                "VAT_NON_BIZ",
                f"Expense for {tx.usage_purpose} use does not serve the business: input VAT is not deductible",
            )

        # Vehicles
        is_small_car = (
            tx.vehicle_type == "CAR"
            and tx.seats is not None
            and tx.seats < self.defaults.min_deductible_car_seats
        )
        if is_small_car and not tx.is_transport_biz:
            outcome.reject(
                "VAT_VEHICLE_9SEATS",
                f"Passenger car under {self.defaults.min_deductible_car_seats} seats outside a transport business: "
                f"input VAT is not deductible",
            )

        if (
            tx.asset_type == "CAR_UNDER_9_SEATS"
            and not tx.is_transport_biz
            and not outcome.errors
            and tx.goods_value > luxury_cap
        ):
            ratio = luxury_cap / tx.goods_value
            outcome.limit("VAT_CAR_LUXURY", ratio)
            outcome.warnings.append(
                f"Car value above {format_vnd(luxury_cap)}: only {round_vnd(ratio * 100)}% of input VAT is deductible"
            )

        # Invoice age
        if tx.invoice_date is not None:
            age_years = Decimal((as_of - tx.invoice_date).days) / Decimal("365.25")
            if age_years > max_age:
                outcome.reject(
                    "VAT_INVOICE_AGE",
                    f"Invoice is older than {max_age} years: input VAT may no longer be deducted",
                )

        # Rules from the rule store
        matches = await self.rules_engine.select(RuleType.VAT, self._context(tx, as_of), as_of)
        for match in matches:
            if match.action == RuleAction.REJECT:
                outcome.reject(match.code, match.message)
            elif match.action == RuleAction.PARTIAL:
                fraction = match.resolved_value
                if fraction is None or fraction < ZERO or fraction > ONE:
                    logger.warning(
                        f"Ignoring PARTIAL rule {match.code}: deductible fraction {fraction} is outside [0, 1]"
                    )
                    continue
                outcome.limit(match.code, fraction)
                outcome.warnings.append(match.message)
            elif match.action == RuleAction.WARN:
                outcome.warn(match.code, match.message)

        strongest = most_restrictive(matches)
        if outcome.rejection_code is None and strongest is not None and strongest.action == RuleAction.PARTIAL:
            outcome.rejection_code = strongest.code

        return self._result(tx, outcome, registry)

    def _result(self, tx: VATTransaction, outcome: _Outcome, registry: Optional[RegistryCheck]) -> VATValidationResult:
        vat = tx.vat_amount
        if outcome.errors:
            deductible = ZERO
            is_partial = False
            summary = f"Not deductible: {outcome.errors[0]}"
        elif outcome.fraction < ONE:
            deductible = round_vnd(vat * outcome.fraction)
            is_partial = True
            summary = (
                f"Partially deductible: {format_vnd(deductible)} "
                f"({round_vnd(outcome.fraction * 100)}%)"
            )
        else:
            deductible = vat
            is_partial = False
            summary = f"Deductible: {format_vnd(deductible)}"
            if outcome.warnings:
                summary += f" ({len(outcome.warnings)} warnings)"

        return VATValidationResult(
            is_deductible=not outcome.errors,
            is_partial=is_partial,
            original_vat_amount=vat,
            deductible_amount=deductible,
            non_deductible_amount=vat - deductible,
            deduction_ratio=outcome.fraction if is_partial else None,
            rejection_code=outcome.rejection_code,
            errors=outcome.errors,
            warnings=outcome.warnings,
            applied_rules=outcome.applied_rules,
            registry=registry,
            summary=summary,
        )

    async def issues_report(
        self,
        transactions: Sequence[Union[VATTransaction, Dict[str, Any]]],
        from_date: date,
        to_date: date,
    ) -> VATIssuesReport:
        """
        Validate every purchase dated within [from_date, to_date]

        Returns:
            VATIssuesReport: summary counts/amounts by outcome, one issue row
            per purchase that is not cleanly deductible, and one failure per
            purchase that could not be evaluated. Failures are excluded from
            the totals.
        """

        async def run(index: int, raw: Union[VATTransaction, Dict[str, Any]]) -> Tuple[str, Any]:
            item_id = f"#{index}"
            try:
                raw_id = raw.get("transaction_id") if isinstance(raw, dict) else getattr(raw, "transaction_id", None)
                if raw_id:
                    item_id = str(raw_id)
                tx = raw if isinstance(raw, VATTransaction) else VATTransaction.model_validate(raw)
                if tx.invoice_date is not None and not (from_date <= tx.invoice_date <= to_date):
                    return item_id, None
                return item_id, (tx, await self.validate(tx))
            except Exception as e:
                logger.warning(f"VAT validation failed for transaction {item_id}: {e}")
                return item_id, BatchItemError(item_id=item_id, error=str(e))

        outcomes = await asyncio.gather(*(run(i, raw) for i, raw in enumerate(transactions)))

        summary = VATIssuesSummary()
        issues: List[VATIssueItem] = []
        failures: List[BatchItemError] = []

        for item_id, outcome in outcomes:
            if outcome is None:
                continue
            if isinstance(outcome, BatchItemError):
                failures.append(outcome)
                continue

            tx, result = outcome
            summary.total_invoices += 1
            summary.total_vat += tx.vat_amount

            if result.is_partial:
                summary.partial_count += 1
                summary.deductible_vat += result.deductible_amount
                summary.non_deductible_vat += result.non_deductible_amount
            elif result.is_deductible:
                summary.deductible_count += 1
                summary.deductible_vat += tx.vat_amount
                if result.warnings:
                    summary.warning_count += 1
                else:
                    continue
            else:
                summary.non_deductible_count += 1
                summary.non_deductible_vat += tx.vat_amount

            issues.append(
                VATIssueItem(
                    transaction_id=item_id,
                    invoice_number=tx.invoice_number,
                    invoice_date=tx.invoice_date,
                    supplier_name=tx.supplier_name,
                    supplier_tax_code=tx.supplier_tax_code,
                    total_amount=tx.payable_amount,
                    vat_amount=tx.vat_amount,
                    deductible_amount=result.deductible_amount,
                    is_deductible=result.is_deductible,
                    is_partial=result.is_partial,
                    rejection_code=result.rejection_code,
                    errors=result.errors,
                    warnings=result.warnings,
                )
            )

        summary.failed_count = len(failures)
        logger.info(
            f"VAT issues report {from_date}..{to_date}: {summary.total_invoices} invoices, "
            f"{len(issues)} issues, {len(failures)} failures"
        )
        return VATIssuesReport(
            from_date=from_date,
            to_date=to_date,
            summary=summary,
            issues=issues,
            failures=failures,
            generated_at=datetime.now(),
        )


def export_issues_json(report: VATIssuesReport, file_path: str) -> None:
    """Export issues report as JSON"""
    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(report.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
    logger.info(f"Exported VAT issues report to {file_path}")


def export_issues_excel(report: VATIssuesReport, file_path: str) -> None:
    """Export issues report as Excel (requires openpyxl)"""
    try:
        from openpyxl import Workbook
        from openpyxl.styles import Alignment, Font
    except ImportError:
        logger.warning("openpyxl not installed. Cannot export to Excel. Install with: pip install openpyxl")
        raise

    wb = Workbook()
    ws = wb.active
    ws.title = "VAT Issues"

    ws["A1"] = "Input VAT Issues"
    ws["A1"].font = Font(bold=True, size=14)
    ws.merge_cells("A1:H1")

    summary = report.summary
    rows = [
        ("Period:", f"{report.from_date.isoformat()} - {report.to_date.isoformat()}"),
        ("Total invoices:", summary.total_invoices),
        ("Total VAT:", int(summary.total_vat)),
        ("Deductible VAT:", int(summary.deductible_vat)),
        ("Non-deductible VAT:", int(summary.non_deductible_vat)),
        ("Partial:", summary.partial_count),
        ("With warnings:", summary.warning_count),
    ]
    row = 3
    for label, value in rows:
        ws[f"A{row}"] = label
        ws[f"B{row}"] = value
        row += 1
    row += 1

    headers = ["Transaction", "Invoice Number", "Invoice Date", "Supplier", "Tax Code",
               "VAT Amount", "Deductible", "Status", "Reasons"]
    for col, header in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col)
        cell.value = header
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")
    row += 1

    for item in report.issues:
        if item.is_partial:
            status = "PARTIAL"
        elif item.is_deductible:
            status = "WARNING"
        else:
            status = "REJECTED"
        ws.cell(row=row, column=1).value = item.transaction_id
        ws.cell(row=row, column=2).value = item.invoice_number or ""
        ws.cell(row=row, column=3).value = item.invoice_date.isoformat() if item.invoice_date else ""
        ws.cell(row=row, column=4).value = item.supplier_name or ""
        ws.cell(row=row, column=5).value = item.supplier_tax_code or ""
        ws.cell(row=row, column=6).value = int(item.vat_amount)
        ws.cell(row=row, column=7).value = int(item.deductible_amount)
        ws.cell(row=row, column=8).value = status
        ws.cell(row=row, column=9).value = "; ".join(item.errors + item.warnings)
        row += 1

    if report.failures:
        ws2 = wb.create_sheet("Failures")
        ws2["A1"] = "Transaction"
        ws2["B1"] = "Error"
        ws2["A1"].font = Font(bold=True)
        ws2["B1"].font = Font(bold=True)
        for idx, failure in enumerate(report.failures, start=2):
            ws2.cell(row=idx, column=1).value = failure.item_id
            ws2.cell(row=idx, column=2).value = failure.error

    wb.save(file_path)
    logger.info(f"Exported VAT issues report to Excel: {file_path}")
