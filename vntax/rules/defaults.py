"""
Default Vietnamese tax rules seeded into a new rule store
"""

from datetime import date
from typing import Any, Dict, List

from .models import RuleAction, RuleType, TaxRule


DEFAULT_RULES: List[Dict[str, Any]] = [
    # ==================== VAT configuration ====================
    {
        "id": "vat-cash-threshold",
        "code": "cash_threshold",
        "rule_type": RuleType.VAT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 20000000,
        "name": "Non-cash payment threshold",
        "description": "Invoices of 20,000,000 or more must be paid by bank transfer for input VAT to be deductible",
        "reference": "TT219/2013/TT-BTC Art. 15",
        "effective_from": date(2014, 1, 1),
        "priority": 1,
    },
    {
        "id": "vat-invoice-age",
        "code": "invoice_max_age_years",
        "rule_type": RuleType.VAT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 5,
        "name": "Maximum invoice age",
        "description": "Input VAT on invoices older than 5 years may not be declared",
        "reference": "VAT Law",
        "priority": 2,
    },
    {
        "id": "vat-car-luxury-cap",
        "code": "car_luxury_cap",
        "rule_type": RuleType.VAT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 1600000000,
        "name": "Passenger car value cap",
        "description": "Input VAT on cars under 9 seats is deductible only on the first 1.6 billion of value",
        "reference": "TT96/2015/TT-BTC",
        "effective_from": date(2015, 8, 6),
        "priority": 3,
    },
    # ==================== VAT rules ====================
    {
        "id": "vat-entertainment-per-person",
        "code": "VAT_ENTERTAINMENT_PER_PERSON",
        "rule_type": RuleType.VAT,
        "action": RuleAction.WARN,
        "condition": {"category_in": ["ENTERTAINMENT"], "amount_per_person_gte": 500000},
        "name": "Entertainment per person",
        "description": "Entertainment spending of 500,000 or more per person should be reviewed",
        "priority": 50,
    },
    # ==================== CIT configuration ====================
    {
        "id": "cit-rate",
        "code": "rate",
        "rule_type": RuleType.CIT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 20,
        "name": "Corporate income tax rate (%)",
        "description": "Standard CIT rate",
        "reference": "CIT Law 2008 Art. 10, amended 2013",
        "effective_from": date(2016, 1, 1),
        "priority": 1,
    },
    {
        "id": "cit-entertainment-cap",
        "code": "entertainment_cap",
        "rule_type": RuleType.CIT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 15,
        "name": "Entertainment cap (% of total expenses)",
        "description": "Entertainment above this share of total expenses is added back",
        "reference": "TT96/2015/TT-BTC",
        "priority": 1,
    },
    # ==================== CIT add-backs ====================
    {
        "id": "cit-admin-penalty",
        "code": "CIT_PENALTY",
        "rule_type": RuleType.CIT_ADDBACK,
        "action": RuleAction.REJECT,
        "condition": {"category_in": ["ADMIN_PENALTY"]},
        "name": "Administrative penalties",
        "description": "Administrative penalties are not deductible",
        "reference": "TT78/2014/TT-BTC Art. 6",
        "priority": 10,
    },
    {
        "id": "cit-cash-no-invoice",
        "code": "CIT_NO_INVOICE",
        "rule_type": RuleType.CIT_ADDBACK,
        "action": RuleAction.REJECT,
        "condition": {"AND": [{"payment_method": "CASH"}, {"amount_gte": 20000000}]},
        "name": "Cash payments of 20,000,000 or more",
        "description": "Expenses of 20,000,000 or more paid in cash are not deductible",
        "reference": "TT96/2015/TT-BTC Art. 6",
        "priority": 20,
    },
    {
        "id": "cit-labor-no-contract",
        "code": "CIT_LABOR_NO_CONTRACT",
        "rule_type": RuleType.CIT_ADDBACK,
        "action": RuleAction.REJECT,
        "condition": {"category_in": ["SALARY", "WAGES"], "has_labor_contract": False},
        "name": "Wages without a labor contract",
        "description": "Wages paid without a labor contract are not deductible",
        "reference": "TT96/2015/TT-BTC Art. 6",
        "priority": 30,
    },
    {
        "id": "cit-depreciation-tt45",
        "code": "CIT_DEPRECIATION_CAP",
        "rule_type": RuleType.CIT_ADDBACK,
        "action": RuleAction.REJECT,
        "condition": {"category_in": ["DEPRECIATION"], "depreciation_exceeds_tt45": True},
        "name": "Depreciation above the TT45 frame",
        "description": "Depreciation above the TT45 frame is not deductible",
        "reference": "TT45/2013/TT-BTC",
        "priority": 40,
    },
    {
        "id": "cit-entertainment-ratio",
        "code": "CIT_ENTERTAINMENT",
        "rule_type": RuleType.CIT_ADDBACK,
        "action": RuleAction.WARN,
        "condition": {"category_in": ["ENTERTAINMENT"], "entertainment_ratio_gt": 15},
        "name": "Entertainment ratio",
        "description": "Entertainment exceeds 15% of total expenses",
        "reference": "TT96/2015/TT-BTC",
        "priority": 50,
    },
    # ==================== PIT configuration ====================
    {
        "id": "pit-self-deduction",
        "code": "self_deduction",
        "rule_type": RuleType.PIT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 11000000,
        "name": "Family deduction - taxpayer",
        "reference": "NQ954/2020/UBTVQH14",
        "effective_from": date(2020, 7, 1),
        "priority": 1,
    },
    {
        "id": "pit-dependent-deduction",
        "code": "dependent_deduction",
        "rule_type": RuleType.PIT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": 4400000,
        "name": "Family deduction - per dependent",
        "reference": "NQ954/2020/UBTVQH14",
        "effective_from": date(2020, 7, 1),
        "priority": 2,
    },
    {
        "id": "pit-insurance-rate",
        "code": "insurance_rate",
        "rule_type": RuleType.PIT_CONFIG,
        "action": RuleAction.CONFIG_VALUE,
        "value": "10.5",
        "name": "Employee compulsory insurance (%)",
        "priority": 3,
    },
]


def default_rules() -> List[TaxRule]:
    """DEFAULT_RULES as TaxRule objects"""
    return [TaxRule(**rule) for rule in DEFAULT_RULES]
