"""
Tax period parsing - annual (YYYY), quarterly (YYYY-Qn) and monthly (YYYY-MM)
"""

import calendar
import re
from datetime import date
from typing import Optional, Tuple

from .errors import InvalidPeriodError

ANNUAL = "ANNUAL"
QUARTERLY = "QUARTERLY"
MONTHLY = "MONTHLY"

_ANNUAL_RE = re.compile(r"^(\d{4})$")
_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def period_type_of(period: str) -> str:
    """Detect the period type from its format"""
    if _ANNUAL_RE.match(period or ""):
        return ANNUAL
    if _QUARTER_RE.match(period or ""):
        return QUARTERLY
    if _MONTH_RE.match(period or ""):
        return MONTHLY
    raise InvalidPeriodError(period, "YYYY, YYYY-Q1..YYYY-Q4 or YYYY-MM")


def parse_period(period: str, period_type: Optional[str] = None) -> Tuple[date, date]:
    """
    Resolve a period string to its inclusive (start, end) dates

    Args:
        period: "2024", "2024-Q3" or "2024-07"
        period_type: expected type; when given, the format must match it
    """
    detected = period_type_of(period)
    if period_type and period_type != detected:
        expected = {ANNUAL: "YYYY", QUARTERLY: "YYYY-Q1..YYYY-Q4", MONTHLY: "YYYY-MM"}.get(
            period_type, period_type
        )
        raise InvalidPeriodError(period, expected)

    year = int(period[:4])
    if detected == ANNUAL:
        return date(year, 1, 1), date(year, 12, 31)
    if detected == QUARTERLY:
        quarter = int(period[-1])
        start_month = (quarter - 1) * 3 + 1
        end_month = start_month + 2
        return date(year, start_month, 1), date(year, end_month, calendar.monthrange(year, end_month)[1])
    month = int(period[5:7])
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])
