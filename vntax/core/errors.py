"""
Input errors raised synchronously to the immediate caller
"""

from typing import Optional


class TaxInputError(ValueError):
    """Malformed caller input (bad period, missing required field, ...)"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidPeriodError(TaxInputError):
    """Tax period string does not match the expected format"""

    def __init__(self, period: str, expected: str):
        super().__init__(
            f"Invalid period format: {period!r}. Expected format: {expected}",
            field="period",
        )
        self.period = period


class MissingFieldError(TaxInputError):
    """A required fact is absent from the input"""

    def __init__(self, field: str, item_id: Optional[str] = None):
        where = f" for {item_id}" if item_id else ""
        super().__init__(f"Missing required field '{field}'{where}", field=field)
        self.item_id = item_id
