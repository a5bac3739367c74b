"""Core utilities: configuration, money, periods, errors"""

from .config import Settings, TaxDefaults, PITConfig, PITBracket, DEFAULT_PIT_BRACKETS, get_settings
from .errors import TaxInputError, InvalidPeriodError, MissingFieldError
from .money import to_decimal, round_vnd, format_vnd
from .periods import parse_period, period_type_of

__all__ = [
    "Settings",
    "TaxDefaults",
    "PITConfig",
    "PITBracket",
    "DEFAULT_PIT_BRACKETS",
    "get_settings",
    "TaxInputError",
    "InvalidPeriodError",
    "MissingFieldError",
    "to_decimal",
    "round_vnd",
    "format_vnd",
    "parse_period",
    "period_type_of",
]
