"""
Configuration - process settings from the environment and immutable tax constants
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator


class Settings(BaseModel):
    """Process-level settings"""

    model_config = ConfigDict(frozen=True)

    db_path: Path = Path("./data/vntax.db")
    mst_lookup_url: str = "https://api.vietqr.io/v2/business"
    mst_lookup_timeout: float = 10.0
    name_match_threshold: int = 70
    cache_ttl: int = 3600
    log_level: str = "INFO"
    seed_default_rules: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=Path(os.getenv("VNTAX_DB_PATH", "./data/vntax.db")),
            mst_lookup_url=os.getenv("MST_LOOKUP_URL", "https://api.vietqr.io/v2/business"),
            mst_lookup_timeout=float(os.getenv("MST_LOOKUP_TIMEOUT", "10")),
            name_match_threshold=int(os.getenv("NAME_MATCH_THRESHOLD", "70")),
            cache_ttl=int(os.getenv("CACHE_TTL", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            seed_default_rules=os.getenv("SEED_DEFAULT_RULES", "true").lower() in ("1", "true", "yes"),
        )


class TaxDefaults(BaseModel):
    """Built-in VAT/CIT constants used when no CONFIG_VALUE rule overrides them"""

    model_config = ConfigDict(frozen=True)

    vat_cash_threshold: Decimal = Decimal("20000000")
    invoice_max_age_years: Decimal = Decimal("5")
    car_luxury_cap: Decimal = Decimal("1600000000")
    cit_rate: Decimal = Decimal("20")  # percent
    cit_entertainment_cap: Decimal = Decimal("15")  # percent of total expenses
    cit_welfare_cap_months: Decimal = Decimal("1")  # months of average salary
    bad_supplier_statuses: Tuple[str, ...] = ("SUSPENDED", "CLOSED", "BANKRUPT")
    non_business_purposes: Tuple[str, ...] = ("PERSONAL", "WELFARE_FUND")
    min_deductible_car_seats: int = 9


class PITBracket(BaseModel):
    """One step of the progressive ladder, taxed on [lower, upper)"""

    model_config = ConfigDict(frozen=True)

    bracket: int
    lower: Decimal
    upper: Optional[Decimal] = None  # None = no upper bound
    rate: Decimal  # fraction, e.g. 0.05

    @model_validator(mode="after")
    def _check_bounds(self) -> "PITBracket":
        if self.upper is not None and self.upper <= self.lower:
            raise ValueError(f"Bracket {self.bracket}: upper bound must exceed lower bound")
        return self


DEFAULT_PIT_BRACKETS: Tuple[PITBracket, ...] = (
    PITBracket(bracket=1, lower=Decimal("0"), upper=Decimal("5000000"), rate=Decimal("0.05")),
    PITBracket(bracket=2, lower=Decimal("5000000"), upper=Decimal("10000000"), rate=Decimal("0.10")),
    PITBracket(bracket=3, lower=Decimal("10000000"), upper=Decimal("18000000"), rate=Decimal("0.15")),
    PITBracket(bracket=4, lower=Decimal("18000000"), upper=Decimal("32000000"), rate=Decimal("0.20")),
    PITBracket(bracket=5, lower=Decimal("32000000"), upper=Decimal("52000000"), rate=Decimal("0.25")),
    PITBracket(bracket=6, lower=Decimal("52000000"), upper=Decimal("80000000"), rate=Decimal("0.30")),
    PITBracket(bracket=7, lower=Decimal("80000000"), upper=None, rate=Decimal("0.35")),
)


class PITConfig(BaseModel):
    """Personal income tax constants (monthly amounts)"""

    model_config = ConfigDict(frozen=True)

    brackets: Tuple[PITBracket, ...] = DEFAULT_PIT_BRACKETS
    self_deduction: Decimal = Decimal("11000000")
    dependent_deduction: Decimal = Decimal("4400000")
    insurance_rate: Decimal = Decimal("0.105")  # BHXH 8% + BHYT 1.5% + BHTN 1%
    flat_rate_resident: Decimal = Decimal("0.10")
    flat_rate_non_resident: Decimal = Decimal("0.20")
    flat_rate_threshold: Decimal = Decimal("2000000")
    casual_contract_months: int = 3

    @model_validator(mode="after")
    def _check_ladder(self) -> "PITConfig":
        previous_upper = Decimal("0")
        for b in self.brackets:
            if b.lower != previous_upper:
                raise ValueError(f"Bracket {b.bracket} does not start where the previous one ends")
            if b.upper is None and b is not self.brackets[-1]:
                raise ValueError("Only the last bracket may be unbounded")
            previous_upper = b.upper if b.upper is not None else previous_upper
        return self


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
