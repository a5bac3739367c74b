"""Services: registry lookup and caching"""

from .cache import Cache, LookupCache, get_cache, get_lookup_cache
from .tax_code_lookup import (
    LookupSource,
    NameMatch,
    PartnerValidation,
    TaxCodeLookupResult,
    TaxCodeLookupService,
    clean_tax_code,
    is_valid_tax_code_format,
    match_company_name,
    normalize_company_name,
)

__all__ = [
    "Cache",
    "LookupCache",
    "get_cache",
    "get_lookup_cache",
    "LookupSource",
    "NameMatch",
    "PartnerValidation",
    "TaxCodeLookupResult",
    "TaxCodeLookupService",
    "clean_tax_code",
    "is_valid_tax_code_format",
    "match_company_name",
    "normalize_company_name",
]
