"""
Tax Code Lookup - MST registry lookup and company name matching

Lookups call the public business registry (VietQR) once per tax code with a
bounded timeout. Any failure comes back as a TaxCodeLookupResult with
success=False and never raises; callers fall back to manual entry.
"""

import logging
import re
import unicodedata
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from ..core.config import get_settings
from .cache import Cache, LookupCache

logger = logging.getLogger(__name__)


# Legal-entity words replaced by their customary abbreviations
ABBREVIATIONS = (
    ("CÔNG TY", "CTY"),
    ("TRÁCH NHIỆM HỮU HẠN", "TNHH"),
    ("CỔ PHẦN", "CP"),
    ("TƯ NHÂN", "TN"),
    ("DOANH NGHIỆP", "DN"),
    ("THƯƠNG MẠI", "TM"),
    ("DỊCH VỤ", "DV"),
    ("VIỆT NAM", "VN"),
)

_PUNCTUATION_RE = re.compile(r"[.,\-_()&/\"']")
_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATORS_RE = re.compile(r"[\s\-]")
_TAX_CODE_RE = re.compile(r"[0-9]{10}|[0-9]{13}")


class LookupSource(str, Enum):
    REGISTRY = "REGISTRY"
    CACHE = "CACHE"
    MANUAL = "MANUAL"


class TaxCodeLookupResult(BaseModel):
    success: bool
    tax_code: str
    name: Optional[str] = None
    short_name: Optional[str] = None
    address: Optional[str] = None
    source: LookupSource
    error: Optional[str] = None
    not_registered: bool = False
    name_match: Optional[bool] = None
    name_match_score: Optional[int] = None


class NameMatch(BaseModel):
    is_match: bool
    score: int


class PartnerValidation(BaseModel):
    is_valid: bool
    tax_code_status: str  # ACTIVE | UNKNOWN | INVALID
    name_match: bool
    name_match_score: Optional[int] = None
    registered_name: Optional[str] = None
    message: str


def clean_tax_code(tax_code: str) -> str:
    """Strip spaces and dashes"""
    return _SEPARATORS_RE.sub("", tax_code or "")


def is_valid_tax_code_format(tax_code: str) -> bool:
    """MST is 10 digits (entity) or 13 digits (branch)"""
    if not tax_code:
        return False
    return bool(_TAX_CODE_RE.fullmatch(clean_tax_code(tax_code)))


def normalize_company_name(name: str) -> str:
    """Uppercase, abbreviate legal-entity words, drop punctuation, collapse whitespace"""
    text = unicodedata.normalize("NFC", name or "").upper()
    for long_form, short_form in ABBREVIATIONS:
        text = text.replace(long_form, short_form)
    text = _PUNCTUATION_RE.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance with unit insert/delete/substitute costs"""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def similarity_score(s1: str, s2: str) -> int:
    """round((max_len - distance) / max_len * 100), half-up"""
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 100
    distance = levenshtein_distance(s1, s2)
    score = Decimal(longest - distance) * 100 / Decimal(longest)
    return int(score.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def match_company_name(input_name: str, registered_name: str, threshold: int = 70) -> NameMatch:
    """
    Fuzzy match a user-entered company name against the registered one

    Returns:
        NameMatch: 100 for identical normalized names, 90 when one contains
        the other, otherwise the edit-distance similarity
    """
    if not input_name or not registered_name:
        return NameMatch(is_match=False, score=0)

    n1 = normalize_company_name(input_name)
    n2 = normalize_company_name(registered_name)
    if not n1 or not n2:
        return NameMatch(is_match=False, score=0)

    if n1 == n2:
        return NameMatch(is_match=True, score=100)

    if n1 in n2 or n2 in n1:
        return NameMatch(is_match=True, score=90)

    score = similarity_score(n1, n2)
    return NameMatch(is_match=score >= threshold, score=score)


class TaxCodeLookupService:
    """Looks up supplier tax codes in the business registry"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[LookupCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        match_threshold: Optional[int] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.mst_lookup_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.mst_lookup_timeout
        self.cache = cache or LookupCache(Cache(ttl=settings.cache_ttl))
        self.transport = transport
        self.match_threshold = match_threshold if match_threshold is not None else settings.name_match_threshold

    def _failure(self, tax_code: str, error: str, source: LookupSource, not_registered: bool = False) -> TaxCodeLookupResult:
        return TaxCodeLookupResult(
            success=False,
            tax_code=tax_code,
            source=source,
            error=error,
            not_registered=not_registered,
        )

    def _with_name_match(self, result: TaxCodeLookupResult, input_name: Optional[str]) -> TaxCodeLookupResult:
        if not input_name or not result.success or not result.name:
            return result
        match = match_company_name(input_name, result.name, self.match_threshold)
        return result.model_copy(update={"name_match": match.is_match, "name_match_score": match.score})

    async def _fetch(self, tax_code: str) -> TaxCodeLookupResult:
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/{tax_code}",
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException:
            logger.warning(f"MST lookup for {tax_code} timed out after {self.timeout}s")
            return self._failure(tax_code, f"Registry lookup timed out after {self.timeout:g}s", LookupSource.REGISTRY)
        except httpx.HTTPError as e:
            logger.error(f"MST lookup for {tax_code} failed: {e}")
            return self._failure(tax_code, f"Registry connection error: {e}", LookupSource.REGISTRY)

        if response.status_code == 404:
            return self._failure(tax_code, "Tax code not found in the registry", LookupSource.REGISTRY, not_registered=True)
        if not response.is_success:
            logger.warning(f"MST lookup for {tax_code} returned HTTP {response.status_code}")
            return self._failure(tax_code, f"Registry returned HTTP {response.status_code}", LookupSource.REGISTRY)

        try:
            payload: Any = response.json()
        except ValueError:
            logger.warning(f"MST lookup for {tax_code} returned a non-JSON body")
            return self._failure(tax_code, "Registry returned an unreadable response", LookupSource.REGISTRY)
        if not isinstance(payload, dict):
            logger.warning(f"MST lookup for {tax_code} returned a {type(payload).__name__} instead of an object")
            return self._failure(tax_code, "Registry returned an unreadable response", LookupSource.REGISTRY)

        data = payload.get("data")
        if payload.get("code") == "00" and isinstance(data, dict) and data.get("name"):
            return TaxCodeLookupResult(
                success=True,
                tax_code=tax_code,
                name=data.get("name"),
                short_name=data.get("shortName"),
                address=data.get("address"),
                source=LookupSource.REGISTRY,
            )

        return self._failure(
            tax_code,
            "Not found in the registry. Supplier details can be entered manually.",
            LookupSource.REGISTRY,
        )

    async def lookup(self, tax_code: str, input_name: Optional[str] = None) -> TaxCodeLookupResult:
        """
        Look up a tax code, optionally scoring input_name against the registered name

        Invalid formats are rejected without a network call.
        """
        cleaned = clean_tax_code(tax_code)
        if not is_valid_tax_code_format(cleaned):
            return self._failure(
                cleaned or (tax_code or ""),
                "Invalid tax code format (10 or 13 digits required)",
                LookupSource.MANUAL,
            )

        cached = self.cache.get(cleaned)
        if cached is not None:
            result = cached.model_copy(update={"source": LookupSource.CACHE})
            return self._with_name_match(result, input_name)

        result = await self._fetch(cleaned)
        if result.success:
            self.cache.set(cleaned, result)
        return self._with_name_match(result, input_name)

    async def validate_partner(self, tax_code: str, input_name: str) -> PartnerValidation:
        """Lookup + name match for a supplier/customer record"""
        result = await self.lookup(tax_code, input_name)

        if not result.success:
            status = "INVALID" if result.source == LookupSource.MANUAL or result.not_registered else "UNKNOWN"
            return PartnerValidation(
                is_valid=False,
                tax_code_status=status,
                name_match=False,
                message=result.error or "Tax code could not be verified",
            )

        if not result.name_match:
            return PartnerValidation(
                is_valid=False,
                tax_code_status="ACTIVE",
                name_match=False,
                name_match_score=result.name_match_score,
                registered_name=result.name,
                message=f"Name does not match ({result.name_match_score}%). Registered name: {result.name}",
            )

        return PartnerValidation(
            is_valid=True,
            tax_code_status="ACTIVE",
            name_match=True,
            name_match_score=result.name_match_score,
            registered_name=result.name,
            message="Tax code is valid and the name matches",
        )
