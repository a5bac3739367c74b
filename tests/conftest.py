"""Pytest configuration and shared fixtures."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from vntax.rules.defaults import default_rules
from vntax.rules.engine import RulesEngine
from vntax.rules.models import RuleAction, RuleType, TaxRule
from vntax.rules.repository import InMemoryRuleRepository
from vntax.services.cache import Cache, LookupCache
from vntax.services.tax_code_lookup import TaxCodeLookupService

TODAY = date(2025, 6, 30)

REGISTRY = {
    "0101234567": {"name": "CÔNG TY TNHH ABC", "shortName": "ABC", "address": "Hà Nội"},
    "0309876543": {"name": "CÔNG TY CỔ PHẦN THƯƠNG MẠI XYZ", "shortName": "XYZ", "address": "TP HCM"},
}


def make_rule(**overrides) -> TaxRule:
    """TaxRule with sensible defaults for tests."""
    data = {
        "id": "rule-1",
        "code": "TEST_RULE",
        "rule_type": RuleType.VAT,
        "action": RuleAction.REJECT,
        "priority": 100,
    }
    data.update(overrides)
    return TaxRule(**data)


def registry_handler(request: httpx.Request) -> httpx.Response:
    """Fake VietQR business endpoint."""
    tax_code = request.url.path.rsplit("/", 1)[-1]
    if tax_code == "9999999999":
        return httpx.Response(503, text="maintenance")
    if tax_code == "8888888888":
        raise httpx.ConnectTimeout("timed out", request=request)
    if tax_code == "1111111111":
        return httpx.Response(404, json={"code": "404", "desc": "not registered"})
    if tax_code == "7777777777":
        return httpx.Response(200, text="<html>not json</html>")
    if tax_code == "6666666666":
        return httpx.Response(200, json=["unexpected", "list"])
    record = REGISTRY.get(tax_code)
    if record is None:
        return httpx.Response(200, content=json.dumps({"code": "52", "desc": "not found", "data": None}))
    return httpx.Response(200, json={"code": "00", "desc": "success", "data": {"id": tax_code, **record}})


@pytest.fixture
def default_repository():
    """In-memory rule store seeded with the default rules."""
    return InMemoryRuleRepository(default_rules())


@pytest.fixture
def engine(default_repository):
    return RulesEngine(default_repository)


@pytest.fixture
def empty_engine():
    return RulesEngine(InMemoryRuleRepository())


@pytest.fixture
def registry_calls():
    return []


@pytest.fixture
def lookup_service(registry_calls):
    """Lookup service wired to the fake registry."""

    def handler(request: httpx.Request) -> httpx.Response:
        registry_calls.append(str(request.url))
        return registry_handler(request)

    return TaxCodeLookupService(
        base_url="https://registry.test/v2/business",
        timeout=1.0,
        cache=LookupCache(Cache(ttl=60)),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def cash_purchase():
    """Scenario A purchase: 25,000,000 paid in cash."""
    return {
        "transaction_id": "tx-1",
        "invoice_number": "0000123",
        "invoice_date": date(2025, 6, 1),
        "supplier_tax_code": "0101234567",
        "supplier_name": "Cty TNHH ABC",
        "goods_value": Decimal("22500000"),
        "vat_amount": Decimal("2500000"),
        "total_amount": Decimal("25000000"),
        "payment_method": "CASH",
        "current_date": TODAY,
    }
