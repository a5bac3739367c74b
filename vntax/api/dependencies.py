"""
FastAPI dependencies shared by the API routers
"""

from fastapi import Depends, HTTPException

from ..rules.engine import RulesEngine
from ..rules.repository import RuleRepository
from ..services.cache import get_lookup_cache
from ..services.tax_code_lookup import TaxCodeLookupService


def get_rule_repository() -> RuleRepository:
    """Dependency to get the rule store"""
    from ..main import rule_repository
    if rule_repository is None:
        raise HTTPException(status_code=500, detail="Rule store not initialized")
    return rule_repository


def get_rules_engine(repository: RuleRepository = Depends(get_rule_repository)) -> RulesEngine:
    """One engine per request so rule fetches are cached for that request only"""
    return RulesEngine(repository)


def get_lookup_service() -> TaxCodeLookupService:
    """Registry lookups share the process-wide TTL cache"""
    return TaxCodeLookupService(cache=get_lookup_cache())
