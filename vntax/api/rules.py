"""
Rules API routes
"""

from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..rules.models import TaxRule
from .dependencies import get_rule_repository

router = APIRouter()


class RuleResponse(BaseModel):
    id: str
    code: str
    rule_type: str
    action: str
    condition: Optional[Any] = None
    value: Optional[Decimal] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    priority: int
    name: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    is_active: bool


def _to_response(rule: TaxRule) -> RuleResponse:
    return RuleResponse(**rule.model_dump(exclude={"category"}, mode="json"))


@router.get("/rules", response_model=List[RuleResponse])
async def get_rules(
    rule_type: Optional[str] = Query(None),
    active_only: bool = Query(True),
    repository=Depends(get_rule_repository),
):
    """List stored rules with optional filtering"""
    rules = await repository.list_all(rule_type, active_only=active_only)
    return [_to_response(rule) for rule in rules]


@router.get("/rules/{rule_id}", response_model=RuleResponse)
async def get_rule_by_id(rule_id: str, repository=Depends(get_rule_repository)):
    """Get a specific rule by id"""
    rule = await repository.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return _to_response(rule)
