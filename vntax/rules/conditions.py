"""
Condition Evaluator - boolean rule conditions over an EvaluationContext

A condition is stored as a JSON tree:

    {"AND": [ ... ]}        every element holds (empty list -> True)
    {"OR": [ ... ]}         at least one element holds (empty list -> False)
    {"NOT": { ... }}        negation of one sub-condition
    {"amount_gte": 20000000, "payment_method": "CASH"}
                            leaf: named predicates, implicitly AND-ed

parse_condition() turns the tree into the closed set of node types below.
A tree that cannot be parsed (unknown predicate, wrong value type, a
combinator mixed with predicates, invalid JSON) becomes a single Malformed
node, which never matches. None / {} / "" mean "no condition" and always
match.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from ..core.money import to_decimal
from .models import EvaluationContext

DAYS_PER_YEAR = Decimal("365.25")


class Leaf(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    predicates: Tuple[Tuple[str, Any], ...] = ()


class AllOf(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: Tuple["Condition", ...] = ()


class AnyOf(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: Tuple["Condition", ...] = ()


class Negation(BaseModel):
    model_config = ConfigDict(frozen=True)

    item: "Condition"


class Malformed(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str


Condition = Union[Leaf, AllOf, AnyOf, Negation, Malformed]

AllOf.model_rebuild()
AnyOf.model_rebuild()
Negation.model_rebuild()

_NODE_TYPES = (Leaf, AllOf, AnyOf, Negation, Malformed)
_COMBINATORS = ("AND", "OR", "NOT")


class _MalformedCondition(Exception):
    pass


# ---------------------------------------------------------------------------
# predicate value parsers
# ---------------------------------------------------------------------------

def _number(name: str, raw: Any) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str, Decimal)):
        raise _MalformedCondition(f"{name}: expected a number, got {raw!r}")
    try:
        value = to_decimal(raw)
    except ValueError:
        raise _MalformedCondition(f"{name}: expected a number, got {raw!r}")
    if value is None or not value.is_finite():
        raise _MalformedCondition(f"{name}: expected a finite number, got {raw!r}")
    return value


def _text(name: str, raw: Any) -> str:
    if not isinstance(raw, str):
        raise _MalformedCondition(f"{name}: expected a string, got {raw!r}")
    return raw


def _text_or_none(name: str, raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return _text(name, raw)


def _flag(name: str, raw: Any) -> bool:
    if not isinstance(raw, bool):
        raise _MalformedCondition(f"{name}: expected true/false, got {raw!r}")
    return raw


def _text_list(name: str, raw: Any) -> Tuple[str, ...]:
    if not isinstance(raw, (list, tuple)) or not all(isinstance(v, str) for v in raw):
        raise _MalformedCondition(f"{name}: expected a list of strings, got {raw!r}")
    return tuple(raw)


def _day(name: str, raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            pass
    raise _MalformedCondition(f"{name}: expected an ISO date, got {raw!r}")


# ---------------------------------------------------------------------------
# predicate checks
# ---------------------------------------------------------------------------

def _amount(ctx: EvaluationContext) -> Decimal:
    if ctx.amount is not None:
        return ctx.amount
    if ctx.total_amount is not None:
        return ctx.total_amount
    return Decimal("0")


def _invoice_age_years(ctx: EvaluationContext, today: date) -> Decimal:
    invoice_date = ctx.invoice_date or today
    return Decimal((today - invoice_date).days) / DAYS_PER_YEAR


def _entertainment_ratio(ctx: EvaluationContext) -> Decimal:
    if not ctx.total_expenses:
        return Decimal("0")
    return (ctx.total_entertainment or Decimal("0")) / ctx.total_expenses * 100


Check = Callable[[Any, EvaluationContext, date], bool]

PREDICATES: Dict[str, Tuple[Callable[[str, Any], Any], Check]] = {
    # amounts
    "amount_gte": (_number, lambda v, c, t: _amount(c) >= v),
    "amount_lte": (_number, lambda v, c, t: _amount(c) <= v),
    "amount_gt": (_number, lambda v, c, t: _amount(c) > v),
    "amount_lt": (_number, lambda v, c, t: _amount(c) < v),
    # payment
    "payment_method": (_text, lambda v, c, t: c.payment_method == v),
    "payment_method_not": (_text, lambda v, c, t: c.payment_method != v),
    # vehicle / asset
    "vehicle_type": (_text, lambda v, c, t: c.vehicle_type == v),
    "seats_lt": (_number, lambda v, c, t: (c.seats or 0) < v),
    "seats_gte": (_number, lambda v, c, t: (c.seats or 0) >= v),
    "asset_type": (_text, lambda v, c, t: c.asset_type == v),
    "original_price_gt": (_number, lambda v, c, t: (c.original_price or 0) > v),
    "biz_type_not": (_text, lambda v, c, t: c.biz_type != v),
    # supplier / invoice
    "supplier_tax_code": (
        _text_or_none,
        lambda v, c, t: not c.supplier_tax_code if v is None else c.supplier_tax_code == v,
    ),
    "supplier_status_in": (_text_list, lambda v, c, t: c.supplier_status in v),
    "has_valid_invoice": (_flag, lambda v, c, t: c.has_valid_invoice == v),
    "invoice_age_years_gt": (_number, lambda v, c, t: _invoice_age_years(c, t) > v),
    # labor
    "has_labor_contract": (_flag, lambda v, c, t: c.has_labor_contract == v),
    "labor_type": (_text, lambda v, c, t: c.labor_type == v),
    "labor_type_in": (_text_list, lambda v, c, t: c.labor_type in v),
    "is_non_resident": (_flag, lambda v, c, t: c.is_non_resident == v),
    "has_commitment_08": (_flag, lambda v, c, t: c.has_commitment_08 == v),
    # entertainment
    "amount_per_person_gte": (_number, lambda v, c, t: (c.amount_per_person or 0) >= v),
    "entertainment_ratio_gt": (_number, lambda v, c, t: _entertainment_ratio(c) > v),
    # depreciation
    "depreciation_exceeds_tt45": (_flag, lambda v, c, t: c.depreciation_exceeds_tt45 == v),
    # classification
    "category_in": (_text_list, lambda v, c, t: (c.category or "") in v),
    "category_not_in": (_text_list, lambda v, c, t: (c.category or "") not in v),
    "expense_type": (_text, lambda v, c, t: c.expense_type == v),
    "usage_purpose": (_text, lambda v, c, t: c.usage_purpose == v),
    # absolute dates
    "date_before": (_day, lambda v, c, t: t < v),
    "date_after": (_day, lambda v, c, t: t > v),
}


# ---------------------------------------------------------------------------
# parsing
# ---------------------------------------------------------------------------

def _parse_node(node: Any) -> Condition:
    if not isinstance(node, Mapping):
        raise _MalformedCondition(f"expected an object, got {node!r}")

    combinators = [k for k in node if k in _COMBINATORS]
    if combinators:
        if len(node) != 1:
            raise _MalformedCondition(
                f"{combinators[0]} cannot be combined with other keys: {sorted(node)}"
            )
        key = combinators[0]
        value = node[key]
        if key == "NOT":
            return Negation(item=_parse_node(value))
        if not isinstance(value, (list, tuple)):
            raise _MalformedCondition(f"{key}: expected a list, got {value!r}")
        items = tuple(_parse_node(v) for v in value)
        return AllOf(items=items) if key == "AND" else AnyOf(items=items)

    predicates = []
    for name, raw in node.items():
        if name not in PREDICATES:
            raise _MalformedCondition(f"unknown predicate '{name}'")
        parser, _ = PREDICATES[name]
        predicates.append((name, parser(name, raw)))
    if not predicates:
        return AllOf(items=())
    return Leaf(predicates=tuple(predicates))


def parse_condition(raw: Any) -> Optional[Condition]:
    """
    Parse a stored condition

    Returns None for "no condition" (None, {}, blank string), a Malformed
    node when the tree is unusable, otherwise the parsed tree.
    """
    if raw is None:
        return None
    if isinstance(raw, _NODE_TYPES):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except ValueError as e:
            return Malformed(reason=f"invalid JSON: {e}")
        if raw is None:
            return None
    if isinstance(raw, Mapping) and not raw:
        return None
    try:
        return _parse_node(raw)
    except _MalformedCondition as e:
        return Malformed(reason=str(e))


# ---------------------------------------------------------------------------
# evaluation
# ---------------------------------------------------------------------------

def _eval(node: Condition, ctx: EvaluationContext, today: date) -> bool:
    if isinstance(node, AllOf):
        return all(_eval(item, ctx, today) for item in node.items)
    if isinstance(node, AnyOf):
        return any(_eval(item, ctx, today) for item in node.items)
    if isinstance(node, Negation):
        return not _eval(node.item, ctx, today)
    if isinstance(node, Leaf):
        return all(PREDICATES[name][1](value, ctx, today) for name, value in node.predicates)
    return False


def evaluate(condition: Any, context: EvaluationContext) -> bool:
    """
    Evaluate a condition (raw tree or parsed) against a context

    Pure: the only clock read is today's date when context.current_date is
    absent.
    """
    parsed = parse_condition(condition)
    if parsed is None:
        return True
    today = context.current_date or date.today()
    return _eval(parsed, context, today)


def is_malformed(condition: Any) -> bool:
    return isinstance(parse_condition(condition), Malformed)
