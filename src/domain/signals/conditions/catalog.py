"""
Condition catalog - the closed set of named comparison templates.

Each kind maps to exactly one expression over the fixed variable set. The
mapping is part of the public contract: a key never changes meaning once
shipped; new behaviour gets a new key.

Joining conditions produces plain formula text, which is then compiled by
the same code path as user-authored formulas.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, List, Mapping

from src.domain.exceptions import UnknownConditionError
from src.domain.signals.models import CombineOperator, Condition


@dataclass(frozen=True)
class ConditionDefinition:
    """One catalog entry."""

    kind: str
    expression: str
    label: str


_DEFINITIONS = (
    ConditionDefinition("price_above_ema50", "price > ema50", "Price > EMA50"),
    ConditionDefinition("price_gte_ema50", "price >= ema50", "Price >= EMA50"),
    ConditionDefinition("price_below_ema50", "price < ema50", "Price < EMA50"),
    ConditionDefinition("price_lte_ema50", "price <= ema50", "Price <= EMA50"),
    ConditionDefinition("price_above_ema200", "price > ema200", "Price > EMA200"),
    ConditionDefinition("price_gte_ema200", "price >= ema200", "Price >= EMA200"),
    ConditionDefinition("price_below_ema200", "price < ema200", "Price < EMA200"),
    ConditionDefinition("price_lte_ema200", "price <= ema200", "Price <= EMA200"),
    ConditionDefinition("ema50_above_ema200", "ema50 > ema200", "EMA50 > EMA200"),
    ConditionDefinition("ema50_below_ema200", "ema50 < ema200", "EMA50 < EMA200"),
    ConditionDefinition("ema200_above_ema50", "ema200 > ema50", "EMA200 > EMA50"),
    # Candle wicked through EMA200 and closed on or above it
    ConditionDefinition(
        "price_touches_ema200", "(low <= ema200 && price >= ema200)", "Price touches EMA200"
    ),
    # Samples are closed candles, so this holds on every evaluated sample
    ConditionDefinition("candle_close", "price == close", "Candle close confirmed"),
)

CONDITION_CATALOG: Mapping[str, ConditionDefinition] = MappingProxyType(
    {d.kind: d for d in _DEFINITIONS}
)

# Join tokens emitted for each combine operator
JOIN_TOKENS: Mapping[CombineOperator, str] = MappingProxyType(
    {CombineOperator.AND: "&&", CombineOperator.OR: "||"}
)


def expression_for(kind: str) -> str:
    """
    Canonical expression for a condition kind.

    Raises:
        UnknownConditionError: If the kind is not in the catalog.
    """
    definition = CONDITION_CATALOG.get(kind)
    if definition is None:
        raise UnknownConditionError(kind)
    return definition.expression


def join_conditions(conditions: Iterable[Condition], operator: CombineOperator | str) -> str:
    """
    Join condition expressions into one formula, left to right.

    Duplicate kinds are kept; each contributes its own term.

    Example:
        >>> join_conditions([Condition("price_above_ema50")], "AND")
        'price > ema50'

    Raises:
        UnknownConditionError: On the first kind not in the catalog.
    """
    op = CombineOperator.parse(operator)
    expressions = [expression_for(c.kind) for c in conditions]
    return f" {JOIN_TOKENS[op]} ".join(expressions)


def list_catalog() -> List[dict]:
    """Catalog as plain dicts, in declaration order (for the API)."""
    return [
        {"type": d.kind, "expression": d.expression, "label": d.label}
        for d in _DEFINITIONS
    ]
