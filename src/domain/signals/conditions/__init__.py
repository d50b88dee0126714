"""
Condition catalog for structured strategies.

Usage:
    from src.domain.signals.conditions import join_conditions

    formula = join_conditions(strategy.conditions, strategy.operator)
"""

from .catalog import (
    CONDITION_CATALOG,
    ConditionDefinition,
    expression_for,
    join_conditions,
    list_catalog,
)

__all__ = [
    "CONDITION_CATALOG",
    "ConditionDefinition",
    "expression_for",
    "join_conditions",
    "list_catalog",
]
