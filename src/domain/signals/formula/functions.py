"""
Whitelisted formula functions.

The table is closed: a name not listed here is rejected by the tokenizer
before any evaluation can happen.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from src.domain.exceptions import EvaluationError


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def _pct_change(current: float, reference: float) -> float:
    if reference == 0:
        raise EvaluationError("pct_change reference value is zero")
    return (current - reference) / reference * 100.0


@dataclass(frozen=True)
class FunctionSpec:
    """Arity bounds and implementation of one whitelisted function."""

    name: str
    impl: Callable[..., float]
    min_args: int
    max_args: Optional[int]  # None: variadic

    def accepts(self, count: int) -> bool:
        if count < self.min_args:
            return False
        return self.max_args is None or count <= self.max_args

    @property
    def arity_text(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args}-{self.max_args}"


FUNCTIONS: Dict[str, FunctionSpec] = {
    "abs": FunctionSpec("abs", lambda x: abs(x), 1, 1),
    "min": FunctionSpec("min", lambda *xs: min(xs), 1, None),
    "max": FunctionSpec("max", lambda *xs: max(xs), 1, None),
    "round": FunctionSpec("round", _round_half_up, 1, 1),
    "floor": FunctionSpec("floor", lambda x: float(math.floor(x)), 1, 1),
    "ceil": FunctionSpec("ceil", lambda x: float(math.ceil(x)), 1, 1),
    "pct_change": FunctionSpec("pct_change", _pct_change, 2, 2),
}
