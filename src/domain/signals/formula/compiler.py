"""
Rule compiler - turns formula text and condition lists into predicates.

Structured strategies are joined into formula text first, so both kinds of
strategy share one parser and one evaluator. Compiled predicates are cached
by whitespace-normalised text; the cache is safe to share across tasks and
threads.

Usage:
    compiler = RuleCompiler()
    predicate = compiler.compile_strategy(strategy)
    fired = predicate(make_input_record(sample, snapshot))
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from src.domain.exceptions import CompileError, EvaluationError
from src.domain.signals.conditions.catalog import join_conditions
from src.domain.signals.models import CombineOperator, Condition, Strategy
from src.utils.logging_setup import get_logger

from .functions import FUNCTIONS
from .nodes import (
    BinaryNode,
    CallNode,
    ComparisonNode,
    LogicalNode,
    Node,
    NumberNode,
    UnaryNode,
    VariableNode,
    is_boolean,
    referenced_variables,
)
from .parser import parse_formula

logger = get_logger(__name__)

DEFAULT_EQUALITY_TOLERANCE = 1e-9

# Variables whose equality comparisons are always exact
_EXACT_VARIABLES = frozenset({"volume"})


def normalize_formula(formula: str) -> str:
    """Collapse runs of whitespace; used as the compile cache key."""
    return " ".join(formula.split())


def _truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _is_exact_operand(node: Node) -> bool:
    return isinstance(node, VariableNode) and node.name in _EXACT_VARIABLES


def _is_exact_comparison(node: ComparisonNode) -> bool:
    if _is_exact_operand(node.left) or _is_exact_operand(node.right):
        return True
    return (
        isinstance(node.left, NumberNode)
        and isinstance(node.right, NumberNode)
        and node.left.is_integral
        and node.right.is_integral
    )


class _Evaluator:
    """Tree-walking evaluator bound to one input record."""

    __slots__ = ("record", "tolerance")

    def __init__(self, record: Mapping[str, float], tolerance: float):
        self.record = record
        self.tolerance = tolerance

    def eval(self, node: Node) -> Any:
        if isinstance(node, NumberNode):
            return node.value

        if isinstance(node, VariableNode):
            try:
                return self.record[node.name]
            except KeyError:
                raise EvaluationError(f"Input variable '{node.name}' not provided") from None

        if isinstance(node, LogicalNode):
            left = _truthy(self.eval(node.left))
            if node.op == "&&":
                return left and _truthy(self.eval(node.right))
            return left or _truthy(self.eval(node.right))

        if isinstance(node, ComparisonNode):
            return self._compare(node)

        if isinstance(node, BinaryNode):
            left = self.eval(node.left)
            right = self.eval(node.right)
            if node.op == "+":
                return left + right
            if node.op == "-":
                return left - right
            if node.op == "*":
                return left * right
            if right == 0:
                raise EvaluationError(f"Division by zero at position {node.position}")
            return left / right

        if isinstance(node, UnaryNode):
            value = self.eval(node.operand)
            if node.op == "!":
                return not _truthy(value)
            return -value if node.op == "-" else +value

        if isinstance(node, CallNode):
            args = [self.eval(arg) for arg in node.args]
            return FUNCTIONS[node.name].impl(*args)

        raise EvaluationError(f"Unsupported node {type(node).__name__}")

    def _compare(self, node: ComparisonNode) -> bool:
        left = self.eval(node.left)
        right = self.eval(node.right)
        op = node.op
        if op == ">":
            return left > right
        if op == "<":
            return left < right
        if op == ">=":
            return left >= right
        if op == "<=":
            return left <= right

        if _is_exact_comparison(node):
            equal = left == right
        else:
            equal = math.isclose(left, right, rel_tol=self.tolerance, abs_tol=self.tolerance)
        return equal if op == "==" else not equal


@dataclass(frozen=True)
class CompiledPredicate:
    """
    A pure, reusable function of one input record.

    Calling it returns True or False, or raises EvaluationError on a runtime
    fault (division by zero, overflow, missing input).
    """

    formula: str
    tree: Node = field(repr=False)
    tolerance: float = DEFAULT_EQUALITY_TOLERANCE
    variables: FrozenSet[str] = frozenset()

    def __call__(self, record: Mapping[str, float]) -> bool:
        try:
            return _truthy(_Evaluator(record, self.tolerance).eval(self.tree))
        except EvaluationError:
            raise
        except (ArithmeticError, ValueError, TypeError, RecursionError) as e:
            raise EvaluationError(f"Failed evaluating '{self.formula}': {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula,
            "variables": sorted(self.variables),
            "ast": self.tree.to_dict(),
        }


@dataclass
class FormulaValidationResult:
    """Outcome of validating formula text without registering it."""

    valid: bool
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    variables: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "variables": self.variables,
        }


class RuleCompiler:
    """
    Compiles formulas and condition lists into CompiledPredicates.

    Never executes host-language code: the parser only accepts the fixed
    variable set and the whitelisted functions.
    """

    def __init__(
        self,
        equality_tolerance: float = DEFAULT_EQUALITY_TOLERANCE,
        metrics: Optional[Any] = None,
    ):
        self._tolerance = equality_tolerance
        self._metrics = metrics
        self._cache: Dict[str, CompiledPredicate] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def equality_tolerance(self) -> float:
        return self._tolerance

    def compile(self, formula: str) -> CompiledPredicate:
        """
        Compile formula text.

        Raises:
            CompileError: With reason and character offset.
        """
        if not isinstance(formula, str):
            raise CompileError("Formula must be a string")
        key = normalize_formula(formula)

        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._hits += 1
        if cached is not None:
            if self._metrics:
                self._metrics.record_compile(cache_hit=True)
            return cached

        try:
            tree = parse_formula(formula)
            variables = referenced_variables(tree)
        except RecursionError:
            if self._metrics:
                self._metrics.record_compile_error()
            raise CompileError("Formula is too complex", formula) from None
        except CompileError:
            if self._metrics:
                self._metrics.record_compile_error()
            raise

        predicate = CompiledPredicate(formula=key, tree=tree, tolerance=self._tolerance, variables=variables)
        with self._lock:
            # Another task may have compiled the same text meanwhile; keep the first
            predicate = self._cache.setdefault(key, predicate)
            self._misses += 1
        if self._metrics:
            self._metrics.record_compile(cache_hit=False)
        logger.debug("Compiled formula", extra={"formula": key, "variables": sorted(predicate.variables)})
        return predicate

    def compile_conditions(
        self,
        conditions: Iterable[Condition],
        operator: CombineOperator | str = CombineOperator.AND,
    ) -> CompiledPredicate:
        """
        Join catalog conditions into formula text and compile it.

        Raises:
            UnknownConditionError: If any kind is not in the catalog.
            CompileError: If the list is empty.
        """
        conditions = list(conditions)
        if not conditions:
            raise CompileError("Strategy has no conditions")
        return self.compile(join_conditions(conditions, operator))

    def formula_for(self, strategy: Strategy) -> str:
        """Formula text a strategy compiles from."""
        if strategy.is_formula_based:
            return strategy.formula or ""
        if not strategy.conditions:
            raise CompileError(f"Strategy {strategy.id!r} has no conditions")
        return join_conditions(strategy.conditions, strategy.operator)

    def compile_strategy(self, strategy: Strategy) -> CompiledPredicate:
        """Compile whichever rule form a strategy declares."""
        return self.compile(self.formula_for(strategy))

    def validate(self, formula: str) -> FormulaValidationResult:
        """Check formula text and report problems instead of raising."""
        result = FormulaValidationResult(valid=True)
        try:
            tree = parse_formula(formula or "")
        except CompileError as e:
            result.valid = False
            result.errors.append({"message": e.reason, "position": e.position})
            if "'='" in e.reason:
                result.warnings.append("Single '=' found; did you mean '=='?")
            return result

        result.variables = sorted(referenced_variables(tree))
        if not is_boolean(tree):
            result.warnings.append(
                "Formula does not produce a boolean; any non-zero value counts as true"
            )
        if not result.variables:
            result.warnings.append("Formula does not reference any input variable")
        return result

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def cache_info(self) -> Dict[str, int]:
        with self._lock:
            return {"size": len(self._cache), "hits": self._hits, "misses": self._misses}
