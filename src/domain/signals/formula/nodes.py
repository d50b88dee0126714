"""
Formula syntax tree.

Nodes are immutable and carry the source offset of the token that produced
them so runtime and validation errors can point back into the text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Tuple, Union


@dataclass(frozen=True)
class NumberNode:
    value: float
    position: int = 0

    @property
    def is_integral(self) -> bool:
        return float(self.value).is_integer()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "number", "value": self.value}


@dataclass(frozen=True)
class VariableNode:
    name: str
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "variable", "name": self.name}


@dataclass(frozen=True)
class UnaryNode:
    op: str  # "-", "+" or "!"
    operand: "Node"
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "unary", "op": self.op, "operand": self.operand.to_dict()}


@dataclass(frozen=True)
class BinaryNode:
    op: str  # "+", "-", "*", "/"
    left: "Node"
    right: "Node"
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "binary",
            "op": self.op,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class ComparisonNode:
    op: str  # ">", "<", ">=", "<=", "==", "!="
    left: "Node"
    right: "Node"
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "comparison",
            "op": self.op,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class LogicalNode:
    op: str  # "&&" or "||"
    left: "Node"
    right: "Node"
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "logical",
            "op": self.op,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class CallNode:
    name: str
    args: Tuple["Node", ...]
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "call", "name": self.name, "args": [a.to_dict() for a in self.args]}


Node = Union[NumberNode, VariableNode, UnaryNode, BinaryNode, ComparisonNode, LogicalNode, CallNode]


def referenced_variables(node: Node) -> FrozenSet[str]:
    """All variable names a tree reads."""
    if isinstance(node, VariableNode):
        return frozenset((node.name,))
    if isinstance(node, NumberNode):
        return frozenset()
    if isinstance(node, UnaryNode):
        return referenced_variables(node.operand)
    if isinstance(node, CallNode):
        names: FrozenSet[str] = frozenset()
        for arg in node.args:
            names |= referenced_variables(arg)
        return names
    return referenced_variables(node.left) | referenced_variables(node.right)


def is_boolean(node: Node) -> bool:
    """True if the node statically yields a boolean."""
    if isinstance(node, (ComparisonNode, LogicalNode)):
        return True
    return isinstance(node, UnaryNode) and node.op == "!"
