"""
Precedence-climbing parser for strategy formulas.

Grammar (lowest to highest binding):

    ||            1
    &&            2
    == !=         3
    > < >= <=     4
    + -           5
    * /           6
    unary - + !   7

Binary operators are left-associative. Function calls and parentheses are
primaries.
"""

from __future__ import annotations

from typing import Dict, List

from src.domain.exceptions import CompileError
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
)
from .tokenizer import Token, TokenType, tokenize

MAX_FORMULA_LENGTH = 2000
MAX_NESTING_DEPTH = 64
# Bounds tree height for flat chains such as "1 + 1 + 1 ..."
MAX_OPERATORS = 200

PRECEDENCE: Dict[str, int] = {
    "||": 1,
    "&&": 2,
    "==": 3,
    "!=": 3,
    ">": 4,
    "<": 4,
    ">=": 4,
    "<=": 4,
    "+": 5,
    "-": 5,
    "*": 6,
    "/": 6,
}

_BINARY_TYPES = (TokenType.OPERATOR, TokenType.COMPARISON, TokenType.LOGICAL)


class FormulaParser:
    """Parses one formula string into a syntax tree."""

    def __init__(self, formula: str):
        self.formula = formula
        self.tokens: List[Token] = []
        self.pos = 0
        self.depth = 0
        self.operators = 0

    def parse(self) -> Node:
        """
        Parse the whole formula.

        Raises:
            CompileError: With the offset of the first offending token.
        """
        if not self.formula or not self.formula.strip():
            raise CompileError("Formula cannot be empty", self.formula, 0)
        if len(self.formula) > MAX_FORMULA_LENGTH:
            raise CompileError(
                f"Formula exceeds {MAX_FORMULA_LENGTH} characters", self.formula, MAX_FORMULA_LENGTH
            )

        self.tokens = tokenize(self.formula)
        self.pos = 0
        self.operators = 0
        node = self._parse_expression(1)

        token = self._current
        if token.type is not TokenType.EOF:
            raise self._error(f"Unexpected token '{token.value}'", token)
        return node

    @property
    def _current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        if token.type is not TokenType.EOF:
            self.pos += 1
        return token

    def _error(self, reason: str, token: Token) -> CompileError:
        return CompileError(reason, self.formula, token.position)

    def _count_operator(self, token: Token) -> None:
        self.operators += 1
        if self.operators > MAX_OPERATORS:
            raise self._error(f"Formula has more than {MAX_OPERATORS} operators", token)

    def _expect(self, token_type: TokenType, what: str) -> Token:
        token = self._current
        if token.type is not token_type:
            found = "end of formula" if token.type is TokenType.EOF else f"'{token.value}'"
            raise self._error(f"Expected {what}, found {found}", token)
        return self._advance()

    def _parse_expression(self, min_precedence: int) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise self._error("Formula nested too deeply", self._current)

        left = self._parse_unary()
        while True:
            token = self._current
            if token.type not in _BINARY_TYPES or token.value not in PRECEDENCE:
                break
            precedence = PRECEDENCE[token.value]
            if precedence < min_precedence:
                break
            self._count_operator(token)
            self._advance()
            right = self._parse_expression(precedence + 1)
            left = self._build_binary(token, left, right)

        self.depth -= 1
        return left

    @staticmethod
    def _build_binary(token: Token, left: Node, right: Node) -> Node:
        op = str(token.value)
        if token.type is TokenType.LOGICAL:
            return LogicalNode(op, left, right, token.position)
        if token.type is TokenType.COMPARISON:
            return ComparisonNode(op, left, right, token.position)
        return BinaryNode(op, left, right, token.position)

    def _parse_unary(self) -> Node:
        token = self._current
        if (token.type is TokenType.OPERATOR and token.value in ("-", "+")) or (
            token.type is TokenType.LOGICAL and token.value == "!"
        ):
            self._count_operator(token)
            self._advance()
            self.depth += 1
            if self.depth > MAX_NESTING_DEPTH:
                raise self._error("Formula nested too deeply", token)
            operand = self._parse_unary()
            self.depth -= 1
            return UnaryNode(str(token.value), operand, token.position)
        return self._parse_primary()

    def _parse_primary(self) -> Node:
        token = self._current

        if token.type is TokenType.NUMBER:
            self._advance()
            return NumberNode(float(token.value), token.position)

        if token.type is TokenType.VARIABLE:
            self._advance()
            if self._current.type is TokenType.LPAREN:
                raise self._error(f"'{token.value}' is not a function", self._current)
            return VariableNode(str(token.value), token.position)

        if token.type is TokenType.FUNCTION:
            return self._parse_call()

        if token.type is TokenType.LPAREN:
            self._advance()
            node = self._parse_expression(1)
            self._expect(TokenType.RPAREN, "')'")
            return node

        if token.type is TokenType.EOF:
            raise self._error("Unexpected end of formula", token)
        raise self._error(f"Unexpected token '{token.value}'", token)

    def _parse_call(self) -> Node:
        name_token = self._advance()
        name = str(name_token.value)
        self._expect(TokenType.LPAREN, f"'(' after function '{name}'")

        args: List[Node] = []
        if self._current.type is not TokenType.RPAREN:
            args.append(self._parse_expression(1))
            while self._current.type is TokenType.COMMA:
                self._advance()
                args.append(self._parse_expression(1))
        self._expect(TokenType.RPAREN, "')'")

        spec = FUNCTIONS[name]
        if not spec.accepts(len(args)):
            raise self._error(
                f"Function '{name}' takes {spec.arity_text} argument(s), got {len(args)}",
                name_token,
            )
        return CallNode(name, tuple(args), name_token.position)


def parse_formula(formula: str) -> Node:
    """Parse formula text into a syntax tree."""
    return FormulaParser(formula).parse()
