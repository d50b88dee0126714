"""
Tokenizer for strategy formulas.

Only a fixed vocabulary is recognised: numeric literals, the input
variables, the whitelisted functions, arithmetic/comparison/logical
operators, parentheses and commas. Anything else is a CompileError with
the character offset where it was found.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Union

from src.domain.exceptions import CompileError
from .functions import FUNCTIONS


class TokenType(Enum):
    NUMBER = "NUMBER"
    VARIABLE = "VARIABLE"
    FUNCTION = "FUNCTION"
    OPERATOR = "OPERATOR"      # + - * /
    COMPARISON = "COMPARISON"  # > < >= <= == !=
    LOGICAL = "LOGICAL"        # && || !
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    COMMA = "COMMA"
    EOF = "EOF"


@dataclass(frozen=True, slots=True)
class Token:
    type: TokenType
    value: Union[str, float]
    position: int


# Accepted spellings (lowercased) -> canonical variable name
VARIABLE_ALIASES: Dict[str, str] = {
    "price": "price",
    "open": "open",
    "high": "high",
    "low": "low",
    "close": "close",
    "volume": "volume",
    "timestamp": "timestamp",
    "ema50": "ema50",
    "ema_50": "ema50",
    "ema200": "ema200",
    "ema_200": "ema200",
}

# Word forms of the logical operators
KEYWORD_OPERATORS: Dict[str, str] = {
    "and": "&&",
    "or": "||",
    "not": "!",
}

_NUMBER = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_TWO_CHAR = {
    "&&": TokenType.LOGICAL,
    "||": TokenType.LOGICAL,
    "==": TokenType.COMPARISON,
    "!=": TokenType.COMPARISON,
    ">=": TokenType.COMPARISON,
    "<=": TokenType.COMPARISON,
}

_ONE_CHAR = {
    "+": TokenType.OPERATOR,
    "-": TokenType.OPERATOR,
    "*": TokenType.OPERATOR,
    "/": TokenType.OPERATOR,
    ">": TokenType.COMPARISON,
    "<": TokenType.COMPARISON,
    "!": TokenType.LOGICAL,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
}


def tokenize(formula: str) -> List[Token]:
    """
    Split formula text into tokens, ending with an EOF token.

    Raises:
        CompileError: On an unknown identifier or unexpected character.
    """
    tokens: List[Token] = []
    pos = 0
    length = len(formula)

    while pos < length:
        char = formula[pos]

        if char.isspace():
            pos += 1
            continue

        match = _NUMBER.match(formula, pos)
        if match:
            tokens.append(Token(TokenType.NUMBER, float(match.group()), pos))
            pos = match.end()
            continue

        match = _IDENTIFIER.match(formula, pos)
        if match:
            word = match.group()
            lowered = word.lower()
            if lowered in FUNCTIONS:
                tokens.append(Token(TokenType.FUNCTION, lowered, pos))
            elif lowered in VARIABLE_ALIASES:
                tokens.append(Token(TokenType.VARIABLE, VARIABLE_ALIASES[lowered], pos))
            elif lowered in KEYWORD_OPERATORS:
                tokens.append(Token(TokenType.LOGICAL, KEYWORD_OPERATORS[lowered], pos))
            else:
                raise CompileError(f"Unknown identifier '{word}'", formula, pos)
            pos = match.end()
            continue

        pair = formula[pos:pos + 2]
        if pair in _TWO_CHAR:
            tokens.append(Token(_TWO_CHAR[pair], pair, pos))
            pos += 2
            continue

        if char in _ONE_CHAR:
            tokens.append(Token(_ONE_CHAR[char], char, pos))
            pos += 1
            continue

        if char == "=":
            raise CompileError("Unexpected '='; use '==' for equality", formula, pos)

        raise CompileError(f"Unexpected character '{char}'", formula, pos)

    tokens.append(Token(TokenType.EOF, "", pos))
    return tokens
