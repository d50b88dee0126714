"""
Restricted formula language for custom strategies.

Formulas are parsed into a small syntax tree and evaluated by a tree
walker; nothing is ever handed to eval/exec.
"""

from .compiler import (
    DEFAULT_EQUALITY_TOLERANCE,
    CompiledPredicate,
    FormulaValidationResult,
    RuleCompiler,
    normalize_formula,
)
from .functions import FUNCTIONS
from .parser import parse_formula
from .tokenizer import VARIABLE_ALIASES, Token, TokenType, tokenize

__all__ = [
    "DEFAULT_EQUALITY_TOLERANCE",
    "CompiledPredicate",
    "FormulaValidationResult",
    "RuleCompiler",
    "normalize_formula",
    "FUNCTIONS",
    "parse_formula",
    "VARIABLE_ALIASES",
    "Token",
    "TokenType",
    "tokenize",
]
