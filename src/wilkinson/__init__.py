"""Wilkinson formulas: parse R/brms-style model formulas into variable metadata.

Pipeline: lex formula text -> parse into an AST -> build FormulaMetaData.

Example:
    from wilkinson import parse_formula

    meta = parse_formula("y ~ x + poly(z, 2) + (1 | g)")
    meta.all_generated_columns
    # ['y', 'intercept', 'x', 'z_poly_1', 'z_poly_2', 'g']
"""

__version__ = "0.1.0"

from .ast import Formula, Program
from .builder import BuildError, MetaBuilder, build
from .config import ParserConfig
from .lexer import Lexer, Token, TokenKind, tokenize
from .metadata import (
    DistributionalParameter,
    FormulaMetaData,
    Interaction,
    RandomEffectInfo,
    Transformation,
    Variable,
    VariableRole,
)
from .parser import ParseError, Parser, parse


def parse_formula(formula: str, config: ParserConfig | None = None) -> FormulaMetaData:
    """Parse a formula and build its metadata.

    Raises:
        ParseError: the text does not match the formula grammar.
        BuildError: the formula parses but is semantically inconsistent.
    """
    return build(parse(formula), config, formula)


def lex_formula(formula: str) -> list[dict[str, str]]:
    """Raw token stream of a formula, for diagnostics. Never fails."""
    return [{"token": tok.kind.value, "lexeme": tok.lexeme} for tok in tokenize(formula)]


__all__ = [
    # Entry points
    "parse_formula",
    "lex_formula",
    "parse",
    "build",
    "tokenize",
    # Errors
    "ParseError",
    "BuildError",
    # Pipeline stages
    "Lexer",
    "Parser",
    "MetaBuilder",
    "Token",
    "TokenKind",
    "Formula",
    "Program",
    # Output
    "FormulaMetaData",
    "Variable",
    "VariableRole",
    "Transformation",
    "Interaction",
    "RandomEffectInfo",
    "DistributionalParameter",
    # Config
    "ParserConfig",
]
