"""Lexer for Wilkinson-style model formulas.

Turns formula text such as ``y ~ x + poly(z, 2) + (1 | g)`` into a flat list
of tokens. Lexing never fails: characters that match no pattern become
``UNKNOWN`` tokens and the parser decides what to do with them.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class TokenKind(Enum):
    # Structure
    TILDE = "Tilde"
    PLUS = "Plus"
    MINUS = "Minus"
    STAR = "Star"
    COLON = "Colon"
    PIPE = "Pipe"
    DOUBLE_PIPE = "DoublePipe"
    LPAREN = "LParen"
    RPAREN = "RParen"
    COMMA = "Comma"
    CARET = "Caret"
    EQUAL = "Equal"
    SLASH = "Slash"

    # Literals
    ZERO = "Zero"
    ONE = "One"
    INTEGER = "Integer"
    NUMBER = "Number"
    STRING = "String"
    TRUE = "True"
    FALSE = "False"
    NULL = "Null"

    COLUMN_NAME = "ColumnName"

    # Function keywords
    POLY = "Poly"
    LOG = "Log"
    MO = "Mo"
    CS = "Cs"
    ME = "Me"
    MI = "Mi"
    GR = "Gr"
    MM = "Mm"
    MMC = "Mmc"

    # gr() argument keywords
    COR = "Cor"
    ID = "Id"
    BY = "By"
    COV = "Cov"
    DIST = "Dist"

    UNKNOWN = "Unknown"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    lexeme: str
    pos: int

    @property
    def end(self) -> int:
        return self.pos + len(self.lexeme)


FUNCTION_KEYWORDS = {
    "poly": TokenKind.POLY,
    "log": TokenKind.LOG,
    "mo": TokenKind.MO,
    "cs": TokenKind.CS,
    "me": TokenKind.ME,
    "mi": TokenKind.MI,
    "gr": TokenKind.GR,
    "mm": TokenKind.MM,
    "mmc": TokenKind.MMC,
}

ARGUMENT_KEYWORDS = {
    "cor": TokenKind.COR,
    "id": TokenKind.ID,
    "by": TokenKind.BY,
    "cov": TokenKind.COV,
    "dist": TokenKind.DIST,
}

LITERAL_KEYWORDS = {
    "TRUE": TokenKind.TRUE,
    "true": TokenKind.TRUE,
    "FALSE": TokenKind.FALSE,
    "false": TokenKind.FALSE,
    "NULL": TokenKind.NULL,
    "null": TokenKind.NULL,
}

KEYWORDS = {**FUNCTION_KEYWORDS, **ARGUMENT_KEYWORDS, **LITERAL_KEYWORDS}


class Lexer:
    """Regex lexer for formulas.

    Patterns are tried in order at the current offset; the first match wins,
    which is how ``||`` takes precedence over ``|``.
    """

    TOKEN_PATTERNS = [
        (re.compile(r"\s+"), None),
        (re.compile(r"\d+(?:\.\d+)?"), TokenKind.NUMBER),
        (re.compile(r'"[^"]*"'), TokenKind.STRING),
        (re.compile(r"'[^']*'"), TokenKind.STRING),
        (re.compile(r"[A-Za-z_][A-Za-z0-9_.]*"), TokenKind.COLUMN_NAME),
        (re.compile(r"\|\|"), TokenKind.DOUBLE_PIPE),
        (re.compile(r"\|"), TokenKind.PIPE),
        (re.compile(r"~"), TokenKind.TILDE),
        (re.compile(r"\+"), TokenKind.PLUS),
        (re.compile(r"-"), TokenKind.MINUS),
        (re.compile(r"\*"), TokenKind.STAR),
        (re.compile(r":"), TokenKind.COLON),
        (re.compile(r"\("), TokenKind.LPAREN),
        (re.compile(r"\)"), TokenKind.RPAREN),
        (re.compile(r","), TokenKind.COMMA),
        (re.compile(r"\^"), TokenKind.CARET),
        (re.compile(r"="), TokenKind.EQUAL),
        (re.compile(r"/"), TokenKind.SLASH),
    ]

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.tokens: list[Token] = []
        self._tokenise()

    def _tokenise(self) -> None:
        while self.pos < len(self.source):
            for pattern, kind in self.TOKEN_PATTERNS:
                m = pattern.match(self.source, self.pos)
                if m:
                    value = m.group(0)
                    if kind is not None:
                        self.tokens.append(Token(self._classify(kind, value), value, self.pos))
                    self.pos += len(value)
                    break
            else:
                self.tokens.append(Token(TokenKind.UNKNOWN, self.source[self.pos], self.pos))
                self.pos += 1

        self.tokens.append(Token(TokenKind.EOF, "", self.pos))
        logger.debug("lexed %d tokens from %r", len(self.tokens) - 1, self.source)

    @staticmethod
    def _classify(kind: TokenKind, value: str) -> TokenKind:
        if kind is TokenKind.COLUMN_NAME:
            return KEYWORDS.get(value, kind)
        if kind is TokenKind.NUMBER:
            if "." in value:
                return TokenKind.NUMBER
            if value == "0":
                return TokenKind.ZERO
            if value == "1":
                return TokenKind.ONE
            return TokenKind.INTEGER
        return kind


def tokenize(source: str) -> list[Token]:
    """Lex ``source`` into tokens, without the trailing EOF."""
    return Lexer(source).tokens[:-1]
