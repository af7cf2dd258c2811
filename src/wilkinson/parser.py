"""Recursive descent parser for Wilkinson-style model formulas.

Grammar (simplified):
    program     = formula ("," segment)* EOF
    formula     = [lhs] "~" rhs
    lhs         = NAME | call
    segment     = NAME "~" rhs | NAME "=" value
    rhs         = ("-" "1" | term) (("+" term) | ("-" "1") | ("-" interaction))*
    term        = "1" | "0" | paren | interaction
    interaction = operand ((":" | "*") operand)*
    operand     = NAME | call | paren
    paren       = "(" rhs ")" ["^" INT]
                | "(" rhs ("|" | "||" | "|" ID "|") grouping ")"
    grouping    = NAME ((":" NAME)* | ("/" NAME)*) | gr_call | mm_call
    call        = (NAME | FUNCTION) "(" [arg ("," arg)*] ")"
    arg         = NAME "=" value | NAME | call | NUMBER | STRING | BOOL | NULL

NAME covers plain column names and the gr() argument keywords, so a column
called ``id`` or ``by`` still parses. Function keywords must be called.
"""

import logging

from . import ast
from .lexer import ARGUMENT_KEYWORDS, FUNCTION_KEYWORDS, Lexer, Token, TokenKind

logger = logging.getLogger(__name__)

NAME_KINDS = frozenset({TokenKind.COLUMN_NAME, *ARGUMENT_KEYWORDS.values()})
FUNCTION_KINDS = frozenset(FUNCTION_KEYWORDS.values())
NUMBER_KINDS = frozenset({TokenKind.ZERO, TokenKind.ONE, TokenKind.INTEGER, TokenKind.NUMBER})
OPERAND_KINDS = NAME_KINDS | FUNCTION_KINDS | {TokenKind.LPAREN}
TERM_KINDS = OPERAND_KINDS | {TokenKind.ONE, TokenKind.ZERO}
VALUE_KINDS = (
    NAME_KINDS
    | FUNCTION_KINDS
    | NUMBER_KINDS
    | {TokenKind.MINUS, TokenKind.STRING, TokenKind.TRUE, TokenKind.FALSE, TokenKind.NULL}
)
BOOLEAN_KINDS = frozenset({TokenKind.TRUE, TokenKind.FALSE})

GR_OPTION_KINDS = frozenset(ARGUMENT_KEYWORDS.values())
MULTIVARIATE_RESPONSES = {"bind", "mvbind"}


class ParseError(Exception):
    """First grammar violation in a formula.

    Carries everything needed to render a diagnostic: the token kinds that
    would have been accepted, the offending token, and the lexemes consumed
    before it.
    """

    def __init__(
        self,
        message: str,
        expected: frozenset[TokenKind],
        found: Token,
        consumed: list[str],
        text: str,
    ):
        super().__init__(f"position {found.pos}: {message}")
        self.message = message
        self.expected = expected
        self.found = found
        self.consumed = consumed
        self.text = text

    @property
    def position(self) -> int:
        return self.found.pos

    def expected_names(self) -> list[str]:
        return sorted(kind.value for kind in self.expected)


class Parser:
    """Recursive descent parser over a lexed token list."""

    def __init__(self, tokens: list[Token], text: str = ""):
        self.tokens = tokens
        self.text = text
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[idx]

    def at(self, *kinds: TokenKind) -> bool:
        return self.peek().kind in kinds

    def consume(self, *kinds: TokenKind) -> Token:
        tok = self.peek()
        if tok.kind not in kinds:
            raise self.error(frozenset(kinds))
        self.pos += 1
        return tok

    def match(self, *kinds: TokenKind) -> Token | None:
        if self.at(*kinds):
            tok = self.peek()
            self.pos += 1
            return tok
        return None

    def error(self, expected: frozenset[TokenKind], message: str | None = None) -> ParseError:
        """Build (not raise) a ParseError at the current token."""
        tok = self.peek()
        if message is None:
            if tok.kind is TokenKind.UNKNOWN:
                message = f"unrecognized character {tok.lexeme!r}"
            elif tok.kind is TokenKind.EOF:
                message = "unexpected end of formula"
            else:
                message = f"unexpected token {tok.kind.value} {tok.lexeme!r}"
        consumed = [t.lexeme for t in self.tokens[: self.pos] if t.kind is not TokenKind.EOF]
        return ParseError(message, expected, tok, consumed, self.text)

    def parse_program(self) -> ast.Program:
        """Parse the main formula and any trailing ``,``-separated segments."""
        program = ast.Program(formula=self.parse_formula())

        while self.match(TokenKind.COMMA):
            program.parameters.append(self.parse_segment())

        if not self.at(TokenKind.EOF):
            raise self.error(
                frozenset({TokenKind.EOF, TokenKind.COMMA, TokenKind.PLUS, TokenKind.MINUS})
            )
        logger.debug("parsed program with %d auxiliary segments", len(program.parameters))
        return program

    def parse_formula(self) -> ast.Formula:
        lhs = None
        if not self.at(TokenKind.TILDE):
            if not self.at(*(NAME_KINDS | FUNCTION_KINDS)):
                raise self.error(NAME_KINDS | FUNCTION_KINDS | {TokenKind.TILDE})
            lhs = self.parse_response()
        self.consume(TokenKind.TILDE)
        rhs, dropped = self.parse_rhs(allow_drop=True)
        return ast.Formula(lhs=lhs, rhs=rhs, dropped=dropped)

    def parse_response(self) -> ast.Term:
        """Parse the left-hand side: a column, a transformed column or ``bind(y1, y2, ...)``."""
        response = self.parse_operand()
        match response:
            case ast.FunctionCall(name=name, args=args) if name in MULTIVARIATE_RESPONSES:
                if len(args) < 2 or not all(isinstance(a, ast.ColumnName) for a in args):
                    # Point at the "~" that follows the malformed call
                    raise self.error(
                        frozenset({TokenKind.TILDE}),
                        f"{name}() requires at least 2 column names",
                    )
            case ast.Group() | ast.RandomEffect():
                raise self.error(
                    frozenset({TokenKind.TILDE}),
                    "response must be a column or a function call",
                )
            case ast.FunctionCall(args=args) if (nested := _multivariate_call(args)):
                raise self.error(
                    frozenset({TokenKind.TILDE}),
                    f"{nested}() must be the outermost call of the response",
                )
        return response

    def parse_segment(self) -> ast.ParameterFormula | ast.Assignment:
        """Parse ``name ~ rhs`` or ``name = value`` after a top-level comma."""
        name = self.consume(*NAME_KINDS).lexeme
        if self.match(TokenKind.TILDE):
            rhs, dropped = self.parse_rhs(allow_drop=True)
            formula = ast.Formula(lhs=ast.ColumnName(name=name), rhs=rhs, dropped=dropped)
            return ast.ParameterFormula(name=name, formula=formula)
        if self.match(TokenKind.EQUAL):
            return ast.Assignment(name=name, value=self.parse_value())
        raise self.error(frozenset({TokenKind.TILDE, TokenKind.EQUAL}))

    def parse_rhs(self, allow_drop: bool) -> tuple[list[ast.Term], list[ast.Term]]:
        """Parse a ``+``-separated term list, validating intercept syntax as it goes.

        ``1`` and ``0``/``-1`` are mutually exclusive within one list.
        """
        terms: list[ast.Term] = []
        dropped: list[ast.Term] = []
        intercept = _InterceptState()

        if self.at(TokenKind.MINUS):
            terms.append(self._parse_suppression(intercept))
        else:
            terms.append(self._parse_list_term(intercept))

        while True:
            start = self.pos
            if self.match(TokenKind.PLUS):
                terms.append(self._parse_list_term(intercept))
            elif self.at(TokenKind.MINUS):
                if self.peek(1).kind is TokenKind.ONE:
                    terms.append(self._parse_suppression(intercept))
                elif allow_drop:
                    self.consume(TokenKind.MINUS)
                    drop_start = self.pos
                    term = self.parse_interaction()
                    if isinstance(term, ast.RandomEffect):
                        self.pos = drop_start
                        raise self.error(
                            OPERAND_KINDS | {TokenKind.ONE},
                            "a random effect cannot be subtracted",
                        )
                    dropped.append(term)
                else:
                    self.consume(TokenKind.MINUS)
                    raise self.error(frozenset({TokenKind.ONE}))
            else:
                break
            if self.pos == start:
                raise self.error(TERM_KINDS)

        return terms, dropped

    def _parse_suppression(self, intercept: "_InterceptState") -> ast.Zero:
        self.consume(TokenKind.MINUS)
        if self.at(TokenKind.ONE):
            intercept.suppress(self)
        self.consume(TokenKind.ONE)
        return ast.Zero()

    def _parse_list_term(self, intercept: "_InterceptState") -> ast.Term:
        if self.at(TokenKind.ONE):
            intercept.include(self)
            self.consume(TokenKind.ONE)
            return ast.Intercept()
        if self.at(TokenKind.ZERO):
            intercept.suppress(self)
            self.consume(TokenKind.ZERO)
            return ast.Zero()
        return self.parse_term()

    def parse_term(self) -> ast.Term:
        """Parse a random effect or an interaction chain."""
        if self.at(TokenKind.LPAREN):
            node = self.parse_paren()
            if isinstance(node, ast.RandomEffect):
                return node
            return self.parse_interaction(first=node)
        if not self.at(*TERM_KINDS):
            raise self.error(TERM_KINDS)
        return self.parse_interaction()

    def parse_interaction(self, first: ast.Term | None = None) -> ast.Term:
        """Fold ``a:b*c`` into one Interaction node, left to right."""
        terms = [first if first is not None else self.parse_operand()]
        operators = []
        if isinstance(terms[0], ast.RandomEffect) and self.at(TokenKind.COLON, TokenKind.STAR):
            raise self.error(
                frozenset({TokenKind.PLUS, TokenKind.MINUS, TokenKind.EOF}),
                "a random effect cannot be part of an interaction",
            )

        while tok := self.match(TokenKind.COLON, TokenKind.STAR):
            operators.append(tok.lexeme)
            operand_start = self.pos
            operand = self.parse_operand()
            if isinstance(operand, ast.RandomEffect):
                self.pos = operand_start
                raise self.error(
                    OPERAND_KINDS - {TokenKind.LPAREN},
                    "a random effect cannot be part of an interaction",
                )
            terms.append(operand)

        if not operators:
            return terms[0]
        return ast.Interaction(terms=terms, operators=operators)

    def parse_operand(self) -> ast.Term:
        if self.at(TokenKind.LPAREN):
            return self.parse_paren()
        if self.at(*FUNCTION_KINDS):
            name = self.consume(*FUNCTION_KINDS).lexeme
            return self.parse_call(name)
        if tok := self.match(*NAME_KINDS):
            if self.at(TokenKind.LPAREN):
                return self.parse_call(tok.lexeme)
            return ast.ColumnName(name=tok.lexeme)
        raise self.error(OPERAND_KINDS)

    def parse_call(self, name: str) -> ast.FunctionCall:
        """Parse ``(args)`` after a function name."""
        self.consume(TokenKind.LPAREN)
        args = []
        if not self.at(TokenKind.RPAREN):
            args.append(self.parse_arg())
            while self.match(TokenKind.COMMA):
                args.append(self.parse_arg())
        self.consume(TokenKind.RPAREN, TokenKind.COMMA)
        return ast.FunctionCall(name=name, args=args)

    def parse_arg(self) -> ast.Argument:
        if self.at(*NAME_KINDS) and self.peek(1).kind is TokenKind.EQUAL:
            name = self.consume(*NAME_KINDS).lexeme
            self.consume(TokenKind.EQUAL)
            return ast.KeywordArg(name=name, value=self.parse_value())
        return self.parse_value()

    def parse_value(self) -> ast.Argument:
        """Parse a literal, column or call used as an argument or option value."""
        if tok := self.match(*NUMBER_KINDS):
            return ast.NumberLiteral(value=_number(tok.lexeme))
        if self.match(TokenKind.MINUS):
            tok = self.consume(*NUMBER_KINDS)
            return ast.NumberLiteral(value=-_number(tok.lexeme))
        if tok := self.match(TokenKind.STRING):
            return ast.StringLiteral(value=tok.lexeme[1:-1])
        if tok := self.match(*BOOLEAN_KINDS):
            return ast.BooleanLiteral(value=tok.kind is TokenKind.TRUE)
        if self.match(TokenKind.NULL):
            return ast.NullLiteral()
        if self.at(*(NAME_KINDS | FUNCTION_KINDS)):
            return self.parse_operand()
        raise self.error(VALUE_KINDS)

    def parse_paren(self) -> ast.Group | ast.RandomEffect:
        """Parse ``( ... )``: a random effect if a bar follows the term list, else a group."""
        self.consume(TokenKind.LPAREN)
        terms, _ = self.parse_rhs(allow_drop=False)

        if self.match(TokenKind.RPAREN):
            if any(isinstance(t, (ast.Intercept, ast.Zero)) for t in terms):
                self.pos -= 1
                raise self.error(
                    frozenset({TokenKind.PIPE, TokenKind.DOUBLE_PIPE}),
                    "intercept terms are only allowed inside a random effect",
                )
            power = None
            if self.match(TokenKind.CARET):
                power = int(self.consume(TokenKind.ONE, TokenKind.INTEGER).lexeme)
            return ast.Group(terms=terms, power=power)

        correlation = ast.CorrelationKind.CORRELATED
        correlation_id = None
        first_group_token = None

        if self.match(TokenKind.DOUBLE_PIPE):
            correlation = ast.CorrelationKind.UNCORRELATED
        elif self.match(TokenKind.PIPE):
            # "|ID|" or the start of the grouping; decided by the token after it
            if self.at(TokenKind.ONE, TokenKind.ZERO, TokenKind.INTEGER):
                correlation_id = self.consume(
                    TokenKind.ONE, TokenKind.ZERO, TokenKind.INTEGER
                ).lexeme
                self.consume(TokenKind.PIPE)
                correlation = ast.CorrelationKind.CROSS_PARAMETER
            elif self.at(*NAME_KINDS):
                first_group_token = self.consume(*NAME_KINDS)
                if self.match(TokenKind.PIPE):
                    correlation = ast.CorrelationKind.CROSS_PARAMETER
                    correlation_id = first_group_token.lexeme
                    first_group_token = None
        else:
            raise self.error(
                frozenset({TokenKind.PLUS, TokenKind.MINUS, TokenKind.PIPE, TokenKind.DOUBLE_PIPE, TokenKind.RPAREN})
            )

        grouping = self.parse_grouping(first_group_token)
        self.consume(TokenKind.RPAREN)
        return ast.RandomEffect(
            terms=terms,
            grouping=grouping,
            correlation=correlation,
            correlation_id=correlation_id,
        )

    def parse_grouping(self, first: Token | None = None) -> ast.Grouping:
        if first is None:
            if self.match(TokenKind.GR):
                return self.parse_gr()
            if self.match(TokenKind.MM):
                return self.parse_mm()
            first = self.consume(*(NAME_KINDS | {TokenKind.GR, TokenKind.MM}))

        names = [first.lexeme]
        if self.match(TokenKind.COLON):
            names.append(self.consume(*NAME_KINDS).lexeme)
            while self.match(TokenKind.COLON):
                names.append(self.consume(*NAME_KINDS).lexeme)
            return ast.InteractionGrouping(names=names)
        if self.match(TokenKind.SLASH):
            names.append(self.consume(*NAME_KINDS).lexeme)
            while self.match(TokenKind.SLASH):
                names.append(self.consume(*NAME_KINDS).lexeme)
            return ast.NestedGrouping(names=names)
        return ast.SimpleGrouping(name=first.lexeme)

    def parse_gr(self) -> ast.GrGrouping:
        """Parse ``gr(group, option = value, ...)``; the ``gr`` keyword is already consumed."""
        self.consume(TokenKind.LPAREN)
        name = self.consume(*NAME_KINDS).lexeme
        options = {}

        while self.match(TokenKind.COMMA):
            if self.peek().lexeme in options:
                raise self.error(
                    GR_OPTION_KINDS - {ARGUMENT_KEYWORDS[k] for k in options},
                    f"gr() option '{self.peek().lexeme}' given more than once",
                )
            key = self.consume(*GR_OPTION_KINDS)
            self.consume(TokenKind.EQUAL)
            match key.kind:
                case TokenKind.COR | TokenKind.COV:
                    value = self.consume(*BOOLEAN_KINDS).kind is TokenKind.TRUE
                case TokenKind.ID:
                    tok = self.consume(*(NAME_KINDS | NUMBER_KINDS | {TokenKind.STRING}))
                    value = _unquote(tok)
                case TokenKind.BY:
                    tok = self.consume(*(NAME_KINDS | {TokenKind.NULL}))
                    value = None if tok.kind is TokenKind.NULL else tok.lexeme
                case TokenKind.DIST:
                    value = _unquote(self.consume(*(NAME_KINDS | {TokenKind.STRING})))
            options[key.lexeme] = value

        self.consume(TokenKind.RPAREN, TokenKind.COMMA)
        return ast.GrGrouping(name=name, options=options)

    def parse_mm(self) -> ast.MultiMembershipGrouping:
        """Parse ``mm(g1, g2, ..., key = value)``; the ``mm`` keyword is already consumed."""
        self.consume(TokenKind.LPAREN)
        names = [self.consume(*NAME_KINDS).lexeme]
        options = {}

        while self.match(TokenKind.COMMA):
            arg = self.parse_arg()
            match arg:
                case ast.KeywordArg(name=key, value=value):
                    options[key] = ast.literal_value(value)
                case ast.ColumnName(name=name) if not options:
                    names.append(name)
                case _:
                    raise self.error(
                        frozenset({TokenKind.RPAREN, TokenKind.COMMA}),
                        "mm() takes group columns followed by keyword options",
                    )

        self.consume(TokenKind.RPAREN, TokenKind.COMMA)
        return ast.MultiMembershipGrouping(names=names, options=options)


class _InterceptState:
    """Tracks ``1`` vs ``0``/``-1`` within one term list."""

    def __init__(self):
        self.included = False
        self.suppressed = False

    def include(self, parser: Parser) -> None:
        if self.suppressed:
            raise parser.error(
                TERM_KINDS - {TokenKind.ONE},
                "contradictory intercept specification: '1' after the intercept was removed",
            )
        self.included = True

    def suppress(self, parser: Parser) -> None:
        if self.included:
            raise parser.error(
                TERM_KINDS - {TokenKind.ZERO},
                "contradictory intercept specification: intercept removed after '1'",
            )
        self.suppressed = True


def _multivariate_call(args: list) -> str | None:
    """Name of a bind/mvbind call nested anywhere in ``args``."""
    for arg in args:
        if isinstance(arg, ast.KeywordArg):
            arg = arg.value
        if isinstance(arg, ast.FunctionCall):
            if arg.name in MULTIVARIATE_RESPONSES:
                return arg.name
            if nested := _multivariate_call(arg.args):
                return nested
    return None


def _number(text: str) -> int | float:
    return float(text) if "." in text else int(text)


def _unquote(tok: Token) -> str:
    if tok.kind is TokenKind.STRING:
        return tok.lexeme[1:-1]
    return tok.lexeme


def parse(text: str) -> ast.Program:
    """Parse formula text into an AST."""
    lexer = Lexer(text)
    parser = Parser(lexer.tokens, text)
    return parser.parse_program()
