"""Tests for the formula lexer."""

import pytest

from wilkinson import Lexer, TokenKind, tokenize


def kinds(text):
    return [tok.kind for tok in tokenize(text)]


class TestTokens:
    def test_simple_formula(self):
        assert kinds("y ~ x + z") == [
            TokenKind.COLUMN_NAME,
            TokenKind.TILDE,
            TokenKind.COLUMN_NAME,
            TokenKind.PLUS,
            TokenKind.COLUMN_NAME,
        ]

    def test_structural_operators(self):
        assert kinds("- * : ( ) , ^ = /") == [
            TokenKind.MINUS,
            TokenKind.STAR,
            TokenKind.COLON,
            TokenKind.LPAREN,
            TokenKind.RPAREN,
            TokenKind.COMMA,
            TokenKind.CARET,
            TokenKind.EQUAL,
            TokenKind.SLASH,
        ]

    def test_double_pipe_before_single(self):
        assert kinds("(x || g)") == [
            TokenKind.LPAREN,
            TokenKind.COLUMN_NAME,
            TokenKind.DOUBLE_PIPE,
            TokenKind.COLUMN_NAME,
            TokenKind.RPAREN,
        ]
        assert kinds("|p|") == [TokenKind.PIPE, TokenKind.COLUMN_NAME, TokenKind.PIPE]

    @pytest.mark.parametrize(
        "text,kind",
        [
            ("0", TokenKind.ZERO),
            ("1", TokenKind.ONE),
            ("10", TokenKind.INTEGER),
            ("2", TokenKind.INTEGER),
            ("0.5", TokenKind.NUMBER),
            ("1.0", TokenKind.NUMBER),
        ],
    )
    def test_numbers(self, text, kind):
        assert kinds(text) == [kind]

    @pytest.mark.parametrize(
        "text,kind",
        [
            ("poly", TokenKind.POLY),
            ("log", TokenKind.LOG),
            ("mo", TokenKind.MO),
            ("cs", TokenKind.CS),
            ("me", TokenKind.ME),
            ("mi", TokenKind.MI),
            ("gr", TokenKind.GR),
            ("mm", TokenKind.MM),
            ("mmc", TokenKind.MMC),
            ("cor", TokenKind.COR),
            ("id", TokenKind.ID),
            ("by", TokenKind.BY),
            ("cov", TokenKind.COV),
            ("dist", TokenKind.DIST),
            ("TRUE", TokenKind.TRUE),
            ("false", TokenKind.FALSE),
            ("NULL", TokenKind.NULL),
        ],
    )
    def test_keywords(self, text, kind):
        assert kinds(text) == [kind]

    def test_keyword_prefix_is_plain_identifier(self):
        assert kinds("polynomial log.x id_2") == [TokenKind.COLUMN_NAME] * 3

    def test_strings(self):
        tokens = tokenize("\"student\" 'a b'")
        assert [t.kind for t in tokens] == [TokenKind.STRING, TokenKind.STRING]
        assert tokens[1].lexeme == "'a b'"

    def test_positions(self):
        tokens = tokenize("y ~ poly(x, 2)")
        assert [(t.lexeme, t.pos) for t in tokens] == [
            ("y", 0),
            ("~", 2),
            ("poly", 4),
            ("(", 8),
            ("x", 9),
            (",", 10),
            ("2", 12),
            (")", 13),
        ]
        assert tokens[2].end == 8


class TestUnknownAndEOF:
    def test_unknown_character_does_not_abort(self):
        tokens = tokenize("y ~ x $ z")
        assert [t.kind for t in tokens] == [
            TokenKind.COLUMN_NAME,
            TokenKind.TILDE,
            TokenKind.COLUMN_NAME,
            TokenKind.UNKNOWN,
            TokenKind.COLUMN_NAME,
        ]
        assert tokens[3].lexeme == "$"
        assert tokens[3].pos == 6

    def test_one_unknown_token_per_character(self):
        assert kinds("@#") == [TokenKind.UNKNOWN, TokenKind.UNKNOWN]

    def test_lexer_ends_with_eof(self):
        tokens = Lexer("y ~ x").tokens
        assert tokens[-1].kind == TokenKind.EOF
        assert tokens[-1].lexeme == ""
        assert tokens[-1].pos == 5

    def test_tokenize_drops_eof(self):
        assert TokenKind.EOF not in kinds("y ~ x")

    def test_empty_input(self):
        assert tokenize("") == []


class TestRoundTrip:
    @pytest.mark.parametrize(
        "text",
        [
            "y ~ x + z",
            "y ~ wt*hp + poly(disp, 4)",
            "y ~ 0 + x + (1 + x || g) + (1 |p| gr(h, cor = FALSE))",
            "bind(y1, y2) ~ a:b:c - 1, sigma ~ z, family = student",
            "y  ~   (a + b)^2",
        ],
    )
    def test_lexemes_rebuild_the_text(self, text):
        tokens = tokenize(text)
        rebuilt = ""
        for tok in tokens:
            rebuilt += " " * (tok.pos - len(rebuilt)) + tok.lexeme
        assert rebuilt == text
        assert [t.kind for t in tokenize(rebuilt)] == [t.kind for t in tokens]
