"""Tests for the formula parser."""

import pytest

from wilkinson import ParseError, TokenKind, ast, parse


def rhs(text):
    return parse(text).formula.rhs


class TestFormula:
    def test_simple(self):
        program = parse("y ~ x + z")
        assert program.formula.lhs == ast.ColumnName(name="y")
        assert [t.name for t in program.formula.rhs] == ["x", "z"]
        assert program.parameters == []

    def test_missing_lhs_still_parses(self):
        program = parse("~ x")
        assert program.formula.lhs is None

    def test_keyword_names_usable_as_columns(self):
        assert rhs("y ~ id + by + dist") == [
            ast.ColumnName(name="id"),
            ast.ColumnName(name="by"),
            ast.ColumnName(name="dist"),
        ]

    def test_multivariate_response(self):
        lhs = parse("bind(y1, y2) ~ x").formula.lhs
        assert lhs.type == "call"
        assert lhs.name == "bind"
        assert [a.name for a in lhs.args] == ["y1", "y2"]

    def test_bind_needs_two_columns(self):
        with pytest.raises(ParseError, match="at least 2"):
            parse("mvbind(y1) ~ x")

    def test_transformed_response(self):
        lhs = parse("log(y) ~ x").formula.lhs
        assert lhs == ast.FunctionCall(name="log", args=[ast.ColumnName(name="y")])

    @pytest.mark.parametrize("text", ["log(bind(y1, y2)) ~ x", "scale(mvbind(y1, y2), 2) ~ x"])
    def test_bind_must_be_outermost(self, text):
        with pytest.raises(ParseError, match="must be the outermost call"):
            parse(text)


class TestInteractions:
    def test_star_chain_is_one_term(self):
        terms = rhs("y ~ a*b*c")
        assert len(terms) == 1
        assert terms[0].type == "interaction"
        assert [t.name for t in terms[0].terms] == ["a", "b", "c"]
        assert terms[0].operators == ["*", "*"]

    def test_colon_chain_is_one_term(self):
        terms = rhs("y ~ a:b:c")
        assert len(terms) == 1
        assert [t.name for t in terms[0].terms] == ["a", "b", "c"]
        assert terms[0].operators == [":", ":"]

    def test_mixed_operators(self):
        (term,) = rhs("y ~ a:b*c")
        assert term.operators == [":", "*"]

    def test_interaction_followed_by_terms(self):
        terms = rhs("y ~ wt*hp + disp")
        assert [t.type for t in terms] == ["interaction", "column"]

    def test_group_with_power(self):
        (term,) = rhs("y ~ (a + b + c)^2")
        assert term.type == "group"
        assert term.power == 2
        assert [t.name for t in term.terms] == ["a", "b", "c"]

    def test_group_as_interaction_operand(self):
        (term,) = rhs("y ~ (a + b):c")
        assert term.type == "interaction"
        assert term.terms[0].type == "group"

    def test_dropped_terms(self):
        formula = parse("y ~ a*b - a:b").formula
        assert len(formula.rhs) == 1
        assert formula.dropped == [
            ast.Interaction(
                terms=[ast.ColumnName(name="a"), ast.ColumnName(name="b")],
                operators=[":"],
            )
        ]


class TestCalls:
    def test_positional_and_keyword_arguments(self):
        (term,) = rhs("y ~ poly(x, 3, raw = TRUE)")
        assert term == ast.FunctionCall(
            name="poly",
            args=[
                ast.ColumnName(name="x"),
                ast.NumberLiteral(value=3),
                ast.KeywordArg(name="raw", value=ast.BooleanLiteral(value=True)),
            ],
        )

    def test_literal_arguments(self):
        (term,) = rhs("y ~ f(x, -2, 0.5, \"s\", NULL)")
        assert term.args[1:] == [
            ast.NumberLiteral(value=-2),
            ast.NumberLiteral(value=0.5),
            ast.StringLiteral(value="s"),
            ast.NullLiteral(),
        ]

    def test_nested_calls(self):
        (term,) = rhs("y ~ log(scale(x))")
        assert term.args[0] == ast.FunctionCall(name="scale", args=[ast.ColumnName(name="x")])

    def test_generic_call(self):
        (term,) = rhs("y ~ s(x, k = 5)")
        assert term.name == "s"
        assert ast.render(term) == "s(x, k = 5)"

    def test_function_keyword_must_be_called(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ poly + x")
        assert exc.value.expected == frozenset({TokenKind.LPAREN})

    def test_unclosed_call(self):
        with pytest.raises(ParseError):
            parse("y ~ poly(x, 2")


class TestIntercept:
    def test_explicit_intercept(self):
        assert rhs("y ~ 1") == [ast.Intercept()]

    def test_zero(self):
        assert rhs("y ~ 0") == [ast.Zero()]

    def test_leading_minus_one(self):
        assert rhs("y ~ -1 + x") == [ast.Zero(), ast.ColumnName(name="x")]

    def test_trailing_minus_one(self):
        assert rhs("y ~ x - 1") == [ast.ColumnName(name="x"), ast.Zero()]

    @pytest.mark.parametrize("text", ["y ~ 1 - 1", "y ~ 0 + 1", "y ~ -1 + 1", "y ~ 1 + 0"])
    def test_contradictory_intercepts(self, text):
        with pytest.raises(ParseError, match="contradictory intercept specification"):
            parse(text)

    def test_intercept_scoped_per_term_list(self):
        terms = rhs("y ~ 0 + x + (1 | g)")
        assert terms[0] == ast.Zero()
        assert terms[2].terms == [ast.Intercept()]

    def test_intercept_not_allowed_in_plain_group(self):
        with pytest.raises(ParseError, match="only allowed inside a random effect"):
            parse("y ~ (1 + a)")

    def test_intercept_cannot_be_interacted(self):
        with pytest.raises(ParseError):
            parse("y ~ 1:x")


class TestRandomEffects:
    def test_correlated(self):
        (term,) = rhs("y ~ (1 + x | g)")
        assert term.type == "random_effect"
        assert term.correlation == ast.CorrelationKind.CORRELATED
        assert term.terms == [ast.Intercept(), ast.ColumnName(name="x")]
        assert term.grouping == ast.SimpleGrouping(name="g")

    def test_uncorrelated(self):
        (term,) = rhs("y ~ (1 + x || g)")
        assert term.correlation == ast.CorrelationKind.UNCORRELATED

    @pytest.mark.parametrize("text,cid", [("y ~ (1 |p| g)", "p"), ("y ~ (1 |2| g)", "2")])
    def test_cross_parameter(self, text, cid):
        (term,) = rhs(text)
        assert term.correlation == ast.CorrelationKind.CROSS_PARAMETER
        assert term.correlation_id == cid
        assert term.grouping == ast.SimpleGrouping(name="g")

    def test_interaction_grouping(self):
        (term,) = rhs("y ~ (1 | a:b)")
        assert term.grouping == ast.InteractionGrouping(names=["a", "b"])

    def test_nested_grouping(self):
        (term,) = rhs("y ~ (1 | a/b/c)")
        assert term.grouping == ast.NestedGrouping(names=["a", "b", "c"])

    def test_mixed_grouping_operators_rejected(self):
        with pytest.raises(ParseError):
            parse("y ~ (1 | a:b/c)")

    def test_gr_options(self):
        (term,) = rhs('y ~ (1 | gr(g, cor = FALSE, by = trt, id = "a", dist = student))')
        assert term.grouping == ast.GrGrouping(
            name="g",
            options={"cor": False, "by": "trt", "id": "a", "dist": "student"},
        )

    def test_gr_rejects_unknown_option(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ (1 | gr(g, weights = w))")
        assert TokenKind.COR in exc.value.expected

    def test_gr_cor_needs_boolean(self):
        with pytest.raises(ParseError):
            parse("y ~ (1 | gr(g, cor = 3))")

    def test_multi_membership(self):
        (term,) = rhs("y ~ (1 | mm(g1, g2, weights = w))")
        assert term.grouping == ast.MultiMembershipGrouping(
            names=["g1", "g2"], options={"weights": "w"}
        )

    def test_random_effect_cannot_be_interacted(self):
        with pytest.raises(ParseError, match="cannot be part of an interaction"):
            parse("y ~ x:(1 | g)")

    def test_random_effect_after_drop_cannot_be_interacted(self):
        with pytest.raises(ParseError, match="cannot be part of an interaction"):
            parse("y ~ x - (1 | g):z")

    def test_random_effect_cannot_be_subtracted(self):
        with pytest.raises(ParseError, match="cannot be subtracted") as exc:
            parse("y ~ x - (1 | g)")
        assert exc.value.found.kind is TokenKind.LPAREN

    def test_gr_repeated_option(self):
        with pytest.raises(ParseError, match="option 'cor' given more than once") as exc:
            parse("y ~ (1 | gr(g, cor = TRUE, cor = FALSE))")
        assert TokenKind.COR not in exc.value.expected
        assert TokenKind.ID in exc.value.expected

    def test_only_minus_one_inside_parentheses(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ (1 + x - z | g)")
        assert exc.value.expected == frozenset({TokenKind.ONE})

    def test_render(self):
        (term,) = rhs("y ~ (0 + x |p| g)")
        assert ast.render(term) == "(0 + x |p| g)"


class TestSegments:
    def test_parameter_formula_and_assignment(self):
        program = parse("y ~ x, sigma ~ z, family = student")
        sigma, family = program.parameters
        assert sigma.type == "parameter"
        assert sigma.name == "sigma"
        assert sigma.formula.rhs == [ast.ColumnName(name="z")]
        assert family == ast.Assignment(name="family", value=ast.ColumnName(name="student"))

    def test_literal_assignment(self):
        (option,) = parse("y ~ x, iter = 2000").parameters
        assert option.value == ast.NumberLiteral(value=2000)

    def test_segment_needs_tilde_or_equals(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ x, sigma")
        assert exc.value.expected == frozenset({TokenKind.TILDE, TokenKind.EQUAL})


class TestErrors:
    def test_empty_rhs(self):
        with pytest.raises(ParseError, match="unexpected end of formula") as exc:
            parse("y ~")
        assert exc.value.found.kind == TokenKind.EOF

    def test_leading_plus(self):
        with pytest.raises(ParseError):
            parse("y ~ + x")

    def test_dangling_plus_lists_expected_kinds(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ x +")
        assert TokenKind.COLUMN_NAME in exc.value.expected
        assert TokenKind.LPAREN in exc.value.expected

    def test_unknown_character(self):
        with pytest.raises(ParseError, match="unrecognized character '\\$'") as exc:
            parse("y ~ x $ z")
        err = exc.value
        assert err.position == 6
        assert err.found.lexeme == "$"
        assert err.consumed == ["y", "~", "x"]
        assert err.text == "y ~ x $ z"

    def test_error_context_for_contradiction(self):
        with pytest.raises(ParseError) as exc:
            parse("y ~ 1 - 1")
        assert exc.value.consumed == ["y", "~", "1", "-"]
        assert exc.value.position == 8

    def test_missing_tilde(self):
        with pytest.raises(ParseError):
            parse("y x")

    def test_str_includes_position(self):
        with pytest.raises(ParseError, match="^position 4: "):
            parse("y ~ )")
