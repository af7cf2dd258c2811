"""AST nodes for parsed formulas."""

from enum import Enum
from typing import Annotated, Any
from typing import Literal as TypingLiteral

from pydantic import BaseModel, Field


class CorrelationKind(str, Enum):
    """How the effects of one random-effect term relate: ``|``, ``||`` or ``|ID|``."""

    CORRELATED = "Correlated"
    UNCORRELATED = "Uncorrelated"
    CROSS_PARAMETER = "CrossParameter"


# Argument literals - only valid inside a function call
class NumberLiteral(BaseModel):
    type: TypingLiteral["number"] = "number"
    value: int | float


class StringLiteral(BaseModel):
    type: TypingLiteral["string"] = "string"
    value: str


class BooleanLiteral(BaseModel):
    type: TypingLiteral["boolean"] = "boolean"
    value: bool


class NullLiteral(BaseModel):
    type: TypingLiteral["null"] = "null"


class KeywordArg(BaseModel):
    """Named argument (e.g., ``ref = control`` in ``factor(x, ref = control)``)."""

    type: TypingLiteral["keyword"] = "keyword"
    name: str
    value: "Argument"


# Terms
class ColumnName(BaseModel):
    type: TypingLiteral["column"] = "column"
    name: str


class FunctionCall(BaseModel):
    """Transformation or helper call (e.g., ``poly(x, 3)``, ``log(z)``)."""

    type: TypingLiteral["call"] = "call"
    name: str
    args: list["Argument"] = []


class Interaction(BaseModel):
    """Chain of operands joined by ``:`` or ``*``.

    ``operators[i]`` sits between ``terms[i]`` and ``terms[i + 1]``.
    """

    type: TypingLiteral["interaction"] = "interaction"
    terms: list["Term"]
    operators: list[TypingLiteral[":", "*"]]


class Intercept(BaseModel):
    type: TypingLiteral["intercept"] = "intercept"


class Zero(BaseModel):
    """Intercept suppression, from ``0`` or ``-1``."""

    type: TypingLiteral["zero"] = "zero"


class Group(BaseModel):
    """Parenthesised term list, optionally crossed: ``(a + b + c)^2``."""

    type: TypingLiteral["group"] = "group"
    terms: list["Term"]
    power: int | None = None


# Grouping structures (right of the bar in a random effect)
class SimpleGrouping(BaseModel):
    type: TypingLiteral["simple"] = "simple"
    name: str


class GrGrouping(BaseModel):
    """``gr(group, cor = FALSE, id = "p", by = treatment, cov = TRUE, dist = "student")``."""

    type: TypingLiteral["gr"] = "gr"
    name: str
    options: dict[str, Any] = {}


class MultiMembershipGrouping(BaseModel):
    type: TypingLiteral["mm"] = "mm"
    names: list[str]
    options: dict[str, Any] = {}


class InteractionGrouping(BaseModel):
    type: TypingLiteral["interaction"] = "interaction"
    names: list[str]


class NestedGrouping(BaseModel):
    """``outer/inner`` nesting."""

    type: TypingLiteral["nested"] = "nested"
    names: list[str]


Grouping = Annotated[
    SimpleGrouping | GrGrouping | MultiMembershipGrouping | InteractionGrouping | NestedGrouping,
    Field(discriminator="type"),
]


class RandomEffect(BaseModel):
    type: TypingLiteral["random_effect"] = "random_effect"
    terms: list["Term"]
    grouping: Grouping
    correlation: CorrelationKind = CorrelationKind.CORRELATED
    correlation_id: str | None = None


# Term union type
Term = Annotated[
    ColumnName | FunctionCall | Interaction | Intercept | Zero | Group | RandomEffect,
    Field(discriminator="type"),
]

Argument = Annotated[
    ColumnName
    | FunctionCall
    | NumberLiteral
    | StringLiteral
    | BooleanLiteral
    | NullLiteral
    | KeywordArg,
    Field(discriminator="type"),
]


# Formulas
class Formula(BaseModel):
    """``lhs ~ rhs``. Subtracted terms other than ``1`` are kept in ``dropped``."""

    lhs: Term | None = None
    rhs: list[Term] = []
    dropped: list[Term] = []


class ParameterFormula(BaseModel):
    """Distributional parameter formula (e.g., ``sigma ~ x``)."""

    type: TypingLiteral["parameter"] = "parameter"
    name: str
    formula: Formula


class Assignment(BaseModel):
    """Bare ``key = value`` option (e.g., ``family = poisson``)."""

    type: TypingLiteral["assignment"] = "assignment"
    name: str
    value: Argument


class Program(BaseModel):
    """A parsed formula string: main formula followed by its auxiliary segments."""

    formula: Formula
    parameters: list[
        Annotated[ParameterFormula | Assignment, Field(discriminator="type")]
    ] = []


# Rebuild models for forward references
KeywordArg.model_rebuild()
FunctionCall.model_rebuild()
Interaction.model_rebuild()
Group.model_rebuild()
RandomEffect.model_rebuild()
Formula.model_rebuild()
ParameterFormula.model_rebuild()
Assignment.model_rebuild()
Program.model_rebuild()


def literal_value(arg: BaseModel) -> Any:
    """Python value of an argument node; columns and calls become their source text."""
    match arg:
        case NumberLiteral(value=value) | StringLiteral(value=value) | BooleanLiteral(value=value):
            return value
        case NullLiteral():
            return None
        case _:
            return render(arg)


def render(node: BaseModel) -> str:
    """Canonical source text for a node, used for term labels."""
    match node:
        case ColumnName(name=name):
            return name
        case FunctionCall(name=name, args=args):
            return f"{name}({', '.join(render(a) for a in args)})"
        case NumberLiteral(value=value):
            return repr(value)
        case StringLiteral(value=value):
            return f'"{value}"'
        case BooleanLiteral(value=value):
            return "TRUE" if value else "FALSE"
        case NullLiteral():
            return "NULL"
        case KeywordArg(name=name, value=value):
            return f"{name} = {render(value)}"
        case Interaction(terms=terms, operators=operators):
            out = render(terms[0])
            for op, term in zip(operators, terms[1:]):
                out += f"{op}{render(term)}"
            return out
        case Intercept():
            return "1"
        case Zero():
            return "0"
        case Group(terms=terms, power=power):
            inner = f"({' + '.join(render(t) for t in terms)})"
            return f"{inner}^{power}" if power is not None else inner
        case RandomEffect(terms=terms, grouping=grouping, correlation=correlation):
            bar = {
                CorrelationKind.CORRELATED: "|",
                CorrelationKind.UNCORRELATED: "||",
                CorrelationKind.CROSS_PARAMETER: f"|{node.correlation_id}|",
            }[correlation]
            return f"({' + '.join(render(t) for t in terms)} {bar} {render_grouping(grouping)})"
    raise TypeError(f"cannot render {type(node).__name__}")


def render_grouping(grouping: BaseModel) -> str:
    match grouping:
        case SimpleGrouping(name=name) | GrGrouping(name=name):
            return name
        case MultiMembershipGrouping(names=names):
            return "_".join(names)
        case InteractionGrouping(names=names):
            return ":".join(names)
        case NestedGrouping(names=names):
            return "/".join(names)
    raise TypeError(f"cannot render {type(grouping).__name__}")
