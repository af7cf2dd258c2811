"""Output models: the variable-centric description of a parsed formula."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel

from .ast import CorrelationKind


class VariableRole(str, Enum):
    RESPONSE = "Response"
    FIXED_EFFECT = "FixedEffect"
    GROUPING_VARIABLE = "GroupingVariable"
    RANDOM_EFFECT = "RandomEffect"
    IDENTITY = "Identity"


class Transformation(BaseModel):
    """A function applied to a variable and the columns it expands into."""

    function: str
    parameters: dict[str, Any] = {}
    generates_columns: list[str] = []


class Interaction(BaseModel):
    name: str
    variables: list[str]
    order: int
    context: Literal["fixed_effects", "random_effects"] = "fixed_effects"
    grouping_variable: str | None = None
    columns: list[str] = []


class RandomEffectInfo(BaseModel):
    """Membership of a variable in one random-effect term.

    ``kind`` is ``grouping`` on the grouping factor(s) and ``slope`` on every
    effect variable inside the term.
    """

    kind: Literal["grouping", "slope"]
    grouping_variable: str
    correlation: CorrelationKind = CorrelationKind.CORRELATED
    correlation_id: str | None = None
    correlated: bool = True
    has_intercept: bool = True
    variables: list[str] = []
    interactions: list[str] = []
    options: dict[str, Any] = {}


class Variable(BaseModel):
    id: int
    name: str
    role: VariableRole
    roles: list[VariableRole] = []
    generated_columns: list[str] = []
    transformations: list[Transformation] = []
    interactions: list[Interaction] = []
    random_effects: list[RandomEffectInfo] = []


class DistributionalParameter(BaseModel):
    """An auxiliary ``name ~ rhs`` formula such as ``sigma ~ x``."""

    name: str
    has_intercept: bool = True
    column_names: list[str] = []
    generated_columns: list[str] = []


class FormulaMetaData(BaseModel):
    formula: str = ""
    has_intercept: bool
    family: str
    is_random_effects_model: bool = False
    has_uncorrelated_slopes_and_intercepts: bool = False
    response_variable_count: int = 1
    column_names: list[str] = []
    variables: list[Variable] = []
    all_generated_columns: list[str] = []
    all_generated_columns_formula_order: dict[int, str] = {}
    parameters: list[DistributionalParameter] = []
    options: dict[str, Any] = {}

    def variable(self, name: str) -> Variable:
        """Look up a variable by name."""
        for var in self.variables:
            if var.name == name:
                return var
        raise KeyError(name)
