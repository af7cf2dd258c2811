"""Metadata builder: turns a parsed formula into FormulaMetaData.

Walks the AST once. Every right-hand-side term expands into components
(tuples of factors, following R's formula algebra) and every component into
generated columns. Variables are registered in first-appearance order, so
ids follow the text; columns are recorded both per variable (id order) and
in the order they are emitted (formula order).
"""

import logging
from itertools import product

from . import ast, families
from .config import ParserConfig
from .metadata import (
    DistributionalParameter,
    FormulaMetaData,
    Interaction,
    RandomEffectInfo,
    Transformation,
    Variable,
    VariableRole,
)

logger = logging.getLogger(__name__)

MULTIVARIATE_RESPONSES = {"bind", "mvbind"}
MULTI_COLUMN_FUNCTIONS = {"mmc"}

# A factor is a ColumnName or FunctionCall; a component is a tuple of factors
Component = tuple


class BuildError(Exception):
    pass


def _label(factor) -> str:
    return ast.render(factor)


def _key(component: Component) -> frozenset[str]:
    return frozenset(_label(f) for f in component)


def _merge(left: Component, right: Component) -> Component:
    seen = {_label(f) for f in left}
    return left + tuple(f for f in right if _label(f) not in seen)


def _unique(components) -> list[Component]:
    seen = set()
    out = []
    for component in components:
        key = _key(component)
        if key not in seen:
            seen.add(key)
            out.append(component)
    return out


def _cross(left: list[Component], right: list[Component]) -> list[Component]:
    """``left * right``: both sides plus every pairwise product."""
    return _unique(left + right + [_merge(a, b) for a in left for b in right])


def _by_order(components: list[Component]) -> list[Component]:
    return sorted(components, key=len)


def _unique_names(names) -> list[str]:
    return list(dict.fromkeys(names))


def _positional(call: ast.FunctionCall) -> list:
    return [a for a in call.args if not isinstance(a, ast.KeywordArg)]


def _keywords(call: ast.FunctionCall) -> dict:
    return {a.name: a.value for a in call.args if isinstance(a, ast.KeywordArg)}


def columns_in(node) -> list[str]:
    """Column names referenced by a node, in textual order.

    Keyword argument values are options, not data, and are skipped.
    """
    match node:
        case ast.ColumnName(name=name):
            return [name]
        case ast.FunctionCall():
            return [n for arg in _positional(node) for n in columns_in(arg)]
        case ast.Interaction(terms=terms) | ast.Group(terms=terms):
            return [n for term in terms for n in columns_in(term)]
    return []


def _is_bare(term) -> bool:
    """A plain column, possibly wrapped in redundant parentheses: ``x``, ``(x)``."""
    match term:
        case ast.ColumnName():
            return True
        case ast.Group(terms=[inner], power=None):
            return _is_bare(inner)
    return False


def expand(term) -> list[Component]:
    """Expand a fixed-effect term into its components.

    ``:`` binds tighter than ``*``; ``a*b*c`` gives every crossing of its
    operands ordered by interaction order.
    """
    match term:
        case ast.ColumnName() | ast.FunctionCall():
            return [(term,)]
        case ast.Group(terms=terms, power=power):
            union = _unique(c for t in terms for c in expand(t))
            if power is None:
                return union
            crossed = union
            for _ in range(power - 1):
                crossed = _cross(crossed, union)
            return _by_order(crossed)
        case ast.Interaction(terms=terms, operators=operators):
            segments = [[terms[0]]]
            for op, operand in zip(operators, terms[1:]):
                if op == ":":
                    segments[-1].append(operand)
                else:
                    segments.append([operand])

            expanded = []
            for segment in segments:
                components = expand(segment[0])
                for operand in segment[1:]:
                    components = _unique(
                        _merge(a, b) for a in components for b in expand(operand)
                    )
                expanded.append(components)

            result = expanded[0]
            for components in expanded[1:]:
                result = _cross(result, components)
            return _by_order(result) if len(expanded) > 1 else result
        case ast.RandomEffect():
            raise BuildError(f"random effect {ast.render(term)} cannot be nested in another term")
    raise BuildError(f"'{ast.render(term)}' cannot be used inside another term")


class MetaBuilder:
    """Builds FormulaMetaData from a parsed Program."""

    def __init__(self, program: ast.Program, config: ParserConfig | None = None, text: str = ""):
        self.program = program
        self.config = config or ParserConfig()
        self.text = text

        self.variables: dict[str, Variable] = {}  # insertion order == id order
        self.next_id = 1
        self.responses: list[str] = []
        self.column_names: list[str] = []
        self.owners: dict[str, str] = {}  # generated column -> variable name
        self.formula_order: list[str] = []

        self.intercept_slot: int | None = None
        self.suppressed = False
        self.is_random = False
        self.uncorrelated = False

    def build(self) -> FormulaMetaData:
        formula = self.program.formula
        if formula.lhs is None:
            raise BuildError("formula has no response variable")

        self._build_responses(formula.lhs)
        family, options, parameters = self._build_segments()
        self._build_rhs(formula)

        intercept_allowed = families.allows_intercept(family)
        if self.intercept_slot is not None and not intercept_allowed:
            raise BuildError(f"family '{family}' does not estimate an intercept")
        has_intercept = intercept_allowed and not self.suppressed

        response_columns = sum(len(self.variables[r].generated_columns) for r in self.responses)
        all_columns = [c for var in self.variables.values() for c in var.generated_columns]
        formula_order = list(self.formula_order)
        if has_intercept:
            name = self.config.intercept_name
            all_columns.insert(response_columns, name)
            slot = self.intercept_slot if self.intercept_slot is not None else response_columns
            formula_order.insert(slot, name)

        logger.debug(
            "built %d variables and %d columns for %r",
            len(self.variables),
            len(all_columns),
            self.text,
        )
        return FormulaMetaData(
            formula=self.text,
            has_intercept=has_intercept,
            family=family,
            is_random_effects_model=self.is_random,
            has_uncorrelated_slopes_and_intercepts=self.uncorrelated,
            response_variable_count=len(self.responses),
            column_names=self.column_names,
            variables=list(self.variables.values()),
            all_generated_columns=all_columns,
            all_generated_columns_formula_order=dict(enumerate(formula_order, start=1)),
            parameters=parameters,
            options=options,
        )

    # Segments: distributional parameters and options

    def _build_segments(self) -> tuple[str, dict, list[DistributionalParameter]]:
        family = self.config.default_family
        options = {}
        parameters = []
        seen = set()

        for segment in self.program.parameters:
            if segment.name in seen:
                raise BuildError(f"'{segment.name}' is specified more than once")
            seen.add(segment.name)

            match segment:
                case ast.ParameterFormula(name=name, formula=formula):
                    parameters.append(self._build_parameter(name, formula))
                case ast.Assignment(name="family", value=value):
                    family = self._family(value)
                case ast.Assignment(name=name, value=value):
                    options[name] = ast.literal_value(value)

        return family, options, parameters

    def _family(self, value) -> str:
        match value:
            case ast.ColumnName(name=name) | ast.StringLiteral(value=name):
                pass
            case _:
                raise BuildError(f"family must be a name, got {ast.render(value)}")
        if not families.is_known(name):
            raise BuildError(f"unknown family: {name}")
        return name

    def _build_parameter(self, name: str, formula: ast.Formula) -> DistributionalParameter:
        child = MetaBuilder(self.program, self.config)
        child.responses = list(self.responses)
        child._build_rhs(formula)
        has_intercept = not child.suppressed
        columns = list(child.formula_order)
        if has_intercept:
            columns.insert(0, self.config.intercept_name)
        logger.debug("built distributional parameter %s", name)
        return DistributionalParameter(
            name=name,
            has_intercept=has_intercept,
            column_names=child.column_names,
            generated_columns=columns,
        )

    # Responses

    def _build_responses(self, lhs) -> None:
        match lhs:
            case ast.FunctionCall(name=name, args=args) if name in MULTIVARIATE_RESPONSES:
                names = [a.name for a in args]
                duplicates = sorted({n for n in names if names.count(n) > 1})
                if duplicates:
                    raise BuildError(f"duplicate response in {name}(): {', '.join(duplicates)}")
                for response in names:
                    self._build_response(ast.ColumnName(name=response))
            case _:
                self._build_response(lhs)

    def _build_response(self, factor) -> None:
        columns = self._factor_columns(factor)
        name = columns_in(factor)[0]
        var = self._register(name, VariableRole.RESPONSE)
        self.responses.append(name)
        for trans in self._transformations(factor):
            self._attach_transformation(var, trans)
        self._emit(var, columns)

    # Right-hand side

    def _build_rhs(self, formula: ast.Formula) -> None:
        dropped = {_key(c) for term in formula.dropped for c in expand(term)}
        emitted: set[frozenset[str]] = set()

        for term in formula.rhs:
            match term:
                case ast.Intercept():
                    if self.intercept_slot is None:
                        self.intercept_slot = len(self.formula_order)
                case ast.Zero():
                    self.suppressed = True
                case ast.RandomEffect():
                    self._build_random_effect(term)
                case _:
                    self._build_fixed_term(term, dropped, emitted)

    def _build_fixed_term(self, term, dropped: set, emitted: set) -> None:
        components = [
            c for c in expand(term) if _key(c) not in dropped and _key(c) not in emitted
        ]
        if not components:
            return

        kept = {n for c in components for f in c for n in columns_in(f)}
        role = VariableRole.IDENTITY if _is_bare(term) else VariableRole.FIXED_EFFECT
        for name in _unique_names(columns_in(term)):
            if name in kept:
                self._register(name, role)

        for component in components:
            emitted.add(_key(component))
            self._emit_component(component, "fixed_effects")

    def _build_random_effect(self, term: ast.RandomEffect) -> None:
        label = ast.render_grouping(term.grouping)
        factors, options = self._grouping_factors(term.grouping)

        correlation_id = term.correlation_id
        correlated = term.correlation is not ast.CorrelationKind.UNCORRELATED
        if isinstance(term.grouping, ast.GrGrouping):
            if options.get("cor") is False:
                correlated = False
            if options.get("id") is not None:
                correlation_id = str(options["id"])

        effects = [t for t in term.terms if not isinstance(t, (ast.Intercept, ast.Zero))]
        effect_names = _unique_names(n for t in effects for n in columns_in(t))
        both = [n for n in effect_names if n in factors]
        if both:
            raise BuildError(
                f"'{both[0]}' is both an effect and a grouping factor in {ast.render(term)}"
            )

        self.is_random = True
        if not correlated:
            self.uncorrelated = True

        for name in effect_names:
            self._register(name, VariableRole.RANDOM_EFFECT)
        interactions = []
        for component in _unique(c for t in effects for c in expand(t)):
            interaction = self._emit_component(component, "random_effects", grouping=label)
            if interaction is not None:
                interactions.append(interaction.name)

        for name in factors:
            var = self._register(name, VariableRole.GROUPING_VARIABLE)
            self._emit(var, [name])
        if options.get("by"):
            self._add_column_name(options["by"])

        common = dict(
            grouping_variable=label,
            correlation=term.correlation,
            correlation_id=correlation_id,
            correlated=correlated,
            has_intercept=not any(isinstance(t, ast.Zero) for t in term.terms),
            options=options,
        )
        for name in factors:
            info = RandomEffectInfo(
                kind="grouping", variables=effect_names, interactions=interactions, **common
            )
            self._attach_random_effect(self.variables[name], info)
        for name in effect_names:
            self._attach_random_effect(self.variables[name], RandomEffectInfo(kind="slope", **common))

    def _grouping_factors(self, grouping) -> tuple[list[str], dict]:
        match grouping:
            case ast.SimpleGrouping(name=name):
                return [name], {}
            case ast.GrGrouping(name=name, options=options):
                return [name], dict(options)
            case ast.MultiMembershipGrouping(names=names, options=options):
                return _unique_names(names), dict(options)
            case ast.InteractionGrouping(names=names) | ast.NestedGrouping(names=names):
                return _unique_names(names), {}
        raise BuildError(f"unsupported grouping {type(grouping).__name__}")

    # Variables and columns

    def _register(self, name: str, role: VariableRole) -> Variable:
        if role is not VariableRole.RESPONSE and name in self.responses:
            raise BuildError(f"response variable '{name}' also appears on the right-hand side")

        var = self.variables.get(name)
        if var is None:
            var = Variable(id=self.next_id, name=name, role=role, roles=[role])
            self.variables[name] = var
            self.next_id += 1
            self._add_column_name(name)
            logger.debug("registered %s as variable %d (%s)", name, var.id, role.value)
        elif role not in var.roles:
            var.roles.append(role)
        return var

    def _add_column_name(self, name: str) -> None:
        if name not in self.column_names:
            self.column_names.append(name)

    def _emit(self, var: Variable, columns: list[str]) -> None:
        for column in columns:
            if column == self.config.intercept_name:
                raise BuildError(f"column '{column}' clashes with the intercept column")
            owner = self.owners.get(column)
            if owner == var.name:
                continue
            if owner is not None:
                raise BuildError(f"column '{column}' is generated by both '{owner}' and '{var.name}'")
            self.owners[column] = var.name
            var.generated_columns.append(column)
            self.formula_order.append(column)

    def _emit_component(
        self, component: Component, context: str, grouping: str | None = None
    ) -> Interaction | None:
        """Emit the columns of one component; returns its Interaction for order > 1."""
        per_factor = [self._factor_columns(f) for f in component]
        columns = [self.config.separator.join(parts) for parts in product(*per_factor)]

        for factor in component:
            transformations = self._transformations(factor)
            for name in _unique_names(columns_in(factor)):
                for trans in transformations:
                    self._attach_transformation(self.variables[name], trans)

        owner = self.variables[columns_in(component[0])[0]]
        self._emit(owner, columns)

        if len(component) == 1:
            return None
        names = _unique_names(n for f in component for n in columns_in(f))
        interaction = Interaction(
            name=":".join(_label(f) for f in component),
            variables=names,
            order=len(component),
            context=context,
            grouping_variable=grouping,
            columns=columns,
        )
        for name in names:
            var = self.variables[name]
            if interaction not in var.interactions:
                var.interactions.append(interaction)
        return interaction

    def _factor_columns(self, factor) -> list[str]:
        sep = self.config.separator
        match factor:
            case ast.ColumnName(name=name):
                return [name]
            case ast.FunctionCall(name="poly"):
                degree = self._poly_degree(factor)
                return [
                    f"{base}{sep}poly{sep}{i}"
                    for base in self._call_base_columns(factor)
                    for i in range(1, degree + 1)
                ]
            case ast.FunctionCall(name=name) if name in MULTI_COLUMN_FUNCTIONS:
                names = columns_in(factor)
                if not names:
                    raise BuildError(f"{ast.render(factor)} does not reference any column")
                return [sep.join([name, *names])]
            case ast.FunctionCall(name=name):
                return [f"{base}{sep}{name}" for base in self._call_base_columns(factor)]
        raise BuildError(f"'{ast.render(factor)}' does not generate columns")

    def _call_base(self, call: ast.FunctionCall):
        for arg in _positional(call):
            if columns_in(arg):
                return arg
        raise BuildError(f"{ast.render(call)} does not reference any column")

    def _call_base_columns(self, call: ast.FunctionCall) -> list[str]:
        return self._factor_columns(self._call_base(call))

    def _poly_degree(self, call: ast.FunctionCall) -> int:
        positional = _positional(call)
        value = _keywords(call).get("degree", positional[1] if len(positional) > 1 else None)
        if value is None:
            return 1
        match value:
            case ast.NumberLiteral(value=int(degree)) if degree >= 1:
                return degree
        raise BuildError(f"poly() degree must be a positive integer, got {ast.render(value)}")

    def _transformations(self, factor) -> list[Transformation]:
        """Transformations applied by a factor, innermost first."""
        if not isinstance(factor, ast.FunctionCall):
            return []

        keywords = _keywords(factor)
        parameters = {k: ast.literal_value(v) for k, v in keywords.items()}
        inner = []
        if factor.name not in MULTI_COLUMN_FUNCTIONS:
            base = self._call_base(factor)
            inner = self._transformations(base)
            if factor.name == "poly":
                raw = keywords.get("raw")
                parameters = {
                    "degree": self._poly_degree(factor),
                    "orthogonal": not (isinstance(raw, ast.BooleanLiteral) and raw.value),
                }
            else:
                extra = [ast.literal_value(a) for a in _positional(factor) if a is not base]
                if extra:
                    parameters["args"] = extra

        return inner + [
            Transformation(
                function=factor.name,
                parameters=parameters,
                generates_columns=self._factor_columns(factor),
            )
        ]

    def _attach_transformation(self, var: Variable, trans: Transformation) -> None:
        if trans not in var.transformations:
            var.transformations.append(trans)

    def _attach_random_effect(self, var: Variable, info: RandomEffectInfo) -> None:
        if info not in var.random_effects:
            var.random_effects.append(info)


def build(
    program: ast.Program, config: ParserConfig | None = None, text: str = ""
) -> FormulaMetaData:
    """Build metadata for a parsed program."""
    return MetaBuilder(program, config, text).build()
