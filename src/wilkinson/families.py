"""Response families accepted by ``family = ...``."""

DEFAULT_FAMILY = "gaussian"

FAMILIES = {
    "gaussian",
    "student",
    "skew_normal",
    "binomial",
    "bernoulli",
    "poisson",
    "negbinomial",
    "geometric",
    "gamma",
    "lognormal",
    "weibull",
    "exponential",
    "beta",
    "categorical",
    "cumulative",
    "sratio",
    "cratio",
    "acat",
}

# Ordinal families estimate thresholds in place of an intercept
NO_INTERCEPT_FAMILIES = {"cumulative", "sratio", "cratio", "acat"}


def is_known(family: str) -> bool:
    return family in FAMILIES


def allows_intercept(family: str) -> bool:
    return family not in NO_INTERCEPT_FAMILIES
