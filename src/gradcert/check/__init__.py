# Gradient-checking engine. Explicit re-exports for a clean public API.

from .analytic import collect_analytic as collect_analytic
from .config import (
    DEFAULT_EPS as DEFAULT_EPS,
    DEFAULT_MAX_REL_ERROR as DEFAULT_MAX_REL_ERROR,
    DEFAULT_MIN_ABS_ERROR as DEFAULT_MIN_ABS_ERROR,
    ToleranceConfig as ToleranceConfig,
)
from .engine import GradientChecker as GradientChecker, check_gradients as check_gradients
from .errors import (
    ConfigurationError as ConfigurationError,
    GradientCheckError as GradientCheckError,
    ShapeMismatch as ShapeMismatch,
)
from .finite_diff import (
    Estimate as Estimate,
    estimate as estimate,
    numeric_gradient as numeric_gradient,
    perturbed as perturbed,
)
from .params import (
    GradientCheckable as GradientCheckable,
    ParameterIdentity as ParameterIdentity,
    ParameterVector as ParameterVector,
    ParamGroup as ParamGroup,
    count_parameters as count_parameters,
    enumerate_parameters as enumerate_parameters,
    group_size as group_size,
)
from .report import format_report as format_report, result_to_dict as result_to_dict, save_report as save_report
from .result import (
    CheckResult as CheckResult,
    CheckState as CheckState,
    Failure as Failure,
    FailureKind as FailureKind,
    GradientPair as GradientPair,
)
from .scoring import Scorer as Scorer, relative_error as relative_error, score_pair as score_pair

__all__ = [
    "check_gradients",
    "GradientChecker",
    "ToleranceConfig",
    "DEFAULT_EPS",
    "DEFAULT_MAX_REL_ERROR",
    "DEFAULT_MIN_ABS_ERROR",
    "GradientCheckError",
    "ConfigurationError",
    "ShapeMismatch",
    "GradientCheckable",
    "ParameterIdentity",
    "ParameterVector",
    "ParamGroup",
    "enumerate_parameters",
    "count_parameters",
    "group_size",
    "Estimate",
    "estimate",
    "numeric_gradient",
    "perturbed",
    "collect_analytic",
    "GradientPair",
    "Failure",
    "FailureKind",
    "CheckResult",
    "CheckState",
    "Scorer",
    "relative_error",
    "score_pair",
    "format_report",
    "result_to_dict",
    "save_report",
]
