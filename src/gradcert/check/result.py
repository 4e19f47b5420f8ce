from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from .params import ParameterIdentity


class CheckState(str, Enum):
    VALIDATING = "validating"
    COLLECTING_ANALYTIC = "collecting_analytic"
    SWEEPING = "sweeping"
    SCORING = "scoring"
    DONE_PASS = "done_pass"
    DONE_FAIL = "done_fail"
    ABORTED = "aborted"


class FailureKind(str, Enum):
    TOLERANCE = "tolerance"  # error above thresholds
    NON_FINITE = "non_finite"  # NaN/inf loss or gradient


@dataclass(frozen=True)
class GradientPair:
    identity: ParameterIdentity
    analytic: float
    numeric: float


@dataclass(frozen=True)
class Failure:
    identity: ParameterIdentity
    analytic: float
    numeric: float
    relative_error: float
    kind: FailureKind = FailureKind.TOLERANCE

    @property
    def abs_error(self) -> float:
        return abs(self.analytic - self.numeric)

    def __str__(self) -> str:
        return (
            f"{self.identity}: analytic={self.analytic:.6e} numeric={self.numeric:.6e} "
            f"relError={self.relative_error:.3e} ({self.kind.value})"
        )


@dataclass(frozen=True)
class CheckResult:
    overall_pass: bool
    failures: Tuple[Failure, ...]
    n_params: int
    n_checked: int
    max_relative_error: float
    early_exit: bool = False
    elapsed: float = field(default=0.0, compare=False)

    @property
    def state(self) -> CheckState:
        return CheckState.DONE_PASS if self.overall_pass else CheckState.DONE_FAIL

    @property
    def complete(self) -> bool:
        return self.n_checked == self.n_params

    def __bool__(self) -> bool:
        return self.overall_pass

    def summary(self) -> str:
        verdict = "PASSED" if self.overall_pass else "FAILED"
        mre = "n/a" if math.isnan(self.max_relative_error) else f"{self.max_relative_error:.3e}"
        tail = " (stopped at first failure)" if self.early_exit else ""
        return (
            f"Gradient check {verdict}: {self.n_checked}/{self.n_params} params checked, "
            f"{len(self.failures)} failures, max relError={mre}{tail}"
        )
