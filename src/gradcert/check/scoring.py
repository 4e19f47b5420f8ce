# src/gradcert/check/scoring.py
from __future__ import annotations

import math
from typing import List, Tuple

from .config import ToleranceConfig
from .result import CheckResult, Failure, FailureKind, GradientPair


def relative_error(analytic: float, numeric: float) -> float:
    """|a - n| / (|a| + |n|); 0 when both are exactly zero, inf when either is non-finite."""
    if not (math.isfinite(analytic) and math.isfinite(numeric)):
        return math.inf
    denom = abs(analytic) + abs(numeric)
    if denom == 0.0:
        return 0.0
    return abs(analytic - numeric) / denom


def score_pair(pair: GradientPair, config: ToleranceConfig) -> Tuple[bool, float]:
    """
    Relative error when |a| + |n| exceeds min_abs_error, otherwise an absolute
    test: near-zero gradients would make the ratio meaningless.
    Returns (passed, relative_error).
    """
    a, n = pair.analytic, pair.numeric
    rel = relative_error(a, n)
    if math.isinf(rel):
        return False, rel
    if abs(a) + abs(n) > config.min_abs_error:
        return rel < config.max_rel_error, rel
    return abs(a - n) < config.min_abs_error, rel


class Scorer:
    """Streaming accumulator of per-parameter verdicts."""

    def __init__(self, config: ToleranceConfig):
        self.config = config
        self.failures: List[Failure] = []
        self.n_checked = 0
        self.max_rel = math.nan

    def add(self, pair: GradientPair) -> Tuple[bool, float]:
        passed, rel = score_pair(pair, self.config)
        self.n_checked += 1
        if math.isnan(self.max_rel) or rel > self.max_rel:
            self.max_rel = rel
        if not passed:
            kind = FailureKind.TOLERANCE if math.isfinite(rel) else FailureKind.NON_FINITE
            self.failures.append(Failure(pair.identity, pair.analytic, pair.numeric, rel, kind))
        return passed, rel

    @property
    def should_stop(self) -> bool:
        return self.config.return_on_first_failure and bool(self.failures)

    def result(self, n_params: int, elapsed: float = 0.0) -> CheckResult:
        early_exit = self.n_checked < n_params
        # a sweep cut short never certifies the model
        overall = not self.failures and not early_exit
        return CheckResult(
            overall_pass=overall,
            failures=tuple(sorted(self.failures, key=lambda f: f.identity)),
            n_params=n_params,
            n_checked=self.n_checked,
            max_relative_error=self.max_rel,
            early_exit=early_exit,
            elapsed=elapsed,
        )
