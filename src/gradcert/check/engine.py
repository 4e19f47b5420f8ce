# src/gradcert/check/engine.py
from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np

from ..core.timers import PhaseTimer
from .analytic import collect_analytic
from .config import DEFAULT_EPS, DEFAULT_MAX_REL_ERROR, DEFAULT_MIN_ABS_ERROR, ToleranceConfig
from .errors import ConfigurationError
from .finite_diff import estimate
from .params import GradientCheckable, ParameterIdentity, enumerate_parameters
from .report import format_pair, format_report
from .result import CheckResult, CheckState, GradientPair
from .scoring import Scorer, score_pair

log = logging.getLogger("gradcert.check")

# Linear pipeline: no state is ever re-entered within a run.
_TRANSITIONS: Dict[CheckState, Set[CheckState]] = {
    CheckState.VALIDATING: {CheckState.COLLECTING_ANALYTIC, CheckState.ABORTED},
    CheckState.COLLECTING_ANALYTIC: {CheckState.SWEEPING, CheckState.ABORTED},
    CheckState.SWEEPING: {CheckState.SCORING, CheckState.ABORTED},
    CheckState.SCORING: {CheckState.DONE_PASS, CheckState.DONE_FAIL, CheckState.ABORTED},
    CheckState.DONE_PASS: set(),
    CheckState.DONE_FAIL: set(),
    CheckState.ABORTED: set(),
}


class GradientChecker:
    """
    Compares a model's backprop gradient with centered finite differences,
    one parameter at a time.

    validate -> collect analytic gradient -> enumerate -> sweep (perturb, score)
    -> CheckResult. Tolerance failures are returned, never raised; only
    configuration and layout errors abort the run.

    With workers > 1 the sweep is split into contiguous chunks, each run on a
    private deep copy of the model. The borrowed model itself is only read.
    """

    def __init__(self, config: Optional[ToleranceConfig] = None, workers: int = 1):
        if workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {workers}")
        self.config = config or ToleranceConfig()
        self.workers = workers
        self._state: Optional[CheckState] = None

    @property
    def state(self) -> Optional[CheckState]:
        return self._state

    def _transition(self, new: CheckState) -> None:
        if self._state is not None and new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal gradient check transition {self._state.value} -> {new.value}")
        log.debug(f"state: {self._state.value if self._state else '-'} -> {new.value}")
        self._state = new

    # --------------- Phases ---------------

    def _validate(self, model: Any, inputs: Any, labels: Any) -> None:
        if not isinstance(model, GradientCheckable):
            raise ConfigurationError(
                f"{type(model).__name__} does not implement the gradient-checkable model interface"
            )
        violations = list(model.determinism_violations())
        if violations:
            raise ConfigurationError(
                "Model configuration is not deterministic: " + "; ".join(violations)
            )
        try:
            model.check_input(inputs, labels)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported input: {e}") from e
        if model.num_params() == 0:
            raise ConfigurationError("Model has no trainable parameters to check")

    def _echo(self, pair: GradientPair, passed: bool, rel: float) -> None:
        if self.config.print_results:
            print(format_pair(pair, passed, rel))

    def _sweep(
        self,
        model: GradientCheckable,
        identities: Sequence[ParameterIdentity],
        analytic: np.ndarray,
        inputs: Any,
        labels: Any,
        scorer: Scorer,
    ) -> None:
        eps = self.config.epsilon
        for ident in identities:
            est = estimate(model, ident, eps, inputs, labels)
            pair = GradientPair(ident, float(analytic[ident.position]), est.numeric)
            passed, rel = scorer.add(pair)
            self._echo(pair, passed, rel)
            if not passed:
                log.warning(f"Gradient mismatch at {ident}: analytic={pair.analytic:.6e} numeric={pair.numeric:.6e}")
            if scorer.should_stop:
                return

    def _sweep_chunk(
        self,
        replica: GradientCheckable,
        identities: Sequence[ParameterIdentity],
        analytic: np.ndarray,
        inputs: Any,
        labels: Any,
    ) -> List[GradientPair]:
        pairs: List[GradientPair] = []
        for ident in identities:
            est = estimate(replica, ident, self.config.epsilon, inputs, labels)
            pair = GradientPair(ident, float(analytic[ident.position]), est.numeric)
            pairs.append(pair)
            if self.config.return_on_first_failure and not score_pair(pair, self.config)[0]:
                break
        return pairs

    def _sweep_parallel(
        self,
        model: GradientCheckable,
        identities: Sequence[ParameterIdentity],
        analytic: np.ndarray,
        inputs: Any,
        labels: Any,
        scorer: Scorer,
    ) -> None:
        n_chunks = min(self.workers, len(identities))
        bounds = np.linspace(0, len(identities), n_chunks + 1).astype(int)
        chunks = [identities[lo:hi] for lo, hi in zip(bounds[:-1], bounds[1:])]
        replicas = [copy.deepcopy(model) for _ in chunks]
        with ThreadPoolExecutor(max_workers=n_chunks) as pool:
            futures = [
                pool.submit(self._sweep_chunk, rep, chunk, analytic, inputs, labels)
                for rep, chunk in zip(replicas, chunks)
            ]
            pairs = [p for fut in futures for p in fut.result()]

        # replay in enumeration order so the report matches a sequential run
        for pair in sorted(pairs, key=lambda p: p.identity):
            passed, rel = scorer.add(pair)
            self._echo(pair, passed, rel)
            if not passed:
                log.warning(f"Gradient mismatch at {pair.identity}: analytic={pair.analytic:.6e} numeric={pair.numeric:.6e}")
            if scorer.should_stop:
                return

    # --------------- Entry point ---------------

    def run(self, model: GradientCheckable, inputs: Any, labels: Any) -> CheckResult:
        timer = PhaseTimer()
        self._state = None
        self._transition(CheckState.VALIDATING)
        try:
            with timer.phase("validate"):
                self._validate(model, inputs, labels)

            self._transition(CheckState.COLLECTING_ANALYTIC)
            with timer.phase("analytic"):
                analytic = collect_analytic(model, inputs, labels, expected=int(model.num_params()))
                vector = enumerate_parameters(model)
            log.info(
                f"Checking {len(vector)} parameters over {model.num_layers()} layers "
                f"(eps={self.config.epsilon:g}, maxRelError={self.config.max_rel_error:g}, "
                f"minAbsError={self.config.min_abs_error:g}, workers={self.workers})"
            )

            self._transition(CheckState.SWEEPING)
            scorer = Scorer(self.config)
            identities = vector.identities
            with timer.phase("sweep"):
                if self.workers > 1:
                    self._sweep_parallel(model, identities, analytic, inputs, labels, scorer)
                else:
                    self._sweep(model, identities, analytic, inputs, labels, scorer)

            self._transition(CheckState.SCORING)
            result = scorer.result(len(vector), elapsed=timer.elapsed)
        except Exception:
            self._transition(CheckState.ABORTED)
            raise

        self._transition(result.state)
        log.info(f"{result.summary()} in {timer} ({timer.breakdown()})")
        if self.config.print_results:
            print(format_report(result))
        return result


def check_gradients(
    model: GradientCheckable,
    epsilon: float = DEFAULT_EPS,
    max_rel_error: float = DEFAULT_MAX_REL_ERROR,
    min_abs_error: float = DEFAULT_MIN_ABS_ERROR,
    print_results: bool = False,
    return_on_first_failure: bool = False,
    inputs: Any = None,
    labels: Any = None,
    *,
    workers: int = 1,
) -> CheckResult:
    """
    One-shot gradient check. Returns a CheckResult whose truthiness is the
    verdict; raises ConfigurationError / ShapeMismatch only for unusable setups.
    """
    config = ToleranceConfig(
        epsilon=epsilon,
        max_rel_error=max_rel_error,
        min_abs_error=min_abs_error,
        print_results=print_results,
        return_on_first_failure=return_on_first_failure,
    )
    return GradientChecker(config, workers=workers).run(model, inputs, labels)
