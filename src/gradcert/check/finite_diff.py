# src/gradcert/check/finite_diff.py
from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import numpy as np

from .params import GradientCheckable, ParameterIdentity, ParameterVector


@dataclass(frozen=True)
class Estimate:
    numeric: float
    loss_plus: float
    loss_minus: float

    @property
    def finite(self) -> bool:
        return math.isfinite(self.loss_plus) and math.isfinite(self.loss_minus)


@contextmanager
def perturbed(model: GradientCheckable, identity: ParameterIdentity, value: float) -> Iterator[float]:
    """
    Temporarily set one scalar; yields the original value and writes it back
    unchanged on exit, whatever happened inside the block.
    """
    original = model.get_scalar(identity)
    model.set_scalar(identity, value)
    try:
        yield original
    finally:
        model.set_scalar(identity, original)


def _loss(model: GradientCheckable, inputs: Any, labels: Any) -> float:
    # overflow/NaN in a perturbed forward pass is reported, not warned about
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        return float(model.score(inputs, labels))


def estimate(
    model: GradientCheckable,
    identity: ParameterIdentity,
    epsilon: float,
    inputs: Any,
    labels: Any,
) -> Estimate:
    """
    Centered difference for one parameter: two forward evaluations,
    (L(v+eps) - L(v-eps)) / (2 eps). The parameter is restored to the exact
    value read before the first perturbation.
    """
    original = model.get_scalar(identity)
    try:
        model.set_scalar(identity, original + epsilon)
        loss_plus = _loss(model, inputs, labels)
        model.set_scalar(identity, original - epsilon)
        loss_minus = _loss(model, inputs, labels)
    finally:
        model.set_scalar(identity, original)

    if math.isfinite(loss_plus) and math.isfinite(loss_minus):
        numeric = (loss_plus - loss_minus) / (2.0 * epsilon)
    else:
        numeric = math.nan
    return Estimate(numeric=numeric, loss_plus=loss_plus, loss_minus=loss_minus)


def numeric_gradient(
    model: GradientCheckable, vector: ParameterVector, epsilon: float, inputs: Any, labels: Any
) -> np.ndarray:
    """Full finite-difference gradient in enumeration order."""
    out = np.empty(len(vector), dtype=np.float64)
    for ident, _ in vector:
        out[ident.position] = estimate(model, ident, epsilon, inputs, labels).numeric
    return out
