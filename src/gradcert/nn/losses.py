# src/gradcert/nn/losses.py
from __future__ import annotations

from enum import Enum

import numpy as np

from .activations import Activation, log_softmax


class LossFunction(str, Enum):
    MCXENT = "mcxent"  # multi-class cross entropy
    MSE = "mse"


def get_loss(spec: str | LossFunction) -> LossFunction:
    return spec if isinstance(spec, LossFunction) else LossFunction(str(spec).lower())


def loss_score(
    loss: LossFunction, act: Activation, z: np.ndarray, a: np.ndarray, labels: np.ndarray, n: int
) -> float:
    """
    Summed over examples (and time steps) then divided by minibatch size n.
    z, a, labels: (rows, n_out)
    """
    if loss is LossFunction.MCXENT:
        if act.name == "softmax":
            return float(-(labels * log_softmax(z)).sum() / n)
        return float(-(labels * np.log(a)).sum() / n)
    n_out = labels.shape[-1]
    diff = a - labels
    return float((diff * diff).sum() / (n * n_out))


def loss_grad(
    loss: LossFunction, act: Activation, z: np.ndarray, a: np.ndarray, labels: np.ndarray, n: int
) -> np.ndarray:
    """dL/dz for the output pre-activations."""
    if loss is LossFunction.MCXENT:
        if act.name == "softmax":
            # rows of labels need not sum to one (masked or soft targets)
            return (a * labels.sum(axis=-1, keepdims=True) - labels) / n
        return act.backward(z, a, -labels / a / n)
    n_out = labels.shape[-1]
    return act.backward(z, a, 2.0 * (a - labels) / (n * n_out))
