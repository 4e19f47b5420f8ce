from __future__ import annotations

from typing import Any

import numpy as np

from .errors import ShapeMismatch
from .params import GradientCheckable


def collect_analytic(model: GradientCheckable, inputs: Any, labels: Any, expected: int) -> np.ndarray:
    """
    One forward+backward pass on the unperturbed model. The returned copy is
    detached from the model's gradient buffers.
    """
    grad = np.asarray(model.backward_gradient(inputs, labels), dtype=np.float64)
    if grad.ndim != 1:
        raise ShapeMismatch(f"Analytic gradient must be a flat vector, got shape {grad.shape}")
    if grad.size != expected:
        raise ShapeMismatch(
            f"Analytic gradient has {grad.size} entries but the model exposes {expected} trainable parameters"
        )
    return grad.copy()
