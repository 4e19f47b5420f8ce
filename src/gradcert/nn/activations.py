# src/gradcert/nn/activations.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

_NAMES = ("identity", "sigmoid", "tanh", "relu", "leakyrelu", "softmax")


def sigmoid(z: np.ndarray) -> np.ndarray:
    # numerically stable sigmoid
    out = np.empty_like(z)
    pos = z >= 0
    neg = ~pos
    out[pos] = 1.0 / (1.0 + np.exp(-z[pos]))
    ez = np.exp(z[neg])
    out[neg] = ez / (1.0 + ez)
    return out


def softmax(z: np.ndarray) -> np.ndarray:
    e = np.exp(z - z.max(axis=-1, keepdims=True))
    return e / e.sum(axis=-1, keepdims=True)


def log_softmax(z: np.ndarray) -> np.ndarray:
    s = z - z.max(axis=-1, keepdims=True)
    return s - np.log(np.exp(s).sum(axis=-1, keepdims=True))


@dataclass(frozen=True)
class Activation:
    """Elementwise (or row-wise, for softmax) activation with its derivative."""

    name: str = "identity"
    alpha: float = 0.01  # leakyrelu negative slope

    def __post_init__(self):
        if self.name not in _NAMES:
            raise ValueError(f"Unknown activation {self.name!r}; expected one of {_NAMES}")

    def forward(self, z: np.ndarray) -> np.ndarray:
        if self.name == "identity":
            return z
        if self.name == "sigmoid":
            return sigmoid(z)
        if self.name == "tanh":
            return np.tanh(z)
        if self.name == "relu":
            return np.maximum(z, 0.0)
        if self.name == "leakyrelu":
            return np.where(z >= 0, z, self.alpha * z)
        return softmax(z)

    def backward(self, z: np.ndarray, a: np.ndarray, da: np.ndarray) -> np.ndarray:
        """dL/dz given pre-activation z, output a and upstream dL/da."""
        if self.name == "identity":
            return da
        if self.name == "sigmoid":
            return da * a * (1.0 - a)
        if self.name == "tanh":
            return da * (1.0 - a * a)
        if self.name == "relu":
            return da * (z > 0)
        if self.name == "leakyrelu":
            return da * np.where(z >= 0, 1.0, self.alpha)
        # softmax Jacobian-vector product
        return a * (da - (da * a).sum(axis=-1, keepdims=True))


def get_activation(spec: str | Activation) -> Activation:
    if isinstance(spec, Activation):
        return spec
    return Activation(str(spec).lower().replace("_", ""))
