from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

import numpy as np

from ..check.params import ParameterIdentity, ParamGroup


def one_hot_cycle(n: int, n_out: int) -> np.ndarray:
    """Row i has a single 1 in column i % n_out."""
    Y = np.zeros((n, n_out), dtype=np.float64)
    Y[np.arange(n), np.arange(n) % n_out] = 1.0
    return Y


def make_ff_data(minibatch: int, n_in: int, n_out: int, seed: int = 12345) -> Tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    X = rng.random((minibatch, n_in))  # U[0,1)
    return X, one_hot_cycle(minibatch, n_out)


def make_sequence_data(
    minibatch: int, n_in: int, n_out: int, steps: int = 3, seed: int = 12345
) -> Tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    X = rng.random((minibatch, steps, n_in))
    Y = np.zeros((minibatch, steps, n_out))
    for i in range(minibatch):
        for t in range(steps):
            Y[i, t, (i + t) % n_out] = 1.0
    return X, Y


def make_index_data(minibatch: int, n_in: int, n_out: int) -> Tuple[np.ndarray, np.ndarray]:
    X = (np.arange(minibatch) % n_in).astype(np.float64).reshape(-1, 1)
    return X, one_hot_cycle(minibatch, n_out)


def make_image_data(
    minibatch: int, height: int, width: int, depth: int, n_out: int, seed: int = 12345
) -> Tuple[np.ndarray, np.ndarray]:
    """Flat (B, H*W*C) images, to be reshaped by a convolutional_flat input type."""
    rng = np.random.default_rng(seed)
    X = rng.random((minibatch, height * width * depth))
    return X, one_hot_cycle(minibatch, n_out)


@dataclass(eq=False)
class QuadraticModel:
    """
    Toy model with a closed-form gradient:
        loss = 0.5 * sum((X A + b - Y)^2) / n + cubic * sum(A^3)
    Single layer; groups "W" (d, k) and, unless has_bias is False, "b" (k,).
    """

    A: np.ndarray
    b: np.ndarray | None = None
    cubic: float = 0.0
    params: Dict[str, np.ndarray] = field(init=False)

    def __post_init__(self):
        self.params = {"W": np.ascontiguousarray(self.A, dtype=np.float64)}
        if self.b is not None:
            self.params["b"] = np.ascontiguousarray(self.b, dtype=np.float64)

    def num_layers(self) -> int:
        return 1

    def num_params(self) -> int:
        return sum(p.size for p in self.params.values())

    def parameter_groups(self, layer_index: int) -> List[ParamGroup]:
        return [ParamGroup(k, tuple(v.shape)) for k, v in self.params.items()]

    def get_scalar(self, identity: ParameterIdentity) -> float:
        return float(self.params[identity.group].flat[identity.offset])

    def set_scalar(self, identity: ParameterIdentity, value: float) -> None:
        self.params[identity.group].flat[identity.offset] = value

    def _residual(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        R = X @ self.params["W"] - Y
        if "b" in self.params:
            R = R + self.params["b"]
        return R

    def score(self, inputs: Any, labels: Any) -> float:
        X, Y = np.asarray(inputs), np.asarray(labels)
        R = self._residual(X, Y)
        W = self.params["W"]
        return float(0.5 * (R * R).sum() / X.shape[0] + self.cubic * (W ** 3).sum())

    def backward_gradient(self, inputs: Any, labels: Any) -> np.ndarray:
        X, Y = np.asarray(inputs), np.asarray(labels)
        R = self._residual(X, Y)  # (n,k)
        W = self.params["W"]
        grads = [(X.T @ R / X.shape[0] + 3.0 * self.cubic * W ** 2).ravel()]
        if "b" in self.params:
            grads.append(R.sum(axis=0) / X.shape[0])
        return np.concatenate(grads)

    def determinism_violations(self) -> List[str]:
        return []

    def check_input(self, inputs: Any, labels: Any) -> None:
        X, Y = np.asarray(inputs), np.asarray(labels)
        d, k = self.params["W"].shape
        if X.ndim != 2 or X.shape[1] != d or Y.shape != (X.shape[0], k):
            raise ValueError(f"expected X (n, {d}) and Y (n, {k}), got {X.shape} and {Y.shape}")


def make_quadratic_problem(
    n: int = 8, d: int = 4, k: int = 3, has_bias: bool = True, cubic: float = 0.0, seed: int = 0
) -> Tuple[QuadraticModel, np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    model = QuadraticModel(
        A=rng.normal(size=(d, k)),
        b=rng.normal(size=(k,)) if has_bias else None,
        cubic=cubic,
    )
    X = rng.normal(size=(n, d))
    Y = rng.normal(size=(n, k))
    return model, X, Y
