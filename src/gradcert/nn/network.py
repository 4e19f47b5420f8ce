# src/gradcert/nn/network.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

import numpy as np

from ..check.params import ParameterIdentity, ParamGroup
from .config import NetworkConfig
from .layers import DenseLayer, EmbeddingLayer, Layer, OutputLayer, RnnOutputLayer

log = logging.getLogger("gradcert.nn")

_STATELESS_UPDATERS = ("none", "sgd")
_SCRATCH = ("grads", "_cache", "_lead")


class MultiLayerNetwork:
    """
    Stack of numpy layers ending in an output layer, exposing the
    gradient-checkable interface: per-layer parameter groups, scalar access by
    identity, training-mode score and backprop gradient.
    """

    def __init__(self, conf: NetworkConfig):
        if not conf.layers:
            raise ValueError("network needs at least one layer")
        if not isinstance(conf.layers[-1], OutputLayer):
            raise ValueError(f"last layer must be an output layer, got {type(conf.layers[-1]).__name__}")
        for i, layer in enumerate(conf.layers[1:], start=1):
            if isinstance(layer, EmbeddingLayer):
                raise ValueError(f"embedding layer must be the first layer (found at index {i})")
        self.conf = conf
        self.layers: List[Layer] = list(conf.layers)
        self._initialized = False
        self._rng = np.random.default_rng(conf.seed)
        self._flatten: Dict[int, Tuple[int, ...]] = {}
        self._masks: Dict[int, np.ndarray] = {}

    def init(self) -> "MultiLayerNetwork":
        rng = np.random.default_rng(self.conf.seed)
        for layer in self.layers:
            layer.init_params(self.conf.weight_init, rng)
        # dropout masks come from their own stream
        self._rng = np.random.default_rng(self.conf.seed + 1)
        self._initialized = True
        log.debug(f"Initialized network: {len(self.layers)} layers, {self.num_params()} params")
        return self

    # --------------- Parameter access ---------------

    def num_layers(self) -> int:
        return len(self.layers)

    def get_layer(self, index: int) -> Layer:
        return self.layers[index]

    def layer_num_params(self, index: int) -> int:
        return self.layers[index].num_params()

    def num_params(self) -> int:
        return sum(layer.num_params() for layer in self.layers)

    def parameter_groups(self, layer_index: int) -> List[ParamGroup]:
        return [ParamGroup(name, shape) for name, shape in self.layers[layer_index].param_shapes()]

    def _tensor(self, identity: ParameterIdentity) -> np.ndarray:
        layer = self.layers[identity.layer_index]
        try:
            return layer.params[identity.group]
        except KeyError:
            raise KeyError(f"layer {identity.layer_index} has no parameter group {identity.group!r}") from None

    def get_scalar(self, identity: ParameterIdentity) -> float:
        return float(self._tensor(identity).flat[identity.offset])

    def set_scalar(self, identity: ParameterIdentity, value: float) -> None:
        self._tensor(identity).flat[identity.offset] = value

    def params(self) -> np.ndarray:
        """Flat copy of all parameters in enumeration order."""
        chunks = [layer.params[name].ravel() for layer in self.layers for name, _ in layer.param_shapes()]
        return np.concatenate(chunks) if chunks else np.zeros(0)

    # --------------- Forward / backward ---------------

    def _dropout_p(self, layer: Layer) -> float:
        return layer.dropout if layer.dropout > 0 else self.conf.dropout

    def _forward(self, inputs: Any, training: bool) -> np.ndarray:
        if not self._initialized:
            raise RuntimeError("network is not initialized; call init() first")
        x = np.asarray(inputs, dtype=np.float64)
        if self.conf.input_type is not None:
            x = self.conf.input_type.preprocess(x)
        self._flatten.clear()
        self._masks.clear()
        for i, layer in enumerate(self.layers):
            # CNN -> feed-forward: flatten (C, H, W) per example
            if isinstance(layer, DenseLayer) and not isinstance(layer, RnnOutputLayer) and x.ndim == 4:
                self._flatten[i] = x.shape
                x = x.reshape(x.shape[0], -1)
            p = self._dropout_p(layer)
            if training and p > 0 and not isinstance(layer, EmbeddingLayer):
                mask = (self._rng.random(x.shape) >= p) / (1.0 - p)  # inverted dropout
                self._masks[i] = mask
                x = x * mask
            x = layer.forward(x)
        return x

    def _input_grad(self, index: int, dx: np.ndarray) -> np.ndarray:
        if index in self._masks:
            dx = dx * self._masks[index]
        if index in self._flatten:
            dx = dx.reshape(self._flatten[index])
        return dx

    @contextmanager
    def _scratch(self) -> Iterator[None]:
        """Layer gradient buffers and forward caches are put back on exit."""
        saved = [{k: getattr(layer, k) for k in _SCRATCH if hasattr(layer, k)} for layer in self.layers]
        for layer in self.layers:
            layer.grads = dict(layer.grads)
        try:
            yield
        finally:
            for layer, state in zip(self.layers, saved):
                for k, v in state.items():
                    setattr(layer, k, v)

    def output(self, inputs: Any) -> np.ndarray:
        """Inference-mode forward pass (no dropout)."""
        return self._forward(inputs, training=False)

    def _weights(self):
        for layer in self.layers:
            for name, _ in layer.param_shapes():
                if name != "b":
                    yield layer.params[name]

    def _reg_score(self) -> float:
        if not self.conf.regularization:
            return 0.0
        s = 0.0
        for w in self._weights():
            s += 0.5 * self.conf.l2 * float((w * w).sum()) + self.conf.l1 * float(np.abs(w).sum())
        return s

    def score(self, inputs: Any, labels: Any) -> float:
        """Training-mode loss: data loss averaged over the minibatch plus regularization."""
        with self._scratch():
            self._forward(inputs, training=True)
            out: OutputLayer = self.layers[-1]
            return out.compute_score(np.asarray(labels, dtype=np.float64)) + self._reg_score()

    def backward_gradient(self, inputs: Any, labels: Any) -> np.ndarray:
        """One training-mode forward + backward; gradients flattened in enumeration order."""
        with self._scratch():
            self._forward(inputs, training=True)
            last = len(self.layers) - 1
            out: OutputLayer = self.layers[last]
            dx = self._input_grad(last, out.backward_labels(np.asarray(labels, dtype=np.float64)))
            for i in reversed(range(last)):
                dx = self.layers[i].backward(dx)
                if dx is None:
                    break
                dx = self._input_grad(i, dx)

            grads: List[np.ndarray] = []
            for layer in self.layers:
                for name, _ in layer.param_shapes():
                    g = layer.grads[name]
                    if self.conf.regularization and name != "b":
                        w = layer.params[name]
                        g = g + self.conf.l2 * w + self.conf.l1 * np.sign(w)
                    grads.append(g.ravel())
            return np.concatenate(grads) if grads else np.zeros(0)

    # --------------- Checks ---------------

    def determinism_violations(self) -> List[str]:
        out: List[str] = []
        if self.conf.dropout > 0:
            out.append(f"network dropout={self.conf.dropout}")
        for i, layer in enumerate(self.layers):
            if layer.dropout > 0:
                out.append(f"layer {i} ({layer.kind}) dropout={layer.dropout}")
        updater = self.conf.updater.lower()
        if updater not in _STATELESS_UPDATERS:
            out.append(f"updater {updater!r} keeps state; use 'none' or 'sgd' with learning_rate=1.0")
        elif updater == "sgd" and self.conf.learning_rate != 1.0:
            out.append(f"sgd updater scales gradients by learning_rate={self.conf.learning_rate}; use 1.0")
        return out

    def check_input(self, inputs: Any, labels: Any) -> None:
        if inputs is None or labels is None:
            raise ValueError("inputs and labels are required")
        if not self._initialized:
            raise ValueError("network is not initialized; call init() first")
        x = np.asarray(inputs, dtype=np.float64)
        y = np.asarray(labels, dtype=np.float64)
        if x.ndim == 0 or y.ndim == 0 or x.shape[0] != y.shape[0]:
            raise ValueError(f"inputs {x.shape} and labels {y.shape} disagree on minibatch size")
        if not (np.isfinite(x).all() and np.isfinite(y).all()):
            raise ValueError("inputs and labels must be finite")
        with self._scratch():
            out = self._forward(x, training=False)
        if out.shape != y.shape:
            raise ValueError(f"network output has shape {out.shape} but labels have shape {y.shape}")

    def summary(self) -> str:
        lines = [f"{'idx':>3}  {'layer':<14}{'params':>8}  groups"]
        for i, layer in enumerate(self.layers):
            groups = ", ".join(f"{n}{list(s)}" for n, s in layer.param_shapes()) or "-"
            lines.append(f"{i:>3}  {layer.kind:<14}{layer.num_params():>8}  {groups}")
        lines.append(f"total params: {self.num_params()}")
        return "\n".join(lines)
