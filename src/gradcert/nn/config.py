# src/gradcert/nn/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

import numpy as np

from .init import WeightInit
from .layers import (
    LSTM,
    ActivationLayer,
    ConvolutionLayer,
    DenseLayer,
    EmbeddingLayer,
    Layer,
    OutputLayer,
    RnnOutputLayer,
    SubsamplingLayer,
)

# -------------------------------
# Input types
# -------------------------------


@dataclass(frozen=True)
class InputType:
    """
    kind: "feed_forward" (B, n), "recurrent" (B, T, n), "convolutional" (B, C, H, W)
    or "convolutional_flat" (B, H*W*C) reshaped to (B, C, H, W) before layer 0.
    """

    kind: str = "feed_forward"
    height: int = 0
    width: int = 0
    depth: int = 1

    @classmethod
    def convolutional_flat(cls, height: int, width: int, depth: int = 1) -> "InputType":
        return cls("convolutional_flat", height, width, depth)

    @classmethod
    def convolutional(cls, height: int, width: int, depth: int = 1) -> "InputType":
        return cls("convolutional", height, width, depth)

    def preprocess(self, x: np.ndarray) -> np.ndarray:
        if self.kind == "convolutional_flat":
            n = self.height * self.width * self.depth
            if x.ndim != 2 or x.shape[1] != n:
                raise ValueError(f"expected flat input of shape (batch, {n}), got {x.shape}")
            return x.reshape(x.shape[0], self.depth, self.height, self.width)
        if self.kind == "convolutional":
            want = (self.depth, self.height, self.width)
            if x.ndim != 4 or x.shape[1:] != want:
                raise ValueError(f"expected input of shape (batch, {want}), got {x.shape}")
        return x


# -------------------------------
# Network config
# -------------------------------


@dataclass
class NetworkConfig:
    layers: List[Layer]
    seed: int = 12345
    weight_init: WeightInit = field(default_factory=WeightInit)
    input_type: Optional[InputType] = None

    # Training-time switches. A gradient check only accepts configurations
    # where they cannot change the loss between two evaluations.
    updater: str = "none"  # none | sgd | momentum | adam | ...
    learning_rate: float = 1.0
    dropout: float = 0.0  # drop probability applied to every layer's input

    # Regularization (deterministic, included in score and gradient)
    regularization: bool = False
    l1: float = 0.0
    l2: float = 0.0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "NetworkConfig":
        """
        Build from a YAML-style mapping:
            {seed: 12345, layers: [{type: dense, n_in: 5, n_out: 6, activation: tanh}, ...]}
        """
        payload = dict(payload)
        specs = payload.pop("layers", None)
        if not specs:
            raise ValueError("network config needs a non-empty 'layers' list")
        layers = [build_layer(s) for s in specs]
        wi = payload.pop("weight_init", None)
        if isinstance(wi, dict):
            payload["weight_init"] = WeightInit(**wi)
        elif isinstance(wi, str):
            payload["weight_init"] = WeightInit(scheme=wi)
        it = payload.pop("input_type", None)
        if it is not None:
            payload["input_type"] = InputType(**it)
        return cls(layers=layers, **payload)


LAYER_TYPES: Dict[str, Type[Layer]] = {
    "dense": DenseLayer,
    "output": OutputLayer,
    "rnn_output": RnnOutputLayer,
    "embedding": EmbeddingLayer,
    "lstm": LSTM,
    "convolution": ConvolutionLayer,
    "subsampling": SubsamplingLayer,
    "activation": ActivationLayer,
}


def build_layer(spec: Dict[str, Any]) -> Layer:
    spec = dict(spec)
    kind = spec.pop("type", None)
    if kind not in LAYER_TYPES:
        raise ValueError(f"Unknown layer type {kind!r}; expected one of {sorted(LAYER_TYPES)}")
    if "no_bias" in spec:
        spec["has_bias"] = not spec.pop("no_bias")
    wi = spec.get("weight_init")
    if isinstance(wi, dict):
        spec["weight_init"] = WeightInit(**wi)
    return LAYER_TYPES[kind](**spec)
