# src/gradcert/nn/zoo.py
"""
Reference networks for certifying layer implementations, each with and without
its bias groups. Weights are N(0, 1) from a fixed seed, regularization is off
and updaters are stateless, so every configuration passes validation.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, Sequence, Tuple

import numpy as np

from ..datasets.toy import make_ff_data, make_image_data, make_index_data, make_sequence_data
from .activations import Activation
from .config import InputType, NetworkConfig
from .init import WeightInit
from .layers import (
    LSTM,
    ActivationLayer,
    ConvolutionLayer,
    DenseLayer,
    EmbeddingLayer,
    OutputLayer,
    RnnOutputLayer,
    SubsamplingLayer,
)
from .network import MultiLayerNetwork

Case = Tuple[str, MultiLayerNetwork, np.ndarray, np.ndarray]

NORMAL = WeightInit("distribution", 0.0, 1.0)


def dense_output_net(
    n_in: int = 5,
    layer_size: int = 6,
    n_out: int = 3,
    dense_no_bias: bool = False,
    out_no_bias: bool = False,
    seed: int = 12345,
) -> MultiLayerNetwork:
    # layer 0 always keeps its bias
    conf = NetworkConfig(
        layers=[
            DenseLayer(n_in, layer_size, activation="tanh"),
            DenseLayer(layer_size, layer_size, activation="tanh", has_bias=not dense_no_bias),
            OutputLayer(layer_size, n_out, loss="mcxent", activation="softmax", has_bias=not out_no_bias),
        ],
        seed=seed,
        weight_init=NORMAL,
    )
    return MultiLayerNetwork(conf).init()


def rnn_output_net(
    n_in: int = 5, layer_size: int = 6, n_out: int = 3, out_no_bias: bool = False, seed: int = 12345
) -> MultiLayerNetwork:
    conf = NetworkConfig(
        layers=[
            LSTM(n_in, layer_size, activation="tanh"),
            RnnOutputLayer(layer_size, n_out, loss="mcxent", activation="softmax", has_bias=not out_no_bias),
        ],
        seed=seed,
        weight_init=NORMAL,
    )
    return MultiLayerNetwork(conf).init()


def embedding_net(
    n_in: int = 5, layer_size: int = 6, n_out: int = 3, embedding_no_bias: bool = False, seed: int = 12345
) -> MultiLayerNetwork:
    conf = NetworkConfig(
        layers=[
            EmbeddingLayer(n_in, layer_size, activation="tanh", has_bias=not embedding_no_bias),
            OutputLayer(layer_size, n_out, loss="mcxent", activation="softmax"),
        ],
        seed=seed,
        weight_init=NORMAL,
    )
    return MultiLayerNetwork(conf).init()


def cnn_subsampling_net(
    cnn_no_bias: bool = False,
    n_out: int = 4,
    height: int = 5,
    width: int = 5,
    depth: int = 1,
    kernel: Tuple[int, int] = (2, 2),
    pooling: str = "max",
    pnorm: int = 3,
    seed: int = 12345,
) -> MultiLayerNetwork:
    """conv(depth->3) -> pool -> conv(3->2, optional bias) -> softmax output."""
    kh, kw = kernel
    h1, w1 = height - kh + 1, width - kw + 1  # 4x4
    h2, w2 = h1 - kh + 1, w1 - kw + 1  # 3x3 after pooling
    h3, w3 = h2 - kh + 1, w2 - kw + 1  # 2x2
    conf = NetworkConfig(
        layers=[
            ConvolutionLayer(depth, 3, kernel=kernel, stride=1, padding=0),
            SubsamplingLayer(pooling, kernel=kernel, stride=1, padding=0, pnorm=pnorm),
            ConvolutionLayer(3, 2, kernel=kernel, stride=1, padding=0, has_bias=not cnn_no_bias),
            OutputLayer(2 * h3 * w3, n_out, loss="mcxent", activation="softmax"),
        ],
        seed=seed,
        weight_init=NORMAL,
        input_type=InputType.convolutional_flat(height, width, depth),
        updater="sgd",
        learning_rate=1.0,
    )
    return MultiLayerNetwork(conf).init()


def leaky_relu_net(
    alpha: float = 0.01, n_in: int = 5, layer_size: int = 6, n_out: int = 3, seed: int = 12345
) -> MultiLayerNetwork:
    conf = NetworkConfig(
        layers=[
            DenseLayer(n_in, layer_size, activation="identity"),
            ActivationLayer(Activation("leakyrelu", alpha=alpha)),
            OutputLayer(layer_size, n_out, loss="mcxent", activation="softmax"),
        ],
        seed=seed,
        weight_init=NORMAL,
    )
    return MultiLayerNetwork(conf).init()


# -------------------------------
# Scenario cases: (label, network, inputs, labels)
# -------------------------------

FLAGS = (False, True)


def dense_cases(minibatches: Sequence[int] = (1, 4), seed: int = 12345) -> Iterator[Case]:
    for mb in minibatches:
        X, Y = make_ff_data(mb, 5, 3, seed=seed)
        for dense_no_bias in FLAGS:
            for out_no_bias in FLAGS:
                net = dense_output_net(dense_no_bias=dense_no_bias, out_no_bias=out_no_bias, seed=seed)
                label = f"dense: minibatch={mb}, denseNoBias={dense_no_bias}, outNoBias={out_no_bias}"
                yield label, net, X, Y


def rnn_cases(minibatches: Sequence[int] = (1, 4), seed: int = 12345, steps: int = 3) -> Iterator[Case]:
    for mb in minibatches:
        X, Y = make_sequence_data(mb, 5, 3, steps=steps, seed=seed)
        for out_no_bias in FLAGS:
            yield f"rnn: minibatch={mb}, rnnOutNoBias={out_no_bias}", rnn_output_net(out_no_bias=out_no_bias, seed=seed), X, Y


def embedding_cases(minibatches: Sequence[int] = (1, 4), seed: int = 12345) -> Iterator[Case]:
    for mb in minibatches:
        X, Y = make_index_data(mb, 5, 3)
        for no_bias in FLAGS:
            yield f"embedding: minibatch={mb}, embeddingNoBias={no_bias}", embedding_net(embedding_no_bias=no_bias, seed=seed), X, Y


def cnn_cases(minibatches: Sequence[int] = (1, 3), seed: int = 12345) -> Iterator[Case]:
    for mb in minibatches:
        X, Y = make_image_data(mb, 5, 5, 1, 4, seed=seed)
        for no_bias in FLAGS:
            yield f"cnn: minibatch={mb}, cnnNoBias={no_bias}", cnn_subsampling_net(cnn_no_bias=no_bias, seed=seed), X, Y


def leaky_relu_cases(minibatches: Sequence[int] = (1, 4), seed: int = 12345) -> Iterator[Case]:
    for mb in minibatches:
        X, Y = make_ff_data(mb, 5, 3, seed=seed)
        for alpha in (0.01, 0.3):
            yield f"leakyrelu: minibatch={mb}, alpha={alpha}", leaky_relu_net(alpha=alpha, seed=seed), X, Y


SCENARIOS: Dict[str, Callable[..., Iterator[Case]]] = {
    "dense": dense_cases,
    "rnn": rnn_cases,
    "embedding": embedding_cases,
    "cnn": cnn_cases,
    "leakyrelu": leaky_relu_cases,
}
