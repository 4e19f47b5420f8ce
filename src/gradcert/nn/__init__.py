# Numpy reference layers used as models under test. Explicit re-exports.

from .activations import Activation as Activation, get_activation as get_activation
from .config import (
    InputType as InputType,
    NetworkConfig as NetworkConfig,
    build_layer as build_layer,
)
from .init import WeightInit as WeightInit
from .layers import (
    LSTM as LSTM,
    ActivationLayer as ActivationLayer,
    ConvolutionLayer as ConvolutionLayer,
    DenseLayer as DenseLayer,
    EmbeddingLayer as EmbeddingLayer,
    Layer as Layer,
    OutputLayer as OutputLayer,
    RnnOutputLayer as RnnOutputLayer,
    SubsamplingLayer as SubsamplingLayer,
)
from .losses import LossFunction as LossFunction
from .network import MultiLayerNetwork as MultiLayerNetwork

__all__ = [
    "Activation",
    "get_activation",
    "InputType",
    "NetworkConfig",
    "build_layer",
    "WeightInit",
    "Layer",
    "DenseLayer",
    "OutputLayer",
    "RnnOutputLayer",
    "EmbeddingLayer",
    "LSTM",
    "ConvolutionLayer",
    "SubsamplingLayer",
    "ActivationLayer",
    "LossFunction",
    "MultiLayerNetwork",
]
