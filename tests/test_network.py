import numpy as np
import pytest

from gradcert.check import check_gradients
from gradcert.core.io import load_yaml, save_yaml
from gradcert.datasets.toy import make_ff_data, one_hot_cycle
from gradcert.nn import (
    ConvolutionLayer,
    DenseLayer,
    InputType,
    MultiLayerNetwork,
    NetworkConfig,
    OutputLayer,
    SubsamplingLayer,
    WeightInit,
)
from gradcert.nn.zoo import NORMAL, cnn_subsampling_net, dense_output_net


def test_summary_lists_groups():
    text = dense_output_net(dense_no_bias=True).summary()
    assert "total params: 93" in text
    lines = text.splitlines()
    assert "W[6, 6]" in lines[2] and "b[" not in lines[2]


def test_from_dict_matches_builder(tmp_path):
    payload = {
        "seed": 12345,
        "weight_init": {"scheme": "distribution", "mean": 0.0, "std": 1.0},
        "layers": [
            {"type": "dense", "n_in": 5, "n_out": 6, "activation": "tanh"},
            {"type": "dense", "n_in": 6, "n_out": 6, "activation": "tanh", "no_bias": True},
            {"type": "output", "n_in": 6, "n_out": 3, "loss": "mcxent", "activation": "softmax"},
        ],
    }
    save_yaml(tmp_path / "net.yaml", payload)
    net = MultiLayerNetwork(NetworkConfig.from_dict(load_yaml(tmp_path / "net.yaml"))).init()
    ref = dense_output_net(dense_no_bias=True)
    assert net.num_params() == ref.num_params()
    np.testing.assert_array_equal(net.params(), ref.params())


def test_unknown_layer_type():
    with pytest.raises(ValueError, match="Unknown layer type"):
        NetworkConfig.from_dict({"layers": [{"type": "capsule"}]})


def test_last_layer_must_be_output():
    with pytest.raises(ValueError, match="output layer"):
        MultiLayerNetwork(NetworkConfig(layers=[DenseLayer(5, 3)]))


def test_dropout_randomizes_score_but_not_inference():
    conf = NetworkConfig(
        layers=[DenseLayer(5, 6, activation="tanh"), OutputLayer(6, 3)],
        weight_init=NORMAL,
        dropout=0.5,
    )
    net = MultiLayerNetwork(conf).init()
    X, Y = make_ff_data(4, 5, 3)
    assert net.score(X, Y) != net.score(X, Y)
    np.testing.assert_array_equal(net.output(X), net.output(X))
    assert net.determinism_violations()


def test_bad_labels_rejected():
    net = dense_output_net()
    X, _ = make_ff_data(4, 5, 3)
    with pytest.raises(ValueError):
        net.check_input(X, one_hot_cycle(4, 2))
    with pytest.raises(ValueError):
        net.check_input(X, one_hot_cycle(3, 3))


@pytest.mark.parametrize("l1,l2", [(0.0, 0.1), (0.05, 0.0), (0.05, 0.1)])
def test_regularized_network_passes(l1, l2):
    conf = NetworkConfig(
        layers=[DenseLayer(5, 6, activation="tanh", has_bias=False), OutputLayer(6, 3)],
        weight_init=NORMAL,
        regularization=True,
        l1=l1,
        l2=l2,
    )
    net = MultiLayerNetwork(conf).init()
    X, Y = make_ff_data(4, 5, 3)
    assert check_gradients(net, inputs=X, labels=Y)


def test_mse_output_passes():
    conf = NetworkConfig(
        layers=[
            DenseLayer(5, 6, activation="sigmoid"),
            OutputLayer(6, 3, loss="mse", activation="identity", has_bias=False),
        ],
        weight_init=WeightInit("xavier"),
    )
    net = MultiLayerNetwork(conf).init()
    X, Y = make_ff_data(4, 5, 3)
    assert check_gradients(net, inputs=X, labels=Y)


@pytest.mark.parametrize("pooling", ["avg", "pnorm"])
def test_other_pooling_types_pass(pooling):
    net = cnn_subsampling_net(cnn_no_bias=True, pooling=pooling, pnorm=2)
    rng = np.random.default_rng(7)
    X = rng.random((2, 25))
    assert check_gradients(net, inputs=X, labels=one_hot_cycle(2, 4))


def test_strided_padded_convolution_passes():
    conf = NetworkConfig(
        layers=[
            ConvolutionLayer(2, 3, kernel=3, stride=2, padding=1, has_bias=False),
            OutputLayer(27, 2),
        ],
        weight_init=NORMAL,
        input_type=InputType.convolutional(6, 6, 2),
    )
    net = MultiLayerNetwork(conf).init()
    X = np.random.default_rng(3).random((2, 2, 6, 6))
    assert check_gradients(net, inputs=X, labels=one_hot_cycle(2, 2))


def test_padded_max_pooling_passes():
    conf = NetworkConfig(
        layers=[
            ConvolutionLayer(1, 2, kernel=2),
            SubsamplingLayer("max", kernel=2, stride=2, padding=1),
            OutputLayer(2 * 3 * 3, 3),
        ],
        weight_init=NORMAL,
        input_type=InputType.convolutional_flat(5, 5, 1),
    )
    net = MultiLayerNetwork(conf).init()
    X = np.random.default_rng(11).random((3, 25))
    assert check_gradients(net, inputs=X, labels=one_hot_cycle(3, 3))


def test_gradient_buffers_and_caches_survive_a_check():
    net = dense_output_net()
    X, Y = make_ff_data(4, 5, 3)
    marks = [{k: np.full_like(v, 7.0) for k, v in layer.grads.items()} for layer in net.layers]
    for layer, m in zip(net.layers, marks):
        layer.grads = dict(m)
    caches = [layer._cache for layer in net.layers]
    assert check_gradients(net, inputs=X, labels=Y)
    for layer, m, cache in zip(net.layers, marks, caches):
        assert layer.grads.keys() == m.keys()
        assert all(layer.grads[k] is m[k] for k in m)
        assert layer._cache is cache
