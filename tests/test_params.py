import numpy as np
import pytest

from gradcert.check import ConfigurationError, ShapeMismatch, count_parameters, enumerate_parameters
from gradcert.datasets.toy import QuadraticModel, make_quadratic_problem
from gradcert.nn.zoo import cnn_subsampling_net, dense_output_net, embedding_net, rnn_output_net


def test_dense_no_bias_param_count():
    for no_bias, expected in ((True, 36), (False, 42)):
        net = dense_output_net(dense_no_bias=no_bias)
        assert net.layer_num_params(1) == expected
        assert count_parameters(net, 1) == expected


def test_output_embedding_cnn_no_bias_counts():
    assert dense_output_net(out_no_bias=True).layer_num_params(2) == 6 * 3
    assert dense_output_net(out_no_bias=False).layer_num_params(2) == 6 * 3 + 3
    assert rnn_output_net(out_no_bias=True).layer_num_params(1) == 6 * 3
    assert embedding_net(embedding_no_bias=True).layer_num_params(0) == 5 * 6
    assert embedding_net(embedding_no_bias=False).layer_num_params(0) == 5 * 6 + 6
    assert cnn_subsampling_net(cnn_no_bias=True).layer_num_params(2) == 3 * 2 * 2 * 2
    assert cnn_subsampling_net(cnn_no_bias=False).layer_num_params(2) == 3 * 2 * 2 * 2 + 2


def test_lstm_shares_gate_matrices():
    net = rnn_output_net()
    groups = net.parameter_groups(0)
    assert [(g.name, g.shape) for g in groups] == [("W", (5, 24)), ("RW", (6, 24)), ("b", (24,))]
    assert net.layer_num_params(0) == 5 * 24 + 6 * 24 + 24


def test_enumeration_order_layers_weights_then_bias_row_major():
    net = dense_output_net(dense_no_bias=True)
    vec = enumerate_parameters(net)
    ids = vec.identities
    assert len(vec) == net.num_params() == 36 + 36 + 21
    assert [i.position for i in ids] == list(range(len(ids)))
    assert (ids[0].layer_index, ids[0].group, ids[0].index) == (0, "W", (0, 0))
    assert ids[1].index == (0, 1)
    assert ids[6].index == (1, 0)
    assert (ids[30].layer_index, ids[30].group) == (0, "b")
    assert (ids[36].layer_index, ids[36].group) == (1, "W")
    # no bias group in layer 1: next identity already belongs to the output layer
    assert (ids[72].layer_index, ids[72].group) == (2, "W")
    assert vec.layer_sizes() == {0: 36, 1: 36, 2: 21}
    assert vec.group(2, "b").shape == (3,)
    with pytest.raises(KeyError):
        vec.group(1, "b")


def test_enumeration_reads_current_values():
    net = dense_output_net()
    vec = enumerate_parameters(net)
    assert np.array_equal(vec.values, net.params())


@pytest.mark.parametrize(
    "build", [dense_output_net, rnn_output_net, embedding_net, cnn_subsampling_net], ids=["dense", "rnn", "emb", "cnn"]
)
def test_identities_address_every_scalar_once(build):
    net = build()
    vec = enumerate_parameters(net)
    for ident, _ in vec:
        net.set_scalar(ident, float(ident.position))
    assert np.array_equal(net.params(), np.arange(len(vec), dtype=np.float64))


def test_duplicate_group_is_rejected():
    class _Dup(QuadraticModel):
        def parameter_groups(self, layer_index):
            g = super().parameter_groups(layer_index)
            return g + g[:1]

    model, _, _ = make_quadratic_problem()
    dup = _Dup(A=model.params["W"], b=model.params["b"])
    with pytest.raises(ConfigurationError):
        enumerate_parameters(dup)


def test_num_params_disagreement_is_shape_mismatch():
    class _Miscount(QuadraticModel):
        def num_params(self):
            return super().num_params() + 1

    model = _Miscount(A=np.ones((2, 2)))
    with pytest.raises(ShapeMismatch):
        enumerate_parameters(model)
