import numpy as np
import pytest
import torch
import torch.nn as nn

from gradcert.check import ConfigurationError, check_gradients, enumerate_parameters
from gradcert.torch_adapter import TorchModuleAdapter


class _SeqClassifier(nn.Module):
    def __init__(self, n_in=5, hidden=6, n_out=3, bias=True, num_layers=1, dropout=0.0):
        super().__init__()
        self.lstm = nn.LSTM(n_in, hidden, num_layers=num_layers, dropout=dropout, batch_first=True)
        self.head = nn.Linear(hidden, n_out, bias=bias)

    def forward(self, x):
        h, _ = self.lstm(x)
        return self.head(h[:, -1])


def _mlp(bias=True, dropout=0.0):
    torch.manual_seed(12345)
    layers = [nn.Linear(5, 6), nn.Tanh(), nn.Linear(6, 6, bias=bias), nn.Tanh()]
    if dropout > 0:
        layers.append(nn.Dropout(dropout))
    layers.append(nn.Linear(6, 3))
    return nn.Sequential(*layers)


def _ff_batch(n=4):
    rng = np.random.default_rng(12345)
    return rng.random((n, 5)), np.arange(n) % 3


def _flat_params(module):
    return torch.cat([p.detach().reshape(-1) for p in module.parameters()]).clone()


def test_no_bias_linear_counts():
    with_bias = TorchModuleAdapter(_mlp(bias=True), nn.CrossEntropyLoss())
    no_bias = TorchModuleAdapter(_mlp(bias=False), nn.CrossEntropyLoss())
    assert with_bias.layer_num_params(1) == 42
    assert no_bias.layer_num_params(1) == 36
    assert [g.name for g in no_bias.parameter_groups(1)] == ["weight"]
    assert no_bias.layer_names() == ["0", "2", "4"]


def test_enumeration_follows_registration_order():
    adapter = TorchModuleAdapter(_mlp(), nn.CrossEntropyLoss())
    vec = enumerate_parameters(adapter)
    assert len(vec) == adapter.num_params() == 36 + 42 + 21
    assert (vec[30].layer_index, vec[30].group) == (0, "bias")
    assert (vec[36].layer_index, vec[36].group) == (1, "weight")


@pytest.mark.parametrize("bias", [True, False])
def test_mlp_passes(bias):
    adapter = TorchModuleAdapter(_mlp(bias=bias), nn.CrossEntropyLoss())
    X, y = _ff_batch()
    res = check_gradients(adapter, inputs=X, labels=y)
    assert res.overall_pass, res.summary()
    assert res.n_checked == adapter.num_params()


@pytest.mark.parametrize("bias", [True, False])
def test_lstm_passes(bias):
    torch.manual_seed(0)
    adapter = TorchModuleAdapter(_SeqClassifier(bias=bias), nn.CrossEntropyLoss())
    X = np.random.default_rng(1).random((2, 3, 5))
    res = check_gradients(adapter, inputs=X, labels=np.array([0, 2]))
    assert res.overall_pass, res.summary()


def test_conv_passes():
    torch.manual_seed(0)
    module = nn.Sequential(
        nn.Conv2d(1, 3, 2, bias=False), nn.Tanh(), nn.Flatten(), nn.Linear(3 * 4 * 4, 4)
    )
    adapter = TorchModuleAdapter(module, nn.CrossEntropyLoss())
    X = np.random.default_rng(2).random((2, 1, 5, 5))
    assert check_gradients(adapter, inputs=X, labels=np.array([1, 3]))


def test_embedding_passes():
    torch.manual_seed(0)
    module = nn.Sequential(nn.Embedding(5, 6), nn.Tanh(), nn.Linear(6, 3))
    adapter = TorchModuleAdapter(module, nn.CrossEntropyLoss())
    res = check_gradients(adapter, inputs=np.array([0, 1, 2, 3]), labels=np.array([0, 1, 2, 0]))
    assert res.overall_pass, res.summary()


def test_dropout_in_training_mode_rejected():
    adapter = TorchModuleAdapter(_mlp(dropout=0.5), nn.CrossEntropyLoss())
    X, y = _ff_batch()
    with pytest.raises(ConfigurationError, match="dropout"):
        check_gradients(adapter, inputs=X, labels=y)
    adapter.module.eval()
    assert check_gradients(adapter, inputs=X, labels=y)


def test_recurrent_dropout_in_training_mode_rejected():
    torch.manual_seed(0)
    adapter = TorchModuleAdapter(_SeqClassifier(num_layers=2, dropout=0.5), nn.CrossEntropyLoss())
    assert any("lstm" in v for v in adapter.determinism_violations())
    X = np.random.default_rng(1).random((2, 3, 5))
    with pytest.raises(ConfigurationError, match="dropout"):
        check_gradients(adapter, inputs=X, labels=np.array([0, 2]))
    adapter.module.eval()
    assert adapter.determinism_violations() == []
    assert check_gradients(adapter, inputs=X, labels=np.array([0, 2]))


def test_attention_dropout_in_training_mode_rejected():
    module = nn.ModuleDict({"attn": nn.MultiheadAttention(6, 2, dropout=0.1)})
    adapter = TorchModuleAdapter(module, nn.CrossEntropyLoss())
    assert any("attention dropout" in v for v in adapter.determinism_violations())
    adapter.module.eval()
    assert adapter.determinism_violations() == []


def test_parameters_restored():
    adapter = TorchModuleAdapter(_mlp(), nn.CrossEntropyLoss())
    before = _flat_params(adapter.module)
    X, y = _ff_batch()
    check_gradients(adapter, inputs=X, labels=y)
    assert torch.equal(_flat_params(adapter.module), before)


def test_callers_module_is_left_untouched():
    module = _mlp().eval()
    for p in module.parameters():
        p.grad = torch.ones_like(p)
    before = _flat_params(module)
    adapter = TorchModuleAdapter(module, nn.CrossEntropyLoss())
    X, y = _ff_batch()
    assert check_gradients(adapter, inputs=X, labels=y)
    assert all(p.dtype == torch.float32 for p in module.parameters())
    assert torch.equal(_flat_params(module), before)
    assert all(torch.equal(p.grad, torch.ones_like(p)) for p in module.parameters())


def test_existing_grad_buffers_survive_backward():
    adapter = TorchModuleAdapter(_mlp().eval(), nn.CrossEntropyLoss())
    params = list(adapter.module.parameters())
    params[0].grad = torch.full_like(params[0], 7.0)
    X, y = _ff_batch()
    g = adapter.backward_gradient(X, y)
    assert g.shape == (adapter.num_params(),)
    assert torch.equal(params[0].grad, torch.full_like(params[0], 7.0))
    assert all(p.grad is None for p in params[1:])


def test_parallel_matches_sequential():
    adapter = TorchModuleAdapter(_mlp(bias=False), nn.CrossEntropyLoss())
    X, y = _ff_batch()
    seq = check_gradients(adapter, inputs=X, labels=y)
    par = check_gradients(adapter, inputs=X, labels=y, workers=2)
    assert seq == par


def test_shape_errors_become_configuration_errors():
    adapter = TorchModuleAdapter(_mlp(), nn.CrossEntropyLoss())
    X = np.random.default_rng(0).random((4, 7))
    with pytest.raises(ConfigurationError, match="Unsupported input"):
        check_gradients(adapter, inputs=X, labels=np.arange(4) % 3)


def test_half_precision_refused():
    with pytest.raises(ValueError):
        TorchModuleAdapter(_mlp(), nn.CrossEntropyLoss(), dtype="float16")
