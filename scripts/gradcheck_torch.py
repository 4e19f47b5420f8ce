# scripts/gradcheck_torch.py
import typer, numpy as np, torch, torch.nn as nn
from gradcert.check import GradientChecker, ToleranceConfig
from gradcert.core import init_logger, seed_everything
from gradcert.torch_adapter import TorchModuleAdapter

app = typer.Typer(add_completion=False)


class SeqHead(nn.Module):
    """LSTM over (B,T,n_in), linear head on the last step."""

    def __init__(self, n_in: int, hidden: int, n_out: int, bias: bool = True):
        super().__init__()
        self.lstm = nn.LSTM(n_in, hidden, batch_first=True)
        self.head = nn.Linear(hidden, n_out, bias=bias)

    def forward(self, x):
        h, _ = self.lstm(x)
        return self.head(h[:, -1])


def build(kind: str, bias: bool, n_in: int, hidden: int, n_out: int):
    if kind == "mlp":
        return nn.Sequential(nn.Linear(n_in, hidden), nn.Tanh(),
                             nn.Linear(hidden, hidden, bias=bias), nn.Tanh(),
                             nn.Linear(hidden, n_out, bias=bias))
    if kind == "lstm":
        return SeqHead(n_in, hidden, n_out, bias=bias)
    if kind == "cnn":
        return nn.Sequential(nn.Conv2d(1, 3, 2, bias=bias), nn.Tanh(), nn.MaxPool2d(2, 1),
                             nn.Conv2d(3, 2, 2, bias=bias), nn.Flatten(), nn.Linear(2 * 2 * 2, n_out))
    if kind == "embedding":
        return nn.Sequential(nn.Embedding(n_in, hidden), nn.Tanh(), nn.Linear(hidden, n_out, bias=bias))
    raise typer.BadParameter(f"unknown model kind {kind!r}")


def batch(kind: str, minibatch: int, n_in: int, n_out: int, steps: int, rng):
    y = np.arange(minibatch) % n_out
    if kind == "lstm":
        return rng.random((minibatch, steps, n_in)), y
    if kind == "cnn":
        return rng.random((minibatch, 1, 5, 5)), y
    if kind == "embedding":
        return np.arange(minibatch) % n_in, y
    return rng.random((minibatch, n_in)), y


@app.command()
def main(kind: str = "mlp",
         minibatch: int = 4,
         n_in: int = 5,
         hidden: int = 6,
         n_out: int = 3,
         steps: int = 3,
         seed: int = 12345,
         tolerance: str = "",
         workers: int = 1,
         dtype: str = "float64",
         device: str = "cpu",
         log_level: str = "INFO"):
    """Gradient-check a small torch module with its bias groups on and off."""
    init_logger("gradcert", log_level)
    cfg = ToleranceConfig.from_yaml(tolerance) if tolerance else ToleranceConfig()
    checker = GradientChecker(cfg, workers=workers)
    failed = 0
    for bias in (True, False):
        seed_everything(seed)
        adapter = TorchModuleAdapter(build(kind, bias, n_in, hidden, n_out), nn.CrossEntropyLoss(),
                                     dtype=dtype, device=device)
        adapter.module.eval()
        X, y = batch(kind, minibatch, n_in, n_out, steps, np.random.default_rng(seed))
        res = checker.run(adapter, X, torch.as_tensor(y))
        failed += not res.overall_pass
        typer.echo(f"{kind} bias={bias}: {res.summary()}")
    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
