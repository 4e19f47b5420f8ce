# src/gradcert/nn/layers.py
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .activations import Activation, get_activation
from .init import WeightInit
from .losses import LossFunction, get_loss, loss_grad, loss_score

Shape = Tuple[int, ...]


def _pair(v: int | Sequence[int]) -> Tuple[int, int]:
    if isinstance(v, int):
        return v, v
    a, b = v
    return int(a), int(b)


def _out_size(size: int, k: int, s: int, p: int) -> int:
    return (size + 2 * p - k) // s + 1


class Layer:
    """
    Base layer: owns named parameter tensors and their gradients.
    Parameter-free by default. Bias groups are always named "b" and are
    simply absent when has_bias is False.
    """

    kind = "layer"

    def __init__(
        self,
        activation: str | Activation = "identity",
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        self.activation = get_activation(activation)
        self.has_bias = bool(has_bias)
        self.dropout = float(dropout)
        self.weight_init = weight_init
        self.params: Dict[str, np.ndarray] = {}
        self.grads: Dict[str, np.ndarray] = {}
        self._cache = None

    def param_shapes(self) -> List[Tuple[str, Shape]]:
        return []

    def fans(self) -> Tuple[int, int]:
        return 1, 1

    def init_bias(self, shape: Shape) -> np.ndarray:
        return np.zeros(shape, dtype=np.float64)

    def init_params(self, init: WeightInit, rng: np.random.Generator) -> None:
        fan_in, fan_out = self.fans()
        self.params = {}
        for name, shape in self.param_shapes():
            if name == "b":
                self.params[name] = self.init_bias(shape)
            else:
                w = (self.weight_init or init).draw(rng, shape, fan_in, fan_out)
                self.params[name] = np.ascontiguousarray(w, dtype=np.float64)
        self.grads = {k: np.zeros_like(v) for k, v in self.params.items()}

    def num_params(self) -> int:
        return int(sum(int(np.prod(s)) for _, s in self.param_shapes()))

    def forward(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def backward(self, da: np.ndarray) -> Optional[np.ndarray]:
        raise NotImplementedError

    def __repr__(self) -> str:
        bias = "" if self.has_bias else ", no bias"
        return f"{type(self).__name__}({self.activation.name}{bias}, params={self.num_params()})"


class DenseLayer(Layer):
    kind = "dense"

    def __init__(
        self,
        n_in: int,
        n_out: int,
        activation: str | Activation = "sigmoid",
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        super().__init__(activation, has_bias, dropout, weight_init)
        if n_in < 1 or n_out < 1:
            raise ValueError(f"{self.kind} layer needs n_in, n_out >= 1 (got {n_in}, {n_out})")
        self.n_in, self.n_out = int(n_in), int(n_out)

    def param_shapes(self) -> List[Tuple[str, Shape]]:
        shapes: List[Tuple[str, Shape]] = [("W", (self.n_in, self.n_out))]
        if self.has_bias:
            shapes.append(("b", (self.n_out,)))
        return shapes

    def fans(self) -> Tuple[int, int]:
        return self.n_in, self.n_out

    def _check(self, x: np.ndarray, ndim: int) -> None:
        if x.ndim != ndim or x.shape[-1] != self.n_in:
            raise ValueError(
                f"{self.kind} layer expects {ndim}-D input with {self.n_in} features, got shape {x.shape}"
            )

    def _affine(self, x2: np.ndarray) -> np.ndarray:
        z = x2 @ self.params["W"]  # (rows, n_out)
        if self.has_bias:
            z = z + self.params["b"]
        a = self.activation.forward(z)
        self._cache = (x2, z, a)
        return a

    def _backward_z(self, dz: np.ndarray) -> np.ndarray:
        x2 = self._cache[0]
        self.grads["W"] = x2.T @ dz
        if self.has_bias:
            self.grads["b"] = dz.sum(axis=0)
        return dz @ self.params["W"].T

    def forward(self, x: np.ndarray) -> np.ndarray:
        self._check(x, 2)
        return self._affine(x)

    def backward(self, da: np.ndarray) -> np.ndarray:
        _, z, a = self._cache
        return self._backward_z(self.activation.backward(z, a, da))


class OutputLayer(DenseLayer):
    """Dense layer that also owns the loss. Score is averaged over the minibatch."""

    kind = "output"
    input_ndim = 2

    def __init__(
        self,
        n_in: int,
        n_out: int,
        loss: str | LossFunction = LossFunction.MCXENT,
        activation: str | Activation = "softmax",
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        super().__init__(n_in, n_out, activation, has_bias, dropout, weight_init)
        self.loss = get_loss(loss)
        self._lead: Shape = ()

    def forward(self, x: np.ndarray) -> np.ndarray:
        self._check(x, self.input_ndim)
        self._lead = x.shape[:-1]  # (B,) or (B, T)
        a = self._affine(x.reshape(-1, self.n_in))
        return a.reshape(*self._lead, self.n_out)

    def _labels(self, labels: np.ndarray) -> np.ndarray:
        want = (*self._lead, self.n_out)
        if labels.shape != want:
            raise ValueError(f"{self.kind} layer expects labels of shape {want}, got {labels.shape}")
        return labels.reshape(-1, self.n_out)

    def compute_score(self, labels: np.ndarray) -> float:
        _, z, a = self._cache
        return loss_score(self.loss, self.activation, z, a, self._labels(labels), self._lead[0])

    def backward_labels(self, labels: np.ndarray) -> np.ndarray:
        _, z, a = self._cache
        dz = loss_grad(self.loss, self.activation, z, a, self._labels(labels), self._lead[0])
        return self._backward_z(dz).reshape(*self._lead, self.n_in)


class RnnOutputLayer(OutputLayer):
    """Per-time-step output on (B, T, n_in); loss summed over time."""

    kind = "rnn_output"
    input_ndim = 3


class EmbeddingLayer(Layer):
    """
    Lookup table on integer class indices, input (B, 1). Equivalent to a dense
    layer on one-hot input, without materializing it. No input gradient.
    """

    kind = "embedding"

    def __init__(
        self,
        n_in: int,
        n_out: int,
        activation: str | Activation = "identity",
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        super().__init__(activation, has_bias, dropout, weight_init)
        self.n_in, self.n_out = int(n_in), int(n_out)

    def param_shapes(self) -> List[Tuple[str, Shape]]:
        shapes: List[Tuple[str, Shape]] = [("W", (self.n_in, self.n_out))]
        if self.has_bias:
            shapes.append(("b", (self.n_out,)))
        return shapes

    def fans(self) -> Tuple[int, int]:
        return self.n_in, self.n_out

    def forward(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 2 or x.shape[1] != 1:
            raise ValueError(f"embedding layer expects (batch, 1) indices, got shape {x.shape}")
        idx = x[:, 0].astype(np.int64)
        if not np.array_equal(idx, x[:, 0]) or idx.min() < 0 or idx.max() >= self.n_in:
            raise ValueError(f"embedding indices must be integers in [0, {self.n_in})")
        z = self.params["W"][idx]
        if self.has_bias:
            z = z + self.params["b"]
        a = self.activation.forward(z)
        self._cache = (idx, z, a)
        return a

    def backward(self, da: np.ndarray) -> None:
        idx, z, a = self._cache
        dz = self.activation.backward(z, a, da)
        dW = np.zeros_like(self.params["W"])
        np.add.at(dW, idx, dz)  # repeated indices accumulate
        self.grads["W"] = dW
        if self.has_bias:
            self.grads["b"] = dz.sum(axis=0)
        return None


class LSTM(Layer):
    """
    Single-layer LSTM on (B, T, n_in), returns (B, T, n_out).
    The four gates share one input matrix W (n_in, 4h), one recurrent matrix
    RW (h, 4h) and one bias (4h,), gate blocks ordered input, forget, output, cell.
    """

    kind = "lstm"

    def __init__(
        self,
        n_in: int,
        n_out: int,
        activation: str | Activation = "tanh",
        gate_activation: str | Activation = "sigmoid",
        forget_gate_bias_init: float = 1.0,
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        super().__init__(activation, has_bias, dropout, weight_init)
        self.n_in, self.n_out = int(n_in), int(n_out)
        self.gate_activation = get_activation(gate_activation)
        self.forget_gate_bias_init = float(forget_gate_bias_init)

    def param_shapes(self) -> List[Tuple[str, Shape]]:
        h = self.n_out
        shapes: List[Tuple[str, Shape]] = [("W", (self.n_in, 4 * h)), ("RW", (h, 4 * h))]
        if self.has_bias:
            shapes.append(("b", (4 * h,)))
        return shapes

    def fans(self) -> Tuple[int, int]:
        return self.n_in, self.n_out

    def init_bias(self, shape: Shape) -> np.ndarray:
        b = np.zeros(shape, dtype=np.float64)
        h = self.n_out
        b[h : 2 * h] = self.forget_gate_bias_init
        return b

    def forward(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 3 or x.shape[2] != self.n_in:
            raise ValueError(f"lstm layer expects (batch, time, {self.n_in}) input, got shape {x.shape}")
        B, T, _ = x.shape
        h = self.n_out
        W, RW = self.params["W"], self.params["RW"]
        gate, act = self.gate_activation, self.activation

        H = np.zeros((B, T, h))
        h_prev = np.zeros((B, h))
        c_prev = np.zeros((B, h))
        steps = []
        for t in range(T):
            z = x[:, t] @ W + h_prev @ RW  # (B, 4h)
            if self.has_bias:
                z = z + self.params["b"]
            zi, zf, zo, zg = z[:, :h], z[:, h : 2 * h], z[:, 2 * h : 3 * h], z[:, 3 * h :]
            i, f, o, g = gate.forward(zi), gate.forward(zf), gate.forward(zo), act.forward(zg)
            c = f * c_prev + i * g
            ac = act.forward(c)
            h_cur = o * ac
            steps.append((zi, zf, zo, zg, i, f, o, g, c, ac, c_prev, h_prev))
            H[:, t] = h_cur
            h_prev, c_prev = h_cur, c
        self._cache = (x, steps)
        return H

    def backward(self, dH: np.ndarray) -> np.ndarray:
        x, steps = self._cache
        B, T, _ = x.shape
        h = self.n_out
        W, RW = self.params["W"], self.params["RW"]
        gate, act = self.gate_activation, self.activation

        dW = np.zeros_like(W)
        dRW = np.zeros_like(RW)
        db = np.zeros(4 * h)
        dx = np.zeros_like(x)
        dh_next = np.zeros((B, h))
        dc_next = np.zeros((B, h))
        for t in reversed(range(T)):
            zi, zf, zo, zg, i, f, o, g, c, ac, c_prev, h_prev = steps[t]
            dh = dH[:, t] + dh_next
            do = dh * ac
            dc = dc_next + act.backward(c, ac, dh * o)
            di, dg, df = dc * g, dc * i, dc * c_prev
            dc_next = dc * f
            dz = np.concatenate(
                [
                    gate.backward(zi, i, di),
                    gate.backward(zf, f, df),
                    gate.backward(zo, o, do),
                    act.backward(zg, g, dg),
                ],
                axis=1,
            )
            dW += x[:, t].T @ dz
            dRW += h_prev.T @ dz
            db += dz.sum(axis=0)
            dx[:, t] = dz @ W.T
            dh_next = dz @ RW.T

        self.grads["W"], self.grads["RW"] = dW, dRW
        if self.has_bias:
            self.grads["b"] = db
        return dx


class ConvolutionLayer(Layer):
    """2-D convolution on (B, C, H, W) with filters W (n_out, n_in, kh, kw)."""

    kind = "convolution"

    def __init__(
        self,
        n_in: int,
        n_out: int,
        kernel: int | Sequence[int] = (2, 2),
        stride: int | Sequence[int] = (1, 1),
        padding: int | Sequence[int] = (0, 0),
        activation: str | Activation = "sigmoid",
        has_bias: bool = True,
        dropout: float = 0.0,
        weight_init: Optional[WeightInit] = None,
    ):
        super().__init__(activation, has_bias, dropout, weight_init)
        self.n_in, self.n_out = int(n_in), int(n_out)
        self.kernel, self.stride, self.padding = _pair(kernel), _pair(stride), _pair(padding)

    def param_shapes(self) -> List[Tuple[str, Shape]]:
        kh, kw = self.kernel
        shapes: List[Tuple[str, Shape]] = [("W", (self.n_out, self.n_in, kh, kw))]
        if self.has_bias:
            shapes.append(("b", (self.n_out,)))
        return shapes

    def fans(self) -> Tuple[int, int]:
        kh, kw = self.kernel
        return self.n_in * kh * kw, self.n_out * kh * kw

    def output_shape(self, h: int, w: int) -> Tuple[int, int]:
        (kh, kw), (sh, sw), (ph, pw) = self.kernel, self.stride, self.padding
        return _out_size(h, kh, sh, ph), _out_size(w, kw, sw, pw)

    def forward(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 4 or x.shape[1] != self.n_in:
            raise ValueError(f"convolution layer expects (batch, {self.n_in}, h, w) input, got shape {x.shape}")
        (kh, kw), (sh, sw), (ph, pw) = self.kernel, self.stride, self.padding
        Ho, Wo = self.output_shape(x.shape[2], x.shape[3])
        if Ho < 1 or Wo < 1:
            raise ValueError(f"kernel {self.kernel} does not fit input {x.shape[2:]} with padding {self.padding}")
        xp = np.pad(x, ((0, 0), (0, 0), (ph, ph), (pw, pw)))
        W = self.params["W"]
        z = np.zeros((x.shape[0], self.n_out, Ho, Wo))
        for i in range(kh):
            for j in range(kw):
                patch = xp[:, :, i : i + sh * Ho : sh, j : j + sw * Wo : sw]  # (B,C,Ho,Wo)
                z += np.einsum("bchw,oc->bohw", patch, W[:, :, i, j])
        if self.has_bias:
            z += self.params["b"][None, :, None, None]
        a = self.activation.forward(z)
        self._cache = (x.shape, xp, z, a)
        return a

    def backward(self, da: np.ndarray) -> np.ndarray:
        x_shape, xp, z, a = self._cache
        (kh, kw), (sh, sw), (ph, pw) = self.kernel, self.stride, self.padding
        _, _, Ho, Wo = z.shape
        W = self.params["W"]
        dz = self.activation.backward(z, a, da)
        dW = np.zeros_like(W)
        dxp = np.zeros_like(xp)
        for i in range(kh):
            for j in range(kw):
                sl = (slice(None), slice(None), slice(i, i + sh * Ho, sh), slice(j, j + sw * Wo, sw))
                dW[:, :, i, j] = np.einsum("bohw,bchw->oc", dz, xp[sl])
                dxp[sl] += np.einsum("bohw,oc->bchw", dz, W[:, :, i, j])
        self.grads["W"] = dW
        if self.has_bias:
            self.grads["b"] = dz.sum(axis=(0, 2, 3))
        H, Wd = x_shape[2], x_shape[3]
        return dxp[:, :, ph : ph + H, pw : pw + Wd]


class SubsamplingLayer(Layer):
    """Max / average / p-norm pooling on (B, C, H, W). No parameters."""

    kind = "subsampling"

    def __init__(
        self,
        pooling: str = "max",
        kernel: int | Sequence[int] = (2, 2),
        stride: int | Sequence[int] = (1, 1),
        padding: int | Sequence[int] = (0, 0),
        pnorm: int = 2,
        dropout: float = 0.0,
    ):
        super().__init__("identity", has_bias=False, dropout=dropout)
        self.pooling = pooling.lower()
        if self.pooling not in ("max", "avg", "pnorm"):
            raise ValueError(f"Unknown pooling type {pooling!r}")
        if pnorm < 1:
            raise ValueError(f"pnorm must be >= 1, got {pnorm}")
        self.kernel, self.stride, self.padding = _pair(kernel), _pair(stride), _pair(padding)
        self.pnorm = int(pnorm)

    def forward(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 4:
            raise ValueError(f"subsampling layer expects (batch, c, h, w) input, got shape {x.shape}")
        (kh, kw), (sh, sw), (ph, pw) = self.kernel, self.stride, self.padding
        Ho, Wo = _out_size(x.shape[2], kh, sh, ph), _out_size(x.shape[3], kw, sw, pw)
        if Ho < 1 or Wo < 1:
            raise ValueError(f"pooling kernel {self.kernel} does not fit input {x.shape[2:]}")
        fill = -np.inf if self.pooling == "max" else 0.0
        xp = np.pad(x, ((0, 0), (0, 0), (ph, ph), (pw, pw)), constant_values=fill)
        slices = [
            (slice(None), slice(None), slice(i, i + sh * Ho, sh), slice(j, j + sw * Wo, sw))
            for i in range(kh)
            for j in range(kw)
        ]
        windows = np.stack([xp[sl] for sl in slices], axis=0)  # (K,B,C,Ho,Wo)
        if self.pooling == "max":
            out = windows.max(axis=0)
        elif self.pooling == "avg":
            out = windows.mean(axis=0)
        else:
            out = (np.abs(windows) ** self.pnorm).sum(axis=0) ** (1.0 / self.pnorm)
        self._cache = (x.shape, xp.shape, slices, windows, out)
        return out

    def backward(self, dout: np.ndarray) -> np.ndarray:
        x_shape, xp_shape, slices, windows, out = self._cache
        ph, pw = self.padding
        dxp = np.zeros(xp_shape)
        K = len(slices)
        if self.pooling == "max":
            arg = windows.argmax(axis=0)
            for k, sl in enumerate(slices):
                dxp[sl] += dout * (arg == k)
        elif self.pooling == "avg":
            for sl in slices:
                dxp[sl] += dout / K
        else:
            p = self.pnorm
            scale = dout * out ** (1.0 - p)
            for k, sl in enumerate(slices):
                w = windows[k]
                dxp[sl] += scale * np.abs(w) ** (p - 1) * np.sign(w)
        return dxp[:, :, ph : ph + x_shape[2], pw : pw + x_shape[3]]


class ActivationLayer(Layer):
    """Applies an activation to any input shape, e.g. a standalone LeakyReLU."""

    kind = "activation"

    def __init__(self, activation: str | Activation = "leakyrelu", dropout: float = 0.0):
        super().__init__(activation, has_bias=False, dropout=dropout)

    def forward(self, x: np.ndarray) -> np.ndarray:
        a = self.activation.forward(x)
        self._cache = (x, a)
        return a

    def backward(self, da: np.ndarray) -> np.ndarray:
        x, a = self._cache
        return self.activation.backward(x, a, da)
