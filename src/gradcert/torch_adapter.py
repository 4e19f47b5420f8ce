# src/gradcert/torch_adapter.py
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn

from .check.params import ParameterIdentity, ParamGroup
from .core.device import pick_device, torch_dtype

log = logging.getLogger("gradcert.torch")

LossFn = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


class TorchModuleAdapter:
    """
    Exposes a torch.nn.Module + loss as a gradient-checkable model.

    Layers are the submodules that directly own trainable parameters, in
    named_modules() order; a layer's groups are its parameters in registration
    order (weight before bias, LSTM weight_ih/weight_hh before its biases).
    A Linear(bias=False) therefore contributes only its weight group.

    The adapter works on a private copy cast to `dtype`; the caller's module
    keeps its dtype, device, parameters and .grad buffers. Put the module in
    eval() mode before wrapping it, or call `adapter.module.eval()`.
    """

    def __init__(
        self,
        module: nn.Module,
        loss_fn: LossFn,
        dtype: str = "float64",
        device: Optional[str] = None,
    ):
        self.device = pick_device(device)
        self.dtype = torch_dtype(dtype)
        self.module = copy.deepcopy(module).to(device=self.device, dtype=self.dtype)
        self.loss_fn = loss_fn
        self._layers: List[Tuple[str, List[Tuple[str, nn.Parameter]]]] = []
        for name, mod in self.module.named_modules():
            groups = [(pn, p) for pn, p in mod.named_parameters(recurse=False) if p.requires_grad]
            if groups:
                self._layers.append((name or type(mod).__name__, groups))
        log.debug(f"Adapted {type(module).__name__}: {len(self._layers)} layers, {self.num_params()} params")

    # --------------- Parameter access ---------------

    def layer_names(self) -> List[str]:
        return [name for name, _ in self._layers]

    def num_layers(self) -> int:
        return len(self._layers)

    def layer_num_params(self, index: int) -> int:
        return sum(p.numel() for _, p in self._layers[index][1])

    def num_params(self) -> int:
        return sum(self.layer_num_params(i) for i in range(self.num_layers()))

    def parameter_groups(self, layer_index: int) -> List[ParamGroup]:
        return [ParamGroup(pn, tuple(p.shape)) for pn, p in self._layers[layer_index][1]]

    def _flat(self, identity: ParameterIdentity) -> torch.Tensor:
        for pn, p in self._layers[identity.layer_index][1]:
            if pn == identity.group:
                # shares storage with the parameter
                return p.detach().view(-1)
        raise KeyError(f"layer {identity.layer_index} has no parameter {identity.group!r}")

    def get_scalar(self, identity: ParameterIdentity) -> float:
        return self._flat(identity)[identity.offset].item()

    def set_scalar(self, identity: ParameterIdentity, value: float) -> None:
        with torch.no_grad():
            self._flat(identity)[identity.offset] = value

    # --------------- Loss / gradient ---------------

    def _tensor(self, a: Any) -> torch.Tensor:
        t = a if isinstance(a, torch.Tensor) else torch.as_tensor(np.asarray(a))
        if t.is_floating_point():
            return t.to(device=self.device, dtype=self.dtype)
        return t.to(device=self.device)

    def score(self, inputs: Any, labels: Any) -> float:
        with torch.no_grad():
            out = self.module(self._tensor(inputs))
            return float(self.loss_fn(out, self._tensor(labels)).item())

    def backward_gradient(self, inputs: Any, labels: Any) -> np.ndarray:
        params = list(self.module.parameters())
        saved = [p.grad for p in params]
        self.module.zero_grad(set_to_none=True)
        try:
            loss = self.loss_fn(self.module(self._tensor(inputs)), self._tensor(labels))
            loss.backward()
            chunks = []
            for _, groups in self._layers:
                for _, p in groups:
                    g = p.grad if p.grad is not None else torch.zeros_like(p)
                    chunks.append(g.detach().reshape(-1).clone())
        finally:
            for p, g in zip(params, saved):
                p.grad = g
        if not chunks:
            return np.zeros(0)
        return torch.cat(chunks).to(dtype=torch.float64).cpu().numpy()

    # --------------- Checks ---------------

    def determinism_violations(self) -> List[str]:
        out: List[str] = []
        for name, mod in self.module.named_modules():
            if not mod.training:
                continue
            if isinstance(mod, nn.modules.dropout._DropoutNd) and mod.p > 0:
                out.append(f"{name or type(mod).__name__}: dropout p={mod.p} in training mode (call module.eval())")
            if isinstance(mod, nn.RNNBase) and mod.num_layers > 1 and mod.dropout > 0:
                out.append(f"{name or type(mod).__name__}: inter-layer dropout={mod.dropout} in training mode")
            if isinstance(mod, nn.MultiheadAttention) and mod.dropout > 0:
                out.append(f"{name or type(mod).__name__}: attention dropout={mod.dropout} in training mode")
            if isinstance(mod, nn.modules.batchnorm._BatchNorm) and mod.track_running_stats:
                out.append(f"{name or type(mod).__name__}: batch norm updates running stats in training mode")
        return out

    def check_input(self, inputs: Any, labels: Any) -> None:
        if inputs is None or labels is None:
            raise ValueError("inputs and labels are required")
        try:
            loss = self.score(inputs, labels)
        except RuntimeError as e:  # torch reports shape errors as RuntimeError
            raise ValueError(str(e)) from e
        if not np.isfinite(loss):
            raise ValueError(f"loss is not finite at the unperturbed parameters ({loss})")
