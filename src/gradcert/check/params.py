# src/gradcert/check/params.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from .errors import ConfigurationError, ShapeMismatch


@dataclass(frozen=True, order=True)
class ParameterIdentity:
    """
    Address of one trainable scalar: layer, parameter group and flat (C order)
    offset inside that group. `position` is the index in the flattened vector,
    so sorting identities restores enumeration order.
    """

    position: int
    layer_index: int
    group: str
    offset: int
    index: Tuple[int, ...] = field(default=(), compare=False)

    def __str__(self) -> str:
        idx = ", ".join(str(i) for i in self.index)
        return f"layer {self.layer_index} {self.group}[{idx}]"


@dataclass(frozen=True)
class ParamGroup:
    name: str
    shape: Tuple[int, ...]

    @property
    def size(self) -> int:
        return group_size(self.shape)


def group_size(shape: Sequence[int]) -> int:
    n = 1
    for s in shape:
        n *= int(s)
    return n


@runtime_checkable
class GradientCheckable(Protocol):
    """Capabilities a model must expose to be certified."""

    def num_params(self) -> int: ...

    def num_layers(self) -> int: ...

    def parameter_groups(self, layer_index: int) -> List[ParamGroup]: ...

    def get_scalar(self, identity: ParameterIdentity) -> float: ...

    def set_scalar(self, identity: ParameterIdentity, value: float) -> None: ...

    def score(self, inputs: Any, labels: Any) -> float: ...

    def backward_gradient(self, inputs: Any, labels: Any) -> np.ndarray: ...

    def determinism_violations(self) -> List[str]: ...

    def check_input(self, inputs: Any, labels: Any) -> None: ...


class ParameterVector:
    """
    Ordered (identity, value) view of a model's trainable scalars.
    Values are read once at enumeration time; the model owns the storage.
    """

    def __init__(self, identities: List[ParameterIdentity], values: np.ndarray, groups: Dict[Tuple[int, str], ParamGroup]):
        self._identities = identities
        self._values = values
        self._groups = groups

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self) -> Iterator[Tuple[ParameterIdentity, float]]:
        for ident in self._identities:
            yield ident, float(self._values[ident.position])

    def __getitem__(self, position: int) -> ParameterIdentity:
        return self._identities[position]

    @property
    def identities(self) -> List[ParameterIdentity]:
        return list(self._identities)

    @property
    def values(self) -> np.ndarray:
        return self._values.copy()

    def group(self, layer_index: int, name: str) -> ParamGroup:
        return self._groups[(layer_index, name)]

    def layer_sizes(self) -> Dict[int, int]:
        out: Dict[int, int] = {}
        for (layer, _), g in self._groups.items():
            out[layer] = out.get(layer, 0) + g.size
        return out


def enumerate_parameters(model: GradientCheckable) -> ParameterVector:
    """
    Flatten the model's parameters: layers in architectural order, groups in the
    order the layer reports them (weights before bias), offsets row-major.
    """
    identities: List[ParameterIdentity] = []
    values: List[float] = []
    groups: Dict[Tuple[int, str], ParamGroup] = {}
    position = 0
    for li in range(model.num_layers()):
        for g in model.parameter_groups(li):
            if (li, g.name) in groups:
                raise ConfigurationError(f"Layer {li} reports parameter group {g.name!r} twice")
            shape = tuple(int(s) for s in g.shape)
            groups[(li, g.name)] = ParamGroup(g.name, shape)
            for off in range(group_size(shape)):
                index = tuple(int(i) for i in np.unravel_index(off, shape)) if shape else ()
                ident = ParameterIdentity(position, li, g.name, off, index)
                identities.append(ident)
                values.append(model.get_scalar(ident))
                position += 1

    expected = int(model.num_params())
    if position != expected:
        raise ShapeMismatch(
            f"Enumerated {position} parameters but model reports num_params()={expected}"
        )
    return ParameterVector(identities, np.asarray(values, dtype=np.float64), groups)


def count_parameters(model: GradientCheckable, layer_index: int | None = None) -> int:
    """Parameter count derived from the group descriptors (not from num_params)."""
    layers = range(model.num_layers()) if layer_index is None else [layer_index]
    return sum(g.size for li in layers for g in model.parameter_groups(li))
