from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class WeightInit:
    """
    scheme: "distribution" draws N(mean, std); "xavier" uses
    std = sqrt(2 / (fan_in + fan_out)); "zero" for debugging.
    """

    scheme: str = "distribution"
    mean: float = 0.0
    std: float = 1.0

    def draw(self, rng: np.random.Generator, shape: Tuple[int, ...], fan_in: int, fan_out: int) -> np.ndarray:
        if self.scheme == "distribution":
            return rng.normal(self.mean, self.std, size=shape)
        if self.scheme == "xavier":
            return rng.normal(0.0, np.sqrt(2.0 / (fan_in + fan_out)), size=shape)
        if self.scheme == "zero":
            return np.zeros(shape, dtype=np.float64)
        raise ValueError(f"Unknown weight init scheme {self.scheme!r}")
