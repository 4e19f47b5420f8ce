from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict

from ..core.io import load_yaml, save_yaml
from .errors import ConfigurationError

DEFAULT_EPS = 1e-6
DEFAULT_MAX_REL_ERROR = 1e-3
DEFAULT_MIN_ABS_ERROR = 1e-8


@dataclass(frozen=True)
class ToleranceConfig:
    epsilon: float = DEFAULT_EPS  # perturbation size
    max_rel_error: float = DEFAULT_MAX_REL_ERROR
    min_abs_error: float = DEFAULT_MIN_ABS_ERROR  # below this |a|+|n| is "both zero"
    print_results: bool = False
    return_on_first_failure: bool = False

    def __post_init__(self):
        if not (math.isfinite(self.epsilon) and self.epsilon > 0):
            raise ConfigurationError(f"epsilon must be a positive finite number, got {self.epsilon}")
        if not (math.isfinite(self.max_rel_error) and self.max_rel_error > 0):
            raise ConfigurationError(f"max_rel_error must be positive, got {self.max_rel_error}")
        if not (math.isfinite(self.min_abs_error) and self.min_abs_error > 0):
            # two exact zeros must still pass the absolute test
            raise ConfigurationError(f"min_abs_error must be positive, got {self.min_abs_error}")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ToleranceConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ConfigurationError(f"Unknown tolerance keys: {unknown}")
        kw: Dict[str, Any] = {}
        for k, v in payload.items():
            kw[k] = bool(v) if k in ("print_results", "return_on_first_failure") else float(v)
        return cls(**kw)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ToleranceConfig":
        """Accepts either a flat mapping or one nested under `tolerance:`."""
        payload = load_yaml(path)
        if not isinstance(payload, dict):
            raise ConfigurationError(f"{path}: expected a mapping, got {type(payload).__name__}")
        return cls.from_dict(payload.get("tolerance", payload))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def save_yaml(self, path: Path | str) -> None:
        save_yaml(path, {"tolerance": self.to_dict()})
