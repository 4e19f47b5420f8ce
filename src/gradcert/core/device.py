from __future__ import annotations

import os
import random
from typing import Optional

import numpy as np
import torch


def pick_device(user: Optional[str] = None) -> torch.device:
    """
    Resolve a torch.device for the module under test.

    Gradient checks default to CPU: float64 finite differences are not
    supported on MPS and accelerator kernels are free to be non-deterministic.
    """
    if user is None or user == "cpu":
        return torch.device("cpu")
    if (user.isdigit() or user == "cuda") and torch.cuda.is_available():
        return torch.device("cuda:0" if user == "cuda" else f"cuda:{user}")
    raise ValueError(f"Device {user!r} is not available for gradient checks")


def seed_everything(seed: int = 12345) -> None:
    """
    Deterministic seeds for Python, NumPy, and Torch.
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)  # safe if no cuda
    os.environ["PYTHONHASHSEED"] = str(seed)


def torch_dtype(name: str = "float64") -> torch.dtype:
    """
    Map simple strings to torch dtypes. Anything below float32 is refused:
    a 1e-6 perturbation vanishes in half precision.
    """
    name = name.lower()
    if name in ("fp64", "float64", "double"):
        return torch.float64
    if name in ("fp32", "float32", "float"):
        return torch.float32
    raise ValueError(f"Unsupported dtype for gradient checks: {name}")
