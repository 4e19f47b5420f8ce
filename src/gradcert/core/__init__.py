# Shared utilities. Explicit re-exports for a clean public API.

from .device import (
    pick_device as pick_device,
    seed_everything as seed_everything,
    torch_dtype as torch_dtype,
)
from .io import (
    ensure_dir as ensure_dir,
    load_json as load_json,
    load_yaml as load_yaml,
    save_json as save_json,
    save_yaml as save_yaml,
)
from .logs import init_logger as init_logger
from .timers import PhaseTimer as PhaseTimer, Timer as Timer, timed as timed

__all__ = [
    "pick_device",
    "seed_everything",
    "torch_dtype",
    "ensure_dir",
    "load_json",
    "load_yaml",
    "save_json",
    "save_yaml",
    "init_logger",
    "Timer",
    "PhaseTimer",
    "timed",
]
