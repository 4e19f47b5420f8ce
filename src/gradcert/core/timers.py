from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Dict, Iterator

log = logging.getLogger("gradcert")


class Timer:
    def __init__(self):
        self.reset()

    def reset(self):
        self._t0 = time.perf_counter()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self._t0

    def __repr__(self) -> str:
        return f"{self.elapsed:.3f}s"


class PhaseTimer(Timer):
    """Wall time of a run plus the seconds spent in each named phase."""

    def __init__(self):
        super().__init__()
        self.phases: Dict[str, float] = {}

    @contextmanager
    def phase(self, name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.phases[name] = self.phases.get(name, 0.0) + time.perf_counter() - t0

    def breakdown(self) -> str:
        return ", ".join(f"{k}={v:.3f}s" for k, v in self.phases.items())


@contextmanager
def timed(label: str):
    t = Timer()
    yield t
    log.info(f"[timer] {label}: {t.elapsed:.3f}s")
