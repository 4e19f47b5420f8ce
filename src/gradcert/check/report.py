from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, List

from ..core.io import save_json
from .result import CheckResult, Failure, GradientPair


def _num(x: float) -> float | None:
    # JSON has no NaN/inf
    return float(x) if math.isfinite(x) else None


def format_pair(pair: GradientPair, passed: bool, rel: float) -> str:
    status = "passed" if passed else "FAILED"
    return (
        f"Param {pair.identity.position} ({pair.identity}) {status}: "
        f"grad={pair.analytic:.6e}, numericalGrad={pair.numeric:.6e}, relError={rel:.3e}"
    )


def format_report(result: CheckResult, limit: int = 50) -> str:
    lines: List[str] = [result.summary()]
    for f in result.failures[:limit]:
        lines.append(f"  {f}")
    if len(result.failures) > limit:
        lines.append(f"  ... {len(result.failures) - limit} more")
    return "\n".join(lines)


def failure_to_dict(f: Failure) -> Dict[str, Any]:
    return {
        "position": f.identity.position,
        "layer": f.identity.layer_index,
        "group": f.identity.group,
        "offset": f.identity.offset,
        "index": list(f.identity.index),
        "analytic": _num(f.analytic),
        "numeric": _num(f.numeric),
        "relative_error": _num(f.relative_error),
        "kind": f.kind.value,
    }


def result_to_dict(result: CheckResult) -> Dict[str, Any]:
    return {
        "overall_pass": result.overall_pass,
        "state": result.state.value,
        "n_params": result.n_params,
        "n_checked": result.n_checked,
        "max_relative_error": _num(result.max_relative_error),
        "early_exit": result.early_exit,
        "elapsed_s": round(result.elapsed, 4),
        "failures": [failure_to_dict(f) for f in result.failures],
    }


def save_report(path: Path | str, result: CheckResult) -> None:
    save_json(path, result_to_dict(result))
