import logging
import math

import pytest

from gradcert.check import (
    CheckResult,
    ConfigurationError,
    Failure,
    FailureKind,
    ParameterIdentity,
    ToleranceConfig,
    check_gradients,
    format_report,
    result_to_dict,
    save_report,
)
from gradcert.core import init_logger, load_json, save_yaml
from gradcert.datasets.toy import make_quadratic_problem


def test_defaults():
    cfg = ToleranceConfig()
    assert (cfg.epsilon, cfg.max_rel_error, cfg.min_abs_error) == (1e-6, 1e-3, 1e-8)
    assert not cfg.print_results and not cfg.return_on_first_failure


@pytest.mark.parametrize(
    "kw",
    [
        {"epsilon": 0.0},
        {"epsilon": -1e-6},
        {"epsilon": math.nan},
        {"max_rel_error": 0.0},
        {"min_abs_error": -1.0},
        {"min_abs_error": 0.0},
    ],
)
def test_invalid_values(kw):
    with pytest.raises(ConfigurationError):
        ToleranceConfig(**kw)


def test_yaml_roundtrip(tmp_path):
    cfg = ToleranceConfig(epsilon=1e-5, max_rel_error=1e-2, return_on_first_failure=True)
    cfg.save_yaml(tmp_path / "tol.yaml")
    assert ToleranceConfig.from_yaml(tmp_path / "tol.yaml") == cfg


def test_flat_yaml_and_unknown_keys(tmp_path):
    save_yaml(tmp_path / "flat.yaml", {"epsilon": 1e-7})
    assert ToleranceConfig.from_yaml(tmp_path / "flat.yaml").epsilon == 1e-7
    with pytest.raises(ConfigurationError, match="maxRelError"):
        ToleranceConfig.from_dict({"maxRelError": 1e-3})
    with pytest.raises(FileNotFoundError):
        ToleranceConfig.from_yaml(tmp_path / "missing.yaml")


def _failing_result():
    ident = ParameterIdentity(2, 0, "W", 2, (0, 2))
    failures = (
        Failure(ident, 1.0, 2.0, 1 / 3),
        Failure(ParameterIdentity(5, 0, "W", 5, (1, 2)), 0.5, math.nan, math.inf, FailureKind.NON_FINITE),
    )
    return CheckResult(False, failures, n_params=12, n_checked=12, max_relative_error=math.inf, elapsed=0.01)


def test_result_to_dict_is_json_safe(tmp_path):
    res = _failing_result()
    payload = result_to_dict(res)
    assert payload["state"] == "done_fail"
    assert payload["max_relative_error"] is None
    assert payload["failures"][0]["index"] == [0, 2]
    assert payload["failures"][1]["numeric"] is None
    assert payload["failures"][1]["kind"] == "non_finite"
    save_report(tmp_path / "out" / "report.json", res)
    assert load_json(tmp_path / "out" / "report.json") == payload


def test_format_report_limits_failures():
    text = format_report(_failing_result(), limit=1)
    lines = text.splitlines()
    assert lines[0].startswith("Gradient check FAILED: 12/12 params checked, 2 failures")
    assert "layer 0 W[0, 2]" in lines[1]
    assert lines[2] == "  ... 1 more"


def test_passing_summary():
    model, X, Y = make_quadratic_problem()
    res = check_gradients(model, inputs=X, labels=Y)
    assert res.summary().startswith("Gradient check PASSED: 15/15 params checked, 0 failures")
    assert result_to_dict(res)["overall_pass"] is True


def test_init_logger_adds_handlers_once(tmp_path):
    name = "gradcert.test_once"
    log = init_logger(name, "DEBUG", log_file=tmp_path / "logs" / "run.log")
    assert len(log.handlers) == 2
    again = init_logger(name, "WARNING")
    assert again is log
    assert len(log.handlers) == 2
    assert log.level == logging.WARNING
    for h in list(log.handlers):
        h.close()
        log.removeHandler(h)
