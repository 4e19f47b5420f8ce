import math

import numpy as np
import pytest

from gradcert.check import enumerate_parameters, estimate, numeric_gradient, perturbed, relative_error
from gradcert.datasets.toy import QuadraticModel, make_quadratic_problem


def _max_rel(model, X, Y, eps):
    vec = enumerate_parameters(model)
    num = numeric_gradient(model, vec, eps, X, Y)
    ana = model.backward_gradient(X, Y)
    return max(relative_error(a, n) for a, n in zip(ana, num))


def test_quadratic_numeric_matches_closed_form():
    model, X, Y = make_quadratic_problem()
    assert _max_rel(model, X, Y, 1e-6) < 1e-3


def test_error_shrinks_with_epsilon_until_noise_floor():
    # a cubic term makes the centered-difference truncation error eps^2-sized
    model, X, Y = make_quadratic_problem(cubic=0.5)
    errs = [_max_rel(model, X, Y, eps) for eps in (1e-2, 1e-3, 1e-4)]
    assert errs[0] > errs[1] > errs[2]
    assert errs[2] < 1e-3


def test_error_stays_below_tolerance_down_to_tiny_epsilon():
    model, X, Y = make_quadratic_problem(cubic=0.5)
    vec = enumerate_parameters(model)
    ana = model.backward_gradient(X, Y)
    for eps in (1e-4, 1e-6, 1e-8):
        num = numeric_gradient(model, vec, eps, X, Y)
        # roundoff grows as eps shrinks; the whole-vector error stays small
        rel = np.linalg.norm(ana - num) / (np.linalg.norm(ana) + np.linalg.norm(num))
        assert rel < 1e-3, eps
    assert _max_rel(model, X, Y, 1e-6) < 1e-3


def test_estimate_two_sided_difference():
    model, X, Y = make_quadratic_problem(has_bias=False)
    ident = enumerate_parameters(model)[0]
    est = estimate(model, ident, 1e-6, X, Y)
    assert est.finite
    assert est.numeric == pytest.approx((est.loss_plus - est.loss_minus) / 2e-6)


def test_restore_is_bit_exact_when_score_raises():
    class _Boom(QuadraticModel):
        def score(self, inputs, labels):
            raise RuntimeError("forward failed")

    model = _Boom(A=np.array([[0.1 + 0.2]]))
    ident = enumerate_parameters(model)[0]
    before = model.params["W"].tobytes()
    with pytest.raises(RuntimeError):
        estimate(model, ident, 1e-6, np.ones((1, 1)), np.ones((1, 1)))
    assert model.params["W"].tobytes() == before


def test_non_finite_loss_gives_nan_and_restores():
    class _Overflow(QuadraticModel):
        def score(self, inputs, labels):
            if self.params["W"][0, 0] > 0.3:
                return math.inf
            return super().score(inputs, labels)

    model = _Overflow(A=np.array([[0.3]]))
    ident = enumerate_parameters(model)[0]
    est = estimate(model, ident, 1e-3, np.ones((2, 1)), np.zeros((2, 1)))
    assert not est.finite
    assert math.isnan(est.numeric)
    assert model.params["W"][0, 0] == 0.3


def test_perturbed_context_restores_on_error():
    model, _, _ = make_quadratic_problem()
    ident = enumerate_parameters(model)[5]
    original = model.get_scalar(ident)
    with pytest.raises(ValueError):
        with perturbed(model, ident, 42.0) as prev:
            assert prev == original
            assert model.get_scalar(ident) == 42.0
            raise ValueError
    assert model.get_scalar(ident) == original
