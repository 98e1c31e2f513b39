import logging
import math

import numpy as np
import pytest

from pricing_kernel.backend.core import numerics
from pricing_kernel.backend.core.errors import (
    InvalidParameterError,
    NumericalNonConvergenceError,
    RootNotBracketedError,
)
from pricing_kernel.backend.core.numerics import (
    all_finite,
    fft,
    find_root,
    integrate,
    normal_cdf,
    normal_pdf,
    principal_sqrt,
)
from pricing_kernel.backend.solvers.fft import simpson_weights


def test_normal_cdf_values():
    assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-15)
    assert normal_cdf(1.96) == pytest.approx(0.9750021048517795, abs=1e-12)
    assert normal_cdf(-1.96) + normal_cdf(1.96) == pytest.approx(1.0, abs=1e-15)


def test_normal_cdf_tails_do_not_underflow_early():
    assert 0.0 < normal_cdf(-30.0) < 1e-190
    assert normal_cdf(40.0) == 1.0


def test_normal_pdf_peak():
    assert normal_pdf(0.0) == pytest.approx(1.0 / math.sqrt(2.0 * math.pi), rel=1e-15)


def test_principal_sqrt_has_non_negative_real_part():
    z = np.array([-4.0 + 0.0j, -4.0 - 0.0j, 3.0 + 4.0j, -3.0 - 4.0j])
    roots = principal_sqrt(z)
    assert np.all(roots.real >= 0)
    np.testing.assert_allclose(roots ** 2, z, atol=1e-12)


def test_all_finite():
    assert all_finite(np.array([1.0, 2.0]))
    assert not all_finite(np.array([1.0, np.nan]))
    assert not all_finite(np.array([1.0 + 1j, complex(0.0, np.inf)]))


# ═══════════════════════════════════════════════════════════════════════════════
# QUADRATURE
# ═══════════════════════════════════════════════════════════════════════════════

def test_integrate_smooth_function():
    assert integrate(math.sin, 0.0, math.pi) == pytest.approx(2.0, abs=1e-10)


def test_integrate_oscillatory_decaying_function():
    value = integrate(lambda x: math.exp(-x) * math.cos(5.0 * x), 0.0, 60.0)
    assert value == pytest.approx(1.0 / 26.0, abs=1e-10)


def test_integrate_divergent_function_raises():
    with pytest.raises(NumericalNonConvergenceError):
        integrate(lambda x: 1.0 / x, 0.0, 1.0, max_subdivisions=20)


def test_integrate_rejects_infinite_bounds():
    with pytest.raises(InvalidParameterError):
        integrate(math.exp, 0.0, math.inf)


def test_integrate_retries_with_larger_budget(monkeypatch):
    limits = []
    original = numerics._quad

    def first_call_fails(f, lower, upper, tolerance, limit):
        limits.append(limit)
        value, abserr, _, _ = original(f, lower, upper, tolerance, limit)
        if len(limits) == 1:
            return value, abserr, False, "maximum number of subdivisions"
        return value, abserr, True, ""

    monkeypatch.setattr(numerics, '_quad', first_call_fails)
    assert integrate(math.sin, 0.0, math.pi, max_subdivisions=50) == pytest.approx(2.0, abs=1e-10)
    assert limits == [50, 50 * numerics.RETRY_SUBDIVISION_FACTOR]


def test_integrate_accepts_small_error_after_retry_with_warning(monkeypatch, caplog):
    monkeypatch.setattr(numerics, '_quad',
                        lambda f, lower, upper, tolerance, limit: (2.0, 1e-12, False, "roundoff"))
    with caplog.at_level(logging.WARNING, logger=numerics.__name__):
        assert integrate(math.sin, 0.0, math.pi) == 2.0
    assert any('accepted after retry' in record.getMessage() for record in caplog.records)


def test_integrate_rejects_large_error_after_retry(monkeypatch):
    monkeypatch.setattr(numerics, '_quad',
                        lambda f, lower, upper, tolerance, limit: (2.0, 1e-3, False, "roundoff"))
    with pytest.raises(NumericalNonConvergenceError):
        integrate(math.sin, 0.0, math.pi)


def test_integrate_rejects_non_finite_value(monkeypatch):
    monkeypatch.setattr(numerics, '_quad',
                        lambda f, lower, upper, tolerance, limit: (math.nan, 0.0, True, ""))
    with pytest.raises(NumericalNonConvergenceError):
        integrate(math.sin, 0.0, math.pi)


def test_simpson_weights_pattern():
    np.testing.assert_allclose(simpson_weights(8, 0.3), 0.1 * np.array([1, 4, 2, 4, 2, 4, 2, 4]))


def test_simpson_weights_integrate_decaying_function():
    eta = 0.01
    v = eta * np.arange(4096)
    assert np.sum(simpson_weights(4096, eta) * np.exp(-v)) == pytest.approx(1.0, abs=1e-7)


# ═══════════════════════════════════════════════════════════════════════════════
# FFT
# ═══════════════════════════════════════════════════════════════════════════════

def test_fft_matches_direct_dft():
    rng = np.random.default_rng(7)
    x = rng.normal(size=64) + 1j * rng.normal(size=64)
    k = np.arange(64)
    direct = np.exp(-2j * np.pi * np.outer(k, k) / 64) @ x
    np.testing.assert_allclose(fft(x), direct, atol=1e-10)


@pytest.mark.parametrize("length", [0, 3, 100])
def test_fft_rejects_non_power_of_two(length):
    with pytest.raises(InvalidParameterError):
        fft(np.ones(length))


# ═══════════════════════════════════════════════════════════════════════════════
# ROOT FINDING
# ═══════════════════════════════════════════════════════════════════════════════

def test_find_root_cubic():
    root = find_root(lambda x: x ** 3 - 2.0 * x - 5.0, 2.0, 3.0)
    assert root == pytest.approx(2.0945514815423265, abs=1e-10)


def test_find_root_returns_exact_endpoint():
    assert find_root(lambda x: x - 1.0, 1.0, 2.0) == 1.0


def test_find_root_requires_sign_change():
    with pytest.raises(RootNotBracketedError):
        find_root(lambda x: x * x + 1.0, -1.0, 1.0)


def test_find_root_rejects_non_finite_endpoint():
    with pytest.raises(NumericalNonConvergenceError):
        find_root(lambda x: math.nan if x > 1.5 else x - 1.0, 0.0, 2.0)


def test_find_root_reports_exhausted_budget():
    with pytest.raises(NumericalNonConvergenceError):
        find_root(lambda x: math.exp(x) - 5.0, 0.0, 10.0, tolerance=1e-15, max_iterations=2)


def test_find_root_rejects_inverted_bracket():
    with pytest.raises(InvalidParameterError):
        find_root(lambda x: x, 1.0, -1.0)
