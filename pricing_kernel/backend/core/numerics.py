"""
Shared Numerics

═══════════════════════════════════════════════════════════════════════════════
CONTENTS
═══════════════════════════════════════════════════════════════════════════════

   normal_cdf, normal_pdf   N(x), n(x) via scipy.stats.norm (erf-based)
   principal_sqrt           complex √z on the branch with Re ≥ 0
   integrate                adaptive Gauss-Kronrod (QUADPACK) with one retry
   fft                      power-of-two forward DFT
   find_root                Brent's method on a sign-changing bracket

All functions are pure: no module state, every call allocates its own
working memory, and every loop is bounded by an explicit parameter.

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from typing import Callable, Tuple, Union

import numpy as np
from scipy import optimize
from scipy.integrate import quad
from scipy.stats import norm

from pricing_kernel.backend.core.errors import (
    InvalidParameterError,
    NumericalNonConvergenceError,
    RootNotBracketedError,
)

logger = logging.getLogger(__name__)

ArrayLike = Union[float, np.ndarray]

# Retry budget multiplier after a QUADPACK failure
RETRY_SUBDIVISION_FACTOR = 4


# ═══════════════════════════════════════════════════════════════════════════════
# DISTRIBUTION FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def normal_cdf(x: ArrayLike) -> ArrayLike:
    """N(x) = ½·erfc(-x/√2); accurate in both tails."""
    return norm.cdf(x)


def normal_pdf(x: ArrayLike) -> ArrayLike:
    """n(x) = e^{-x²/2}/√(2π)"""
    return norm.pdf(x)


# ═══════════════════════════════════════════════════════════════════════════════
# COMPLEX HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def principal_sqrt(z: np.ndarray) -> np.ndarray:
    """
    Complex square root with non-negative real part.

    numpy's sqrt already uses the principal branch; the sign flip only
    matters for values on the negative real axis carrying -0.0 imaginary
    parts, where the branch is ambiguous.
    """
    root = np.sqrt(np.asarray(z, dtype=complex))
    return np.where(root.real < 0, -root, root)


def all_finite(values) -> bool:
    """True when every real and imaginary component is finite."""
    arr = np.asarray(values)
    if np.iscomplexobj(arr):
        return bool(np.all(np.isfinite(arr.real)) and np.all(np.isfinite(arr.imag)))
    return bool(np.all(np.isfinite(arr)))


# ═══════════════════════════════════════════════════════════════════════════════
# QUADRATURE
# ═══════════════════════════════════════════════════════════════════════════════

def _quad(f: Callable[[float], float], lower: float, upper: float,
          tolerance: float, limit: int) -> Tuple[float, float, bool, str]:
    """
    One QUADPACK call.

    quad(full_output=1) returns (value, abserr, infodict) on success and
    (value, abserr, infodict, message) when ier > 0.
    """
    out = quad(f, lower, upper, epsabs=tolerance, epsrel=tolerance,
               limit=limit, full_output=1)
    value, abserr = out[0], out[1]
    if len(out) > 3:
        return value, abserr, False, str(out[3]).strip().splitlines()[0]
    return value, abserr, True, ""


def integrate(f: Callable[[float], float], lower: float, upper: float,
              tolerance: float = 1e-9, max_subdivisions: int = 500) -> float:
    """
    Adaptive quadrature of a real function on a finite interval.

    Args:
        f: integrand, real-valued
        lower, upper: finite bounds (semi-infinite domains are truncated
            by the caller at a point where the integrand is negligible)
        tolerance: absolute and relative error target
        max_subdivisions: bound on interval bisections

    Returns:
        Integral estimate

    Raises:
        NumericalNonConvergenceError: when the error estimate stays above
            tolerance after one retry, or the value is not finite
    """
    if not (math.isfinite(lower) and math.isfinite(upper)):
        raise InvalidParameterError(f"integration bounds must be finite, got [{lower}, {upper}]")

    value, abserr, converged, message = _quad(f, lower, upper, tolerance, max_subdivisions)

    if not converged:
        retry_limit = max_subdivisions * RETRY_SUBDIVISION_FACTOR
        logger.debug("Quadrature on [%g, %g] did not converge (%s); retrying with limit=%d",
                     lower, upper, message, retry_limit)
        value, abserr, converged, message = _quad(f, lower, upper, tolerance, retry_limit)

        if not converged:
            if abserr <= tolerance and math.isfinite(value):
                logger.warning("Quadrature accepted after retry: %s (abserr=%.3e <= tol=%.1e)",
                               message, abserr, tolerance)
            else:
                raise NumericalNonConvergenceError(
                    f"Quadrature failed to reach tolerance {tolerance:.1e} "
                    f"(abserr={abserr:.3e}): {message}"
                )

    if not math.isfinite(value):
        raise NumericalNonConvergenceError(f"Quadrature produced a non-finite value on [{lower}, {upper}]")
    return value


# ═══════════════════════════════════════════════════════════════════════════════
# FOURIER TRANSFORM
# ═══════════════════════════════════════════════════════════════════════════════

def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def fft(sequence: np.ndarray) -> np.ndarray:
    """
    Forward DFT: X_k = Σ_j x_j e^{-2πijk/N}

    The length must be a power of two.
    """
    x = np.asarray(sequence, dtype=complex)
    if x.ndim != 1 or not is_power_of_two(x.size):
        raise InvalidParameterError(f"FFT length must be a power of two, got shape {x.shape}")
    return np.fft.fft(x)


# ═══════════════════════════════════════════════════════════════════════════════
# ROOT FINDING
# ═══════════════════════════════════════════════════════════════════════════════

def find_root(f: Callable[[float], float], lower: float, upper: float,
              tolerance: float = 1e-10, max_iterations: int = 200) -> float:
    """
    Brent's method on [lower, upper].

    Args:
        f: continuous function with f(lower)·f(upper) <= 0
        lower, upper: bracket
        tolerance: absolute tolerance on the root
        max_iterations: iteration budget

    Returns:
        Root inside the bracket; an endpoint only if f vanishes there exactly

    Raises:
        RootNotBracketedError: no sign change (or f not finite at an endpoint)
        NumericalNonConvergenceError: budget exhausted or non-finite result
    """
    if not lower < upper:
        raise InvalidParameterError(f"invalid bracket [{lower}, {upper}]")

    f_lower, f_upper = f(lower), f(upper)
    if not (math.isfinite(f_lower) and math.isfinite(f_upper)):
        raise NumericalNonConvergenceError(
            f"function is not finite on the bracket ends: f({lower})={f_lower}, f({upper})={f_upper}"
        )
    if f_lower == 0.0:
        return lower
    if f_upper == 0.0:
        return upper
    if np.sign(f_lower) == np.sign(f_upper):
        raise RootNotBracketedError(
            f"no sign change on [{lower}, {upper}]: f={f_lower:.6g}, {f_upper:.6g}"
        )

    try:
        root, info = optimize.brentq(f, lower, upper, xtol=tolerance,
                                     maxiter=max_iterations, full_output=True, disp=False)
    except ValueError as exc:
        # brentq re-checks the bracket; f may have changed under NaNs
        raise NumericalNonConvergenceError(f"Brent iteration failed: {exc}") from exc

    if not info.converged:
        raise NumericalNonConvergenceError(
            f"Brent did not converge in {max_iterations} iterations ({info.flag})"
        )
    if not math.isfinite(root) or not lower <= root <= upper:
        raise NumericalNonConvergenceError(f"Brent returned {root} outside [{lower}, {upper}]")
    return root
