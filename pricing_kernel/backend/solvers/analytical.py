"""
Heston Semi-Analytical Pricing via Fourier Inversion

═══════════════════════════════════════════════════════════════════════════════
CHARACTERISTIC FUNCTION APPROACH TO OPTION PRICING
═══════════════════════════════════════════════════════════════════════════════

1. FOURIER TRANSFORM PRICING:
   ═══════════════════════════════════════════════════════════════════════════

   For a European call option under risk-neutral measure:

   C(S, K, τ) = e^{-rτ} · E^Q[(S_T - K)⁺]
              = S·e^{-qτ}·Π₁ - K·e^{-rτ}·Π₂

   Π₂ = P^Q(S_T > K),  Π₁ = P^S(S_T > K)  (share measure)

2. CHARACTERISTIC FUNCTION ("little trap" form, Albrecher et al. 2007):
   ═══════════════════════════════════════════════════════════════════════════

   φ(u) = E[e^{iu·ln(S_T)}] = exp(C(τ,u) + D(τ,u)·V₀)

   ξ = κ - ρσiu
   d = √(ξ² + σ²(u² + iu)),   Re(d) ≥ 0
   g = (ξ - d)/(ξ + d)

   D(τ,u) = [(ξ - d)/σ²] · (1 - e^{-dτ}) / (1 - g·e^{-dτ})
   C(τ,u) = iu(ln S + (r - q)τ)
            + (κθ/σ²)[(ξ - d)τ - 2·ln((1 - g·e^{-dτ})/(1 - g))]

   Every exponential is e^{-dτ} with Re(d) ≥ 0, so nothing overflows and the
   complex logarithm never crosses its branch cut (no rotation counting).

   ξ - d is evaluated as -σ²(u² + iu)/(ξ + d): same value, no cancellation
   when σ is small and ξ ≈ d.

3. ONE FUNCTION FOR BOTH PROBABILITIES:
   ═══════════════════════════════════════════════════════════════════════════

   Π₂ = 1/2 + (1/π) ∫₀^∞ Re[e^{-iu·ln K} · φ(u) / (iu)] du
   Π₁ = 1/2 + (1/π) ∫₀^∞ Re[e^{-iu·ln K} · φ(u - i) / (iu·F)] du

   with F = φ(-i) = S·e^{(r-q)τ}. The share-measure function is the same
   φ evaluated at a shifted argument.

4. TRUNCATION OF THE INTEGRAL:
   ═══════════════════════════════════════════════════════════════════════════

   |φ(u)| decays like a Gaussian for moderate u and like an exponential
   for large u:

   |φ(u)| ≈ exp(-w·u²/2)                      w = ∫₀^τ E[V_t] dt
   |φ(u)| ≈ exp(-u·√(1-ρ²)(V₀ + κθτ)/σ)        u → ∞

   Setting either envelope to tol gives

   u_gauss = √(2·ln(1/tol)/w)
   u_exp   = ln(1/tol)·σ / (√(1-ρ²)(V₀ + κθτ))

   and u_max = max(u_gauss, u_exp), floored at min_upper_bound and doubled
   while the integrands at u_max still exceed tol.

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from typing import Sequence, Tuple, Optional

import numpy as np

from pricing_kernel.backend.core.contracts import ContractSpec, HestonParams
from pricing_kernel.backend.core.errors import NumericalNonConvergenceError
from pricing_kernel.backend.core.numerics import integrate, principal_sqrt
from pricing_kernel.backend.core.settings import QuadratureSettings

logger = logging.getLogger(__name__)


def characteristic_function(u, contract: ContractSpec, params: HestonParams) -> np.ndarray:
    """
    Heston characteristic function of ln(S_T).

    Args:
        u: transform argument, real or complex, scalar or array
        contract: supplies S, τ, r, q
        params: Heston state

    Returns:
        φ(u), same shape as u
    """
    return np.exp(characteristic_exponent(u, contract, params))


def characteristic_exponent(u, contract: ContractSpec, params: HestonParams) -> np.ndarray:
    """ln φ(u) = C(τ,u) + D(τ,u)·V₀, finite where φ itself would overflow."""
    u = np.asarray(u, dtype=complex)
    kappa, theta, sigma, rho, v0 = params.kappa, params.theta, params.sigma, params.rho, params.v0
    tau = contract.expiry
    sigma2 = sigma * sigma

    iu = 1j * u
    # u² + iu; zero at u = 0 and u = -i
    a = u * u + iu

    xi = kappa - rho * sigma * iu
    d = principal_sqrt(xi * xi + sigma2 * a)

    # ξ - d without cancellation
    xi_plus_d = xi + d
    xi_minus_d = -sigma2 * a / xi_plus_d
    g = xi_minus_d / xi_plus_d

    exp_neg_d_tau = np.exp(-d * tau)
    one_minus_e = -np.expm1(-d * tau)

    # D(τ) = (ξ - d)/σ² × (1 - e^{-dτ}) / (1 - g·e^{-dτ})
    D = (xi_minus_d / sigma2) * one_minus_e / (1.0 - g * exp_neg_d_tau)

    # ln((1 - g·e^{-dτ})/(1 - g)) = ln(1 + g(1 - e^{-dτ})/(1 - g))
    log_term = np.log1p(g * one_minus_e / (1.0 - g))
    drift = math.log(contract.spot) + (contract.rate - contract.dividend_yield) * tau
    C = iu * drift + (kappa * theta / sigma2) * (xi_minus_d * tau - 2.0 * log_term)

    return C + D * v0


def moment_explosion_time(omega: float, params: HestonParams) -> float:
    """
    Expiry T* beyond which E[S_T^ω] is infinite (Andersen & Piterbarg 2007).

       χ = ρσω - κ,   Δ = χ² - σ²ω(ω - 1)

       Δ >= 0, χ < 0:   T* = ∞
       Δ >= 0, χ > 0:   T* = ln((χ + √Δ)/(χ - √Δ)) / √Δ
       Δ < 0:           T* = 2·atan2(√-Δ, χ) / √-Δ

    Moments of order 0 <= ω <= 1 are always finite.
    """
    if 0.0 <= omega <= 1.0:
        return math.inf
    chi = params.rho * params.sigma * omega - params.kappa
    delta = chi * chi - params.sigma ** 2 * omega * (omega - 1.0)
    if delta >= 0.0:
        if chi <= 0.0:
            return math.inf
        root = math.sqrt(delta)
        if root == 0.0:
            return 2.0 / chi
        return math.log((chi + root) / (chi - root)) / root
    root = math.sqrt(-delta)
    return 2.0 * math.atan2(root, chi) / root


def truncation_point(contract: ContractSpec, params: HestonParams, tolerance: float) -> float:
    """
    Transform argument beyond which |φ| < tolerance (section 4 above).

    Unbounded; callers cap it.
    """
    log_inv_tol = math.log(1.0 / tolerance)
    tau = contract.expiry

    w = params.expected_integrated_variance(tau)
    u_gauss = math.sqrt(2.0 * log_inv_tol / w) if w > 0 else math.inf

    decorrelation = math.sqrt(max(1.0 - params.rho ** 2, 0.0))
    decay = decorrelation * (params.v0 + params.kappa * params.theta * tau)
    if decay <= 0:
        return math.inf
    return max(u_gauss, log_inv_tol * params.sigma / decay)


class QuadraturePricer:
    """
    Heston pricer by direct adaptive quadrature of Π₁ and Π₂.

    One strike per evaluation; use the FFT backend to price many strikes at
    once. Holds only its (frozen) settings.
    """

    def __init__(self, settings: Optional[QuadratureSettings] = None):
        self.settings = (settings or QuadratureSettings()).validate()

    def _integrands(self, contract: ContractSpec, params: HestonParams):
        log_k = math.log(contract.strike)
        forward = contract.forward

        def integrand_p1(u: float) -> float:
            """Re[e^{-iu·ln K} · φ(u - i) / (iu·F)]"""
            if u < 1e-12:
                return 0.0
            phi = characteristic_function(u - 1j, contract, params)
            return float(np.real(np.exp(-1j * u * log_k) * phi / (1j * u * forward)))

        def integrand_p2(u: float) -> float:
            """Re[e^{-iu·ln K} · φ(u) / (iu)]"""
            if u < 1e-12:
                return 0.0
            phi = characteristic_function(u, contract, params)
            return float(np.real(np.exp(-1j * u * log_k) * phi / (1j * u)))

        return integrand_p1, integrand_p2

    def upper_bound(self, contract: ContractSpec, params: HestonParams) -> float:
        """
        Truncation point u_max for the probability integrals.

        Returns:
            u_max in [min_upper_bound, max_upper_bound]
        """
        s = self.settings
        u_max = truncation_point(contract, params, s.tolerance)
        if not math.isfinite(u_max):
            u_max = s.max_upper_bound
        u_max = min(max(u_max, s.min_upper_bound), s.max_upper_bound)

        # Double while either integrand tail is still above tolerance
        f1, f2 = self._integrands(contract, params)
        while u_max < s.max_upper_bound and max(abs(f1(u_max)), abs(f2(u_max))) > s.tolerance:
            u_max = min(2.0 * u_max, s.max_upper_bound)
        return u_max

    def probabilities(self, contract: ContractSpec, params: HestonParams) -> Tuple[float, float]:
        """
        Π₁ and Π₂ for the contract's strike and expiry.

        Raises:
            NumericalNonConvergenceError: quadrature failure or non-finite result
        """
        f1, f2 = self._integrands(contract, params)
        u_max = self.upper_bound(contract, params)
        return self._probability(f1, u_max), self._probability(f2, u_max)

    def _probability(self, integrand, u_max: float) -> float:
        """Π = 1/2 + (1/π)∫₀^u_max integrand"""
        tol, limit = self.settings.tolerance, self.settings.max_subdivisions
        p = 0.5 + integrate(integrand, 0.0, u_max, tol, limit) / math.pi
        if not math.isfinite(p):
            raise NumericalNonConvergenceError(f"non-finite probability {p}")
        return p

    def price(self, contract: ContractSpec, params: HestonParams) -> float:
        """
        European price via Fourier inversion.

        Formula:
        ═══════════════════════════════════════════════════════════════════════

        C = S·e^{-qτ}·Π₁ - K·e^{-rτ}·Π₂
        P = S·e^{-qτ}·(Π₁ - 1) - K·e^{-rτ}·(Π₂ - 1)

        Both sides come from the same Π₁, Π₂, so
        C - P = S·e^{-qτ} - K·e^{-rτ} holds to round-off.

        ═══════════════════════════════════════════════════════════════════════

        A result within band_tolerance of the no-arbitrage band (e.g. -1e-9
        for a far out-of-the-money call) is moved onto it.

        Raises:
            NumericalNonConvergenceError: the integrals miss the band by more
        """
        p1, p2 = self.probabilities(contract, params)
        discounted_spot = contract.spot * contract.dividend_factor
        discounted_strike = contract.strike * contract.discount_factor
        if contract.is_call:
            raw = discounted_spot * p1 - discounted_strike * p2
        else:
            raw = discounted_spot * (p1 - 1.0) - discounted_strike * (p2 - 1.0)

        price = contract.clamp_to_bounds(raw, self.settings.band_tolerance)
        if price is None:
            raise NumericalNonConvergenceError(
                f"quadrature price {raw:.6g} is outside the no-arbitrage band "
                f"[{contract.forward_intrinsic_value():.6g}, {contract.upper_bound():.6g}]"
            )
        return price

    def delta(self, contract: ContractSpec, params: HestonParams) -> float:
        """
        Δ = e^{-qτ}·Π₁ (call),  e^{-qτ}·(Π₁ - 1) (put)

        Π₁ already is the spot sensitivity; no bump needed and Π₂ is skipped.
        """
        f1, _ = self._integrands(contract, params)
        p1 = self._probability(f1, self.upper_bound(contract, params))
        return contract.dividend_factor * (p1 if contract.is_call else p1 - 1.0)

    def price_strikes(self, contract: ContractSpec, strikes: Sequence[float],
                      params: HestonParams) -> np.ndarray:
        """One quadrature per strike."""
        return np.array([self.price(contract.bumped(strike=float(k)), params) for k in strikes])
