"""
Heston Pricing over a Strike Grid via FFT (Carr-Madan 1999)

═══════════════════════════════════════════════════════════════════════════════
DAMPED CALL TRANSFORM
═══════════════════════════════════════════════════════════════════════════════

C(k) is the call price at log-strike k = ln K. It is not square-integrable
as k → -∞, so damp it: c(k) = e^{αk}·C(k), α > 0. Its Fourier transform is

   ψ(v) = e^{-rτ}·φ(v - (α+1)i) / (α² + α - v² + i(2α+1)v)

and inverting,

   C(k) = e^{-αk}/π · ∫₀^∞ Re[e^{-ivk}·ψ(v)] dv

═══════════════════════════════════════════════════════════════════════════════
DISCRETISATION
═══════════════════════════════════════════════════════════════════════════════

   v_j = η·j                    j = 0..N-1
   k_u = c - b + λ·u            u = 0..N-1,  b = Nλ/2,  λ·η = 2π/N

so that e^{-i v_j k_u} = e^{-i v_j (c - b)}·e^{-2πi·ju/N} and the sum over j
is one DFT:

   C(k_u) = e^{-αk_u}/π · Re[ FFT(x)_u ]
   x_j    = e^{-i v_j (c - b)} · ψ(v_j) · w_j

   w_j = η/3·(3 - (-1)^j - δ_{j0})      (Simpson weights 1, 4, 2, 4, ...)

The centre c sits on node u = N/2. A single strike is priced with c = ln K
(exact node, no interpolation); a batch uses the mean log-strike and reads
prices off the grid by cubic-spline interpolation in k.

═══════════════════════════════════════════════════════════════════════════════
CHOOSING α, η AND N
═══════════════════════════════════════════════════════════════════════════════

ψ exists only while the moment E[S_τ^{α+1}] = φ(-(α+1)i) is finite, i.e.
while τ is below the explosion time T*(α+1). Past it φ(v - (α+1)i) still
evaluates to finite numbers, and they are meaningless.

Simpson's rule is 4/3 of a trapezoid rule with step η minus 1/3 of one with
step 2η, and the latter aliases the damped price at k ± π/η onto k. The
alias decays like e^{-π·a/η}, a being the distance from the damping line
to the nearest singularity of ψ: the call pole (a = α) or the moment
explosion edge (a = α_max - α). It is scaled by the integrand's peak

   cost(α) = ln[e^{-αk}·e^{-rτ}·φ(-(α+1)i) / (π·α(α+1))] - ln(S·e^{-qτ})

so an alias below alias_tolerance needs

   η <= π·min(α, α_max - α) / (ln(1/alias_tolerance) + max(cost, 0))

α is the candidate among α₀, α₀/√2, α₀/2, ... (down to min_alpha) with
finite moment and cost <= max_damping_cost that allows the largest η.
N then doubles until Nη reaches the truncation point of φ, up to max_n.

Every price read off the grid must land in the no-arbitrage band (within
band_tolerance, where it is clamped); otherwise the next fallback grid is
tried.

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from dataclasses import replace
from typing import Callable, Iterator, Optional, Sequence, Tuple

import numpy as np
from scipy.interpolate import CubicSpline

from pricing_kernel.backend.core.contracts import ContractSpec, HestonParams
from pricing_kernel.backend.core.errors import InvalidParameterError, NumericalNonConvergenceError
from pricing_kernel.backend.core.numerics import all_finite, fft, find_root
from pricing_kernel.backend.core.settings import FFTSettings
from pricing_kernel.backend.solvers.analytical import (
    characteristic_exponent,
    characteristic_function,
    moment_explosion_time,
    truncation_point,
)

logger = logging.getLogger(__name__)

# (log_strikes, call_prices) → calls at the requested strikes
GridReader = Callable[[np.ndarray, np.ndarray], np.ndarray]


def simpson_weights(n: int, eta: float) -> np.ndarray:
    """w_j = η/3·(3 - (-1)^j - δ_{j0}): η/3·(1, 4, 2, 4, 2, ...)"""
    j = np.arange(n)
    weights = eta / 3.0 * (3.0 - (-1.0) ** j)
    weights[0] -= eta / 3.0
    return weights


# ═══════════════════════════════════════════════════════════════════════════════
# DAMPING
# ═══════════════════════════════════════════════════════════════════════════════

def damping_candidates(settings: FFTSettings) -> Iterator[float]:
    """α₀, α₀/√2, α₀/2, ... while >= min_alpha"""
    alpha = settings.alpha
    while alpha >= settings.min_alpha:
        yield alpha
        alpha /= math.sqrt(2.0)


def damping_edge(contract: ContractSpec, params: HestonParams, ceiling: float) -> float:
    """
    Largest α <= ceiling whose moment E[S_τ^{α+1}] is finite.

    1/T*(ω) grows with ω, so the edge is the root of 1/T*(ω) = 1/τ.
    """
    tau = contract.expiry
    if moment_explosion_time(1.0 + ceiling, params) > tau:
        return ceiling

    def excess(omega: float) -> float:
        return 1.0 / moment_explosion_time(omega, params) - 1.0 / tau

    return find_root(excess, 1.0, 1.0 + ceiling, tolerance=1e-10) - 1.0


def damping_cost(alpha: float, log_strike: float, contract: ContractSpec,
                 params: HestonParams) -> float:
    """
    ln of the integrand's peak relative to S·e^{-qτ} (see module docstring).

    Infinite when φ(-(α+1)i) is not a finite positive number.
    """
    omega = alpha + 1.0
    with np.errstate(all='ignore'):
        exponent = complex(characteristic_exponent(-omega * 1j, contract, params))
    if not math.isfinite(exponent.real) or abs(exponent.imag) > 1e-8 * max(1.0, abs(exponent.real)):
        return math.inf
    tau = contract.expiry
    return (exponent.real - alpha * log_strike - contract.rate * tau - math.log(math.pi * alpha * omega)
            - math.log(contract.spot) + contract.dividend_yield * tau)


class FFTPricer:
    """
    Heston pricer on an N-point log-strike grid.

    Every call allocates its own grid arrays; the pricer holds only its
    (frozen) base settings.
    """

    def __init__(self, settings: Optional[FFTSettings] = None):
        self.settings = (settings or FFTSettings()).validate()

    # ═══════════════════════════════════════════════════════════════════════════
    # GRID
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def call_grid(contract: ContractSpec, params: HestonParams, settings: FFTSettings,
                  centre: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Call prices on the log-strike grid centred at `centre`.

        Args:
            contract: supplies S, τ, r, q (strike and side are ignored)
            params: Heston state
            settings: grid size N, spacing η, damping α
            centre: log-strike placed on node N/2

        Returns:
            (log_strikes, call_prices), each of length N
        """
        n, eta, alpha = settings.n, settings.eta, settings.alpha
        lam = settings.log_strike_spacing
        b = 0.5 * n * lam

        v = eta * np.arange(n)
        phi = characteristic_function(v - (alpha + 1.0) * 1j, contract, params)
        denominator = alpha * alpha + alpha - v * v + 1j * (2.0 * alpha + 1.0) * v
        psi = contract.discount_factor * phi / denominator

        x = np.exp(-1j * v * (centre - b)) * psi * simpson_weights(n, eta)
        transformed = fft(x)

        log_strikes = centre - b + lam * np.arange(n)
        calls = np.exp(-alpha * log_strikes) / math.pi * np.real(transformed)
        return log_strikes, calls

    @staticmethod
    def tuned(settings: FFTSettings, contract: ContractSpec, params: HestonParams,
              centre: float) -> FFTSettings:
        """
        α, η and N for this contract, starting from `settings`.

        Raises:
            NumericalNonConvergenceError: no candidate α has a finite,
                moderate damped moment
        """
        alias_exponent = -math.log(settings.alias_tolerance)
        edge = damping_edge(contract, params, 4.0 * settings.alpha)

        best = None
        for alpha in damping_candidates(settings):
            if alpha >= edge:
                continue
            cost = damping_cost(alpha, centre, contract, params)
            if cost > settings.max_damping_cost:
                continue
            eta = math.pi * min(alpha, edge - alpha) / (alias_exponent + max(cost, 0.0))
            if best is None or eta > best[1]:
                best = (alpha, eta)
        if best is None:
            raise NumericalNonConvergenceError(
                f"no damping exponent in [{settings.min_alpha:g}, {settings.alpha:g}] has a finite, "
                f"moderate moment E[S_T^(α+1)] at T={contract.expiry:g}"
            )

        alpha, eta = best[0], min(settings.eta, best[1])
        n = settings.n
        reach = truncation_point(contract, params, settings.alias_tolerance)
        while n * eta < reach and n < settings.max_n:
            n *= 2
        return replace(settings, n=n, eta=eta, alpha=alpha)

    def _settings_for(self, contract: ContractSpec, params: HestonParams) -> FFTSettings:
        moneyness = contract.strike / contract.spot
        settings = self.settings.adapted_for(moneyness, contract.expiry, params)
        if settings != self.settings:
            logger.debug("FFT grid adapted for K/S=%.3f T=%.4f: N=%d alpha=%.2f eta=%.3f",
                         moneyness, contract.expiry, settings.n, settings.alpha, settings.eta)
        return settings

    def _priced(self, contract: ContractSpec, params: HestonParams, strikes: np.ndarray,
                centre: float, read: GridReader) -> np.ndarray:
        """
        Prices at `strikes` from the primary grid, then each fallback grid,
        until one reads finite prices inside the no-arbitrage band.

        Raises:
            NumericalNonConvergenceError: every grid failed
        """
        log_k = np.log(strikes)
        extreme = float(strikes[np.argmax(np.abs(log_k - math.log(contract.spot)))])
        primary = self._settings_for(contract.bumped(strike=extreme), params)

        for attempt, base in enumerate((primary,) + primary.fallbacks()):
            try:
                settings = self.tuned(base, contract, params, centre)
            except NumericalNonConvergenceError as exc:
                logger.debug("FFT grid N=%d alpha=%.2f skipped: %s", base.n, base.alpha, exc)
                continue

            log_strikes, calls = self.call_grid(contract, params, settings, centre)
            prices = None
            if all_finite(calls):
                prices = self._within_band(contract, strikes, read(log_strikes, calls),
                                           settings.band_tolerance)
            if prices is not None:
                if attempt > 0:
                    logger.warning("FFT grid recovered with fallback N=%d alpha=%.3f eta=%.4f",
                                   settings.n, settings.alpha, settings.eta)
                return prices
            logger.debug("FFT grid N=%d alpha=%.3f eta=%.4f produced non-finite or out-of-band prices",
                         settings.n, settings.alpha, settings.eta)

        raise NumericalNonConvergenceError(
            f"FFT pricing failed on every grid (K={extreme:g}, T={contract.expiry:g})"
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PRICES
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _from_call(contract: ContractSpec, strike: float, call: float) -> float:
        """Put from the call by parity: P = C - S·e^{-qτ} + K·e^{-rτ}"""
        if contract.is_call:
            return call
        return call - contract.spot * contract.dividend_factor + strike * contract.discount_factor

    @classmethod
    def _within_band(cls, contract: ContractSpec, strikes: np.ndarray, calls: np.ndarray,
                     tolerance: float) -> Optional[np.ndarray]:
        """Side-adjusted prices clamped onto the band, or None if any is outside it."""
        prices = []
        for strike, call in zip(strikes, calls):
            strike = float(strike)
            price = contract.bumped(strike=strike).clamp_to_bounds(
                cls._from_call(contract, strike, float(call)), tolerance
            )
            if price is None:
                return None
            prices.append(price)
        return np.array(prices)

    def price(self, contract: ContractSpec, params: HestonParams) -> float:
        """Single strike, read at the grid's central node."""
        def read(log_strikes: np.ndarray, calls: np.ndarray) -> np.ndarray:
            return calls[[self.centre_index(log_strikes)]]

        strikes = np.array([contract.strike], dtype=float)
        return float(self._priced(contract, params, strikes, math.log(contract.strike), read)[0])

    @staticmethod
    def centre_index(log_strikes: np.ndarray) -> int:
        return log_strikes.size // 2

    def price_strikes(self, contract: ContractSpec, strikes: Sequence[float],
                      params: HestonParams) -> np.ndarray:
        """
        Many strikes from one grid.

        Raises:
            InvalidParameterError: a strike is non-positive or off the grid
        """
        strikes = np.asarray(strikes, dtype=float)
        if strikes.ndim != 1 or strikes.size == 0:
            raise InvalidParameterError("strikes must be a non-empty 1-D sequence")
        if not np.all(np.isfinite(strikes)) or np.any(strikes <= 0):
            raise InvalidParameterError("strikes must be finite and positive")

        log_k = np.log(strikes)

        def read(log_strikes: np.ndarray, calls: np.ndarray) -> np.ndarray:
            if log_k.min() < log_strikes[0] or log_k.max() > log_strikes[-1]:
                raise InvalidParameterError(
                    f"strikes span [{strikes.min():.4g}, {strikes.max():.4g}] beyond the FFT grid "
                    f"[{math.exp(log_strikes[0]):.4g}, {math.exp(log_strikes[-1]):.4g}]"
                )
            return CubicSpline(log_strikes, calls)(log_k)

        return self._priced(contract, params, strikes, float(np.mean(log_k)), read)
