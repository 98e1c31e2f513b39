"""
Black-Scholes Engine

═══════════════════════════════════════════════════════════════════════════════
BLACK-SCHOLES FORMULA
═══════════════════════════════════════════════════════════════════════════════

C(S, K, τ, r, q, σ) = S·e^{-qτ}·N(d₁) - K·e^{-rτ}·N(d₂)

where:
d₁ = [ln(S/K) + (r - q + σ²/2)τ] / (σ√τ)
d₂ = d₁ - σ√τ

N(·) = standard normal CDF

Put-Call Parity:
P = C - S·e^{-qτ} + K·e^{-rτ}

═══════════════════════════════════════════════════════════════════════════════
ANALYTIC GREEKS (θ is ∂V/∂t = -∂V/∂τ, per year)
═══════════════════════════════════════════════════════════════════════════════

Δ_call = e^{-qτ}·N(d₁)                 Δ_put = e^{-qτ}·(N(d₁) - 1)
Γ      = e^{-qτ}·n(d₁) / (S·σ·√τ)
ν      = S·e^{-qτ}·n(d₁)·√τ
ρ_call = K·τ·e^{-rτ}·N(d₂)             ρ_put = -K·τ·e^{-rτ}·N(-d₂)
θ_call = -S·e^{-qτ}·n(d₁)·σ/(2√τ) - r·K·e^{-rτ}·N(d₂) + q·S·e^{-qτ}·N(d₁)
θ_put  = -S·e^{-qτ}·n(d₁)·σ/(2√τ) + r·K·e^{-rτ}·N(-d₂) - q·S·e^{-qτ}·N(-d₁)

═══════════════════════════════════════════════════════════════════════════════
DEGENERATE CASES
═══════════════════════════════════════════════════════════════════════════════

τ = 0:  V = (S - K)⁺ or (K - S)⁺ exactly
σ = 0:  V = (S·e^{-qτ} - K·e^{-rτ})⁺ (deterministic forward payoff)

Both are evaluated without forming d₁, so nothing divides by σ√τ. Their
Greeks are those of the deterministic payoff: Δ is the discounted step,
Γ = ν = 0.

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from typing import Callable, Dict, Optional, Tuple

from pricing_kernel.backend.core.contracts import (
    ContractSpec,
    Greek,
    Greeks,
    GreeksRequest,
)
from pricing_kernel.backend.core.errors import DomainInfeasibleError, InvalidParameterError
from pricing_kernel.backend.core.numerics import normal_cdf, normal_pdf
from pricing_kernel.backend.core.settings import SolverSettings
from pricing_kernel.backend.solvers.implied_vol import ImpliedVolatilitySolver

logger = logging.getLogger(__name__)

# σ√τ below this is treated as the deterministic limit
DEGENERATE_STDDEV = 1e-12


def _d1_d2(contract: ContractSpec, sigma: float) -> Tuple[float, float]:
    """d₁ = [ln(S/K) + (r - q + σ²/2)τ] / (σ√τ),  d₂ = d₁ - σ√τ"""
    stddev = sigma * math.sqrt(contract.expiry)
    d1 = (math.log(contract.spot / contract.strike)
          + (contract.rate - contract.dividend_yield + 0.5 * sigma ** 2) * contract.expiry) / stddev
    return d1, d1 - stddev


def is_degenerate(contract: ContractSpec, sigma: float) -> bool:
    return contract.expiry == 0.0 or sigma * math.sqrt(contract.expiry) < DEGENERATE_STDDEV


class BlackScholesEngine:
    """
    Closed-form lognormal pricer.

    Inputs are assumed validated (ContractSpec.validate,
    BlackScholesParams.validate); the facade does this before dispatch.
    """

    def __init__(self, solver_settings: Optional[SolverSettings] = None):
        self.solver = ImpliedVolatilitySolver(solver_settings)

    # ═══════════════════════════════════════════════════════════════════════════
    # PRICE
    # ═══════════════════════════════════════════════════════════════════════════

    def price(self, contract: ContractSpec, volatility: float) -> float:
        """
        European option price.

        Args:
            contract: validated contract
            volatility: σ >= 0

        Returns:
            Call or put price
        """
        if contract.expiry == 0.0:
            return contract.intrinsic_value()
        if is_degenerate(contract, volatility):
            return contract.forward_intrinsic_value()

        S, K = contract.spot, contract.strike
        d1, d2 = _d1_d2(contract, volatility)

        # C = S·e^{-qτ}·N(d₁) - K·e^{-rτ}·N(d₂)
        call = (S * contract.dividend_factor * normal_cdf(d1)
                - K * contract.discount_factor * normal_cdf(d2))
        if contract.is_call:
            return float(call)

        # P = C - S·e^{-qτ} + K·e^{-rτ}
        return float(call - S * contract.dividend_factor + K * contract.discount_factor)

    def pricing_function(self, contract: ContractSpec) -> Callable[[float], float]:
        """σ → price for the implied-volatility solver."""
        return lambda sigma: self.price(contract, sigma)

    # ═══════════════════════════════════════════════════════════════════════════
    # GREEKS
    # ═══════════════════════════════════════════════════════════════════════════

    def greeks(self, contract: ContractSpec, volatility: float,
               request: GreeksRequest) -> Greeks:
        """Closed-form sensitivities; only the requested ones are evaluated."""
        if not request:
            return Greeks()
        if is_degenerate(contract, volatility):
            return self._deterministic_greeks(contract, request)

        S, K, tau = contract.spot, contract.strike, contract.expiry
        r, q = contract.rate, contract.dividend_yield
        df_q, df_r = contract.dividend_factor, contract.discount_factor
        sqrt_tau = math.sqrt(tau)
        d1, d2 = _d1_d2(contract, volatility)
        pdf_d1 = float(normal_pdf(d1))
        sign = 1.0 if contract.is_call else -1.0

        values: Dict[Greek, float] = {}
        if Greek.DELTA in request:
            values[Greek.DELTA] = df_q * (normal_cdf(d1) if contract.is_call else normal_cdf(d1) - 1.0)
        if Greek.GAMMA in request:
            values[Greek.GAMMA] = df_q * pdf_d1 / (S * volatility * sqrt_tau)
        if Greek.VEGA in request:
            values[Greek.VEGA] = S * df_q * pdf_d1 * sqrt_tau
        if Greek.THETA in request:
            decay = -S * df_q * pdf_d1 * volatility / (2.0 * sqrt_tau)
            values[Greek.THETA] = (decay
                                   - sign * r * K * df_r * normal_cdf(sign * d2)
                                   + sign * q * S * df_q * normal_cdf(sign * d1))
        if Greek.RHO in request:
            values[Greek.RHO] = sign * K * tau * df_r * normal_cdf(sign * d2)
        return Greeks.from_values(values)

    @staticmethod
    def _deterministic_greeks(contract: ContractSpec, request: GreeksRequest) -> Greeks:
        """
        Greeks of V = (±(S·e^{-qτ} - K·e^{-rτ}))⁺.

        In the money (strictly) the option is a forward: Δ = ±e^{-qτ},
        θ = ±(q·S·e^{-qτ} - r·K·e^{-rτ}), ρ = ±K·τ·e^{-rτ}. Out of the money
        (or exactly at the forward) everything is zero.
        """
        S, K, tau = contract.spot, contract.strike, contract.expiry
        df_q, df_r = contract.dividend_factor, contract.discount_factor
        carry = S * df_q - K * df_r
        sign = 1.0 if contract.is_call else -1.0
        in_the_money = sign * carry > 0

        values: Dict[Greek, float] = {g: 0.0 for g in request}
        if in_the_money:
            if Greek.DELTA in request:
                values[Greek.DELTA] = sign * df_q
            if Greek.THETA in request:
                values[Greek.THETA] = sign * (contract.dividend_yield * S * df_q - contract.rate * K * df_r)
            if Greek.RHO in request:
                values[Greek.RHO] = sign * K * tau * df_r
        return Greeks.from_values(values)

    # ═══════════════════════════════════════════════════════════════════════════
    # IMPLIED VOLATILITY
    # ═══════════════════════════════════════════════════════════════════════════

    def implied_volatility(self, contract: ContractSpec, market_price: float) -> float:
        """
        Volatility reproducing market_price.

        No-arbitrage band: e^{-rτ}·(F - K)⁺ < price < S·e^{-qτ} (call),
        the model price sweeps this open interval as σ goes from 0 to ∞.

        Raises:
            InvalidParameterError: non-positive or non-finite market price
            DomainInfeasibleError: τ = 0, or price outside the band
        """
        if not math.isfinite(market_price) or market_price <= 0:
            raise InvalidParameterError(f"market price must be finite and positive, got {market_price}")
        if contract.expiry == 0.0:
            raise DomainInfeasibleError("price at expiry does not depend on volatility")

        floor = contract.forward_intrinsic_value()
        ceiling = contract.upper_bound()
        if market_price <= floor:
            raise DomainInfeasibleError(
                f"market price {market_price:.6g} is at or below the discounted intrinsic value {floor:.6g}"
            )
        if market_price >= ceiling:
            raise DomainInfeasibleError(
                f"market price {market_price:.6g} is at or above the no-arbitrage bound {ceiling:.6g}"
            )

        sigma = self.solver.solve(self.pricing_function(contract), market_price)
        logger.debug("Black-Scholes implied volatility %.8f for price %.6f", sigma, market_price)
        return sigma
