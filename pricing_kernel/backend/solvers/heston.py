"""
Heston Engine

Dispatches a contract to the selected Fourier backend and layers the
non-closed-form operations on top of it:

   price                     QUADRATURE → QuadraturePricer, FFT → FFTPricer
   price_strikes             batch pricing (one FFT grid, or a quadrature loop)
   greeks                    finite differences on the selected backend
   implied_volatility        invert σ₀ = √V₀, other four parameters fixed
   implied_variance          same root, reported as V₀
   implied_volatility_smile  Heston prices → Black-Scholes implied vols

At τ = 0 every path returns the intrinsic payoff without touching the
characteristic function.
"""

import logging
import math
from dataclasses import replace
from typing import Callable, Optional, Sequence

import numpy as np

from pricing_kernel.backend.core.contracts import (
    ContractSpec,
    Greek,
    Greeks,
    GreeksRequest,
    HestonParams,
    NumericalMethod,
)
from pricing_kernel.backend.core.errors import (
    DomainInfeasibleError,
    InvalidParameterError,
    PricingError,
    UnsupportedModelOrMethodError,
)
from pricing_kernel.backend.core.settings import KernelSettings
from pricing_kernel.backend.greeks.calculator import GreeksCalculator
from pricing_kernel.backend.solvers.analytical import QuadraturePricer
from pricing_kernel.backend.solvers.black_scholes import BlackScholesEngine
from pricing_kernel.backend.solvers.fft import FFTPricer
from pricing_kernel.backend.solvers.implied_vol import ImpliedVolatilitySolver

logger = logging.getLogger(__name__)


class HestonEngine:
    """Stochastic-volatility engine with interchangeable quadrature and FFT backends."""

    def __init__(self, settings: Optional[KernelSettings] = None):
        settings = settings or KernelSettings()
        self.quadrature = QuadraturePricer(settings.quadrature)
        self.fft = FFTPricer(settings.fft)
        self.greeks_calculator = GreeksCalculator(settings.bumps)
        self.solver = ImpliedVolatilitySolver(settings.solver)
        self.black_scholes = BlackScholesEngine(settings.solver)

    def backend(self, method: NumericalMethod):
        if method is NumericalMethod.QUADRATURE:
            return self.quadrature
        if method is NumericalMethod.FFT:
            return self.fft
        raise UnsupportedModelOrMethodError(f"Heston has no {method.value} pricer")

    # ═══════════════════════════════════════════════════════════════════════════
    # PRICING
    # ═══════════════════════════════════════════════════════════════════════════

    def price(self, contract: ContractSpec, params: HestonParams) -> float:
        backend = self.backend(params.method)
        if contract.expiry == 0.0:
            return contract.intrinsic_value()
        return float(backend.price(contract, params))

    def price_strikes(self, contract: ContractSpec, strikes: Sequence[float],
                      params: HestonParams) -> np.ndarray:
        """Prices for several strikes sharing the contract's other fields."""
        backend = self.backend(params.method)
        if contract.expiry == 0.0:
            return np.array([contract.bumped(strike=float(k)).intrinsic_value() for k in strikes])
        return backend.price_strikes(contract, strikes, params)

    def pricing_function(self, contract: ContractSpec, params: HestonParams) -> Callable[[float], float]:
        """σ₀ → price, holding κ, θ, σ, ρ fixed."""
        return lambda vol: self.price(contract, params.with_initial_volatility(vol))

    # ═══════════════════════════════════════════════════════════════════════════
    # GREEKS
    # ═══════════════════════════════════════════════════════════════════════════

    def greeks(self, contract: ContractSpec, params: HestonParams, request: GreeksRequest,
               base_price: Optional[float] = None) -> Greeks:
        """
        Finite-difference Greeks on the caller's backend.

        Vega is per unit of the initial volatility σ₀ = √V₀, comparable
        with a Black-Scholes vega. On the quadrature backend delta is
        e^{-qτ}·Π₁ rather than a difference quotient.
        """
        self.backend(params.method)

        def bumped_price(bumped: ContractSpec, vol: float) -> float:
            return self.price(bumped, params.with_initial_volatility(vol))

        p1_delta = (params.method is NumericalMethod.QUADRATURE and Greek.DELTA in request
                    and contract.expiry > 0)
        bumped_request = GreeksRequest(request.requested - {Greek.DELTA}) if p1_delta else request

        greeks = self.greeks_calculator.compute(
            bumped_price, contract, params.initial_volatility, bumped_request, base_price=base_price
        )
        if p1_delta:
            greeks = replace(greeks, delta=self.quadrature.delta(contract, params))
        return greeks

    # ═══════════════════════════════════════════════════════════════════════════
    # IMPLIED VOLATILITY
    # ═══════════════════════════════════════════════════════════════════════════

    def implied_volatility(self, contract: ContractSpec, market_price: float,
                           params: HestonParams) -> float:
        """
        Initial volatility σ₀ = √V₀ reproducing market_price.

        Raises:
            InvalidParameterError: non-positive or non-finite market price
            DomainInfeasibleError: τ = 0, or price outside the no-arbitrage band
            VolatilityNotFoundError: κ, θ, σ, ρ make the price unreachable
        """
        if not math.isfinite(market_price) or market_price <= 0:
            raise InvalidParameterError(f"market price must be finite and positive, got {market_price}")
        if contract.expiry == 0.0:
            raise DomainInfeasibleError("price at expiry does not depend on the variance state")
        if market_price <= contract.forward_intrinsic_value() or market_price >= contract.upper_bound():
            raise DomainInfeasibleError(
                f"market price {market_price:.6g} is outside the no-arbitrage band "
                f"({contract.forward_intrinsic_value():.6g}, {contract.upper_bound():.6g})"
            )
        self.backend(params.method)

        vol = self.solver.solve(self.pricing_function(contract, params), market_price)
        logger.debug("Heston implied initial volatility %.8f (v0=%.8f)", vol, vol * vol)
        return vol

    def implied_variance(self, contract: ContractSpec, market_price: float,
                         params: HestonParams) -> float:
        """V₀ reproducing market_price."""
        return self.implied_volatility(contract, market_price, params) ** 2

    def implied_volatility_smile(self, contract: ContractSpec, strikes: Sequence[float],
                                 params: HestonParams,
                                 prices: Optional[Sequence[float]] = None) -> np.ndarray:
        """
        Black-Scholes implied volatility of the Heston price at each strike.

        For each strike K:
        1. Compute Heston price (one batch on the selected backend), unless
           the caller already has them from price_strikes
        2. Invert Black-Scholes to get implied vol

        Strikes whose volatility cannot be recovered (price outside the
        band at round-off, or no root) are NaN.
        """
        if prices is None:
            prices = self.price_strikes(contract, strikes, params)
        elif len(prices) != len(strikes):
            raise InvalidParameterError(f"{len(prices)} prices for {len(strikes)} strikes")
        smile = np.full(len(prices), np.nan)
        for i, (strike, model_price) in enumerate(zip(strikes, prices)):
            try:
                smile[i] = self.black_scholes.implied_volatility(
                    contract.bumped(strike=float(strike)), float(model_price)
                )
            except PricingError as exc:
                logger.debug("No implied volatility at K=%.4f: %s", strike, exc)
        return smile
