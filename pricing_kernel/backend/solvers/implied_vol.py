"""
Implied Volatility Solver

Given a pricing function f(σ) → price, assumed increasing in σ, and an
observed market price p, find σ* with f(σ*) = p:

   g(σ) = f(σ) - p,   g(lo) < 0 < g(hi)   →   Brent on [lo, hi]

Bracket policy:
   - default [1e-6, 5.0] (0.0001% to 500% annualized)
   - g(lo), g(hi) both < 0 (price above f(hi)):  hi ← 2·hi
   - g(lo), g(hi) both > 0 (price below f(lo)):  lo ← lo/10
   - at most max_expansions expansions, then VolatilityNotFoundError

A bracket end is only ever returned when g vanishes there exactly.
"""

import logging
import math
from typing import Callable, Optional, Tuple

from pricing_kernel.backend.core.errors import (
    InvalidParameterError,
    NumericalNonConvergenceError,
    VolatilityNotFoundError,
)
from pricing_kernel.backend.core.numerics import find_root
from pricing_kernel.backend.core.settings import SolverSettings

logger = logging.getLogger(__name__)

PricingFunction = Callable[[float], float]


class ImpliedVolatilitySolver:
    """Root-finder adapter shared by every engine."""

    def __init__(self, settings: Optional[SolverSettings] = None):
        self.settings = (settings or SolverSettings()).validate()

    def solve(self, pricing_function: PricingFunction, market_price: float,
              bracket: Optional[Tuple[float, float]] = None) -> float:
        """
        Invert pricing_function at market_price.

        Args:
            pricing_function: σ → model price
            market_price: observed price (finite, > 0)
            bracket: initial search interval, defaults to the settings' bracket

        Returns:
            σ* with |f(σ*) - market_price| at root-finder tolerance

        Raises:
            VolatilityNotFoundError: no sign change after bracket expansion
            NumericalNonConvergenceError: non-finite prices or Brent failure
        """
        if not math.isfinite(market_price) or market_price <= 0:
            raise InvalidParameterError(f"market price must be finite and positive, got {market_price}")

        lo, hi = bracket or self.settings.bracket
        if not 0 < lo < hi:
            raise InvalidParameterError(f"invalid volatility bracket [{lo}, {hi}]")

        def objective(sigma: float) -> float:
            model_price = pricing_function(sigma)
            if not math.isfinite(model_price):
                raise NumericalNonConvergenceError(
                    f"pricing function returned {model_price} at volatility {sigma:.6g}"
                )
            return model_price - market_price

        g_lo, g_hi = objective(lo), objective(hi)
        expansions = 0
        while g_lo * g_hi > 0:
            if expansions >= self.settings.max_expansions:
                raise VolatilityNotFoundError(
                    f"market price {market_price:.6g} is not reachable for volatility in "
                    f"[{lo:.3g}, {hi:.3g}] (model prices {g_lo + market_price:.6g} .. "
                    f"{g_hi + market_price:.6g})"
                )
            if g_hi < 0:
                hi *= 2.0
                g_hi = objective(hi)
            else:
                lo /= 10.0
                g_lo = objective(lo)
            expansions += 1
            logger.debug("Expanded volatility bracket to [%g, %g] (expansion %d)", lo, hi, expansions)

        return find_root(objective, lo, hi,
                         tolerance=self.settings.tolerance,
                         max_iterations=self.settings.max_iterations)
