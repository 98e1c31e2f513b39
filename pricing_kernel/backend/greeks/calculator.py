"""
Finite-Difference Greeks

═══════════════════════════════════════════════════════════════════════════════
GREEKS WITHOUT A CLOSED FORM
═══════════════════════════════════════════════════════════════════════════════

The Heston price has no closed-form derivatives, so each requested Greek is
a finite difference of the pricing routine, evaluated with the same
numerical backend the caller selected:

   Δ = ∂V/∂S    ≈ [V(S+h) - V(S-h)] / (2h)             h = 0.1% · S
   Γ = ∂²V/∂S²  ≈ [V(S+h) - 2V(S) + V(S-h)] / h²
   ν = ∂V/∂σ₀   ≈ [V(σ₀+h) - V(σ₀-h)] / (2h)           h = 1% · σ₀,  σ₀ = √V₀
   ρ = ∂V/∂r    ≈ [V(r+h) - V(r-h)] / (2h)             h = 1bp
   Θ = -∂V/∂τ   ≈ [V(τ-h) - V(τ+h)] / (2h)             h = 0.001 years

When τ is shorter than the time bump, Θ uses the forward difference
[V(τ) - V(τ+h)] / h so that no price is evaluated at negative time.

The three spot prices V(S-h), V(S), V(S+h) are shared between Δ and Γ, and
V(S) is shared with the forward-difference Θ. Unrequested Greeks cost
nothing.

Step sizes are tunable (GreekBumps): too small amplifies integration noise
(Γ divides by h²), too large adds O(h²) truncation bias.

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from typing import Callable, Dict, Optional

from pricing_kernel.backend.core.contracts import ContractSpec, Greek, Greeks, GreeksRequest
from pricing_kernel.backend.core.errors import InvalidParameterError
from pricing_kernel.backend.core.settings import GreekBumps

logger = logging.getLogger(__name__)

# (contract, volatility) → price
BumpablePricer = Callable[[ContractSpec, float], float]


class GreeksCalculator:
    """
    Greeks by central finite differences of any (contract, volatility) → price map.

    The volatility argument is whatever the model treats as its volatility
    state: σ for Black-Scholes, σ₀ = √V₀ for Heston.
    """

    def __init__(self, bumps: Optional[GreekBumps] = None):
        self.bumps = (bumps or GreekBumps()).validate()

    def compute(self, pricer: BumpablePricer, contract: ContractSpec, volatility: float,
                request: GreeksRequest, base_price: Optional[float] = None) -> Greeks:
        """
        Compute the requested Greeks.

        Args:
            pricer: pricing routine to differentiate
            contract: validated contract
            volatility: current volatility state (> 0 when vega is requested)
            request: Greeks to compute
            base_price: V(S) if the caller already has it

        Returns:
            Greeks with unrequested entries at 0.0
        """
        if not request:
            return Greeks()

        values: Dict[Greek, float] = {}
        cache = {'mid': base_price}

        def mid() -> float:
            if cache['mid'] is None:
                cache['mid'] = pricer(contract, volatility)
            return cache['mid']

        # ═══════════════════════════════════════════════════════════════════
        # SPOT: Δ AND Γ FROM ONE SET OF BUMPED PRICES
        # ═══════════════════════════════════════════════════════════════════
        if Greek.DELTA in request or Greek.GAMMA in request:
            h = self.bumps.spot * contract.spot
            up = pricer(contract.bumped(spot=contract.spot + h), volatility)
            down = pricer(contract.bumped(spot=contract.spot - h), volatility)
            if Greek.DELTA in request:
                values[Greek.DELTA] = (up - down) / (2.0 * h)
            if Greek.GAMMA in request:
                values[Greek.GAMMA] = (up - 2.0 * mid() + down) / (h * h)

        if Greek.VEGA in request:
            if volatility <= 0:
                raise InvalidParameterError(f"vega needs a positive volatility, got {volatility}")
            h = self.bumps.volatility * volatility
            up = pricer(contract, volatility + h)
            down = pricer(contract, volatility - h)
            values[Greek.VEGA] = (up - down) / (2.0 * h)

        if Greek.RHO in request:
            h = self.bumps.rate
            up = pricer(contract.bumped(rate=contract.rate + h), volatility)
            down = pricer(contract.bumped(rate=contract.rate - h), volatility)
            values[Greek.RHO] = (up - down) / (2.0 * h)

        if Greek.THETA in request:
            values[Greek.THETA] = self._theta(pricer, contract, volatility, mid)

        return Greeks.from_values(values)

    def _theta(self, pricer: BumpablePricer, contract: ContractSpec, volatility: float,
               mid: Callable[[], float]) -> float:
        """Θ = -∂V/∂τ; forward difference when τ < h."""
        h = self.bumps.time
        tau = contract.expiry
        longer = pricer(contract.bumped(expiry=tau + h), volatility)
        if tau > h:
            shorter = pricer(contract.bumped(expiry=tau - h), volatility)
            return (shorter - longer) / (2.0 * h)
        logger.debug("Theta by forward difference (T=%.6f < bump %.6f)", tau, h)
        return (mid() - longer) / h
