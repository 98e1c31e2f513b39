"""
Contract and Model Parameter Value Types

═══════════════════════════════════════════════════════════════════════════════
DATA MODEL
═══════════════════════════════════════════════════════════════════════════════

1. CONTRACT (what is being priced):
   ═══════════════════════════════════════════════════════════════════════════

   S: spot price (> 0)
   K: strike price (> 0)
   T: time to expiry in years (>= 0; T = 0 is the expiry payoff)
   r: continuously compounded risk-free rate
   q: continuous dividend yield
   side: call or put

2. MODEL PARAMETERS (tagged by ModelSelector):
   ═══════════════════════════════════════════════════════════════════════════

   Black-Scholes: a single volatility σ >= 0 (σ = 0 is deterministic)

   Heston:
     dS_t = (r - q)S_t dt + √V_t S_t dW_S
     dV_t = κ(θ - V_t)dt + σ√V_t dW_V
     E[dW_S · dW_V] = ρ dt

     V₀ > 0: initial variance
     θ > 0:  long-run variance
     κ > 0:  mean-reversion speed
     σ > 0:  volatility of variance (vol-of-vol)
     ρ ∈ [-1, 1]: correlation

3. FELLER CONDITION: 2κθ > σ²
   ═══════════════════════════════════════════════════════════════════════════

   Ensures the variance process never reaches zero. The Fourier pricer does
   not need it, so a violation is a warning, not an error.

All types are frozen: every call builds its own values and nothing is
shared or mutated across calls.

═══════════════════════════════════════════════════════════════════════════════
"""

import math
import warnings
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from pricing_kernel.backend.core.errors import ErrorOutcome, InvalidParameterError

# Largest |r·T| and |q·T| accepted: discount and growth factors stay within e^{±50}.
MAX_CARRY = 50.0


class OptionSide(str, Enum):
    CALL = "call"
    PUT = "put"


class ModelSelector(str, Enum):
    BLACK_SCHOLES = "black_scholes"
    HESTON = "heston"


class NumericalMethod(str, Enum):
    ANALYTIC = "analytic"      # closed form, Black-Scholes only
    QUADRATURE = "quadrature"  # direct integration of the Heston integral
    FFT = "fft"                # Carr-Madan transform over a strike grid


def require_finite(name: str, value: float) -> float:
    """Reject NaN / Inf / non-numeric inputs before IEEE arithmetic hides them."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameterError(f"{name} must be a real number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidParameterError(f"{name} must be finite, got {value}")
    return float(value)


# ═══════════════════════════════════════════════════════════════════════════════
# CONTRACT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ContractSpec:
    """European option contract plus the market inputs it is priced against."""

    spot: float
    strike: float
    expiry: float
    rate: float = 0.0
    dividend_yield: float = 0.0
    side: OptionSide = OptionSide.CALL

    def validate(self) -> 'ContractSpec':
        """
        Check ranges; the market inputs come from untrusted providers.

        Raises:
            InvalidParameterError: on non-finite or out-of-range fields
        """
        spot = require_finite("spot", self.spot)
        strike = require_finite("strike", self.strike)
        expiry = require_finite("expiry", self.expiry)
        rate = require_finite("rate", self.rate)
        dividend_yield = require_finite("dividend_yield", self.dividend_yield)

        if spot <= 0:
            raise InvalidParameterError(f"spot must be positive, got {spot}")
        if strike <= 0:
            raise InvalidParameterError(f"strike must be positive, got {strike}")
        if expiry < 0:
            raise InvalidParameterError(f"expiry must be non-negative, got {expiry}")
        for name, value in (("rate", rate), ("dividend_yield", dividend_yield)):
            if abs(value * expiry) > MAX_CARRY:
                raise InvalidParameterError(
                    f"{name} × expiry = {value * expiry:.6g} is outside [-{MAX_CARRY:g}, {MAX_CARRY:g}]"
                )
        if not isinstance(self.side, OptionSide):
            raise InvalidParameterError(f"side must be an OptionSide, got {self.side!r}")
        return self

    @property
    def is_call(self) -> bool:
        return self.side is OptionSide.CALL

    @property
    def discount_factor(self) -> float:
        """e^{-rT}"""
        return math.exp(-self.rate * self.expiry)

    @property
    def dividend_factor(self) -> float:
        """e^{-qT}"""
        return math.exp(-self.dividend_yield * self.expiry)

    @property
    def forward(self) -> float:
        """F = S·e^{(r-q)T}"""
        return self.spot * math.exp((self.rate - self.dividend_yield) * self.expiry)

    def intrinsic_value(self) -> float:
        """Payoff at expiry: (S - K)⁺ or (K - S)⁺."""
        if self.is_call:
            return max(self.spot - self.strike, 0.0)
        return max(self.strike - self.spot, 0.0)

    def forward_intrinsic_value(self) -> float:
        """
        Discounted deterministic payoff (the σ → 0 price).

        Call: (S·e^{-qT} - K·e^{-rT})⁺
        Put:  (K·e^{-rT} - S·e^{-qT})⁺
        """
        carry = self.spot * self.dividend_factor - self.strike * self.discount_factor
        return max(carry, 0.0) if self.is_call else max(-carry, 0.0)

    def upper_bound(self) -> float:
        """No-arbitrage ceiling (the σ → ∞ price)."""
        if self.is_call:
            return self.spot * self.dividend_factor
        return self.strike * self.discount_factor

    def clamp_to_bounds(self, price: float, tolerance: float) -> Optional[float]:
        """
        Move a model price onto [forward_intrinsic_value, upper_bound].

        tolerance is relative to max(S, K). A price at most that far outside
        the band is clamped; one further out, or non-finite, gives None.
        """
        lower, upper = self.forward_intrinsic_value(), self.upper_bound()
        slack = tolerance * max(self.spot, self.strike)
        if not math.isfinite(price) or price < lower - slack or price > upper + slack:
            return None
        return min(max(price, lower), upper)

    def with_side(self, side: OptionSide) -> 'ContractSpec':
        return replace(self, side=side)

    def bumped(self, **changes) -> 'ContractSpec':
        return replace(self, **changes)


# ═══════════════════════════════════════════════════════════════════════════════
# MODEL PARAMETERS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BlackScholesParams:
    """Flat lognormal volatility."""

    volatility: float
    method: NumericalMethod = NumericalMethod.ANALYTIC

    def validate(self) -> 'BlackScholesParams':
        vol = require_finite("volatility", self.volatility)
        if vol < 0:
            raise InvalidParameterError(f"volatility must be non-negative, got {vol}")
        return self


@dataclass(frozen=True)
class HestonParams:
    """
    Heston stochastic-volatility state.

    Market inputs (S, r, q) live on the ContractSpec, so the same parameter
    set prices any contract.
    """

    v0: float     # V₀: initial variance, initial vol = √V₀
    theta: float  # θ: long-run variance, long-run vol ≈ √θ
    kappa: float  # κ: mean-reversion speed (1/time)
    sigma: float  # σ: volatility of variance
    rho: float    # ρ: spot/variance correlation, < 0 gives equity skew
    method: NumericalMethod = NumericalMethod.QUADRATURE

    def validate(self) -> 'HestonParams':
        """
        Check the mathematical constraints.

        κ, θ, σ, V₀ > 0 and -1 <= ρ <= 1. Warns (does not fail) when the
        Feller condition 2κθ > σ² is violated.
        """
        for name in ('v0', 'theta', 'kappa', 'sigma'):
            value = require_finite(name, getattr(self, name))
            if value <= 0:
                raise InvalidParameterError(f"{name} must be positive, got {value}")

        rho = require_finite("rho", self.rho)
        if not -1.0 <= rho <= 1.0:
            raise InvalidParameterError(f"rho must be in [-1, 1], got {rho}")

        if not self.feller_satisfied:
            warnings.warn(
                f"Feller condition violated: 2κθ/σ² = {self.feller_ratio:.4f} <= 1; "
                f"variance may reach zero with positive probability",
                stacklevel=2,
            )
        return self

    @property
    def feller_ratio(self) -> float:
        """F = 2κθ/σ²"""
        return 2.0 * self.kappa * self.theta / self.sigma ** 2

    @property
    def feller_satisfied(self) -> bool:
        return self.feller_ratio > 1.0

    @property
    def initial_volatility(self) -> float:
        return math.sqrt(self.v0)

    def expected_integrated_variance(self, tau: float) -> float:
        """
        ∫₀^τ E[V_t] dt = θτ + (V₀ - θ)(1 - e^{-κτ})/κ

        Plays the role of σ²τ in Black-Scholes.
        """
        return self.theta * tau + (self.v0 - self.theta) * (-math.expm1(-self.kappa * tau)) / self.kappa

    def with_initial_volatility(self, volatility: float) -> 'HestonParams':
        return replace(self, v0=volatility * volatility)

    def to_dict(self) -> Dict[str, float]:
        return {
            'v0': self.v0,
            'theta': self.theta,
            'kappa': self.kappa,
            'sigma': self.sigma,
            'rho': self.rho,
            'method': self.method.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, float]) -> 'HestonParams':
        return cls(
            v0=d['v0'],
            theta=d['theta'],
            kappa=d['kappa'],
            sigma=d['sigma'],
            rho=d['rho'],
            method=NumericalMethod(d.get('method', NumericalMethod.QUADRATURE.value)),
        )


ModelParams = Union[BlackScholesParams, HestonParams]

MODEL_PARAMS_TYPES = {
    ModelSelector.BLACK_SCHOLES: BlackScholesParams,
    ModelSelector.HESTON: HestonParams,
}


# ═══════════════════════════════════════════════════════════════════════════════
# GREEKS AND RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

class Greek(str, Enum):
    DELTA = "delta"
    GAMMA = "gamma"
    THETA = "theta"
    VEGA = "vega"
    RHO = "rho"


@dataclass(frozen=True)
class GreeksRequest:
    """Set of sensitivities to compute; anything not in the set is skipped."""

    requested: FrozenSet[Greek] = frozenset()

    @classmethod
    def of(cls, *greeks: Union[Greek, str]) -> 'GreeksRequest':
        try:
            return cls(frozenset(Greek(g) for g in greeks))
        except ValueError as exc:
            raise InvalidParameterError(str(exc)) from exc

    @classmethod
    def all(cls) -> 'GreeksRequest':
        return cls(frozenset(Greek))

    @classmethod
    def none(cls) -> 'GreeksRequest':
        return cls()

    def __contains__(self, greek: object) -> bool:
        return greek in self.requested

    def __iter__(self):
        return iter(sorted(self.requested, key=list(Greek).index))

    def __bool__(self) -> bool:
        return bool(self.requested)

    def __len__(self) -> int:
        return len(self.requested)


@dataclass(frozen=True)
class Greeks:
    """Sensitivities; unrequested entries stay 0.0."""

    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0

    @classmethod
    def from_values(cls, values: Dict[Greek, float]) -> 'Greeks':
        return cls(**{greek.value: float(value) for greek, value in values.items()})

    def to_dict(self) -> Dict[str, float]:
        return {g.value: getattr(self, g.value) for g in Greek}


@dataclass(frozen=True)
class PricingResult:
    """
    Uniform result of every facade call.

    Fields that were not computed are 0.0 (implied volatility is -1.0 when
    its computation was requested and failed).
    """

    price: float = 0.0
    implied_volatility: float = 0.0
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0
    error: ErrorOutcome = field(default_factory=ErrorOutcome.success)

    @property
    def ok(self) -> bool:
        return self.error.ok

    @property
    def greeks(self) -> Greeks:
        return Greeks(self.delta, self.gamma, self.theta, self.vega, self.rho)

    def to_dict(self) -> Dict[str, object]:
        return {
            'price': self.price,
            'implied_volatility': self.implied_volatility,
            **self.greeks.to_dict(),
            'error': self.error.to_dict(),
        }


def coerce_enum(enum_cls, value, error_cls=InvalidParameterError):
    """Accept an enum member or its string value."""
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(m.value for m in enum_cls)
        raise error_cls(f"Unknown {enum_cls.__name__} {value!r} (expected one of: {choices})") from exc


def parse_side(value: Union[OptionSide, str]) -> OptionSide:
    return coerce_enum(OptionSide, value)
