import math
from typing import Dict, Tuple

import numpy as np

from pricing_kernel.backend.core.contracts import (
    BlackScholesParams,
    ContractSpec,
    Greek,
    GreeksRequest,
    HestonParams,
    ModelSelector,
    NumericalMethod,
    OptionSide,
)
from pricing_kernel.backend.core.errors import ErrorKind
from pricing_kernel.backend.core.settings import KernelSettings
from pricing_kernel.backend.facade import IMPLIED_VOLATILITY_FAILED, PricingFacade
from pricing_kernel.backend.greeks.calculator import GreeksCalculator
from pricing_kernel.backend.solvers.analytical import QuadraturePricer
from pricing_kernel.backend.solvers.black_scholes import BlackScholesEngine
from pricing_kernel.backend.solvers.fft import FFTPricer
from pricing_kernel.backend.solvers.heston import HestonEngine

CheckResult = Tuple[bool, str, Dict]

TEXTBOOK_CALL = 10.4506


def default_contract(strike: float = 100.0, expiry: float = 1.0,
                     side: OptionSide = OptionSide.CALL) -> ContractSpec:
    return ContractSpec(spot=100.0, strike=strike, expiry=expiry, rate=0.05,
                        dividend_yield=0.02, side=side)


def textbook_contract(side: OptionSide = OptionSide.CALL) -> ContractSpec:
    """S=100, K=100, T=1, r=5%, q=0"""
    return ContractSpec(spot=100.0, strike=100.0, expiry=1.0, rate=0.05,
                        dividend_yield=0.0, side=side)


def get_default_params(method: NumericalMethod = NumericalMethod.QUADRATURE) -> HestonParams:
    """Equity-style Heston set; Feller ratio 1.78."""
    return HestonParams(v0=0.04, theta=0.04, kappa=2.0, sigma=0.3, rho=-0.7, method=method)


def black_scholes_limit_params(method: NumericalMethod = NumericalMethod.QUADRATURE) -> HestonParams:
    """
    Near-deterministic variance: V₀ = θ, tiny vol-of-vol, no correlation.

    Heston then behaves like Black-Scholes with σ = √θ = 0.2.
    """
    return HestonParams(v0=0.04, theta=0.04, kappa=2.0, sigma=0.01, rho=0.0, method=method)


def parity_gap(call: float, put: float, contract: ContractSpec) -> float:
    """|C - P - (S·e^{-qT} - K·e^{-rT})|"""
    forward_value = contract.spot * contract.dividend_factor - contract.strike * contract.discount_factor
    return abs(call - put - forward_value)


def relative_error(value: float, reference: float) -> float:
    return abs(value - reference) / abs(reference)


def is_numerically_stable(value: float, bound: float = 1e6) -> bool:
    return bool(np.isfinite(value)) and abs(value) <= bound


def heston_vega_reference(bs_vega: float, kappa: float, expiry: float) -> float:
    """
    Heston vega w.r.t. σ₀ in the Black-Scholes limit.

    With V₀ = θ the integrated variance is w = θT + (V₀ - θ)(1 - e^{-κT})/κ,
    so ∂V/∂σ₀ = ν_BS · (1 - e^{-κT})/(κT).
    """
    return bs_vega * (1.0 - math.exp(-kappa * expiry)) / (kappa * expiry)
