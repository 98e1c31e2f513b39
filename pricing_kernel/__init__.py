"""
═══════════════════════════════════════════════════════════════════════════════
PRICING KERNEL - Multi-Model European Option Pricing
═══════════════════════════════════════════════════════════════════════════════

Prices European options, computes their Greeks and inverts observed prices
to implied volatilities under two models behind one facade:

Black-Scholes (closed form):
    dS = (r-q)S dt + σ S dW

Heston (Fourier inversion of the characteristic function):
    dS = (r-q)S dt + √V S dW_S
    dV = κ(θ-V)dt + σ√V dW_V
    Corr(dW_S, dW_V) = ρ

Modules:
    backend.core     - Value types, errors, settings, shared numerics
    backend.solvers  - Black-Scholes, Heston (quadrature / FFT), implied vol
    backend.greeks   - Finite-difference Greeks
    backend.data     - Market-data provider interface
    backend.facade   - Uniform entry point
    backend.app      - Flask API over the facade
    tests            - Validation tests

Usage:
    from pricing_kernel import ContractSpec, HestonParams, ModelSelector, PricingFacade

    facade = PricingFacade()
    contract = ContractSpec(spot=100, strike=100, expiry=1.0, rate=0.05)
    params = HestonParams(v0=0.04, theta=0.04, kappa=2.0, sigma=0.3, rho=-0.7)
    result = facade.price(ModelSelector.HESTON, contract, params)

═══════════════════════════════════════════════════════════════════════════════
"""

__version__ = '1.0.0'
__author__ = 'Pricing Kernel'

from pricing_kernel.backend.core.contracts import (
    BlackScholesParams,
    ContractSpec,
    Greek,
    Greeks,
    GreeksRequest,
    HestonParams,
    ModelSelector,
    NumericalMethod,
    OptionSide,
    PricingResult,
)
from pricing_kernel.backend.core.errors import ErrorKind, ErrorOutcome, PricingError
from pricing_kernel.backend.core.settings import KernelSettings
from pricing_kernel.backend.facade import (
    IMPLIED_VOLATILITY_FAILED,
    PricingFacade,
    greeks,
    implied_volatility,
    price,
)
