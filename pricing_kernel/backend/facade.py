"""
Pricing Facade

The one entry point callers use. Three operations, one result shape:

   price(model, contract, params, market_price=0.0, greeks=None)
   greeks(model, contract, params, request)
   implied_volatility(model, market_price, contract, params)

Every call returns a fully populated PricingResult. Engine exceptions never
escape: a PricingError (or an ArithmeticError from numpy/scipy) becomes the
result's ErrorOutcome, the fields that were not computed stay 0.0, and a
failed implied volatility is reported as IMPLIED_VOLATILITY_FAILED.

MARKET PRICE CONVENTION
   market_price == 0   skip the implied-volatility step
   market_price > 0    also report the implied parameter
   market_price < 0    InvalidParameter
"""

import logging
import math
from dataclasses import replace
from typing import Optional, Union

from pricing_kernel.backend.core.contracts import (
    MODEL_PARAMS_TYPES,
    BlackScholesParams,
    ContractSpec,
    GreeksRequest,
    ModelParams,
    ModelSelector,
    NumericalMethod,
    PricingResult,
    coerce_enum,
)
from pricing_kernel.backend.core.errors import (
    ErrorOutcome,
    InvalidParameterError,
    PricingError,
    UnsupportedModelOrMethodError,
)
from pricing_kernel.backend.core.settings import KernelSettings
from pricing_kernel.backend.solvers.black_scholes import BlackScholesEngine
from pricing_kernel.backend.solvers.heston import HestonEngine

logger = logging.getLogger(__name__)

IMPLIED_VOLATILITY_FAILED = -1.0

_SUPPORTED_METHODS = {
    ModelSelector.BLACK_SCHOLES: frozenset({NumericalMethod.ANALYTIC}),
    ModelSelector.HESTON: frozenset({NumericalMethod.QUADRATURE, NumericalMethod.FFT}),
}

# Failures caught at the facade boundary
_HANDLED = (PricingError, ArithmeticError)


class _BlackScholesAdapter:
    """Gives both engines the same (contract, params) call shape."""

    def __init__(self, engine: BlackScholesEngine):
        self.engine = engine

    def price(self, contract, params: BlackScholesParams) -> float:
        return self.engine.price(contract, params.volatility)

    def greeks(self, contract, params: BlackScholesParams, request, base_price=None):
        return self.engine.greeks(contract, params.volatility, request)

    def implied_volatility(self, contract, market_price, params: BlackScholesParams) -> float:
        return self.engine.implied_volatility(contract, market_price)


class PricingFacade:
    """
    Dispatch table keyed by ModelSelector.

    Holds only immutable settings and stateless engines; safe to share
    across threads.
    """

    def __init__(self, settings: Optional[KernelSettings] = None):
        self.settings = (settings or KernelSettings()).validate()
        self.black_scholes = BlackScholesEngine(self.settings.solver)
        self.heston = HestonEngine(self.settings)
        self._engines = {
            ModelSelector.BLACK_SCHOLES: _BlackScholesAdapter(self.black_scholes),
            ModelSelector.HESTON: self.heston,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # VALIDATION
    # ═══════════════════════════════════════════════════════════════════════════

    def _prepare(self, model: Union[ModelSelector, str], contract: ContractSpec,
                 params: ModelParams):
        """
        Validate everything before any engine runs.

        Returns:
            (engine, params with a coerced method)
        """
        selector = coerce_enum(ModelSelector, model, UnsupportedModelOrMethodError)

        if not isinstance(contract, ContractSpec):
            raise InvalidParameterError(f"expected a ContractSpec, got {type(contract).__name__}")
        contract.validate()

        expected = MODEL_PARAMS_TYPES[selector]
        if not isinstance(params, expected):
            raise InvalidParameterError(
                f"{selector.value} expects {expected.__name__}, got {type(params).__name__}"
            )
        method = coerce_enum(NumericalMethod, params.method, UnsupportedModelOrMethodError)
        if method not in _SUPPORTED_METHODS[selector]:
            raise UnsupportedModelOrMethodError(
                f"{selector.value} does not support the {method.value} method"
            )
        params = replace(params, method=method).validate()
        return self._engines[selector], params

    @staticmethod
    def _check_market_price(market_price: float) -> float:
        if isinstance(market_price, bool) or not isinstance(market_price, (int, float)) \
                or not math.isfinite(market_price) or market_price < 0:
            raise InvalidParameterError(
                f"market price must be a finite non-negative number, got {market_price!r}"
            )
        return float(market_price)

    @staticmethod
    def _failure(exc: Exception, operation: str, **fields) -> PricingResult:
        outcome = ErrorOutcome.from_exception(exc)
        logger.debug("%s failed: %s (%s)", operation, outcome.kind.value, outcome.message)
        return PricingResult(error=outcome, **fields)

    # ═══════════════════════════════════════════════════════════════════════════
    # OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    def price(self, model: Union[ModelSelector, str], contract: ContractSpec, params: ModelParams,
              market_price: float = 0.0, greeks: Optional[GreeksRequest] = None) -> PricingResult:
        """
        Price a contract; optionally also its implied parameter and Greeks.

        Args:
            model: engine selector
            contract: contract and market inputs
            params: model parameters matching `model`
            market_price: 0 to skip implied volatility, > 0 to also solve for it
            greeks: Greeks to compute at `params` (none by default)

        Returns:
            PricingResult; when pricing succeeds but a later step fails the
            price is kept and the failure is reported in `error`
        """
        try:
            engine, params = self._prepare(model, contract, params)
            market_price = self._check_market_price(market_price)
            value = engine.price(contract, params)
        except _HANDLED as exc:
            return self._failure(exc, "price")

        fields = {'price': value}
        if greeks:
            try:
                fields.update(engine.greeks(contract, params, greeks, base_price=value).to_dict())
            except _HANDLED as exc:
                return self._failure(exc, "greeks", **fields)

        if market_price > 0:
            try:
                fields['implied_volatility'] = engine.implied_volatility(contract, market_price, params)
            except _HANDLED as exc:
                return self._failure(exc, "implied volatility",
                                     implied_volatility=IMPLIED_VOLATILITY_FAILED, **fields)

        return PricingResult(**fields)

    def greeks(self, model: Union[ModelSelector, str], contract: ContractSpec, params: ModelParams,
               request: Optional[GreeksRequest] = None) -> PricingResult:
        """Price plus the requested Greeks (all five when request is None)."""
        request = GreeksRequest.all() if request is None else request
        try:
            engine, params = self._prepare(model, contract, params)
            if not isinstance(request, GreeksRequest):
                raise InvalidParameterError(f"expected a GreeksRequest, got {type(request).__name__}")
            value = engine.price(contract, params)
            sensitivities = engine.greeks(contract, params, request, base_price=value)
        except _HANDLED as exc:
            return self._failure(exc, "greeks")
        return PricingResult(price=value, **sensitivities.to_dict())

    def implied_volatility(self, model: Union[ModelSelector, str], market_price: float,
                           contract: ContractSpec, params: ModelParams) -> PricingResult:
        """
        Volatility reproducing market_price.

        Black-Scholes: the flat σ (params.volatility is ignored).
        Heston: the initial volatility √V₀ with κ, θ, σ, ρ held fixed.

        Returns:
            PricingResult whose implied_volatility is the solution, or
            IMPLIED_VOLATILITY_FAILED with a typed error
        """
        try:
            engine, params = self._prepare(model, contract, params)
            market_price = self._check_market_price(market_price)
            vol = engine.implied_volatility(contract, market_price, params)
        except _HANDLED as exc:
            return self._failure(exc, "implied volatility",
                                 implied_volatility=IMPLIED_VOLATILITY_FAILED)
        return PricingResult(implied_volatility=vol)


DEFAULT_FACADE = PricingFacade()


def price(model, contract, params, market_price=0.0, greeks=None) -> PricingResult:
    return DEFAULT_FACADE.price(model, contract, params, market_price, greeks)


def greeks(model, contract, params, request=None) -> PricingResult:
    return DEFAULT_FACADE.greeks(model, contract, params, request)


def implied_volatility(model, market_price, contract, params) -> PricingResult:
    return DEFAULT_FACADE.implied_volatility(model, market_price, contract, params)
