"""
Flask Backend API for the Pricing Kernel

═══════════════════════════════════════════════════════════════════════════════
REST API ENDPOINTS
═══════════════════════════════════════════════════════════════════════════════

Endpoints:
- GET  /api/health:      Health check
- POST /api/price:       Price (plus implied vol / Greeks when asked)
- POST /api/greeks:      Price and Greeks
- POST /api/implied-vol: Implied volatility from a market price
- POST /api/smile:       Black-Scholes implied vols of Heston prices

The API is a thin adapter: it parses JSON into kernel value types, calls the
PricingFacade and serializes the PricingResult. Typed failures map to

   invalid_parameter / unsupported_model_or_method / domain_infeasible → 400
   numerical_non_convergence                                          → 422

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from pricing_kernel.backend.core.contracts import (
    BlackScholesParams,
    ContractSpec,
    GreeksRequest,
    HestonParams,
    ModelSelector,
    NumericalMethod,
    PricingResult,
    coerce_enum,
    parse_side,
)
from pricing_kernel.backend.core.errors import (
    ErrorKind,
    ErrorOutcome,
    InvalidParameterError,
    PricingError,
    UnsupportedModelOrMethodError,
)
from pricing_kernel.backend.facade import PricingFacade

logger = logging.getLogger(__name__)

API_VERSION = '1.0.0'


# ═══════════════════════════════════════════════════════════════════════════════
# UTILITY FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def get_json_data() -> dict:
    """Get JSON data from request with fallback to empty dict."""
    json_data = request.get_json(silent=True)
    return json_data if isinstance(json_data, dict) else {}


def _number(d: dict, key: str, default: Optional[float] = None) -> float:
    value = d.get(key, default)
    if value is None:
        raise InvalidParameterError(f"missing field '{key}'")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParameterError(f"field '{key}' must be a number, got {value!r}") from exc


def parse_model(data: dict) -> ModelSelector:
    return coerce_enum(ModelSelector, data.get('model', ModelSelector.BLACK_SCHOLES.value),
                       UnsupportedModelOrMethodError)


def parse_contract(data: dict) -> ContractSpec:
    """
    Parse ContractSpec from request data.

    Expected format:
    {
        "contract": {
            "spot": float,
            "strike": float,
            "expiry": float,
            "rate": float,
            "dividend_yield": float,
            "side": "call" | "put"
        }
    }
    """
    c = data.get('contract') or {}
    return ContractSpec(
        spot=_number(c, 'spot'),
        strike=_number(c, 'strike'),
        expiry=_number(c, 'expiry'),
        rate=_number(c, 'rate', 0.0),
        dividend_yield=_number(c, 'dividend_yield', 0.0),
        side=parse_side(c.get('side', 'call')),
    )


def parse_params(model: ModelSelector, data: dict):
    """
    Parse model parameters.

    Black-Scholes: {"params": {"volatility": float}}
    Heston:        {"params": {"v0", "theta", "kappa", "sigma", "rho",
                               "method": "quadrature" | "fft"}}
    """
    p = data.get('params') or {}
    if model is ModelSelector.BLACK_SCHOLES:
        return BlackScholesParams(
            volatility=_number(p, 'volatility'),
            method=coerce_enum(NumericalMethod, p.get('method', 'analytic'), UnsupportedModelOrMethodError),
        )
    return HestonParams(
        v0=_number(p, 'v0'),
        theta=_number(p, 'theta'),
        kappa=_number(p, 'kappa'),
        sigma=_number(p, 'sigma'),
        rho=_number(p, 'rho'),
        method=coerce_enum(NumericalMethod, p.get('method', 'quadrature'), UnsupportedModelOrMethodError),
    )


def parse_greeks(data: dict, default_all: bool = False) -> GreeksRequest:
    names = data.get('greeks')
    if names is None:
        return GreeksRequest.all() if default_all else GreeksRequest.none()
    if not isinstance(names, list):
        raise InvalidParameterError("'greeks' must be a list of names")
    return GreeksRequest.of(*names)


def status_for(outcome: ErrorOutcome) -> int:
    if outcome.ok:
        return 200
    if outcome.kind is ErrorKind.NUMERICAL_NON_CONVERGENCE:
        return 422
    return 400


def respond(result: PricingResult, **extra):
    body = result.to_dict()
    body.update(extra)
    return jsonify(body), status_for(result.error)


def respond_error(exc: Exception):
    logger.info("Rejected request: %s", exc)
    return respond(PricingResult(error=ErrorOutcome.from_exception(exc)))


# ═══════════════════════════════════════════════════════════════════════════════
# APPLICATION
# ═══════════════════════════════════════════════════════════════════════════════

def create_app(facade: Optional[PricingFacade] = None) -> Flask:
    """Build the Flask app around a facade (default settings when omitted)."""
    facade = facade or PricingFacade()
    app = Flask(__name__)
    CORS(app)

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'service': 'Pricing Kernel API',
            'version': API_VERSION,
            'models': [m.value for m in ModelSelector],
        })

    @app.route('/api/price', methods=['POST'])
    def price_option():
        """
        Request JSON:
        {
            "model": "black_scholes" | "heston",
            "contract": {spot, strike, expiry, rate, dividend_yield, side},
            "params": {...},
            "market_price": float (0 or absent: no implied vol),
            "greeks": ["delta", ...] (optional)
        }
        """
        data = get_json_data()
        try:
            model = parse_model(data)
            contract = parse_contract(data)
            params = parse_params(model, data)
            greeks = parse_greeks(data)
            market_price = _number(data, 'market_price', 0.0)
        except PricingError as exc:
            return respond_error(exc)
        return respond(facade.price(model, contract, params, market_price, greeks), model=model.value)

    @app.route('/api/greeks', methods=['POST'])
    def compute_greeks():
        """Same body as /api/price; all five Greeks when "greeks" is absent."""
        data = get_json_data()
        try:
            model = parse_model(data)
            contract = parse_contract(data)
            params = parse_params(model, data)
            greeks = parse_greeks(data, default_all=True)
        except PricingError as exc:
            return respond_error(exc)
        result = facade.greeks(model, contract, params, greeks)
        return respond(result, theta_daily=result.theta / 365.0)

    @app.route('/api/implied-vol', methods=['POST'])
    def implied_vol():
        """
        Request JSON: {"model", "contract", "params", "market_price"}

        For Heston the answer is the initial volatility √V₀.
        """
        data = get_json_data()
        try:
            model = parse_model(data)
            contract = parse_contract(data)
            params = parse_params(model, data)
            market_price = _number(data, 'market_price')
        except PricingError as exc:
            return respond_error(exc)
        return respond(facade.implied_volatility(model, market_price, contract, params))

    @app.route('/api/smile', methods=['POST'])
    def smile():
        """
        Request JSON: {"contract", "params" (Heston), "strikes": [float, ...]}

        Response JSON: {"strikes": [...], "prices": [...], "implied_vols": [...]}
        Unrecoverable implied vols are null.
        """
        data = get_json_data()
        try:
            contract = parse_contract(data).validate()
            params = parse_params(ModelSelector.HESTON, data)
            if params.method is NumericalMethod.ANALYTIC:
                raise UnsupportedModelOrMethodError("heston does not support the analytic method")
            params.validate()
            strikes = [float(k) for k in data.get('strikes') or []]
            if not strikes:
                raise InvalidParameterError("'strikes' must be a non-empty list")
            prices = facade.heston.price_strikes(contract, strikes, params)
            vols = facade.heston.implied_volatility_smile(contract, strikes, params, prices=prices)
        except (PricingError, ArithmeticError) as exc:
            return respond_error(exc)
        except (TypeError, ValueError) as exc:
            return respond_error(InvalidParameterError(str(exc)))
        return jsonify({
            'strikes': strikes,
            'prices': [float(p) for p in prices],
            'implied_vols': [None if math.isnan(v) else float(v) for v in vols],
            'error': ErrorOutcome.success().to_dict(),
        })

    return app


app = create_app()
