import math

import pytest

from pricing_kernel.tests.cases.common import (
    BlackScholesEngine,
    CheckResult,
    ContractSpec,
    Greek,
    GreeksCalculator,
    GreeksRequest,
    HestonEngine,
    NumericalMethod,
    OptionSide,
    black_scholes_limit_params,
    default_contract,
    get_default_params,
    heston_vega_reference,
    relative_error,
)


def check_greeks_signs(method: NumericalMethod = NumericalMethod.QUADRATURE) -> CheckResult:
    greeks = HestonEngine().greeks(default_contract(), get_default_params(method), GreeksRequest.all())

    checks = {
        'delta > 0': greeks.delta > 0,
        'gamma > 0': greeks.gamma > 0,
        'vega > 0': greeks.vega > 0,
        'theta < 0': greeks.theta < 0,
        'rho > 0': greeks.rho > 0,
    }

    passed = all(checks.values())
    message = "All signs correct" if passed else f"Failed: {[k for k, v in checks.items() if not v]}"
    details = {**greeks.to_dict(), 'checks': checks}
    return passed, message, details


def check_black_scholes_analytic_vs_finite_difference(side: OptionSide = OptionSide.CALL) -> CheckResult:
    engine = BlackScholesEngine()
    contract = default_contract(105.0, side=side)
    sigma = 0.25

    analytic = engine.greeks(contract, sigma, GreeksRequest.all())
    numeric = GreeksCalculator().compute(engine.price, contract, sigma, GreeksRequest.all())

    errors = {g.value: relative_error(getattr(numeric, g.value), getattr(analytic, g.value)) for g in Greek}
    passed = max(errors.values()) < 1e-3
    message = f"{side.value}: max rel error {max(errors.values()):.2e}"
    return passed, message, {'analytic': analytic.to_dict(), 'numeric': numeric.to_dict(), 'errors': errors}


def check_heston_greeks_vs_black_scholes_limit(method: NumericalMethod = NumericalMethod.QUADRATURE) -> CheckResult:
    """
    With V₀ = θ and a tiny vol-of-vol, Heston Greeks approach the
    Black-Scholes ones at σ = √θ; vega is rescaled because it is taken
    with respect to σ₀ while θ stays fixed.
    """
    params = black_scholes_limit_params(method)
    contract = default_contract()

    heston = HestonEngine().greeks(contract, params, GreeksRequest.all())
    bs = BlackScholesEngine().greeks(contract, math.sqrt(params.theta), GreeksRequest.all())
    vega_reference = heston_vega_reference(bs.vega, params.kappa, contract.expiry)

    errors = {
        'delta': abs(heston.delta - bs.delta),
        'gamma': relative_error(heston.gamma, bs.gamma),
        'theta': relative_error(heston.theta, bs.theta),
        'vega': relative_error(heston.vega, vega_reference),
        'rho': relative_error(heston.rho, bs.rho),
    }
    bounds = {'delta': 1e-3, 'gamma': 1e-2, 'theta': 1e-2, 'vega': 1e-2, 'rho': 1e-3}
    failed = [k for k in errors if errors[k] >= bounds[k]]

    passed = not failed
    message = f"{method.value}: " + ("all within bounds" if passed else f"failed {failed}")
    return passed, message, {'heston': heston.to_dict(), 'bs': bs.to_dict(), 'errors': errors}


@pytest.mark.parametrize("method", [NumericalMethod.QUADRATURE, NumericalMethod.FFT])
def test_greeks_signs(method):
    passed, message, _ = check_greeks_signs(method)
    assert passed, message


@pytest.mark.parametrize("side", list(OptionSide))
def test_black_scholes_analytic_vs_finite_difference(side):
    passed, message, _ = check_black_scholes_analytic_vs_finite_difference(side)
    assert passed, message


@pytest.mark.parametrize("method", [NumericalMethod.QUADRATURE, NumericalMethod.FFT])
def test_heston_greeks_vs_black_scholes_limit(method):
    passed, message, _ = check_heston_greeks_vs_black_scholes_limit(method)
    assert passed, message


def test_quadrature_delta_matches_finite_difference():
    contract = default_contract()
    params = get_default_params()
    engine = HestonEngine()

    delta_p1 = engine.greeks(contract, params, GreeksRequest.of(Greek.DELTA)).delta
    h = 0.01
    up = engine.price(contract.bumped(spot=contract.spot + h), params)
    down = engine.price(contract.bumped(spot=contract.spot - h), params)
    assert delta_p1 == pytest.approx((up - down) / (2.0 * h), abs=1e-5)


def test_quadrature_engine_takes_delta_from_p1(monkeypatch):
    engine = HestonEngine()
    priced = []
    original_price = engine.price

    def counting_price(contract, params):
        priced.append(contract.spot)
        return original_price(contract, params)

    monkeypatch.setattr(engine, 'price', counting_price)
    monkeypatch.setattr(engine.quadrature, 'delta', lambda contract, params: 0.123)

    greeks = engine.greeks(default_contract(), get_default_params(), GreeksRequest.of(Greek.DELTA))

    assert greeks.delta == 0.123
    assert priced == []


def test_fft_engine_keeps_finite_difference_delta(monkeypatch):
    engine = HestonEngine()
    monkeypatch.setattr(engine.quadrature, 'delta', lambda contract, params: 0.123)
    greeks = engine.greeks(default_contract(), get_default_params(NumericalMethod.FFT),
                           GreeksRequest.of(Greek.DELTA))
    assert 0.0 < greeks.delta < 1.0 and greeks.delta != 0.123


def test_only_requested_greeks_are_computed():
    calls = []

    def counting_price(contract, sigma):
        calls.append((contract, sigma))
        return BlackScholesEngine().price(contract, sigma)

    greeks = GreeksCalculator().compute(counting_price, default_contract(), 0.2, GreeksRequest.of('delta'))

    assert greeks.delta != 0.0
    assert (greeks.gamma, greeks.theta, greeks.vega, greeks.rho) == (0.0, 0.0, 0.0, 0.0)
    assert len(calls) == 2


def test_gamma_reuses_base_price():
    calls = []

    def counting_price(contract, sigma):
        calls.append(contract.spot)
        return BlackScholesEngine().price(contract, sigma)

    GreeksCalculator().compute(counting_price, default_contract(), 0.2,
                               GreeksRequest.of(Greek.DELTA, Greek.GAMMA), base_price=1.0)
    assert len(calls) == 2


def test_theta_uses_forward_difference_near_expiry():
    engine = BlackScholesEngine()
    contract = default_contract(expiry=5e-4)
    greeks = GreeksCalculator().compute(engine.price, contract, 0.2, GreeksRequest.of(Greek.THETA))
    assert math.isfinite(greeks.theta)
    assert greeks.theta < 0


def test_deterministic_greeks_at_expiry():
    engine = BlackScholesEngine()
    itm = ContractSpec(spot=110.0, strike=100.0, expiry=0.0, rate=0.05)
    atm = ContractSpec(spot=100.0, strike=100.0, expiry=0.0, rate=0.05)

    itm_greeks = engine.greeks(itm, 0.2, GreeksRequest.all())
    assert itm_greeks.delta == 1.0
    assert itm_greeks.gamma == 0.0 and itm_greeks.vega == 0.0
    assert itm_greeks.theta == pytest.approx(-0.05 * 100.0)

    atm_greeks = engine.greeks(atm, 0.2, GreeksRequest.all())
    assert atm_greeks.to_dict() == {g.value: 0.0 for g in Greek}


def test_deterministic_greeks_at_zero_volatility():
    engine = BlackScholesEngine()
    contract = default_contract(80.0, side=OptionSide.CALL)
    greeks = engine.greeks(contract, 0.0, GreeksRequest.all())

    assert greeks.delta == pytest.approx(contract.dividend_factor)
    assert greeks.rho == pytest.approx(contract.strike * contract.expiry * contract.discount_factor)
    assert greeks.gamma == 0.0 and greeks.vega == 0.0

    put = engine.greeks(contract.with_side(OptionSide.PUT), 0.0, GreeksRequest.all())
    assert put.to_dict() == {g.value: 0.0 for g in Greek}


def test_greeks_request_rejects_unknown_names():
    from pricing_kernel.backend.core.errors import InvalidParameterError
    with pytest.raises(InvalidParameterError):
        GreeksRequest.of('vanna')
