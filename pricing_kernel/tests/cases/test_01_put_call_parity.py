import pytest

from pricing_kernel.tests.cases.common import (
    BlackScholesEngine,
    CheckResult,
    HestonEngine,
    NumericalMethod,
    OptionSide,
    default_contract,
    get_default_params,
    parity_gap,
)


def check_put_call_parity_black_scholes(strike: float = 100.0, volatility: float = 0.25) -> CheckResult:
    engine = BlackScholesEngine()
    call_contract = default_contract(strike)
    put_contract = call_contract.with_side(OptionSide.PUT)

    call_price = engine.price(call_contract, volatility)
    put_price = engine.price(put_contract, volatility)
    error = parity_gap(call_price, put_price, call_contract)

    passed = error < 1e-8
    message = f"Error = {error:.3e}"
    details = {'call': call_price, 'put': put_price, 'error': error}
    return passed, message, details


def check_put_call_parity_heston(method: NumericalMethod = NumericalMethod.QUADRATURE,
                                 strike: float = 100.0) -> CheckResult:
    engine = HestonEngine()
    params = get_default_params(method)
    call_contract = default_contract(strike)
    put_contract = call_contract.with_side(OptionSide.PUT)

    call_price = engine.price(call_contract, params)
    put_price = engine.price(put_contract, params)
    error = parity_gap(call_price, put_price, call_contract)

    passed = error < 1e-8
    message = f"{method.value}: Error = {error:.3e}"
    details = {'call': call_price, 'put': put_price, 'error': error}
    return passed, message, details


@pytest.mark.parametrize("strike", [60.0, 100.0, 150.0])
@pytest.mark.parametrize("volatility", [0.05, 0.25, 1.5])
def test_put_call_parity_black_scholes(strike, volatility):
    passed, message, _ = check_put_call_parity_black_scholes(strike, volatility)
    assert passed, message


@pytest.mark.parametrize("method", [NumericalMethod.QUADRATURE, NumericalMethod.FFT])
@pytest.mark.parametrize("strike", [80.0, 100.0, 120.0])
def test_put_call_parity_heston(method, strike):
    passed, message, _ = check_put_call_parity_heston(method, strike)
    assert passed, message


def test_put_prices_are_not_clamped():
    engine = HestonEngine()
    put_contract = default_contract(50.0).with_side(OptionSide.PUT)
    put_price = engine.price(put_contract, get_default_params())
    assert 0.0 < put_price < 1.0
