import math
import warnings

import pytest

from pricing_kernel.backend.core.errors import InvalidParameterError
from pricing_kernel.tests.cases.common import (
    BlackScholesParams,
    CheckResult,
    ContractSpec,
    HestonEngine,
    HestonParams,
    default_contract,
    get_default_params,
)


def check_feller_condition() -> CheckResult:
    """
    2κθ > σ² is reported, not enforced: a violating set still prices.
    """
    satisfied = get_default_params()
    violated = HestonParams(v0=0.04, theta=0.02, kappa=0.5, sigma=0.8, rho=-0.5)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        violated.validate()
    warned = any('Feller' in str(w.message) for w in caught)

    price = HestonEngine().price(default_contract(), violated)

    checks = {
        'default satisfies Feller': satisfied.feller_satisfied,
        'violation detected': not violated.feller_satisfied,
        'violation warns': warned,
        'violating set still prices': math.isfinite(price) and price > 0,
    }
    passed = all(checks.values())
    message = f"ratio={violated.feller_ratio:.3f}, price={price:.4f}"
    return passed, message, {'checks': checks, 'price': price}


def test_feller_condition():
    passed, message, _ = check_feller_condition()
    assert passed, message


def test_satisfied_feller_does_not_warn():
    with warnings.catch_warnings():
        warnings.simplefilter('error')
        get_default_params().validate()


@pytest.mark.parametrize("field,value", [
    ('v0', 0.0), ('v0', -0.01), ('theta', 0.0), ('kappa', -1.0), ('sigma', 0.0),
    ('rho', 1.01), ('rho', -1.5), ('v0', float('nan')), ('kappa', float('inf')),
])
def test_heston_params_out_of_range(field, value):
    params = get_default_params().to_dict()
    params[field] = value
    with pytest.raises(InvalidParameterError):
        HestonParams.from_dict(params).validate()


@pytest.mark.parametrize("changes", [
    {'spot': 0.0}, {'spot': -1.0}, {'strike': 0.0}, {'expiry': -0.1},
    {'spot': float('nan')}, {'rate': float('inf')}, {'dividend_yield': float('nan')},
    {'strike': '100'}, {'rate': 60.0}, {'dividend_yield': -60.0}, {'rate': 1.0, 'expiry': 51.0},
])
def test_contract_out_of_range(changes):
    with pytest.raises(InvalidParameterError):
        default_contract().bumped(**changes).validate()


def test_zero_expiry_is_valid():
    contract = ContractSpec(spot=100.0, strike=90.0, expiry=0.0)
    assert contract.validate() is contract


def test_carry_at_the_bound_is_valid():
    contract = default_contract(expiry=10.0).bumped(rate=5.0, dividend_yield=-5.0)
    assert contract.validate() is contract


@pytest.mark.parametrize("volatility", [-0.1, float('nan'), float('inf')])
def test_black_scholes_volatility_out_of_range(volatility):
    with pytest.raises(InvalidParameterError):
        BlackScholesParams(volatility=volatility).validate()


def test_params_round_trip_through_dict():
    params = get_default_params()
    assert HestonParams.from_dict(params.to_dict()) == params


def test_expected_integrated_variance():
    params = HestonParams(v0=0.09, theta=0.04, kappa=2.0, sigma=0.3, rho=-0.7)
    expected = 0.04 * 1.0 + (0.09 - 0.04) * (1.0 - math.exp(-2.0)) / 2.0
    assert params.expected_integrated_variance(1.0) == pytest.approx(expected, rel=1e-12)
