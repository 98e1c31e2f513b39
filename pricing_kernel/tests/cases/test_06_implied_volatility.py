import math

import pytest

from pricing_kernel.backend.core.errors import (
    DomainInfeasibleError,
    InvalidParameterError,
    NumericalNonConvergenceError,
    VolatilityNotFoundError,
)
from pricing_kernel.backend.core.settings import SolverSettings
from pricing_kernel.backend.solvers.implied_vol import ImpliedVolatilitySolver
from pricing_kernel.tests.cases.common import (
    BlackScholesEngine,
    CheckResult,
    ContractSpec,
    HestonEngine,
    NumericalMethod,
    OptionSide,
    default_contract,
    get_default_params,
)


def check_black_scholes_round_trip(sigma: float, strike: float = 100.0,
                                   side: OptionSide = OptionSide.CALL) -> CheckResult:
    engine = BlackScholesEngine()
    contract = default_contract(strike, side=side)

    price = engine.price(contract, sigma)
    recovered = engine.implied_volatility(contract, price)
    error = abs(recovered - sigma)

    passed = error < 1e-4
    message = f"σ={sigma}, K={strike:g} {side.value}: recovered {recovered:.8f}"
    return passed, message, {'price': price, 'recovered': recovered, 'error': error}


def check_heston_round_trip(method: NumericalMethod, initial_vol: float) -> CheckResult:
    engine = HestonEngine()
    contract = default_contract()
    params = get_default_params(method).with_initial_volatility(initial_vol)

    price = engine.price(contract, params)
    recovered = engine.implied_volatility(contract, price, get_default_params(method))
    error = abs(recovered - initial_vol)

    passed = error < 1e-4
    message = f"{method.value}: σ₀={initial_vol}, recovered {recovered:.8f}"
    return passed, message, {'price': price, 'recovered': recovered, 'error': error}


def check_deep_itm_quote_is_infeasible() -> CheckResult:
    """A 0.01 quote on a call whose intrinsic is ~48 has no volatility."""
    contract = ContractSpec(spot=100.0, strike=50.0, expiry=1.0, rate=0.05)
    try:
        vol = BlackScholesEngine().implied_volatility(contract, 0.01)
    except DomainInfeasibleError as exc:
        return True, f"DomainInfeasible: {exc}", {}
    return False, f"returned spurious volatility {vol}", {'vol': vol}


@pytest.mark.parametrize("sigma", [0.05, 0.2, 0.8, 1.5, 2.9])
@pytest.mark.parametrize("strike", [80.0, 100.0, 125.0])
@pytest.mark.parametrize("side", list(OptionSide))
def test_black_scholes_round_trip(sigma, strike, side):
    passed, message, _ = check_black_scholes_round_trip(sigma, strike, side)
    assert passed, message


@pytest.mark.parametrize("method", [NumericalMethod.QUADRATURE, NumericalMethod.FFT])
@pytest.mark.parametrize("initial_vol", [0.1, 0.2, 0.5])
def test_heston_round_trip(method, initial_vol):
    passed, message, _ = check_heston_round_trip(method, initial_vol)
    assert passed, message


def test_heston_implied_variance_is_squared_volatility():
    engine = HestonEngine()
    contract = default_contract()
    params = get_default_params()
    price = engine.price(contract, params.with_initial_volatility(0.3))
    assert engine.implied_variance(contract, price, params) == pytest.approx(0.09, abs=1e-5)


def test_deep_itm_quote_is_infeasible():
    passed, message, _ = check_deep_itm_quote_is_infeasible()
    assert passed, message


@pytest.mark.parametrize("market_price", [0.0, -1.0, float('nan'), float('inf')])
def test_invalid_market_price(market_price):
    with pytest.raises(InvalidParameterError):
        BlackScholesEngine().implied_volatility(default_contract(), market_price)


def test_price_above_ceiling_is_infeasible():
    contract = default_contract()
    with pytest.raises(DomainInfeasibleError):
        BlackScholesEngine().implied_volatility(contract, contract.upper_bound() + 1.0)
    with pytest.raises(DomainInfeasibleError):
        HestonEngine().implied_volatility(contract, contract.upper_bound() + 1.0, get_default_params())


def test_expiry_has_no_implied_volatility():
    contract = ContractSpec(spot=100.0, strike=90.0, expiry=0.0)
    with pytest.raises(DomainInfeasibleError):
        BlackScholesEngine().implied_volatility(contract, 10.0)


# ═══════════════════════════════════════════════════════════════════════════════
# GENERIC SOLVER
# ═══════════════════════════════════════════════════════════════════════════════

def test_solver_expands_upper_bound():
    solver = ImpliedVolatilitySolver()
    assert solver.solve(lambda s: 10.0 * s, 80.0) == pytest.approx(8.0, abs=1e-9)


def test_solver_expands_lower_bound():
    solver = ImpliedVolatilitySolver()
    assert solver.solve(lambda s: 1e4 * s, 5e-4) == pytest.approx(5e-8, abs=1e-9)


def test_solver_gives_up_after_bounded_expansions():
    solver = ImpliedVolatilitySolver(SolverSettings(max_expansions=3))
    evaluated = []

    def capped(sigma):
        evaluated.append(sigma)
        return min(sigma, 1.0)

    with pytest.raises(VolatilityNotFoundError):
        solver.solve(capped, 2.0)
    assert max(evaluated) == pytest.approx(40.0)


def test_solver_never_returns_an_unreached_boundary():
    solver = ImpliedVolatilitySolver()
    with pytest.raises(VolatilityNotFoundError) as info:
        solver.solve(lambda s: 1e-3 + s, 5e-4)
    assert isinstance(info.value, DomainInfeasibleError)


def test_solver_rejects_non_finite_prices():
    solver = ImpliedVolatilitySolver()
    with pytest.raises(NumericalNonConvergenceError):
        solver.solve(lambda s: float('nan'), 1.0)


def test_solver_returns_exact_boundary_root():
    solver = ImpliedVolatilitySolver()
    assert solver.solve(lambda s: s, 5.0) == 5.0


def test_solver_accepts_custom_bracket():
    solver = ImpliedVolatilitySolver()
    root = solver.solve(lambda s: s * s, 2.0, bracket=(1.0, 2.0))
    assert root == pytest.approx(math.sqrt(2.0), abs=1e-9)
