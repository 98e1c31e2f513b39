#!/usr/bin/env python3
"""
═══════════════════════════════════════════════════════════════════════════════
PRICING KERNEL - Application Entry Point
═══════════════════════════════════════════════════════════════════════════════

Usage:
    python -m pricing_kernel.run              # Start web server
    python -m pricing_kernel.run --test       # Run validation tests only
    python -m pricing_kernel.run --demo       # Run demo pricing calculations

Models:
    black_scholes   closed form, σ flat
    heston          quadrature or FFT over the characteristic function

Numerical settings can be overridden with PRICING_KERNEL_* environment
variables (see backend/core/settings.py).

═══════════════════════════════════════════════════════════════════════════════
"""

import argparse
import logging
import sys


def run_demo():
    """Run demonstration calculations."""
    from dataclasses import replace

    from pricing_kernel.backend.core.contracts import (
        BlackScholesParams,
        ContractSpec,
        GreeksRequest,
        HestonParams,
        ModelSelector,
        NumericalMethod,
        OptionSide,
    )
    from pricing_kernel.backend.core.settings import KernelSettings
    from pricing_kernel.backend.facade import PricingFacade

    print("=" * 70)
    print("PRICING KERNEL - DEMO")
    print("=" * 70)
    print()

    facade = PricingFacade(KernelSettings.from_env())
    params = HestonParams(v0=0.04, theta=0.04, kappa=2.0, sigma=0.3, rho=-0.7)
    print("Heston Parameters:")
    print(f"  V₀ (v0)    = {params.v0}")
    print(f"  θ (theta)  = {params.theta}")
    print(f"  κ (kappa)  = {params.kappa}")
    print(f"  σ (sigma)  = {params.sigma}")
    print(f"  ρ (rho)    = {params.rho}")
    print(f"  Feller     = {params.feller_ratio:.2f} {'✓' if params.feller_satisfied else '✗'}")
    print()

    contract = ContractSpec(spot=100.0, strike=100.0, expiry=1.0, rate=0.05, dividend_yield=0.02)
    print(f"Option: European Call, S={contract.spot}, K={contract.strike}, T={contract.expiry}, "
          f"r={contract.rate}, q={contract.dividend_yield}")
    print("-" * 70)

    print("\n1. BLACK-SCHOLES (closed form, σ = 20%)")
    bs = BlackScholesParams(volatility=0.2)
    call = facade.price(ModelSelector.BLACK_SCHOLES, contract, bs)
    put = facade.price(ModelSelector.BLACK_SCHOLES, contract.with_side(OptionSide.PUT), bs)
    print(f"   Call Price: {call.price:.4f}")
    print(f"   Put Price:  {put.price:.4f}")

    print("\n2. HESTON (quadrature vs FFT)")
    for method in (NumericalMethod.QUADRATURE, NumericalMethod.FFT):
        result = facade.price(ModelSelector.HESTON, contract, replace(params, method=method))
        print(f"   {method.value:<10s} Call Price: {result.price:.6f}")

    print("\n3. GREEKS (Heston, quadrature)")
    greeks = facade.greeks(ModelSelector.HESTON, contract, params, GreeksRequest.all())
    print(f"   Delta (Δ): {greeks.delta:.4f}")
    print(f"   Gamma (Γ): {greeks.gamma:.6f}")
    print(f"   Vega  (ν): {greeks.vega:.4f}  (per unit σ₀ = √V₀)")
    print(f"   Theta (Θ): {greeks.theta:.4f} (daily: {greeks.theta / 365:.4f})")
    print(f"   Rho   (ρ): {greeks.rho:.4f}")

    print("\n4. IMPLIED VOLATILITY SMILE (Heston FFT → Black-Scholes)")
    strikes = [85, 90, 95, 100, 105, 110, 115]
    fft_params = replace(params, method=NumericalMethod.FFT)
    prices = facade.heston.price_strikes(contract, strikes, fft_params)
    vols = facade.heston.implied_volatility_smile(contract, strikes, fft_params, prices=prices)
    print("   Strike    Price    Implied Vol")
    for strike, price, iv in zip(strikes, prices, vols):
        print(f"   {strike:6.0f}    {price:6.2f}    {iv * 100:5.2f}%")

    print("\n5. FAILURE REPORTING")
    deep_itm = ContractSpec(spot=100.0, strike=50.0, expiry=1.0, rate=0.05)
    failed = facade.implied_volatility(ModelSelector.BLACK_SCHOLES, 0.01, deep_itm, bs)
    print(f"   IV of a 0.01 quote on K=50: {failed.implied_volatility} ({failed.error.kind.value})")
    print(f"   {failed.error.message}")

    print()
    print("=" * 70)
    print("Demo complete!")
    print("=" * 70)


def run_tests():
    """Run validation tests."""
    from pricing_kernel.tests.validation import run_all_tests
    success = run_all_tests()
    return 0 if success else 1


def run_server(host='0.0.0.0', port=5000, debug=True):
    """Start the web server."""
    from pricing_kernel.backend.app import create_app
    from pricing_kernel.backend.core.settings import KernelSettings
    from pricing_kernel.backend.facade import PricingFacade

    app = create_app(PricingFacade(KernelSettings.from_env()))
    app.run(host=host, port=port, debug=debug)


def main():
    parser = argparse.ArgumentParser(
        description='Multi-model European option pricing kernel',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m pricing_kernel.run              Start web server at http://localhost:5000
    python -m pricing_kernel.run --port 8000  Start on custom port
    python -m pricing_kernel.run --test       Run validation tests
    python -m pricing_kernel.run --demo       Run demo calculations
        """
    )

    parser.add_argument('--test', action='store_true', help='Run validation tests')
    parser.add_argument('--demo', action='store_true', help='Run demo calculations')
    parser.add_argument('--host', default='0.0.0.0', help='Server host (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=5000, help='Server port (default: 5000)')
    parser.add_argument('--no-debug', action='store_true', help='Disable debug mode')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: WARNING)')

    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    if args.test:
        sys.exit(run_tests())
    elif args.demo:
        run_demo()
    else:
        run_server(args.host, args.port, not args.no_debug)


if __name__ == '__main__':
    main()
