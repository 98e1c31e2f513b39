"""
Market Data Module for the Pricing Kernel

Interface only: the kernel consumes already-resolved values from a
MarketDataProvider and never performs I/O itself.
"""

from .market_data import (
    MarketDataError,
    MarketDataProvider,
    MarketSnapshot,
    RateTerm,
    historical_volatility,
    snapshot_from_provider,
    volatility_window_for_expiry,
)

__all__ = [
    'MarketDataError',
    'MarketDataProvider',
    'MarketSnapshot',
    'RateTerm',
    'historical_volatility',
    'snapshot_from_provider',
    'volatility_window_for_expiry',
]
