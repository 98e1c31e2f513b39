"""
Market Data Interface

The kernel never fetches anything. Spot prices, dividend yields, rates and
historical volatilities come from a MarketDataProvider supplied by the
surrounding tooling; this module defines that interface and turns what it
returns into validated kernel inputs.

Provider values are untrusted: a NaN spot or a negative volatility is an
InvalidParameter, exactly like a bad caller input.

═══════════════════════════════════════════════════════════════════════════════
CONVENTIONS
═══════════════════════════════════════════════════════════════════════════════

Rate term:      the Treasury tenor nearest to the option's expiry
Vol lookback:   expiry ≤ 7d → 10d, ≤ 30d → 20d, ≤ 90d → 60d, ≤ 180d → 90d,
                longer → 180d of history
Historical vol: σ = √252 · stdev(ln(P_i / P_{i-1}))  (sample stdev)

═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

import numpy as np

from pricing_kernel.backend.core.contracts import (
    BlackScholesParams,
    ContractSpec,
    OptionSide,
    require_finite,
)
from pricing_kernel.backend.core.errors import InvalidParameterError

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
MAX_LOOKBACK_DAYS = 730


class MarketDataError(Exception):
    """A provider could not supply a value."""


class RateTerm(str, Enum):
    ONE_MONTH = "1M"
    THREE_MONTH = "3M"
    SIX_MONTH = "6M"
    ONE_YEAR = "1Y"
    TWO_YEAR = "2Y"
    FIVE_YEAR = "5Y"
    TEN_YEAR = "10Y"
    THIRTY_YEAR = "30Y"

    @property
    def years(self) -> float:
        return _TERM_YEARS[self]

    @classmethod
    def for_expiry(cls, expiry: float) -> 'RateTerm':
        """Tenor closest to `expiry` years."""
        expiry = require_finite("expiry", expiry)
        if expiry < 0:
            raise InvalidParameterError(f"expiry must be non-negative, got {expiry}")
        return min(cls, key=lambda term: abs(term.years - expiry))


_TERM_YEARS = {
    RateTerm.ONE_MONTH: 1.0 / 12.0,
    RateTerm.THREE_MONTH: 0.25,
    RateTerm.SIX_MONTH: 0.5,
    RateTerm.ONE_YEAR: 1.0,
    RateTerm.TWO_YEAR: 2.0,
    RateTerm.FIVE_YEAR: 5.0,
    RateTerm.TEN_YEAR: 10.0,
    RateTerm.THIRTY_YEAR: 30.0,
}


def volatility_window_for_expiry(days: int) -> int:
    """Historical-volatility lookback (trading days) for an expiry in calendar days."""
    if days <= 7:
        return 10
    if days <= 30:
        return 20
    if days <= 90:
        return 60
    if days <= 180:
        return 90
    return 180


def historical_volatility(closes: Sequence[float],
                          trading_days: int = TRADING_DAYS_PER_YEAR) -> float:
    """
    Annualized close-to-close volatility.

    Args:
        closes: closing prices in chronological order (at least 3)
        trading_days: annualization factor

    Returns:
        √trading_days · sample stdev of log returns
    """
    prices = np.asarray(closes, dtype=float)
    if prices.ndim != 1 or prices.size < 3:
        raise InvalidParameterError("need at least 3 closing prices")
    if not np.all(np.isfinite(prices)) or np.any(prices <= 0):
        raise InvalidParameterError("closing prices must be finite and positive")
    returns = np.diff(np.log(prices))
    return float(np.std(returns, ddof=1) * math.sqrt(trading_days))


class MarketDataProvider(Protocol):
    """
    What the kernel needs from a data source.

    Each method returns a plain float or raises MarketDataError.
    """

    def spot_price(self, ticker: str) -> float: ...

    def dividend_yield(self, ticker: str) -> float: ...

    def risk_free_rate(self, term: RateTerm) -> float: ...

    def historical_volatility(self, ticker: str, days: int) -> float: ...


@dataclass(frozen=True)
class MarketSnapshot:
    """Validated market inputs for one ticker at one expiry."""

    ticker: str
    spot: float
    dividend_yield: float
    rate: float
    volatility: float
    rate_term: RateTerm
    lookback_days: int

    def validate(self) -> 'MarketSnapshot':
        spot = require_finite("spot", self.spot)
        if spot <= 0:
            raise InvalidParameterError(f"{self.ticker}: spot must be positive, got {spot}")
        dividend_yield = require_finite("dividend_yield", self.dividend_yield)
        if dividend_yield < 0:
            raise InvalidParameterError(f"{self.ticker}: dividend yield must be non-negative, got {dividend_yield}")
        require_finite("rate", self.rate)
        vol = require_finite("volatility", self.volatility)
        if vol <= 0:
            raise InvalidParameterError(f"{self.ticker}: volatility must be positive, got {vol}")
        return self

    def contract(self, strike: float, expiry: float,
                 side: OptionSide = OptionSide.CALL) -> ContractSpec:
        return ContractSpec(
            spot=self.spot,
            strike=strike,
            expiry=expiry,
            rate=self.rate,
            dividend_yield=self.dividend_yield,
            side=side,
        ).validate()

    def black_scholes_params(self) -> BlackScholesParams:
        return BlackScholesParams(volatility=self.volatility).validate()


def snapshot_from_provider(provider: MarketDataProvider, ticker: str, expiry: float,
                           lookback_days: Optional[int] = None) -> MarketSnapshot:
    """
    Pull and validate everything needed to price `ticker` at `expiry` years.

    Raises:
        MarketDataError: the provider failed
        InvalidParameterError: the provider returned an unusable value
    """
    term = RateTerm.for_expiry(expiry)
    if lookback_days is None:
        lookback_days = volatility_window_for_expiry(int(round(expiry * 365)))
    if not 0 < lookback_days <= MAX_LOOKBACK_DAYS:
        raise InvalidParameterError(f"lookback must be in 1..{MAX_LOOKBACK_DAYS} days, got {lookback_days}")

    snapshot = MarketSnapshot(
        ticker=ticker,
        spot=provider.spot_price(ticker),
        dividend_yield=provider.dividend_yield(ticker),
        rate=provider.risk_free_rate(term),
        volatility=provider.historical_volatility(ticker, lookback_days),
        rate_term=term,
        lookback_days=lookback_days,
    ).validate()
    logger.debug("Snapshot %s: S=%.4f q=%.4f r(%s)=%.4f vol(%dd)=%.4f", ticker, snapshot.spot,
                 snapshot.dividend_yield, term.value, snapshot.rate, lookback_days, snapshot.volatility)
    return snapshot
