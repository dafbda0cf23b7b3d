"""Shared numeric utilities for regime, signal, and strategy math.

Moving averages and realized volatility are computed with pandas from
daily closes. Everything else is plain arithmetic kept here so every
component buckets and rounds the same way.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date

import numpy as np
import pandas as pd

from incomedesk.models.market import HistoricalPrice
from incomedesk.models.regime import LiquidityScores, TrendRegime, VolatilityRegime
from incomedesk.settings import LiquidityFilters

TRADING_DAYS_PER_YEAR = 252

# Trend-score contribution caps
_MA50_CAP = 30.0
_MA200_CAP = 30.0
_CROSS_CAP = 40.0

# Liquidity overall weights
_LIQ_VOLUME_WEIGHT = 0.3
_LIQ_OI_WEIGHT = 0.3
_LIQ_SPREAD_WEIGHT = 0.4


def round_half_up(value: float) -> int:
    """Integer rounding with .5 going up (never banker's rounding)."""
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def pct_diff(value: float, base: float) -> float:
    """Percent by which ``value`` sits above ``base``."""
    if not base:
        return 0.0
    return (value - base) / base * 100


def closes(history: Sequence[HistoricalPrice]) -> list[float]:
    return [bar.close for bar in history]


def simple_moving_average(prices: Sequence[float], period: int) -> float | None:
    """Mean of the last ``period`` closes, or None if there are fewer."""
    if period <= 0 or len(prices) < period:
        return None
    sma = pd.Series(prices, dtype=float).rolling(period).mean()
    return float(sma.iloc[-1])


def historical_volatility(prices: Sequence[float], period: int = 20) -> float | None:
    """Annualized realized volatility in percent from log returns.

    Uses the last ``period + 1`` closes and the population standard
    deviation. Returns None when there is not enough history.
    """
    if period <= 0 or len(prices) < period + 1:
        return None
    window = pd.Series(prices[-(period + 1):], dtype=float)
    returns = np.log(window / window.shift(1)).dropna()
    return float(returns.std(ddof=0) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100)


def trend_score(price: float, ma50: float | None, ma200: float | None) -> float:
    """Combined trend score in roughly [-100, 100]; 0 without both MAs."""
    if not ma50 or not ma200:
        return 0.0
    score = clamp(pct_diff(price, ma50) * 3, -_MA50_CAP, _MA50_CAP)
    score += clamp(pct_diff(price, ma200) * 2, -_MA200_CAP, _MA200_CAP)
    score += clamp(pct_diff(ma50, ma200) * 4, -_CROSS_CAP, _CROSS_CAP)
    return score


def classify_trend(score: float) -> TrendRegime:
    if score > 50:
        return TrendRegime.STRONG_UPTREND
    if score > 20:
        return TrendRegime.UPTREND
    if score > -20:
        return TrendRegime.NEUTRAL
    if score > -50:
        return TrendRegime.DOWNTREND
    return TrendRegime.STRONG_DOWNTREND


def classify_volatility(
    iv_rank: float | None,
    current_iv: float | None = None,
    hv20: float | None = None,
) -> VolatilityRegime:
    """Bucket by IV rank, else by the IV/HV20 ratio, else NORMAL.

    ``current_iv`` and ``hv20`` must share units (annualized percent).
    """
    if iv_rank is not None:
        if iv_rank >= 80:
            return VolatilityRegime.PANIC
        if iv_rank >= 60:
            return VolatilityRegime.HIGH
        if iv_rank >= 40:
            return VolatilityRegime.ELEVATED
        if iv_rank >= 20:
            return VolatilityRegime.NORMAL
        return VolatilityRegime.LOW

    if current_iv and hv20:
        ratio = current_iv / hv20
        if ratio >= 1.5:
            return VolatilityRegime.PANIC
        if ratio >= 1.3:
            return VolatilityRegime.HIGH
        if ratio >= 1.1:
            return VolatilityRegime.ELEVATED
        if ratio >= 0.9:
            return VolatilityRegime.NORMAL
        return VolatilityRegime.LOW

    return VolatilityRegime.NORMAL


def days_until(target: date, as_of: date) -> int:
    """Signed whole days from ``as_of`` to ``target``."""
    return (target - as_of).days


def days_to_expiration(expiration: date, as_of: date) -> int:
    return max(0, days_until(expiration, as_of))


def within_days(target: date, window: int, as_of: date) -> bool:
    """True when ``target`` falls 0..window days after ``as_of``."""
    diff = days_until(target, as_of)
    return 0 <= diff <= window


def mid_price(bid: float, ask: float) -> float:
    return (bid + ask) / 2


def spread_pct(bid: float, ask: float) -> float:
    """Bid-ask spread as percent of mid; 100 for a one-sided market."""
    mid = mid_price(bid, ask)
    if bid <= 0 or mid <= 0:
        return 100.0
    return (ask - bid) / mid * 100


def annualized_return(credit: float, risk_basis: float, dte: int) -> float:
    if risk_basis <= 0 or dte <= 0:
        return 0.0
    return round2((credit / risk_basis) * 100 * 365 / dte)


def return_on_capital(credit: float, capital: float) -> float:
    if capital <= 0:
        return 0.0
    return round2(credit / capital * 100)


def estimate_probability_of_profit(delta: float) -> int:
    """Rough POP for a short option: 1 - |delta|, as a whole percent."""
    return round_half_up((1 - abs(delta)) * 100)


def score_liquidity(
    volume: float,
    open_interest: float,
    spread: float,
    filters: LiquidityFilters,
) -> LiquidityScores:
    """Score volume, open interest, and spread 0-100 each.

    Volume and OI saturate at five times their minimums. The spread score
    halves at the configured maximum and decays to zero at twice it.
    """
    volume_score = min(100.0, volume / (filters.min_option_volume * 5) * 100) if filters.min_option_volume else 100.0
    oi_score = min(100.0, open_interest / (filters.min_option_oi * 5) * 100) if filters.min_option_oi else 100.0

    max_spread = filters.max_bid_ask_spread_pct
    if spread <= max_spread:
        spread_score = max(0.0, 100 - spread / max_spread * 50)
    else:
        spread_score = max(0.0, 50 - (spread - max_spread) / max_spread * 50)

    overall = round_half_up(
        volume_score * _LIQ_VOLUME_WEIGHT
        + oi_score * _LIQ_OI_WEIGHT
        + spread_score * _LIQ_SPREAD_WEIGHT
    )
    meets_minimum = (
        volume >= filters.min_option_volume
        and open_interest >= filters.min_option_oi
        and spread <= max_spread
    )
    return LiquidityScores(
        volume_score=volume_score,
        option_oi_score=oi_score,
        spread_score=spread_score,
        overall_score=overall,
        meets_minimum=meets_minimum,
    )
