from __future__ import annotations

from incomedesk.analytics.indicators import (
    annualized_return,
    classify_trend,
    classify_volatility,
    clamp,
    days_to_expiration,
    estimate_probability_of_profit,
    historical_volatility,
    mid_price,
    return_on_capital,
    round_half_up,
    score_liquidity,
    simple_moving_average,
    spread_pct,
    trend_score,
    within_days,
)

__all__ = [
    "annualized_return",
    "classify_trend",
    "classify_volatility",
    "clamp",
    "days_to_expiration",
    "estimate_probability_of_profit",
    "historical_volatility",
    "mid_price",
    "return_on_capital",
    "round_half_up",
    "score_liquidity",
    "simple_moving_average",
    "spread_pct",
    "trend_score",
    "within_days",
]
