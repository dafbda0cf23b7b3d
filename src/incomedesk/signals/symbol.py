from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import date

from incomedesk.analytics.indicators import (
    classify_trend,
    classify_volatility,
    closes,
    days_to_expiration,
    days_until,
    historical_volatility,
    pct_diff,
    score_liquidity,
    simple_moving_average,
    spread_pct,
    trend_score,
    within_days,
)
from incomedesk.data.provider import HistoryRange, MarketDataProvider
from incomedesk.models.market import OptionContract
from incomedesk.models.regime import EarningsProximity, LiquidityScores, SymbolSignals
from incomedesk.settings import TradingSettings

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5

# Expiration window used to sample ATM liquidity
LIQUIDITY_MIN_DTE = 21
LIQUIDITY_MAX_DTE = 45

# Assumed spread when neither ATM side is quoted
DEFAULT_SPREAD_PCT = 10.0

# Underlying volume saturates at 5x the configured minimum
_UNDERLYING_VOLUME_MULTIPLIER = 20


def _closest_strike(contracts: Sequence[OptionContract], price: float) -> OptionContract | None:
    if not contracts:
        return None
    return min(contracts, key=lambda c: abs(c.strike - price))


class SymbolAnalyzer:
    """Derives the per-symbol signal bundle consumed by the strategies."""

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: TradingSettings,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._batch_size = max(1, batch_size)

    async def analyze(
        self,
        symbol: str,
        earnings_date: date | None = None,
        as_of: date | None = None,
    ) -> SymbolSignals:
        """Build signals for one symbol.

        The quote, history, volatility, and expiration fetches must all
        succeed; any failure propagates so the symbol is left out.
        """
        as_of = as_of or date.today()
        quote, history, vol, expirations = await asyncio.gather(
            self._provider.get_quote(symbol),
            self._provider.get_historical_prices(symbol, HistoryRange.ONE_YEAR),
            self._provider.get_volatility_data(symbol),
            self._provider.get_option_expirations(symbol),
        )

        prices = closes(history)
        ma50 = simple_moving_average(prices, 50)
        ma200 = simple_moving_average(prices, 200)
        score = trend_score(quote.price, ma50, ma200)

        hv20 = historical_volatility(prices, 20)
        if hv20 is None:
            hv20 = vol.hv20

        liquidity = await self._liquidity(symbol, quote.price, quote.avg_volume, expirations, as_of)

        earnings = EarningsProximity()
        if earnings_date is not None:
            earnings = EarningsProximity(
                days_to_earnings=days_until(earnings_date, as_of),
                within_exclusion_window=within_days(
                    earnings_date, self._settings.earnings_exclusion_days, as_of
                ),
            )

        return SymbolSignals(
            symbol=symbol,
            timestamp=quote.timestamp,
            price=quote.price,
            trend=classify_trend(score),
            trend_score=round(score, 2),
            ma50=ma50 or 0.0,
            ma200=ma200 or 0.0,
            price_vs_ma50_pct=round(pct_diff(quote.price, ma50), 2) if ma50 else 0.0,
            price_vs_ma200_pct=round(pct_diff(quote.price, ma200), 2) if ma200 else 0.0,
            volatility_regime=classify_volatility(vol.iv_rank, vol.current_iv, hv20),
            iv_rank=vol.iv_rank,
            iv_percentile=vol.iv_percentile,
            hv20=hv20,
            liquidity=liquidity,
            earnings=earnings,
        )

    async def _liquidity(
        self,
        symbol: str,
        price: float,
        avg_volume: int,
        expirations: Sequence[date],
        as_of: date,
    ) -> LiquidityScores:
        """Score liquidity from the ATM put/call of a ~monthly expiration."""
        if not expirations:
            return LiquidityScores()

        target = next(
            (
                exp for exp in expirations
                if LIQUIDITY_MIN_DTE <= days_to_expiration(exp, as_of) <= LIQUIDITY_MAX_DTE
            ),
            expirations[0],
        )
        try:
            chain = await self._provider.get_option_chain(symbol, target)
        except Exception as exc:
            logger.debug("Liquidity chain unavailable for %s %s: %s", symbol, target, exc)
            return LiquidityScores()

        atm = [
            c for c in (_closest_strike(chain.puts, price), _closest_strike(chain.calls, price))
            if c is not None
        ]
        if atm:
            avg_volume_opt = sum(c.volume for c in atm) / len(atm)
            avg_oi = sum(c.open_interest for c in atm) / len(atm)
            avg_spread = sum(spread_pct(c.bid, c.ask) for c in atm) / len(atm)
        else:
            avg_volume_opt = avg_oi = 0.0
            avg_spread = DEFAULT_SPREAD_PCT

        filters = self._settings.liquidity
        scores = score_liquidity(avg_volume_opt, avg_oi, avg_spread, filters)
        underlying_score = min(
            100.0, avg_volume / filters.min_underlying_volume * _UNDERLYING_VOLUME_MULTIPLIER
        )
        return LiquidityScores(
            volume_score=underlying_score,
            option_oi_score=scores.option_oi_score,
            spread_score=scores.spread_score,
            overall_score=scores.overall_score,
            meets_minimum=scores.meets_minimum,
        )

    async def analyze_symbols(
        self,
        symbols: Sequence[str],
        earnings_dates: Mapping[str, date] | None = None,
        as_of: date | None = None,
    ) -> dict[str, SymbolSignals]:
        """Analyze symbols in sequential batches; failed symbols are omitted."""
        earnings_dates = earnings_dates or {}
        results: dict[str, SymbolSignals] = {}

        for start in range(0, len(symbols), self._batch_size):
            batch = symbols[start:start + self._batch_size]
            outcomes = await asyncio.gather(
                *(self.analyze(s, earnings_dates.get(s), as_of) for s in batch),
                return_exceptions=True,
            )
            for symbol, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning("Signal analysis failed for %s: %s", symbol, outcome)
                    continue
                results[symbol] = outcome

        logger.info("Analyzed %d/%d symbols", len(results), len(symbols))
        return results
