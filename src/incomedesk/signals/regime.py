"""Market regime classification.

One MarketRegime is computed per recompute run from the benchmark's
trend and volatility, a breadth universe, and sector-ETF leadership.
Only the benchmark fetch is fatal; breadth and leadership are
best-effort samples.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from incomedesk.analytics.indicators import (
    classify_trend,
    classify_volatility,
    closes,
    historical_volatility,
    simple_moving_average,
    trend_score,
)
from incomedesk.data.provider import HistoryRange, MarketDataProvider
from incomedesk.models.regime import (
    Breadth,
    BreadthAssessment,
    DataQuality,
    MarketRegime,
    RiskPosture,
    SectorLeadership,
    TrendRegime,
    VolatilityRegime,
)

logger = logging.getLogger(__name__)

DEFAULT_BENCHMARK = "SPY"

SECTOR_ETFS: dict[str, str] = {
    "XLK": "Technology",
    "XLF": "Financials",
    "XLE": "Energy",
    "XLV": "Healthcare",
    "XLY": "Consumer Discretionary",
    "XLP": "Consumer Staples",
    "XLI": "Industrials",
    "XLU": "Utilities",
}


class RegimeUnavailableError(RuntimeError):
    """The benchmark's own data could not be fetched; the run cannot proceed."""


def risk_posture(trend: TrendRegime, volatility: VolatilityRegime) -> RiskPosture:
    calm = volatility in (VolatilityRegime.LOW, VolatilityRegime.NORMAL)
    stressed = volatility in (VolatilityRegime.HIGH, VolatilityRegime.PANIC)
    if trend.is_up:
        return RiskPosture.RISK_ON if calm else RiskPosture.NEUTRAL
    if trend.is_down:
        return RiskPosture.RISK_OFF
    return RiskPosture.RISK_OFF if stressed else RiskPosture.NEUTRAL


def assess_breadth(
    percent_above_50ma: float | None, adv_dec_ratio: float | None
) -> BreadthAssessment:
    """Bucket by % above the 50-day MA, else by advance/decline ratio."""
    if percent_above_50ma is not None:
        if percent_above_50ma >= 70:
            return BreadthAssessment.STRONG
        if percent_above_50ma >= 55:
            return BreadthAssessment.HEALTHY
        if percent_above_50ma >= 40:
            return BreadthAssessment.MIXED
        if percent_above_50ma >= 25:
            return BreadthAssessment.WEAK
        return BreadthAssessment.VERY_WEAK

    if adv_dec_ratio is not None:
        if adv_dec_ratio >= 2.0:
            return BreadthAssessment.STRONG
        if adv_dec_ratio >= 1.2:
            return BreadthAssessment.HEALTHY
        if adv_dec_ratio >= 0.8:
            return BreadthAssessment.MIXED
        if adv_dec_ratio >= 0.5:
            return BreadthAssessment.WEAK
        return BreadthAssessment.VERY_WEAK

    return BreadthAssessment.MIXED


class RegimeDetector:
    """Builds the shared market-state snapshot for a run."""

    def __init__(
        self,
        provider: MarketDataProvider,
        benchmark: str = DEFAULT_BENCHMARK,
        sectors: dict[str, str] | None = None,
    ) -> None:
        self._provider = provider
        self._benchmark = benchmark
        self._sectors = SECTOR_ETFS if sectors is None else sectors

    async def detect(self, universe: Sequence[str] = ()) -> MarketRegime:
        """Classify the market.

        Raises RegimeUnavailableError if the benchmark's history, quote,
        or volatility cannot be fetched.
        """
        try:
            history, quote, vol = await asyncio.gather(
                self._provider.get_historical_prices(self._benchmark, HistoryRange.ONE_YEAR),
                self._provider.get_quote(self._benchmark),
                self._provider.get_volatility_data(self._benchmark),
            )
        except Exception as exc:
            raise RegimeUnavailableError(
                f"Benchmark {self._benchmark} data unavailable: {exc}"
            ) from exc

        prices = closes(history)
        ma50 = simple_moving_average(prices, 50)
        ma200 = simple_moving_average(prices, 200)
        score = trend_score(quote.price, ma50, ma200)
        trend = classify_trend(score)

        hv20 = historical_volatility(prices, 20)
        if hv20 is None:
            hv20 = vol.hv20
        volatility = classify_volatility(vol.iv_rank, vol.current_iv, hv20)

        breadth = await self.compute_breadth(universe)
        leadership = await self.compute_leadership()

        missing = () if vol.iv_rank is not None else ("iv_rank",)
        now = datetime.now(UTC)
        regime = MarketRegime(
            timestamp=quote.timestamp,
            benchmark=self._benchmark,
            trend=trend,
            trend_score=round(score, 2),
            volatility_regime=volatility,
            risk_posture=risk_posture(trend, volatility),
            breadth=breadth,
            leadership=leadership,
            iv_rank=vol.iv_rank,
            data_quality=DataQuality(
                has_full_data=not missing,
                data_source=self._provider.name,
                missing_fields=missing,
            ),
            computed_at=now,
        )
        logger.info(
            "Regime %s: trend=%s (%.1f) vol=%s posture=%s breadth=%s",
            self._benchmark, regime.trend, score, regime.volatility_regime,
            regime.risk_posture, breadth.assessment,
        )
        return regime

    async def compute_breadth(self, universe: Sequence[str]) -> Breadth:
        advancing = declining = above = 0

        for symbol in universe:
            try:
                quote, history = await asyncio.gather(
                    self._provider.get_quote(symbol),
                    self._provider.get_historical_prices(symbol, HistoryRange.THREE_MONTHS),
                )
            except Exception as exc:
                logger.debug("Breadth sample skipped for %s: %s", symbol, exc)
                continue

            if quote.price > quote.previous_close:
                advancing += 1
            else:
                declining += 1

            ma50 = simple_moving_average(closes(history), 50)
            if ma50 is not None and quote.price > ma50:
                above += 1

        # Symbols too short for a 50-day MA still count toward the total
        total = advancing + declining
        adv_dec = advancing / declining if declining > 0 else None
        pct_above = round(above / total * 100, 1) if total > 0 else None
        return Breadth(
            advancing=advancing,
            declining=declining,
            adv_dec_ratio=adv_dec,
            percent_above_50ma=pct_above,
            above_50ma=above,
            sample_size=total,
            assessment=assess_breadth(pct_above, adv_dec),
        )

    async def compute_leadership(self) -> tuple[SectorLeadership, ...] | None:
        sectors: list[SectorLeadership] = []
        for symbol, name in self._sectors.items():
            try:
                quote, history = await asyncio.gather(
                    self._provider.get_quote(symbol),
                    self._provider.get_historical_prices(symbol, HistoryRange.ONE_YEAR),
                )
            except Exception as exc:
                logger.debug("Sector %s skipped: %s", symbol, exc)
                continue

            prices = closes(history)
            score = trend_score(
                quote.price,
                simple_moving_average(prices, 50),
                simple_moving_average(prices, 200),
            )
            sectors.append(
                SectorLeadership(
                    symbol=symbol, name=name, trend_score=round(score, 2), trend=classify_trend(score)
                )
            )

        if not sectors:
            return None
        sectors.sort(key=lambda s: s.trend_score, reverse=True)
        return tuple(sectors)
