"""Recompute run: regime → per-symbol signals → candidates → ranking.

One run computes a single MarketRegime up front and every strategy for
every symbol reads that same snapshot. Only a failed benchmark fetch
aborts the run; symbol, expiration, and chain failures are recorded in
the run's error list and the run carries on with what it has.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from incomedesk.analytics.indicators import days_to_expiration
from incomedesk.data.provider import MarketDataProvider
from incomedesk.models.regime import MarketRegime, SymbolSignals
from incomedesk.models.trade import TradePacket
from incomedesk.ranking.ranker import (
    DEFAULT_MAX_PER_SYMBOL,
    DEFAULT_MIN_SCORE,
    DEFAULT_TOP_PER_STRATEGY,
    RankingStats,
    TradeRanker,
)
from incomedesk.settings import DEFAULT_SYMBOLS, TradingSettings
from incomedesk.signals.regime import DEFAULT_BENCHMARK, RegimeDetector, RegimeUnavailableError
from incomedesk.signals.symbol import DEFAULT_BATCH_SIZE, SymbolAnalyzer
from incomedesk.strategies import BaseStrategy, RunContext, StrategyContext, get_all_strategies

logger = logging.getLogger(__name__)

# Expirations scanned per symbol
CANDIDATE_MIN_DTE = 14
CANDIDATE_MAX_DTE = 60
MAX_EXPIRATIONS_PER_SYMBOL = 4

# (symbol, index, total) -> None
ProgressCallback = Callable[[str, int, int], Awaitable[None]]


class RecomputeFailedError(RuntimeError):
    """The run could not produce a regime and was aborted."""

    def __init__(self, run_id: str, message: str) -> None:
        super().__init__(message)
        self.run_id = run_id


@dataclass(frozen=True)
class RecomputeOptions:
    workspace_id: str = "default"
    settings_version_id: str = "default"
    recompute_run_id: str | None = None
    symbols: tuple[str, ...] = DEFAULT_SYMBOLS
    earnings_dates: Mapping[str, date] = field(default_factory=dict)
    min_score: int = DEFAULT_MIN_SCORE
    top_per_strategy: int = DEFAULT_TOP_PER_STRATEGY
    max_per_symbol: int = DEFAULT_MAX_PER_SYMBOL
    apply_risk_budget: bool = True
    as_of: date | None = None


@dataclass
class RunStats:
    symbols_requested: int = 0
    symbols_processed: int = 0
    candidates_generated: int = 0
    candidates_after_filtering: int = 0
    by_strategy: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class RecomputeResult:
    run_id: str
    started_at: datetime
    finished_at: datetime
    regime: MarketRegime
    signals: dict[str, SymbolSignals]
    packets: tuple[TradePacket, ...]
    stats: RunStats
    ranking: RankingStats


class TradingEngine:
    """Runs the full recommendation pipeline against one data provider."""

    def __init__(
        self,
        provider: MarketDataProvider,
        strategies: Sequence[BaseStrategy] | None = None,
        benchmark: str = DEFAULT_BENCHMARK,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._provider = provider
        self._strategies = list(strategies) if strategies is not None else get_all_strategies()
        self._regime_detector = RegimeDetector(provider, benchmark=benchmark)
        self._batch_size = batch_size

    @property
    def provider(self) -> MarketDataProvider:
        return self._provider

    async def detect_regime(self, universe: Sequence[str] = DEFAULT_SYMBOLS) -> MarketRegime:
        return await self._regime_detector.detect(universe)

    async def recompute(
        self,
        settings: TradingSettings,
        options: RecomputeOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> RecomputeResult:
        """Run the pipeline once.

        Raises RecomputeFailedError if the market regime cannot be
        computed; no partial result is returned in that case.
        """
        options = options or RecomputeOptions()
        run_id = options.recompute_run_id or str(uuid.uuid4())
        as_of = options.as_of or date.today()
        symbols = list(options.symbols)
        started_at = datetime.now(UTC)
        stats = RunStats(symbols_requested=len(symbols))
        logger.info("Recompute %s started: %d symbols, provider=%s", run_id, len(symbols), self._provider.name)

        analyzer = SymbolAnalyzer(self._provider, settings, batch_size=self._batch_size)
        regime_task = asyncio.create_task(self._regime_detector.detect(symbols))
        signals_task = asyncio.create_task(
            analyzer.analyze_symbols(symbols, options.earnings_dates, as_of)
        )
        try:
            regime = await regime_task
        except RegimeUnavailableError as exc:
            signals_task.cancel()
            await asyncio.gather(signals_task, return_exceptions=True)
            logger.error("Recompute %s failed: %s", run_id, exc)
            raise RecomputeFailedError(run_id, str(exc)) from exc
        signals = await signals_task

        run = RunContext(
            workspace_id=options.workspace_id,
            settings_version_id=options.settings_version_id,
            risk_profile_preset=str(settings.risk_profile_preset),
            recompute_run_id=run_id,
        )

        packets: list[TradePacket] = []
        for index, symbol in enumerate(symbols, 1):
            if on_progress is not None:
                await on_progress(symbol, index, len(symbols))

            symbol_signals = signals.get(symbol)
            if symbol_signals is None:
                stats.errors.append(f"No signals for {symbol}")
                continue
            try:
                symbol_packets = await self._candidates_for_symbol(
                    symbol, symbol_signals, regime, settings, run, as_of, stats.errors
                )
            except Exception as exc:
                logger.warning("Candidate generation failed for %s: %s", symbol, exc)
                stats.errors.append(f"Error generating candidates for {symbol}: {exc}")
                continue
            stats.symbols_processed += 1
            packets.extend(symbol_packets)

        stats.candidates_generated = len(packets)
        stats.by_strategy = dict(Counter(str(p.strategy_type) for p in packets))

        ranked = TradeRanker.apply_all_filters(
            packets,
            settings,
            min_score=options.min_score,
            top_per_strategy=options.top_per_strategy,
            max_per_symbol=options.max_per_symbol,
            apply_risk_budget=options.apply_risk_budget,
        )
        stats.candidates_after_filtering = len(ranked)

        finished_at = datetime.now(UTC)
        logger.info(
            "Recompute %s finished: %d/%d symbols, %d candidates, %d after filtering, %d errors",
            run_id, stats.symbols_processed, len(symbols), stats.candidates_generated,
            stats.candidates_after_filtering, len(stats.errors),
        )
        return RecomputeResult(
            run_id=run_id,
            started_at=started_at,
            finished_at=finished_at,
            regime=regime,
            signals=signals,
            packets=tuple(ranked),
            stats=stats,
            ranking=TradeRanker.calculate_stats(ranked),
        )

    async def _candidates_for_symbol(
        self,
        symbol: str,
        signals: SymbolSignals,
        regime: MarketRegime,
        settings: TradingSettings,
        run: RunContext,
        as_of: date,
        errors: list[str],
    ) -> list[TradePacket]:
        quote, expirations = await asyncio.gather(
            self._provider.get_quote(symbol),
            self._provider.get_option_expirations(symbol),
        )
        targets = [
            exp for exp in expirations
            if CANDIDATE_MIN_DTE <= days_to_expiration(exp, as_of) <= CANDIDATE_MAX_DTE
        ][:MAX_EXPIRATIONS_PER_SYMBOL]

        packets: list[TradePacket] = []
        for expiration in targets:
            try:
                chain = await self._provider.get_option_chain(symbol, expiration)
            except Exception as exc:
                logger.debug("Chain unavailable for %s %s: %s", symbol, expiration, exc)
                errors.append(f"No chain for {symbol} {expiration.isoformat()}: {exc}")
                continue

            ctx = StrategyContext(
                quote=quote,
                chain=chain,
                signals=signals,
                regime=regime,
                settings=settings,
                as_of=as_of,
            )
            for strategy in self._strategies:
                if not strategy.should_consider(ctx):
                    continue
                for candidate in strategy.find_candidates(ctx):
                    packets.append(strategy.to_packet(candidate, ctx, run))
        return packets
