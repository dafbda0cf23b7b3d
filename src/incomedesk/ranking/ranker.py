"""Final selection over the run's full candidate pool.

All operations are pure: they return new lists and never touch the
packets themselves. ``apply_all_filters`` runs the stages in a fixed
order (score floor, per-strategy cap, per-symbol diversification,
risk budget); each stage can only shrink its input.

The risk-budget stage is a greedy first-fit by score, not an optimal
allocation. Output must stay reproducible, so keep it that way.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field

from incomedesk.analytics.indicators import round_half_up
from incomedesk.models.trade import StrategyType, TradePacket
from incomedesk.settings import TradingSettings

DEFAULT_MIN_SCORE = 40
DEFAULT_TOP_PER_STRATEGY = 3
DEFAULT_MAX_PER_SYMBOL = 2

_HISTOGRAM_BANDS: tuple[tuple[str, int, int], ...] = (
    ("0-19", 0, 19),
    ("20-39", 20, 39),
    ("40-59", 40, 59),
    ("60-79", 60, 79),
    ("80-100", 80, 100),
)


@dataclass
class RankingStats:
    count: int = 0
    avg_score: int = 0
    total_max_profit: float = 0.0
    total_max_loss: float = 0.0
    avg_conviction: int = 0
    avg_uncertainty: int = 0
    by_strategy: dict[str, int] = field(default_factory=dict)
    by_symbol: dict[str, int] = field(default_factory=dict)
    score_histogram: dict[str, int] = field(default_factory=dict)


class TradeRanker:
    """Stateless ranking and filtering of TradePackets."""

    @staticmethod
    def rank_by_score(packets: Sequence[TradePacket]) -> list[TradePacket]:
        """Descending by score; ties keep their incoming order."""
        return sorted(packets, key=lambda p: p.score, reverse=True)

    @staticmethod
    def filter_by_min_score(packets: Sequence[TradePacket], min_score: int) -> list[TradePacket]:
        return [p for p in packets if p.score >= min_score]

    @classmethod
    def top_per_strategy(cls, packets: Sequence[TradePacket], n: int) -> list[TradePacket]:
        grouped: dict[StrategyType, list[TradePacket]] = defaultdict(list)
        for packet in packets:
            grouped[packet.strategy_type].append(packet)

        kept: list[TradePacket] = []
        for group in grouped.values():
            kept.extend(cls.rank_by_score(group)[:n])
        return cls.rank_by_score(kept)

    @classmethod
    def diversify_by_symbol(cls, packets: Sequence[TradePacket], max_per_symbol: int) -> list[TradePacket]:
        counts: Counter[str] = Counter()
        kept: list[TradePacket] = []
        for packet in cls.rank_by_score(packets):
            if counts[packet.symbol] >= max_per_symbol:
                continue
            counts[packet.symbol] += 1
            kept.append(packet)
        return kept

    @classmethod
    def filter_by_risk_budget(
        cls, packets: Sequence[TradePacket], settings: TradingSettings
    ) -> list[TradePacket]:
        """Greedy first-fit: skip any packet that would overrun the budget.

        Later, lower-scored packets are still tried against what remains.
        """
        limits = settings.risk_limits
        budget = limits.effective_account_size * limits.max_total_risk_pct / 100

        total = 0.0
        kept: list[TradePacket] = []
        for packet in cls.rank_by_score(packets):
            risk = packet.risk_box.max_loss
            if total + risk <= budget:
                kept.append(packet)
                total += risk
        return kept

    @classmethod
    def apply_all_filters(
        cls,
        packets: Sequence[TradePacket],
        settings: TradingSettings,
        *,
        min_score: int = DEFAULT_MIN_SCORE,
        top_per_strategy: int = DEFAULT_TOP_PER_STRATEGY,
        max_per_symbol: int = DEFAULT_MAX_PER_SYMBOL,
        apply_risk_budget: bool = True,
    ) -> list[TradePacket]:
        result = cls.filter_by_min_score(packets, min_score)
        result = cls.top_per_strategy(result, top_per_strategy)
        result = cls.diversify_by_symbol(result, max_per_symbol)
        if apply_risk_budget:
            result = cls.filter_by_risk_budget(result, settings)
        return result

    @staticmethod
    def calculate_stats(packets: Sequence[TradePacket]) -> RankingStats:
        if not packets:
            return RankingStats(score_histogram={label: 0 for label, _, _ in _HISTOGRAM_BANDS})

        n = len(packets)
        histogram = {label: 0 for label, _, _ in _HISTOGRAM_BANDS}
        for packet in packets:
            for label, low, high in _HISTOGRAM_BANDS:
                if low <= packet.score <= high:
                    histogram[label] += 1
                    break

        return RankingStats(
            count=n,
            avg_score=round_half_up(sum(p.score for p in packets) / n),
            total_max_profit=sum(p.risk_box.max_profit for p in packets),
            total_max_loss=sum(p.risk_box.max_loss for p in packets),
            avg_conviction=round_half_up(sum(p.conviction.confidence for p in packets) / n),
            avg_uncertainty=round_half_up(sum(p.conviction.uncertainty for p in packets) / n),
            by_strategy=dict(Counter(str(p.strategy_type) for p in packets)),
            by_symbol=dict(Counter(p.symbol for p in packets)),
            score_histogram=histogram,
        )
