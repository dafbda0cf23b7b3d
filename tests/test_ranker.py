from __future__ import annotations

from collections import Counter
from dataclasses import replace

import pytest

from factories import make_packet
from incomedesk.models.trade import StrategyType
from incomedesk.ranking import RankingStats, TradeRanker
from incomedesk.settings import get_default_settings

CSP = StrategyType.CASH_SECURED_PUT
CC = StrategyType.COVERED_CALL
PCS = StrategyType.PUT_CREDIT_SPREAD


def _scores(packets) -> list[int]:
    return [p.score for p in packets]


class TestRankByScore:
    def test_descending(self) -> None:
        packets = [make_packet(score=s) for s in (40, 90, 65)]
        assert _scores(TradeRanker.rank_by_score(packets)) == [90, 65, 40]

    def test_ties_keep_input_order(self) -> None:
        first = make_packet("AAPL", score=70)
        second = make_packet("MSFT", score=70)
        assert TradeRanker.rank_by_score([first, second]) == [first, second]

    def test_does_not_mutate_input(self) -> None:
        packets = [make_packet(score=s) for s in (40, 90)]
        TradeRanker.rank_by_score(packets)
        assert _scores(packets) == [40, 90]


class TestFilters:
    def test_min_score_inclusive(self) -> None:
        packets = [make_packet(score=s) for s in (39, 40, 41)]
        assert _scores(TradeRanker.filter_by_min_score(packets, 40)) == [40, 41]

    def test_top_per_strategy_example(self) -> None:
        packets = [make_packet(strategy_type=CSP, score=s) for s in (90, 85, 80, 75, 70)]
        packets.append(make_packet(strategy_type=CC, score=60))
        assert _scores(TradeRanker.top_per_strategy(packets, 3)) == [90, 85, 80, 60]

    def test_diversify_by_symbol(self) -> None:
        packets = [
            make_packet("AAPL", CSP, 90),
            make_packet("AAPL", PCS, 80),
            make_packet("AAPL", CC, 70),
            make_packet("MSFT", CSP, 85),
        ]
        kept = TradeRanker.diversify_by_symbol(packets, 2)
        assert _scores(kept) == [90, 85, 80]
        assert Counter(p.symbol for p in kept)["AAPL"] == 2

    def test_risk_budget_skips_and_continues(self) -> None:
        # Balanced: 15% of the default 100k account
        packets = [
            make_packet("AAPL", score=90, max_loss=10_000),
            make_packet("MSFT", score=85, max_loss=8_000),
            make_packet("NVDA", score=80, max_loss=5_000),
        ]
        kept = TradeRanker.filter_by_risk_budget(packets, get_default_settings())
        assert [p.symbol for p in kept] == ["AAPL", "NVDA"]
        assert sum(p.risk_box.max_loss for p in kept) <= 15_000

    def test_risk_budget_uses_account_size(self) -> None:
        settings = get_default_settings()
        settings = replace(settings, risk_limits=replace(settings.risk_limits, account_size=1_000_000))
        packets = [make_packet(score=s, max_loss=20_000) for s in (90, 80, 70)]
        assert len(TradeRanker.filter_by_risk_budget(packets, settings)) == 3


class TestApplyAllFilters:
    def _pool(self):
        pool = []
        for i, symbol in enumerate(("AAPL", "MSFT", "NVDA", "SPY")):
            for j, strategy in enumerate((CSP, CC, PCS)):
                pool.append(make_packet(symbol, strategy, score=95 - i * 7 - j * 11, max_loss=1_500 + i * 900))
        return pool

    def test_stages_are_monotonic(self) -> None:
        pool = self._pool()
        settings = get_default_settings()
        stage1 = TradeRanker.filter_by_min_score(pool, 40)
        stage2 = TradeRanker.top_per_strategy(stage1, 3)
        stage3 = TradeRanker.diversify_by_symbol(stage2, 2)
        stage4 = TradeRanker.filter_by_risk_budget(stage3, settings)

        for before, after in ((pool, stage1), (stage1, stage2), (stage2, stage3), (stage3, stage4)):
            assert len(after) <= len(before)
            assert all(p in before for p in after)

        assert TradeRanker.apply_all_filters(pool, settings) == stage4

    def test_invariants_hold(self) -> None:
        settings = get_default_settings()
        result = TradeRanker.apply_all_filters(self._pool(), settings, max_per_symbol=1)

        assert all(p.score >= 40 for p in result)
        assert max(Counter(p.symbol for p in result).values()) <= 1
        assert max(Counter(p.strategy_type for p in result).values()) <= 3
        assert sum(p.risk_box.max_loss for p in result) <= 15_000
        assert _scores(result) == sorted(_scores(result), reverse=True)

    def test_risk_budget_optional(self) -> None:
        pool = [make_packet(s, score=90, max_loss=50_000) for s in ("AAPL", "MSFT")]
        settings = get_default_settings()
        assert TradeRanker.apply_all_filters(pool, settings) == []
        assert len(TradeRanker.apply_all_filters(pool, settings, apply_risk_budget=False)) == 2

    def test_empty(self) -> None:
        assert TradeRanker.apply_all_filters([], get_default_settings()) == []


class TestCalculateStats:
    def test_stats(self) -> None:
        packets = [
            make_packet("AAPL", CSP, 90, max_loss=1000, confidence=80, uncertainty=10, max_profit=200),
            make_packet("MSFT", CSP, 85, max_loss=500, confidence=70, uncertainty=20, max_profit=100),
            make_packet("AAPL", PCS, 60, max_loss=400, confidence=55, uncertainty=35, max_profit=110),
        ]
        stats = TradeRanker.calculate_stats(packets)

        assert stats.count == 3
        assert stats.avg_score == 78
        assert stats.total_max_profit == pytest.approx(410)
        assert stats.total_max_loss == pytest.approx(1900)
        assert stats.avg_conviction == 68
        assert stats.avg_uncertainty == 22
        assert stats.by_strategy == {"cash_secured_put": 2, "put_credit_spread": 1}
        assert stats.by_symbol == {"AAPL": 2, "MSFT": 1}
        assert stats.score_histogram == {"0-19": 0, "20-39": 0, "40-59": 0, "60-79": 1, "80-100": 2}

    def test_empty(self) -> None:
        stats = TradeRanker.calculate_stats([])
        assert stats == RankingStats(score_histogram={"0-19": 0, "20-39": 0, "40-59": 0, "60-79": 0, "80-100": 0})
