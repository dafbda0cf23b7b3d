from __future__ import annotations

from incomedesk.ranking.ranker import RankingStats, TradeRanker

__all__ = ["RankingStats", "TradeRanker"]
