from __future__ import annotations

from incomedesk.strategies.base import (
    BaseStrategy,
    RunContext,
    StrategyContext,
    build_conviction,
    make_component,
    make_reason,
    total_score,
)
from incomedesk.strategies.cash_secured_put import CashSecuredPutStrategy
from incomedesk.strategies.covered_call import CoveredCallStrategy
from incomedesk.strategies.credit_spread import CreditSpreadStrategy

__all__ = [
    "BaseStrategy",
    "CashSecuredPutStrategy",
    "CoveredCallStrategy",
    "CreditSpreadStrategy",
    "RunContext",
    "StrategyContext",
    "build_conviction",
    "get_all_strategies",
    "make_component",
    "make_reason",
    "total_score",
]


def get_all_strategies() -> list[BaseStrategy]:
    return [
        CashSecuredPutStrategy(),
        CoveredCallStrategy(),
        CreditSpreadStrategy.puts(),
        CreditSpreadStrategy.calls(),
    ]
