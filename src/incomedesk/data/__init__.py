from __future__ import annotations

from incomedesk.data.provider import DataUnavailableError, HistoryRange, MarketDataProvider
from incomedesk.data.simulated import SIMULATED_SYMBOLS, SimulatedProvider

__all__ = [
    "DataUnavailableError",
    "HistoryRange",
    "MarketDataProvider",
    "SIMULATED_SYMBOLS",
    "SimulatedProvider",
    "build_provider",
]


def build_provider(name: str, cache_ttl_seconds: int = 300) -> MarketDataProvider:
    """Construct a provider by config name (``simulated`` or ``yfinance``)."""
    if name == "simulated":
        return SimulatedProvider()
    if name == "yfinance":
        from incomedesk.data.yfinance_provider import YFinanceProvider

        return YFinanceProvider(cache_ttl_seconds=cache_ttl_seconds)
    raise ValueError(f"Unknown data provider: {name}")
