"""Market-data provider contract consumed by the pipeline.

Any source (simulated, delayed, live) can drive a recompute run as long
as it implements these coroutines. Providers raise DataUnavailableError
when a fetch fails or returns nothing; callers decide whether that is
fatal (benchmark) or just shrinks the sample (everything else).
"""

from __future__ import annotations

import abc
import asyncio
import logging
from datetime import date
from enum import StrEnum

from incomedesk.models.market import (
    HistoricalPrice,
    OptionChain,
    Quote,
    VolatilityData,
)

logger = logging.getLogger(__name__)


class DataUnavailableError(RuntimeError):
    """A fetch failed or returned no data for a symbol or leg."""


class HistoryRange(StrEnum):
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"

    @property
    def period(self) -> str:
        """yfinance-style period string."""
        return {"1M": "1mo", "3M": "3mo", "6M": "6mo", "1Y": "1y"}[self.value]

    @property
    def trading_days(self) -> int:
        return {"1M": 21, "3M": 63, "6M": 126, "1Y": 252}[self.value]


class MarketDataProvider(abc.ABC):
    """Abstract source of quotes, history, chains, and volatility."""

    name: str = "abstract"

    @abc.abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        ...

    @abc.abstractmethod
    async def get_historical_prices(
        self, symbol: str, history_range: HistoryRange
    ) -> list[HistoricalPrice]:
        """Daily bars ordered oldest to newest."""
        ...

    @abc.abstractmethod
    async def get_option_expirations(self, symbol: str) -> list[date]:
        ...

    @abc.abstractmethod
    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        ...

    @abc.abstractmethod
    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        ...

    async def get_batch_quotes(self, symbols: list[str]) -> dict[str, Quote]:
        """Quotes for many symbols; symbols that fail are left out."""
        results = await asyncio.gather(
            *(self.get_quote(s) for s in symbols), return_exceptions=True
        )
        quotes: dict[str, Quote] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.debug("Batch quote failed for %s: %s", symbol, result)
                continue
            quotes[symbol] = result
        return quotes
