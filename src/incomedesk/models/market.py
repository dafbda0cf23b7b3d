from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum


class OptionType(StrEnum):
    CALL = "call"
    PUT = "put"


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    bid: float
    ask: float
    open: float
    high: float
    low: float
    previous_close: float
    volume: int
    avg_volume: int
    timestamp: datetime


@dataclass(frozen=True)
class HistoricalPrice:
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class OptionContract:
    symbol: str
    underlying: str
    expiration: date
    strike: float
    option_type: OptionType
    bid: float
    ask: float
    volume: int
    open_interest: int
    in_the_money: bool
    last: float | None = None
    implied_volatility: float | None = None
    delta: float | None = None
    gamma: float | None = None
    theta: float | None = None
    vega: float | None = None

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2


@dataclass(frozen=True)
class OptionChain:
    """One underlying and one expiration; calls and puts sorted by strike."""

    underlying: str
    expiration: date
    calls: tuple[OptionContract, ...] = field(default_factory=tuple)
    puts: tuple[OptionContract, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class VolatilityData:
    symbol: str
    current_iv: float | None = None
    iv_rank: float | None = None  # 0-100
    iv_percentile: float | None = None
    hv20: float | None = None  # annualized, percent
    hv50: float | None = None
    vix_proxy: float | None = None
