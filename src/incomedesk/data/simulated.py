"""Deterministic simulated market data.

Seed quotes for the default universe plus synthetic history, expirations,
chains, and volatility. Every random draw comes from a generator seeded
by (symbol, topic), so the same symbol and as-of date always produce the
same data.
"""

from __future__ import annotations

import math
import random
import zlib
from datetime import UTC, date, datetime, time, timedelta

import pandas as pd

from incomedesk.analytics.indicators import closes, historical_volatility
from incomedesk.data.provider import DataUnavailableError, HistoryRange, MarketDataProvider
from incomedesk.models.market import (
    HistoricalPrice,
    OptionChain,
    OptionContract,
    OptionType,
    Quote,
    VolatilityData,
)

# symbol: (price, bid, ask, open, high, low, previous_close, volume, avg_volume)
SEED_QUOTES: dict[str, tuple[float, float, float, float, float, float, float, int, int]] = {
    "SPY": (585.42, 585.40, 585.44, 583.50, 586.20, 582.80, 583.15, 45_000_000, 52_000_000),
    "QQQ": (512.35, 512.32, 512.38, 510.20, 513.80, 509.50, 510.05, 32_000_000, 38_000_000),
    "IWM": (225.18, 225.15, 225.21, 224.50, 226.30, 223.90, 224.25, 22_000_000, 25_000_000),
    "DIA": (428.55, 428.52, 428.58, 427.20, 429.40, 426.80, 427.10, 3_500_000, 4_000_000),
    "AAPL": (242.85, 242.82, 242.88, 241.50, 243.60, 240.90, 241.20, 48_000_000, 55_000_000),
    "MSFT": (438.22, 438.18, 438.26, 436.80, 439.50, 435.60, 436.50, 18_000_000, 22_000_000),
    "AMZN": (228.45, 228.42, 228.48, 227.20, 229.80, 226.50, 227.10, 35_000_000, 42_000_000),
    "NVDA": (142.68, 142.65, 142.71, 141.20, 143.80, 140.50, 141.00, 280_000_000, 320_000_000),
    "META": (612.35, 612.30, 612.40, 609.80, 614.20, 608.50, 609.50, 12_000_000, 15_000_000),
    "GOOGL": (198.42, 198.40, 198.44, 197.30, 199.20, 196.80, 197.20, 22_000_000, 28_000_000),
    "TSLA": (425.80, 425.75, 425.85, 422.50, 428.40, 420.30, 422.20, 85_000_000, 95_000_000),
    "XLK": (238.50, 238.48, 238.52, 237.20, 239.40, 236.50, 237.10, 8_000_000, 9_500_000),
    "XLF": (48.25, 48.24, 48.26, 47.90, 48.50, 47.70, 47.85, 28_000_000, 32_000_000),
    "XLE": (85.42, 85.40, 85.44, 85.80, 86.20, 84.90, 85.70, 15_000_000, 18_000_000),
    "XLV": (148.30, 148.28, 148.32, 147.80, 148.90, 147.50, 147.70, 6_000_000, 7_500_000),
    "XLY": (225.15, 225.12, 225.18, 224.20, 226.00, 223.80, 224.10, 4_500_000, 5_500_000),
    "XLP": (82.45, 82.44, 82.46, 82.20, 82.70, 82.00, 82.15, 9_000_000, 11_000_000),
    "XLI": (138.20, 138.18, 138.22, 137.50, 138.80, 137.20, 137.40, 7_000_000, 8_500_000),
    "XLU": (78.65, 78.64, 78.66, 78.30, 79.00, 78.10, 78.25, 10_000_000, 12_000_000),
}

SIMULATED_SYMBOLS: tuple[str, ...] = tuple(SEED_QUOTES)

_HIGH_VOL_SYMBOLS = ("TSLA", "NVDA")
_DAILY_DRIFT = 0.0003
_STRIKES_EACH_SIDE = 15
_WEEKLY_EXPIRATIONS = 8
_MONTHLY_EXPIRATIONS = 4


def _rng(symbol: str, topic: str) -> random.Random:
    return random.Random(zlib.crc32(f"{symbol}:{topic}".encode()))


def _base_iv(symbol: str) -> float:
    """Annualized IV as a fraction."""
    if symbol in _HIGH_VOL_SYMBOLS:
        return 0.45
    if symbol.startswith("X"):
        return 0.18
    return 0.22


def _strike_interval(price: float) -> float:
    if price > 500:
        return 5.0
    if price > 200:
        return 2.5
    if price > 50:
        return 1.0
    return 0.5


def _next_friday(day: date) -> date:
    return day + timedelta(days=(4 - day.weekday()) % 7 or 7)


def _third_friday(year: int, month: int) -> date:
    first = date(year, month, 1)
    first_friday = first + timedelta(days=(4 - first.weekday()) % 7)
    return first_friday + timedelta(weeks=2)


def generate_expirations(as_of: date) -> list[date]:
    """Weekly Fridays for eight weeks plus four monthly third-Fridays."""
    expirations: set[date] = set()
    friday = _next_friday(as_of)
    for i in range(_WEEKLY_EXPIRATIONS):
        expirations.add(friday + timedelta(weeks=i))

    for m in range(1, _MONTHLY_EXPIRATIONS + 1):
        month_index = as_of.month - 1 + m
        expiry = _third_friday(as_of.year + month_index // 12, month_index % 12 + 1)
        if expiry > as_of:
            expirations.add(expiry)

    return sorted(expirations)


class SimulatedProvider(MarketDataProvider):
    """Offline provider for development, demos, and tests."""

    name = "simulated"

    def __init__(
        self,
        as_of: date | None = None,
        seed_quotes: dict[str, tuple] | None = None,
    ) -> None:
        self._as_of = as_of or date.today()
        self._seeds = seed_quotes if seed_quotes is not None else SEED_QUOTES
        self._history_cache: dict[tuple[str, HistoryRange], list[HistoricalPrice]] = {}

    @property
    def as_of(self) -> date:
        return self._as_of

    async def get_quote(self, symbol: str) -> Quote:
        seed = self._seeds.get(symbol)
        if seed is None:
            raise DataUnavailableError(f"Unknown symbol: {symbol}")
        price, bid, ask, open_, high, low, prev_close, volume, avg_volume = seed
        return Quote(
            symbol=symbol,
            price=price,
            bid=bid,
            ask=ask,
            open=open_,
            high=high,
            low=low,
            previous_close=prev_close,
            volume=volume,
            avg_volume=avg_volume,
            timestamp=datetime.combine(self._as_of, time(16, 0), tzinfo=UTC),
        )

    async def get_historical_prices(
        self, symbol: str, history_range: HistoryRange
    ) -> list[HistoricalPrice]:
        key = (symbol, history_range)
        if key not in self._history_cache:
            quote = await self.get_quote(symbol)
            self._history_cache[key] = self._generate_history(
                symbol, quote.price, quote.avg_volume, history_range.trading_days
            )
        return self._history_cache[key]

    def _generate_history(
        self, symbol: str, last_price: float, avg_volume: int, days: int
    ) -> list[HistoricalPrice]:
        """Random walk walked backwards so the newest close equals the quote."""
        rng = _rng(symbol, "history")
        vol = 0.025 if symbol in _HIGH_VOL_SYMBOLS else 0.012
        sessions = pd.bdate_range(end=self._as_of, periods=days)

        path = [last_price]
        for _ in range(days - 1):
            daily_return = (rng.random() - 0.5) * 2 * vol + _DAILY_DRIFT
            path.append(path[-1] / (1 + daily_return))
        path.reverse()

        bars: list[HistoricalPrice] = []
        for session, close in zip(sessions, path):
            day_range = close * vol
            open_ = close + (rng.random() - 0.5) * day_range
            bars.append(
                HistoricalPrice(
                    date=session.date(),
                    open=round(open_, 2),
                    high=round(max(open_, close) + rng.random() * day_range * 0.5, 2),
                    low=round(min(open_, close) - rng.random() * day_range * 0.5, 2),
                    close=round(close, 2),
                    volume=int(avg_volume * (0.7 + rng.random() * 0.6)),
                )
            )
        if bars:
            last = bars[-1]
            bars[-1] = HistoricalPrice(
                date=last.date, open=last.open, high=max(last.high, last_price),
                low=min(last.low, last_price), close=last_price, volume=last.volume,
            )
        return bars

    async def get_option_expirations(self, symbol: str) -> list[date]:
        await self.get_quote(symbol)
        return generate_expirations(self._as_of)

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        quote = await self.get_quote(symbol)
        price = quote.price
        dte = max(1, (expiration - self._as_of).days)
        rng = _rng(symbol, f"chain:{expiration.isoformat()}")

        interval = _strike_interval(price)
        base_strike = round(price / interval) * interval
        base_iv = _base_iv(symbol)
        base_oi = 2000 if symbol.startswith("X") else 5000
        base_vol = 500 if symbol.startswith("X") else 1500
        stamp = expiration.strftime("%y%m%d")

        calls: list[OptionContract] = []
        puts: list[OptionContract] = []
        for i in range(-_STRIKES_EACH_SIDE, _STRIKES_EACH_SIDE + 1):
            strike = round(base_strike + i * interval, 2)
            moneyness = (strike - price) / price
            iv = base_iv + abs(moneyness) * 0.5
            time_value = math.sqrt(dte / 365) * price * iv
            extrinsic = time_value * math.exp(-abs(moneyness) * 2) * 0.5
            spread = 0.08 if abs(moneyness) > 0.1 else 0.04 if abs(moneyness) > 0.05 else 0.02
            liquidity = math.exp(-abs(moneyness) * 10)

            call_itm = strike < price
            shift = min(0.5, abs(moneyness) * 3)
            call_delta = 0.5 + shift if call_itm else 0.5 - shift

            for option_type, intrinsic, delta, itm in (
                (OptionType.CALL, max(0.0, price - strike), call_delta, call_itm),
                (OptionType.PUT, max(0.0, strike - price), call_delta - 1, strike > price),
            ):
                mid = intrinsic + extrinsic
                contract = OptionContract(
                    symbol=f"{symbol}{stamp}{'C' if option_type is OptionType.CALL else 'P'}{int(round(strike * 1000)):08d}",
                    underlying=symbol,
                    expiration=expiration,
                    strike=strike,
                    option_type=option_type,
                    bid=round(max(0.01, mid * (1 - spread / 2)), 2),
                    ask=round(max(0.02, mid * (1 + spread / 2)), 2),
                    last=round(mid, 2),
                    volume=int(base_vol * liquidity * (0.5 + rng.random())),
                    open_interest=int(base_oi * liquidity * (0.5 + rng.random())),
                    implied_volatility=round(iv, 4),
                    delta=round(delta, 2),
                    gamma=round(0.05 * liquidity, 3),
                    theta=round(-mid / dte, 2),
                    vega=round(price * 0.01 * math.sqrt(dte / 365), 2),
                    in_the_money=itm,
                )
                (calls if option_type is OptionType.CALL else puts).append(contract)

        return OptionChain(
            underlying=symbol, expiration=expiration, calls=tuple(calls), puts=tuple(puts)
        )

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        history = await self.get_historical_prices(symbol, HistoryRange.THREE_MONTHS)
        prices = closes(history)
        rng = _rng(symbol, "volatility")

        hv20 = historical_volatility(prices, 20)
        hv50 = historical_volatility(prices, 50)
        current_iv = _base_iv(symbol) * 100 + (rng.random() - 0.5) * 5
        iv_rank = float(rng.randint(30, 69))
        iv_percentile = max(0.0, min(100.0, iv_rank + rng.randint(-5, 4)))

        return VolatilityData(
            symbol=symbol,
            current_iv=round(current_iv, 2),
            iv_rank=iv_rank,
            iv_percentile=iv_percentile,
            hv20=round(hv20, 2) if hv20 is not None else None,
            hv50=round(hv50, 2) if hv50 is not None else None,
            vix_proxy=round(16 + rng.random() * 5, 2) if symbol == "SPY" else None,
        )
