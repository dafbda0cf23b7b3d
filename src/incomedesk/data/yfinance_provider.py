from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable

import pandas as pd
import yfinance as yf

from incomedesk.analytics.indicators import clamp, closes, historical_volatility
from incomedesk.data.provider import DataUnavailableError, HistoryRange, MarketDataProvider
from incomedesk.models.market import (
    HistoricalPrice,
    OptionChain,
    OptionContract,
    OptionType,
    Quote,
    VolatilityData,
)

logger = logging.getLogger(__name__)

RISK_FREE_RATE = 0.05
_MIN_YEARS = 0.001
_IV_TARGET_DTE = 30


def _to_float(value: Any) -> float | None:
    """Safely convert a yfinance value (possibly NaN) to float."""
    if value is None:
        return None
    try:
        result = float(value)
    except (ValueError, TypeError):
        return None
    if math.isnan(result):
        return None
    return result


def _to_int(value: Any) -> int:
    result = _to_float(value)
    return int(result) if result is not None else 0


@dataclass
class CircuitBreaker:
    """Opens when the failure rate over a sliding window reaches ``threshold``."""

    threshold: float = 0.50
    window_seconds: int = 300
    min_calls: int = 20
    _outcomes: deque[tuple[float, bool]] = field(default_factory=deque)

    def record(self, ok: bool) -> None:
        now = time.monotonic()
        self._prune(now)
        self._outcomes.append((now, ok))

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._outcomes and self._outcomes[0][0] < cutoff:
            self._outcomes.popleft()

    @property
    def failure_rate(self) -> float:
        self._prune(time.monotonic())
        if not self._outcomes:
            return 0.0
        return sum(1 for _, ok in self._outcomes if not ok) / len(self._outcomes)

    @property
    def is_tripped(self) -> bool:
        self._prune(time.monotonic())
        if len(self._outcomes) < self.min_calls:
            return False
        return self.failure_rate >= self.threshold


def _norm_cdf(x: float) -> float:
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def _norm_pdf(x: float) -> float:
    return math.exp(-0.5 * x * x) / math.sqrt(2 * math.pi)


def black_scholes_greeks(
    spot: float,
    strike: float,
    years: float,
    rate: float,
    sigma: float,
    option_type: OptionType,
) -> dict[str, float]:
    """Delta, gamma, theta (per day), and vega (per vol point)."""
    if spot <= 0 or strike <= 0 or years <= 0 or sigma <= 0:
        return {"delta": 0.0, "gamma": 0.0, "theta": 0.0, "vega": 0.0}

    sqrt_t = math.sqrt(years)
    d1 = (math.log(spot / strike) + (rate + sigma * sigma / 2) * years) / (sigma * sqrt_t)
    d2 = d1 - sigma * sqrt_t
    discount = math.exp(-rate * years)

    gamma = _norm_pdf(d1) / (spot * sigma * sqrt_t)
    vega = spot * _norm_pdf(d1) * sqrt_t / 100
    decay = -(spot * _norm_pdf(d1) * sigma) / (2 * sqrt_t)
    if option_type is OptionType.CALL:
        delta = _norm_cdf(d1)
        theta = (decay - rate * strike * discount * _norm_cdf(d2)) / 365
    else:
        delta = _norm_cdf(d1) - 1
        theta = (decay + rate * strike * discount * _norm_cdf(-d2)) / 365

    return {
        "delta": round(delta, 3),
        "gamma": round(gamma, 4),
        "theta": round(theta, 3),
        "vega": round(vega, 3),
    }


class YFinanceProvider(MarketDataProvider):
    """Delayed market data from yfinance with caching and circuit breaking.

    yfinance is synchronous, so every call runs in a worker thread.
    Greeks are not published by Yahoo and are computed with Black-Scholes
    from the listed implied volatility. Each fetch kind (quote, history,
    expirations, chain) has its own breaker, so a run of chain failures on
    symbols without listed options never blocks benchmark quotes.
    """

    name = "yfinance"

    def __init__(
        self,
        cache_ttl_seconds: int = 300,
        risk_free_rate: float = RISK_FREE_RATE,
        breaker_factory: Callable[[], CircuitBreaker] = CircuitBreaker,
    ) -> None:
        self._cache: dict[str, tuple[Any, datetime]] = {}
        self._cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._breakers: dict[str, CircuitBreaker] = {}
        self._breaker_factory = breaker_factory
        self._risk_free_rate = risk_free_rate

    def breaker(self, kind: str) -> CircuitBreaker:
        if kind not in self._breakers:
            self._breakers[kind] = self._breaker_factory()
        return self._breakers[kind]

    def _get_cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if datetime.now(UTC) - stored_at > self._cache_ttl:
            del self._cache[key]
            return None
        return value

    def _set_cached(self, key: str, value: Any) -> None:
        self._cache[key] = (value, datetime.now(UTC))

    async def _fetch(self, key: str, label: str, fn: Callable[[], Any]) -> Any:
        """Run a blocking fetch through the cache and its kind's breaker.

        Cache keys are ``kind:...``; the kind selects the breaker.
        """
        cached = self._get_cached(key)
        if cached is not None:
            return cached

        kind = key.partition(":")[0]
        breaker = self.breaker(kind)
        if breaker.is_tripped:
            logger.warning(
                "Circuit breaker for %s tripped (failure_rate=%.2f), skipping %s",
                kind,
                breaker.failure_rate,
                label,
            )
            raise DataUnavailableError(f"Circuit breaker open: {label}")

        try:
            value = await asyncio.to_thread(fn)
        except DataUnavailableError:
            breaker.record(ok=False)
            raise
        except Exception as exc:
            breaker.record(ok=False)
            raise DataUnavailableError(f"Failed to fetch {label}: {exc}") from exc

        breaker.record(ok=True)
        self._set_cached(key, value)
        return value

    # ------------------------------------------------------------------
    # Quotes and history
    # ------------------------------------------------------------------

    async def get_quote(self, symbol: str) -> Quote:
        return await self._fetch(f"quote:{symbol}", f"quote {symbol}", lambda: self._quote_raw(symbol))

    def _quote_raw(self, symbol: str) -> Quote:
        info = yf.Ticker(symbol).info
        if not info:
            raise DataUnavailableError(f"No quote for {symbol}")
        price = _to_float(info.get("regularMarketPrice") or info.get("currentPrice"))
        if price is None:
            raise DataUnavailableError(f"No quote for {symbol}")
        return Quote(
            symbol=symbol,
            price=price,
            bid=_to_float(info.get("bid")) or price,
            ask=_to_float(info.get("ask")) or price,
            open=_to_float(info.get("regularMarketOpen")) or 0.0,
            high=_to_float(info.get("regularMarketDayHigh")) or 0.0,
            low=_to_float(info.get("regularMarketDayLow")) or 0.0,
            previous_close=_to_float(info.get("regularMarketPreviousClose")) or 0.0,
            volume=_to_int(info.get("regularMarketVolume")),
            avg_volume=_to_int(info.get("averageDailyVolume10Day") or info.get("averageVolume")),
            timestamp=datetime.now(UTC),
        )

    async def get_historical_prices(
        self, symbol: str, history_range: HistoryRange
    ) -> list[HistoricalPrice]:
        return await self._fetch(
            f"history:{symbol}:{history_range}",
            f"history {symbol} {history_range}",
            lambda: self._history_raw(symbol, history_range),
        )

    def _history_raw(self, symbol: str, history_range: HistoryRange) -> list[HistoricalPrice]:
        df = yf.Ticker(symbol).history(period=history_range.period, interval="1d", auto_adjust=False)
        if df is None or df.empty:
            raise DataUnavailableError(f"No historical data for {symbol}")
        df = df.dropna(subset=["Close"])
        return [
            HistoricalPrice(
                date=pd.Timestamp(idx).date(),
                open=_to_float(row["Open"]) or 0.0,
                high=_to_float(row["High"]) or 0.0,
                low=_to_float(row["Low"]) or 0.0,
                close=float(row["Close"]),
                volume=_to_int(row["Volume"]),
            )
            for idx, row in df.iterrows()
        ]

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    async def get_option_expirations(self, symbol: str) -> list[date]:
        return await self._fetch(
            f"expirations:{symbol}", f"expirations {symbol}", lambda: self._expirations_raw(symbol)
        )

    def _expirations_raw(self, symbol: str) -> list[date]:
        raw = yf.Ticker(symbol).options
        if not raw:
            raise DataUnavailableError(f"No option expirations for {symbol}")
        today = date.today()
        expirations = sorted(d for d in (date.fromisoformat(s) for s in raw) if d >= today)
        if not expirations:
            raise DataUnavailableError(f"No future option expirations for {symbol}")
        return expirations

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        quote = await self.get_quote(symbol)
        return await self._fetch(
            f"chain:{symbol}:{expiration.isoformat()}",
            f"chain {symbol} {expiration}",
            lambda: self._chain_raw(symbol, expiration, quote.price),
        )

    def _chain_raw(self, symbol: str, expiration: date, spot: float) -> OptionChain:
        chain = yf.Ticker(symbol).option_chain(expiration.isoformat())
        if chain.calls.empty and chain.puts.empty:
            raise DataUnavailableError(f"No options chain for {symbol} expiring {expiration}")
        years = max((expiration - date.today()).days / 365, _MIN_YEARS)
        calls = self._contracts(chain.calls, symbol, expiration, spot, years, OptionType.CALL)
        puts = self._contracts(chain.puts, symbol, expiration, spot, years, OptionType.PUT)
        return OptionChain(underlying=symbol, expiration=expiration, calls=calls, puts=puts)

    def _contracts(
        self,
        frame: pd.DataFrame,
        symbol: str,
        expiration: date,
        spot: float,
        years: float,
        option_type: OptionType,
    ) -> tuple[OptionContract, ...]:
        contracts: list[OptionContract] = []
        for _, row in frame.sort_values("strike").iterrows():
            strike = float(row["strike"])
            iv = _to_float(row.get("impliedVolatility"))
            greeks: dict[str, float | None] = {"delta": None, "gamma": None, "theta": None, "vega": None}
            if iv and iv > 0:
                greeks.update(
                    black_scholes_greeks(spot, strike, years, self._risk_free_rate, iv, option_type)
                )
            contracts.append(
                OptionContract(
                    symbol=str(row.get("contractSymbol", "")),
                    underlying=symbol,
                    expiration=expiration,
                    strike=strike,
                    option_type=option_type,
                    bid=_to_float(row.get("bid")) or 0.0,
                    ask=_to_float(row.get("ask")) or 0.0,
                    last=_to_float(row.get("lastPrice")),
                    volume=_to_int(row.get("volume")),
                    open_interest=_to_int(row.get("openInterest")),
                    implied_volatility=iv,
                    in_the_money=strike < spot if option_type is OptionType.CALL else strike > spot,
                    **greeks,
                )
            )
        return tuple(contracts)

    # ------------------------------------------------------------------
    # Volatility
    # ------------------------------------------------------------------

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        """Realized vol from 3M history plus an ATM-IV-based rank estimate.

        Yahoo publishes no IV history, so IV rank is approximated from
        where the ~30 DTE at-the-money IV sits relative to HV50.
        """
        history = await self.get_historical_prices(symbol, HistoryRange.THREE_MONTHS)
        prices = closes(history)
        hv20 = historical_volatility(prices, 20)
        hv50 = historical_volatility(prices, 50)

        current_iv: float | None = None
        iv_rank: float | None = None
        try:
            expirations = await self.get_option_expirations(symbol)
            target = date.today() + timedelta(days=_IV_TARGET_DTE)
            nearest = min(expirations, key=lambda d: abs((d - target).days))
            chain = await self.get_option_chain(symbol, nearest)
            quote = await self.get_quote(symbol)
            if chain.calls:
                atm = min(chain.calls, key=lambda c: abs(c.strike - quote.price))
                if atm.implied_volatility:
                    current_iv = atm.implied_volatility * 100
                    if hv50:
                        iv_rank = clamp((current_iv - hv50) / hv50 * 100 + 50, 0, 100)
        except DataUnavailableError as exc:
            logger.debug("No ATM IV for %s: %s", symbol, exc)

        return VolatilityData(
            symbol=symbol,
            current_iv=current_iv,
            iv_rank=iv_rank,
            iv_percentile=iv_rank,
            hv20=hv20,
            hv50=hv50,
        )
