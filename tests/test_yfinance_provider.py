from __future__ import annotations

import asyncio
import math
import time
from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from incomedesk.data.provider import DataUnavailableError, HistoryRange
from incomedesk.data.yfinance_provider import (
    CircuitBreaker,
    YFinanceProvider,
    _to_float,
    _to_int,
    black_scholes_greeks,
)
from incomedesk.models.market import OptionType

TICKER = "incomedesk.data.yfinance_provider.yf.Ticker"


# ---------------------------------------------------------------------------
# CircuitBreaker tests
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    def test_starts_healthy(self) -> None:
        cb = CircuitBreaker()
        assert not cb.is_tripped
        assert cb.failure_rate == 0.0

    def test_does_not_trip_below_min_calls(self) -> None:
        cb = CircuitBreaker(min_calls=10, threshold=0.30)
        for _ in range(5):
            cb.record(ok=False)
        assert not cb.is_tripped

    def test_trips_at_threshold(self) -> None:
        cb = CircuitBreaker(min_calls=10, threshold=0.30)
        for _ in range(7):
            cb.record(ok=True)
        for _ in range(3):
            cb.record(ok=False)
        assert cb.is_tripped

    def test_recovers_after_window(self) -> None:
        cb = CircuitBreaker(min_calls=2, threshold=0.30, window_seconds=1)
        for _ in range(5):
            cb.record(ok=False)
        assert cb.is_tripped
        time.sleep(1.1)
        assert not cb.is_tripped


# ---------------------------------------------------------------------------
# Conversions and greeks
# ---------------------------------------------------------------------------


class TestConversions:
    def test_to_float(self) -> None:
        assert _to_float("1.5") == 1.5
        assert _to_float(None) is None
        assert _to_float(float("nan")) is None
        assert _to_float("n/a") is None

    def test_to_int(self) -> None:
        assert _to_int(12.0) == 12
        assert _to_int(float("nan")) == 0


class TestBlackScholes:
    def test_atm_call(self) -> None:
        greeks = black_scholes_greeks(100, 100, 1.0, 0.05, 0.2, OptionType.CALL)
        assert greeks["delta"] == pytest.approx(0.637, abs=1e-3)
        assert greeks["gamma"] == pytest.approx(0.0188, abs=1e-4)
        assert greeks["vega"] == pytest.approx(0.375, abs=1e-3)
        assert greeks["theta"] < 0

    def test_put_call_delta_parity(self) -> None:
        call = black_scholes_greeks(250, 240, 30 / 365, 0.05, 0.25, OptionType.CALL)
        put = black_scholes_greeks(250, 240, 30 / 365, 0.05, 0.25, OptionType.PUT)
        assert call["delta"] - put["delta"] == pytest.approx(1.0, abs=2e-3)
        assert call["gamma"] == put["gamma"]

    def test_degenerate_inputs(self) -> None:
        greeks = black_scholes_greeks(100, 100, 0, 0.05, 0.2, OptionType.PUT)
        assert greeks == {"delta": 0.0, "gamma": 0.0, "theta": 0.0, "vega": 0.0}


# ---------------------------------------------------------------------------
# YFinanceProvider
# ---------------------------------------------------------------------------


def _info(**overrides: object) -> dict:
    base = {
        "regularMarketPrice": 242.85,
        "bid": 242.82,
        "ask": 242.88,
        "regularMarketOpen": 241.50,
        "regularMarketDayHigh": 243.60,
        "regularMarketDayLow": 240.90,
        "regularMarketPreviousClose": 241.20,
        "regularMarketVolume": 48_000_000,
        "averageVolume": 55_000_000,
    }
    base.update(overrides)
    return base


def _history_frame(days: int = 70) -> pd.DataFrame:
    index = pd.bdate_range(end=pd.Timestamp("2025-01-15"), periods=days)
    closes = [100 + math.sin(i / 3) for i in range(days)]
    return pd.DataFrame(
        {
            "Open": closes,
            "High": [c + 1 for c in closes],
            "Low": [c - 1 for c in closes],
            "Close": closes,
            "Volume": [1_000_000] * days,
        },
        index=index,
    )


def _chain_frames() -> SimpleNamespace:
    calls = pd.DataFrame(
        {
            "contractSymbol": ["AAPL250214C00240000", "AAPL250214C00250000"],
            "strike": [240.0, 250.0],
            "bid": [6.10, 2.00],
            "ask": [6.30, 2.10],
            "lastPrice": [6.20, 2.05],
            "volume": [1200, float("nan")],
            "openInterest": [5000, 3000],
            "impliedVolatility": [0.24, 0.22],
        }
    )
    puts = pd.DataFrame(
        {
            "contractSymbol": ["AAPL250214P00235000"],
            "strike": [235.0],
            "bid": [2.10],
            "ask": [2.20],
            "lastPrice": [2.15],
            "volume": [800],
            "openInterest": [4000],
            "impliedVolatility": [0.0],
        }
    )
    return SimpleNamespace(calls=calls, puts=puts)


def _touchy_provider() -> YFinanceProvider:
    return YFinanceProvider(breaker_factory=lambda: CircuitBreaker(min_calls=3, threshold=0.30))


class TestYFinanceProvider:
    @patch(TICKER)
    def test_get_quote(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.info = _info()
        quote = asyncio.run(YFinanceProvider().get_quote("AAPL"))

        assert quote.symbol == "AAPL"
        assert quote.price == 242.85
        assert quote.previous_close == 241.20
        assert quote.avg_volume == 55_000_000

    @patch(TICKER)
    def test_quote_cached(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.info = _info()
        provider = YFinanceProvider()

        async def _run():
            await provider.get_quote("AAPL")
            await provider.get_quote("AAPL")

        asyncio.run(_run())
        assert mock_ticker_cls.call_count == 1

    @patch(TICKER)
    def test_empty_quote_raises(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.info = {}
        with pytest.raises(DataUnavailableError):
            asyncio.run(YFinanceProvider().get_quote("FAKE"))

    @patch(TICKER)
    def test_network_error_wrapped(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.side_effect = Exception("network error")
        with pytest.raises(DataUnavailableError, match="network error"):
            asyncio.run(YFinanceProvider().get_quote("FAIL"))

    @patch(TICKER)
    def test_circuit_breaker_blocks(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.info = {}
        provider = _touchy_provider()

        async def _run():
            for i in range(3):
                with pytest.raises(DataUnavailableError):
                    await provider.get_quote(f"FAIL{i}")
            calls_before = mock_ticker_cls.call_count
            with pytest.raises(DataUnavailableError, match="Circuit breaker"):
                await provider.get_quote("BLOCKED")
            return calls_before

        calls_before = asyncio.run(_run())
        assert mock_ticker_cls.call_count == calls_before
        assert provider.breaker("quote").is_tripped

    @patch(TICKER)
    def test_chain_failures_do_not_block_quotes(self, mock_ticker_cls: MagicMock) -> None:
        ticker = mock_ticker_cls.return_value
        ticker.info = _info()
        ticker.option_chain.side_effect = Exception("no options listed")
        provider = _touchy_provider()

        async def _run():
            for days in (10, 17, 24):
                with pytest.raises(DataUnavailableError):
                    await provider.get_option_chain("XLE", date.today() + timedelta(days=days))
            with pytest.raises(DataUnavailableError, match="Circuit breaker"):
                await provider.get_option_chain("XLE", date.today() + timedelta(days=31))
            return await provider.get_quote("SPY")

        quote = asyncio.run(_run())
        assert quote.symbol == "SPY"
        assert provider.breaker("chain").is_tripped
        assert not provider.breaker("quote").is_tripped

    @patch(TICKER)
    def test_historical_prices(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.history.return_value = _history_frame()
        bars = asyncio.run(YFinanceProvider().get_historical_prices("AAPL", HistoryRange.THREE_MONTHS))

        assert len(bars) == 70
        assert bars[-1].date == date(2025, 1, 15)
        assert bars[0].close == pytest.approx(100.0)
        mock_ticker_cls.return_value.history.assert_called_once_with(
            period="3mo", interval="1d", auto_adjust=False
        )

    @patch(TICKER)
    def test_empty_history_raises(self, mock_ticker_cls: MagicMock) -> None:
        mock_ticker_cls.return_value.history.return_value = pd.DataFrame()
        with pytest.raises(DataUnavailableError):
            asyncio.run(YFinanceProvider().get_historical_prices("AAPL", HistoryRange.ONE_YEAR))

    @patch(TICKER)
    def test_expirations_drop_past_dates(self, mock_ticker_cls: MagicMock) -> None:
        future = [date.today() + timedelta(days=d) for d in (30, 7)]
        mock_ticker_cls.return_value.options = ("2020-01-17", *(d.isoformat() for d in future))
        expirations = asyncio.run(YFinanceProvider().get_option_expirations("AAPL"))
        assert expirations == sorted(future)

    @patch(TICKER)
    def test_option_chain(self, mock_ticker_cls: MagicMock) -> None:
        ticker = mock_ticker_cls.return_value
        ticker.info = _info()
        ticker.option_chain.return_value = _chain_frames()
        expiration = date.today() + timedelta(days=30)

        chain = asyncio.run(YFinanceProvider().get_option_chain("AAPL", expiration))

        assert [c.strike for c in chain.calls] == [240.0, 250.0]
        itm_call, otm_call = chain.calls
        assert itm_call.in_the_money and not otm_call.in_the_money
        assert itm_call.delta is not None and itm_call.delta > 0.5
        assert otm_call.volume == 0
        assert otm_call.implied_volatility == pytest.approx(0.22)

        [put] = chain.puts
        assert put.option_type == OptionType.PUT
        assert not put.in_the_money
        # No IV published, so no greeks either
        assert put.delta is None
        ticker.option_chain.assert_called_once_with(expiration.isoformat())
