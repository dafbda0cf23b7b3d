from __future__ import annotations

import os
from unittest.mock import patch

from incomedesk.config import AppConfig, load_config


class TestAppConfig:
    def test_defaults(self) -> None:
        cfg = AppConfig()
        assert cfg.data_provider == "simulated"
        assert cfg.benchmark_symbol == "SPY"
        assert cfg.min_score == 40
        assert cfg.apply_risk_budget is True
        assert cfg.symbols == ()

    def test_frozen(self) -> None:
        cfg = AppConfig()
        try:
            cfg.min_score = 10  # type: ignore[misc]
            assert False, "Should be frozen"
        except AttributeError:
            pass


class TestLoadConfig:
    def test_loads_from_env(self) -> None:
        env = {
            "DATA_PROVIDER": "YFinance",
            "BENCHMARK_SYMBOL": "qqq",
            "RISK_PROFILE": "Aggressive",
            "ACCOUNT_SIZE": "250000",
            "WORKSPACE_ID": "desk-1",
            "MIN_SCORE": "55",
            "TOP_PER_STRATEGY": "2",
            "MAX_PER_SYMBOL": "1",
            "APPLY_RISK_BUDGET": "no",
            "SYMBOL_BATCH_SIZE": "10",
            "CACHE_TTL_SECONDS": "60",
            "SYMBOLS": "aapl, msft,,spy ",
        }
        with patch.dict(os.environ, env, clear=False):
            cfg = load_config()

        assert cfg.data_provider == "yfinance"
        assert cfg.benchmark_symbol == "QQQ"
        assert cfg.risk_profile == "aggressive"
        assert cfg.account_size == 250_000.0
        assert cfg.workspace_id == "desk-1"
        assert cfg.min_score == 55
        assert cfg.top_per_strategy == 2
        assert cfg.max_per_symbol == 1
        assert cfg.apply_risk_budget is False
        assert cfg.symbol_batch_size == 10
        assert cfg.cache_ttl_seconds == 60
        assert cfg.symbols == ("AAPL", "MSFT", "SPY")

    def test_defaults_when_env_empty(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        assert cfg == AppConfig()

    def test_apply_risk_budget_truthy_values(self) -> None:
        for raw in ("1", "true", "YES"):
            with patch.dict(os.environ, {"APPLY_RISK_BUDGET": raw}, clear=False):
                assert load_config().apply_risk_budget is True
