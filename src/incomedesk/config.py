from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class AppConfig:
    data_provider: str = "simulated"
    benchmark_symbol: str = "SPY"
    risk_profile: str = "balanced"
    account_size: float | None = None
    workspace_id: str = "default"
    min_score: int = 40
    top_per_strategy: int = 3
    max_per_symbol: int = 2
    apply_risk_budget: bool = True
    symbol_batch_size: int = 5
    cache_ttl_seconds: int = 300
    symbols: tuple[str, ...] = ()


def _parse_symbols(raw: str) -> tuple[str, ...]:
    return tuple(s.strip().upper() for s in raw.split(",") if s.strip())


def load_config() -> AppConfig:
    """Load application config from environment variables.

    Loads .env file if present in the current directory.
    """
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    account_size = os.environ.get("ACCOUNT_SIZE", "")

    return AppConfig(
        data_provider=os.environ.get("DATA_PROVIDER", "simulated").lower(),
        benchmark_symbol=os.environ.get("BENCHMARK_SYMBOL", "SPY").upper(),
        risk_profile=os.environ.get("RISK_PROFILE", "balanced").lower(),
        account_size=float(account_size) if account_size else None,
        workspace_id=os.environ.get("WORKSPACE_ID", "default"),
        min_score=int(os.environ.get("MIN_SCORE", "40")),
        top_per_strategy=int(os.environ.get("TOP_PER_STRATEGY", "3")),
        max_per_symbol=int(os.environ.get("MAX_PER_SYMBOL", "2")),
        apply_risk_budget=os.environ.get("APPLY_RISK_BUDGET", "true").lower() in ("1", "true", "yes"),
        symbol_batch_size=int(os.environ.get("SYMBOL_BATCH_SIZE", "5")),
        cache_ttl_seconds=int(os.environ.get("CACHE_TTL_SECONDS", "300")),
        symbols=_parse_symbols(os.environ.get("SYMBOLS", "")),
    )
