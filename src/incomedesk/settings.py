"""Trading settings, risk-profile presets, and hard-cap validation.

Three presets ship with the engine (conservative, balanced, aggressive).
Settings are frozen; edits go through ``dataclasses.replace`` or
``settings_from_dict`` so every recompute run sees a stable snapshot.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import StrEnum
from typing import Any

from incomedesk.models.regime import TrendRegime, VolatilityRegime
from incomedesk.models.trade import StrategyType

DEFAULT_ACCOUNT_SIZE = 100_000.0

# Hard caps no preset or override may exceed
MAX_RISK_PER_TRADE_CAP = 5.0
MAX_TOTAL_RISK_CAP = 25.0
MIN_OPTION_OI_FLOOR = 10
MIN_UNDERLYING_VOLUME_FLOOR = 10_000
DELTA_FLOOR = 0.05
DELTA_CEILING = 0.50

DEFAULT_SYMBOLS: tuple[str, ...] = (
    # Major ETFs
    "SPY", "QQQ", "IWM", "DIA",
    # Mega caps
    "AAPL", "MSFT", "AMZN", "NVDA", "META", "GOOGL", "TSLA",
    # Sector ETFs
    "XLK", "XLF", "XLE", "XLV", "XLY", "XLP", "XLI", "XLU",
)


class RiskProfilePreset(StrEnum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class RiskLimits:
    max_risk_per_trade_pct: float
    max_total_risk_pct: float
    daily_loss_limit_pct: float
    max_new_orders_per_day: int
    account_size: float | None = None

    @property
    def effective_account_size(self) -> float:
        return self.account_size if self.account_size else DEFAULT_ACCOUNT_SIZE


@dataclass(frozen=True)
class LiquidityFilters:
    min_underlying_volume: int
    min_option_oi: int
    min_option_volume: int
    max_bid_ask_spread_pct: float


@dataclass(frozen=True)
class StrategySettings:
    enabled: bool
    min_dte: int
    max_dte: int
    min_delta: float
    max_delta: float
    profit_target_pct: float = 50
    max_loss_pct: float | None = 100


@dataclass(frozen=True)
class SpreadSettings(StrategySettings):
    spread_width: float = 5
    min_credit: float = 0.5


@dataclass(frozen=True)
class TradingSettings:
    risk_profile_preset: RiskProfilePreset
    risk_limits: RiskLimits
    liquidity: LiquidityFilters
    earnings_exclusion_days: int
    cash_secured_put: StrategySettings
    covered_call: StrategySettings
    put_credit_spread: SpreadSettings
    call_credit_spread: SpreadSettings
    preferred_vol_regimes: tuple[VolatilityRegime, ...] = ()
    preferred_trend_regimes: tuple[TrendRegime, ...] = ()

    def for_strategy(self, strategy_type: StrategyType) -> StrategySettings:
        return {
            StrategyType.CASH_SECURED_PUT: self.cash_secured_put,
            StrategyType.COVERED_CALL: self.covered_call,
            StrategyType.PUT_CREDIT_SPREAD: self.put_credit_spread,
            StrategyType.CALL_CREDIT_SPREAD: self.call_credit_spread,
        }[strategy_type]


@dataclass
class SettingsValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def _preset(
    preset: RiskProfilePreset,
    *,
    risk: tuple[float, float, float, int],
    liquidity: tuple[int, int, int, float],
    earnings_days: int,
    delta: tuple[float, float],
    dte: tuple[int, int],
    cc_min_dte: int,
    max_loss_pct: float,
    min_credit: float,
    call_spreads_enabled: bool,
    vol_regimes: tuple[VolatilityRegime, ...],
    trend_regimes: tuple[TrendRegime, ...],
) -> TradingSettings:
    min_delta, max_delta = delta
    min_dte, max_dte = dte

    def _spread(enabled: bool) -> SpreadSettings:
        return SpreadSettings(
            enabled=enabled,
            min_dte=min_dte,
            max_dte=max_dte,
            min_delta=min_delta,
            max_delta=max_delta,
            max_loss_pct=max_loss_pct,
            spread_width=5,
            min_credit=min_credit,
        )

    return TradingSettings(
        risk_profile_preset=preset,
        risk_limits=RiskLimits(*risk),
        liquidity=LiquidityFilters(*liquidity),
        earnings_exclusion_days=earnings_days,
        cash_secured_put=StrategySettings(
            enabled=True,
            min_dte=min_dte,
            max_dte=max_dte,
            min_delta=min_delta,
            max_delta=max_delta,
            max_loss_pct=max_loss_pct,
        ),
        covered_call=StrategySettings(
            enabled=True,
            min_dte=cc_min_dte,
            max_dte=max_dte,
            min_delta=min_delta,
            max_delta=max_delta,
            max_loss_pct=None,
        ),
        put_credit_spread=_spread(True),
        call_credit_spread=_spread(call_spreads_enabled),
        preferred_vol_regimes=vol_regimes,
        preferred_trend_regimes=trend_regimes,
    )


_T = TrendRegime
_V = VolatilityRegime

DEFAULT_SETTINGS: dict[RiskProfilePreset, TradingSettings] = {
    RiskProfilePreset.CONSERVATIVE: _preset(
        RiskProfilePreset.CONSERVATIVE,
        risk=(2, 10, 3, 3),
        liquidity=(1_000_000, 500, 100, 5),
        earnings_days=14,
        delta=(0.15, 0.25),
        dte=(30, 45),
        cc_min_dte=21,
        max_loss_pct=100,
        min_credit=0.5,
        call_spreads_enabled=False,
        vol_regimes=(_V.NORMAL, _V.ELEVATED),
        trend_regimes=(_T.UPTREND, _T.STRONG_UPTREND, _T.NEUTRAL),
    ),
    RiskProfilePreset.BALANCED: _preset(
        RiskProfilePreset.BALANCED,
        risk=(3, 15, 5, 5),
        liquidity=(500_000, 300, 50, 8),
        earnings_days=10,
        delta=(0.20, 0.30),
        dte=(21, 45),
        cc_min_dte=14,
        max_loss_pct=100,
        min_credit=0.4,
        call_spreads_enabled=True,
        vol_regimes=(_V.NORMAL, _V.ELEVATED, _V.HIGH),
        trend_regimes=(_T.UPTREND, _T.STRONG_UPTREND, _T.NEUTRAL, _T.DOWNTREND),
    ),
    RiskProfilePreset.AGGRESSIVE: _preset(
        RiskProfilePreset.AGGRESSIVE,
        risk=(5, 25, 8, 10),
        liquidity=(250_000, 100, 25, 12),
        earnings_days=5,
        delta=(0.25, 0.35),
        dte=(14, 45),
        cc_min_dte=7,
        max_loss_pct=150,
        min_credit=0.3,
        call_spreads_enabled=True,
        vol_regimes=(_V.ELEVATED, _V.HIGH, _V.PANIC),
        trend_regimes=tuple(TrendRegime),
    ),
}


def get_default_settings(preset: RiskProfilePreset | str = RiskProfilePreset.BALANCED) -> TradingSettings:
    """Return the settings for a named preset.

    Raises ValueError for an unknown preset name.
    """
    return DEFAULT_SETTINGS[RiskProfilePreset(preset)]


def validate_settings(settings: TradingSettings) -> SettingsValidation:
    """Check settings against the hard caps. Never raises."""
    errors: list[str] = []
    risk = settings.risk_limits
    liquidity = settings.liquidity

    if risk.max_risk_per_trade_pct > MAX_RISK_PER_TRADE_CAP:
        errors.append(f"max_risk_per_trade_pct cannot exceed {MAX_RISK_PER_TRADE_CAP:g}%")
    if risk.max_total_risk_pct > MAX_TOTAL_RISK_CAP:
        errors.append(f"max_total_risk_pct cannot exceed {MAX_TOTAL_RISK_CAP:g}%")
    if risk.daily_loss_limit_pct <= 0:
        errors.append("daily_loss_limit_pct must be set and positive")
    if risk.account_size is not None and risk.account_size <= 0:
        errors.append("account_size must be positive when set")
    if liquidity.min_option_oi < MIN_OPTION_OI_FLOOR:
        errors.append(f"min_option_oi cannot be less than {MIN_OPTION_OI_FLOOR}")
    if liquidity.min_underlying_volume < MIN_UNDERLYING_VOLUME_FLOOR:
        errors.append(f"min_underlying_volume cannot be less than {MIN_UNDERLYING_VOLUME_FLOOR:,}")
    if liquidity.max_bid_ask_spread_pct <= 0:
        errors.append("max_bid_ask_spread_pct must be positive")

    for strategy_type in StrategyType:
        block = settings.for_strategy(strategy_type)
        if block.min_dte < 1:
            errors.append(f"{strategy_type}: min_dte must be at least 1 day")
        if block.max_dte < block.min_dte:
            errors.append(f"{strategy_type}: max_dte must be >= min_dte")
        if block.min_delta < DELTA_FLOOR or block.max_delta > DELTA_CEILING:
            errors.append(f"{strategy_type}: delta targets should be between 0.05 and 0.50")
        if block.min_delta > block.max_delta:
            errors.append(f"{strategy_type}: min_delta must be <= max_delta")
        if isinstance(block, SpreadSettings):
            if block.spread_width <= 0:
                errors.append(f"{strategy_type}: spread_width must be positive")
            if block.min_credit < 0:
                errors.append(f"{strategy_type}: min_credit cannot be negative")

    return SettingsValidation(is_valid=not errors, errors=errors)


def settings_to_dict(settings: TradingSettings) -> dict[str, Any]:
    """JSON-friendly dict; enums serialize as their string values."""
    data = asdict(settings)
    data["risk_profile_preset"] = str(settings.risk_profile_preset)
    data["preferred_vol_regimes"] = [str(v) for v in settings.preferred_vol_regimes]
    data["preferred_trend_regimes"] = [str(t) for t in settings.preferred_trend_regimes]
    return data


def _overlay(base: Any, overrides: dict[str, Any], path: str) -> Any:
    known = {f.name for f in fields(base)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown settings keys at {path or '<root>'}: {sorted(unknown)}")
    return replace(base, **overrides)


def settings_from_dict(data: dict[str, Any]) -> TradingSettings:
    """Build settings from a (possibly partial) dict.

    Missing keys inherit from the named preset (default balanced).
    Raises ValueError on unknown keys, presets, or regime names.
    """
    preset = RiskProfilePreset(data.get("risk_profile_preset", RiskProfilePreset.BALANCED))
    base = get_default_settings(preset)

    top: dict[str, Any] = {}
    for key, value in data.items():
        if key == "risk_profile_preset":
            continue
        if key == "preferred_vol_regimes":
            top[key] = tuple(VolatilityRegime(v) for v in value)
        elif key == "preferred_trend_regimes":
            top[key] = tuple(TrendRegime(t) for t in value)
        elif isinstance(value, dict):
            nested = getattr(base, key, None)
            if nested is None:
                raise ValueError(f"Unknown settings key: {key}")
            top[key] = _overlay(nested, value, key)
        else:
            top[key] = value
    return _overlay(base, top, "")


def settings_diff(old: TradingSettings, new: TradingSettings) -> dict[str, tuple[Any, Any]]:
    """Flat dotted-path diff: ``{"risk_limits.max_total_risk_pct": (15, 20)}``."""

    def _flatten(obj: dict[str, Any], prefix: str = "") -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key, value in obj.items():
            path = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                out.update(_flatten(value, path))
            else:
                out[path] = value
        return out

    old_flat = _flatten(settings_to_dict(old))
    new_flat = _flatten(settings_to_dict(new))
    return {
        path: (old_flat.get(path), value)
        for path, value in new_flat.items()
        if old_flat.get(path) != value
    }
