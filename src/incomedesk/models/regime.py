from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class TrendRegime(StrEnum):
    STRONG_UPTREND = "strong_uptrend"
    UPTREND = "uptrend"
    NEUTRAL = "neutral"
    DOWNTREND = "downtrend"
    STRONG_DOWNTREND = "strong_downtrend"

    @property
    def is_up(self) -> bool:
        return self in (TrendRegime.STRONG_UPTREND, TrendRegime.UPTREND)

    @property
    def is_down(self) -> bool:
        return self in (TrendRegime.STRONG_DOWNTREND, TrendRegime.DOWNTREND)


class VolatilityRegime(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    PANIC = "panic"


class RiskPosture(StrEnum):
    RISK_ON = "risk_on"
    NEUTRAL = "neutral"
    RISK_OFF = "risk_off"


class BreadthAssessment(StrEnum):
    STRONG = "strong"
    HEALTHY = "healthy"
    MIXED = "mixed"
    WEAK = "weak"
    VERY_WEAK = "very_weak"


@dataclass(frozen=True)
class Breadth:
    advancing: int
    declining: int
    adv_dec_ratio: float | None
    percent_above_50ma: float | None
    above_50ma: int
    sample_size: int
    assessment: BreadthAssessment


@dataclass(frozen=True)
class SectorLeadership:
    symbol: str
    name: str
    trend_score: float
    trend: TrendRegime


@dataclass(frozen=True)
class DataQuality:
    has_full_data: bool
    data_source: str
    missing_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class MarketRegime:
    """Market state shared read-only by every symbol in a run."""

    timestamp: datetime
    benchmark: str
    trend: TrendRegime
    trend_score: float
    volatility_regime: VolatilityRegime
    risk_posture: RiskPosture
    breadth: Breadth
    data_quality: DataQuality
    computed_at: datetime
    leadership: tuple[SectorLeadership, ...] | None = None
    iv_rank: float | None = None


@dataclass(frozen=True)
class LiquidityScores:
    volume_score: float = 0
    option_oi_score: float = 0
    spread_score: float = 0
    overall_score: float = 0
    meets_minimum: bool = False


@dataclass(frozen=True)
class EarningsProximity:
    days_to_earnings: int | None = None
    within_exclusion_window: bool = False


@dataclass(frozen=True)
class SymbolSignals:
    symbol: str
    timestamp: datetime
    price: float
    trend: TrendRegime
    trend_score: float
    ma50: float
    ma200: float
    price_vs_ma50_pct: float
    price_vs_ma200_pct: float
    volatility_regime: VolatilityRegime
    iv_rank: float | None = None
    iv_percentile: float | None = None
    hv20: float | None = None
    liquidity: LiquidityScores = field(default_factory=LiquidityScores)
    earnings: EarningsProximity = field(default_factory=EarningsProximity)
