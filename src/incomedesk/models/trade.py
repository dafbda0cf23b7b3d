from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from incomedesk.models.market import OptionContract
from incomedesk.models.regime import MarketRegime, SymbolSignals


class StrategyType(StrEnum):
    CASH_SECURED_PUT = "cash_secured_put"
    COVERED_CALL = "covered_call"
    PUT_CREDIT_SPREAD = "put_credit_spread"
    CALL_CREDIT_SPREAD = "call_credit_spread"


class LegAction(StrEnum):
    BUY = "buy"
    SELL = "sell"


class InvalidationType(StrEnum):
    TREND_BREAK = "trend_break"
    VOL_SPIKE = "vol_spike"
    LIQUIDITY_DETERIORATION = "liquidity_deterioration"
    EARNINGS_APPROACHING = "earnings_approaching"
    PRICE_BREACH = "price_breach"


class FactorImpact(StrEnum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class PacketStatus(StrEnum):
    CANDIDATE = "candidate"
    APPROVED = "approved"
    EXECUTED = "executed"
    EXPIRED = "expired"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OptionLeg:
    action: LegAction
    quantity: int
    option: OptionContract
    order_price: float  # mid


@dataclass(frozen=True)
class RiskBox:
    max_profit: float
    max_loss: float
    breakeven: float
    buying_power_required: float
    collateral_required: float
    annualized_return: float  # % on the risk basis
    return_on_capital: float  # raw %
    probability_of_profit: float | None
    breakeven_lower: float | None = None
    breakeven_upper: float | None = None


@dataclass(frozen=True)
class ExitRules:
    profit_target_pct: float
    max_loss_pct: float | None
    dte_exit: int
    roll_guidance: str | None = None


@dataclass(frozen=True)
class InvalidationCondition:
    type: InvalidationType
    description: str
    threshold: str


@dataclass(frozen=True)
class Reason:
    category: str
    check: str
    passed: bool
    value: str
    threshold: str
    weight: float
    contribution: float


@dataclass(frozen=True)
class ScoreComponent:
    name: str
    raw_value: float
    normalized_score: float  # 0-100
    weight: float
    weighted_score: float


@dataclass(frozen=True)
class ConvictionFactor:
    factor: str
    impact: FactorImpact
    description: str


@dataclass(frozen=True)
class ConvictionMeter:
    confidence: int  # 0-100
    uncertainty: int  # 0-100
    factors: tuple[ConvictionFactor, ...] = ()


@dataclass(frozen=True)
class StrategyCandidate:
    """Strategy-local result before it is stamped with run provenance."""

    strategy_type: StrategyType
    symbol: str
    underlying_price: float
    legs: tuple[OptionLeg, ...]
    net_credit: float
    dte: int
    risk_box: RiskBox
    exit_rules: ExitRules
    invalidation: tuple[InvalidationCondition, ...]
    reasons: tuple[Reason, ...]
    components: tuple[ScoreComponent, ...]
    score: int
    conviction: ConvictionMeter
    plain_english_summary: str = ""
    learning_notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class TradePacket:
    """Final, immutable form of a candidate for one recompute run."""

    id: str
    workspace_id: str
    created_at: datetime
    symbol: str
    strategy_type: StrategyType
    status: PacketStatus

    underlying_price: float
    regime: MarketRegime
    signals: SymbolSignals

    legs: tuple[OptionLeg, ...]
    net_credit: float
    dte: int

    risk_box: RiskBox
    exit_rules: ExitRules
    invalidation: tuple[InvalidationCondition, ...]

    score: int
    components: tuple[ScoreComponent, ...]
    reasons: tuple[Reason, ...]
    conviction: ConvictionMeter

    settings_version_id: str
    risk_profile_preset: str
    recompute_run_id: str

    plain_english_summary: str = ""
    learning_notes: tuple[str, ...] = field(default_factory=tuple)
    net_debit: float | None = None
