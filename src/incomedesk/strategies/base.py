"""Shared contract and scoring helpers for the strategy generators.

Every strategy answers two questions for one symbol and one expiration
slice: should it be considered at all (``should_consider``), and which
concrete trades does it propose (``find_candidates``). Scoring, reasons,
and conviction are built with the helpers here so every strategy is
explained on the same scale.
"""

from __future__ import annotations

import abc
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime

from incomedesk.analytics.indicators import clamp, days_to_expiration, round_half_up, spread_pct
from incomedesk.models.market import OptionChain, OptionContract, Quote
from incomedesk.models.regime import (
    BreadthAssessment,
    MarketRegime,
    RiskPosture,
    SymbolSignals,
    VolatilityRegime,
)
from incomedesk.models.trade import (
    ConvictionFactor,
    ConvictionMeter,
    FactorImpact,
    PacketStatus,
    Reason,
    ScoreComponent,
    StrategyCandidate,
    StrategyType,
    TradePacket,
)
from incomedesk.settings import LiquidityFilters, StrategySettings, TradingSettings

MIN_PREMIUM = 0.10
MAX_CANDIDATES = 3
NEUTRAL_IV_RANK = 50.0


@dataclass(frozen=True)
class StrategyContext:
    """Everything a strategy sees for one symbol and one expiration."""

    quote: Quote
    chain: OptionChain
    signals: SymbolSignals
    regime: MarketRegime
    settings: TradingSettings
    as_of: date

    @property
    def symbol(self) -> str:
        return self.quote.symbol

    @property
    def dte(self) -> int:
        return days_to_expiration(self.chain.expiration, self.as_of)

    @property
    def iv_rank_or_neutral(self) -> float:
        return self.signals.iv_rank if self.signals.iv_rank is not None else NEUTRAL_IV_RANK


@dataclass(frozen=True)
class RunContext:
    """Provenance stamped onto every packet of a recompute run."""

    workspace_id: str
    settings_version_id: str
    risk_profile_preset: str
    recompute_run_id: str


def make_reason(
    category: str,
    check: str,
    passed: bool,
    value: object,
    threshold: object,
    weight: float = 1.0,
) -> Reason:
    return Reason(
        category=category,
        check=check,
        passed=passed,
        value=str(value),
        threshold=str(threshold),
        weight=weight,
        contribution=weight if passed else 0.0,
    )


def make_component(name: str, raw_value: float, weight: float, max_value: float = 100.0) -> ScoreComponent:
    """Normalize ``raw_value`` against ``max_value`` onto 0-100."""
    normalized = clamp(raw_value / max_value * 100, 0, 100) if max_value else 0.0
    return ScoreComponent(
        name=name,
        raw_value=raw_value,
        normalized_score=normalized,
        weight=weight,
        weighted_score=normalized * weight,
    )


def total_score(components: Iterable[ScoreComponent]) -> int:
    """Rounded weighted sum of normalized component scores, 0-100."""
    raw = sum(c.normalized_score * c.weight for c in components)
    return int(clamp(round_half_up(raw), 0, 100))


def build_conviction(
    signals: SymbolSignals,
    regime: MarketRegime,
    reasons: Sequence[Reason],
) -> ConvictionMeter:
    factors: list[ConvictionFactor] = []
    liquidity = signals.liquidity.overall_score

    if liquidity >= 70:
        factors.append(ConvictionFactor("High liquidity", FactorImpact.POSITIVE, "Tight spreads and high volume"))
    elif liquidity < 40:
        factors.append(ConvictionFactor("Low liquidity", FactorImpact.NEGATIVE, "May have difficulty with fills"))

    if regime.risk_posture is RiskPosture.RISK_ON and signals.trend.is_up:
        factors.append(ConvictionFactor("Favorable regime", FactorImpact.POSITIVE, "Risk-on market, symbol in uptrend"))
    elif regime.risk_posture is RiskPosture.RISK_OFF:
        factors.append(ConvictionFactor("Defensive regime", FactorImpact.NEGATIVE, "Market in risk-off mode"))

    if signals.iv_rank is not None and signals.iv_rank >= 50:
        factors.append(ConvictionFactor("Elevated IV", FactorImpact.POSITIVE, "Premium is relatively rich"))
    elif signals.iv_rank is not None and signals.iv_rank < 20:
        factors.append(ConvictionFactor("Low IV", FactorImpact.NEGATIVE, "Premium is relatively thin"))

    if signals.earnings.within_exclusion_window:
        factors.append(ConvictionFactor("Earnings approaching", FactorImpact.NEGATIVE, "Event risk before expiration"))

    pass_rate = sum(1 for r in reasons if r.passed) / len(reasons) if reasons else 0.0
    iv_rank = signals.iv_rank if signals.iv_rank is not None else NEUTRAL_IV_RANK
    confidence = int(clamp(round_half_up(pass_rate * 100 * 0.5 + liquidity * 0.3 + iv_rank * 0.2), 0, 100))

    uncertainty = 0
    if signals.earnings.within_exclusion_window:
        uncertainty += 20
    if regime.volatility_regime in (VolatilityRegime.HIGH, VolatilityRegime.PANIC):
        uncertainty += 20
    if liquidity < 50:
        uncertainty += 15
    if regime.breadth.assessment in (BreadthAssessment.WEAK, BreadthAssessment.VERY_WEAK):
        uncertainty += 15

    return ConvictionMeter(
        confidence=confidence,
        uncertainty=min(100, uncertainty),
        factors=tuple(factors),
    )


def passes_liquidity(contract: OptionContract, filters: LiquidityFilters) -> bool:
    return (
        spread_pct(contract.bid, contract.ask) <= filters.max_bid_ask_spread_pct
        and contract.open_interest >= filters.min_option_oi
        and contract.volume >= filters.min_option_volume
    )


def risk_pct_of_account(max_loss: float, settings: TradingSettings) -> float:
    return max_loss / settings.risk_limits.effective_account_size * 100


def top_by_premium(
    contracts: Iterable[OptionContract],
    limit: int = MAX_CANDIDATES,
) -> list[OptionContract]:
    """Highest-mid contracts, one per strike."""
    picked: list[OptionContract] = []
    seen: set[float] = set()
    for contract in sorted(contracts, key=lambda c: c.mid, reverse=True):
        if contract.strike in seen:
            continue
        seen.add(contract.strike)
        picked.append(contract)
        if len(picked) == limit:
            break
    return picked


class BaseStrategy(abc.ABC):
    """One options-income strategy variant."""

    strategy_type: StrategyType
    name: str

    def settings_for(self, settings: TradingSettings) -> StrategySettings:
        return settings.for_strategy(self.strategy_type)

    @abc.abstractmethod
    def should_consider(self, ctx: StrategyContext) -> bool:
        """Gate: False means zero candidates, not an error."""

    @abc.abstractmethod
    def find_candidates(self, ctx: StrategyContext) -> list[StrategyCandidate]:
        ...

    def _passes_common_gate(self, ctx: StrategyContext) -> bool:
        """Enabled, liquid, and clear of the earnings window."""
        if not self.settings_for(ctx.settings).enabled:
            return False
        if not ctx.signals.liquidity.meets_minimum:
            return False
        return not ctx.signals.earnings.within_exclusion_window

    def _in_dte_window(self, ctx: StrategyContext) -> bool:
        cfg = self.settings_for(ctx.settings)
        return cfg.min_dte <= ctx.dte <= cfg.max_dte

    def _select_single_leg(
        self,
        ctx: StrategyContext,
        contracts: Iterable[OptionContract],
        delta_in_band: Callable[[float], bool],
    ) -> list[OptionContract]:
        """OTM, in-band, liquid contracts worth at least MIN_PREMIUM."""
        filters = ctx.settings.liquidity
        eligible = [
            c for c in contracts
            if c.delta is not None
            and delta_in_band(c.delta)
            and not c.in_the_money
            and passes_liquidity(c, filters)
            and c.mid >= MIN_PREMIUM
        ]
        return top_by_premium(eligible)

    def to_packet(self, candidate: StrategyCandidate, ctx: StrategyContext, run: RunContext) -> TradePacket:
        return TradePacket(
            id=str(uuid.uuid4()),
            workspace_id=run.workspace_id,
            created_at=datetime.now(UTC),
            symbol=candidate.symbol,
            strategy_type=candidate.strategy_type,
            status=PacketStatus.CANDIDATE,
            underlying_price=candidate.underlying_price,
            regime=ctx.regime,
            signals=ctx.signals,
            legs=candidate.legs,
            net_credit=candidate.net_credit,
            dte=candidate.dte,
            risk_box=candidate.risk_box,
            exit_rules=candidate.exit_rules,
            invalidation=candidate.invalidation,
            score=candidate.score,
            components=candidate.components,
            reasons=candidate.reasons,
            conviction=candidate.conviction,
            settings_version_id=run.settings_version_id,
            risk_profile_preset=run.risk_profile_preset,
            recompute_run_id=run.recompute_run_id,
            plain_english_summary=candidate.plain_english_summary,
            learning_notes=candidate.learning_notes,
        )
