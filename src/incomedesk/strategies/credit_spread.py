"""Put and call credit spreads.

Both sell an OTM option inside the delta band and buy protection one
spread-width further out. They share selection, risk, and scoring
mechanics; a ``_SpreadSide`` captures what differs by direction.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from incomedesk.analytics.indicators import (
    annualized_return,
    estimate_probability_of_profit,
    return_on_capital,
    round2,
    spread_pct,
)
from incomedesk.models.market import OptionContract, OptionType
from incomedesk.models.regime import TrendRegime
from incomedesk.models.trade import (
    ExitRules,
    InvalidationCondition,
    InvalidationType,
    LegAction,
    OptionLeg,
    RiskBox,
    StrategyCandidate,
    StrategyType,
)
from incomedesk.settings import SpreadSettings, TradingSettings
from incomedesk.strategies.base import (
    MAX_CANDIDATES,
    BaseStrategy,
    StrategyContext,
    build_conviction,
    make_component,
    make_reason,
    risk_pct_of_account,
    total_score,
)

MIN_ANNUALIZED_RETURN = 20.0
MIN_IV_RANK = 40.0
MIN_BUFFER_PCT = 3.0
DEFAULT_POP = 65.0
DTE_EXIT = 14
STRIKE_TOLERANCE = 0.5

# Long leg may be looser than the short leg
LONG_SPREAD_TOLERANCE = 1.5
LONG_OI_FRACTION = 0.5


@dataclass(frozen=True)
class _SpreadSide:
    option_type: OptionType
    direction: int  # -1: protection below (puts), +1: protection above (calls)
    opposing_trend: TrendRegime
    trend_scores: dict[TrendRegime, float]
    trend_fallback: float
    probability_of_profit: Callable[[float], float]
    roll_guidance: str


_PUT_SIDE = _SpreadSide(
    option_type=OptionType.PUT,
    direction=-1,
    opposing_trend=TrendRegime.STRONG_DOWNTREND,
    trend_scores={TrendRegime.STRONG_UPTREND: 100, TrendRegime.UPTREND: 80, TrendRegime.NEUTRAL: 60},
    trend_fallback=30,
    probability_of_profit=lambda delta: float(estimate_probability_of_profit(delta)),
    roll_guidance="If the short put is tested, consider rolling down and out for a credit.",
)

# Call-side POP uses the raw call delta (100 - delta * 100), unrounded.
_CALL_SIDE = _SpreadSide(
    option_type=OptionType.CALL,
    direction=1,
    opposing_trend=TrendRegime.STRONG_UPTREND,
    trend_scores={TrendRegime.STRONG_DOWNTREND: 100, TrendRegime.DOWNTREND: 80, TrendRegime.NEUTRAL: 70},
    trend_fallback=40,
    probability_of_profit=lambda delta: 100 - delta * 100,
    roll_guidance="If the short call is tested, consider rolling up and out for a credit.",
)

_SIDES: dict[StrategyType, _SpreadSide] = {
    StrategyType.PUT_CREDIT_SPREAD: _PUT_SIDE,
    StrategyType.CALL_CREDIT_SPREAD: _CALL_SIDE,
}
_NAMES: dict[StrategyType, str] = {
    StrategyType.PUT_CREDIT_SPREAD: "Put Credit Spread",
    StrategyType.CALL_CREDIT_SPREAD: "Call Credit Spread",
}


class CreditSpreadStrategy(BaseStrategy):
    """Vertical credit spread on either side of the chain.

    Use ``CreditSpreadStrategy.puts()`` for the bullish put spread and
    ``CreditSpreadStrategy.calls()`` for the bearish call spread.
    """

    def __init__(self, strategy_type: StrategyType) -> None:
        if strategy_type not in _SIDES:
            raise ValueError(f"Not a credit spread: {strategy_type}")
        self.strategy_type = strategy_type
        self.name = _NAMES[strategy_type]
        self._side = _SIDES[strategy_type]

    @classmethod
    def puts(cls) -> CreditSpreadStrategy:
        return cls(StrategyType.PUT_CREDIT_SPREAD)

    @classmethod
    def calls(cls) -> CreditSpreadStrategy:
        return cls(StrategyType.CALL_CREDIT_SPREAD)

    def _spread_settings(self, settings: TradingSettings) -> SpreadSettings:
        if self.strategy_type is StrategyType.PUT_CREDIT_SPREAD:
            return settings.put_credit_spread
        return settings.call_credit_spread

    def should_consider(self, ctx: StrategyContext) -> bool:
        if not self._passes_common_gate(ctx):
            return False
        preferred = ctx.settings.preferred_vol_regimes
        if preferred and ctx.signals.volatility_regime not in preferred:
            return False
        return ctx.signals.trend is not self._side.opposing_trend

    def find_candidates(self, ctx: StrategyContext) -> list[StrategyCandidate]:
        if not self._in_dte_window(ctx):
            return []
        cfg = self._spread_settings(ctx.settings)
        filters = ctx.settings.liquidity
        side = self._side
        contracts = ctx.chain.puts if side.option_type is OptionType.PUT else ctx.chain.calls

        candidates: list[StrategyCandidate] = []
        for short in contracts:
            if short.delta is None or short.in_the_money:
                continue
            if not cfg.min_delta <= abs(short.delta) <= cfg.max_delta:
                continue

            long = _find_long_leg(contracts, short.strike + side.direction * cfg.spread_width)
            if long is None:
                continue

            if spread_pct(short.bid, short.ask) > filters.max_bid_ask_spread_pct:
                continue
            if spread_pct(long.bid, long.ask) > filters.max_bid_ask_spread_pct * LONG_SPREAD_TOLERANCE:
                continue
            if short.open_interest < filters.min_option_oi:
                continue
            if long.open_interest < filters.min_option_oi * LONG_OI_FRACTION:
                continue

            candidate = self._build(ctx, short, long)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:MAX_CANDIDATES]

    def _build(
        self, ctx: StrategyContext, short: OptionContract, long: OptionContract
    ) -> StrategyCandidate | None:
        settings = ctx.settings
        cfg = self._spread_settings(settings)
        filters = settings.liquidity
        signals = ctx.signals
        side = self._side
        price = ctx.quote.price
        dte = ctx.dte
        kind = side.option_type.value

        short_mid = short.mid
        long_mid = long.mid
        credit = round2((short_mid - long_mid) * 100)
        min_credit = cfg.min_credit * 100
        if credit < min_credit:
            return None

        width = abs(short.strike - long.strike)
        max_loss = round2(width * 100 - credit)
        if max_loss <= 0:
            return None
        breakeven = round2(short.strike + side.direction * credit / 100)
        annualized = annualized_return(credit, max_loss, dte)
        roc = return_on_capital(credit, max_loss)
        pop = side.probability_of_profit(short.delta) if short.delta else DEFAULT_POP

        risk_pct = risk_pct_of_account(max_loss, settings)
        if risk_pct > settings.risk_limits.max_risk_per_trade_pct:
            return None

        buffer_pct = -side.direction * (price - short.strike) / price * 100
        iv_rank = ctx.iv_rank_or_neutral

        reasons = (
            make_reason("Spread", "Net Credit", credit >= min_credit,
                        f"${credit:.0f}", f">= ${min_credit:.0f}", 2),
            make_reason("Liquidity", "Short Leg OI", short.open_interest >= filters.min_option_oi,
                        short.open_interest, f">= {filters.min_option_oi}", 1),
            make_reason("Delta", "Short Delta", cfg.min_delta <= abs(short.delta or 0) <= cfg.max_delta,
                        f"{short.delta:.2f}", f"{cfg.min_delta} to {cfg.max_delta}", 1.5),
            make_reason("Premium", "Annualized Return", annualized >= MIN_ANNUALIZED_RETURN,
                        f"{annualized:.1f}%", f">= {MIN_ANNUALIZED_RETURN:g}%", 2),
            make_reason("Volatility", "IV Elevated", iv_rank >= MIN_IV_RANK,
                        f"{signals.iv_rank:g}%" if signals.iv_rank is not None else "N/A",
                        f">= {MIN_IV_RANK:g}%", 1.5),
            make_reason("Risk", "Defined Risk", True, f"${max_loss:,.0f} max loss", "Defined", 2),
            make_reason("Buffer", "Buffer to Short Strike", buffer_pct >= MIN_BUFFER_PCT,
                        f"{buffer_pct:.1f}%", f">= {MIN_BUFFER_PCT:g}%", 1),
        )

        components = (
            make_component("Premium Yield", annualized, 0.25, 50),
            make_component("Liquidity", signals.liquidity.overall_score, 0.20),
            make_component("IV Rank", iv_rank, 0.15),
            make_component("Trend Alignment", side.trend_scores.get(signals.trend, side.trend_fallback), 0.20),
            make_component("Buffer Score", min(100.0, buffer_pct * 10), 0.10),
            make_component("Risk/Reward", credit / max_loss * 100, 0.10, 50),
        )

        below_above = "below" if side.direction < 0 else "above"
        summary = (
            f"Open a {kind} credit spread on {ctx.symbol}: sell the {short.expiration} "
            f"${short.strike:g} {kind} for ${short_mid:.2f} and buy the ${long.strike:g} {kind} "
            f"for ${long_mid:.2f}. Net credit ${credit / 100:.2f} per share (${credit:.0f} per "
            f"contract). Maximum loss is ${max_loss:,.0f} if {ctx.symbol} finishes {below_above} "
            f"${long.strike:g}; breakeven at ${breakeven:.2f}."
        )
        notes = (
            "Credit spread: the long leg caps the loss, so capital required equals the "
            "width of the spread minus the credit.",
            f"Risk/reward: collect ${credit:.0f} to risk ${max_loss:,.0f}.",
        )

        lower, upper = sorted((short.strike, long.strike))
        return StrategyCandidate(
            strategy_type=self.strategy_type,
            symbol=ctx.symbol,
            underlying_price=price,
            legs=(
                OptionLeg(action=LegAction.SELL, quantity=1, option=short, order_price=short_mid),
                OptionLeg(action=LegAction.BUY, quantity=1, option=long, order_price=long_mid),
            ),
            net_credit=credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=credit,
                max_loss=max_loss,
                breakeven=breakeven,
                breakeven_lower=lower if side.direction < 0 else None,
                breakeven_upper=upper if side.direction > 0 else None,
                buying_power_required=max_loss,
                collateral_required=max_loss,
                annualized_return=annualized,
                return_on_capital=roc,
                probability_of_profit=pop,
            ),
            exit_rules=ExitRules(
                profit_target_pct=cfg.profit_target_pct,
                max_loss_pct=cfg.max_loss_pct,
                dte_exit=DTE_EXIT,
                roll_guidance=side.roll_guidance,
            ),
            invalidation=(
                InvalidationCondition(
                    InvalidationType.PRICE_BREACH,
                    f"Price breaks {below_above} the short {kind} strike",
                    f"Price {'<' if side.direction < 0 else '>'} ${short.strike:.2f}",
                ),
                InvalidationCondition(
                    InvalidationType.TREND_BREAK,
                    "Trend turns against the position",
                    f"Trend = {side.opposing_trend}",
                ),
                InvalidationCondition(
                    InvalidationType.VOL_SPIKE, "Volatility spikes significantly", "IV Rank > 80%"
                ),
            ),
            reasons=reasons,
            components=components,
            score=total_score(components),
            conviction=build_conviction(signals, ctx.regime, reasons),
            plain_english_summary=summary,
            learning_notes=notes,
        )


def _find_long_leg(contracts: Sequence[OptionContract], target_strike: float) -> OptionContract | None:
    """OTM contract nearest ``target_strike`` within STRIKE_TOLERANCE."""
    matches = [
        c for c in contracts
        if abs(c.strike - target_strike) < STRIKE_TOLERANCE and not c.in_the_money
    ]
    if not matches:
        return None
    return min(matches, key=lambda c: abs(c.strike - target_strike))

