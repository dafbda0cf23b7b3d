from __future__ import annotations

from incomedesk.analytics.indicators import (
    annualized_return,
    estimate_probability_of_profit,
    return_on_capital,
    round2,
    spread_pct,
)
from incomedesk.models.market import OptionContract
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
from incomedesk.settings import RiskProfilePreset
from incomedesk.strategies.base import (
    BaseStrategy,
    StrategyContext,
    build_conviction,
    make_component,
    make_reason,
    total_score,
)

MIN_ANNUALIZED_RETURN = 10.0
MIN_IV_RANK = 25.0
MIN_UPSIDE_PCT = 2.0
DEFAULT_POP = 70
DTE_EXIT = 7

# Lower when a strong rally makes assignment likely
_ASSIGNMENT_SAFETY = {
    TrendRegime.STRONG_UPTREND: 30,
    TrendRegime.UPTREND: 60,
}


class CoveredCallStrategy(BaseStrategy):
    """Sell an OTM call against 100 shares already held."""

    strategy_type = StrategyType.COVERED_CALL
    name = "Covered Call"

    def should_consider(self, ctx: StrategyContext) -> bool:
        if not self._passes_common_gate(ctx):
            return False
        if (
            ctx.signals.trend is TrendRegime.STRONG_UPTREND
            and ctx.settings.risk_profile_preset is RiskProfilePreset.CONSERVATIVE
        ):
            return False
        preferred = ctx.settings.preferred_trend_regimes
        return not preferred or ctx.signals.trend in preferred

    def find_candidates(self, ctx: StrategyContext) -> list[StrategyCandidate]:
        if not self._in_dte_window(ctx):
            return []
        cfg = self.settings_for(ctx.settings)
        calls = self._select_single_leg(
            ctx, ctx.chain.calls, lambda d: cfg.min_delta <= d <= cfg.max_delta
        )
        return [self._build(ctx, call) for call in calls]

    def _build(self, ctx: StrategyContext, call: OptionContract) -> StrategyCandidate:
        cfg = self.settings_for(ctx.settings)
        filters = ctx.settings.liquidity
        signals = ctx.signals
        price = ctx.quote.price
        dte = ctx.dte

        mid = call.mid
        strike = call.strike
        credit = round2(mid * 100)
        max_profit = round2((strike - price) * 100 + credit)
        max_loss = round2(price * 100 - credit)
        breakeven = round2(price - mid)
        capital = round2(price * 100)
        annualized = annualized_return(credit, capital, dte)
        roc = return_on_capital(credit, capital)
        pop = estimate_probability_of_profit(call.delta) if call.delta else DEFAULT_POP

        upside_pct = (strike - price) / price * 100
        spread = spread_pct(call.bid, call.ask)
        iv_rank = ctx.iv_rank_or_neutral

        reasons = (
            make_reason("Liquidity", "Option OI", call.open_interest >= filters.min_option_oi,
                        call.open_interest, f">= {filters.min_option_oi}", 1),
            make_reason("Liquidity", "Bid-Ask Spread", spread <= filters.max_bid_ask_spread_pct,
                        f"{spread:.1f}%", f"<= {filters.max_bid_ask_spread_pct}%", 1.5),
            make_reason("Delta", "Delta Target", cfg.min_delta <= (call.delta or 0) <= cfg.max_delta,
                        f"{call.delta:.2f}", f"{cfg.min_delta} to {cfg.max_delta}", 1.5),
            make_reason("Premium", "Annualized Return", annualized >= MIN_ANNUALIZED_RETURN,
                        f"{annualized:.1f}%", f">= {MIN_ANNUALIZED_RETURN:g}%", 2),
            make_reason("Trend", "Trend Alignment", signals.trend is not TrendRegime.STRONG_UPTREND,
                        signals.trend, "Not in strong uptrend", 1),
            make_reason("Volatility", "IV Rank", iv_rank >= MIN_IV_RANK,
                        f"{signals.iv_rank:g}%" if signals.iv_rank is not None else "N/A",
                        f">= {MIN_IV_RANK:g}%", 1),
            make_reason("Upside", "Room to Strike", upside_pct >= MIN_UPSIDE_PCT,
                        f"{upside_pct:.1f}%", f">= {MIN_UPSIDE_PCT:g}%", 1),
        )

        components = (
            make_component("Premium Yield", annualized, 0.25, 30),
            make_component("Liquidity", signals.liquidity.overall_score, 0.20),
            make_component("IV Rank", iv_rank, 0.15),
            make_component("Assignment Safety", _ASSIGNMENT_SAFETY.get(signals.trend, 90), 0.20),
            make_component("Upside to Strike", min(100.0, upside_pct * 5), 0.10),
            make_component("Probability of Profit", pop, 0.10),
        )

        summary = (
            f"Sell a {call.expiration} ${strike:g} call on {ctx.symbol} for ${mid:.2f} credit "
            f"(${credit:.0f} per contract) against 100 shares. Shares may be called away at "
            f"${strike:g} if {ctx.symbol} finishes above the strike; maximum profit if assigned "
            f"is ${max_profit:,.0f}."
        )
        notes = (
            "Covered call: premium lowers the cost basis of shares you already hold "
            "in exchange for capping upside at the strike.",
            f"Assignment: a delta of {call.delta or 0:.2f} suggests roughly a "
            f"{(call.delta or 0) * 100:.0f}% chance the shares are called away.",
        )

        return StrategyCandidate(
            strategy_type=self.strategy_type,
            symbol=ctx.symbol,
            underlying_price=price,
            legs=(OptionLeg(action=LegAction.SELL, quantity=1, option=call, order_price=mid),),
            net_credit=credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=max_profit,
                max_loss=max_loss,
                breakeven=breakeven,
                buying_power_required=capital,
                collateral_required=0.0,
                annualized_return=annualized,
                return_on_capital=roc,
                probability_of_profit=pop,
            ),
            exit_rules=ExitRules(
                profit_target_pct=cfg.profit_target_pct,
                max_loss_pct=cfg.max_loss_pct,
                dte_exit=DTE_EXIT,
                roll_guidance="If the stock rallies through the strike, consider rolling up "
                              "and out to keep the shares.",
            ),
            invalidation=(
                InvalidationCondition(InvalidationType.PRICE_BREACH,
                                      "Price moves well above the strike, raising assignment odds",
                                      f"Price > ${strike * 1.05:.2f}"),
                InvalidationCondition(InvalidationType.VOL_SPIKE,
                                      "Implied volatility spikes, making a roll expensive",
                                      "IV Rank > 80%"),
                InvalidationCondition(InvalidationType.TREND_BREAK,
                                      "Stock enters a strong uptrend",
                                      "Trend = strong_uptrend"),
            ),
            reasons=reasons,
            components=components,
            score=total_score(components),
            conviction=build_conviction(signals, ctx.regime, reasons),
            plain_english_summary=summary,
            learning_notes=notes,
        )
