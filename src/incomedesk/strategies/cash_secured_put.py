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
    risk_pct_of_account,
    total_score,
)

MIN_ANNUALIZED_RETURN = 15.0
MIN_IV_RANK = 30.0
MIN_BUFFER_PCT = 3.0
DEFAULT_POP = 70
DTE_EXIT = 7

_TREND_ALIGNMENT = {
    TrendRegime.STRONG_UPTREND: 100,
    TrendRegime.UPTREND: 80,
    TrendRegime.NEUTRAL: 60,
}


class CashSecuredPutStrategy(BaseStrategy):
    """Sell an OTM put fully collateralized by cash.

    Suited to neutral-to-bullish views on a stock worth owning at the
    strike less the premium.
    """

    strategy_type = StrategyType.CASH_SECURED_PUT
    name = "Cash-Secured Put"

    def should_consider(self, ctx: StrategyContext) -> bool:
        if not self._passes_common_gate(ctx):
            return False
        if (
            ctx.signals.trend is TrendRegime.STRONG_DOWNTREND
            and ctx.settings.risk_profile_preset is not RiskProfilePreset.AGGRESSIVE
        ):
            return False
        preferred = ctx.settings.preferred_trend_regimes
        return not preferred or ctx.signals.trend in preferred

    def find_candidates(self, ctx: StrategyContext) -> list[StrategyCandidate]:
        if not self._in_dte_window(ctx):
            return []
        cfg = self.settings_for(ctx.settings)
        puts = self._select_single_leg(
            ctx, ctx.chain.puts, lambda d: cfg.min_delta <= abs(d) <= cfg.max_delta
        )
        candidates = [self._build(ctx, put) for put in puts]
        return [c for c in candidates if c is not None]

    def _build(self, ctx: StrategyContext, put: OptionContract) -> StrategyCandidate | None:
        settings = ctx.settings
        cfg = self.settings_for(settings)
        filters = settings.liquidity
        signals = ctx.signals
        price = ctx.quote.price
        dte = ctx.dte

        mid = put.mid
        strike = put.strike
        credit = round2(mid * 100)
        max_loss = round2((strike - mid) * 100)
        capital = round2(strike * 100)
        breakeven = round2(strike - mid)
        annualized = annualized_return(credit, max_loss, dte)
        roc = return_on_capital(credit, capital)
        pop = estimate_probability_of_profit(put.delta) if put.delta else DEFAULT_POP

        risk_pct = risk_pct_of_account(max_loss, settings)
        if risk_pct > settings.risk_limits.max_risk_per_trade_pct:
            return None

        buffer_pct = (price - strike) / price * 100
        spread = spread_pct(put.bid, put.ask)
        iv_rank = ctx.iv_rank_or_neutral

        reasons = (
            make_reason("Liquidity", "Option OI", put.open_interest >= filters.min_option_oi,
                        put.open_interest, f">= {filters.min_option_oi}", 1),
            make_reason("Liquidity", "Bid-Ask Spread", spread <= filters.max_bid_ask_spread_pct,
                        f"{spread:.1f}%", f"<= {filters.max_bid_ask_spread_pct}%", 1.5),
            make_reason("Delta", "Delta Target", cfg.min_delta <= abs(put.delta or 0) <= cfg.max_delta,
                        f"{put.delta:.2f}", f"-{cfg.min_delta} to -{cfg.max_delta}", 1.5),
            make_reason("Premium", "Annualized Return", annualized >= MIN_ANNUALIZED_RETURN,
                        f"{annualized:.1f}%", f">= {MIN_ANNUALIZED_RETURN:g}%", 2),
            make_reason("Trend", "Trend Alignment", not signals.trend.is_down,
                        signals.trend, "Not in downtrend", 1.5),
            make_reason("Volatility", "IV Rank", iv_rank >= MIN_IV_RANK,
                        f"{signals.iv_rank:g}%" if signals.iv_rank is not None else "N/A",
                        f">= {MIN_IV_RANK:g}%", 1),
            make_reason("Risk", "Risk Per Trade", risk_pct <= settings.risk_limits.max_risk_per_trade_pct,
                        f"{risk_pct:.1f}%", f"<= {settings.risk_limits.max_risk_per_trade_pct}%", 2),
            make_reason("Buffer", "Buffer to Strike", buffer_pct >= MIN_BUFFER_PCT,
                        f"{buffer_pct:.1f}%", f">= {MIN_BUFFER_PCT:g}%", 1),
        )

        components = (
            make_component("Premium Yield", annualized, 0.25, 40),
            make_component("Liquidity", signals.liquidity.overall_score, 0.20),
            make_component("IV Rank", iv_rank, 0.15),
            make_component("Trend Alignment", _TREND_ALIGNMENT.get(signals.trend, 20), 0.20),
            make_component("Buffer Score", min(100.0, buffer_pct * 10), 0.10),
            make_component("Probability of Profit", pop, 0.10),
        )

        summary = (
            f"Sell a {put.expiration} ${strike:g} put on {ctx.symbol} for ${mid:.2f} credit "
            f"(${credit:.0f} per contract). The trade profits if {ctx.symbol} stays above "
            f"${breakeven:.2f} by expiration. Maximum risk is ${max_loss:,.0f} if {ctx.symbol} "
            f"goes to $0, and ${capital:,.0f} in cash is held as collateral."
        )
        notes = (
            "Cash-secured put: collect premium up front; if assigned you buy the stock "
            "at the strike minus the premium.",
            f"Delta: {abs(put.delta or 0):.2f} implies roughly a {abs(put.delta or 0) * 100:.0f}% "
            "chance of finishing in the money.",
            f"Exit: consider closing at {cfg.profit_target_pct:g}% of max profit "
            f"(${credit * cfg.profit_target_pct / 100:.0f}).",
        )

        return StrategyCandidate(
            strategy_type=self.strategy_type,
            symbol=ctx.symbol,
            underlying_price=price,
            legs=(OptionLeg(action=LegAction.SELL, quantity=1, option=put, order_price=mid),),
            net_credit=credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=credit,
                max_loss=max_loss,
                breakeven=breakeven,
                buying_power_required=capital,
                collateral_required=capital,
                annualized_return=annualized,
                return_on_capital=roc,
                probability_of_profit=pop,
            ),
            exit_rules=ExitRules(
                profit_target_pct=cfg.profit_target_pct,
                max_loss_pct=cfg.max_loss_pct,
                dte_exit=DTE_EXIT,
                roll_guidance="If in the money near expiration, consider rolling down and out "
                              "for additional credit instead of taking assignment.",
            ),
            invalidation=(
                InvalidationCondition(InvalidationType.TREND_BREAK,
                                      "Price breaks below the 50-day moving average",
                                      f"Price < ${signals.ma50:.2f}"),
                InvalidationCondition(InvalidationType.VOL_SPIKE,
                                      "Implied volatility spikes", "IV Rank > 80%"),
                InvalidationCondition(InvalidationType.LIQUIDITY_DETERIORATION,
                                      "Bid-ask spread widens significantly",
                                      f"Spread > {filters.max_bid_ask_spread_pct * 2:g}%"),
            ),
            reasons=reasons,
            components=components,
            score=total_score(components),
            conviction=build_conviction(signals, ctx.regime, reasons),
            plain_english_summary=summary,
            learning_notes=notes,
        )
