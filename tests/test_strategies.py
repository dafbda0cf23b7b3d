from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from factories import AS_OF, make_contract, make_quote, make_regime, make_signals
from incomedesk.analytics.indicators import round_half_up
from incomedesk.models.market import OptionChain, OptionType
from incomedesk.models.regime import (
    BreadthAssessment,
    RiskPosture,
    TrendRegime,
    VolatilityRegime,
)
from incomedesk.models.trade import (
    FactorImpact,
    LegAction,
    PacketStatus,
    StrategyCandidate,
    StrategyType,
)
from incomedesk.settings import TradingSettings, get_default_settings
from incomedesk.strategies import (
    CashSecuredPutStrategy,
    CoveredCallStrategy,
    CreditSpreadStrategy,
    RunContext,
    StrategyContext,
    build_conviction,
    get_all_strategies,
    make_component,
    make_reason,
)

EXPIRATION = AS_OF + timedelta(days=32)


def _settings(preset: str = "balanced", account_size: float | None = None) -> TradingSettings:
    settings = get_default_settings(preset)
    if account_size is not None:
        settings = replace(settings, risk_limits=replace(settings.risk_limits, account_size=account_size))
    return settings


def _make_ctx(
    puts: tuple = (),
    calls: tuple = (),
    *,
    settings: TradingSettings | None = None,
    expiration=EXPIRATION,
    **signal_kwargs,
) -> StrategyContext:
    return StrategyContext(
        quote=make_quote("AAPL", 242.85),
        chain=OptionChain(underlying="AAPL", expiration=expiration, calls=calls, puts=puts),
        signals=make_signals("AAPL", 242.85, **signal_kwargs),
        regime=make_regime(),
        settings=settings or _settings(),
        as_of=AS_OF,
    )


def _assert_score_consistent(candidate: StrategyCandidate) -> None:
    assert 0 <= candidate.score <= 100
    raw = sum(c.normalized_score * c.weight for c in candidate.components)
    assert candidate.score == round_half_up(raw)
    for component in candidate.components:
        assert 0 <= component.normalized_score <= 100


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_make_component_normalizes(self) -> None:
        c = make_component("Premium Yield", 10.53, 0.25, 40)
        assert c.normalized_score == pytest.approx(26.325)
        assert c.weighted_score == pytest.approx(6.58125)

    def test_make_component_clamps(self) -> None:
        assert make_component("x", 500, 0.1).normalized_score == 100
        assert make_component("x", -5, 0.1).normalized_score == 0

    def test_make_reason_contribution(self) -> None:
        assert make_reason("Risk", "Defined", True, 1, 1, 2).contribution == 2
        assert make_reason("Risk", "Defined", False, 1, 1, 2).contribution == 0

    def test_conviction_positive_factors(self) -> None:
        reasons = [make_reason("a", "b", True, 1, 1)] * 4
        meter = build_conviction(make_signals(liquidity_score=80), make_regime(), reasons)
        names = {f.factor for f in meter.factors}
        assert "High liquidity" in names
        assert "Favorable regime" in names
        # 100 * 0.5 + 80 * 0.3 + 45 * 0.2
        assert meter.confidence == 83
        assert meter.uncertainty == 0

    def test_conviction_regime_factor_needs_symbol_uptrend(self) -> None:
        signals = make_signals(trend=TrendRegime.STRONG_DOWNTREND, liquidity_score=80)
        meter = build_conviction(signals, make_regime(), [])
        names = {f.factor for f in meter.factors}
        assert "High liquidity" in names
        assert "Favorable regime" not in names

    def test_conviction_uncertainty_accumulates(self) -> None:
        signals = make_signals(liquidity_score=30, within_earnings=True, iv_rank=10)
        regime = make_regime(
            trend=TrendRegime.DOWNTREND,
            volatility=VolatilityRegime.HIGH,
            posture=RiskPosture.RISK_OFF,
            breadth=BreadthAssessment.WEAK,
        )
        meter = build_conviction(signals, regime, [])
        assert meter.uncertainty == 70
        assert all(f.impact == FactorImpact.NEGATIVE for f in meter.factors)
        assert 0 <= meter.confidence <= 100

    def test_get_all_strategies(self) -> None:
        types = [s.strategy_type for s in get_all_strategies()]
        assert types == list(StrategyType)


# ---------------------------------------------------------------------------
# Cash-secured put
# ---------------------------------------------------------------------------


class TestCashSecuredPut:
    def test_reference_example(self) -> None:
        ctx = _make_ctx(puts=(make_contract(235.0),), settings=_settings(account_size=1_000_000))
        [candidate] = CashSecuredPutStrategy().find_candidates(ctx)

        box = candidate.risk_box
        assert candidate.dte == 32
        assert candidate.net_credit == 215.0
        assert box.max_profit == 215.0
        assert box.max_loss == 23285.0
        assert box.breakeven == 232.85
        assert box.collateral_required == 23500.0
        assert box.annualized_return == 10.53
        assert box.probability_of_profit == 75
        assert candidate.legs[0].action == LegAction.SELL
        assert candidate.legs[0].order_price == pytest.approx(2.15)
        assert candidate.score == 56
        _assert_score_consistent(candidate)

    def test_discarded_over_risk_per_trade(self) -> None:
        # 23,285 max loss is 23% of the default 100k account
        ctx = _make_ctx(puts=(make_contract(235.0),))
        assert CashSecuredPutStrategy().find_candidates(ctx) == []

    def test_top_three_by_premium(self) -> None:
        puts = tuple(
            make_contract(strike, bid=bid, ask=bid + 0.10)
            for strike, bid in ((235.0, 2.10), (232.5, 1.80), (230.0, 1.50), (227.5, 1.20))
        )
        ctx = _make_ctx(puts=puts, settings=_settings(account_size=1_000_000))
        candidates = CashSecuredPutStrategy().find_candidates(ctx)
        assert [c.legs[0].option.strike for c in candidates] == [235.0, 232.5, 230.0]

    def test_skips_itm_out_of_band_and_illiquid(self) -> None:
        puts = (
            make_contract(245.0, in_the_money=True),
            make_contract(220.0, delta=-0.05),
            make_contract(237.5, open_interest=10),
            make_contract(236.0, bid=1.00, ask=2.00),
            make_contract(234.0, bid=0.04, ask=0.06),
        )
        ctx = _make_ctx(puts=puts, settings=_settings(account_size=1_000_000))
        assert CashSecuredPutStrategy().find_candidates(ctx) == []

    def test_outside_dte_window(self) -> None:
        ctx = _make_ctx(
            puts=(make_contract(235.0),),
            settings=_settings(account_size=1_000_000),
            expiration=AS_OF + timedelta(days=60),
        )
        assert CashSecuredPutStrategy().find_candidates(ctx) == []

    def test_gate(self) -> None:
        csp = CashSecuredPutStrategy()
        assert csp.should_consider(_make_ctx())
        assert not csp.should_consider(_make_ctx(meets_minimum=False))
        assert not csp.should_consider(_make_ctx(within_earnings=True))
        assert not csp.should_consider(_make_ctx(trend=TrendRegime.STRONG_DOWNTREND))
        assert csp.should_consider(
            _make_ctx(trend=TrendRegime.STRONG_DOWNTREND, settings=_settings("aggressive"))
        )
        # Conservative prefers neutral and up-trends only
        assert not csp.should_consider(
            _make_ctx(trend=TrendRegime.DOWNTREND, settings=_settings("conservative"))
        )

    def test_disabled(self) -> None:
        settings = _settings()
        settings = replace(settings, cash_secured_put=replace(settings.cash_secured_put, enabled=False))
        assert not CashSecuredPutStrategy().should_consider(_make_ctx(settings=settings))


# ---------------------------------------------------------------------------
# Covered call
# ---------------------------------------------------------------------------


class TestCoveredCall:
    def _call(self, **kwargs):
        return make_contract(250.0, OptionType.CALL, bid=2.00, ask=2.10, delta=0.25, **kwargs)

    def test_risk_box(self) -> None:
        ctx = _make_ctx(calls=(self._call(),))
        [candidate] = CoveredCallStrategy().find_candidates(ctx)
        box = candidate.risk_box
        assert candidate.net_credit == 205.0
        assert box.max_profit == 920.0
        assert box.max_loss == 24080.0
        assert box.breakeven == 240.8
        assert box.collateral_required == 0.0
        assert box.buying_power_required == 24285.0
        assert candidate.exit_rules.max_loss_pct is None
        _assert_score_consistent(candidate)

    def test_no_risk_cap(self) -> None:
        # Max loss is far above 3% of the default account yet the call is kept
        ctx = _make_ctx(calls=(self._call(),))
        assert len(CoveredCallStrategy().find_candidates(ctx)) == 1

    def test_positive_delta_band(self) -> None:
        ctx = _make_ctx(calls=(make_contract(250.0, OptionType.CALL, delta=-0.25),))
        assert CoveredCallStrategy().find_candidates(ctx) == []

    def test_gate(self) -> None:
        cc = CoveredCallStrategy()
        assert cc.should_consider(_make_ctx(trend=TrendRegime.STRONG_UPTREND))
        assert not cc.should_consider(
            _make_ctx(trend=TrendRegime.STRONG_UPTREND, settings=_settings("conservative"))
        )
        assert not cc.should_consider(_make_ctx(within_earnings=True))


# ---------------------------------------------------------------------------
# Credit spreads
# ---------------------------------------------------------------------------


def _put_spread_chain(long_bid: float = 1.00, short_bid: float = 2.10) -> tuple:
    return (
        make_contract(230.0, bid=long_bid, ask=long_bid + 0.10, delta=-0.12),
        make_contract(235.0, bid=short_bid, ask=short_bid + 0.10, delta=-0.25),
    )


def _call_spread_chain(short_delta: float = 0.25) -> tuple:
    return (
        make_contract(250.0, OptionType.CALL, bid=2.10, ask=2.20, delta=short_delta),
        make_contract(255.0, OptionType.CALL, bid=1.00, ask=1.10, delta=0.12),
    )


class TestPutCreditSpread:
    def test_risk_box(self) -> None:
        [candidate] = CreditSpreadStrategy.puts().find_candidates(_make_ctx(puts=_put_spread_chain()))
        box = candidate.risk_box

        assert candidate.strategy_type == StrategyType.PUT_CREDIT_SPREAD
        assert [leg.action for leg in candidate.legs] == [LegAction.SELL, LegAction.BUY]
        assert candidate.net_credit == 110.0
        assert box.max_loss == 390.0
        assert box.max_loss > 0
        assert box.breakeven == 233.9
        assert 230.0 < box.breakeven < 235.0
        assert box.breakeven_lower == 230.0
        assert box.breakeven_upper is None
        assert box.probability_of_profit == 75
        assert candidate.exit_rules.dte_exit == 14
        _assert_score_consistent(candidate)

    def test_credit_below_minimum(self) -> None:
        chain = _put_spread_chain(long_bid=2.00)
        assert CreditSpreadStrategy.puts().find_candidates(_make_ctx(puts=chain)) == []

    def test_non_positive_max_loss_discarded(self) -> None:
        chain = (
            make_contract(230.0, bid=0.95, ask=1.05, delta=-0.12),
            make_contract(235.0, bid=6.00, ask=6.20, delta=-0.25),
        )
        assert CreditSpreadStrategy.puts().find_candidates(_make_ctx(puts=chain)) == []

    def test_requires_long_leg(self) -> None:
        chain = (make_contract(235.0, delta=-0.25),)
        assert CreditSpreadStrategy.puts().find_candidates(_make_ctx(puts=chain)) == []

    def test_gate(self) -> None:
        pcs = CreditSpreadStrategy.puts()
        assert pcs.should_consider(_make_ctx())
        assert not pcs.should_consider(_make_ctx(volatility=VolatilityRegime.LOW))
        assert not pcs.should_consider(_make_ctx(trend=TrendRegime.STRONG_DOWNTREND))
        assert pcs.should_consider(_make_ctx(trend=TrendRegime.STRONG_UPTREND))


class TestCallCreditSpread:
    def test_risk_box(self) -> None:
        [candidate] = CreditSpreadStrategy.calls().find_candidates(_make_ctx(calls=_call_spread_chain()))
        box = candidate.risk_box

        assert candidate.strategy_type == StrategyType.CALL_CREDIT_SPREAD
        assert candidate.net_credit == 110.0
        assert box.max_loss == 390.0
        assert box.breakeven == 251.1
        assert 250.0 < box.breakeven < 255.0
        assert box.breakeven_upper == 255.0
        assert box.breakeven_lower is None
        _assert_score_consistent(candidate)

    def test_probability_of_profit_unrounded(self) -> None:
        [call] = CreditSpreadStrategy.calls().find_candidates(
            _make_ctx(calls=_call_spread_chain(short_delta=0.255))
        )
        assert call.risk_box.probability_of_profit == pytest.approx(74.5)

    def test_disabled_under_conservative(self) -> None:
        ctx = _make_ctx(settings=_settings("conservative"))
        assert not CreditSpreadStrategy.calls().should_consider(ctx)

    def test_gate(self) -> None:
        ccs = CreditSpreadStrategy.calls()
        assert not ccs.should_consider(_make_ctx(trend=TrendRegime.STRONG_UPTREND))
        assert ccs.should_consider(_make_ctx(trend=TrendRegime.DOWNTREND))

    def test_rejects_non_spread_type(self) -> None:
        with pytest.raises(ValueError):
            CreditSpreadStrategy(StrategyType.COVERED_CALL)


# ---------------------------------------------------------------------------
# Packets
# ---------------------------------------------------------------------------


class TestToPacket:
    def test_stamps_run_provenance(self) -> None:
        ctx = _make_ctx(puts=_put_spread_chain())
        strategy = CreditSpreadStrategy.puts()
        [candidate] = strategy.find_candidates(ctx)
        run = RunContext(
            workspace_id="ws",
            settings_version_id="v1",
            risk_profile_preset="balanced",
            recompute_run_id="run-9",
        )
        packet = strategy.to_packet(candidate, ctx, run)

        assert packet.status == PacketStatus.CANDIDATE
        assert packet.workspace_id == "ws"
        assert packet.recompute_run_id == "run-9"
        assert packet.regime is ctx.regime
        assert packet.signals is ctx.signals
        assert packet.score == candidate.score
        assert packet.risk_box == candidate.risk_box
        assert packet.id

    def test_packet_ids_unique(self) -> None:
        ctx = _make_ctx(puts=_put_spread_chain())
        strategy = CreditSpreadStrategy.puts()
        [candidate] = strategy.find_candidates(ctx)
        run = RunContext("ws", "v1", "balanced", "run-9")
        assert strategy.to_packet(candidate, ctx, run).id != strategy.to_packet(candidate, ctx, run).id
