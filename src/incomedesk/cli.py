"""CLI entry point for incomedesk.

Provides commands for running the recommendation pipeline:
  - recompute: Run the full pipeline and print ranked trade packets
  - regime: Show the current market regime
  - signals: Show per-symbol signals
  - presets: Show a risk-profile preset and its validation result
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path

from incomedesk.config import AppConfig, load_config
from incomedesk.data import build_provider
from incomedesk.data.provider import MarketDataProvider
from incomedesk.settings import (
    DEFAULT_SYMBOLS,
    RiskProfilePreset,
    TradingSettings,
    get_default_settings,
    settings_from_dict,
    settings_to_dict,
    validate_settings,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _provider(args: argparse.Namespace, config: AppConfig) -> MarketDataProvider:
    return build_provider(args.provider or config.data_provider, config.cache_ttl_seconds)


def _load_settings(args: argparse.Namespace, config: AppConfig) -> TradingSettings:
    if args.settings:
        data = json.loads(Path(args.settings).read_text())
        if args.preset:
            data["risk_profile_preset"] = args.preset
        settings = settings_from_dict(data)
    else:
        settings = get_default_settings(args.preset or config.risk_profile)

    if config.account_size and settings.risk_limits.account_size is None:
        settings = replace(
            settings, risk_limits=replace(settings.risk_limits, account_size=config.account_size)
        )
    return settings


def _symbols(args: argparse.Namespace, config: AppConfig) -> tuple[str, ...]:
    if getattr(args, "symbols", None):
        return tuple(s.upper() for s in args.symbols)
    return config.symbols or DEFAULT_SYMBOLS


def cmd_recompute(args: argparse.Namespace) -> None:
    """Run regime, signals, strategies and ranking once."""
    from incomedesk.engine import RecomputeFailedError, RecomputeOptions, TradingEngine

    config = load_config()
    settings = _load_settings(args, config)
    validation = validate_settings(settings)
    if not validation.is_valid:
        for error in validation.errors:
            print(f"Invalid settings: {error}", file=sys.stderr)
        sys.exit(2)

    engine = TradingEngine(
        _provider(args, config),
        benchmark=config.benchmark_symbol,
        batch_size=config.symbol_batch_size,
    )
    options = RecomputeOptions(
        workspace_id=config.workspace_id,
        symbols=_symbols(args, config),
        min_score=config.min_score,
        top_per_strategy=config.top_per_strategy,
        max_per_symbol=config.max_per_symbol,
        apply_risk_budget=config.apply_risk_budget,
    )

    try:
        result = asyncio.run(engine.recompute(settings, options))
    except RecomputeFailedError as exc:
        print(f"Recompute {exc.run_id} failed: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps([asdict(p) for p in result.packets], indent=2, default=str))
        return

    regime = result.regime
    stats = result.stats
    print(f"Run ID: {result.run_id}")
    print(
        f"Regime: {regime.trend} / {regime.volatility_regime} / {regime.risk_posture} "
        f"(breadth {regime.breadth.assessment})"
    )
    print(
        f"Symbols: {stats.symbols_processed}/{stats.symbols_requested}  "
        f"Candidates: {stats.candidates_generated} -> {stats.candidates_after_filtering}"
    )
    if result.packets:
        print("\nRanked trades:")
        for i, p in enumerate(result.packets, 1):
            strikes = "/".join(f"{leg.option.strike:g}" for leg in p.legs)
            print(
                f"  {i:2d}. {p.symbol:6s} {p.strategy_type:20s} "
                f"score={p.score:3d} {strikes:>11s} dte={p.dte:2d} "
                f"credit=${p.net_credit:,.0f} max_loss=${p.risk_box.max_loss:,.0f} "
                f"conf={p.conviction.confidence}"
            )
    if stats.errors:
        print(f"\nErrors ({len(stats.errors)}):")
        for error in stats.errors:
            print(f"  - {error}")


def cmd_regime(args: argparse.Namespace) -> None:
    """Show the current market regime."""
    from incomedesk.signals.regime import RegimeDetector, RegimeUnavailableError

    config = load_config()
    detector = RegimeDetector(_provider(args, config), benchmark=config.benchmark_symbol)
    try:
        regime = asyncio.run(detector.detect(config.symbols or DEFAULT_SYMBOLS))
    except RegimeUnavailableError as exc:
        print(f"Regime unavailable: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(asdict(regime), indent=2, default=str))
        return

    print(f"Benchmark: {regime.benchmark}")
    print(f"Trend: {regime.trend} (score {regime.trend_score:+.1f})")
    print(f"Volatility: {regime.volatility_regime}")
    print(f"Risk posture: {regime.risk_posture}")
    b = regime.breadth
    above = f"{b.percent_above_50ma:.1f}%" if b.percent_above_50ma is not None else "N/A"
    print(f"Breadth: {b.assessment} ({above} above 50MA, A/D {b.advancing}/{b.declining})")
    if regime.leadership:
        print("Sector leadership:")
        for sector in regime.leadership:
            print(f"  {sector.symbol:5s} {sector.name:24s} {sector.trend_score:+6.1f} {sector.trend}")


def cmd_signals(args: argparse.Namespace) -> None:
    """Show per-symbol trend, volatility and liquidity signals."""
    from incomedesk.signals.symbol import SymbolAnalyzer

    config = load_config()
    settings = _load_settings(args, config)
    analyzer = SymbolAnalyzer(_provider(args, config), settings, batch_size=config.symbol_batch_size)
    signals = asyncio.run(analyzer.analyze_symbols(_symbols(args, config)))

    if args.json:
        print(json.dumps({s: asdict(v) for s, v in signals.items()}, indent=2, default=str))
        return

    for symbol, s in signals.items():
        iv = f"{s.iv_rank:.0f}" if s.iv_rank is not None else "N/A"
        earnings = " EARNINGS" if s.earnings.within_exclusion_window else ""
        print(
            f"  {symbol:6s} ${s.price:>9,.2f} {s.trend:16s} {s.volatility_regime:9s} "
            f"ivr={iv:>3s} liq={s.liquidity.overall_score:3.0f}"
            f"{'' if s.liquidity.meets_minimum else ' (illiquid)'}{earnings}"
        )
    missing = [sym for sym in _symbols(args, config) if sym not in signals]
    if missing:
        print(f"\nNo signals for: {', '.join(missing)}")


def cmd_presets(args: argparse.Namespace) -> None:
    """Print a preset's settings and validation result."""
    settings = get_default_settings(args.preset)
    validation = validate_settings(settings)
    print(json.dumps(settings_to_dict(settings), indent=2))
    print(f"\nValid: {validation.is_valid}")
    for error in validation.errors:
        print(f"  - {error}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="incomedesk",
        description="Explainable options-income trade recommendations",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subs = parser.add_subparsers(dest="command", required=True)
    presets = [p.value for p in RiskProfilePreset]

    # recompute
    p_recompute = subs.add_parser("recompute", help="Run the full recommendation pipeline")
    p_recompute.add_argument("--preset", choices=presets, help="Risk profile preset")
    p_recompute.add_argument("--symbols", nargs="+", help="Symbols to scan (default: config or built-in list)")
    p_recompute.add_argument("--settings", help="JSON file with settings overrides")
    p_recompute.add_argument("--provider", choices=["simulated", "yfinance"], help="Market data provider")
    p_recompute.add_argument("--json", action="store_true", help="Print packets as JSON")

    # regime
    p_regime = subs.add_parser("regime", help="Show the current market regime")
    p_regime.add_argument("--provider", choices=["simulated", "yfinance"], help="Market data provider")
    p_regime.add_argument("--json", action="store_true", help="Print as JSON")

    # signals
    p_signals = subs.add_parser("signals", help="Show per-symbol signals")
    p_signals.add_argument("symbols", nargs="+", help="Symbols to analyze")
    p_signals.add_argument("--preset", choices=presets, help="Risk profile preset")
    p_signals.add_argument("--settings", help="JSON file with settings overrides")
    p_signals.add_argument("--provider", choices=["simulated", "yfinance"], help="Market data provider")
    p_signals.add_argument("--json", action="store_true", help="Print as JSON")

    # presets
    p_presets = subs.add_parser("presets", help="Show a risk profile preset")
    p_presets.add_argument("--preset", choices=presets, default="balanced", help="Preset to show")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    commands = {
        "recompute": cmd_recompute,
        "regime": cmd_regime,
        "signals": cmd_signals,
        "presets": cmd_presets,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
