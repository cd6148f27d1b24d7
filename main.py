"""
Command line entry point for the SMC Backtester.

Usage:
    python main.py analyze  --symbol BTCUSDT
    python main.py backtest --symbol BTCUSDT --range 3M --trades out.csv
    python main.py optimize --symbol BTCUSDT --sweep rr_ratio=1:3:0.5 \
        --sweep htf_swing_lookback=5:15:5 --metric net_profit_percent --apply
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Dict, List, Optional

import config
from backtest_engine import run_backtest, save_trades_to_csv
from data_loader import TIME_RANGES, load_chart_data
from formatting import format_backtest_summary, format_signal_message, format_trade_table
from logging_utils import configure_logging
from optimizer import (
    TARGET_METRICS,
    OptimizerParameter,
    OptimizerSettings,
    TooManyCombinationsError,
    apply_best_params,
    print_optimization_summary,
    run_optimization,
    save_best_config,
)
from settings import get_strategy_settings, print_config_status, save_settings
from smc_core import analyze_smc

logger = logging.getLogger(__name__)

SWEEPABLE = ("htf_swing_lookback", "ltf_choch_lookback", "discount_zone", "rr_ratio")


def _parse_sweeps(values: Optional[List[str]]) -> Dict[str, OptimizerParameter]:
    sweeps = {}
    for item in values or []:
        name, sep, text = item.partition("=")
        if not sep or name not in SWEEPABLE:
            raise ValueError(f"Invalid --sweep {item!r}; expected NAME=start:end:step with NAME in {', '.join(SWEEPABLE)}")
        sweeps[name] = OptimizerParameter.parse(text)
    return sweeps


def _load(args) -> Dict[str, list]:
    return load_chart_data(
        args.symbol,
        args.htf,
        args.mtf,
        args.ltf,
        time_range=args.range,
    )


def cmd_analyze(args) -> int:
    settings = get_strategy_settings(args.settings)
    chart_data = _load(args)
    analysis = analyze_smc(chart_data, settings)

    counts: Dict[str, int] = {}
    for d in analysis.drawings:
        counts[d.kind] = counts.get(d.kind, 0) + 1
    print(f"Drawings: {counts or 'none'}")
    print(f"Signals: {len(analysis.signals)}\n")

    for signal in analysis.signals[-args.last:]:
        print(format_signal_message(args.symbol, signal, use_html=False))
        print()
    return 0


def cmd_backtest(args) -> int:
    settings = get_strategy_settings(args.settings)
    chart_data = _load(args)
    analysis = analyze_smc(chart_data, settings)
    result = run_backtest(chart_data["ltf"], analysis.signals, settings)

    print(format_backtest_summary(result, args.symbol, initial_equity=settings.initial_capital))
    print()
    print(format_trade_table(result.trades, limit=args.last))

    if args.trades:
        save_trades_to_csv(result, args.trades)
    return 0


def cmd_optimize(args) -> int:
    base_settings = get_strategy_settings(args.settings)
    optimizer_settings = OptimizerSettings(target_metric=args.metric, **_parse_sweeps(args.sweep))

    chart_data = _load(args)
    try:
        results = run_optimization(
            chart_data,
            base_settings,
            optimizer_settings,
            parallel=args.parallel,
            max_workers=config.OPTIMIZER_WORKERS,
        )
    except TooManyCombinationsError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print_optimization_summary(results, args.metric, top_n=args.top)

    if results.best_run is not None:
        save_best_config(results, base_settings, str(config.BEST_CONFIG_FILE))
        if args.apply:
            save_settings(apply_best_params(base_settings, results), args.settings)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SMC structure analysis, backtest and optimizer")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_data_args(p: argparse.ArgumentParser):
        p.add_argument("--symbol", default=config.DEFAULT_SYMBOL)
        p.add_argument("--htf", default=config.HTF_INTERVAL, help="High timeframe interval")
        p.add_argument("--mtf", default=config.MTF_INTERVAL, help="Mid timeframe interval")
        p.add_argument("--ltf", default=config.LTF_INTERVAL, help="Low timeframe interval")
        p.add_argument("--range", default=config.DEFAULT_TIME_RANGE, choices=sorted(TIME_RANGES))
        p.add_argument("--settings", default=None, help="Settings JSON file")

    p_analyze = sub.add_parser("analyze", help="Detect structure and list signals")
    add_data_args(p_analyze)
    p_analyze.add_argument("--last", type=int, default=5, help="Signals to print")
    p_analyze.set_defaults(func=cmd_analyze)

    p_backtest = sub.add_parser("backtest", help="Backtest current settings")
    add_data_args(p_backtest)
    p_backtest.add_argument("--last", type=int, default=20, help="Trades to print")
    p_backtest.add_argument("--trades", default=None, help="Write trades to this CSV file")
    p_backtest.set_defaults(func=cmd_backtest)

    p_opt = sub.add_parser("optimize", help="Sweep parameters and rank runs")
    add_data_args(p_opt)
    p_opt.add_argument("--sweep", action="append", help="NAME=start:end:step (repeatable)")
    p_opt.add_argument("--metric", default="net_profit_percent", choices=TARGET_METRICS)
    p_opt.add_argument("--parallel", action="store_true", help="Run combinations on a thread pool")
    p_opt.add_argument("--top", type=int, default=10)
    p_opt.add_argument("--apply", action="store_true", help="Save the best parameters as current settings")
    p_opt.set_defaults(func=cmd_optimize)

    sub.add_parser("status", help="Show settings status").set_defaults(
        func=lambda args: print_config_status() or 0
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, config.LOG_FILE)

    try:
        return args.func(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
