"""
Strategy Optimizer for the SMC Backtester.

This module sweeps strategy parameters over inclusive arithmetic ranges,
runs the SMC analysis and the backtest once per combination against the
same candle data, and ranks the runs by a target metric.

Ranking direction:
- max_drawdown, max_drawdown_amount: lower is better
- every other metric: higher is better

The grid is capped at MAX_COMBINATIONS; larger sweeps are rejected
before any run starts.
"""

from __future__ import annotations

import itertools
import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from backtest_engine import BacktestResult, run_backtest
from smc_core import SMCSettings, analyze_smc

logger = logging.getLogger(__name__)

MAX_COMBINATIONS = 500

# Absorbs float error in (end - start) / step
_RANGE_EPSILON = 1e-9

INTEGER_PARAMETERS = {"htf_swing_lookback", "ltf_choch_lookback"}

LOWER_IS_BETTER = {"max_drawdown", "max_drawdown_amount"}

TARGET_METRICS = (
    "net_profit_percent",
    "profit_factor",
    "win_rate",
    "max_drawdown",
    "max_drawdown_amount",
    "total_trades",
    "final_equity",
)


class TooManyCombinationsError(ValueError):
    """Raised when a sweep would exceed MAX_COMBINATIONS."""

    def __init__(self, count: int, limit: int = MAX_COMBINATIONS):
        self.count = count
        self.limit = limit
        super().__init__(
            f"Too many combinations to test: {count} (limit {limit}). "
            "Please narrow the optimization range."
        )


@dataclass(frozen=True)
class OptimizerParameter:
    """Inclusive range [start, end] stepped by step; ignored unless enabled."""
    enabled: bool = False
    start: float = 0.0
    end: float = 0.0
    step: float = 1.0

    def size(self, integer: bool = False) -> int:
        """Number of values ``values()`` returns, computed without expanding."""
        if self.step <= 0:
            raise ValueError(f"Optimizer step must be positive, got {self.step}")
        if self.start > self.end:
            return 0

        count = math.floor((self.end - self.start) / self.step + _RANGE_EPSILON) + 1
        if integer and self.step < 1:
            # consecutive values round to the same or the next int
            last = self.start + self.step * (count - 1)
            return int(round(last)) - int(round(self.start)) + 1
        return count

    def values(self, integer: bool = False) -> List[Any]:
        """Expand the range. Empty when start > end."""
        count = self.size()
        if count == 0:
            return []

        values = self.start + self.step * np.arange(count)

        if integer:
            # fractional steps on integer fields collapse to distinct ints
            return list(dict.fromkeys(int(round(v)) for v in values))
        return [float(round(v, 10)) for v in values]

    @classmethod
    def parse(cls, text: str) -> "OptimizerParameter":
        """Parse 'start:end:step' into an enabled parameter."""
        parts = text.split(":")
        if len(parts) != 3:
            raise ValueError(f"Expected start:end:step, got {text!r}")
        start, end, step = (float(p) for p in parts)
        return cls(enabled=True, start=start, end=end, step=step)


@dataclass(frozen=True)
class OptimizerSettings:
    """Which settings to sweep and which metric decides the best run."""
    htf_swing_lookback: OptimizerParameter = field(default_factory=OptimizerParameter)
    ltf_choch_lookback: OptimizerParameter = field(default_factory=OptimizerParameter)
    discount_zone: OptimizerParameter = field(default_factory=OptimizerParameter)
    rr_ratio: OptimizerParameter = field(default_factory=OptimizerParameter)
    target_metric: str = "net_profit_percent"

    def parameters(self) -> List[Tuple[str, OptimizerParameter]]:
        """Swept parameters as (settings field, range) pairs in a fixed order."""
        return [
            ("htf_swing_lookback", self.htf_swing_lookback),
            ("ltf_choch_lookback", self.ltf_choch_lookback),
            ("discount_zone", self.discount_zone),
            ("rr_ratio", self.rr_ratio),
        ]

    def enabled_ranges(self) -> List[Tuple[str, List[Any]]]:
        """Expanded value lists for enabled parameters only."""
        return [
            (key, param.values(integer=key in INTEGER_PARAMETERS))
            for key, param in self.parameters()
            if param.enabled
        ]


@dataclass
class OptimizationRun:
    """Result of one parameter combination."""
    id: int
    params: Dict[str, Any]
    result: BacktestResult

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "params": self.params, **self.result.to_dict()}


@dataclass
class OptimizationResults:
    runs: List[OptimizationRun] = field(default_factory=list)
    best_run: Optional[OptimizationRun] = None


def count_combinations(optimizer_settings: OptimizerSettings) -> int:
    """Size of the grid; disabled parameters contribute a factor of 1."""
    return math.prod(
        param.size(integer=key in INTEGER_PARAMETERS)
        for key, param in optimizer_settings.parameters()
        if param.enabled
    )


def generate_combinations(optimizer_settings: OptimizerSettings) -> List[Dict[str, Any]]:
    """
    Generate all parameter override combinations.

    No enabled parameter yields a single empty override (run base settings
    as-is); an enabled parameter with an empty range yields no combination.

    Raises:
        TooManyCombinationsError: when the grid exceeds MAX_COMBINATIONS
    """
    count = count_combinations(optimizer_settings)
    if count > MAX_COMBINATIONS:
        raise TooManyCombinationsError(count)

    ranges = optimizer_settings.enabled_ranges()

    keys = [key for key, _ in ranges]
    return [dict(zip(keys, combo)) for combo in itertools.product(*(values for _, values in ranges))]


def _check_metric(metric: str):
    if metric not in TARGET_METRICS:
        raise ValueError(f"Unknown target metric {metric!r}, expected one of {', '.join(TARGET_METRICS)}")


def rank_runs(runs: Sequence[OptimizationRun], metric: str) -> List[OptimizationRun]:
    """Sort runs best first for the metric; ties keep id order."""
    _check_metric(metric)
    sign = 1 if metric in LOWER_IS_BETTER else -1
    return sorted(runs, key=lambda r: (sign * getattr(r.result, metric), r.id))


def evaluate_params(
    chart_data: Dict[str, Sequence[Dict]],
    settings: SMCSettings,
) -> BacktestResult:
    """Run analysis and backtest for one settings value."""
    analysis = analyze_smc(chart_data, settings)
    return run_backtest(chart_data.get("ltf") or [], analysis.signals, settings)


def run_optimization(
    chart_data: Dict[str, Sequence[Dict]],
    base_settings: SMCSettings,
    optimizer_settings: OptimizerSettings,
    parallel: bool = False,
    max_workers: Optional[int] = None,
) -> OptimizationResults:
    """
    Run the strategy once per parameter combination and rank the runs.

    Args:
        chart_data: Dict with keys "htf", "mtf", "ltf"
        base_settings: Settings the overrides are applied to
        optimizer_settings: Swept parameters and target metric
        parallel: Run combinations on a thread pool
        max_workers: Thread pool size (executor default if None)

    Returns:
        OptimizationResults with runs sorted best first

    Raises:
        TooManyCombinationsError: when the grid exceeds MAX_COMBINATIONS
        ValueError: for an unknown metric or a combination producing
            invalid settings
    """
    metric = optimizer_settings.target_metric
    _check_metric(metric)

    combinations = generate_combinations(optimizer_settings)
    if not combinations:
        return OptimizationResults()

    # Build every settings value up front so bad ranges fail before any run
    candidates = [
        (i, params, base_settings.replace(**params))
        for i, params in enumerate(combinations)
    ]

    logger.info("Optimizing %d combinations (metric=%s, parallel=%s)", len(candidates), metric, parallel)

    runs: List[OptimizationRun] = []

    if parallel and len(candidates) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(evaluate_params, chart_data, settings): (i, params)
                for i, params, settings in candidates
            }
            for future in as_completed(futures):
                i, params = futures[future]
                runs.append(OptimizationRun(id=i, params=params, result=future.result()))
    else:
        for i, params, settings in candidates:
            result = evaluate_params(chart_data, settings)
            runs.append(OptimizationRun(id=i, params=params, result=result))
            logger.debug("Run %d/%d %s -> %s=%s", i + 1, len(candidates), params, metric, getattr(result, metric))

    ranked = rank_runs(runs, metric)
    best = ranked[0]
    logger.info("Best run #%d %s: %s=%s", best.id, best.params, metric, getattr(best.result, metric))

    return OptimizationResults(runs=ranked, best_run=best)


def apply_best_params(base_settings: SMCSettings, results: OptimizationResults) -> SMCSettings:
    """Return base settings with the best run's overrides applied."""
    if results.best_run is None:
        return base_settings
    return base_settings.replace(**results.best_run.params)


def save_best_config(
    results: OptimizationResults,
    base_settings: SMCSettings,
    filename: str = "best_smc_config.json",
    top_n: int = 5,
) -> Optional[Dict[str, Any]]:
    """
    Save the best configuration to a JSON file.

    Args:
        results: Ranked optimization results
        base_settings: Settings the best overrides were applied to
        filename: Output filename
        top_n: Number of top runs to keep as alternatives

    Returns:
        The saved config dict, or None without a best run
    """
    if results.best_run is None:
        logger.info("No results to save.")
        return None

    best = results.best_run
    config = {
        "settings": apply_best_params(base_settings, results).to_dict(),
        "params": best.params,
        "metadata": best.result.to_dict(),
        "alternatives": [r.to_dict() for r in results.runs[1:top_n]],
    }

    with open(filename, "w") as f:
        json.dump(config, f, indent=2)

    logger.info("Best configuration saved to: %s", filename)
    return config


def load_best_config(filename: str = "best_smc_config.json") -> Optional[Dict[str, Any]]:
    """Load best configuration from JSON file."""
    path = Path(filename)
    if not path.exists():
        logger.info("Config file not found: %s", path)
        return None

    with open(path) as f:
        return json.load(f)


def print_optimization_summary(results: OptimizationResults, metric: str, top_n: int = 10):
    """Print summary of optimization results."""
    if not results.runs:
        print("No optimization results.")
        return

    print("\n" + "=" * 90)
    print(f"OPTIMIZATION RESULTS (Top Configurations by {metric})")
    print("=" * 90)
    print(f"{'Rank':<6} {'Net%':>9} {'Trades':>7} {'WinRate':>8} {'PF':>7} {'MaxDD%':>8}   Params")
    print("-" * 90)

    for rank, run in enumerate(results.runs[:top_n], 1):
        r = run.result
        pf = "inf" if math.isinf(r.profit_factor) else f"{r.profit_factor:.2f}"
        params = ", ".join(f"{k}={v}" for k, v in run.params.items()) or "(base)"
        print(f"{rank:<6} {r.net_profit_percent:>8.2f}% {r.total_trades:>7} {r.win_rate:>7.1f}% {pf:>7} {r.max_drawdown:>7.2f}%   {params}")

    print("-" * 90)

    if results.best_run is not None:
        print("\nBest Parameters:")
        for key, value in sorted(results.best_run.params.items()):
            print(f"  {key}: {value}")

    print("=" * 90 + "\n")
