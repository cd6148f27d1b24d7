"""
Backtest Engine for the SMC Backtester.

This module replays low-timeframe candles against the trade signals
produced by smc_core.py:
- one open position at a time
- position size from account risk, leverage rounded up to a whole number
- flat round-trip commission
- equity, peak and drawdown tracking
- stop-loss is checked before take-profit on the same candle
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from smc_core import BULLISH, SMCSettings, TradeSignal

logger = logging.getLogger(__name__)

OUTCOME_WIN = "win"
OUTCOME_LOSS = "loss"
OUTCOME_OPEN = "open"


@dataclass
class ExecutedTrade:
    """A filled signal. Updated in place when the position closes."""
    signal_time: int
    entry_time: int
    entry_price: float
    direction: str
    sl_price: float
    tp_price: float

    equity_at_entry: float
    risk_amount: float
    leverage: int

    outcome: str = OUTCOME_OPEN
    exit_time: Optional[int] = None
    exit_price: Optional[float] = None
    pnl: float = 0.0
    commission: float = 0.0
    equity: float = 0.0
    return_on_equity_percent: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.outcome == OUTCOME_OPEN

    @property
    def position_value(self) -> float:
        return self.equity_at_entry * self.leverage

    def to_dict(self) -> Dict[str, Any]:
        """Convert trade to dictionary."""
        return {
            "signal_time": self.signal_time,
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "sl_price": self.sl_price,
            "tp_price": self.tp_price,
            "outcome": self.outcome,
            "leverage": self.leverage,
            "risk_amount": self.risk_amount,
            "commission": self.commission,
            "pnl": self.pnl,
            "equity_at_entry": self.equity_at_entry,
            "equity": self.equity,
            "return_on_equity_percent": self.return_on_equity_percent,
        }


@dataclass(frozen=True)
class BacktestResult:
    """Results from a single backtest run."""
    trades: List[ExecutedTrade] = field(default_factory=list)
    max_drawdown: float = 0.0
    max_drawdown_amount: float = 0.0
    net_profit_percent: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    final_equity: float = 0.0
    total_trades: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert the summary metrics to a dictionary (trades excluded)."""
        return {
            "max_drawdown": self.max_drawdown,
            "max_drawdown_amount": self.max_drawdown_amount,
            "net_profit_percent": self.net_profit_percent,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "final_equity": self.final_equity,
            "total_trades": self.total_trades,
        }


def _round_trip_commission(position_value: float, settings: SMCSettings) -> float:
    return position_value * (settings.commission_percent / 100) * 2


def _check_exit(trade: ExecutedTrade, candle: Dict) -> Optional[str]:
    """Return the outcome triggered by this candle, stop-loss first."""
    if trade.direction == BULLISH:
        hit_sl = candle["low"] <= trade.sl_price
        hit_tp = candle["high"] >= trade.tp_price
    else:
        hit_sl = candle["high"] >= trade.sl_price
        hit_tp = candle["low"] <= trade.tp_price

    if hit_sl:
        return OUTCOME_LOSS
    if hit_tp:
        return OUTCOME_WIN
    return None


def _open_trade(
    signal: TradeSignal,
    candle: Dict,
    equity: float,
    settings: SMCSettings,
) -> Optional[ExecutedTrade]:
    """
    Size a position for the signal, or return None when it must be skipped.

    Leverage is the notional needed to risk ``order_size_percent`` of
    equity, rounded up to a whole multiple of equity (at least 1x).
    """
    risk_per_unit = abs(signal.entry_price - signal.stop_loss)
    if risk_per_unit <= 0:
        return None

    amount_to_risk = equity * (settings.order_size_percent / 100)
    units = amount_to_risk / risk_per_unit
    notional = units * signal.entry_price

    if settings.filter_by_commission:
        potential_profit = amount_to_risk * settings.rr_ratio
        if potential_profit <= _round_trip_commission(notional, settings):
            return None

    leverage = max(1, math.ceil(notional / equity))
    position_value = equity * leverage
    risk_amount = (position_value / signal.entry_price) * risk_per_unit

    return ExecutedTrade(
        signal_time=signal.entry_time,
        entry_time=candle["time"],
        entry_price=signal.entry_price,
        direction=signal.direction,
        sl_price=signal.stop_loss,
        tp_price=signal.take_profit,
        equity_at_entry=equity,
        risk_amount=risk_amount,
        leverage=leverage,
        equity=equity,
    )


def compute_metrics(
    trades: List[ExecutedTrade],
    initial_equity: float,
    final_equity: float,
    max_drawdown: float,
    max_drawdown_amount: float,
) -> BacktestResult:
    """
    Aggregate closed trades into a BacktestResult.

    Open trades are kept in the trade list but not counted.
    """
    closed = [t for t in trades if not t.is_open]
    total_trades = len(closed)

    if total_trades == 0:
        return BacktestResult(
            trades=trades,
            final_equity=final_equity,
        )

    winners = [t for t in closed if t.outcome == OUTCOME_WIN]
    losers = [t for t in closed if t.outcome == OUTCOME_LOSS]

    win_rate = len(winners) / total_trades * 100
    net_profit_percent = (final_equity - initial_equity) / initial_equity * 100

    total_win_pnl = sum(t.pnl for t in winners)
    total_loss_pnl = abs(sum(t.pnl for t in losers))
    profit_factor = total_win_pnl / total_loss_pnl if total_loss_pnl > 0 else math.inf

    return BacktestResult(
        trades=trades,
        max_drawdown=max_drawdown,
        max_drawdown_amount=max_drawdown_amount,
        net_profit_percent=net_profit_percent,
        win_rate=win_rate,
        profit_factor=profit_factor,
        final_equity=final_equity,
        total_trades=total_trades,
    )


def run_backtest(
    ltf_candles: Sequence[Dict],
    signals: Sequence[TradeSignal],
    settings: SMCSettings,
    starting_equity: Optional[float] = None,
) -> BacktestResult:
    """
    Simulate the signals against LTF candles.

    Per candle: first close the open trade if its stop-loss or take-profit
    was hit, then, with no trade open, fill the first pending signal whose
    entry price lies inside the candle range.

    Args:
        ltf_candles: Low timeframe candles, oldest to newest
        signals: Trade signals (sorted here by entry time)
        settings: Strategy settings (risk, commission, R:R)
        starting_equity: Overrides settings.initial_capital when given

    Returns:
        BacktestResult; zeroed metrics when no trade closed
    """
    initial_equity = settings.initial_capital if starting_equity is None else starting_equity
    equity = initial_equity
    peak_equity = initial_equity
    max_drawdown = 0.0
    max_drawdown_amount = 0.0

    trades: List[ExecutedTrade] = []
    active_trade: Optional[ExecutedTrade] = None
    pending = sorted(signals, key=lambda s: s.entry_time)

    for candle in ltf_candles:
        if active_trade is not None:
            outcome = _check_exit(active_trade, candle)
            if outcome is not None:
                equity_before = active_trade.equity_at_entry
                if outcome == OUTCOME_WIN:
                    gross_pnl = active_trade.risk_amount * settings.rr_ratio
                    exit_price = active_trade.tp_price
                else:
                    gross_pnl = -active_trade.risk_amount
                    exit_price = active_trade.sl_price
                commission = _round_trip_commission(active_trade.position_value, settings)
                net_pnl = gross_pnl - commission

                equity += net_pnl
                if equity > peak_equity:
                    peak_equity = equity

                drawdown = (peak_equity - equity) / peak_equity * 100 if peak_equity > 0 else 0.0
                if drawdown > max_drawdown:
                    max_drawdown = drawdown
                    max_drawdown_amount = peak_equity - equity

                active_trade.outcome = outcome
                active_trade.exit_time = candle["time"]
                active_trade.exit_price = exit_price
                active_trade.commission = commission
                active_trade.pnl = net_pnl
                active_trade.equity = equity
                active_trade.return_on_equity_percent = net_pnl / equity_before * 100

                active_trade = None

        if active_trade is None and equity > 0:
            for i, signal in enumerate(pending):
                if candle["time"] < signal.entry_time:
                    continue
                if not candle["low"] <= signal.entry_price <= candle["high"]:
                    continue

                trade = _open_trade(signal, candle, equity, settings)
                if trade is None:
                    continue

                active_trade = trade
                trades.append(trade)
                del pending[i]
                # one fill per candle
                break

    result = compute_metrics(trades, initial_equity, equity, max_drawdown, max_drawdown_amount)

    logger.debug(
        "Backtest: %d signals, %d fills, %d closed, final equity %.2f",
        len(signals), len(trades), result.total_trades, result.final_equity,
    )

    return result


def save_trades_to_csv(result: BacktestResult, filename: str = "smc_trades.csv") -> Optional[Path]:
    """Save executed trades to CSV file."""
    if not result.trades:
        logger.info("No trades to save.")
        return None

    df = pd.DataFrame([t.to_dict() for t in result.trades])
    for col in ("signal_time", "entry_time", "exit_time"):
        df[col] = pd.to_datetime(df[col], unit="s", utc=True)

    output_path = Path(filename)
    df.to_csv(output_path, index=False)
    logger.info("Trades saved to: %s", output_path)
    return output_path
