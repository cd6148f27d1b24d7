"""
Message formatting for the SMC Backtester.

Plain text (HTML-safe) output for:
- new trade signals, ready for a notifier to deliver
- backtest summaries and trade tables
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from html import escape
from typing import List, Optional

from backtest_engine import BacktestResult, ExecutedTrade
from smc_core import BULLISH, TradeSignal


def format_time(epoch_seconds: Optional[int]) -> str:
    """Format epoch seconds as a UTC timestamp."""
    if epoch_seconds is None:
        return "-"
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _format_pf(value: float) -> str:
    return "∞" if math.isinf(value) else f"{value:.2f}"


def format_signal_message(symbol: str, signal: TradeSignal, use_html: bool = True) -> str:
    """Format a new signal for a chat notification."""
    emoji = "🟢" if signal.direction == BULLISH else "🔴"
    side = "LONG" if signal.direction == BULLISH else "SHORT"
    risk = abs(signal.entry_price - signal.stop_loss)
    rr = abs(signal.take_profit - signal.entry_price) / risk if risk > 0 else 0.0

    title = f"{emoji} New SMC Signal - {escape(symbol)}"
    if use_html:
        title = f"<b>{title}</b>"

    lines = [
        title,
        f"Direction: {side}",
        f"Entry: {signal.entry_price:.5f}",
        f"Stop Loss: {signal.stop_loss:.5f}",
        f"Take Profit: {signal.take_profit:.5f}",
        f"R:R: 1:{rr:.2f}",
        f"Signal Time: {format_time(signal.entry_time)} UTC",
    ]
    return "\n".join(lines)


def format_backtest_summary(result: BacktestResult, symbol: str = "", initial_equity: Optional[float] = None) -> str:
    """Format backtest results as a short report."""
    header = f"📊 Backtest Results - {symbol}" if symbol else "📊 Backtest Results"

    if result.total_trades == 0:
        return "\n".join([header, "No closed trades.", f"Final Equity: {result.final_equity:,.2f}"])

    profit_emoji = "📈" if result.net_profit_percent > 0 else "📉" if result.net_profit_percent < 0 else "➖"
    wr_emoji = "🎯" if result.win_rate >= 60 else "📊" if result.win_rate >= 40 else "⚠️"

    lines = [header]
    if initial_equity is not None:
        lines.append(f"Starting Equity: {initial_equity:,.2f}")
    lines.extend([
        f"{profit_emoji} Net Profit: {result.net_profit_percent:+.2f}%",
        f"{wr_emoji} Win Rate: {result.win_rate:.1f}% ({result.total_trades} trades)",
        f"⚖️ Profit Factor: {_format_pf(result.profit_factor)}",
        f"📉 Max Drawdown: {result.max_drawdown:.2f}% ({result.max_drawdown_amount:,.2f})",
        f"💰 Final Equity: {result.final_equity:,.2f}",
    ])
    return "\n".join(lines)


def format_trade_table(trades: List[ExecutedTrade], limit: Optional[int] = None) -> str:
    """Format executed trades as a fixed-width table, newest last."""
    if not trades:
        return "No trades."

    rows = trades[-limit:] if limit else trades

    lines = [
        f"{'Entry':<17} {'Exit':<17} {'Side':<5} {'Entry Px':>12} {'Exit Px':>12} {'Lev':>4} {'Result':<6} {'PnL':>10} {'ROE%':>8} {'Equity':>12}",
        "-" * 113,
    ]
    for t in rows:
        exit_px = f"{t.exit_price:.4f}" if t.exit_price is not None else "-"
        side = "LONG" if t.direction == BULLISH else "SHORT"
        lines.append(
            f"{format_time(t.entry_time):<17} {format_time(t.exit_time):<17} {side:<5} "
            f"{t.entry_price:>12.4f} {exit_px:>12} {t.leverage:>3}x {t.outcome.upper():<6} "
            f"{t.pnl:>10.2f} {t.return_on_equity_percent:>7.2f}% {t.equity:>12.2f}"
        )
    return "\n".join(lines)

