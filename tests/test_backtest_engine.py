import math

import pandas as pd
import pytest

from backtest_engine import (
    OUTCOME_LOSS,
    OUTCOME_OPEN,
    OUTCOME_WIN,
    BacktestResult,
    run_backtest,
    save_trades_to_csv,
)
from smc_core import BEARISH, BULLISH, TradeSignal

from conftest import make_candle


def _long(time, entry=100.0, stop=95.0, take=110.0):
    return TradeSignal(entry_time=time, entry_price=entry, stop_loss=stop, take_profit=take, direction=BULLISH)


def _short(time, entry=100.0, stop=105.0, take=90.0):
    return TradeSignal(entry_time=time, entry_price=entry, stop_loss=stop, take_profit=take, direction=BEARISH)


def test_long_take_profit_pays_risk_times_rr_minus_commission(settings):
    settings = settings.replace(commission_percent=0.1)
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 111, 98, 110.5),
    ]

    result = run_backtest(candles, [_long(10)], settings)

    (trade,) = result.trades
    assert trade.outcome == OUTCOME_WIN
    assert trade.exit_time == 20
    assert trade.exit_price == 110.0
    assert trade.leverage == 1
    # 1% of 1000 at 5 per unit is 200 notional, rounded up to 1x equity
    assert trade.risk_amount == pytest.approx(50.0)
    assert trade.commission == pytest.approx(2.0)
    assert trade.pnl == pytest.approx(50.0 * 2 - 2.0)
    assert result.final_equity == pytest.approx(1098.0)
    assert result.total_trades == 1
    assert result.win_rate == 100.0
    assert math.isinf(result.profit_factor)


def test_stop_loss_wins_tie_on_same_candle(settings):
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 111, 94, 105),
    ]

    result = run_backtest(candles, [_long(10)], settings)

    (trade,) = result.trades
    assert trade.outcome == OUTCOME_LOSS
    assert trade.exit_price == 95.0
    assert trade.pnl == pytest.approx(-50.0)
    assert result.final_equity == pytest.approx(950.0)
    assert result.profit_factor == 0.0


def test_short_trade_hits_take_profit(settings):
    candles = [
        make_candle(10, 99.5, 101, 99, 100),
        make_candle(20, 100, 101, 89, 90),
    ]

    result = run_backtest(candles, [_short(10)], settings)

    (trade,) = result.trades
    assert trade.direction == BEARISH
    assert trade.outcome == OUTCOME_WIN
    assert trade.pnl == pytest.approx(100.0)


def test_no_fill_before_signal_time(settings):
    candles = [
        make_candle(5, 100.5, 101, 99, 100),
        make_candle(10, 104, 106, 103, 105),
        make_candle(20, 105, 107, 104, 106),
    ]

    result = run_backtest(candles, [_long(10)], settings)

    assert result == BacktestResult(trades=[], final_equity=1000.0)


def test_open_trade_is_reported_but_not_counted(settings):
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 102, 98, 101),
    ]

    result = run_backtest(candles, [_long(10)], settings)

    assert [t.outcome for t in result.trades] == [OUTCOME_OPEN]
    assert result.total_trades == 0
    assert result.win_rate == 0.0
    assert result.final_equity == 1000.0


def test_win_then_loss_metrics(settings):
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 111, 100, 110),
        make_candle(30, 100.5, 101, 99, 100),
        make_candle(40, 100, 100, 94, 95),
    ]

    result = run_backtest(candles, [_long(10), _long(30)], settings)

    win, loss = result.trades
    assert win.pnl == pytest.approx(100.0)
    # second trade is sized from 1100 equity
    assert loss.equity_at_entry == pytest.approx(1100.0)
    assert loss.pnl == pytest.approx(-55.0)

    assert result.total_trades == 2
    assert result.win_rate == 50.0
    assert result.final_equity == pytest.approx(1045.0)
    assert result.net_profit_percent == pytest.approx(4.5)
    assert result.profit_factor == pytest.approx(100.0 / 55.0)
    assert result.max_drawdown == pytest.approx(5.0)
    assert result.max_drawdown_amount == pytest.approx(55.0)


def test_one_position_at_a_time_and_equity_adds_up(settings):
    settings = settings.replace(commission_percent=0.04)
    signals = [_long(10), _long(10, entry=100.5, stop=96.0, take=105.0), _short(40), _long(60)]
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 100.8, 99.5, 100.2),
        make_candle(30, 100.2, 111, 99.8, 110),
        make_candle(40, 99.5, 100.5, 99, 100),
        make_candle(50, 100, 106, 99, 105),
        make_candle(60, 100.5, 101, 99, 100),
        make_candle(70, 100, 112, 100, 111),
    ]

    result = run_backtest(candles, signals, settings)

    closed = [t for t in result.trades if t.outcome != OUTCOME_OPEN]
    assert len(result.trades) == 4
    for prev, nxt in zip(result.trades, result.trades[1:]):
        assert prev.exit_time is not None
        assert nxt.entry_time >= prev.exit_time

    equity = settings.initial_capital
    for trade in closed:
        equity += trade.pnl
        assert trade.equity == pytest.approx(equity)
    assert result.final_equity == pytest.approx(equity)


def test_leverage_rounds_notional_up_to_whole_equity(settings):
    settings = settings.replace(order_size_percent=10.0)
    candles = [
        make_candle(10, 100.5, 101, 99.5, 100),
        make_candle(20, 100, 103, 98, 102),
    ]

    result = run_backtest(candles, [_long(10, stop=99.0, take=102.0)], settings)

    (trade,) = result.trades
    assert trade.leverage == 10
    assert trade.position_value == pytest.approx(10000.0)
    assert trade.risk_amount == pytest.approx(100.0)
    assert trade.outcome == OUTCOME_LOSS


def test_commission_filter_skips_unprofitable_signal(settings):
    settings = settings.replace(commission_percent=1.0)
    signal = _long(10, stop=99.9, take=100.2)
    candles = [make_candle(10, 100.5, 101, 99.95, 100)]

    assert len(run_backtest(candles, [signal], settings).trades) == 1

    filtered = run_backtest(candles, [signal], settings.replace(filter_by_commission=True))
    assert filtered.trades == []


def test_zero_risk_signal_is_skipped(settings):
    candles = [make_candle(10, 100.5, 101, 99, 100)]

    result = run_backtest(candles, [_long(10, stop=100.0)], settings)

    assert result.trades == []


def test_starting_equity_overrides_settings(settings):
    result = run_backtest([], [], settings, starting_equity=250.0)

    assert result.final_equity == 250.0
    assert result.total_trades == 0


def test_save_trades_to_csv(tmp_path, settings):
    candles = [
        make_candle(10, 100.5, 101, 99, 100),
        make_candle(20, 100, 111, 98, 110.5),
    ]
    result = run_backtest(candles, [_long(10)], settings)

    path = save_trades_to_csv(result, str(tmp_path / "trades.csv"))

    df = pd.read_csv(path)
    assert list(df["outcome"]) == ["win"]
    assert df.loc[0, "entry_time"].startswith("1970-01-01 00:00:10")


def test_save_trades_to_csv_without_trades(tmp_path):
    assert save_trades_to_csv(BacktestResult(), str(tmp_path / "none.csv")) is None
