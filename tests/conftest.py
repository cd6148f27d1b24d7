from __future__ import annotations

from typing import Dict, List

import pytest

from smc_core import SMCSettings


def make_candle(time: int, open_: float, high: float, low: float, close: float) -> Dict:
    return {"time": time, "open": open_, "high": high, "low": low, "close": close}


def negate_candles(candles: List[Dict]) -> List[Dict]:
    """Mirror prices around zero: highs become lows, bullish becomes bearish."""
    return [
        make_candle(c["time"], -c["open"], -c["low"], -c["high"], -c["close"])
        for c in candles
    ]


@pytest.fixture
def settings() -> SMCSettings:
    return SMCSettings(
        htf_swing_lookback=1,
        ltf_choch_lookback=1,
        discount_zone=0.5,
        initial_capital=1000.0,
        order_size_percent=1.0,
        rr_ratio=2.0,
        commission_percent=0.0,
    )


@pytest.fixture
def htf_candles() -> List[Dict]:
    # Swing highs 10 (t=1000) and 12 (t=3000), impulse swing low 8 (t=2000)
    return [
        make_candle(0, 6.0, 7.0, 5.0, 6.5),
        make_candle(1000, 8.6, 10.0, 8.5, 9.5),
        make_candle(2000, 9.0, 9.0, 8.0, 8.5),
        make_candle(3000, 9.5, 12.0, 9.0, 11.5),
        make_candle(4000, 10.8, 11.0, 10.0, 10.5),
    ]


@pytest.fixture
def mtf_candles() -> List[Dict]:
    candles = [make_candle(t, 7.0, 7.6, 6.9, 7.5) for t in range(500, 2000, 250)]
    candles += [
        make_candle(2000, 8.0, 9.2, 8.0, 9.0),
        make_candle(2250, 9.5, 9.6, 8.8, 9.0),   # bearish, fully below 10
        make_candle(2500, 10.5, 10.6, 9.9, 10.0),  # bearish, above the level
        make_candle(2750, 10.0, 11.0, 9.0, 10.8),
        make_candle(3000, 10.8, 12.0, 10.7, 11.9),
    ]
    candles += [make_candle(t, 11.9, 12.2, 11.8, 12.1) for t in range(3250, 4250, 250)]
    return candles


@pytest.fixture
def ltf_bullish_sequence() -> List[Dict]:
    """LTF candles that enter a 95-100 bullish zone and break structure up."""
    return [
        make_candle(10, 110.0, 112.0, 108.0, 111.0),
        make_candle(20, 100.5, 101.0, 99.0, 99.5),    # touches the zone
        make_candle(30, 99.5, 101.5, 99.2, 101.0),    # local swing high 101.5
        make_candle(40, 101.0, 101.2, 98.0, 98.5),
        make_candle(50, 98.5, 99.0, 96.0, 96.5),      # local swing low 96
        make_candle(60, 96.5, 98.0, 96.5, 97.8),
        make_candle(70, 97.8, 100.0, 97.0, 97.2),     # last bearish candle
        make_candle(80, 97.2, 102.0, 97.0, 101.8),    # breaks 101.5
        make_candle(90, 101.8, 103.0, 101.0, 102.5),
        make_candle(100, 102.5, 104.0, 102.0, 103.5),
    ]
