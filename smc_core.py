"""
SMC Core Module for the SMC Backtester.

This module is the single source of truth for the market-structure rules
used by backtests and the optimizer:

- swing point detection
- HTF break of structure (BOS) and the MTF points of interest (POI) it implies
- LTF entry tracking: POI touch, invalidation, change of character (CHoCH)
  and trade signal generation

Candles are plain dicts with keys time (epoch seconds), open, high, low,
close, oldest to newest, unique per time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

BULLISH = "bullish"
BEARISH = "bearish"

SL_STRUCTURE = "structure"
SL_FIXED = "fixed"

# Minimum MTF/LTF candles needed before analysis is attempted
MIN_SERIES_LENGTH = 10


@dataclass(frozen=True)
class SMCSettings:
    """
    Strategy and backtest parameters.

    Treated as an immutable value per run; the optimizer derives copies
    through ``replace``.
    """
    htf_swing_lookback: int = 10
    ltf_choch_lookback: int = 3
    discount_zone: float = 0.5

    use_fvg_filter: bool = False
    use_liquidity_sweep_filter: bool = False

    initial_capital: float = 1000.0
    order_size_percent: float = 1.0
    rr_ratio: float = 2.0
    commission_percent: float = 0.04
    filter_by_commission: bool = False

    sl_type: str = SL_STRUCTURE
    fixed_sl_value: float = 1.0

    def __post_init__(self):
        for name in ("htf_swing_lookback", "ltf_choch_lookback"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise ValueError(f"{name} must be an integer >= 1, got {value}")
            # frozen: normalize 3.0 -> 3
            object.__setattr__(self, name, int(value))
        if not 0.0 <= self.discount_zone <= 1.0:
            raise ValueError(f"discount_zone must be within [0, 1], got {self.discount_zone}")
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got {self.initial_capital}")
        if self.order_size_percent < 0 or self.commission_percent < 0 or self.rr_ratio < 0:
            raise ValueError("order_size_percent, commission_percent and rr_ratio must not be negative")
        if self.sl_type not in (SL_STRUCTURE, SL_FIXED):
            raise ValueError(f"sl_type must be '{SL_STRUCTURE}' or '{SL_FIXED}', got {self.sl_type!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "htf_swing_lookback": self.htf_swing_lookback,
            "ltf_choch_lookback": self.ltf_choch_lookback,
            "discount_zone": self.discount_zone,
            "use_fvg_filter": self.use_fvg_filter,
            "use_liquidity_sweep_filter": self.use_liquidity_sweep_filter,
            "initial_capital": self.initial_capital,
            "order_size_percent": self.order_size_percent,
            "rr_ratio": self.rr_ratio,
            "commission_percent": self.commission_percent,
            "filter_by_commission": self.filter_by_commission,
            "sl_type": self.sl_type,
            "fixed_sl_value": self.fixed_sl_value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SMCSettings":
        """Create settings from dictionary, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in names})

    def replace(self, **overrides: Any) -> "SMCSettings":
        """Return a copy with the given fields overridden."""
        return replace(self, **overrides)


@dataclass(frozen=True)
class SwingPoint:
    time: int
    price: float
    kind: str  # "high" or "low"


@dataclass(frozen=True)
class BOS:
    """Break of structure: the swing level that was broken."""
    time: int
    price: float
    direction: str = BULLISH


@dataclass(frozen=True)
class CHoCH:
    """Change of character: local reversal level inside a monitored POI."""
    time: int
    price: float
    direction: str = BULLISH


@dataclass(frozen=True)
class POI:
    """Point of interest (order block zone) expected to cause a reaction."""
    start_time: int
    end_time: int
    top: float
    bottom: float
    direction: str

    def overlaps(self, candle: Dict) -> bool:
        return candle["low"] <= self.top and candle["high"] >= self.bottom

    def is_invalidated_by(self, candle: Dict) -> bool:
        if self.direction == BULLISH:
            return candle["low"] < self.bottom
        return candle["high"] > self.top


@dataclass(frozen=True)
class Drawing:
    """Chart annotation handed to the UI layer."""
    kind: str  # "BOS", "POI" or "CHoCH"
    data: Union[BOS, POI, CHoCH]


@dataclass(frozen=True)
class TradeSignal:
    entry_time: int
    entry_price: float
    stop_loss: float
    take_profit: float
    direction: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "direction": self.direction,
        }


@dataclass
class StructureResult:
    pois: List[POI] = field(default_factory=list)
    bos: List[BOS] = field(default_factory=list)
    drawings: List[Drawing] = field(default_factory=list)


@dataclass
class TrackerResult:
    signals: List[TradeSignal] = field(default_factory=list)
    chochs: List[CHoCH] = field(default_factory=list)
    drawings: List[Drawing] = field(default_factory=list)


@dataclass
class SMCAnalysisResult:
    signals: List[TradeSignal] = field(default_factory=list)
    drawings: List[Drawing] = field(default_factory=list)


def find_swing_points(candles: Sequence[Dict], lookback: int) -> Tuple[List[SwingPoint], List[SwingPoint]]:
    """
    Find swing highs and swing lows in candle data.

    A candle is a swing high when its high is strictly greater than the
    high of every candle within ``lookback`` positions on both sides.
    Swing lows mirror this on lows. Ties disqualify.

    Args:
        candles: OHLC candle dictionaries, oldest to newest
        lookback: Number of bars on each side

    Returns:
        Tuple of (swing_highs, swing_lows), both time ordered
    """
    if lookback < 1:
        raise ValueError(f"lookback must be >= 1, got {lookback}")

    if len(candles) < lookback * 2 + 1:
        return [], []

    swing_highs: List[SwingPoint] = []
    swing_lows: List[SwingPoint] = []

    for i in range(lookback, len(candles) - lookback):
        high = candles[i]["high"]
        low = candles[i]["low"]

        is_swing_high = True
        is_swing_low = True

        for j in range(i - lookback, i + lookback + 1):
            if j == i:
                continue
            if candles[j]["high"] >= high:
                is_swing_high = False
            if candles[j]["low"] <= low:
                is_swing_low = False
            if not is_swing_high and not is_swing_low:
                break

        if is_swing_high:
            swing_highs.append(SwingPoint(time=candles[i]["time"], price=high, kind="high"))
        if is_swing_low:
            swing_lows.append(SwingPoint(time=candles[i]["time"], price=low, kind="low"))

    return swing_highs, swing_lows


def _has_bullish_fvg(mtf_candles: Sequence[Dict], idx: int) -> bool:
    if idx + 2 >= len(mtf_candles):
        return False
    return mtf_candles[idx + 2]["low"] > mtf_candles[idx]["high"]


def _has_bearish_fvg(mtf_candles: Sequence[Dict], idx: int) -> bool:
    if idx + 2 >= len(mtf_candles):
        return False
    return mtf_candles[idx + 2]["high"] < mtf_candles[idx]["low"]


def _bullish_pois(
    swing_highs: List[SwingPoint],
    swing_lows: List[SwingPoint],
    mtf_candles: Sequence[Dict],
    settings: SMCSettings,
) -> Tuple[List[BOS], List[POI]]:
    bos_events: List[BOS] = []
    pois: List[POI] = []

    for prev_high, current_high in zip(swing_highs, swing_highs[1:]):
        if current_high.price <= prev_high.price:
            continue

        bos_events.append(BOS(time=current_high.time, price=prev_high.price, direction=BULLISH))

        leg_lows = [l for l in swing_lows if prev_high.time < l.time < current_high.time]
        if not leg_lows:
            continue
        impulse_low = min(leg_lows, key=lambda l: l.price)

        if settings.use_liquidity_sweep_filter:
            prior_lows = [l for l in swing_lows if l.time < impulse_low.time]
            if not prior_lows or impulse_low.price >= prior_lows[-1].price:
                continue

        discount_level = impulse_low.price + (current_high.price - impulse_low.price) * settings.discount_zone

        for idx, candle in enumerate(mtf_candles):
            if candle["time"] < impulse_low.time:
                continue
            if candle["time"] > current_high.time:
                break
            if not (candle["open"] > candle["close"] and candle["high"] < discount_level):
                continue
            if settings.use_fvg_filter and not _has_bullish_fvg(mtf_candles, idx):
                continue
            pois.append(POI(
                start_time=candle["time"],
                end_time=current_high.time,
                top=candle["high"],
                bottom=candle["low"],
                direction=BULLISH,
            ))

    return bos_events, pois


def _bearish_pois(
    swing_highs: List[SwingPoint],
    swing_lows: List[SwingPoint],
    mtf_candles: Sequence[Dict],
    settings: SMCSettings,
) -> Tuple[List[BOS], List[POI]]:
    bos_events: List[BOS] = []
    pois: List[POI] = []

    for prev_low, current_low in zip(swing_lows, swing_lows[1:]):
        if current_low.price >= prev_low.price:
            continue

        bos_events.append(BOS(time=current_low.time, price=prev_low.price, direction=BEARISH))

        leg_highs = [h for h in swing_highs if prev_low.time < h.time < current_low.time]
        if not leg_highs:
            continue
        impulse_high = max(leg_highs, key=lambda h: h.price)

        if settings.use_liquidity_sweep_filter:
            prior_highs = [h for h in swing_highs if h.time < impulse_high.time]
            if not prior_highs or impulse_high.price <= prior_highs[-1].price:
                continue

        premium_level = impulse_high.price - (impulse_high.price - current_low.price) * settings.discount_zone

        for idx, candle in enumerate(mtf_candles):
            if candle["time"] < impulse_high.time:
                continue
            if candle["time"] > current_low.time:
                break
            if not (candle["close"] > candle["open"] and candle["low"] > premium_level):
                continue
            if settings.use_fvg_filter and not _has_bearish_fvg(mtf_candles, idx):
                continue
            pois.append(POI(
                start_time=candle["time"],
                end_time=current_low.time,
                top=candle["high"],
                bottom=candle["low"],
                direction=BEARISH,
            ))

    return bos_events, pois


def dedupe_pois(pois: List[POI]) -> List[POI]:
    """Sort POIs by start time and drop repeats of (start_time, top, bottom)."""
    seen = set()
    unique: List[POI] = []
    for poi in sorted(pois, key=lambda p: p.start_time):
        key = (poi.start_time, poi.top, poi.bottom)
        if key in seen:
            continue
        seen.add(key)
        unique.append(poi)
    return unique


def analyze_structure(
    htf_candles: Sequence[Dict],
    mtf_candles: Sequence[Dict],
    settings: SMCSettings,
) -> StructureResult:
    """
    Find HTF breaks of structure and the MTF order blocks they imply.

    Runs once over the whole HTF history. Bullish legs (higher highs) yield
    bullish POIs from bearish MTF candles in the discount zone; bearish legs
    mirror this in the premium zone.

    Args:
        htf_candles: High timeframe candles
        mtf_candles: Mid timeframe candles
        settings: Strategy settings

    Returns:
        StructureResult with POIs (deduplicated, sorted by start), BOS
        events and BOS drawings
    """
    swing_highs, swing_lows = find_swing_points(htf_candles, settings.htf_swing_lookback)

    bullish_bos, bullish_pois = _bullish_pois(swing_highs, swing_lows, mtf_candles, settings)
    bearish_bos, bearish_pois = _bearish_pois(swing_highs, swing_lows, mtf_candles, settings)

    bos_events = bullish_bos + bearish_bos
    pois = dedupe_pois(bullish_pois + bearish_pois)

    logger.debug(
        "Structure: %d swing highs, %d swing lows, %d BOS, %d POIs",
        len(swing_highs), len(swing_lows), len(bos_events), len(pois),
    )

    return StructureResult(
        pois=pois,
        bos=bos_events,
        drawings=[Drawing(kind="BOS", data=b) for b in bos_events],
    )


@dataclass(frozen=True)
class Idle:
    """No POI is being monitored."""


@dataclass(frozen=True)
class Monitoring:
    """One POI has been entered; LTF candles since entry are buffered."""
    poi: POI
    buffer: Tuple[Dict, ...]


TrackerState = Union[Idle, Monitoring]

IDLE = Idle()


def _build_signal(
    direction: str,
    leg_start: SwingPoint,
    entry_candle: Dict,
    settings: SMCSettings,
) -> Optional[TradeSignal]:
    """Turn an entry order block into a signal, or None when risk collapses."""
    if direction == BULLISH:
        entry_price = entry_candle["high"]
        if settings.sl_type == SL_STRUCTURE:
            stop_loss = leg_start.price
        else:
            stop_loss = entry_price * (1 - settings.fixed_sl_value / 100)
        risk = entry_price - stop_loss
        if risk <= 0:
            return None
        take_profit = entry_price + risk * settings.rr_ratio
    else:
        entry_price = entry_candle["low"]
        if settings.sl_type == SL_STRUCTURE:
            stop_loss = leg_start.price
        else:
            stop_loss = entry_price * (1 + settings.fixed_sl_value / 100)
        risk = stop_loss - entry_price
        if risk <= 0:
            return None
        take_profit = entry_price - risk * settings.rr_ratio

    return TradeSignal(
        entry_time=entry_candle["time"],
        entry_price=entry_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
        direction=direction,
    )


def _check_choch(
    state: Monitoring,
    candle: Dict,
    settings: SMCSettings,
) -> Tuple[Optional[CHoCH], Optional[TradeSignal]]:
    """
    Look for a change of character on the current candle.

    Returns (choch, signal); choch is None when no CHoCH fired, signal is
    None when the CHoCH did not produce a tradeable entry.
    """
    buffer = state.buffer
    swing_highs, swing_lows = find_swing_points(buffer, settings.ltf_choch_lookback)
    direction = state.poi.direction

    if direction == BULLISH:
        if not swing_highs or candle["high"] <= swing_highs[-1].price:
            return None, None
        choch = CHoCH(time=candle["time"], price=swing_highs[-1].price, direction=BULLISH)
        leg_points = [l for l in swing_lows if l.time < choch.time]
    else:
        if not swing_lows or candle["low"] >= swing_lows[-1].price:
            return None, None
        choch = CHoCH(time=candle["time"], price=swing_lows[-1].price, direction=BEARISH)
        leg_points = [h for h in swing_highs if h.time < choch.time]

    if not leg_points:
        return choch, None
    leg_start = leg_points[-1]

    leg_candles = [c for c in buffer if leg_start.time <= c["time"] <= choch.time]
    entry_candle = None
    for c in reversed(leg_candles):
        is_opposite = c["open"] > c["close"] if direction == BULLISH else c["open"] < c["close"]
        if is_opposite:
            entry_candle = c
            break

    if entry_candle is None:
        return choch, None

    return choch, _build_signal(direction, leg_start, entry_candle, settings)


def step(
    state: TrackerState,
    candle: Dict,
    active_pois: List[POI],
    settings: SMCSettings,
) -> Tuple[TrackerState, List[POI], Optional[CHoCH], Optional[TradeSignal]]:
    """
    Advance the entry tracker by one LTF candle.

    Args:
        state: Current tracker state
        candle: The next LTF candle
        active_pois: POIs not yet consumed, ascending start time
        settings: Strategy settings

    Returns:
        Tuple of (next_state, remaining_active_pois, choch, signal)
    """
    if isinstance(state, Idle):
        for i, poi in enumerate(active_pois):
            if candle["time"] < poi.start_time:
                continue
            if poi.overlaps(candle):
                remaining = active_pois[:i] + active_pois[i + 1:]
                return Monitoring(poi=poi, buffer=(candle,)), remaining, None, None
        return state, active_pois, None, None

    if state.poi.is_invalidated_by(candle):
        return IDLE, active_pois, None, None

    monitoring = Monitoring(poi=state.poi, buffer=state.buffer + (candle,))
    if len(monitoring.buffer) < settings.ltf_choch_lookback * 2 + 1:
        return monitoring, active_pois, None, None

    choch, signal = _check_choch(monitoring, candle, settings)
    if choch is None:
        return monitoring, active_pois, None, None

    return IDLE, active_pois, choch, signal


def track_entries(
    ltf_candles: Sequence[Dict],
    pois: List[POI],
    settings: SMCSettings,
) -> TrackerResult:
    """
    Walk LTF candles through the Idle/Monitoring state machine.

    Only one POI is monitored at a time; a POI is consumed on first touch.
    Signals are unique per entry time (the first one found wins) and are
    returned sorted by entry time.
    """
    state: TrackerState = IDLE
    active_pois = sorted(pois, key=lambda p: p.start_time)

    signals: List[TradeSignal] = []
    seen_entry_times = set()
    chochs: List[CHoCH] = []

    for candle in ltf_candles:
        state, active_pois, choch, signal = step(state, candle, active_pois, settings)
        if choch is not None:
            chochs.append(choch)
        if signal is not None and signal.entry_time not in seen_entry_times:
            seen_entry_times.add(signal.entry_time)
            signals.append(signal)

    signals.sort(key=lambda s: s.entry_time)

    logger.debug("Entry tracker: %d CHoCH, %d signals", len(chochs), len(signals))

    return TrackerResult(
        signals=signals,
        chochs=chochs,
        drawings=[Drawing(kind="CHoCH", data=c) for c in chochs],
    )


def analyze_smc(chart_data: Dict[str, Sequence[Dict]], settings: SMCSettings) -> SMCAnalysisResult:
    """
    Run the full analysis stage: structure on HTF/MTF, entries on LTF.

    Args:
        chart_data: Dict with keys "htf", "mtf", "ltf" holding candle lists
        settings: Strategy settings

    Returns:
        SMCAnalysisResult with ordered trade signals and chart drawings.
        Empty when any series is too short.
    """
    htf = chart_data.get("htf") or []
    mtf = chart_data.get("mtf") or []
    ltf = chart_data.get("ltf") or []

    if (
        len(htf) < settings.htf_swing_lookback * 2 + 1
        or len(mtf) < MIN_SERIES_LENGTH
        or len(ltf) < MIN_SERIES_LENGTH
    ):
        logger.debug("Insufficient data: htf=%d mtf=%d ltf=%d", len(htf), len(mtf), len(ltf))
        return SMCAnalysisResult()

    structure = analyze_structure(htf, mtf, settings)

    drawings = list(structure.drawings)
    last_ltf_time = ltf[-1]["time"]
    drawings.extend(
        Drawing(kind="POI", data=replace(p, end_time=last_ltf_time)) for p in structure.pois
    )

    tracked = track_entries(ltf, structure.pois, settings)
    drawings.extend(tracked.drawings)

    return SMCAnalysisResult(signals=tracked.signals, drawings=drawings)
