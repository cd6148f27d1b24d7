"""
Data Loading Utilities for the SMC Backtester.

This module turns CSV candle files into the three candle series the
analysis consumes (HTF, MTF, LTF). Fetching from exchanges happens
elsewhere; whatever produces the files only has to follow the layout below.

CSV File Requirements:
- Place CSV files in the data folder (SMC_DATA_DIR)
- Naming convention: {SYMBOL}_{interval}.csv (e.g., BTCUSDT_4h.csv, BTCUSDT_1m.csv)
- Required columns: time (or timestamp/date), open, high, low, close, volume (optional)
- Time format: epoch seconds, epoch milliseconds or ISO 8601

Example CSV structure:
    time,open,high,low,close,volume
    1704067200,42280.1,42350.0,42210.5,42301.2,12.5
    1704067260,42301.2,42330.0,42290.0,42310.8,8.1
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from config import DATA_DIR

logger = logging.getLogger(__name__)

TIME_COLUMNS = ["time", "timestamp", "date", "datetime", "open_time", "Date", "Time", "Timestamp"]

REQUIRED_COLUMNS = ["open", "high", "low", "close"]

# Exchange style interval -> pandas resample rule
INTERVAL_RULES = {
    "1m": "1min",
    "3m": "3min",
    "5m": "5min",
    "15m": "15min",
    "30m": "30min",
    "1h": "1h",
    "2h": "2h",
    "4h": "4h",
    "6h": "6h",
    "12h": "12h",
    "1d": "1D",
    "1w": "1W",
}

TIME_RANGES = {
    "1d": pd.DateOffset(days=1),
    "3d": pd.DateOffset(days=3),
    "7d": pd.DateOffset(days=7),
    "1M": pd.DateOffset(months=1),
    "3M": pd.DateOffset(months=3),
    "6M": pd.DateOffset(months=6),
    "1Y": pd.DateOffset(years=1),
}

DEFAULT_TIME_RANGE = "1M"

# Epoch values above this are milliseconds
_MS_THRESHOLD = 10_000_000_000


def normalize_symbol(symbol: str) -> str:
    """Normalize symbol for file lookup (e.g., btc/usdt -> BTCUSDT, BTCUSDT.P -> BTCUSDT)."""
    cleaned = symbol.upper().replace("/", "").replace("_", "").replace("-", "")
    if cleaned.endswith(".P"):
        cleaned = cleaned[:-2]
    return cleaned


def find_csv_file(symbol: str, interval: str, data_dir: Optional[Path] = None) -> Optional[Path]:
    """Find the CSV file for a symbol and interval in the data directory."""
    data_dir = Path(data_dir) if data_dir is not None else DATA_DIR
    if not data_dir.exists():
        return None

    normalized = normalize_symbol(symbol)
    possible_names = [
        f"{normalized}_{interval}.csv",
        f"{normalized.lower()}_{interval}.csv",
        f"{symbol}_{interval}.csv",
        f"{normalized}-{interval}.csv",
    ]

    for name in possible_names:
        path = data_dir / name
        if path.exists():
            return path

    return None


def _parse_times(series: pd.Series) -> pd.DatetimeIndex:
    """Parse epoch seconds, epoch milliseconds or date strings to UTC."""
    numeric = pd.to_numeric(series, errors="coerce")
    if numeric.notna().all():
        unit = "ms" if numeric.max() > _MS_THRESHOLD else "s"
        return pd.DatetimeIndex(pd.to_datetime(numeric, unit=unit, utc=True))
    return pd.DatetimeIndex(pd.to_datetime(series, utc=True))


def load_ohlcv_from_csv(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load OHLCV data from a CSV file.

    Args:
        path: CSV file path

    Returns:
        DataFrame with columns open, high, low, close, volume and a UTC
        DatetimeIndex, sorted, duplicates removed (last row wins)

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the time column or an OHLC column is missing
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    df = pd.read_csv(csv_path)

    time_col = next((col for col in TIME_COLUMNS if col in df.columns), None)
    if time_col is None:
        raise ValueError(f"No time column found in {csv_path}. Expected one of: {TIME_COLUMNS}")

    col_mapping = {}
    for col in df.columns:
        col_lower = str(col).lower()
        if col_lower in REQUIRED_COLUMNS and col_lower not in col_mapping:
            col_mapping[col_lower] = col
        elif col_lower in ("o", "h", "l", "c"):
            col_mapping.setdefault({"o": "open", "h": "high", "l": "low", "c": "close"}[col_lower], col)

    for req in REQUIRED_COLUMNS:
        if req not in col_mapping:
            raise ValueError(f"Missing required column '{req}' in {csv_path}")

    result = pd.DataFrame(index=_parse_times(df[time_col]))
    for new_col in REQUIRED_COLUMNS:
        result[new_col] = pd.to_numeric(df[col_mapping[new_col]], errors="coerce").to_numpy()

    vol_col = next((c for c in df.columns if str(c).lower() == "volume"), None)
    if vol_col is not None:
        result["volume"] = pd.to_numeric(df[vol_col], errors="coerce").fillna(0).to_numpy()
    else:
        result["volume"] = 0.0

    result.index.name = "time"
    result = result.dropna(subset=REQUIRED_COLUMNS)
    result = result[~result.index.duplicated(keep="last")]
    return result.sort_index()


def filter_by_time_range(df: pd.DataFrame, time_range: str = DEFAULT_TIME_RANGE) -> pd.DataFrame:
    """
    Keep rows within a trailing window measured back from the last row.

    Args:
        df: DataFrame with DatetimeIndex
        time_range: One of 1d, 3d, 7d, 1M, 3M, 6M, 1Y (unknown values use 1M)

    Returns:
        Filtered DataFrame
    """
    if df.empty:
        return df

    offset = TIME_RANGES.get(time_range)
    if offset is None:
        logger.warning("Unknown time range %r, using %s", time_range, DEFAULT_TIME_RANGE)
        offset = TIME_RANGES[DEFAULT_TIME_RANGE]

    start = df.index.max() - offset
    return df[df.index >= start]


def resample_to_timeframe(df: pd.DataFrame, interval: str) -> pd.DataFrame:
    """
    Resample data to a coarser timeframe.

    Args:
        df: DataFrame with OHLCV data
        interval: Target interval (1m ... 1w)

    Returns:
        Resampled DataFrame
    """
    rule = INTERVAL_RULES.get(interval)
    if rule is None:
        raise ValueError(f"Unknown interval: {interval}")

    resampled = df.resample(rule).agg({
        "open": "first",
        "high": "max",
        "low": "min",
        "close": "last",
        "volume": "sum",
    }).dropna(subset=REQUIRED_COLUMNS)

    return resampled


def df_to_candle_list(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Convert DataFrame to list of candle dictionaries.

    Args:
        df: DataFrame with OHLCV data and a DatetimeIndex

    Returns:
        List of candle dicts with keys: time (epoch seconds), open, high,
        low, close, volume
    """
    candles = []
    for idx, row in df.iterrows():
        candles.append({
            "time": int(pd.Timestamp(idx).timestamp()),
            "open": float(row["open"]),
            "high": float(row["high"]),
            "low": float(row["low"]),
            "close": float(row["close"]),
            "volume": float(row.get("volume", 0.0)),
        })
    return candles


def prepare_candles(candles: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Sort candles by time and drop duplicate times (last occurrence wins).

    The analysis assumes strictly increasing times; callers that build
    candle lists by hand should pass them through here.
    """
    by_time: Dict[int, Dict[str, Any]] = {}
    for candle in candles:
        by_time[int(candle["time"])] = {**candle, "time": int(candle["time"])}
    return [by_time[t] for t in sorted(by_time)]


def load_chart_data(
    symbol: str,
    htf_interval: str,
    mtf_interval: str,
    ltf_interval: str,
    time_range: str = DEFAULT_TIME_RANGE,
    data_dir: Optional[Path] = None,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Load the HTF/MTF/LTF candle series for a symbol.

    The LTF file is required. A missing HTF or MTF file is derived by
    resampling the LTF data.

    Returns:
        Dict with keys "htf", "mtf", "ltf" containing candle lists

    Raises:
        FileNotFoundError: If the LTF file is missing
    """
    ltf_path = find_csv_file(symbol, ltf_interval, data_dir)
    if ltf_path is None:
        raise FileNotFoundError(
            f"CSV file for {symbol} {ltf_interval} not found. "
            f"Please place it in {data_dir or DATA_DIR} as {normalize_symbol(symbol)}_{ltf_interval}.csv"
        )
    ltf_df = load_ohlcv_from_csv(ltf_path)

    frames = {"ltf": ltf_df}
    for key, interval in (("htf", htf_interval), ("mtf", mtf_interval)):
        path = find_csv_file(symbol, interval, data_dir)
        if path is not None:
            frames[key] = load_ohlcv_from_csv(path)
        else:
            logger.info("No %s file for %s %s, resampling from %s", key.upper(), symbol, interval, ltf_interval)
            frames[key] = resample_to_timeframe(ltf_df, interval)

    chart_data = {}
    for key in ("htf", "mtf", "ltf"):
        df = filter_by_time_range(frames[key], time_range)
        chart_data[key] = prepare_candles(df_to_candle_list(df))

    logger.info(
        "Loaded %s: htf=%d mtf=%d ltf=%d candles",
        symbol, len(chart_data["htf"]), len(chart_data["mtf"]), len(chart_data["ltf"]),
    )
    return chart_data
