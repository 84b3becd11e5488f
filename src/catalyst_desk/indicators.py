"""Technical indicators used by the exit engine and the liquidity guard.

All functions take pandas objects with yfinance column names (``High``,
``Low``, ``Close``, ``Volume``) and return ``None`` when there is not enough
data, never raising on short or malformed input.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from .logging_utils import get_logger

log = get_logger("indicators")


def _last(series: pd.Series) -> Optional[float]:
    if series is None or series.empty:
        return None
    val = series.iloc[-1]
    if pd.isna(val) or not np.isfinite(val):
        return None
    return float(val)


def calculate_atr(df: pd.DataFrame, period: int = 14) -> Optional[float]:
    """Calculate Average True Range (ATR) for volatility-based stops.

    Parameters
    ----------
    df : pd.DataFrame
        OHLC price data with High, Low, Close columns
    period : int
        ATR period (default: 14)

    Returns
    -------
    float or None
        Current ATR value, or None if there are fewer than ``period`` bars
    """
    if df is None or len(df) < period:
        return None
    try:
        high = df["High"]
        low = df["Low"]
        prev_close = df["Close"].shift(1)

        # True Range = max(high-low, abs(high-prevclose), abs(low-prevclose))
        true_range = pd.concat(
            [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
        ).max(axis=1)

        return _last(true_range.rolling(window=period).mean())
    except KeyError as e:
        log.warning("atr_calculation_failed missing_column=%s", e)
        return None


def calculate_ema(series: pd.Series, span: int) -> Optional[float]:
    """Latest exponential moving average of ``series``; None under ``span`` points."""
    if series is None or len(series.dropna()) < span:
        return None
    return _last(series.ewm(span=span, adjust=False).mean())


def calculate_rsi(series: pd.Series, period: int = 14) -> Optional[float]:
    """Latest RSI using simple rolling averages of gains and losses."""
    if series is None or len(series.dropna()) <= period:
        return None
    delta = series.diff()
    gain = delta.where(delta > 0, 0.0).rolling(window=period).mean()
    loss = (-delta.where(delta < 0, 0.0)).rolling(window=period).mean()

    last_gain = _last(gain)
    last_loss = _last(loss)
    if last_gain is None or last_loss is None:
        return None
    if last_loss == 0:
        return 100.0 if last_gain > 0 else 50.0
    rs = last_gain / last_loss
    return 100.0 - (100.0 / (1.0 + rs))


def average_daily_volume(df: pd.DataFrame, days: int = 10) -> Optional[float]:
    """Mean of the last ``days`` daily volumes."""
    if df is None or "Volume" not in df or len(df) == 0:
        return None
    vol = df["Volume"].dropna().tail(days)
    if vol.empty:
        return None
    return _last(pd.Series([vol.mean()]))
