# signal_evolver/models/indicators.py
"""
Indicator primitives over trailing windows of daily bars.

Inputs are 1-D float sequences ordered oldest -> newest. Everything here is causal (a value at
position i only uses data at positions <= i) and deterministic. Smoothing runs on pandas
(``ewm(adjust=False)`` / ``rolling``); series helpers hand back numpy arrays so callers can
index the latest value directly. Scalar helpers (``last_*``) return the most recent value.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
import pandas as pd

TRADING_DAYS = 252


def as_array(values) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _series(values) -> pd.Series:
    return pd.Series(as_array(values))


def sma(values, period: int) -> np.ndarray:
    """Simple moving average; NaN until ``period`` values are available."""
    period = max(1, int(period))
    return _series(values).rolling(period, min_periods=period).mean().to_numpy()


def last_sma(values, period: int) -> float:
    """Mean of the last ``period`` values (all values when fewer are available)."""
    s = _series(values)
    if s.empty:
        return float("nan")
    return float(s.tail(max(1, int(period))).mean())


def ema(values, period: int) -> np.ndarray:
    """Exponential moving average seeded with the first value (alpha = 2 / (n + 1))."""
    return _series(values).ewm(span=max(1, int(period)), adjust=False).mean().to_numpy()


def wilder_smooth(values, period: int) -> np.ndarray:
    return _series(values).ewm(alpha=1.0 / max(1, int(period)), adjust=False).mean().to_numpy()


def rsi(closes, period: int = 14) -> float:
    """Wilder RSI of the last bar; 50 when undefined, 100 when there are no losses."""
    close = _series(closes)
    period = max(1, int(period))
    if len(close) <= period:
        return 50.0
    delta = close.diff()
    avg_gain = delta.clip(lower=0.0).ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = (-delta.clip(upper=0.0)).ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    gain, loss = float(avg_gain.iloc[-1]), float(avg_loss.iloc[-1])
    if not math.isfinite(gain) or not math.isfinite(loss):
        return 50.0
    if loss <= 0:
        return 100.0 if gain > 0 else 50.0
    rs = gain / loss
    return float(min(100.0, max(0.0, 100.0 - 100.0 / (1.0 + rs))))


def macd(closes, fast: int = 12, slow: int = 26, signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (macd_line, signal_line, histogram)."""
    line = ema(closes, fast) - ema(closes, slow)
    sig = ema(line, signal)
    return line, sig, line - sig


def bollinger(closes, period: int = 20, num_std: float = 2.0) -> Tuple[float, float, float]:
    """Return (upper, middle, lower) bands for the last bar (population std)."""
    window = _series(closes).tail(max(1, int(period)))
    if window.empty:
        return float("nan"), float("nan"), float("nan")
    mid = float(window.mean())
    sd = float(window.std(ddof=0))
    return mid + num_std * sd, mid, mid - num_std * sd


def true_range(high, low, close) -> np.ndarray:
    h, l, c = _series(high), _series(low), _series(close)
    prev_close = c.shift(1)
    tr = pd.concat([
        (h - l).abs(),
        (h - prev_close).abs(),
        (l - prev_close).abs(),
    ], axis=1).max(axis=1)
    return tr.to_numpy(dtype=float)


def wilder_atr(high, low, close, n: int = 14) -> np.ndarray:
    """Wilder's ATR (EMA of True Range, alpha = 1/n)."""
    return wilder_smooth(true_range(high, low, close), n)


def obv(closes, volumes) -> np.ndarray:
    """On-Balance Volume."""
    c, v = _series(closes), _series(volumes)
    direction = np.sign(c.diff()).fillna(0.0)
    return (direction * v).cumsum().to_numpy(dtype=float)


def pct_return(closes, lookback: int) -> float:
    """Percentage change of the last close vs ``lookback`` bars earlier (0 if unavailable)."""
    c = as_array(closes)
    lookback = int(lookback)
    if lookback <= 0 or len(c) <= lookback:
        return 0.0
    base = c[-1 - lookback]
    if not base or not math.isfinite(base):
        return 0.0
    return float(c[-1] / base - 1.0)


def simple_returns(closes) -> np.ndarray:
    c = as_array(closes)
    if len(c) < 2:
        return np.empty(0)
    prev = c[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.where(prev != 0, c[1:] / prev - 1.0, 0.0)
    return np.nan_to_num(r, nan=0.0, posinf=0.0, neginf=0.0)


def realized_volatility(closes, lookback: int) -> float:
    """Annualized root-mean-square daily return over the last ``lookback`` returns."""
    r = simple_returns(closes)[-max(1, int(lookback)):]
    if len(r) == 0:
        return 0.0
    return float(math.sqrt(float(np.mean(r * r))) * math.sqrt(TRADING_DAYS))


def local_extrema(values, radius: int = 5) -> Tuple[np.ndarray, np.ndarray]:
    """Indices of peaks and troughs: bars equal to the max/min of their +-radius neighbourhood."""
    x = as_array(values)
    width = 2 * radius + 1
    if len(x) < width:
        return np.empty(0, dtype=int), np.empty(0, dtype=int)
    windows = np.lib.stride_tricks.sliding_window_view(x, width)
    centre = x[radius: len(x) - radius]
    peaks = np.flatnonzero(centre == windows.max(axis=1)) + radius
    troughs = np.flatnonzero(centre == windows.min(axis=1)) + radius
    return peaks, troughs


__all__ = [
    "TRADING_DAYS",
    "bollinger",
    "ema",
    "last_sma",
    "local_extrema",
    "macd",
    "obv",
    "pct_return",
    "realized_volatility",
    "rsi",
    "simple_returns",
    "sma",
    "true_range",
    "wilder_atr",
    "wilder_smooth",
]
