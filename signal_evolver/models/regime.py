# signal_evolver/models/regime.py
"""Market-regime classification of a reference symbol's trailing closes."""

from __future__ import annotations

import numpy as np

from signal_evolver.models.indicators import last_sma, simple_returns

REGIMES = ("bull", "bear", "volatile_range", "ranging", "unknown")
HIGH_VOL_DAILY = 0.02


def classify_regime(closes, lookback: int = 20) -> str:
    """
    bull:           close above SMA20 and SMA50, SMA20 above SMA50
    bear:           close below SMA20 and SMA50
    volatile_range: neither, with daily return std above 2%
    ranging:        anything else
    unknown:        fewer than 50 closes
    """
    c = np.asarray(closes, dtype=float)
    if len(c) < 50:
        return "unknown"
    last = c[-1]
    sma20 = last_sma(c, 20)
    sma50 = last_sma(c, 50)
    if last > sma20 and last > sma50 and sma20 > sma50:
        return "bull"
    if last < sma20 and last < sma50:
        return "bear"
    r = simple_returns(c)[-max(2, int(lookback)):]
    if len(r) and float(np.std(r)) > HIGH_VOL_DAILY:
        return "volatile_range"
    return "ranging"


__all__ = ["REGIMES", "classify_regime"]
