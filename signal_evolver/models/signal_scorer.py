# signal_evolver/models/signal_scorer.py
"""
Multi-factor directional signal for one symbol on one day.

``score_signal(bars, genes)`` looks only at the trailing window it is given (oldest -> newest,
the last row is "today") and returns a SignalScore. Eight factor scores are computed
independently and clipped to [-1, 1]:

    technical       RSI vs oversold/overbought, MACD histogram acceleration, Bollinger penetration
    momentum        blend of 5-bar, genome lookback and 20-bar percentage returns
    volatility      0.5 - annualized realized volatility
    volume          volume vs 20-bar average, On-Balance-Volume trend
    sentiment       opening gap, 20-bar trend, volume-confirmed 5-bar move
    pattern         double top/bottom, flags, SMA20 breakout/breakdown
    breadth         close vs short/medium/long SMAs
    mean_reversion  signed distance from the middle Bollinger band

score = sum(weight_f * factor_f) using the genome's normalized weights, so |score| <= 1.
confidence = (share of factors agreeing in sign) * |score|.

The function is pure: identical inputs give identical outputs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping

import numpy as np
import pandas as pd

from signal_evolver.data.bars import BarWindow
from signal_evolver.models.indicators import (
    bollinger,
    last_sma,
    local_extrema,
    macd,
    obv,
    pct_return,
    realized_volatility,
    rsi,
)
from signal_evolver.optimization.param_space import FACTOR_NAMES, WEIGHT_KEYS

MIN_BARS = 50
PATTERN_RADIUS = 5


@dataclass(frozen=True)
class SignalScore:
    score: float
    confidence: float
    factors: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def neutral(cls) -> "SignalScore":
        return cls(0.0, 0.0, {name: 0.0 for name in FACTOR_NAMES})


def _clip(x: float) -> float:
    if not math.isfinite(x):
        return 0.0
    return max(-1.0, min(1.0, float(x)))


def _gi(genes: Mapping[str, float], name: str, default: int) -> int:
    try:
        return int(round(float(genes.get(name, default))))
    except (TypeError, ValueError):
        return default


def _gf(genes: Mapping[str, float], name: str, default: float) -> float:
    try:
        v = float(genes.get(name, default))
    except (TypeError, ValueError):
        return default
    return v if math.isfinite(v) else default


def _as_window(bars) -> BarWindow:
    if isinstance(bars, BarWindow):
        return bars
    if isinstance(bars, pd.DataFrame):
        cols = {str(c).lower(): c for c in bars.columns}
        return BarWindow(*(bars[cols[k]].to_numpy(dtype=float) for k in ("open", "high", "low", "close", "volume")))
    raise TypeError(f"Unsupported bars type: {type(bars)!r}")


# ---------- Factors ----------

def technical_factor(close: np.ndarray, genes: Mapping[str, float]) -> float:
    score = 0.0
    r = rsi(close, _gi(genes, "rsi_period", 14))
    if r < _gf(genes, "rsi_oversold", 30.0):
        score += 0.3
    elif r > _gf(genes, "rsi_overbought", 70.0):
        score -= 0.3
    else:
        score += (50.0 - r) / 100.0

    _, _, hist = macd(
        close,
        _gi(genes, "macd_fast", 12),
        _gi(genes, "macd_slow", 26),
        _gi(genes, "macd_signal", 9),
    )
    if len(hist) >= 2:
        h, prev = hist[-1], hist[-2]
        if h > 0 and h > prev:
            score += 0.25
        elif h < 0 and h < prev:
            score -= 0.25

    upper, _, lower = bollinger(close, _gi(genes, "bb_period", 20), _gf(genes, "bb_std_dev", 2.0))
    if close[-1] < lower:
        score += 0.2
    elif close[-1] > upper:
        score -= 0.2
    return _clip(score)


def momentum_factor(close: np.ndarray, genes: Mapping[str, float]) -> float:
    short = pct_return(close, 5)
    medium = pct_return(close, _gi(genes, "momentum_lookback", 10))
    long = pct_return(close, 20)
    return _clip((5.0 * short + 3.0 * medium + 2.0 * long) / 3.0)


def volatility_factor(close: np.ndarray, genes: Mapping[str, float]) -> float:
    return _clip(0.5 - realized_volatility(close, _gi(genes, "volatility_lookback", 20)))


def _volume_ratio(volume: np.ndarray) -> float:
    avg = float(np.mean(volume[-20:]))
    if not math.isfinite(avg) or avg <= 0:
        return 1.0
    return float(volume[-1]) / avg


def volume_factor(close: np.ndarray, volume: np.ndarray) -> float:
    score = (_volume_ratio(volume) - 1.0) * 0.5
    ob = obv(close, volume)
    if len(ob) > 5:
        trend = ob[-1] - ob[-6]
        if trend > 0:
            score += 0.2
        elif trend < 0:
            score -= 0.2
    return _clip(score)


def sentiment_factor(open_: np.ndarray, close: np.ndarray, volume: np.ndarray) -> float:
    score = 0.0
    prev_close = close[-2]
    if prev_close > 0:
        if open_[-1] > prev_close * 1.01:
            score += 0.3
        elif open_[-1] < prev_close * 0.99:
            score -= 0.3

    trend = pct_return(close, 20)
    if trend > 0.05:
        score += 0.3
    elif trend < -0.05:
        score -= 0.3

    if _volume_ratio(volume) > 1.5:
        move = pct_return(close, 5)
        if move > 0:
            score += 0.2
        elif move < 0:
            score -= 0.2
    return _clip(score)


def pattern_factor(close: np.ndarray) -> float:
    score = 0.0
    last = close[-1]
    peaks, troughs = local_extrema(close, PATTERN_RADIUS)

    if len(troughs) >= 2:
        t1, t2 = close[troughs[-2]], close[troughs[-1]]
        if t1 > 0 and abs(t1 - t2) / t1 < 0.03 and last > t2 * 1.02:
            score += 0.8  # double bottom
    if len(peaks) >= 2:
        p1, p2 = close[peaks[-2]], close[peaks[-1]]
        if p1 > 0 and abs(p1 - p2) / p1 < 0.03 and last < p2 * 0.98:
            score -= 0.8  # double top

    recent = close[-20:]
    first5 = float(np.mean(recent[:5]))
    mid10 = float(np.mean(recent[5:15]))
    last5 = float(np.mean(recent[-5:]))
    if first5 < mid10 and mid10 > last5 and last5 > first5:
        score += 0.6  # bull flag
    if first5 > mid10 and mid10 < last5 and last5 < first5:
        score -= 0.6  # bear flag

    sma20 = last_sma(close, 20)
    if last > sma20 * 1.05:
        score += 0.5
    elif last < sma20 * 0.95:
        score -= 0.5
    return _clip(score)


def breadth_factor(close: np.ndarray, genes: Mapping[str, float]) -> float:
    last = close[-1]
    short = last_sma(close, _gi(genes, "sma_short", 10))
    medium = last_sma(close, _gi(genes, "sma_medium", 20))
    long_period = _gi(genes, "sma_long", 50)
    long = last_sma(close, long_period) if len(close) >= long_period else medium

    score = 0.0
    for level, weight in ((short, 0.33), (medium, 0.33), (long, 0.34)):
        if last > level:
            score += weight
        elif last < level:
            score -= weight
    return _clip(score)


def mean_reversion_factor(close: np.ndarray, genes: Mapping[str, float]) -> float:
    upper, mid, _ = bollinger(close, _gi(genes, "bb_period", 20), _gf(genes, "bb_std_dev", 2.0))
    width = upper - mid
    if not width:
        width = 1.0
    return _clip(-0.5 * (close[-1] - mid) / width)


# ---------- Public API ----------

def score_signal(bars, genes: Mapping[str, float]) -> SignalScore:
    """Score the last bar of ``bars`` (a BarWindow or an OHLCV DataFrame)."""
    w = _as_window(bars)
    if len(w.close) < MIN_BARS:
        return SignalScore.neutral()

    factors = {
        "technical": technical_factor(w.close, genes),
        "momentum": momentum_factor(w.close, genes),
        "volatility": volatility_factor(w.close, genes),
        "volume": volume_factor(w.close, w.volume),
        "sentiment": sentiment_factor(w.open, w.close, w.volume),
        "pattern": pattern_factor(w.close),
        "breadth": breadth_factor(w.close, genes),
        "mean_reversion": mean_reversion_factor(w.close, genes),
    }

    default_weight = 1.0 / len(FACTOR_NAMES)
    score = 0.0
    for name, key in zip(FACTOR_NAMES, WEIGHT_KEYS):
        score += _gf(genes, key, default_weight) * factors[name]
    score = _clip(score)

    positive = sum(1 for v in factors.values() if v > 0)
    negative = sum(1 for v in factors.values() if v < 0)
    agreement = max(positive, negative) / len(factors)
    return SignalScore(score=score, confidence=agreement * abs(score), factors=factors)


__all__ = ["MIN_BARS", "SignalScore", "score_signal"]
