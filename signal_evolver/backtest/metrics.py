# signal_evolver/backtest/metrics.py
"""
Risk and performance metrics for simulated portfolios.

Input contracts:
- equity: pd.Series or array of portfolio value, first point = starting capital
- daily_returns: pd.Series or array of day-over-day equity returns
- pnls: per-trade realized PnL values

Degenerate inputs never raise; they map to sentinels:
- zero return variance -> Sharpe = Sortino = 0
- no negative returns -> Sortino = 0
- zero drawdown -> Calmar = 0
- zero gross loss -> profit factor = inf if there was any gross profit, else 0
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Sequence

import numpy as np
import pandas as pd

TRADING_DAYS = 252
_STD_EPS = 1e-12

logger = logging.getLogger("backtest.metrics")


def _to_float(x, default=0.0):
    try:
        v = float(x)
        if np.isnan(v) or np.isinf(v):
            return default
        return v
    except Exception:
        return default


def _values(series) -> np.ndarray:
    if series is None:
        return np.empty(0)
    if isinstance(series, pd.Series):
        series = series.to_numpy(dtype=float)
    arr = np.asarray(series, dtype=float)
    return arr[np.isfinite(arr)]


# ---------- Return-based ratios ----------

def sharpe_ratio(daily_returns) -> float:
    """mean * 252 / (std * sqrt(252)), population std."""
    r = _values(daily_returns)
    if len(r) == 0:
        return 0.0
    sd = float(np.std(r))
    if sd < _STD_EPS:
        return 0.0
    return float(r.mean() * TRADING_DAYS / (sd * math.sqrt(TRADING_DAYS)))


def sortino_ratio(daily_returns) -> float:
    """Like Sharpe but divides by the root-mean-square of negative returns only."""
    r = _values(daily_returns)
    if len(r) == 0 or float(np.std(r)) < _STD_EPS:
        return 0.0
    neg = r[r < 0]
    if len(neg) == 0:
        return 0.0
    downside = math.sqrt(float(np.mean(neg * neg)))
    if downside == 0:
        return 0.0
    return float(r.mean() * TRADING_DAYS / (downside * math.sqrt(TRADING_DAYS)))


# ---------- Equity-based metrics ----------

def total_return(equity) -> float:
    e = _values(equity)
    if len(e) < 2 or e[0] <= 0:
        return 0.0
    return float(e[-1] / e[0] - 1.0)


def cagr(equity) -> float:
    """Compound annual growth, counting each equity step as one trading day."""
    e = _values(equity)
    if len(e) < 2 or e[0] <= 0 or e[-1] <= 0:
        return 0.0
    years = (len(e) - 1) / TRADING_DAYS
    try:
        value = (e[-1] / e[0]) ** (1.0 / years) - 1.0
    except (OverflowError, ZeroDivisionError):
        return 0.0
    return _to_float(value, 0.0)


def max_drawdown(equity) -> float:
    """Largest peak-to-trough decline as a positive fraction."""
    e = _values(equity)
    if len(e) == 0:
        return 0.0
    running_max = np.maximum.accumulate(e)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(running_max > 0, 1.0 - e / running_max, 0.0)
    return float(max(0.0, dd.max()))


def calmar_ratio(cagr_value: float, mdd: float) -> float:
    if not mdd:
        return 0.0
    return _to_float(cagr_value / mdd, 0.0)


# ---------- Trade summaries ----------

def win_rate(pnls: Sequence[float]) -> float:
    p = _values(list(pnls))
    if len(p) == 0:
        return 0.0
    return float((p > 0).sum() / len(p))


def profit_factor(pnls: Sequence[float]) -> float:
    p = _values(list(pnls))
    if len(p) == 0:
        return 0.0
    gp = float(p[p > 0].sum())
    gl = float(-p[p <= 0].sum())
    if gl == 0:
        return math.inf if gp > 0 else 0.0
    return gp / gl


# ---------- One-shot summary ----------

def compute_risk_metrics(equity, daily_returns, pnls: Sequence[float]) -> Dict[str, float]:
    mdd = max_drawdown(equity)
    growth = cagr(equity)
    out = {
        "sharpe": sharpe_ratio(daily_returns),
        "sortino": sortino_ratio(daily_returns),
        "total_return": total_return(equity),
        "cagr": growth,
        "max_drawdown": mdd,
        "calmar": calmar_ratio(growth, mdd),
        "win_rate": win_rate(pnls),
        "profit_factor": profit_factor(pnls),
        "trade_count": int(len(pnls)),
    }
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("risk metrics %s", out)
    return out


__all__ = [
    "TRADING_DAYS",
    "cagr",
    "calmar_ratio",
    "compute_risk_metrics",
    "max_drawdown",
    "profit_factor",
    "sharpe_ratio",
    "sortino_ratio",
    "total_return",
    "win_rate",
]
