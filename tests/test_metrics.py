"""Risk metrics return sentinels instead of raising on degenerate inputs."""
from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from signal_evolver.backtest import metrics as m


def test_zero_variance_returns_give_zero_ratios() -> None:
    flat = np.full(50, 0.001)
    assert m.sharpe_ratio(flat) == 0.0
    assert m.sortino_ratio(flat) == 0.0
    assert m.sharpe_ratio([]) == 0.0


def test_sortino_without_losses_is_zero() -> None:
    assert m.sortino_ratio([0.01, 0.02, 0.03]) == 0.0


def test_sharpe_sign_follows_mean() -> None:
    r = pd.Series([0.01, -0.005, 0.02, -0.01, 0.015])
    assert m.sharpe_ratio(r) > 0
    assert m.sharpe_ratio(-r) < 0
    assert m.sortino_ratio(r) > 0


def test_max_drawdown_is_positive_fraction() -> None:
    equity = [100.0, 120.0, 90.0, 130.0, 117.0]
    assert m.max_drawdown(equity) == pytest.approx(0.25)
    assert m.max_drawdown([100.0, 101.0, 102.0]) == 0.0


def test_total_return_and_cagr() -> None:
    equity = np.linspace(100.0, 110.0, 253)
    assert m.total_return(equity) == pytest.approx(0.10)
    assert m.cagr(equity) == pytest.approx(0.10)
    assert m.cagr([100.0]) == 0.0


def test_calmar_handles_zero_drawdown() -> None:
    assert m.calmar_ratio(0.2, 0.0) == 0.0
    assert m.calmar_ratio(0.2, 0.1) == pytest.approx(2.0)


def test_trade_summaries() -> None:
    assert m.win_rate([]) == 0.0
    assert m.win_rate([10.0, -5.0, 0.0, 3.0]) == pytest.approx(0.5)
    assert m.profit_factor([10.0, -5.0]) == pytest.approx(2.0)
    assert math.isinf(m.profit_factor([10.0, 5.0]))
    assert m.profit_factor([0.0]) == 0.0
    assert m.profit_factor([]) == 0.0


def test_compute_risk_metrics_keys() -> None:
    out = m.compute_risk_metrics([100.0, 101.0, 99.0], [0.01, -0.0198], [1.0, -2.0])
    assert set(out) == {
        "sharpe",
        "sortino",
        "total_return",
        "cagr",
        "max_drawdown",
        "calmar",
        "win_rate",
        "profit_factor",
        "trade_count",
    }
    assert out["trade_count"] == 2
