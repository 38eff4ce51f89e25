# signal_evolver/optimization/fitness.py
"""
Scalar fitness from a BacktestResult.

Hard penalties come first:
    trade_count < min_trades        -> -1000 + trade_count
    max_drawdown > drawdown_cap     -> -500 * max_drawdown
Otherwise a fixed positive linear combination:
    w_sh*Sharpe + w_so*Sortino + w_ca*Calmar + w_wr*WinRate + w_tr*TotalReturn
    + w_dd*(1 - MaxDD) + w_pf*min(PF, pf_cap) + w_tc*min(trades / trade_saturation, 1)

Weights are constants chosen by variant name; they are never evolved.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict

ERROR_FITNESS = -10000.0
MIN_TRADES_PENALTY_BASE = -1000.0
DRAWDOWN_PENALTY_SCALE = -500.0


@dataclass(frozen=True)
class FitnessWeights:
    sharpe: float = 25.0
    sortino: float = 15.0
    calmar: float = 20.0
    win_rate: float = 15.0
    total_return: float = 15.0
    drawdown: float = 10.0
    profit_factor: float = 10.0
    trade_count: float = 5.0
    profit_factor_cap: float = 3.0
    trade_saturation: float = 300.0


FITNESS_WEIGHT_VARIANTS: Dict[str, FitnessWeights] = {
    "production": FitnessWeights(),
    "classic": FitnessWeights(
        sharpe=30.0,
        sortino=20.0,
        calmar=25.0,
        win_rate=15.0,
        total_return=20.0,
        drawdown=10.0,
        profit_factor=0.0,
        trade_count=5.0,
        trade_saturation=500.0,
    ),
}


@dataclass(frozen=True)
class FitnessConfig:
    min_trades: int = 20
    drawdown_cap: float = 0.35
    weights: FitnessWeights = field(default_factory=FitnessWeights)

    @classmethod
    def for_variant(cls, variant: str = "production", *, min_trades: int = 20, drawdown_cap: float = 0.35) -> "FitnessConfig":
        try:
            weights = FITNESS_WEIGHT_VARIANTS[variant]
        except KeyError:
            raise ValueError(
                f"Unknown fitness variant {variant!r}; expected one of {sorted(FITNESS_WEIGHT_VARIANTS)}"
            ) from None
        return cls(min_trades=int(min_trades), drawdown_cap=float(drawdown_cap), weights=weights)

    def to_log_payload(self) -> Dict[str, Any]:
        return asdict(self)


def _finite(x: Any) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def compute_fitness(result: Any, config: FitnessConfig | None = None) -> float:
    """Map a BacktestResult (or anything with the same metric attributes) to a float."""
    cfg = config or FitnessConfig()
    w = cfg.weights

    trades = int(getattr(result, "trade_count", 0) or 0)
    if trades < cfg.min_trades:
        return MIN_TRADES_PENALTY_BASE + trades

    mdd = _finite(getattr(result, "max_drawdown", 0.0))
    if mdd > cfg.drawdown_cap:
        return DRAWDOWN_PENALTY_SCALE * mdd

    pf = getattr(result, "profit_factor", 0.0)
    try:
        pf_capped = min(float(pf), w.profit_factor_cap)
    except (TypeError, ValueError):
        pf_capped = 0.0
    if not math.isfinite(pf_capped):
        pf_capped = 0.0

    fitness = (
        w.sharpe * _finite(getattr(result, "sharpe", 0.0))
        + w.sortino * _finite(getattr(result, "sortino", 0.0))
        + w.calmar * _finite(getattr(result, "calmar", 0.0))
        + w.win_rate * _finite(getattr(result, "win_rate", 0.0))
        + w.total_return * _finite(getattr(result, "total_return", 0.0))
        + w.drawdown * (1.0 - mdd)
        + w.profit_factor * pf_capped
        + w.trade_count * min(trades / w.trade_saturation, 1.0)
    )
    return float(fitness)


__all__ = [
    "DRAWDOWN_PENALTY_SCALE",
    "ERROR_FITNESS",
    "FITNESS_WEIGHT_VARIANTS",
    "FitnessConfig",
    "FitnessWeights",
    "MIN_TRADES_PENALTY_BASE",
    "compute_fitness",
]
