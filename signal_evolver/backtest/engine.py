# signal_evolver/backtest/engine.py
"""
Day-by-day long-only portfolio simulation driven by the multi-factor signal.

This file defines:
- SimulationConfig: fixed simulation knobs (capital, warmup, window, date range)
- Trade / BacktestResult: immutable outputs
- PortfolioSimulation: the Warmup -> Trading(day) -> Closed state machine
- run_backtest(): convenience wrapper used as the optimizer's fitness oracle

Per trading day (calendar index >= warmup_bars, inside [start, end]):
1. exits: low <= stop closes at the stop, else high >= target closes at the target
2. entries (while open positions < max_positions): score every flat symbol that has a bar
   today and at least warmup_bars of history, keep score >= buy_threshold and
   confidence >= confidence_min, rank by score, size with
   min(floor(cash * max_position_pct / price), floor(cash / price))
3. mark-to-market at the last known close

Open positions are force-closed at their last available close when the run ends.
No UI, no data fetching, no transaction costs.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from signal_evolver.backtest.metrics import (
    TRADING_DAYS,
    compute_risk_metrics,
    sharpe_ratio,
)
from signal_evolver.data.bars import MarketDataset
from signal_evolver.models.indicators import wilder_atr
from signal_evolver.models.regime import classify_regime
from signal_evolver.models.signal_scorer import MIN_BARS, SignalScore, score_signal

logger = logging.getLogger("backtest.engine")

DEFAULT_STARTING_CAPITAL = 100_000.0


def _coerce_float(value, default: float = 0.0) -> float:
    try:
        f = float(value)
    except Exception:
        return default
    if not math.isfinite(f):
        return default
    return f


def _to_utc(ts) -> Optional[pd.Timestamp]:
    if ts is None:
        return None
    t = pd.Timestamp(ts)
    return t.tz_localize("UTC") if t.tzinfo is None else t.tz_convert("UTC")


@dataclass(frozen=True)
class SimulationConfig:
    starting_capital: float = DEFAULT_STARTING_CAPITAL
    warmup_bars: int = 60
    signal_window: int = 100
    start: Optional[Any] = None
    end: Optional[Any] = None
    reference_symbol: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.starting_capital > 0:
            raise ValueError(f"starting_capital must be > 0, got {self.starting_capital}")
        if self.warmup_bars < MIN_BARS:
            raise ValueError(f"warmup_bars must be >= {MIN_BARS}, got {self.warmup_bars}")
        if self.signal_window < MIN_BARS:
            raise ValueError(f"signal_window must be >= {MIN_BARS}, got {self.signal_window}")


@dataclass(frozen=True)
class Trade:
    symbol: str
    entry_price: float
    exit_price: float
    quantity: int
    entry_date: pd.Timestamp
    exit_date: pd.Timestamp
    pnl: float
    pnl_percent: float
    confidence: float
    exit_reason: str

    @property
    def holding_days(self) -> int:
        return int((self.exit_date - self.entry_date).days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "entry_date": str(self.entry_date.date()),
            "exit_date": str(self.exit_date.date()),
            "pnl": self.pnl,
            "pnl_percent": self.pnl_percent,
            "confidence": self.confidence,
            "exit_reason": self.exit_reason,
            "holding_days": self.holding_days,
        }


@dataclass(frozen=True)
class BacktestResult:
    equity_curve: pd.Series
    daily_returns: pd.Series
    trades: Tuple[Trade, ...]
    sharpe: float
    sortino: float
    calmar: float
    max_drawdown: float
    win_rate: float
    profit_factor: float
    total_return: float = 0.0
    cagr: float = 0.0
    trade_count: int = 0
    avg_holding_days: float = 0.0
    regime_performance: Dict[str, Dict[str, float]] = field(default_factory=dict)
    regime: str = "unknown"

    def metrics_dict(self) -> Dict[str, Any]:
        return {
            "sharpe": self.sharpe,
            "sortino": self.sortino,
            "calmar": self.calmar,
            "max_drawdown": self.max_drawdown,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "total_return": self.total_return,
            "cagr": self.cagr,
            "trade_count": self.trade_count,
            "avg_holding_days": self.avg_holding_days,
        }

    def to_dict(self, include_curve: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = self.metrics_dict()
        out["regime"] = self.regime
        out["regime_performance"] = self.regime_performance
        out["trades"] = [t.to_dict() for t in self.trades]
        if include_curve:
            out["equity_curve"] = {str(k.date()): float(v) for k, v in self.equity_curve.items()}
        return out


@dataclass
class _Position:
    symbol: str
    entry_price: float
    quantity: int
    entry_date: pd.Timestamp
    stop: float
    target: float
    confidence: float


class SimulationPhase(Enum):
    WARMUP = "warmup"
    TRADING = "trading"
    CLOSED = "closed"


class PortfolioSimulation:
    """One simulation of a gene map over a dataset. Use once, then discard."""

    def __init__(self, genes: Mapping[str, float], dataset: MarketDataset, config: SimulationConfig | None = None) -> None:
        self.genes = dict(genes)
        self.dataset = dataset
        self.config = config or SimulationConfig()
        self.phase = SimulationPhase.WARMUP

        self.max_positions = max(1, int(round(_coerce_float(self.genes.get("max_positions"), 10))))
        self.max_position_pct = _coerce_float(self.genes.get("max_position_pct"), 0.05)
        self.buy_threshold = _coerce_float(self.genes.get("buy_threshold"), 0.15)
        self.confidence_min = _coerce_float(self.genes.get("confidence_min"), 0.25)
        self.atr_period = max(1, int(round(_coerce_float(self.genes.get("atr_period"), 14))))
        self.atr_mult_stop = _coerce_float(self.genes.get("atr_mult_stop"), 1.5)
        self.atr_mult_target = _coerce_float(self.genes.get("atr_mult_target"), 3.0)
        self.trend_filter = _coerce_float(self.genes.get("trend_filter"), 0.0) >= 0.5

        self.cash = float(self.config.starting_capital)
        self.positions: Dict[str, _Position] = {}
        self.trades: List[Trade] = []
        self._equity: List[float] = []
        self._dates: List[pd.Timestamp] = []
        self._regimes: List[str] = []

        self._reference = self._resolve_reference()

    def _resolve_reference(self) -> Optional[str]:
        ref = self.config.reference_symbol
        if ref and ref in self.dataset:
            return ref
        symbols = self.dataset.symbols
        return symbols[0] if symbols else None

    # ---------- day range ----------

    def trading_days(self) -> range:
        calendar = self.dataset.calendar
        first = self.config.warmup_bars
        last = len(calendar) - 1
        start = _to_utc(self.config.start)
        end = _to_utc(self.config.end)
        if start is not None:
            first = max(first, int(calendar.searchsorted(start, side="left")))
        if end is not None:
            last = min(last, int(calendar.searchsorted(end, side="right")) - 1)
        return range(first, last + 1) if first <= last else range(0)

    # ---------- state machine ----------

    def step(self, day_idx: int) -> None:
        if self.phase is SimulationPhase.CLOSED:
            raise RuntimeError("Simulation already closed")
        day = self.dataset.calendar[day_idx]
        if self.phase is SimulationPhase.WARMUP:
            self.phase = SimulationPhase.TRADING
            self._equity.append(self.cash)
            self._dates.append(self.dataset.calendar[day_idx - 1])

        self._check_exits(day_idx, day)
        if len(self.positions) < self.max_positions:
            self._check_entries(day_idx, day)
        self._mark_to_market(day_idx, day)

    def _check_exits(self, day_idx: int, day: pd.Timestamp) -> None:
        for symbol in list(self.positions):
            sb = self.dataset[symbol]
            i = sb.bar_index(day_idx)
            if i < 0:
                continue
            pos = self.positions[symbol]
            if sb.low[i] <= pos.stop:
                self._close(pos, pos.stop, day, "stop")
            elif sb.high[i] >= pos.target:
                self._close(pos, pos.target, day, "target")

    def _candidates(self, day_idx: int) -> List[Tuple[str, SignalScore, float]]:
        out: List[Tuple[str, SignalScore, float]] = []
        for symbol in self.dataset.symbols:
            if symbol in self.positions:
                continue
            sb = self.dataset[symbol]
            i = sb.bar_index(day_idx)
            if i < 0 or i + 1 < self.config.warmup_bars:
                continue
            window = sb.window(i + 1, self.config.signal_window)
            signal = score_signal(window, self.genes)
            if signal.score < self.buy_threshold or signal.confidence < self.confidence_min:
                continue
            if self.trend_filter and signal.factors.get("breadth", 0.0) <= 0:
                continue
            atr = wilder_atr(window.high, window.low, window.close, self.atr_period)[-1]
            out.append((symbol, signal, float(atr)))
        out.sort(key=lambda c: c[1].score, reverse=True)
        return out

    def _check_entries(self, day_idx: int, day: pd.Timestamp) -> None:
        slots = self.max_positions - len(self.positions)
        for symbol, signal, atr in self._candidates(day_idx)[:slots]:
            sb = self.dataset[symbol]
            price = float(sb.close[sb.bar_index(day_idx)])
            if not (math.isfinite(price) and price > 0 and math.isfinite(atr)):
                continue
            shares = min(
                int(math.floor(self.cash * self.max_position_pct / price)),
                int(math.floor(self.cash / price)),
            )
            if shares <= 0:
                continue
            self.cash -= shares * price
            self.positions[symbol] = _Position(
                symbol=symbol,
                entry_price=price,
                quantity=shares,
                entry_date=day,
                stop=price - atr * self.atr_mult_stop,
                target=price + atr * self.atr_mult_target,
                confidence=signal.confidence,
            )

    def _mark_to_market(self, day_idx: int, day: pd.Timestamp) -> None:
        equity = self.cash
        for symbol, pos in self.positions.items():
            px = self.dataset[symbol].last_close(day_idx)
            equity += pos.quantity * (px if math.isfinite(px) else pos.entry_price)
        self._equity.append(equity)
        self._dates.append(day)
        if self._reference is not None:
            sb = self.dataset[self._reference]
            n = sb.count_through(day_idx)
            self._regimes.append(classify_regime(sb.close[max(0, n - 60):n]))

    def _close(self, pos: _Position, price: float, day: pd.Timestamp, reason: str) -> None:
        self.cash += pos.quantity * price
        pnl = (price - pos.entry_price) * pos.quantity
        self.trades.append(
            Trade(
                symbol=pos.symbol,
                entry_price=pos.entry_price,
                exit_price=float(price),
                quantity=pos.quantity,
                entry_date=pos.entry_date,
                exit_date=day,
                pnl=float(pnl),
                pnl_percent=float(price / pos.entry_price - 1.0),
                confidence=pos.confidence,
                exit_reason=reason,
            )
        )
        del self.positions[pos.symbol]

    def close(self) -> BacktestResult:
        """Force-close open positions at their last available close and build the result."""
        if self.phase is SimulationPhase.CLOSED:
            raise RuntimeError("Simulation already closed")
        last_idx = self._last_day_idx()
        if last_idx is not None:
            day = self.dataset.calendar[last_idx]
            for symbol in list(self.positions):
                pos = self.positions[symbol]
                px = self.dataset[symbol].last_close(last_idx)
                self._close(pos, px if math.isfinite(px) else pos.entry_price, day, "end_of_data")
        self.phase = SimulationPhase.CLOSED
        return self._build_result()

    def _last_day_idx(self) -> Optional[int]:
        if not self._dates or len(self._dates) < 2:
            return None
        return int(self.dataset.calendar.get_loc(self._dates[-1]))

    def _build_result(self) -> BacktestResult:
        if self._equity:
            equity = pd.Series(self._equity, index=pd.DatetimeIndex(self._dates), dtype=float)
        else:
            equity = pd.Series([float(self.config.starting_capital)], dtype=float)
        values = equity.to_numpy(dtype=float)
        if len(values) > 1:
            prev = values[:-1]
            rets = np.where(prev > 0, values[1:] / np.where(prev > 0, prev, 1.0) - 1.0, 0.0)
            daily = pd.Series(rets, index=equity.index[1:], dtype=float)
        else:
            daily = pd.Series([], dtype=float)

        pnls = [t.pnl for t in self.trades]
        m = compute_risk_metrics(values, daily.to_numpy(dtype=float), pnls)
        holds = [t.holding_days for t in self.trades]
        result = BacktestResult(
            equity_curve=equity,
            daily_returns=daily,
            trades=tuple(self.trades),
            sharpe=m["sharpe"],
            sortino=m["sortino"],
            calmar=m["calmar"],
            max_drawdown=m["max_drawdown"],
            win_rate=m["win_rate"],
            profit_factor=m["profit_factor"],
            total_return=m["total_return"],
            cagr=m["cagr"],
            trade_count=m["trade_count"],
            avg_holding_days=float(np.mean(holds)) if holds else 0.0,
            regime_performance=self._regime_breakdown(daily.to_numpy(dtype=float)),
            regime=self._regimes[-1] if self._regimes else "unknown",
        )
        logger.debug(
            "backtest done trades=%d total_return=%.4f sharpe=%.3f mdd=%.3f",
            result.trade_count, result.total_return, result.sharpe, result.max_drawdown,
        )
        return result

    def _regime_breakdown(self, daily: np.ndarray) -> Dict[str, Dict[str, float]]:
        if len(self._regimes) != len(daily) or len(daily) == 0:
            return {}
        out: Dict[str, Dict[str, float]] = {}
        labels = np.asarray(self._regimes)
        for regime in sorted(set(self._regimes)):
            r = daily[labels == regime]
            out[regime] = {
                "days": int(len(r)),
                "total_return": float(np.prod(1.0 + r) - 1.0),
                "avg_daily_return": float(np.mean(r)),
                "sharpe": sharpe_ratio(r),
            }
        return out


def run_backtest(genes: Mapping[str, float], dataset: MarketDataset, config: SimulationConfig | None = None) -> BacktestResult:
    """Simulate ``genes`` over ``dataset``; a pure function of its inputs."""
    sim = PortfolioSimulation(genes, dataset, config)
    for day_idx in sim.trading_days():
        sim.step(day_idx)
    return sim.close()


__all__ = [
    "DEFAULT_STARTING_CAPITAL",
    "BacktestResult",
    "PortfolioSimulation",
    "SimulationConfig",
    "SimulationPhase",
    "Trade",
    "TRADING_DAYS",
    "run_backtest",
]
