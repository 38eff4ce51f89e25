# signal_evolver/optimization/judge.py
"""
Threshold rules that grade a candidate's risk metrics.

Any overfitting warning (Sharpe above ``suspicious_sharpe``, or win rate above
``suspicious_win_rate`` over more than ``suspicious_min_trades`` trades) makes the verdict
SUSPICIOUS. A suspicious candidate may stay in its island but never becomes the run's
recorded global best.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List


class Verdict(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    SUSPICIOUS = "suspicious"


@dataclass(frozen=True)
class JudgeReport:
    verdict: Verdict
    score: float
    confidence: float
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def is_suspicious(self) -> bool:
        return self.verdict is Verdict.SUSPICIOUS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "score": self.score,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "suggestions": list(self.suggestions),
        }


def _num(metrics: Any, name: str) -> float:
    v = metrics.get(name, 0.0) if isinstance(metrics, dict) else getattr(metrics, name, 0.0)
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(f):
        return 0.0
    return f


class Judge:
    def __init__(
        self,
        *,
        suspicious_sharpe: float = 4.0,
        suspicious_win_rate: float = 0.85,
        suspicious_min_trades: int = 50,
        history_limit: int = 100,
    ) -> None:
        self.suspicious_sharpe = suspicious_sharpe
        self.suspicious_win_rate = suspicious_win_rate
        self.suspicious_min_trades = suspicious_min_trades
        self._history: Deque[JudgeReport] = deque(maxlen=history_limit)

    @property
    def history(self) -> List[JudgeReport]:
        return list(self._history)

    def evaluate(self, metrics: Any) -> JudgeReport:
        """Grade a RiskMetrics / BacktestResult / dict of metrics."""
        sharpe = _num(metrics, "sharpe")
        sortino = _num(metrics, "sortino")
        calmar = _num(metrics, "calmar")
        win_rate = _num(metrics, "win_rate")
        total_return = _num(metrics, "total_return")
        mdd = _num(metrics, "max_drawdown")
        trades = int(_num(metrics, "trade_count"))
        pf = _num(metrics, "profit_factor")

        score = (
            min(sharpe, 3.0) * 20
            + min(sortino, 4.0) * 10
            + min(calmar, 3.0) * 15
            + win_rate * 20
            + min(total_return * 2, 40.0)
            + (1.0 - mdd) * 30
            + min(trades / 500.0, 1.0) * 10
            + min(pf, 3.0) * 15
        )

        warnings: List[str] = []
        suggestions: List[str] = []
        if mdd > 0.25:
            score -= 30
            warnings.append(f"High drawdown: {mdd * 100:.1f}%")
            suggestions.append("Tighten stops or reduce position size")
        if trades < 30:
            score -= 25
            warnings.append(f"Low trade count: {trades}")
            suggestions.append("Loosen entry thresholds to increase sample size")
        if win_rate < 0.35:
            score -= 15
            warnings.append(f"Low win rate: {win_rate * 100:.1f}%")

        overfit: List[str] = []
        if sharpe > self.suspicious_sharpe:
            overfit.append(f"Implausible Sharpe ratio: {sharpe:.2f}")
        if win_rate > self.suspicious_win_rate and trades > self.suspicious_min_trades:
            overfit.append(f"Implausible win rate {win_rate * 100:.1f}% over {trades} trades")
        warnings.extend(overfit)

        if overfit:
            verdict = Verdict.SUSPICIOUS
        elif score >= 180:
            verdict = Verdict.EXCELLENT
        elif score >= 140:
            verdict = Verdict.GOOD
        elif score >= 90:
            verdict = Verdict.ACCEPTABLE
        else:
            verdict = Verdict.POOR

        confidence = min(1.0, trades / 200.0) * (0.5 if overfit else 1.0)
        report = JudgeReport(
            verdict=verdict,
            score=float(score),
            confidence=float(confidence),
            warnings=warnings,
            suggestions=suggestions,
        )
        self._history.append(report)
        return report


__all__ = ["Judge", "JudgeReport", "Verdict"]
