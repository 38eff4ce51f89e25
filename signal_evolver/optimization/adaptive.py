# signal_evolver/optimization/adaptive.py
"""Adaptive mutation rate and convergence detection from per-generation average fitness."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List

import numpy as np


@dataclass
class AdaptiveMutationController:
    """
    record() once per generation with the population's average fitness.

    With at least ``window`` entries, improvement = (newest - oldest) / |oldest| over the last
    ``window`` values (|oldest| of 0 counts as 1):
      |improvement| < convergence_threshold -> min(base * stagnation_multiplier, max_rate)
      improvement > high_improvement        -> max(base * exploit_multiplier, min_rate)
      otherwise                              -> base
    """

    base_rate: float = 0.15
    convergence_threshold: float = 0.0005
    window: int = 10
    convergence_window: int = 30
    stagnation_multiplier: float = 2.5
    max_rate: float = 0.4
    high_improvement: float = 0.05
    exploit_multiplier: float = 0.6
    min_rate: float = 0.06
    history_limit: int = 200
    _history: Deque[float] = field(default_factory=deque, init=False, repr=False)
    current_rate: float = field(default=0.0, init=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.base_rate <= 1.0:
            raise ValueError(f"base_rate must be in [0, 1], got {self.base_rate}")
        self._history = deque(maxlen=max(self.history_limit, self.convergence_window, self.window))
        self.current_rate = float(self.base_rate)

    @property
    def history(self) -> List[float]:
        return list(self._history)

    def record(self, avg_fitness: float) -> float:
        self._history.append(float(avg_fitness))
        self.current_rate = self.rate()
        return self.current_rate

    def improvement(self) -> float | None:
        if len(self._history) < self.window:
            return None
        recent = list(self._history)[-self.window:]
        oldest, newest = recent[0], recent[-1]
        return (newest - oldest) / (abs(oldest) or 1.0)

    def rate(self) -> float:
        imp = self.improvement()
        if imp is None:
            return float(self.base_rate)
        if abs(imp) < self.convergence_threshold:
            return min(self.base_rate * self.stagnation_multiplier, self.max_rate)
        if imp > self.high_improvement:
            return max(self.base_rate * self.exploit_multiplier, self.min_rate)
        return float(self.base_rate)

    def is_converged(self) -> bool:
        if len(self._history) < self.convergence_window:
            return False
        recent = np.asarray(list(self._history)[-self.convergence_window:], dtype=float)
        return bool(np.var(recent) < self.convergence_threshold)


__all__ = ["AdaptiveMutationController"]
