# signal_evolver/optimization/learning.py
"""
Population statistics that bias mutation toward historically productive gene values.

Each analysis compares the top and bottom deciles of the evaluated population per parameter:

    diff = (mean_top - mean_bottom) / mean_all

Every parameter's latest ``diff`` is kept as its correlation (a zero mean divides by 1);
``|diff| > insight_threshold`` also records a LearningInsight. Guided mutation nudges a gene by
``sign(corr) * step * nudge_steps`` when the latest correlation for that parameter exceeds
``guidance_threshold`` in magnitude.

The engine also keeps the best top-decile genome seen per market regime (``Genome.regime``).
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import asdict, dataclass
from typing import Deque, Dict, Iterable, List, Optional

from signal_evolver.optimization.genome import Genome, rank_genomes
from signal_evolver.optimization.param_space import ParameterSpace, quantize

logger = logging.getLogger("optimization.learning")


@dataclass(frozen=True)
class LearningInsight:
    parameter_name: str
    directional_correlation: float
    sample_size: int
    fitness_delta: float
    confidence: float
    generation: int = 0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class LearningEngine:
    def __init__(
        self,
        space: ParameterSpace,
        *,
        decile: float = 0.1,
        insight_threshold: float = 0.15,
        guidance_threshold: float = 0.2,
        nudge_steps: float = 2.0,
        min_population: int = 10,
        history_limit: int = 50,
    ) -> None:
        if not 0.0 < decile <= 0.5:
            raise ValueError(f"decile must be in (0, 0.5], got {decile}")
        self.space = space
        self.decile = decile
        self.insight_threshold = insight_threshold
        self.guidance_threshold = guidance_threshold
        self.nudge_steps = nudge_steps
        self.min_population = min_population
        self._insights: Deque[LearningInsight] = deque(maxlen=history_limit)
        self._correlations: Dict[str, float] = {}
        self._best_by_regime: Dict[str, Genome] = {}

    @property
    def insights(self) -> List[LearningInsight]:
        return list(self._insights)

    @property
    def correlations(self) -> Dict[str, float]:
        return dict(self._correlations)

    @property
    def best_by_regime(self) -> Dict[str, Genome]:
        return dict(self._best_by_regime)

    def best_for_regime(self, regime: str) -> Optional[Genome]:
        return self._best_by_regime.get(regime)

    def analyze(self, population: Iterable[Genome], generation: int = 0) -> List[LearningInsight]:
        """Record and return insights from the evaluated members of ``population``."""
        ranked = [g for g in rank_genomes(population) if g.evaluated and g.fitness is not None]
        if len(ranked) < self.min_population:
            return []

        n = max(1, math.ceil(len(ranked) * self.decile))
        top, bottom = ranked[:n], ranked[-n:]
        fitness_delta = float(top[0].fitness) - float(bottom[-1].fitness)

        found: List[LearningInsight] = []
        for spec in self.space:
            all_avg = sum(g.genes[spec.name] for g in ranked) / len(ranked)
            top_avg = sum(g.genes[spec.name] for g in top) / n
            bottom_avg = sum(g.genes[spec.name] for g in bottom) / n
            diff = (top_avg - bottom_avg) / (all_avg or 1.0)
            self._correlations[spec.name] = float(diff)
            if abs(diff) <= self.insight_threshold:
                continue
            insight = LearningInsight(
                parameter_name=spec.name,
                directional_correlation=float(diff),
                sample_size=len(ranked),
                fitness_delta=fitness_delta,
                confidence=min(1.0, abs(diff) * n / 20.0),
                generation=generation,
            )
            self._insights.append(insight)
            found.append(insight)

        for genome in top:
            regime = genome.regime or "unknown"
            current = self._best_by_regime.get(regime)
            if current is None or genome.fitness > current.fitness:
                self._best_by_regime[regime] = genome

        if found:
            logger.debug("generation %d: %d insights", generation, len(found))
        return found

    def guided_value(self, name: str, value: float) -> Optional[float]:
        """Nudged value for ``name`` or None when there is no strong hint."""
        corr = self._correlations.get(name)
        if corr is None or abs(corr) <= self.guidance_threshold or name not in self.space:
            return None
        spec = self.space.spec(name)
        if spec.is_boolean:
            return 1.0 if corr > 0 else 0.0
        direction = 1.0 if corr > 0 else -1.0
        return quantize(spec, value + direction * spec.step * self.nudge_steps)


__all__ = ["LearningEngine", "LearningInsight"]
