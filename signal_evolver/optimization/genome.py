# signal_evolver/optimization/genome.py
"""Genome record: one candidate gene assignment plus lineage and fitness metadata."""

from __future__ import annotations

import json
import math
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class RiskMetrics:
    sharpe: float = 0.0
    sortino: float = 0.0
    calmar: float = 0.0
    win_rate: float = 0.0
    total_return: float = 0.0
    max_drawdown: float = 0.0
    trade_count: int = 0
    profit_factor: float = 0.0

    @classmethod
    def from_result(cls, result: Any) -> "RiskMetrics":
        """Build from any object exposing BacktestResult-style attributes."""
        return cls(
            sharpe=float(result.sharpe),
            sortino=float(result.sortino),
            calmar=float(result.calmar),
            win_rate=float(result.win_rate),
            total_return=float(result.total_return),
            max_drawdown=float(result.max_drawdown),
            trade_count=int(result.trade_count),
            profit_factor=float(result.profit_factor),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_genome_id(rng: random.Random) -> str:
    """Ids come from the run's seeded random source so a seeded run is reproducible."""
    return f"g{rng.getrandbits(48):012x}"


@dataclass
class Genome:
    id: str
    genes: Dict[str, float]
    generation: int = 0
    island_id: int = 0
    parent_ids: List[str] = field(default_factory=list)
    mutation_log: List[str] = field(default_factory=list)
    fitness: Optional[float] = None
    risk_metrics: Optional[RiskMetrics] = None
    evaluated: bool = False
    regime: Optional[str] = None

    def signature(self) -> str:
        return json.dumps(self.genes, sort_keys=True)

    def mark_evaluated(self, fitness: float, risk_metrics: Optional[RiskMetrics]) -> None:
        if self.evaluated:
            raise RuntimeError(f"Genome {self.id} is already evaluated for generation {self.generation}")
        self.fitness = float(fitness)
        self.risk_metrics = risk_metrics
        self.evaluated = True

    def carry_forward(self, generation: int) -> "Genome":
        """Elite copy for the next generation: same id, fitness retained."""
        return Genome(
            id=self.id,
            genes=dict(self.genes),
            generation=generation,
            island_id=self.island_id,
            parent_ids=list(self.parent_ids),
            mutation_log=list(self.mutation_log),
            fitness=self.fitness,
            risk_metrics=self.risk_metrics,
            evaluated=self.evaluated,
            regime=self.regime,
        )

    def migrant_copy(self, new_id: str, island_id: int) -> "Genome":
        """Copy sent to another island; fitness reset to force re-evaluation."""
        return Genome(
            id=new_id,
            genes=dict(self.genes),
            generation=self.generation,
            island_id=island_id,
            parent_ids=[self.id],
            mutation_log=[f"migrated from island {self.island_id}"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "genes": dict(self.genes),
            "fitness": self.fitness,
            "risk_metrics": self.risk_metrics.to_dict() if self.risk_metrics else None,
            "generation": self.generation,
            "island_id": self.island_id,
            "parent_ids": list(self.parent_ids),
            "mutation_log": list(self.mutation_log),
            "evaluated": self.evaluated,
            "regime": self.regime,
        }


def fitness_of(genome: Genome) -> float:
    """Ranking key; unevaluated genomes rank last."""
    if not genome.evaluated or genome.fitness is None or math.isnan(genome.fitness):
        return -math.inf
    return float(genome.fitness)


def rank_genomes(genomes: Iterable[Genome]) -> List[Genome]:
    """Sort by fitness descending; ties keep their original order."""
    return sorted(genomes, key=fitness_of, reverse=True)


__all__ = ["Genome", "RiskMetrics", "fitness_of", "new_genome_id", "rank_genomes"]
