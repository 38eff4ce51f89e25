# signal_evolver/optimization/islands.py
"""
Island-model evolutionary search over the signal parameter space.

Generation loop:
    Init -> Evaluate -> Reproduce -> Migrate (every migration_interval) -> DiversityCheck
         -> Continue | Converged | MaxGenerations | TimeBudget

- Evaluate: unevaluated genomes run through the backtest + fitness in batches of
  ``batch_size``. With ``workers > 1`` a ProcessPoolExecutor evaluates a batch
  concurrently; each worker receives the read-only dataset once via the pool initializer.
  Results are applied in submission order on the control thread, which is the only writer
  of island populations and of the run-wide global best.
- Global best: replaced only by a strictly fitter genome whose Judge verdict is not
  "suspicious"; its fitness therefore never decreases.
- Reproduce: per island, stable sort by fitness; ceil(elite_count / island_count) elites
  carried forward unchanged; the rest from crossover (optionally mutated) or mutation-only
  offspring at 1.5x the adaptive rate.
- Migrate: island i sends copies (fitness reset) of its top ``migration_count`` genomes to
  island (i + 1) % n; the receiver drops its worst residents back to capacity.
- DiversityCheck: distinct genotypes / population below ``diversity_threshold`` replaces each
  island's worst members with fresh random genomes.

Evaluation errors give the genome ERROR_FITNESS and an "error" event; they never abort the
generation. The only fatal input condition is a universe smaller than ``min_symbols``.
"""

from __future__ import annotations

import logging
import math
import multiprocessing as mp
import random
import time
from concurrent.futures import Future, ProcessPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, get_args, get_type_hints

import numpy as np

from signal_evolver.backtest.engine import BacktestResult, SimulationConfig, run_backtest
from signal_evolver.data.bars import MarketDataset
from signal_evolver.optimization.adaptive import AdaptiveMutationController
from signal_evolver.optimization.fitness import ERROR_FITNESS, FitnessConfig, compute_fitness
from signal_evolver.optimization.genome import Genome, RiskMetrics, new_genome_id, rank_genomes
from signal_evolver.optimization.judge import Judge, JudgeReport
from signal_evolver.optimization.learning import LearningEngine, LearningInsight
from signal_evolver.optimization.operators import crossover, mutant_of, mutate, random_genome, select_parent
from signal_evolver.optimization.param_space import ParameterSpace, get_param_space
from signal_evolver.utils.artifacts import now_iso, write_json
from signal_evolver.utils.config import env_overrides, read_config_json
from signal_evolver.utils.progress import ProgressCallback, noop_progress
from signal_evolver.utils.training_logger import TrainingLogger

logger = logging.getLogger("optimization.islands")

DEFAULT_CONFIG_PATH = "storage/config/optimizer.json"
MUTATION_ONLY_MULTIPLIER = 1.5


# --- Run configuration ------------------------------------------------------


@dataclass
class RunConfig:
    """Every knob of one optimizer run."""

    population_size: int = 200
    island_count: int = 5
    elite_count: int = 20
    crossover_rate: float = 0.7
    mutation_rate: float = 0.15
    selection_method: str = "tournament"
    tournament_size: int = 5
    migration_interval: int = 20
    migration_count: int = 3
    diversity_threshold: float = 0.05
    diversity_min_generation: int = 20
    diversity_injection_count: int = 5
    convergence_threshold: float = 0.0005
    convergence_min_generation: int = 100
    max_generations: Optional[int] = None
    max_evaluations: int = 15000
    time_budget_sec: Optional[float] = None
    batch_size: int = 50
    workers: int = 1
    seed: Optional[int] = None
    param_space: str = "production"
    fitness_variant: str = "production"
    min_trades: int = 20
    drawdown_cap: float = 0.35
    min_symbols: int = 10
    starting_capital: float = 100_000.0
    warmup_bars: int = 60
    signal_window: int = 100
    start: Optional[str] = None
    end: Optional[str] = None
    reference_symbol: Optional[str] = None
    guided_mutation_fraction: float = 0.3
    learning_interval: int = 1
    checkpoint_interval: int = 0
    checkpoint_dir: Optional[str] = None
    log_file: str = "storage/logs/optimizer_events.jsonl"

    def __post_init__(self) -> None:
        if self.island_count < 1:
            raise ValueError("island_count must be >= 1")
        if self.island_capacity < 2:
            raise ValueError(
                f"population_size {self.population_size} gives fewer than 2 genomes per island "
                f"across {self.island_count} islands"
            )
        for name in ("crossover_rate", "mutation_rate", "guided_mutation_fraction", "diversity_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.selection_method not in ("tournament", "rank", "roulette"):
            raise ValueError(f"Unknown selection_method {self.selection_method!r}")
        if self.migration_count < 0 or self.migration_count >= self.island_capacity:
            raise ValueError("migration_count must be in [0, island capacity)")
        if self.elite_count < 0:
            raise ValueError("elite_count must be >= 0")
        if self.batch_size < 1 or self.workers < 1 or self.tournament_size < 1:
            raise ValueError("batch_size, workers and tournament_size must be >= 1")
        if self.migration_interval < 1:
            raise ValueError("migration_interval must be >= 1")
        if self.max_generations is not None and self.max_generations < 1:
            raise ValueError("max_generations must be >= 1 when set")

    @property
    def island_capacity(self) -> int:
        return int(self.population_size) // max(1, int(self.island_count))

    @property
    def elites_per_island(self) -> int:
        return min(self.island_capacity, math.ceil(self.elite_count / self.island_count))

    def resolved_max_generations(self) -> int:
        if self.max_generations is not None:
            return int(self.max_generations)
        return max(1, math.ceil(self.max_evaluations / max(1, self.population_size)))

    def simulation_config(self) -> SimulationConfig:
        return SimulationConfig(
            starting_capital=self.starting_capital,
            warmup_bars=self.warmup_bars,
            signal_window=self.signal_window,
            start=self.start,
            end=self.end,
            reference_symbol=self.reference_symbol,
        )

    def fitness_config(self) -> FitnessConfig:
        return FitnessConfig.for_variant(
            self.fitness_variant, min_trades=self.min_trades, drawdown_cap=self.drawdown_cap
        )

    def to_log_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data["island_capacity"] = self.island_capacity
        data["elites_per_island"] = self.elites_per_island
        data["resolved_max_generations"] = self.resolved_max_generations()
        return data


def _field_kind(hint: Any) -> type:
    """Scalar type behind a RunConfig hint; ``Optional[X]`` maps to X, anything else to str."""
    args = [a for a in get_args(hint) if a is not type(None)]
    kind = args[0] if args else hint
    return kind if kind in (bool, int, float) else str


RUN_CONFIG_SCHEMA: Dict[str, type] = {name: _field_kind(hint) for name, hint in get_type_hints(RunConfig).items()}

ENV_OVERRIDES: Dict[str, str] = {
    "OPTIMIZER_SEED": "seed",
    "OPTIMIZER_WORKERS": "workers",
    "OPTIMIZER_POPULATION": "population_size",
    "OPTIMIZER_ISLANDS": "island_count",
    "OPTIMIZER_MAX_GENERATIONS": "max_generations",
    "OPTIMIZER_TIME_BUDGET_SEC": "time_budget_sec",
}


def _coerce_run_config(config: Optional[Any]) -> RunConfig:
    if config is None:
        return RunConfig()
    if isinstance(config, RunConfig):
        return config
    if isinstance(config, dict):
        allowed = {k: config[k] for k in RunConfig.__dataclass_fields__ if k in config}
        return RunConfig(**allowed)
    raise TypeError(f"Unsupported config type: {type(config)!r}")


def load_run_config(path: Optional[str | Path] = None, **overrides: Any) -> RunConfig:
    """JSON file (default storage/config/optimizer.json), then environment, then ``overrides``."""
    values = read_config_json(path or DEFAULT_CONFIG_PATH, RUN_CONFIG_SCHEMA)
    values.update(env_overrides(ENV_OVERRIDES, RUN_CONFIG_SCHEMA))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return _coerce_run_config(values)


# --- Genome evaluation (worker-safe) ------------------------------------------


@dataclass
class EvaluationOutcome:
    genome_id: str
    fitness: float
    result: Optional[BacktestResult] = None
    error: Optional[BaseException] = None
    elapsed_sec: float = 0.0


def evaluate_genes(
    genes: Mapping[str, float],
    dataset: MarketDataset,
    sim_config: SimulationConfig,
    fitness_config: FitnessConfig,
) -> Tuple[float, BacktestResult]:
    result = run_backtest(genes, dataset, sim_config)
    return compute_fitness(result, fitness_config), result


def _evaluate(
    genome_id: str,
    genes: Mapping[str, float],
    dataset: MarketDataset,
    sim_config: SimulationConfig,
    fitness_config: FitnessConfig,
) -> EvaluationOutcome:
    t1 = time.time()
    try:
        fitness, result = evaluate_genes(genes, dataset, sim_config, fitness_config)
    except Exception as exc:
        return EvaluationOutcome(genome_id, ERROR_FITNESS, None, exc, time.time() - t1)
    return EvaluationOutcome(genome_id, fitness, result, None, time.time() - t1)


_WORKER_STATE: Dict[str, Any] = {}


def _init_worker(dataset: MarketDataset, sim_config: SimulationConfig, fitness_config: FitnessConfig) -> None:
    _WORKER_STATE["dataset"] = dataset
    _WORKER_STATE["sim_config"] = sim_config
    _WORKER_STATE["fitness_config"] = fitness_config


def _eval_one(genome_id: str, genes: Dict[str, float]) -> EvaluationOutcome:
    """Pool entry point; the dataset was installed by _init_worker."""
    return _evaluate(
        genome_id,
        genes,
        _WORKER_STATE["dataset"],
        _WORKER_STATE["sim_config"],
        _WORKER_STATE["fitness_config"],
    )


# --- Migration helper ------------------------------------------------------


def receive_migrants(
    island: Sequence[Genome], migrants: Sequence[Genome], capacity: int
) -> Tuple[List[Genome], List[Genome]]:
    """Append ``migrants`` then drop the worst residents until ``capacity`` is restored.

    Returns (new_island, dropped). Migrants are never dropped.
    """
    merged = list(island) + list(migrants)
    overflow = len(merged) - capacity
    if overflow <= 0:
        return merged, []
    ranked = rank_genomes(island)
    dropped = ranked[len(ranked) - overflow:]
    dropped_ids = {id(g) for g in dropped}
    kept = [g for g in island if id(g) not in dropped_ids]
    return kept + list(migrants), dropped


# --- Result ------------------------------------------------------------------


@dataclass
class OptimizationResult:
    ranked: List[Genome]
    best: Optional[Genome]
    best_result: Optional[BacktestResult]
    best_report: Optional[JudgeReport]
    insights: List[LearningInsight]
    best_by_regime: Dict[str, Genome] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    generations_run: int = 0
    evaluations: int = 0
    stop_reason: str = "max_generations"
    elapsed_sec: float = 0.0

    def top(self, n: int = 10) -> List[Genome]:
        return self.ranked[:n]

    def to_payload(self, top_n: int = 20) -> Dict[str, Any]:
        return {
            "generated_at": now_iso(),
            "stop_reason": self.stop_reason,
            "generations_run": self.generations_run,
            "evaluations": self.evaluations,
            "elapsed_sec": self.elapsed_sec,
            "best": self.best.to_dict() if self.best else None,
            "best_result": self.best_result.to_dict() if self.best_result else None,
            "best_report": self.best_report.to_dict() if self.best_report else None,
            "top": [g.to_dict() for g in self.top(top_n)],
            "best_by_regime": {regime: g.to_dict() for regime, g in sorted(self.best_by_regime.items())},
            "insights": [i.to_dict() for i in self.insights],
            "history": list(self.history),
        }


# --- Island optimizer ------------------------------------------------------------


class IslandOptimizer:
    def __init__(
        self,
        dataset: MarketDataset,
        config: Optional[Any] = None,
        *,
        space: Optional[ParameterSpace] = None,
        judge: Optional[Judge] = None,
        learning: Optional[LearningEngine] = None,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = _coerce_run_config(config)
        cfg = self.config
        self.dataset = dataset
        self.space = space or get_param_space(cfg.param_space)
        self.sim_config = cfg.simulation_config()
        self.fitness_config = cfg.fitness_config()
        self.rng = random.Random(cfg.seed)
        self.judge = judge or Judge()
        self.learning = learning or LearningEngine(self.space)
        self.mutation = AdaptiveMutationController(
            base_rate=cfg.mutation_rate, convergence_threshold=cfg.convergence_threshold
        )
        self.progress_cb: ProgressCallback = progress_cb or noop_progress
        self.events = TrainingLogger(cfg.log_file)

        self.islands: List[List[Genome]] = []
        self.generation = 0
        self.evaluations = 0
        self.best: Optional[Genome] = None
        self.best_result: Optional[BacktestResult] = None
        self.best_report: Optional[JudgeReport] = None
        self.history: List[Dict[str, Any]] = []

    # ---------- helpers ----------

    def population(self) -> List[Genome]:
        return [g for island in self.islands for g in island]

    def population_diversity(self) -> float:
        pop = self.population()
        if not pop:
            return 0.0
        return len({g.signature() for g in pop}) / len(pop)

    def _check_capacity(self) -> None:
        capacity = self.config.island_capacity
        for idx, island in enumerate(self.islands):
            if len(island) != capacity:
                raise RuntimeError(f"Island {idx} holds {len(island)} genomes, expected {capacity}")

    # ---------- Init ----------

    def initialize(self) -> None:
        cfg = self.config
        eligible = self.dataset.require_universe(cfg.min_symbols, cfg.warmup_bars)
        self.islands = [
            [random_genome(self.space, self.rng, generation=0, island_id=i) for _ in range(cfg.island_capacity)]
            for i in range(cfg.island_count)
        ]
        self.generation = 0
        self.events.log(
            "session_meta",
            {
                "symbols": len(self.dataset),
                "eligible_symbols": len(eligible),
                "dataset": self.dataset.describe(),
                "param_space": self.space.name,
                "parameters": len(self.space),
            },
        )
        self.events.log(
            "run_config", {**self.config.to_log_payload(), "fitness": self.fitness_config.to_log_payload()}
        )
        logger.info(
            "Initialized %d islands x %d genomes over %d symbols",
            cfg.island_count, cfg.island_capacity, len(eligible),
        )

    # ---------- Evaluate ----------

    def evaluate_pending(self, executor: Optional[ProcessPoolExecutor] = None) -> int:
        """Evaluate every unevaluated genome; returns how many were evaluated."""
        pending = [g for g in self.population() if not g.evaluated]
        size = self.config.batch_size
        for start in range(0, len(pending), size):
            batch = pending[start:start + size]
            outcomes = self._evaluate_batch(batch, executor)
            self._apply_batch(batch, outcomes)
        return len(pending)

    def _evaluate_batch(
        self, batch: Sequence[Genome], executor: Optional[ProcessPoolExecutor]
    ) -> List[EvaluationOutcome]:
        if executor is None:
            return [
                _evaluate(g.id, g.genes, self.dataset, self.sim_config, self.fitness_config)
                for g in batch
            ]
        futures: List[Future] = [executor.submit(_eval_one, g.id, dict(g.genes)) for g in batch]
        outcomes: List[EvaluationOutcome] = []
        for genome, fut in zip(batch, futures):
            try:
                outcomes.append(fut.result())
            except Exception as exc:
                outcomes.append(EvaluationOutcome(genome.id, ERROR_FITNESS, None, exc))
        return outcomes

    def _apply_batch(self, batch: Sequence[Genome], outcomes: Sequence[EvaluationOutcome]) -> None:
        for genome, outcome in zip(batch, outcomes):
            if outcome.error is not None or outcome.result is None:
                err = outcome.error or RuntimeError("evaluation returned no result")
                self.events.log_error(
                    {"gen": self.generation, "genome_id": genome.id, "island": genome.island_id, "genes": genome.genes},
                    err,
                )
                genome.mark_evaluated(ERROR_FITNESS, None)
            else:
                genome.mark_evaluated(outcome.fitness, RiskMetrics.from_result(outcome.result))
                genome.regime = outcome.result.regime
            self.evaluations += 1
            self.events.log(
                "genome_evaluated",
                {
                    "gen": self.generation,
                    "island": genome.island_id,
                    "genome_id": genome.id,
                    "fitness": genome.fitness,
                    "regime": genome.regime,
                    "metrics": genome.risk_metrics.to_dict() if genome.risk_metrics else {},
                    "elapsed_sec": outcome.elapsed_sec,
                },
            )
            if outcome.result is not None and outcome.error is None:
                self._consider_global_best(genome, outcome.result)

    def _consider_global_best(self, genome: Genome, result: BacktestResult) -> None:
        if self.best is not None and genome.fitness <= self.best.fitness:
            return
        report = self.judge.evaluate(genome.risk_metrics)
        if report.is_suspicious:
            self.events.log(
                "candidate_rejected",
                {"gen": self.generation, "genome_id": genome.id, "fitness": genome.fitness, "judge": report.to_dict()},
            )
            logger.info("Rejected suspicious candidate %s (fitness %.3f)", genome.id, genome.fitness)
            return
        self.best = genome.carry_forward(genome.generation)
        self.best_result = result
        self.best_report = report
        self.events.log(
            "global_best",
            {
                "gen": self.generation,
                "genome_id": genome.id,
                "fitness": genome.fitness,
                "verdict": report.verdict.value,
                "metrics": genome.risk_metrics.to_dict() if genome.risk_metrics else {},
            },
        )

    # ---------- Reproduce ----------

    def reproduce(self, mutation_rate: float) -> None:
        cfg = self.config
        next_gen = self.generation + 1
        guide = self.learning if cfg.guided_mutation_fraction > 0 else None
        new_islands: List[List[Genome]] = []
        for idx, island in enumerate(self.islands):
            scored = [g for g in island if g.evaluated]
            fresh = [g for g in island if not g.evaluated]
            parents = scored or fresh
            offspring = [g.carry_forward(next_gen) for g in rank_genomes(scored)[: cfg.elites_per_island]]
            # genomes injected for diversity go straight into the next generation
            offspring.extend(g.carry_forward(next_gen) for g in fresh[: cfg.island_capacity - len(offspring)])
            while len(offspring) < cfg.island_capacity:
                if self.rng.random() < cfg.crossover_rate:
                    p1 = select_parent(parents, self.rng, cfg.selection_method, cfg.tournament_size)
                    p2 = select_parent(parents, self.rng, cfg.selection_method, cfg.tournament_size)
                    child = crossover(p1, p2, self.space, self.rng, generation=next_gen, island_id=idx)
                    if self.rng.random() < mutation_rate:
                        mutate(
                            child, self.space, mutation_rate, self.rng,
                            learning=guide, guided_fraction=cfg.guided_mutation_fraction,
                        )
                else:
                    parent = select_parent(parents, self.rng, cfg.selection_method, cfg.tournament_size)
                    child = mutant_of(
                        parent, self.space, min(1.0, mutation_rate * MUTATION_ONLY_MULTIPLIER), self.rng,
                        generation=next_gen, island_id=idx,
                        learning=guide, guided_fraction=cfg.guided_mutation_fraction,
                    )
                offspring.append(child)
            new_islands.append(offspring)
        self.islands = new_islands
        self.generation = next_gen

    # ---------- Migrate ----------

    def migrate(self) -> None:
        cfg = self.config
        n = len(self.islands)
        if n < 2 or cfg.migration_count <= 0:
            return
        outgoing = [rank_genomes(island)[: cfg.migration_count] for island in self.islands]
        for src, migrants in enumerate(outgoing):
            dest = (src + 1) % n
            copies = [g.migrant_copy(new_genome_id(self.rng), dest) for g in migrants]
            peak = len(self.islands[dest]) + len(copies)
            self.islands[dest], dropped = receive_migrants(self.islands[dest], copies, cfg.island_capacity)
            self.events.log(
                "migration",
                {
                    "gen": self.generation,
                    "from": src,
                    "to": dest,
                    "migrants": [g.id for g in migrants],
                    "peak_size": peak,
                    "dropped": [g.id for g in dropped],
                    "size": len(self.islands[dest]),
                },
            )

    # ---------- Diversity ----------

    def inject_diversity(self) -> int:
        """Replace each island's worst evaluated members with random genomes; returns the count.

        Runs on the evaluated generation, before reproduction; the newcomers are carried into
        the next generation by ``reproduce``.
        """
        cfg = self.config
        count = min(cfg.diversity_injection_count, cfg.island_capacity - cfg.elites_per_island)
        if count <= 0:
            return 0
        injected = 0
        for idx, island in enumerate(self.islands):
            scored = rank_genomes([g for g in island if g.evaluated])
            victims = {id(g) for g in scored[max(cfg.elites_per_island, len(scored) - count):]}
            kept = [g for g in island if id(g) not in victims]
            fresh = [
                random_genome(self.space, self.rng, generation=self.generation, island_id=idx)
                for _ in range(len(island) - len(kept))
            ]
            self.islands[idx] = kept + fresh
            injected += len(fresh)
        return injected

    def _maybe_inject_diversity(self, gen: int) -> None:
        cfg = self.config
        if gen < cfg.diversity_min_generation:
            return
        diversity = self.population_diversity()
        if diversity >= cfg.diversity_threshold:
            return
        injected = self.inject_diversity()
        self.events.log("diversity_injection", {"gen": gen, "diversity": diversity, "injected": injected})
        logger.info("Diversity %.3f below threshold; injected %d random genomes", diversity, injected)

    # ---------- Bookkeeping ----------

    def _generation_stats(self, gen: int) -> Dict[str, Any]:
        fits = [float(g.fitness) for g in self.population() if g.evaluated and g.fitness is not None]
        return {
            "gen": gen,
            "evaluations": self.evaluations,
            "best_fitness": max(fits) if fits else None,
            "avg_fitness": float(np.mean(fits)) if fits else 0.0,
            "global_best_fitness": self.best.fitness if self.best else None,
            "errors": sum(1 for f in fits if f == ERROR_FITNESS),
            "diversity": self.population_diversity(),
        }

    def _maybe_checkpoint(self, gen: int) -> None:
        cfg = self.config
        if not cfg.checkpoint_dir or cfg.checkpoint_interval <= 0 or (gen + 1) % cfg.checkpoint_interval:
            return
        path = Path(cfg.checkpoint_dir) / f"checkpoint_gen{gen:04d}.json"
        payload = {
            "gen": gen,
            "evaluations": self.evaluations,
            "best": self.best.to_dict() if self.best else None,
            "islands": [[g.to_dict() for g in island] for island in self.islands],
            "insights": [i.to_dict() for i in self.learning.insights],
            "best_by_regime": {regime: g.id for regime, g in sorted(self.learning.best_by_regime.items())},
        }
        try:
            write_json(path, payload)
        except OSError as exc:
            logger.warning("Checkpoint %s failed: %s", path, exc)
            return
        self.events.log("checkpoint", {"gen": gen, "path": str(path)})

    def _make_executor(self) -> Optional[ProcessPoolExecutor]:
        if self.config.workers <= 1:
            return None
        return ProcessPoolExecutor(
            max_workers=self.config.workers,
            mp_context=mp.get_context("spawn"),
            initializer=_init_worker,
            initargs=(self.dataset, self.sim_config, self.fitness_config),
        )

    def result(self, stop_reason: str, elapsed: float, generations_run: int) -> OptimizationResult:
        seen = set()
        ranked: List[Genome] = []
        for g in rank_genomes(self.population()):
            if not g.evaluated or g.signature() in seen:
                continue
            seen.add(g.signature())
            ranked.append(g)
        return OptimizationResult(
            ranked=ranked,
            best=self.best,
            best_result=self.best_result,
            best_report=self.best_report,
            insights=self.learning.insights,
            best_by_regime=self.learning.best_by_regime,
            history=list(self.history),
            generations_run=generations_run,
            evaluations=self.evaluations,
            stop_reason=stop_reason,
            elapsed_sec=elapsed,
        )

    # ---------- Main loop ----------

    def run(self) -> OptimizationResult:
        cfg = self.config
        t0 = time.time()
        self.initialize()
        max_gens = cfg.resolved_max_generations()
        stop_reason = "max_generations"
        generations_run = 0

        executor = self._make_executor()
        try:
            for gen in range(max_gens):
                self._check_capacity()
                self.progress_cb("generation_start", {"gen": gen, "evaluations": self.evaluations})
                self.events.log("generation_start", {"gen": gen, "pop_size": len(self.population())})

                self.evaluate_pending(executor)
                generations_run = gen + 1

                stats = self._generation_stats(gen)
                stats["mutation_rate"] = self.mutation.record(stats["avg_fitness"])
                if cfg.learning_interval > 0 and gen % cfg.learning_interval == 0:
                    for insight in self.learning.analyze(self.population(), gen):
                        self.events.log("insight", insight.to_dict())
                self.history.append(stats)
                self.events.log("generation_end", stats)
                self.progress_cb("generation_end", stats)
                self._maybe_checkpoint(gen)

                if self.mutation.is_converged() and gen >= cfg.convergence_min_generation:
                    stop_reason = "converged"
                    break
                if cfg.time_budget_sec is not None and time.time() - t0 >= cfg.time_budget_sec:
                    stop_reason = "time_budget"
                    break
                if gen == max_gens - 1:
                    break

                self._maybe_inject_diversity(gen)
                self.reproduce(stats["mutation_rate"])
                if gen > 0 and gen % cfg.migration_interval == 0:
                    self.migrate()
        finally:
            if executor is not None:
                executor.shutdown()

        elapsed = time.time() - t0
        result = self.result(stop_reason, elapsed, generations_run)
        self.events.log(
            "session_end",
            {
                "stop_reason": stop_reason,
                "generations_ran": generations_run,
                "evaluations": self.evaluations,
                "elapsed_sec": elapsed,
                "best_fitness": self.best.fitness if self.best else None,
            },
        )
        self.progress_cb("done", {"elapsed_sec": elapsed, "best_fitness": self.best.fitness if self.best else None})
        logger.info(
            "Optimization stopped (%s) after %d generations, %d evaluations, best=%s",
            stop_reason, generations_run, self.evaluations,
            f"{self.best.fitness:.3f}" if self.best else "none",
        )
        return result


__all__ = [
    "ENV_OVERRIDES",
    "EvaluationOutcome",
    "IslandOptimizer",
    "OptimizationResult",
    "RUN_CONFIG_SCHEMA",
    "RunConfig",
    "evaluate_genes",
    "load_run_config",
    "receive_migrants",
]
