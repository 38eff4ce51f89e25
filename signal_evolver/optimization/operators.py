# signal_evolver/optimization/operators.py
"""
Genetic operators over Genomes.

All randomness comes from the caller's ``random.Random`` so a seeded run is reproducible.
Every operator leaves genes on their quantized grid and the weight group summing to 1.0.
"""

from __future__ import annotations

import random
from typing import List, Literal, Optional, Sequence

from signal_evolver.optimization.genome import Genome, fitness_of, new_genome_id
from signal_evolver.optimization.learning import LearningEngine
from signal_evolver.optimization.param_space import ParameterSpace, quantize

SelectionMethod = Literal["tournament", "rank", "roulette"]

INHERIT_FIRST = 0.4
INHERIT_SECOND = 0.4  # the remaining 0.2 blends both parents
MUTATION_SCALE = 0.2


def random_genome(space: ParameterSpace, rng: random.Random, *, generation: int = 0, island_id: int = 0) -> Genome:
    return Genome(
        id=new_genome_id(rng),
        genes=space.random_genes(rng),
        generation=generation,
        island_id=island_id,
    )


# ----------------------------- Selection ------------------------------

def tournament_select(population: Sequence[Genome], k: int, rng: random.Random) -> Genome:
    """Best of ``k`` uniformly drawn members; fitness ties go to the earlier population slot."""
    if not population:
        raise ValueError("Parent selection requires a non-empty population")
    k = min(max(1, int(k)), len(population))
    drawn = rng.sample(range(len(population)), k)
    best = drawn[0]
    for idx in drawn[1:]:
        f, best_f = fitness_of(population[idx]), fitness_of(population[best])
        if f > best_f or (f == best_f and idx < best):
            best = idx
    return population[best]


def rank_select(population: Sequence[Genome], rng: random.Random) -> Genome:
    """Linear rank weights over a fitness-sorted copy (best gets weight n)."""
    if not population:
        raise ValueError("Parent selection requires a non-empty population")
    ranked = sorted(population, key=fitness_of, reverse=True)
    weights = list(range(len(ranked), 0, -1))
    pick = rng.uniform(0, sum(weights))
    upto = 0.0
    for genome, weight in zip(ranked, weights):
        upto += weight
        if upto >= pick:
            return genome
    return ranked[0]


def roulette_select(population: Sequence[Genome], rng: random.Random) -> Genome:
    if not population:
        raise ValueError("Parent selection requires a non-empty population")
    scores = [max(0.0, fitness_of(g)) for g in population]
    total = sum(scores)
    if total <= 0.0:
        return population[rng.randrange(len(population))]
    pick = rng.uniform(0, total)
    upto = 0.0
    for genome, weight in zip(population, scores):
        upto += weight
        if upto >= pick:
            return genome
    return population[-1]


def select_parent(
    population: Sequence[Genome],
    rng: random.Random,
    method: SelectionMethod = "tournament",
    tournament_size: int = 5,
) -> Genome:
    if method == "tournament":
        return tournament_select(population, tournament_size, rng)
    if method == "rank":
        return rank_select(population, rng)
    if method == "roulette":
        return roulette_select(population, rng)
    raise ValueError(f"Unknown selection method: {method!r}")


# ----------------------------- Variation ------------------------------

def crossover(
    p1: Genome,
    p2: Genome,
    space: ParameterSpace,
    rng: random.Random,
    *,
    generation: int,
    island_id: int,
) -> Genome:
    """Per gene: 40% from p1, 40% from p2, 20% the quantized midpoint (a coin flip for flags)."""
    genes = {}
    for spec in space:
        a, b = p1.genes[spec.name], p2.genes[spec.name]
        r = rng.random()
        if r < INHERIT_FIRST:
            genes[spec.name] = a
        elif r < INHERIT_FIRST + INHERIT_SECOND:
            genes[spec.name] = b
        elif spec.is_boolean:
            genes[spec.name] = a if rng.random() < 0.5 else b
        else:
            genes[spec.name] = quantize(spec, (a + b) / 2.0)
    space.normalize(genes)
    return Genome(
        id=new_genome_id(rng),
        genes=genes,
        generation=generation,
        island_id=island_id,
        parent_ids=[p1.id, p2.id],
        mutation_log=[f"crossover {p1.id} x {p2.id}"],
    )


def mutate(
    genome: Genome,
    space: ParameterSpace,
    rate: float,
    rng: random.Random,
    *,
    learning: Optional[LearningEngine] = None,
    guided_fraction: float = 0.0,
    scale: float = MUTATION_SCALE,
) -> Genome:
    """
    Mutate an unevaluated genome in place and return it.

    Each gene mutates with probability ``rate``. A mutation event takes the learning engine's
    nudge with probability ``guided_fraction`` when a hint exists; otherwise booleans flip and
    numeric genes get a Gaussian step (sigma = scale * span) before re-quantizing.
    """
    if genome.evaluated:
        raise ValueError(f"Genome {genome.id} is evaluated; mutate a copy instead")
    changes: List[str] = []
    for spec in space:
        if rng.random() >= rate:
            continue
        old = genome.genes[spec.name]
        new: Optional[float] = None
        tag = "random"
        if learning is not None and guided_fraction > 0 and rng.random() < guided_fraction:
            new = learning.guided_value(spec.name, old)
            tag = "guided"
        if new is None:
            tag = "random"
            if spec.is_boolean:
                new = 1.0 - old
            else:
                new = quantize(spec, old + rng.gauss(0.0, (spec.max - spec.min) * scale))
        if new != old:
            genome.genes[spec.name] = new
            changes.append(f"{tag} {spec.name}: {old:g} -> {new:g}")
    space.normalize(genome.genes)
    genome.mutation_log.extend(changes)
    return genome


def mutant_of(
    parent: Genome,
    space: ParameterSpace,
    rate: float,
    rng: random.Random,
    *,
    generation: int,
    island_id: int,
    learning: Optional[LearningEngine] = None,
    guided_fraction: float = 0.0,
) -> Genome:
    """Mutation-only offspring: a fresh unevaluated copy of ``parent``, then mutate()."""
    child = Genome(
        id=new_genome_id(rng),
        genes=dict(parent.genes),
        generation=generation,
        island_id=island_id,
        parent_ids=[parent.id],
        mutation_log=[f"mutant of {parent.id}"],
    )
    return mutate(child, space, rate, rng, learning=learning, guided_fraction=guided_fraction)


__all__ = [
    "SelectionMethod",
    "crossover",
    "mutant_of",
    "mutate",
    "random_genome",
    "rank_select",
    "roulette_select",
    "select_parent",
    "tournament_select",
]
