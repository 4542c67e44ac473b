"""
Generational controller for the image evolution run.

Each generation runs: evaluate (in parallel) -> sort -> measure -> check
termination -> report -> adapt -> reproduce.  Stagnation of the best score
drives the adaptive parameters: the mutation rate and the population size
grow with the stall count, and the tournament size shrinks as the best score
approaches zero, then grows again under a prolonged stall.
"""

from __future__ import annotations

import enum
import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from ga_errors import ConfigurationError
from ga_genes import GeneKind
from ga_individual import Individual, Population, evaluate_genome
from ga_operators import crossover, mutation, selection, shuffle
from ga_target import Target

logger = logging.getLogger(__name__)

STALL_EPSILON = 1e-7


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class EvolutionConfig:
    """Parameters of one evolution run."""

    mutation_rate: float = 0.08
    crossover_rate: float = 0.60
    population_size: int = 200

    gene_count: int = 700
    gene_kind: GeneKind = GeneKind.POLYGON
    vertex_count: int = 3
    initial_alpha: Optional[int] = 0
    score_alpha: bool = False
    color_sigma: float = 16.0
    geometry_sigma: float = 0.1

    elite_count: int = 5
    shuffle_elites: bool = True

    max_generations: int = 100000
    max_stall: int = 1000
    target_fitness: float = 0.01

    min_tournament: int = 2
    max_tournament: int = 5
    tournament_stall_step: int = 10
    mutation_stall_step: float = 0.015
    max_mutation_rate: float = 0.25
    population_stall_step: int = 2

    workers: Optional[int] = None
    executor: str = "thread"
    seed: Optional[int] = None

    def validate(self) -> None:
        """Check every parameter, raising ConfigurationError on the first bad one."""
        if not 0.0 < self.mutation_rate < 1.0:
            raise ConfigurationError("Invalid mutation rate - must be between 0 and 1")
        if not 0.0 < self.crossover_rate < 1.0:
            raise ConfigurationError("Invalid crossover rate - must be between 0 and 1")
        if self.population_size < 10:
            raise ConfigurationError("Invalid population size - must be at least 10")
        if self.gene_count < 1:
            raise ConfigurationError("Invalid gene count - must be at least 1")
        if not isinstance(self.gene_kind, GeneKind):
            raise ConfigurationError(f"Unknown gene kind {self.gene_kind!r}")
        if self.vertex_count < 3:
            raise ConfigurationError("Invalid vertex count - polygons need at least 3")
        if self.initial_alpha is not None and not 0 <= self.initial_alpha <= 255:
            raise ConfigurationError("Invalid initial alpha - must be between 0 and 255")
        if self.color_sigma <= 0 or self.geometry_sigma <= 0:
            raise ConfigurationError("Mutation standard deviations must be positive")
        if not 0 <= self.elite_count < self.population_size:
            raise ConfigurationError("Elite count must be below the population size")
        if self.max_generations < 1:
            raise ConfigurationError("Invalid generation limit - must be at least 1")
        if self.max_stall < 0:
            raise ConfigurationError("Invalid stall limit - must not be negative")
        if not 1 <= self.min_tournament <= self.max_tournament:
            raise ConfigurationError("Tournament bounds must satisfy 1 <= min <= max")
        if self.tournament_stall_step < 1:
            raise ConfigurationError("Tournament stall step must be at least 1")
        if not self.mutation_rate <= self.max_mutation_rate < 1.0:
            raise ConfigurationError("Mutation ceiling must lie in [mutation rate, 1)")
        if self.mutation_stall_step < 0 or self.population_stall_step < 0:
            raise ConfigurationError("Adaptation steps must not be negative")
        if self.workers is not None and self.workers < 1:
            raise ConfigurationError("Worker count must be at least 1")
        if self.executor not in ("thread", "process"):
            raise ConfigurationError(f"Unknown executor {self.executor!r}")

    def worker_count(self) -> int:
        """Configured worker count, else the CPU count with a floor of 2."""
        if self.workers is not None:
            return self.workers
        return max(2, os.cpu_count() or 1)


# ---------------------------------------------------------------------------
# Parallel evaluation
# ---------------------------------------------------------------------------

def evaluate_population(
    population: Population, workers: int, executor: str = "thread"
) -> None:
    """Fill the fitness cache of every individual, waiting for all of them.

    With the thread executor every individual is one task on a shared queue
    and writes only its own cache.  The process executor ships the stale
    genomes out and installs the returned results.  Any worker exception is
    re-raised once all tasks are done.
    """
    if executor == "process":
        stale = [ind for ind in population if ind.needs_render]
        if not stale:
            return
        with ProcessPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(evaluate_genome, ind.genes, ind.target, ind.score_alpha)
                for ind in stale
            ]
            wait(futures)
        for ind, future in zip(stale, futures):
            score, raster = future.result()
            ind.store_evaluation(score, raster)
        return

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(ind.fitness) for ind in population]
        wait(futures)
    for future in futures:
        future.result()


# ---------------------------------------------------------------------------
# Adaptation and reporting
# ---------------------------------------------------------------------------

class TerminationReason(enum.Enum):
    """Why a run stopped."""

    STALLED = "stalled"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass
class GenerationStats:
    """Summary of one evaluated generation."""

    generation: int
    best: float
    worst: float
    mean: float
    population_size: int
    stall_count: int
    tournament_size: int
    mutation_rate: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class AdaptiveState:
    """Stall tracking and the parameters derived from it."""

    config: EvolutionConfig
    stall_count: int = 0
    last_best: Optional[float] = None
    first_best: Optional[float] = None
    tournament_size: int = 0
    mutation_rate: float = 0.0
    population_size: int = 0

    def __post_init__(self) -> None:
        self.tournament_size = self.config.min_tournament
        self.mutation_rate = self.config.mutation_rate
        self.population_size = self.config.population_size

    def record(self, best: float) -> bool:
        """Register this generation's best score; returns True on a stall."""
        if self.first_best is None:
            self.first_best = best
        stalled = self.last_best is not None and abs(best - self.last_best) < STALL_EPSILON
        self.stall_count = self.stall_count + 1 if stalled else 0
        self.last_best = best
        return stalled

    def adapt(self, best: float) -> None:
        """Recompute tournament size, mutation rate and population size."""
        cfg = self.config

        progress = 1.0
        if self.first_best:
            progress = min(1.0, best / self.first_best)
        span = cfg.max_tournament - cfg.min_tournament
        size = cfg.min_tournament + int(round(span * progress))
        size += self.stall_count // cfg.tournament_stall_step
        self.tournament_size = min(size, cfg.max_tournament)

        self.mutation_rate = min(
            cfg.mutation_rate + cfg.mutation_stall_step * self.stall_count,
            cfg.max_mutation_rate,
        )
        self.population_size = cfg.population_size + cfg.population_stall_step * self.stall_count


@dataclass
class RunResult:
    reason: TerminationReason
    best: Individual
    last: GenerationStats
    history: list[GenerationStats]


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class GenerationalController:
    """Drives the generation loop for one target and one configuration.

    Args:
        target: Image to approximate.
        config: Run parameters; validated on construction.
        rng:    Optional generator; by default one is seeded from ``config.seed``.
    """

    def __init__(
        self,
        target: Target,
        config: EvolutionConfig,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        config.validate()
        self.target = target
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.workers = config.worker_count()
        self.state = AdaptiveState(config)
        self.generation = 0
        self.history: list[GenerationStats] = []
        self.termination: Optional[TerminationReason] = None
        self.best: Optional[Individual] = None

        # Make sure the background colour is known before any worker renders
        target.mode_color()

        logger.info(
            "Mutation:%f, Crossover:%f, Population:%d, Genes:%d (%s), Target:%s",
            config.mutation_rate, config.crossover_rate, config.population_size,
            config.gene_count, config.gene_kind.value, target.name or "<array>",
        )
        logger.info("Creating init pop of %d", config.population_size)
        self.population = Population(
            self._random_individual() for _ in range(config.population_size)
        )
        logger.info("Working with %d %s workers", self.workers, config.executor)

    def _random_individual(self) -> Individual:
        cfg = self.config
        return Individual.random(
            self.target,
            cfg.gene_count,
            cfg.gene_kind,
            self.rng,
            vertex_count=cfg.vertex_count,
            alpha=cfg.initial_alpha,
            score_alpha=cfg.score_alpha,
        )

    # ------------------------------------------------------------------

    def check_termination(self, best: float) -> Optional[TerminationReason]:
        """Decide whether the run stops after this generation.

        Args:
            best: Best fitness of the current generation.

        Returns:
            The reason to stop, or None to keep evolving.
        """
        cfg = self.config
        if self.state.stall_count > cfg.max_stall:
            return TerminationReason.STALLED
        if best < cfg.target_fitness:
            return TerminationReason.CONVERGED
        if self.generation + 1 >= cfg.max_generations:
            return TerminationReason.EXHAUSTED
        return None

    def step(
        self, on_generation: Optional[Callable[[GenerationStats, Individual], None]] = None
    ) -> GenerationStats:
        """Run one generation.

        Evaluates and sorts the current population, records its statistics,
        hands them and the best individual to *on_generation*, then, unless a
        termination condition holds, breeds the next population.
        """
        evaluate_population(self.population, self.workers, self.config.executor)

        self.population.sort()
        best = self.population.best.fitness()
        worst = self.population.worst.fitness()
        mean = self.population.mean_fitness()

        self.state.record(best)
        self.termination = self.check_termination(best)
        self.best = self.population.best
        self.state.adapt(best)

        stats = GenerationStats(
            generation=self.generation,
            best=best,
            worst=worst,
            mean=mean,
            population_size=len(self.population),
            stall_count=self.state.stall_count,
            tournament_size=self.state.tournament_size,
            mutation_rate=self.state.mutation_rate,
        )
        self.history.append(stats)
        logger.info(
            "Gen:%5d PS:%5d SC:%d,TS:%d,MR:%.5f best %.2f <=> avg %.2f <=> worst %.2f",
            stats.generation, stats.population_size, stats.stall_count,
            stats.tournament_size, stats.mutation_rate, best, mean, worst,
        )

        if on_generation is not None:
            on_generation(stats, self.best)
        if self.termination is None:
            self.population = self.reproduce(self.population)
            self.generation += 1
        return stats

    def reproduce(self, old: Population) -> Population:
        """Build the next population from *old*, which must be sorted."""
        cfg = self.config
        rng = self.rng
        target_size = self.state.population_size
        new = Population()

        for elite in old.individuals[: cfg.elite_count]:
            new.append(elite)
            if cfg.shuffle_elites:
                new.append(shuffle(elite, rng))

        while len(new) < target_size:
            parent1 = selection(old, self.state.tournament_size, rng)
            parent2 = selection(old, self.state.tournament_size, rng)
            child1, child2 = crossover(parent1, parent2, cfg.crossover_rate, rng)
            for child in (child1, child2):
                new.append(
                    mutation(
                        child,
                        self.state.mutation_rate,
                        rng,
                        color_sigma=cfg.color_sigma,
                        geometry_sigma=cfg.geometry_sigma,
                    )
                )

        # Inject randomness while stalled
        for _ in range(self.state.stall_count // 2):
            new.append(self._random_individual())

        logger.debug("Bred generation %d with %d individuals", self.generation + 1, len(new))
        return new

    def run(
        self, on_generation: Optional[Callable[[GenerationStats, Individual], None]] = None
    ) -> RunResult:
        """Run generations until a termination condition holds.

        Args:
            on_generation: Called after every generation with its statistics
                           and the best individual.

        Returns:
            The termination reason, the final best individual and the history.
        """
        while True:
            stats = self.step(on_generation)
            if self.termination is not None:
                logger.info(
                    "Finished after %d generations: %s (best %.5f)",
                    stats.generation + 1, self.termination.value, stats.best,
                )
                return RunResult(
                    reason=self.termination,
                    best=self.best,
                    last=stats,
                    history=self.history,
                )
