"""
Genetic operators: selection, crossover, mutation and shuffle.

Every operator takes an explicit ``numpy.random.Generator`` and returns
individuals whose genes share nothing mutable with their inputs.
"""

from __future__ import annotations

import numpy as np

from ga_errors import InvariantViolation
from ga_individual import Individual, Population


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def selection(
    population: Population, tournament_size: int, rng: np.random.Generator
) -> Individual:
    """Tournament selection over a population sorted best-first.

    *tournament_size* indices are drawn uniformly (with replacement) and the
    smallest one wins, which is the fittest contestant because of the sort.
    A tournament of one is a uniform random pick.

    Args:
        population:      Population sorted ascending by fitness.
        tournament_size: Number of contestants, at least 1.
        rng:             Random generator.

    Returns:
        The winning individual (not a copy).
    """
    if len(population) == 0:
        raise InvariantViolation("selection from an empty population")
    if tournament_size < 1:
        raise InvariantViolation(f"tournament size must be >= 1, got {tournament_size}")

    contestants = rng.integers(0, len(population), size=tournament_size)
    return population[int(contestants.min())]


# ---------------------------------------------------------------------------
# Crossover
# ---------------------------------------------------------------------------

def crossover(
    parent1: Individual,
    parent2: Individual,
    rate: float,
    rng: np.random.Generator,
) -> tuple[Individual, Individual]:
    """Uniform crossover: each gene position swaps children with probability *rate*.

    Args:
        parent1: First parent.
        parent2: Second parent, same genome length as *parent1*.
        rate:    Per-position swap probability.
        rng:     Random generator.

    Returns:
        Two new children (c1, c2) holding copies of the parents' genes.
    """
    if len(parent1) != len(parent2):
        raise InvariantViolation(
            f"crossover needs equal genome lengths, got {len(parent1)} and {len(parent2)}"
        )

    genes1, genes2 = [], []
    swaps = rng.random(len(parent1)) < rate
    for swap, g1, g2 in zip(swaps, parent1.genes, parent2.genes):
        if swap:
            g1, g2 = g2, g1
        genes1.append(g1.copy())
        genes2.append(g2.copy())

    child1 = Individual(parent1.target, genes1, score_alpha=parent1.score_alpha)
    child2 = Individual(parent2.target, genes2, score_alpha=parent2.score_alpha)
    return child1, child2


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------

def mutation(
    individual: Individual,
    rate: float,
    rng: np.random.Generator,
    color_sigma: float = 16.0,
    geometry_sigma: float = 0.1,
) -> Individual:
    """Gaussian mutation of every colour channel and coordinate, in place.

    Each attribute is perturbed independently with probability *rate* using
    :func:`ga_genes.mutate_norm`.  The individual is marked for re-rendering
    only when some gene actually changed.

    Args:
        individual:     Individual to mutate.
        rate:           Per-attribute mutation probability.
        rng:            Random generator.
        color_sigma:    Standard deviation for colour channels.
        geometry_sigma: Standard deviation for coordinates, as a fraction of
                        the canvas size on that axis.

    Returns:
        The same individual.
    """
    target = individual.target
    sigma = (geometry_sigma * target.width, geometry_sigma * target.height)
    for idx, gene in enumerate(individual.genes):
        new_gene = gene.mutated(rng, rate, color_sigma, sigma, target.bounds)
        if new_gene is not gene:
            individual.set_gene(idx, new_gene)
    return individual


# ---------------------------------------------------------------------------
# Shuffle
# ---------------------------------------------------------------------------

def shuffle(individual: Individual, rng: np.random.Generator) -> Individual:
    """Return a new individual with the same genes painted in a random order."""
    order = rng.permutation(len(individual))
    genes = individual.genes
    return Individual(
        individual.target,
        [genes[int(i)].copy() for i in order],
        score_alpha=individual.score_alpha,
    )
