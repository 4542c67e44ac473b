"""Tests for configuration, parallel evaluation and the generation loop."""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from ga_errors import ConfigurationError
from ga_evolution import (
    AdaptiveState,
    EvolutionConfig,
    GenerationalController,
    TerminationReason,
    evaluate_population,
)
from ga_genes import GeneKind
from ga_individual import Individual, Population


def small_config(**overrides) -> EvolutionConfig:
    values = dict(
        population_size=10,
        gene_count=4,
        gene_kind=GeneKind.RECTANGLE,
        workers=2,
        seed=11,
        max_generations=3,
    )
    values.update(overrides)
    return EvolutionConfig(**values)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def test_default_config_is_valid():
    EvolutionConfig().validate()


@pytest.mark.parametrize(
    "field, value",
    [
        ("mutation_rate", 0.0),
        ("mutation_rate", 1.0),
        ("crossover_rate", 0.0),
        ("crossover_rate", 1.5),
        ("population_size", 9),
        ("gene_count", 0),
        ("vertex_count", 2),
        ("initial_alpha", 300),
        ("color_sigma", 0.0),
        ("elite_count", 200),
        ("max_generations", 0),
        ("min_tournament", 0),
        ("max_mutation_rate", 0.01),
        ("workers", 0),
        ("executor", "cluster"),
    ],
)
def test_invalid_config_rejected(field, value):
    config = dataclasses.replace(EvolutionConfig(), **{field: value})
    with pytest.raises(ConfigurationError):
        config.validate()


def test_controller_validates_before_building_population(red_target):
    with pytest.raises(ConfigurationError):
        GenerationalController(red_target, small_config(population_size=3))


def test_worker_count_has_floor_of_two():
    assert EvolutionConfig().worker_count() >= 2
    assert EvolutionConfig(workers=7).worker_count() == 7


# ---------------------------------------------------------------------------
# Adaptation
# ---------------------------------------------------------------------------

def test_stall_counting():
    state = AdaptiveState(EvolutionConfig())
    assert state.record(10.0) is False
    assert state.record(10.0) is True
    assert state.record(10.0 + 1e-9) is True
    assert state.stall_count == 2
    assert state.record(9.0) is False
    assert state.stall_count == 0


def test_tournament_shrinks_as_best_improves():
    state = AdaptiveState(EvolutionConfig())
    state.record(50.0)
    state.adapt(50.0)
    assert state.tournament_size == 5
    state.record(10.0)
    state.adapt(10.0)
    assert state.tournament_size == 3
    state.record(0.0)
    state.adapt(0.0)
    assert state.tournament_size == 2


def test_stall_raises_mutation_population_and_tournament():
    config = EvolutionConfig()
    state = AdaptiveState(config)
    for _ in range(13):
        state.record(10.0)
    assert state.stall_count == 12
    state.adapt(10.0)
    assert state.mutation_rate == pytest.approx(0.25)
    assert state.population_size == 200 + 2 * 12
    assert state.tournament_size == 5

    state = AdaptiveState(config)
    for _ in range(3):
        state.record(10.0)
    state.adapt(10.0)
    assert state.mutation_rate == pytest.approx(0.08 + 0.015 * 2)


# ---------------------------------------------------------------------------
# Parallel evaluation
# ---------------------------------------------------------------------------

def _random_population(target, count=12, seed=3):
    rng = np.random.default_rng(seed)
    return Population(
        Individual.random(target, 6, GeneKind.POLYGON, rng, alpha=None)
        for _ in range(count)
    )


def test_thread_evaluation_matches_serial(big_target):
    parallel = _random_population(big_target)
    serial = _random_population(big_target)
    evaluate_population(parallel, workers=4)
    assert all(not ind.needs_render for ind in parallel)
    assert [ind.fitness() for ind in parallel] == [ind.fitness() for ind in serial]


def test_process_evaluation_matches_serial(big_target):
    parallel = _random_population(big_target, count=4)
    serial = _random_population(big_target, count=4)
    big_target.mode_color()
    evaluate_population(parallel, workers=2, executor="process")
    assert all(not ind.needs_render for ind in parallel)
    assert [ind.fitness() for ind in parallel] == [ind.fitness() for ind in serial]
    assert np.array_equal(parallel[0].raster(), serial[0].raster())


def test_worker_errors_propagate(big_target):
    population = _random_population(big_target, count=3)

    def broken():
        raise RuntimeError("render failed")

    population[1].fitness = broken
    with pytest.raises(RuntimeError, match="render failed"):
        evaluate_population(population, workers=2)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

def test_run_exhausts_generation_limit(make_target):
    target = make_target(8, 8, (30, 60, 90, 255))
    seen = []
    controller = GenerationalController(
        target, small_config(initial_alpha=None, target_fitness=0.0)
    )
    result = controller.run(on_generation=lambda stats, best: seen.append((stats, best)))

    assert result.reason is TerminationReason.EXHAUSTED
    assert [s.generation for s, _ in seen] == [0, 1, 2]
    assert result.history == [s for s, _ in seen]
    for stats, best in seen:
        assert stats.best - 1e-9 <= stats.mean <= stats.worst + 1e-9
        assert best.fitness() == stats.best
    # Elitism: the best score never gets worse
    bests = [s.best for s in result.history]
    assert bests == sorted(bests, reverse=True)


def test_run_converges_below_threshold(make_target):
    target = make_target(4, 4)
    controller = GenerationalController(target, small_config(target_fitness=101.0))
    result = controller.run()
    assert result.reason is TerminationReason.CONVERGED
    assert result.last.generation == 0


def test_run_stops_when_stalled(make_target):
    # Transparent genes on a uniform target score 0 forever
    target = make_target(4, 4)
    controller = GenerationalController(
        target, small_config(target_fitness=0.0, max_stall=0, max_generations=50)
    )
    result = controller.run()
    assert result.reason is TerminationReason.STALLED
    assert result.last.generation == 1
    assert result.last.stall_count == 1
    assert result.best.fitness() == 0.0


def test_reproduce_keeps_elites_first(make_target):
    target = make_target(8, 8, (30, 60, 90, 255))
    config = small_config(population_size=16, initial_alpha=None)
    controller = GenerationalController(target, config)
    old = controller.population
    controller.step()

    new = controller.population
    assert len(new) >= 16
    for i in range(config.elite_count):
        assert new[2 * i] is old[i]
        shuffled = new[2 * i + 1]
        assert shuffled is not old[i]
        assert sorted(map(repr, shuffled.genes)) == sorted(map(repr, old[i].genes))
    assert all(len(ind) == config.gene_count for ind in new)


def test_reproduce_grows_and_injects_newcomers_while_stalled(make_target):
    target = make_target(8, 8, (30, 60, 90, 255))
    config = small_config(population_size=16, initial_alpha=None)
    controller = GenerationalController(target, config)
    old = controller.population
    evaluate_population(old, workers=2)
    old.sort()

    controller.state.stall_count = 6
    controller.state.adapt(old.best.fitness())
    assert controller.state.population_size == 16 + 2 * 6

    fresh = []
    original = controller._random_individual

    def recording():
        ind = original()
        fresh.append(ind)
        return ind

    controller._random_individual = recording
    new = controller.reproduce(old)

    assert len(fresh) == 3
    bred = new.individuals[:-3]
    assert len(bred) >= 16 + 2 * 6
    assert all(a is b for a, b in zip(new.individuals[-3:], fresh))
    assert not any(ind is newcomer for ind in bred for newcomer in fresh)
    assert not any(ind is newcomer for ind in old for newcomer in fresh)


def test_reproduce_without_stall_injects_nothing(make_target):
    target = make_target(8, 8, (30, 60, 90, 255))
    controller = GenerationalController(target, small_config(population_size=16))
    old = controller.population
    evaluate_population(old, workers=2)
    old.sort()

    calls = []
    controller._random_individual = lambda: calls.append(1)
    new = controller.reproduce(old)
    assert calls == []
    assert len(new) == 16


def test_seeded_runs_are_reproducible(make_target):
    target = make_target(8, 8, (30, 60, 90, 255))
    first = GenerationalController(target, small_config(initial_alpha=None)).run()
    second = GenerationalController(target, small_config(initial_alpha=None)).run()
    assert [s.best for s in first.history] == [s.best for s in second.history]
    assert first.best.genes == second.best.genes
