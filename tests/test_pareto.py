"""Tests for Pareto layering and sorting."""
import pytest

from conftest import Ranked, make_body
from evodevo.evolvables.soft_body import Rankable
from evodevo.optimizer.evaluator import Evaluator
from evodevo.optimizer.pareto import pareto_layers, pareto_sort


def fitnesses(population):
    return [c.fitness for c in population]


def test_three_candidates_end_to_end():
    population = [Ranked(10.0), Ranked(5.0), Ranked(8.0)]
    pareto_sort(population)

    assert fitnesses(population) == [10.0, 8.0, 5.0]
    assert [c.pareto_layer for c in population] == [0, 1, 2]


def test_layers_are_computed_without_touching_the_population():
    population = [Ranked(10.0), Ranked(5.0), Ranked(8.0)]
    population[1].pareto_layer = 7

    assert pareto_layers(population) == [0, 2, 1]
    assert [c.pareto_layer for c in population] == [0, 7, 0]
    assert fitnesses(population) == [10.0, 5.0, 8.0]


def test_layers_reset_before_ranking():
    population = [Ranked(1.0), Ranked(2.0)]
    population[0].pareto_layer = 5
    population[1].pareto_layer = 9
    pareto_sort(population)
    assert [c.pareto_layer for c in population] == [0, 1]


def test_equal_fitness_shares_a_layer_and_keeps_order():
    population = [Ranked(3.0, "a"), Ranked(7.0, "b"), Ranked(3.0, "c"), Ranked(7.0, "d")]
    pareto_sort(population)

    assert [c.name for c in population] == ["b", "d", "a", "c"]
    assert [c.pareto_layer for c in population] == [0, 0, 1, 1]


@pytest.mark.parametrize("seed", range(5))
def test_order_invariants(seed):
    import random

    rnd = random.Random(seed)
    population = [Ranked(float(rnd.randint(0, 6))) for _ in range(15)]
    pareto_sort(population)

    for a, b in zip(population, population[1:]):
        assert a.pareto_layer <= b.pareto_layer
        if a.pareto_layer == b.pareto_layer:
            assert a.fitness >= b.fitness
    assert population[0].pareto_layer == 0


@pytest.mark.parametrize("seed", range(5))
def test_idempotent(seed):
    import random

    rnd = random.Random(seed)
    population = [Ranked(rnd.uniform(0.0, 3.0)) for _ in range(12)]
    pareto_sort(population)
    first = [(id(c), c.pareto_layer) for c in population]

    pareto_sort(population)
    assert [(id(c), c.pareto_layer) for c in population] == first


def test_empty_and_single():
    empty = []
    pareto_sort(empty)
    assert empty == []

    single = [Ranked(4.0)]
    pareto_sort(single)
    assert single[0].pareto_layer == 0


def test_soft_bodies_are_rankable():
    bodies = [make_body(), make_body(pattern=1), make_body(pattern=2)]
    for body, fitness in zip(bodies, (1.0, 3.0, 2.0)):
        body.fitness = fitness

    assert all(isinstance(b, Rankable) for b in bodies)
    Evaluator.pareto_sort(bodies)
    assert fitnesses(bodies) == [3.0, 2.0, 1.0]
    assert bodies[0] > bodies[1]
    assert bodies[2] < bodies[1]
