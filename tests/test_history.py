"""Tests for the fitness history."""
import pytest

from conftest import make_body
from evodevo.optimizer.history import History


def test_one_row_per_candidate():
    population = [make_body(pattern=p) for p in range(3)]
    for body, fitness in zip(population, (3.0, 2.0, 1.0)):
        body.fitness = fitness

    history = History()
    history.record(12, population, [0.5, 0.25, 0.125])

    assert len(history) == 3
    assert history.rows() == [(12, 0, 3.0, 0.5), (12, 1, 2.0, 0.25), (12, 2, 1.0, 0.125)]
    assert History.COLUMNS == ("evaluation", "organism", "fitness", "diversity")


def test_best_per_evaluation():
    history = History()
    body = make_body()
    for evaluation, fitness in ((4, 1.0), (8, 5.0)):
        body.fitness = fitness
        history.record(evaluation, [body], [0.0])

    assert [(r.evaluation, r.fitness) for r in history.best()] == [(4, 1.0), (8, 5.0)]


def test_misaligned_diversity():
    with pytest.raises(ValueError):
        History().record(0, [make_body()], [])
