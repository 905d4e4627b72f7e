"""
Pareto Ranker
=============
Turns per-candidate fitness into Pareto layers and a total selection order.

Why is this file needed?
------------------------
1. Layering: `pareto_layers` runs the iterative dominance count (full rescan
   per round until no layer moves) without touching the population.
2. Ordering: `pareto_sort` writes the layers back and stable-sorts the
   population so the preferred candidates come first.

Dominance is whatever the candidate type's `dominates` says; nothing here
knows how many objectives there are.
"""
from __future__ import annotations

import copy
import logging
from functools import cmp_to_key
from typing import MutableSequence, Sequence, TypeVar

from evodevo.evolvables.soft_body import Rankable

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Rankable)


def pareto_layers(population: Sequence[Rankable]) -> list[int]:
    """
    Compute the Pareto layer of every candidate.

    Layers start at 0. In round `run`, every candidate whose layer is at
    least `run` is compared with the other such candidates in population
    order; the first one that dominates it bumps its layer by one. Layer
    changes are visible to the rest of the same round. Rounds repeat until
    one makes no change.

    Args:
        population: Candidates to rank; they are not modified.

    Returns:
        The layer of each candidate, in population order.
    """
    # work on shallow copies so the comparison sees the running layers
    work = [copy.copy(candidate) for candidate in population]
    for candidate in work:
        candidate.pareto_layer = 0

    run = 0
    while True:
        delta = 0
        for i, candidate in enumerate(work):
            if candidate.pareto_layer < run:
                continue
            for j, other in enumerate(work):
                if j == i or other.pareto_layer < run:
                    continue
                if other.dominates(candidate):
                    candidate.pareto_layer += 1
                    delta += 1
                    break
        logger.debug(f"Pareto round {run}: {delta} layer increments.")
        if delta == 0:
            break
        run += 1

    return [candidate.pareto_layer for candidate in work]


def _preference(a: Rankable, b: Rankable) -> int:
    if a.dominates(b):
        return -1
    if b.dominates(a):
        return 1
    return 0


def pareto_sort(population: MutableSequence[R]) -> None:
    """
    Assign Pareto layers and sort the population in place, best first.

    The sort is stable: candidates neither of which dominates the other keep
    their relative order.

    Args:
        population: Candidates to rank; `pareto_layer` and the order change.
    """
    layers = pareto_layers(population)
    for candidate, layer in zip(population, layers):
        candidate.pareto_layer = layer

    population[:] = sorted(population, key=cmp_to_key(_preference))

    if population:
        front = sum(1 for candidate in population if candidate.pareto_layer == 0)
        logger.info(
            f"Ranked {len(population)} candidates into {max(layers) + 1} layers; "
            f"{front} on the front, best fitness {population[0].fitness:.4f}."
        )
