"""
Pytest configuration and fixtures for the evodevo test suite.
"""
from __future__ import annotations

import numpy as np
import pytest

from evodevo.config import EvaluatorConfig, SimulatorConfig
from evodevo.evolvables.soft_body import SoftBody
from evodevo.sim.analysis.mass import Mass
from evodevo.sim.pre.material import AGONIST_MUSCLE, ANTAGONIST_MUSCLE, BONE, TISSUE
from evodevo.sim.pre.triangulation import knn


def grid_points(side: int, spacing: float = 1.0, z0: float = 0.0) -> np.ndarray:
    axis = np.arange(side, dtype=np.float64) * spacing
    x, y, z = np.meshgrid(axis, axis, axis, indexing="ij")
    points = np.column_stack((x.ravel(), y.ravel(), z.ravel()))
    points[:, 2] += z0
    return points


def make_body(side: int = 3, k: int = 6, pattern: int = 0) -> SoftBody:
    """Small lattice body whose mass materials cycle through the active catalog."""
    materials = [AGONIST_MUSCLE, ANTAGONIST_MUSCLE, TISSUE, BONE]
    points = grid_points(side)
    masses = [Mass(i, p, materials[(i + pattern) % len(materials)]) for i, p in enumerate(points)]
    body = SoftBody(masses)
    body.set_springs_from_edges(knn(points, k))
    return body


class Ranked:
    """Minimal candidate exposing only the ranking capability."""
    def __init__(self, fitness: float, name: str = "") -> None:
        self.fitness = fitness
        self.pareto_layer = 0
        self.name = name

    def dominates(self, other: "Ranked") -> bool:
        if self.pareto_layer < other.pareto_layer:
            return True
        if self.pareto_layer == other.pareto_layer:
            return self.fitness > other.fitness
        return False

    def __repr__(self) -> str:
        return f"Ranked({self.fitness}, layer={self.pareto_layer})"


# ============================================================================
# Randomness and geometry
# ============================================================================

@pytest.fixture
def rng():
    """Seeded generator so every test sees the same data."""
    return np.random.default_rng(1234)


@pytest.fixture
def cloud(rng):
    """Random point cloud of 60 masses in a 3 m box."""
    return rng.uniform(0.0, 3.0, size=(60, 3))


@pytest.fixture
def lattice_points():
    return grid_points(3)


# ============================================================================
# Bodies
# ============================================================================

@pytest.fixture
def body():
    return make_body()


@pytest.fixture
def other_body():
    return make_body(pattern=1)


@pytest.fixture
def empty_body():
    """Body whose decoded topology has masses but no springs."""
    return SoftBody([Mass(i, p, TISSUE) for i, p in enumerate(grid_points(2))])


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def simulator_config():
    return SimulatorConfig(time_step=5e-4, sample_period=0.01)


@pytest.fixture
def evaluator_config():
    """Short phases so a batch finishes quickly."""
    return EvaluatorConfig(
        pop_size=4,
        base_time=0.1,
        devo_time=0.05,
        devo_cycles=1,
        eval_time=0.2,
        replace_amount=3,
    )
