"""
Soft Body Candidate
===================
Base class for every evolvable mass-spring body.

Why is this file needed?
------------------------
1. Interface: The simulator only ever sees `masses` and `springs`; the ranker
   only ever sees `fitness`, `pareto_layer` and `dominates`. Morphology
   encodings subclass `SoftBody` and fill in how the body is decoded.
2. Bookkeeping: It carries the fitness, Pareto layer and last simulation
   result written back by the evaluator.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from evodevo.sim.analysis.mass import Mass, masses_to_array
from evodevo.sim.analysis.model import topology_is_valid
from evodevo.sim.analysis.spring import Spring
from evodevo.sim.pre.material import AIR, MATERIAL_COUNT, Material

if TYPE_CHECKING:
    import numpy.typing as npt

    from evodevo.sim.pre.triangulation import Edge
    from evodevo.sim.solvers.solver import SimulationResult

logger = logging.getLogger(__name__)

MIN_FITNESS = 0.0  # sentinel for candidates that could not be simulated


@runtime_checkable
class Rankable(Protocol):
    """Capability the Pareto ranker depends on."""
    fitness: float
    pareto_layer: int

    def dominates(self, other: Rankable) -> bool: ...


class SoftBody:
    """
    Evolvable body made of point masses joined by actuated springs.
    """
    def __init__(
        self,
        masses: Optional[list[Mass]] = None,
        springs: Optional[list[Spring]] = None,
    ) -> None:
        """
        Args:
            masses: Point masses, indexed by position in the list.
            springs: Springs referencing mass indices.
        """
        self.masses: list[Mass] = masses if masses is not None else []
        self.springs: list[Spring] = springs if springs is not None else []
        self.fitness: float = MIN_FITNESS
        self.pareto_layer: int = 0
        self.result: Optional[SimulationResult] = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(masses={self.num_masses}, springs={self.num_springs}, "
            f"fitness={self.fitness:.4f}, layer={self.pareto_layer})"
        )

    # ---- Structure ----

    @property
    def num_masses(self) -> int:
        return len(self.masses)

    @property
    def num_springs(self) -> int:
        return len(self.springs)

    def positions(self) -> npt.NDArray[np.float64]:
        """Build-time mass coordinates as an (n, 3) array."""
        return masses_to_array(self.masses)

    def center_of_mass(self) -> npt.NDArray[np.float64]:
        """Build-time center of mass (uniform point masses)."""
        if not self.masses:
            return np.zeros(3, dtype=np.float64)
        return self.positions().mean(axis=0)

    def spring_arrays(self) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
        """Mass index pairs of all springs."""
        m0 = np.array([s.m0 for s in self.springs], dtype=np.int64)
        m1 = np.array([s.m1 for s in self.springs], dtype=np.int64)
        return m0, m1

    def has_valid_topology(self) -> bool:
        """True when the spring graph is non-empty, loop-free, duplicate-free and connected."""
        m0, m1 = self.spring_arrays()
        return topology_is_valid(self.num_masses, m0, m1)

    def set_springs_from_edges(
        self,
        edges: Sequence[Edge],
        material_of: Optional[Callable[[Mass, Mass], Material]] = None,
    ) -> None:
        """
        Replace the springs with one spring per edge.

        The edge distance seeds both the rest length and the mean length.
        Edges whose material resolves to air are skipped.

        Args:
            edges: Output of the topology builder, indices into `self.masses`.
            material_of: Material of a spring from its two masses. Defaults to
                `Material.avg` of the mass materials.
        """
        if material_of is None:
            def material_of(a: Mass, b: Mass) -> Material:
                return Material.avg((a.material, b.material))

        springs: list[Spring] = []
        for e in edges:
            material = material_of(self.masses[e.v1], self.masses[e.v2])
            if material == AIR:
                continue
            springs.append(Spring(e.v1, e.v2, e.dist, e.dist, material))
        self.springs = springs

    # ---- Diversity ----

    def material_composition(self) -> npt.NDArray[np.float64]:
        """Fraction of springs per catalog material id."""
        counts = np.zeros(MATERIAL_COUNT, dtype=np.float64)
        for s in self.springs:
            counts[int(s.material.id) % MATERIAL_COUNT] += 1.0
        total = counts.sum()
        return counts / total if total > 0 else counts

    def mass_material_ids(self) -> npt.NDArray[np.int64]:
        return np.array([int(m.material.id) for m in self.masses], dtype=np.int64)

    @staticmethod
    def distance(a: SoftBody, b: SoftBody) -> float:
        """
        Morphological distance between two bodies.

        Euclidean distance between the spring material compositions, plus the
        fraction of masses whose material differs when both bodies have the
        same number of masses. Symmetric, non-negative, and zero for a body
        and itself.
        """
        d = float(np.linalg.norm(a.material_composition() - b.material_composition()))
        if a.num_masses == b.num_masses and a.num_masses > 0:
            d += float(np.mean(a.mass_material_ids() != b.mass_material_ids()))
        return d

    # ---- Development ----

    def develop(
        self,
        stresses: npt.NDArray[np.float64],
        mean_lengths: npt.NDArray[np.float64],
        amount: int,
    ) -> bool:
        """
        Developmental hook called between devo cycles.

        The `amount` most stressed springs remodel: their rest length becomes
        the mean length observed during the cycle.

        Args:
            stresses: Mean absolute spring force per spring over the cycle.
            mean_lengths: Mean spring length over the cycle.
            amount: Number of springs to remodel.

        Springs whose mean length is not a positive finite number keep their
        rest length.

        Returns:
            True if the structure changed and the simulator must re-read it.
        """
        if amount <= 0 or len(stresses) != self.num_springs or self.num_springs == 0:
            return False

        # stable order keeps the choice deterministic among equal stresses
        order = np.argsort(-np.asarray(stresses), kind="stable")[:amount]
        changed = False
        for idx in order:
            length = float(mean_lengths[idx])
            if not (np.isfinite(length) and length > 0.0):
                continue
            self.springs[idx].rest_length = length
            changed = True
        return changed

    # ---- Ranking ----

    def dominates(self, other: Rankable) -> bool:
        """
        Preference predicate used by the Pareto ranker.

        `self` dominates `other` when its layer is lower, or when the layers
        are equal and its fitness is higher.
        """
        if self.pareto_layer < other.pareto_layer:
            return True
        if self.pareto_layer == other.pareto_layer:
            return self.fitness > other.fitness
        return False

    def __gt__(self, other: SoftBody) -> bool:
        return self.dominates(other)

    def __lt__(self, other: SoftBody) -> bool:
        return other.dominates(self)
