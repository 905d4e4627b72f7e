from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

import numpy as np
import scipy as sp
from scipy.sparse.csgraph import connected_components

if TYPE_CHECKING:
    import numpy.typing as npt

    from evodevo.evolvables.soft_body import SoftBody

logger = logging.getLogger(__name__)


def topology_is_valid(
    n_masses: int,
    m0: npt.NDArray[np.int64],
    m1: npt.NDArray[np.int64],
) -> bool:
    """
    Check that a spring graph can be simulated.

    Args:
        n_masses: Number of masses of the candidate.
        m0: First mass index of each spring.
        m1: Second mass index of each spring.

    Returns:
        False for an empty graph, self loops, out-of-range indices, duplicate
        unordered pairs or more than one connected component.
    """
    if n_masses == 0 or m0.size == 0 or m0.size != m1.size:
        return False
    if min(m0.min(), m1.min()) < 0 or max(m0.max(), m1.max()) >= n_masses:
        return False
    if np.any(m0 == m1):
        return False

    pairs = np.column_stack((np.minimum(m0, m1), np.maximum(m0, m1)))
    if np.unique(pairs, axis=0).shape[0] != pairs.shape[0]:
        return False

    graph = sp.sparse.coo_matrix(
        (np.ones(m0.size, dtype=np.int8), (m0, m1)),
        shape=(n_masses, n_masses),
    ).tocsr()
    n_components, _ = connected_components(graph, directed=False)
    return n_components == 1


class SimulationState:
    """
    A population packed into flat arrays for the simulation kernels.

    Masses and springs of all candidates are concatenated; candidate `c` owns
    masses `mass_offsets[c]:mass_offsets[c + 1]` and springs
    `spring_offsets[c]:spring_offsets[c + 1]`. Spring mass indices are global.
    """
    def __init__(
        self,
        bodies: Sequence[SoftBody],
        sample_capacity: int,
    ) -> None:
        """
        Args:
            bodies: Candidates to simulate, in population order.
            sample_capacity: Number of center-of-mass samples kept per candidate.
        """
        self.n_candidates = len(bodies)

        # 1) Masses
        counts = np.array([body.num_masses for body in bodies], dtype=np.int64)
        self.mass_offsets: npt.NDArray[np.int64] = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)
        if self.n_candidates and self.mass_offsets[-1] > 0:
            self.pos = np.vstack([body.positions() for body in bodies if body.num_masses > 0])
        else:
            self.pos = np.empty((0, 3), dtype=np.float64)
        self.pos = np.ascontiguousarray(self.pos, dtype=np.float64)
        self.vel = np.zeros_like(self.pos)
        self.forces = np.zeros_like(self.pos)

        # 2) Status flags, narrowed by `pack_springs`
        self.valid = np.ones(self.n_candidates, dtype=np.bool_)
        self.active = np.ones(self.n_candidates, dtype=np.bool_)
        self.unstable = np.zeros(self.n_candidates, dtype=np.bool_)

        # 3) Clock and recorded signals
        self.step = 0
        self.time = 0.0
        self.com_history = np.full((self.n_candidates, sample_capacity, 3), np.nan, dtype=np.float64)
        self.stress_history: list[list[npt.NDArray[np.float64]]] = [[] for _ in range(self.n_candidates)]

        self.pack_springs(bodies)

    def pack_springs(self, bodies: Sequence[SoftBody]) -> None:
        """
        (Re)read spring structure and materials from the bodies.

        Mass state is untouched, so this is safe between simulation phases.
        Candidates with an invalid graph are frozen and contribute no springs.
        """
        m0_parts: list[npt.NDArray[np.int64]] = []
        m1_parts: list[npt.NDArray[np.int64]] = []
        props: list[npt.NDArray[np.float64]] = []
        counts = np.zeros(self.n_candidates, dtype=np.int64)

        for c, body in enumerate(bodies):
            if self.valid[c] and not body.has_valid_topology():
                logger.warning(f"Candidate {c} has a degenerate spring graph and will not be simulated.")
                self.valid[c] = False
                self.active[c] = False
            if not self.valid[c]:
                continue
            base = self.mass_offsets[c]
            m0, m1 = body.spring_arrays()
            m0_parts.append(m0 + base)
            m1_parts.append(m1 + base)
            props.append(np.array(
                [
                    (s.rest_length, s.material.k, s.material.dL0, s.material.omega, s.material.phi)
                    for s in body.springs
                ],
                dtype=np.float64,
            ))
            counts[c] = len(body.springs)

        self.spring_offsets: npt.NDArray[np.int64] = np.concatenate(([0], np.cumsum(counts))).astype(np.int64)

        if props:
            table = np.vstack(props)
            self.m0 = np.concatenate(m0_parts)
            self.m1 = np.concatenate(m1_parts)
        else:
            table = np.empty((0, 5), dtype=np.float64)
            self.m0 = np.empty(0, dtype=np.int64)
            self.m1 = np.empty(0, dtype=np.int64)

        self.rest_length = np.ascontiguousarray(table[:, 0])
        self.k = np.ascontiguousarray(table[:, 1])
        self.dL0 = np.ascontiguousarray(table[:, 2])
        self.omega = np.ascontiguousarray(table[:, 3])
        self.phi = np.ascontiguousarray(table[:, 4])
        self.spring_force = np.zeros(self.m0.size, dtype=np.float64)

        self.reset_accumulators()

    def reset_accumulators(self) -> None:
        """Clear per-spring length/stress sums at the start of a phase."""
        n_springs = self.m0.size
        self.length_sum = np.zeros(n_springs, dtype=np.float64)
        self.stress_sum = np.zeros(n_springs, dtype=np.float64)
        self.accumulated_steps = np.zeros(self.n_candidates, dtype=np.int64)

    def mass_slice(self, c: int) -> slice:
        return slice(int(self.mass_offsets[c]), int(self.mass_offsets[c + 1]))

    def spring_slice(self, c: int) -> slice:
        return slice(int(self.spring_offsets[c]), int(self.spring_offsets[c + 1]))

    def positions(self, c: int) -> npt.NDArray[np.float64]:
        """Current mass positions of candidate `c`."""
        return self.pos[self.mass_slice(c)].copy()

    def centers_of_mass(self) -> npt.NDArray[np.float64]:
        """Current center of mass of every candidate, NaN rows for massless ones."""
        com = np.full((self.n_candidates, 3), np.nan, dtype=np.float64)
        for c in range(self.n_candidates):
            sl = self.mass_slice(c)
            if sl.stop > sl.start:
                com[c] = self.pos[sl].mean(axis=0)
        return com

    def mean_lengths(self, c: int) -> npt.NDArray[np.float64]:
        """Mean spring lengths of candidate `c` since the last reset."""
        steps = max(int(self.accumulated_steps[c]), 1)
        return self.length_sum[self.spring_slice(c)] / steps

    def mean_stresses(self, c: int) -> npt.NDArray[np.float64]:
        """Mean absolute spring forces of candidate `c` since the last reset."""
        steps = max(int(self.accumulated_steps[c]), 1)
        return self.stress_sum[self.spring_slice(c)] / steps

    def recorded_samples(self, sample_every: int) -> int:
        """Number of center-of-mass samples written so far."""
        if self.step == 0:
            return 0
        return min((self.step - 1) // sample_every + 1, self.com_history.shape[1])
