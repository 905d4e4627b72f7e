"""
Neural-Network Robot
====================
Morphology encoded as a small fully connected network.

Why is this file needed?
------------------------
1. Decoding: A cube lattice of sample points is pushed through the network;
   the first three outputs shift each point, the last `MATERIAL_COUNT`
   outputs pick its material. Air points are dropped.
2. Topology: The remaining masses are joined with `knn` and each spring takes
   the average material of its two masses. `build_population` does this for
   a whole population in one batched neighbor pass.

Genetic operators (mutation, crossover) work on `weights` and live outside
this package.
"""
from __future__ import annotations

import logging
from itertools import groupby
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from evodevo.evolvables.soft_body import MIN_FITNESS, SoftBody
from evodevo.sim.analysis.mass import Mass
from evodevo.sim.pre.material import MATERIAL_COUNT, MaterialOption, lookup
from evodevo.sim.pre.triangulation import Triangulator, knn

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

INPUT_SIZE = 3
OUTPUT_SIZE = 3 + MATERIAL_COUNT
GRID_SPACING = 1.0  # m between neighboring lattice points


def relu(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    return np.maximum(x, 0.0)


def softmax(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """Column-wise softmax."""
    shifted = np.exp(x - x.max(axis=0, keepdims=True))
    return shifted / shifted.sum(axis=0, keepdims=True)


def lattice(num_masses: int) -> npt.NDArray[np.float64]:
    """
    Cube lattice with round(num_masses ** (1/3)) points per side.

    Returns:
        (side**3, 3) coordinates with unit spacing, starting at the origin.
    """
    side = max(int(round(num_masses ** (1.0 / 3.0))), 1)
    axis = np.arange(side, dtype=np.float64)
    x, y, z = np.meshgrid(axis, axis, axis, indexing="ij")
    return np.column_stack((x.ravel(), y.ravel(), z.ravel())) * GRID_SPACING


class NNRobot(SoftBody):
    """
    Soft body decoded from a bias-free ReLU network.
    """
    def __init__(
        self,
        weights: Optional[Sequence[npt.NDArray[np.float64]]] = None,
        num_masses: int = 1728,
        springs_per_mass: int = 25,
        hidden_layer_sizes: Sequence[int] = (25, 25),
        rng: Optional[np.random.Generator] = None,
        build_topology: bool = True,
    ) -> None:
        """
        Args:
            weights: Layer matrices, (out, in) each. Random if omitted.
            num_masses: Size of the sample lattice before air is dropped.
            springs_per_mass: K of the neighbor graph.
            hidden_layer_sizes: Widths of the ReLU layers.
            rng: Random source used when `weights` is omitted.
            build_topology: False to decode the masses only and leave the
                springs to `build_population`.
        """
        super().__init__()
        self.num_lattice_points = num_masses
        self.springs_per_mass = springs_per_mass
        self.hidden_layer_sizes = list(hidden_layer_sizes)
        self.base_com = np.zeros(3, dtype=np.float64)
        self.length = 0.0

        if weights is None:
            self.randomize(rng, build_topology)
        else:
            self.weights = [np.asarray(w, dtype=np.float64) for w in weights]
            self._check_shapes()
            if build_topology:
                self.build()
            else:
                self.decode()

    @property
    def layer_sizes(self) -> list[int]:
        return [INPUT_SIZE, *self.hidden_layer_sizes, OUTPUT_SIZE]

    @property
    def volume(self) -> int:
        """Number of non-air masses."""
        return self.num_masses

    def _check_shapes(self) -> None:
        sizes = self.layer_sizes
        expected = [(sizes[i + 1], sizes[i]) for i in range(len(sizes) - 1)]
        actual = [w.shape for w in self.weights]
        if actual != expected:
            raise ValueError(f"Weight shapes {actual} do not match the architecture {expected}.")

    def randomize(self, rng: Optional[np.random.Generator] = None, build_topology: bool = True) -> None:
        """Draw fresh standard-normal weights and rebuild the body."""
        rng = rng or np.random.default_rng()
        sizes = self.layer_sizes
        self.weights = [rng.standard_normal((sizes[i + 1], sizes[i])) for i in range(len(sizes) - 1)]
        if build_topology:
            self.build()
        else:
            self.decode()

    def forward(self, inputs: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Evaluate the network on column-stacked inputs.

        Args:
            inputs: (3, n) sample coordinates.

        Returns:
            (3 + MATERIAL_COUNT, n): tanh position rows, softmax material rows.
        """
        x = inputs
        for w in self.weights[:-1]:
            x = relu(w @ x)
        x = self.weights[-1] @ x

        out = np.empty_like(x)
        out[:3] = np.tanh(x[:3])
        out[3:] = softmax(x[3:])
        return out

    def decode(self) -> npt.NDArray[np.float64]:
        """
        Decode the weights into masses, without springs.

        Lattice coordinates are centered and scaled to [-1, 1] as network
        input. Each point moves by up to half a grid spacing along every axis
        and takes the material with the highest probability. The body is
        then shifted so its lowest mass rests on the ground plane.

        Returns:
            (n, 3) coordinates of the non-air masses, in mass order.
        """
        grid = lattice(self.num_lattice_points)
        span = grid.max(axis=0) - grid.min(axis=0)
        span[span == 0.0] = 1.0
        inputs = (2.0 * (grid - grid.min(axis=0)) / span - 1.0).T

        out = self.forward(inputs)
        coords = grid + 0.5 * GRID_SPACING * out[:3].T
        material_ids = np.argmax(out[3:], axis=0)

        keep = material_ids != int(MaterialOption.AIR)
        coords = coords[keep]
        material_ids = material_ids[keep]
        if coords.shape[0] > 0:
            coords[:, 2] -= coords[:, 2].min()

        self.masses = [Mass(i, xyz, lookup(int(mid))) for i, (xyz, mid) in enumerate(zip(coords, material_ids))]
        self.springs = []

        if self.masses:
            self.base_com = self.center_of_mass()
            extent = coords.max(axis=0) - coords.min(axis=0)
            self.length = float(extent[:2].max())
        else:
            self.base_com = np.zeros(3, dtype=np.float64)
            self.length = 0.0
            logger.debug("Decoded an all-air body.")

        self.fitness = MIN_FITNESS
        self.pareto_layer = 0
        self.result = None
        return coords

    def build(self) -> None:
        """Decode the weights and join the masses with `knn`."""
        coords = self.decode()
        self.set_springs_from_edges(knn(coords, self.springs_per_mass))

    @staticmethod
    def distance(a: SoftBody, b: SoftBody) -> float:
        """
        `SoftBody.distance` plus the volume difference relative to the lattice
        size, for two network robots decoded from lattices of the same size.
        """
        d = SoftBody.distance(a, b)
        if (
            isinstance(a, NNRobot) and isinstance(b, NNRobot)
            and a.num_lattice_points == b.num_lattice_points
            and a.num_masses != b.num_masses
        ):
            d += abs(a.volume - b.volume) / max(a.num_lattice_points, 1)
        return d


def build_population(robots: Sequence[NNRobot], triangulator: Optional[Triangulator] = None) -> None:
    """
    Decode a population and triangulate all of it in one batched pass.

    Every robot's point cloud goes into a single `Triangulator.batch_groups`
    call, so the springs match what `NNRobot.build` gives one robot at a time.

    Args:
        robots: Robots to (re)build in place.
        triangulator: Neighbor service for all robots. Defaults to one
            `Triangulator` per distinct `springs_per_mass`.
    """
    clouds = [robot.decode() for robot in robots]
    if triangulator is not None:
        groups = [(triangulator, list(range(len(robots))))]
    else:
        by_k = sorted(range(len(robots)), key=lambda i: robots[i].springs_per_mass)
        groups = [
            (Triangulator(k=k), list(members))
            for k, members in groupby(by_k, key=lambda i: robots[i].springs_per_mass)
        ]

    for service, members in groups:
        edges = service.batch_groups([clouds[i] for i in members])
        for i, robot_edges in zip(members, edges):
            robots[i].set_springs_from_edges(robot_edges)
    logger.debug(f"Built {len(robots)} robots in {len(groups)} batched neighbor pass(es).")
