"""
Topology Builder
================
Turns a candidate's point cloud (masses) into an edge list (springs).

Why is this file needed?
------------------------
1. Connectivity: It derives the structural graph of a body, either as the
   1-skeleton of an alpha complex or as a K-nearest-neighbor graph.
2. Throughput: `batch` runs the neighbor search for a whole population of
   point clouds in one JIT-compiled pass, one parallel lane per mass, with
   group boundaries supplied by the caller.
3. Validation: `knn_cpu` is a plain NumPy reference that must agree with the
   compiled path edge for edge.

Edges never carry a material; the morphology decoder assigns those.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import combinations
from typing import TYPE_CHECKING, Optional, Sequence, Union

import numba as nb
import numpy as np
import scipy as sp

from evodevo.sim.analysis.mass import Mass, masses_to_array

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

DEFAULT_K = 25  # springs per mass of the network robot decoder
ALPHA_SCALE = 1.0  # default alpha radius as a multiple of the median nearest-neighbor distance

PointCloud = Union[Sequence[Mass], "npt.NDArray[np.float64]"]

# The six vertex pairs of a tetrahedron
_TETRA_EDGES = np.array(list(combinations(range(4), 2)), dtype=np.int64)


@dataclass(frozen=True)
class Edge:
    """
    Candidate spring before material assignment.

    Attributes:
        v1: Lower mass index of the pair.
        v2: Higher mass index of the pair.
        dist: Euclidean distance between the masses at build time.
    """
    v1: int
    v2: int
    dist: float


def as_points(masses: PointCloud) -> npt.NDArray[np.float64]:
    """
    Normalize a point cloud to a contiguous (n, 3) float64 array.

    Args:
        masses: List of `Mass` objects or an (n, 3) array of coordinates.

    Returns:
        Coordinates as an (n, 3) array.
    """
    if isinstance(masses, np.ndarray):
        points = np.ascontiguousarray(masses, dtype=np.float64)
    else:
        points = masses_to_array(list(masses))

    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Point cloud must have shape (n, 3), got {points.shape}.")
    return points


# ---- JIT'd neighbor search ----

@nb.njit(cache=True)
def _closer(d2_a: float, j_a: int, d2_b: float, j_b: int) -> bool:
    """Strict (distance, index) ordering used for tie-breaking."""
    if d2_a < d2_b:
        return True
    if d2_a == d2_b:
        return j_a < j_b
    return False


@nb.njit(cache=True, parallel=True)
def _knn_kernel(
    points: npt.NDArray[np.float64],
    starts: npt.NDArray[np.int64],
    ends: npt.NDArray[np.int64],
    k: int,
) -> npt.NDArray[np.int64]:
    """
    Brute-force K nearest neighbors restricted to each mass's own group.

    Args:
        points: (n, 3) coordinates of all groups, concatenated.
        starts: (n,) first index of the group each mass belongs to.
        ends: (n,) one past the last index of that group.
        k: Number of neighbors per mass.

    Returns:
        neighbors: (n, k) global indices, -1 where the group is too small.
    """
    n = points.shape[0]
    neighbors = np.full((n, k), -1, dtype=np.int64)

    for i in nb.prange(n):
        kk = min(k, ends[i] - starts[i] - 1)
        if kk <= 0:
            continue

        best_d2 = np.empty(kk, dtype=np.float64)
        best_j = np.empty(kk, dtype=np.int64)
        count = 0

        for j in range(starts[i], ends[i]):
            if j == i:
                continue
            dx = points[j, 0] - points[i, 0]
            dy = points[j, 1] - points[i, 1]
            dz = points[j, 2] - points[i, 2]
            d2 = dx * dx + dy * dy + dz * dz

            if count == kk and not _closer(d2, j, best_d2[kk - 1], best_j[kk - 1]):
                continue

            # insertion into the sorted buffer
            pos = count if count < kk else kk - 1
            while pos > 0 and _closer(d2, j, best_d2[pos - 1], best_j[pos - 1]):
                best_d2[pos] = best_d2[pos - 1]
                best_j[pos] = best_j[pos - 1]
                pos -= 1
            best_d2[pos] = d2
            best_j[pos] = j
            if count < kk:
                count += 1

        for m in range(count):
            neighbors[i, m] = best_j[m]

    return neighbors


def _pair_distances(
    points: npt.NDArray[np.float64],
    pairs: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """Euclidean distance of each (a, b) row of `pairs`."""
    diff = points[pairs[:, 1]] - points[pairs[:, 0]]
    return np.sqrt(diff[:, 0] * diff[:, 0] + diff[:, 1] * diff[:, 1] + diff[:, 2] * diff[:, 2])


def _edges_from_pairs(
    points: npt.NDArray[np.float64],
    first: npt.NDArray[np.int64],
    second: npt.NDArray[np.int64],
) -> list[Edge]:
    """
    Collapse directed neighbor pairs into unique unordered edges.

    Self pairs are dropped, each unordered pair is kept once, and the result
    is sorted by (v1, v2).
    """
    first = np.asarray(first, dtype=np.int64)
    second = np.asarray(second, dtype=np.int64)

    mask = (first >= 0) & (second >= 0) & (first != second)
    if not np.any(mask):
        return []

    lo = np.minimum(first[mask], second[mask])
    hi = np.maximum(first[mask], second[mask])
    pairs = np.unique(np.column_stack((lo, hi)), axis=0)
    dists = _pair_distances(points, pairs)

    return [Edge(int(a), int(b), float(d)) for (a, b), d in zip(pairs, dists)]


def _group_bounds(
    n: int,
    group_size: Optional[int],
    offsets: Optional[Sequence[int]],
) -> npt.NDArray[np.int64]:
    """
    Resolve group boundaries to an offsets array [0, ..., n].

    Exactly one of `group_size` (fixed-size groups) or `offsets`
    (offset-indexed groups) must be given.
    """
    if (group_size is None) == (offsets is None):
        raise ValueError("Provide exactly one of 'group_size' or 'offsets'.")

    if group_size is not None:
        if group_size <= 0:
            raise ValueError(f"Group size must be positive, got {group_size}.")
        if n % group_size != 0:
            raise ValueError(
                f"{n} points cannot be split into groups of {group_size}; pad the groups "
                "or triangulate them one by one."
            )
        return np.arange(0, n + 1, group_size, dtype=np.int64)

    bounds = np.asarray(offsets, dtype=np.int64)
    if bounds.ndim != 1 or bounds.size < 1 or bounds[0] != 0 or bounds[-1] != n:
        raise ValueError(f"Offsets must start at 0 and end at {n}.")
    if np.any(np.diff(bounds) < 0):
        raise ValueError("Offsets must be non-decreasing.")
    return bounds


def _check_k(k: int) -> None:
    if k < 0:
        raise ValueError(f"K must be non-negative, got {k}.")


def batch(
    mass_groups: PointCloud,
    k: int,
    group_size: Optional[int] = None,
    offsets: Optional[Sequence[int]] = None,
) -> list[Edge]:
    """
    K nearest neighbors for every mass of every group in one compiled pass.

    No edge ever crosses a group boundary. Indices in the result are global,
    i.e. relative to the start of `mass_groups`, so the edges of group g are
    exactly `knn(group_g, k)` shifted by the group's offset.

    Args:
        mass_groups: Point clouds of all groups, concatenated.
        k: Number of neighbors per mass.
        group_size: Size of every group, for fixed-size groups.
        offsets: Group start offsets followed by the total count, for variable groups.

    Returns:
        Unique undirected edges sorted by (v1, v2).
    """
    _check_k(k)
    points = as_points(mass_groups)
    n = points.shape[0]
    bounds = _group_bounds(n, group_size, offsets)

    if n == 0 or k == 0:
        return []

    group_of = np.repeat(np.arange(bounds.size - 1), np.diff(bounds))
    starts = bounds[group_of]
    ends = bounds[group_of + 1]

    neighbors = _knn_kernel(points, starts, ends, k)
    first = np.repeat(np.arange(n, dtype=np.int64), neighbors.shape[1])
    return _edges_from_pairs(points, first, neighbors.ravel())


def knn(masses: PointCloud, k: int) -> list[Edge]:
    """
    K nearest neighbors of a single point cloud, compiled path.

    Ties between equally distant masses go to the lower mass index.

    Args:
        masses: Point cloud of one candidate.
        k: Number of neighbors per mass.

    Returns:
        Unique undirected edges sorted by (v1, v2).
    """
    points = as_points(masses)
    return batch(points, k, offsets=[0, points.shape[0]])


def knn_cpu(mass_group: PointCloud, k: int) -> list[Edge]:
    """
    Serial NumPy reference for `knn`; both must return identical edges.

    Args:
        mass_group: Point cloud of one candidate.
        k: Number of neighbors per mass.

    Returns:
        Unique undirected edges sorted by (v1, v2).
    """
    _check_k(k)
    points = as_points(mass_group)
    n = points.shape[0]
    if n < 2 or k == 0:
        return []

    index = np.arange(n, dtype=np.int64)
    first: list[npt.NDArray[np.int64]] = []
    second: list[npt.NDArray[np.int64]] = []

    for i in range(n):
        diff = points - points[i]
        d2 = diff[:, 0] * diff[:, 0] + diff[:, 1] * diff[:, 1] + diff[:, 2] * diff[:, 2]
        order = np.lexsort((index, d2))  # distance first, index breaks ties
        order = order[order != i][:k]
        first.append(np.full(order.size, i, dtype=np.int64))
        second.append(order)

    return _edges_from_pairs(points, np.concatenate(first), np.concatenate(second))


def default_alpha(points: npt.NDArray[np.float64]) -> float:
    """
    Alpha radius scaled from the median nearest-neighbor distance.

    Returns 0.0 when there are fewer than two distinct points.
    """
    if points.shape[0] < 2:
        return 0.0
    dist, _ = sp.spatial.cKDTree(points).query(points, k=2)
    nearest = dist[:, 1]
    nearest = nearest[nearest > 0.0]
    if nearest.size == 0:
        return 0.0
    return ALPHA_SCALE * float(np.median(nearest))


def _circumradii(tetrahedra: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """
    Circumsphere radius of each tetrahedron.

    Args:
        tetrahedra: (m, 4, 3) vertex coordinates.

    Returns:
        (m,) radii, inf for flat tetrahedra.
    """
    a = tetrahedra[:, 0]
    u = tetrahedra[:, 1] - a
    v = tetrahedra[:, 2] - a
    w = tetrahedra[:, 3] - a

    vxw = np.cross(v, w)
    wxu = np.cross(w, u)
    uxv = np.cross(u, v)
    denom = 2.0 * np.einsum("ij,ij->i", u, vxw)

    numer = (
        np.einsum("ij,ij->i", u, u)[:, None] * vxw
        + np.einsum("ij,ij->i", v, v)[:, None] * wxu
        + np.einsum("ij,ij->i", w, w)[:, None] * uxv
    )

    radii = np.full(tetrahedra.shape[0], np.inf, dtype=np.float64)
    ok = np.abs(denom) > 1e-12
    radii[ok] = np.linalg.norm(numer[ok] / denom[ok, None], axis=1)
    return radii


def alpha_shape(masses: PointCloud, alpha: Optional[float] = None) -> list[Edge]:
    """
    Edges of the alpha complex of a point cloud.

    Built from the Delaunay tetrahedralization: an edge is kept when it
    belongs to a tetrahedron whose circumradius is at most `alpha`, or when
    the edge itself fits in a ball of radius `alpha` (half its length is at
    most `alpha`), which keeps thin features joined. Triangles are not
    tested on their own. Point clouds Qhull cannot tetrahedralize (fewer than
    four points, flat clouds) fall back to all pairs with half length at
    most `alpha`.

    Args:
        masses: Point cloud of one candidate.
        alpha: Alpha radius in m. Defaults to `default_alpha`.

    Returns:
        Unique undirected edges sorted by (v1, v2).
    """
    points = as_points(masses)
    n = points.shape[0]
    if n < 2:
        return []

    if alpha is None:
        alpha = default_alpha(points)
    if alpha < 0.0:
        raise ValueError(f"Alpha must be non-negative, got {alpha}.")

    try:
        simplices = sp.spatial.Delaunay(points).simplices
    except (sp.spatial.QhullError, ValueError) as e:
        logger.warning(f"Delaunay failed for {n} points ({e.__class__.__name__}); using distance cutoff.")
        first, second = np.triu_indices(n, k=1)
        pairs = np.column_stack((first, second)).astype(np.int64)
        keep = 0.5 * _pair_distances(points, pairs) <= alpha
        return _edges_from_pairs(points, first[keep], second[keep])

    # 1) Edges of tetrahedra inside the alpha ball
    radii = _circumradii(points[simplices])
    inner = simplices[radii <= alpha]
    inner_pairs = inner[:, _TETRA_EDGES].reshape(-1, 2)

    # 2) Delaunay edges whose own ball radius is within alpha
    all_pairs = simplices[:, _TETRA_EDGES].reshape(-1, 2)
    all_pairs = np.unique(np.sort(all_pairs, axis=1), axis=0)
    short_pairs = all_pairs[0.5 * _pair_distances(points, all_pairs) <= alpha]

    pairs = np.vstack((inner_pairs, short_pairs)).astype(np.int64)
    return _edges_from_pairs(points, pairs[:, 0], pairs[:, 1])


class Triangulator:
    """
    Stateless topology service binding the neighbor count and alpha radius.

    The compiled (`knn`, `batch`) and reference (`knn_cpu`) paths share one
    contract, so either can be swapped in without changing results.
    """
    def __init__(self, k: int = DEFAULT_K, alpha: Optional[float] = None) -> None:
        """
        Args:
            k: Number of neighbors per mass.
            alpha: Alpha radius for `alpha_shape`, None for the data-driven default.
        """
        _check_k(k)
        self.k = k
        self.alpha = alpha

    def alpha_shape(self, masses: PointCloud) -> list[Edge]:
        return alpha_shape(masses, self.alpha)

    def knn(self, masses: PointCloud) -> list[Edge]:
        return knn(masses, self.k)

    def knn_cpu(self, masses: PointCloud) -> list[Edge]:
        return knn_cpu(masses, self.k)

    def batch(
        self,
        mass_groups: PointCloud,
        group_size: Optional[int] = None,
        offsets: Optional[Sequence[int]] = None,
    ) -> list[Edge]:
        return batch(mass_groups, self.k, group_size=group_size, offsets=offsets)

    def batch_groups(self, groups: Sequence[PointCloud]) -> list[list[Edge]]:
        """
        Triangulate a list of point clouds in one pass.

        Args:
            groups: One point cloud per candidate, sizes may differ.

        Returns:
            Per-group edge lists with local (per-group) indices.
        """
        arrays = [as_points(g) for g in groups]
        sizes = np.array([a.shape[0] for a in arrays], dtype=np.int64)
        bounds = np.concatenate(([0], np.cumsum(sizes))).astype(np.int64)
        if not arrays:
            return []

        edges = self.batch(np.vstack(arrays), offsets=bounds)

        out: list[list[Edge]] = [[] for _ in arrays]
        for e in edges:
            g = int(np.searchsorted(bounds, e.v1, side="right")) - 1
            base = int(bounds[g])
            out[g].append(Edge(e.v1 - base, e.v2 - base, e.dist))
        return out
