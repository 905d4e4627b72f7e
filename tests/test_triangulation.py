"""Tests for the topology builder."""
import numpy as np
import pytest

from conftest import grid_points
from evodevo.sim.analysis.mass import Mass
from evodevo.sim.pre.triangulation import (
    Edge,
    Triangulator,
    alpha_shape,
    batch,
    knn,
    knn_cpu,
)


def pairs(edges):
    return [(e.v1, e.v2) for e in edges]


def assert_well_formed(edges, points):
    keys = pairs(edges)
    assert all(a < b for a, b in keys)
    assert len(set(keys)) == len(keys)
    for e in edges:
        assert e.dist == pytest.approx(float(np.linalg.norm(points[e.v1] - points[e.v2])))


class TestKnn:
    @pytest.mark.parametrize("k", [1, 3, 8, 25, 100])
    def test_matches_reference(self, cloud, k):
        fast = knn(cloud, k)
        reference = knn_cpu(cloud, k)
        assert pairs(fast) == pairs(reference)
        assert [e.dist for e in fast] == pytest.approx([e.dist for e in reference])

    def test_matches_reference_with_ties(self, lattice_points):
        # every lattice point has several equidistant neighbors
        for k in (1, 4, 6, 12):
            assert pairs(knn(lattice_points, k)) == pairs(knn_cpu(lattice_points, k))

    def test_ties_go_to_lower_index(self):
        points = np.array([[0.0, 0, 0], [1.0, 0, 0], [-1.0, 0, 0], [2.0, 0, 0]])
        assert pairs(knn(points, 1)) == [(0, 1), (0, 2), (1, 3)]
        assert pairs(knn_cpu(points, 1)) == [(0, 1), (0, 2), (1, 3)]

    def test_well_formed(self, cloud):
        assert_well_formed(knn(cloud, 6), cloud)

    def test_every_mass_has_k_neighbors(self, cloud):
        edges = knn(cloud, 5)
        degree = np.zeros(len(cloud), dtype=int)
        for a, b in pairs(edges):
            degree[a] += 1
            degree[b] += 1
        assert degree.min() >= 5

    def test_accepts_masses(self, lattice_points):
        masses = [Mass(i, p) for i, p in enumerate(lattice_points)]
        assert knn(masses, 4) == knn(lattice_points, 4)

    def test_degenerate_inputs(self):
        assert knn(np.empty((0, 3)), 3) == []
        assert knn(np.zeros((1, 3)), 3) == []
        assert knn_cpu(np.zeros((1, 3)), 3) == []

    def test_invalid_inputs(self, cloud):
        with pytest.raises(ValueError):
            knn(cloud, -1)
        with pytest.raises(ValueError):
            knn(cloud[:, :2], 3)


class TestBatch:
    def test_fixed_size_groups_match_per_group_knn(self, rng):
        groups = [rng.uniform(0.0, 2.0, size=(12, 3)) for _ in range(4)]
        edges = batch(np.vstack(groups), 4, group_size=12)

        expected = []
        for g, points in enumerate(groups):
            expected.extend(Edge(e.v1 + 12 * g, e.v2 + 12 * g, e.dist) for e in knn(points, 4))
        assert pairs(edges) == pairs(expected)
        assert [e.dist for e in edges] == pytest.approx([e.dist for e in expected])

    def test_no_cross_group_edges(self, rng):
        sizes = [5, 12, 7, 1]
        offsets = np.concatenate(([0], np.cumsum(sizes)))
        points = rng.uniform(0.0, 1.0, size=(offsets[-1], 3))
        edges = batch(points, 6, offsets=offsets)

        group_of = np.repeat(np.arange(len(sizes)), sizes)
        assert all(group_of[e.v1] == group_of[e.v2] for e in edges)

    def test_offset_groups_match_per_group_knn(self, rng):
        sizes = [5, 12, 7]
        groups = [rng.uniform(0.0, 1.0, size=(n, 3)) for n in sizes]
        local = Triangulator(k=3).batch_groups(groups)
        for points, edges in zip(groups, local):
            assert pairs(edges) == pairs(knn(points, 3))

    def test_group_contract(self, cloud):
        with pytest.raises(ValueError):
            batch(cloud, 3)
        with pytest.raises(ValueError):
            batch(cloud, 3, group_size=7)
        with pytest.raises(ValueError):
            batch(cloud, 3, group_size=10, offsets=[0, 60])
        with pytest.raises(ValueError):
            batch(cloud, 3, offsets=[0, 10, 50])


class TestAlphaShape:
    def test_no_self_loops_or_duplicates(self, cloud):
        edges = alpha_shape(cloud)
        assert edges
        assert all(e.v1 != e.v2 for e in edges)
        assert_well_formed(edges, cloud)

    def test_lattice_edges_are_kept(self):
        points = grid_points(3)
        found = set(pairs(alpha_shape(points, alpha=1.01)))
        for a in range(len(points)):
            for b in range(a + 1, len(points)):
                if np.isclose(np.linalg.norm(points[a] - points[b]), 1.0):
                    assert (a, b) in found

    def test_no_edge_longer_than_twice_alpha(self, cloud):
        alpha = 0.6
        assert all(e.dist <= 2.0 * alpha + 1e-9 for e in alpha_shape(cloud, alpha))

    def test_deterministic(self, cloud):
        assert alpha_shape(cloud, 0.8) == alpha_shape(cloud, 0.8)

    def test_flat_cloud_falls_back_to_distance_cutoff(self):
        points = np.array([[0.0, 0, 0], [1.0, 0, 0], [3.0, 0, 0]])
        assert pairs(alpha_shape(points, alpha=1.25)) == [(0, 1), (1, 2)]
        assert pairs(alpha_shape(points, alpha=1.5)) == [(0, 1), (0, 2), (1, 2)]

    def test_edge_and_tetrahedron_use_the_same_radius(self):
        # regular tetrahedron with unit edges: circumradius sqrt(6)/4, edge ball radius 0.5
        points = np.array([
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.5, np.sqrt(3.0) / 2.0, 0.0],
            [0.5, np.sqrt(3.0) / 6.0, np.sqrt(2.0 / 3.0)],
        ])
        assert len(alpha_shape(points, alpha=0.55)) == 6
        assert alpha_shape(points, alpha=0.45) == []

    def test_negative_alpha(self, cloud):
        with pytest.raises(ValueError):
            alpha_shape(cloud, -1.0)
