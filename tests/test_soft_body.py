"""Tests for the soft body interface and the network-encoded robot."""
import numpy as np
import pytest

from conftest import grid_points
from evodevo.evolvables.nn_robot import NNRobot, build_population, lattice, softmax
from evodevo.evolvables.soft_body import MIN_FITNESS, SoftBody
from evodevo.sim.analysis.mass import Mass
from evodevo.sim.pre.material import AIR, BONE, TISSUE, Material
from evodevo.sim.pre.triangulation import Edge, Triangulator, knn


class TestSoftBody:
    def test_fresh_body(self):
        body = SoftBody()
        assert body.fitness == MIN_FITNESS
        assert body.pareto_layer == 0
        assert not body.has_valid_topology()

    def test_springs_from_edges(self, body):
        assert body.num_springs > 0
        assert body.has_valid_topology()
        for s in body.springs:
            a, b = body.masses[s.m0], body.masses[s.m1]
            assert s.rest_length == pytest.approx(np.linalg.norm(a.coords - b.coords))
            assert s.mean_length == s.rest_length
            assert s.material == Material.avg([a.material, b.material])

    def test_air_springs_are_skipped(self):
        points = grid_points(2)
        masses = [Mass(i, p, AIR if i == 0 else TISSUE) for i, p in enumerate(points)]
        body = SoftBody(masses)
        body.set_springs_from_edges(knn(points, 3), material_of=lambda a, b: AIR if AIR in (a.material, b.material) else BONE)
        assert all(0 not in (s.m0, s.m1) for s in body.springs)
        assert all(s.material == BONE for s in body.springs)

    def test_develop(self, body):
        n = body.num_springs
        stresses = np.zeros(n)
        stresses[[2, 5]] = [10.0, 20.0]
        mean_lengths = np.full(n, 0.75)

        assert body.develop(stresses, mean_lengths, 2)
        changed = [i for i, s in enumerate(body.springs) if s.rest_length == 0.75]
        assert changed == [2, 5]

    def test_develop_without_input(self, body):
        assert not body.develop(np.zeros(body.num_springs), np.zeros(body.num_springs), 0)
        assert not body.develop(np.zeros(3), np.zeros(3), 2)

    def test_develop_keeps_rest_length_without_observed_length(self, body):
        before = [s.rest_length for s in body.springs]
        assert not body.develop(np.zeros(body.num_springs), np.zeros(body.num_springs), 3)
        assert [s.rest_length for s in body.springs] == before

        mean_lengths = np.full(body.num_springs, np.nan)
        mean_lengths[1] = 0.5
        assert body.develop(np.ones(body.num_springs), mean_lengths, 3)
        assert [i for i, s in enumerate(body.springs) if s.rest_length != before[i]] == [1]

    def test_disconnected_topology(self):
        points = np.array([[0.0, 0, 0], [1.0, 0, 0], [10.0, 0, 0], [11.0, 0, 0]])
        body = SoftBody([Mass(i, p, TISSUE) for i, p in enumerate(points)])
        body.set_springs_from_edges([Edge(0, 1, 1.0), Edge(2, 3, 1.0)])
        assert not body.has_valid_topology()


class TestNNRobot:
    def make(self, seed=0, **kwargs):
        options = dict(num_masses=64, springs_per_mass=6, hidden_layer_sizes=(8, 8))
        options.update(kwargs)
        return NNRobot(rng=np.random.default_rng(seed), **options)

    def test_lattice(self):
        points = lattice(1728)
        assert points.shape == (1728, 3)
        assert points.max() == pytest.approx(11.0)

    def test_softmax_columns_sum_to_one(self, rng):
        probs = softmax(rng.normal(size=(5, 7)))
        assert np.allclose(probs.sum(axis=0), 1.0)

    def test_weights_shapes(self):
        robot = self.make()
        assert [w.shape for w in robot.weights] == [(8, 3), (8, 8), (8, 8)]

    def test_decoded_body(self):
        # some random networks decode to (almost) pure air
        robot = next(r for r in (self.make(seed=s) for s in range(50)) if r.num_masses >= 8)
        assert robot.num_masses <= 64
        assert robot.volume == robot.num_masses
        assert all(m.material != AIR for m in robot.masses)
        assert min(m.z for m in robot.masses) == pytest.approx(0.0)
        assert np.allclose(robot.base_com, robot.center_of_mass())
        assert robot.length > 0.0
        for s in robot.springs:
            assert s.m0 != s.m1
        assert len({s.key for s in robot.springs}) == robot.num_springs

    def test_same_weights_same_body(self):
        robot = self.make(seed=3)
        copy = NNRobot(robot.weights, num_masses=64, springs_per_mass=6, hidden_layer_sizes=(8, 8))
        assert np.array_equal(robot.positions(), copy.positions())
        assert [s.key for s in robot.springs] == [s.key for s in copy.springs]
        assert NNRobot.distance(robot, copy) == 0.0

    def test_distance_is_symmetric(self):
        a, b = self.make(seed=1), self.make(seed=2)
        assert NNRobot.distance(a, b) == NNRobot.distance(b, a)
        assert NNRobot.distance(a, b) >= 0.0

    def test_wrong_weights(self):
        with pytest.raises(ValueError):
            NNRobot([np.zeros((3, 3))], num_masses=8)

    def test_decode_only(self):
        built = self.make(seed=4)
        decoded = self.make(seed=4, build_topology=False)
        assert decoded.num_springs == 0
        assert np.array_equal(decoded.positions(), built.positions())

    def test_build_population_matches_single_builds(self):
        seeds = range(6)
        robots = [self.make(seed=s, build_topology=False) for s in seeds]
        robots.append(self.make(seed=7, springs_per_mass=4, build_topology=False))
        build_population(robots)

        singles = [self.make(seed=s) for s in seeds] + [self.make(seed=7, springs_per_mass=4)]
        for robot, single in zip(robots, singles):
            assert [(s.key, s.rest_length) for s in robot.springs] == [(s.key, s.rest_length) for s in single.springs]
            expected = [(e.v1, e.v2) for e in knn(robot.positions(), robot.springs_per_mass)]
            assert [s.key for s in robot.springs] == expected

    def test_build_population_with_shared_triangulator(self):
        robots = [self.make(seed=s) for s in range(4)]
        build_population(robots, Triangulator(k=3))
        for robot in robots:
            assert [s.key for s in robot.springs] == [(e.v1, e.v2) for e in knn(robot.positions(), 3)]

    def test_build_population_empty(self):
        build_population([])
