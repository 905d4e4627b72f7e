"""Tests for configuration parsing."""
import logging

import pytest

from evodevo.config import Config, Crossover, Mutation, Niche


def test_defaults():
    config = Config()
    assert config.evaluator.pop_size > 0
    assert config.nnrobot.hidden_layer_sizes == [25, 25]
    assert not config.simulator.track_stresses


def test_from_mapping():
    config = Config.from_mapping({
        "POP_SIZE": "32",
        "BASE_TIME": "0.5",
        "EVAL_TIME": "10",
        "DEVO_TIME": "1.5",
        "DEVO_CYCLES": "4",
        "TRACK_STRESSES": "1",
        "NICHE": "alps",
        "MUTATION": "random",
        "CROSSOVER": "dc",
        "SPRINGS_PER_MASS": "12",
        "HIDDEN_LAYER_SIZES": "10, 20,30",
    })
    assert config.evaluator.pop_size == 32
    assert config.evaluator.total_time == pytest.approx(0.5 + 1.5 * 4 + 10.0)
    assert config.simulator.track_stresses
    assert config.optimizer.niche is Niche.ALPS
    assert config.optimizer.mutation is Mutation.RANDOM
    assert config.optimizer.crossover is Crossover.DC
    assert config.nnrobot.springs_per_mass == 12
    assert config.nnrobot.hidden_layer_sizes == [10, 20, 30]


@pytest.mark.parametrize("raw, expected", [("0", False), ("1", True), ("2", True), ("", False), ("yes", False)])
def test_stress_flag(raw, expected):
    assert Config.from_mapping({"TRACK_STRESSES": raw}).simulator.track_stresses is expected


def test_unknown_keys_are_ignored(caplog):
    with caplog.at_level(logging.DEBUG, logger="evodevo"):
        config = Config.from_mapping({"OUT_DIR": "/tmp/run", "ROBOT_TYPE": "VoxelRobot", "POP_SIZE": "8"})
    assert config.evaluator.pop_size == 8
    assert "OUT_DIR" in caplog.text
    assert "ROBOT_TYPE" in caplog.text


@pytest.mark.parametrize(
    "values",
    [{"POP_SIZE": "many"}, {"NICHE": "islands"}, {"POP_SIZE": "0"}, {"EVAL_TIME": "-1"}],
)
def test_invalid_values(values):
    with pytest.raises(ValueError):
        Config.from_mapping(values)
