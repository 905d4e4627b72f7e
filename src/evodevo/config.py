"""
Configuration
=============
Typed configuration for the simulator, the evaluator and the (external)
genetic operators.

Why is this file needed?
------------------------
1. Single Source: Every tunable constant of a run lives in one dataclass tree
   that is passed explicitly to the services that need it.
2. Compatibility: `Config.from_mapping` accepts the upper-case option names
   of existing run files (POP_SIZE, BASE_TIME, ...) once they have been read
   into a dictionary. Reading the files themselves is left to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)


class Niche(StrEnum):
    ALPS = "alps"
    HFC = "hfc"
    NONE = "none"


class Mutation(StrEnum):
    MUTATE = "mutate"
    RANDOM = "random"


class Crossover(StrEnum):
    SWAP = "swap"
    DC = "dc"
    BEAM = "beam"
    NONE = "none"


@dataclass
class SimulatorConfig:
    """
    Physical constants and integration settings shared by every candidate of a batch.
    """
    time_step: float = 5e-4  # s
    mass: float = 1.0  # kg per mass point
    gravity: float = 9.81  # m/s², along -Z
    ground_stiffness: float = 1e5  # N/m, penalty contact with the Z=0 plane
    friction: float = 1.0  # Coulomb coefficient against the ground
    damping: float = 1.0  # N·s/m, dashpot along each spring
    drag: float = 0.1  # N·s/m, viscous drag per mass
    max_position: float = 1e3  # m, larger magnitudes flag the candidate unstable
    max_velocity: float = 1e3  # m/s
    sample_period: float = 0.01  # s between recorded center-of-mass samples
    track_stresses: bool = False

    def __post_init__(self) -> None:
        for name in ("time_step", "mass", "max_position", "max_velocity", "sample_period"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"SimulatorConfig.{name} must be positive.")
        for name in ("gravity", "ground_stiffness", "friction", "damping", "drag"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"SimulatorConfig.{name} must be non-negative.")
        if self.sample_period < self.time_step:
            raise ValueError("SimulatorConfig.sample_period must not be shorter than the time step.")


@dataclass
class EvaluatorConfig:
    """
    Population size and the three simulation phases.
    """
    pop_size: int = 16
    base_time: float = 1.0  # s, settling phase
    devo_time: float = 1.0  # s, length of one developmental cycle
    devo_cycles: int = 0
    eval_time: float = 5.0  # s, measured window
    replace_amount: int = 10  # springs remodeled per developmental cycle

    def __post_init__(self) -> None:
        if self.pop_size <= 0:
            raise ValueError("EvaluatorConfig.pop_size must be positive.")
        if min(self.base_time, self.devo_time, self.eval_time) < 0.0:
            raise ValueError("EvaluatorConfig phase times must be non-negative.")
        if self.devo_cycles < 0 or self.replace_amount < 0:
            raise ValueError("EvaluatorConfig.devo_cycles and replace_amount must be non-negative.")

    @property
    def total_time(self) -> float:
        """Elapsed simulated time of one candidate: base + devo * cycles + eval."""
        return self.base_time + self.devo_time * self.devo_cycles + self.eval_time


@dataclass
class OptimizerConfig:
    """
    Settings consumed by the genetic operators and niching strategy.
    """
    repeats: int = 1
    max_evals: int = 10_000
    niche: Niche = Niche.NONE
    niche_count: int = 4
    steps_to_combine: int = 100
    steps_to_exchange: int = 5000
    mutation: Mutation = Mutation.MUTATE
    crossover: Crossover = Crossover.SWAP
    mutation_rate: float = 0.6
    crossover_rate: float = 0.7
    elitism: float = 0.1


@dataclass
class NNRobotConfig:
    """
    Shape of the neural-network morphology encoding.
    """
    num_masses: int = 1728
    springs_per_mass: int = 25
    hidden_layer_sizes: list[int] = field(default_factory=lambda: [25, 25])
    crossover_neuron_count: int = 5
    mutation_weight_count: int = 10


@dataclass
class Config:
    """
    Top-level configuration of an evolution run.
    """
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    evaluator: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    nnrobot: NNRobotConfig = field(default_factory=NNRobotConfig)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> Config:
        """
        Build a configuration from upper-case option names.

        Args:
            values: Already-parsed KEY -> value strings, e.g. {"POP_SIZE": "32"}.

        Returns:
            The configuration with defaults for every missing key.
        """
        config = cls()
        for key, raw in values.items():
            target = _OPTIONS.get(key.strip())
            if target is None:
                logger.debug(f"Ignoring unrecognized option '{key}'.")
                continue

            section, attribute, convert = target
            try:
                value = convert(raw.strip())
            except ValueError as e:
                raise ValueError(f"Invalid value '{raw}' for option '{key}': {e}") from e

            setattr(getattr(config, section), attribute, value)
            logger.info(f"{key}: {value}")

        # re-run validation after assignment
        config.simulator.__post_init__()
        config.evaluator.__post_init__()
        return config


def _to_flag(raw: str) -> bool:
    """'1'-style flags: true only for a leading digit with a non-zero value."""
    return bool(raw) and raw[0].isdigit() and int(raw) != 0


def _to_int_list(raw: str) -> list[int]:
    return [int(cell) for cell in raw.split(",") if cell.strip()]


_OPTIONS: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "POP_SIZE": ("evaluator", "pop_size", int),
    "REPEATS": ("optimizer", "repeats", int),
    "MAX_EVALS": ("optimizer", "max_evals", int),
    "NICHE_COUNT": ("optimizer", "niche_count", int),
    "STEPS_TO_COMBINE": ("optimizer", "steps_to_combine", int),
    "STEPS_TO_EXCHANGE": ("optimizer", "steps_to_exchange", int),
    "MUTATION": ("optimizer", "mutation", Mutation),
    "CROSSOVER": ("optimizer", "crossover", Crossover),
    "NICHE": ("optimizer", "niche", Niche),
    "MUTATION_RATE": ("optimizer", "mutation_rate", float),
    "CROSSOVER_RATE": ("optimizer", "crossover_rate", float),
    "ELITISM": ("optimizer", "elitism", float),
    "BASE_TIME": ("evaluator", "base_time", float),
    "EVAL_TIME": ("evaluator", "eval_time", float),
    "DEVO_TIME": ("evaluator", "devo_time", float),
    "DEVO_CYCLES": ("evaluator", "devo_cycles", int),
    "REPLACE_AMOUNT": ("evaluator", "replace_amount", int),
    "TRACK_STRESSES": ("simulator", "track_stresses", _to_flag),
    "TIME_STEP": ("simulator", "time_step", float),
    "CROSSOVER_NEURONS": ("nnrobot", "crossover_neuron_count", int),
    "MUTATION_WEIGHTS": ("nnrobot", "mutation_weight_count", int),
    "SPRINGS_PER_MASS": ("nnrobot", "springs_per_mass", int),
    "NUM_MASSES": ("nnrobot", "num_masses", int),
    "HIDDEN_LAYER_SIZES": ("nnrobot", "hidden_layer_sizes", _to_int_list),
}
