"""
Evaluator
=========
Runs a population through the batched simulator and writes fitness back.

Why is this file needed?
------------------------
1. Orchestration: It drives the three phases (settle, develop, evaluate) for
   the whole population in lockstep through one `Simulator` it owns.
2. Scoring: It turns the simulator output into a finite fitness per
   candidate, falling back to `MIN_FITNESS` when a candidate cannot be
   simulated, so the ranker always sees a total order.
3. Diversity: It exposes the pairwise `distance` and the per-candidate mean
   distance used for reporting and niching.
"""
from __future__ import annotations

import itertools
import logging
import math
import threading
from typing import TYPE_CHECKING, ClassVar, MutableSequence, Optional, Sequence

import numpy as np

from evodevo.config import EvaluatorConfig
from evodevo.evolvables.soft_body import MIN_FITNESS, SoftBody
from evodevo.optimizer.pareto import pareto_sort
from evodevo.sim.solvers.solver import BatchSizeError, Simulator, displacement

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class Evaluator:
    """
    Fitness service for populations of soft bodies.

    Fitness is the planar distance travelled by the center of mass during the
    evaluation window.
    """
    eval_count: ClassVar[int] = 0
    _count_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        config: Optional[EvaluatorConfig] = None,
        simulator: Optional[Simulator] = None,
    ) -> None:
        """
        Args:
            config: Population size and phase lengths.
            simulator: Integrator to drive; a default `Simulator` is created if omitted.
        """
        self.config = config or EvaluatorConfig()
        self.simulator = simulator or Simulator()

    @classmethod
    def _count(cls, n: int) -> None:
        with cls._count_lock:
            cls.eval_count += n

    def initialize(self, pop_size: Optional[int] = None, max_time: Optional[float] = None) -> None:
        """
        Provision the simulator for a population size and run duration.

        Args:
            pop_size: Defaults to the configured `pop_size`.
            max_time: Defaults to the configured total phase time.
        """
        pop_size = self.config.pop_size if pop_size is None else pop_size
        max_time = self.config.total_time if max_time is None else max_time
        self.simulator.initialize(pop_size, max_time)

    def teardown(self) -> None:
        self.simulator.teardown()

    def batch_evaluate(self, population: Sequence[SoftBody]) -> None:
        """
        Simulate every candidate and write `fitness`, `result` and spring mean lengths back.

        Candidates that cannot be simulated get `MIN_FITNESS`; the batch
        itself only fails on misuse.

        Raises:
            RuntimeError: If `initialize` was not called.
            BatchSizeError: If the population or the phase schedule exceeds
                what `initialize` provisioned.
        """
        if not self.simulator.is_initialized:
            raise RuntimeError("Evaluator.batch_evaluate called before initialize().")

        cfg = self.config
        if cfg.total_time > self.simulator.max_time + 0.5 * self.simulator.config.time_step:
            raise BatchSizeError(
                f"Phases need {cfg.total_time:.3f} s but only {self.simulator.max_time:.3f} s were provisioned."
            )

        logger.info(f"Evaluating {len(population)} candidates for {cfg.total_time:.3f} s.")
        sim = self.simulator
        state = sim.load(population)

        # 1) Settle
        sim.simulate(state, cfg.base_time)
        logger.debug(f"Base phase finished at t={state.time:.3f} s.")

        # 2) Develop
        for cycle in range(cfg.devo_cycles):
            state.reset_accumulators()
            sim.simulate(state, cfg.devo_time)
            changed = sim.develop(state, population, cfg.replace_amount)
            logger.debug(f"Devo cycle {cycle + 1}/{cfg.devo_cycles} finished, structure changed: {changed}.")

        # 3) Evaluate
        start = state.centers_of_mass()
        state.reset_accumulators()
        sim.simulate(state, cfg.eval_time)
        end = state.centers_of_mass()

        measured = sim.steps_for(cfg.eval_time) > 0
        failed = 0
        for body, result in zip(population, sim.results(state)):
            body.result = result
            fitness = displacement(start[result.index], end[result.index]) if result.valid else math.nan

            if not math.isfinite(fitness):
                reason = "unstable" if result.unstable else "degenerate topology"
                logger.warning(f"Candidate {result.index} gets minimum fitness ({reason}).")
                body.fitness = MIN_FITNESS
                failed += 1
                continue

            body.fitness = fitness
            if not measured:
                continue
            for spring, length in zip(body.springs, result.mean_lengths):
                spring.mean_length = float(length)

        self._count(len(population))
        logger.info(
            f"Batch finished: {len(population) - failed} simulated, {failed} at minimum fitness, "
            f"{Evaluator.eval_count} evaluations so far."
        )

    @staticmethod
    def distance(pair: tuple[SoftBody, SoftBody]) -> float:
        """Symmetric, non-negative morphological distance of a candidate pair."""
        a, b = pair
        return type(a).distance(a, b)

    @staticmethod
    def find_diversity(population: Sequence[SoftBody]) -> npt.NDArray[np.float64]:
        """
        Mean distance of every candidate to all the others.

        Returns:
            One value per candidate, zeros for populations smaller than two.
        """
        n = len(population)
        diversity = np.zeros(n, dtype=np.float64)
        if n < 2:
            return diversity

        for i, j in itertools.combinations(range(n), 2):
            d = Evaluator.distance((population[i], population[j]))
            diversity[i] += d
            diversity[j] += d
        return diversity / (n - 1)

    @staticmethod
    def pareto_sort(population: MutableSequence[SoftBody]) -> None:
        pareto_sort(population)
