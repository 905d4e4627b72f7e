from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from evodevo.config import SimulatorConfig
from evodevo.sim.analysis.model import SimulationState
from evodevo.sim.solvers import kernels

if TYPE_CHECKING:
    import numpy.typing as npt

    from evodevo.evolvables.soft_body import SoftBody

logger = logging.getLogger(__name__)


class BatchSizeError(ValueError):
    """A batch does not fit the resources provisioned by `initialize`."""


@dataclass
class SimulationResult:
    """
    What the simulator exposes about one candidate after a batch.

    Attributes:
        index: Position of the candidate in the batch.
        elapsed_time: Simulated time in s.
        valid: False for degenerate topologies and unstable runs.
        unstable: True if integration blew up and the candidate was frozen.
        com_trajectory: (samples, 3) center of mass, sampled every `sample_period`.
        final_positions: (n_masses, 3) mass positions at the end of the batch.
        mean_lengths: Mean spring lengths over the last phase.
        mean_stresses: Mean absolute elastic spring forces over the last phase.
        stress_history: (samples, n_springs) elastic forces, only with `track_stresses`.
    """
    index: int
    elapsed_time: float
    valid: bool
    unstable: bool
    com_trajectory: npt.NDArray[np.float64]
    final_positions: npt.NDArray[np.float64]
    mean_lengths: npt.NDArray[np.float64]
    mean_stresses: npt.NDArray[np.float64]
    stress_history: Optional[npt.NDArray[np.float64]] = None


class Simulator:
    """
    Batched mass-spring-damper integrator.

    All candidates of a batch share one clock and one time step. The service
    has to be sized with `initialize` before use and can be released with
    `teardown`.
    """
    def __init__(self, config: Optional[SimulatorConfig] = None) -> None:
        """
        Args:
            config: Physical constants; defaults to `SimulatorConfig()`.
        """
        self.config = config or SimulatorConfig()
        self.pop_size = 0
        self.max_time = 0.0
        self.max_steps = 0
        self.sample_every = max(int(round(self.config.sample_period / self.config.time_step)), 1)

    @property
    def is_initialized(self) -> bool:
        return self.pop_size > 0

    def steps_for(self, duration: float) -> int:
        """Number of fixed time steps covering `duration` seconds."""
        return int(round(duration / self.config.time_step))

    def initialize(self, pop_size: int, max_time: float) -> None:
        """
        Size the simulator for batches of up to `pop_size` candidates.

        Args:
            pop_size: Largest population a batch may hold.
            max_time: Longest simulated duration of a batch in s.
        """
        if pop_size <= 0:
            raise ValueError(f"Population size must be positive, got {pop_size}.")
        if max_time < 0.0:
            raise ValueError(f"Maximum time must be non-negative, got {max_time}.")

        self.pop_size = pop_size
        self.max_time = max_time
        self.max_steps = self.steps_for(max_time)
        logger.info(
            f"Simulator initialized: pop_size={pop_size}, max_time={max_time:.3f} s, "
            f"dt={self.config.time_step:g} s, {self.max_steps} steps."
        )

    def teardown(self) -> None:
        """Release the provisioned sizes; `initialize` is needed again."""
        self.pop_size = 0
        self.max_time = 0.0
        self.max_steps = 0
        logger.debug("Simulator torn down.")

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise RuntimeError("Simulator used before initialize(pop_size, max_time).")

    def load(self, bodies: Sequence[SoftBody]) -> SimulationState:
        """
        Pack a population into a fresh simulation state at t = 0.

        Raises:
            RuntimeError: If the simulator was not initialized.
            BatchSizeError: If the population exceeds the provisioned size.
        """
        self._require_initialized()
        if len(bodies) > self.pop_size:
            raise BatchSizeError(
                f"Batch of {len(bodies)} candidates exceeds the provisioned population size {self.pop_size}."
            )

        capacity = self.max_steps // self.sample_every + 2
        state = SimulationState(bodies, sample_capacity=capacity)
        logger.debug(
            f"Loaded {state.n_candidates} candidates: {state.pos.shape[0]} masses, {state.m0.size} springs."
        )
        return state

    def simulate(self, state: SimulationState, duration: float) -> None:
        """
        Advance every active candidate of `state` by `duration` seconds.

        Raises:
            BatchSizeError: If the batch would run past the provisioned `max_time`.
        """
        self._require_initialized()
        n_steps = self.steps_for(duration)
        if state.time + duration > self.max_time + 0.5 * self.config.time_step:
            raise BatchSizeError(
                f"Simulating {duration:.3f} s from t={state.time:.3f} s exceeds the provisioned "
                f"maximum time of {self.max_time:.3f} s."
            )
        if n_steps == 0:
            return

        if self.config.track_stresses:
            done = 0
            while done < n_steps:
                chunk = min(self.sample_every - state.step % self.sample_every, n_steps - done)
                self._advance(state, chunk)
                done += chunk
                for c in np.flatnonzero(state.active):
                    state.stress_history[c].append(state.spring_force[state.spring_slice(c)].copy())
        else:
            self._advance(state, n_steps)

        for c in np.flatnonzero(state.unstable):
            logger.debug(f"Candidate {c} is unstable at t={state.time:.3f} s.")

    def _advance(self, state: SimulationState, n_steps: int) -> None:
        cfg = self.config
        kernels.advance(
            state.pos, state.vel, state.forces, state.mass_offsets,
            state.m0, state.m1, state.rest_length, state.k, state.dL0, state.omega, state.phi,
            state.spring_offsets, state.active, state.unstable,
            state.length_sum, state.stress_sum, state.spring_force, state.accumulated_steps,
            state.com_history, state.step, n_steps, self.sample_every,
            cfg.time_step, cfg.mass, cfg.gravity, cfg.ground_stiffness, cfg.friction,
            cfg.damping, cfg.drag, cfg.max_position, cfg.max_velocity,
        )
        state.step += n_steps
        state.time = state.step * cfg.time_step

    def develop(self, state: SimulationState, bodies: Sequence[SoftBody], amount: int) -> bool:
        """
        Run each candidate's developmental hook on the statistics of the last phase.

        Only candidates that are still being integrated and have accumulated
        at least one step since the last reset develop. Changed
        structure is re-read into `state`.

        Returns:
            True if any candidate changed.
        """
        changed = False
        for c in np.flatnonzero(state.active):
            if state.accumulated_steps[c] == 0:
                logger.debug(f"Candidate {c} has no statistics for this cycle and does not develop.")
                continue
            body = bodies[c]
            changed |= body.develop(state.mean_stresses(c), state.mean_lengths(c), amount)

        if changed:
            state.pack_springs(bodies)
        return changed

    def results(self, state: SimulationState) -> list[SimulationResult]:
        """Collect per-candidate outputs of a finished batch."""
        n_samples = state.recorded_samples(self.sample_every)
        out: list[SimulationResult] = []
        for c in range(state.n_candidates):
            history = None
            if self.config.track_stresses and state.stress_history[c]:
                history = np.vstack(state.stress_history[c])

            out.append(SimulationResult(
                index=c,
                elapsed_time=state.time,
                valid=bool(state.valid[c] and not state.unstable[c]),
                unstable=bool(state.unstable[c]),
                com_trajectory=state.com_history[c, :n_samples].copy(),
                final_positions=state.positions(c),
                mean_lengths=state.mean_lengths(c).copy(),
                mean_stresses=state.mean_stresses(c).copy(),
                stress_history=history,
            ))
        return out


def displacement(start: npt.NDArray[np.float64], end: npt.NDArray[np.float64]) -> float:
    """Planar (X, Y) distance between two centers of mass; NaN if either is not finite."""
    if not (np.all(np.isfinite(start)) and np.all(np.isfinite(end))):
        return math.nan
    return float(math.hypot(end[0] - start[0], end[1] - start[1]))
