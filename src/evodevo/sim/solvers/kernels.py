# kernels.py
from __future__ import annotations

import math

import numba as nb
import numpy as np
import numpy.typing as npt

# ---- JIT'd mass-spring integration ----

@nb.njit(cache=True)
def spring_step(
    pos: npt.NDArray[np.float64],
    vel: npt.NDArray[np.float64],
    forces: npt.NDArray[np.float64],
    m0: npt.NDArray[np.int64],
    m1: npt.NDArray[np.int64],
    rest_length: npt.NDArray[np.float64],
    k: npt.NDArray[np.float64],
    dL0: npt.NDArray[np.float64],
    omega: npt.NDArray[np.float64],
    phi: npt.NDArray[np.float64],
    length_sum: npt.NDArray[np.float64],
    stress_sum: npt.NDArray[np.float64],
    spring_force: npt.NDArray[np.float64],
    s_start: int,
    s_end: int,
    t: float,
    damping: float,
) -> None:
    """
    Accumulate spring forces of one candidate into `forces`.

    The target length is L0 + dL0 * sin(omega * t + phi); the elastic part
    follows Hooke's law toward it and a dashpot acts on the relative velocity
    along the spring axis.
    """
    for s in range(s_start, s_end):
        a = m0[s]
        b = m1[s]
        dx = pos[b, 0] - pos[a, 0]
        dy = pos[b, 1] - pos[a, 1]
        dz = pos[b, 2] - pos[a, 2]
        length = math.sqrt(dx * dx + dy * dy + dz * dz)

        if length > 1e-12:
            ux = dx / length
            uy = dy / length
            uz = dz / length
        else:
            ux = 0.0
            uy = 0.0
            uz = 0.0

        target = rest_length[s] + dL0[s] * math.sin(omega[s] * t + phi[s])
        elastic = k[s] * (length - target)
        rel_v = (
            (vel[b, 0] - vel[a, 0]) * ux
            + (vel[b, 1] - vel[a, 1]) * uy
            + (vel[b, 2] - vel[a, 2]) * uz
        )
        f = elastic + damping * rel_v

        # positive f pulls the endpoints together
        forces[a, 0] += f * ux
        forces[a, 1] += f * uy
        forces[a, 2] += f * uz
        forces[b, 0] -= f * ux
        forces[b, 1] -= f * uy
        forces[b, 2] -= f * uz

        length_sum[s] += length
        stress_sum[s] += abs(elastic)
        spring_force[s] = elastic


@nb.njit(cache=True)
def mass_step(
    pos: npt.NDArray[np.float64],
    vel: npt.NDArray[np.float64],
    forces: npt.NDArray[np.float64],
    m_start: int,
    m_end: int,
    dt: float,
    mass: float,
    ground_stiffness: float,
    friction: float,
    drag: float,
    max_position: float,
    max_velocity: float,
) -> bool:
    """
    Semi-implicit Euler update of one candidate's masses.

    Environment forces: viscous drag, penalty contact with the Z=0 plane and
    Coulomb friction capped so it can at most stop the tangential motion.

    Returns:
        False if any mass left the finite, bounded state space.
    """
    ok = True
    inv_m = 1.0 / mass
    for i in range(m_start, m_end):
        fx = forces[i, 0] - drag * vel[i, 0]
        fy = forces[i, 1] - drag * vel[i, 1]
        fz = forces[i, 2] - drag * vel[i, 2]

        if pos[i, 2] < 0.0:
            normal = -ground_stiffness * pos[i, 2]
            fz += normal
            vt = math.sqrt(vel[i, 0] * vel[i, 0] + vel[i, 1] * vel[i, 1])
            if vt > 0.0:
                ff = min(friction * normal, mass * vt / dt)
                fx -= ff * vel[i, 0] / vt
                fy -= ff * vel[i, 1] / vt

        vel[i, 0] += fx * inv_m * dt
        vel[i, 1] += fy * inv_m * dt
        vel[i, 2] += fz * inv_m * dt
        pos[i, 0] += vel[i, 0] * dt
        pos[i, 1] += vel[i, 1] * dt
        pos[i, 2] += vel[i, 2] * dt

        for d in range(3):
            p = pos[i, d]
            v = vel[i, d]
            if not (math.isfinite(p) and math.isfinite(v)):
                ok = False
            elif abs(p) > max_position or abs(v) > max_velocity:
                ok = False
    return ok


@nb.njit(cache=True, parallel=True)
def advance(
    pos: npt.NDArray[np.float64],
    vel: npt.NDArray[np.float64],
    forces: npt.NDArray[np.float64],
    mass_offsets: npt.NDArray[np.int64],
    m0: npt.NDArray[np.int64],
    m1: npt.NDArray[np.int64],
    rest_length: npt.NDArray[np.float64],
    k: npt.NDArray[np.float64],
    dL0: npt.NDArray[np.float64],
    omega: npt.NDArray[np.float64],
    phi: npt.NDArray[np.float64],
    spring_offsets: npt.NDArray[np.int64],
    active: npt.NDArray[np.bool_],
    unstable: npt.NDArray[np.bool_],
    length_sum: npt.NDArray[np.float64],
    stress_sum: npt.NDArray[np.float64],
    spring_force: npt.NDArray[np.float64],
    accumulated_steps: npt.NDArray[np.int64],
    com_history: npt.NDArray[np.float64],
    start_step: int,
    n_steps: int,
    sample_every: int,
    dt: float,
    mass: float,
    gravity: float,
    ground_stiffness: float,
    friction: float,
    damping: float,
    drag: float,
    max_position: float,
    max_velocity: float,
) -> None:
    """
    Advance every active candidate by `n_steps` time steps.

    One candidate per parallel lane; inside a lane the force evaluation order
    is fixed, so results do not depend on the number of threads. A candidate
    that becomes unstable is frozen for the rest of the batch.

    Args:
        pos, vel, forces: (n_masses, 3) state of the whole population.
        mass_offsets: (n_candidates + 1,) mass ranges per candidate.
        m0, m1: (n_springs,) global mass indices of each spring.
        rest_length, k, dL0, omega, phi: (n_springs,) spring parameters.
        spring_offsets: (n_candidates + 1,) spring ranges per candidate.
        active: Candidates still being integrated (updated in place).
        unstable: Candidates frozen after a blow-up (updated in place).
        length_sum, stress_sum: Per-spring sums of length and |elastic force|.
        spring_force: Last elastic force of every spring.
        accumulated_steps: Steps summed into the two accumulators, per candidate.
        com_history: (n_candidates, capacity, 3) center-of-mass samples.
        start_step: Global step counter at entry; the clock is step * dt.
        n_steps: Number of steps to take.
        sample_every: Steps between center-of-mass samples.
    """
    n_candidates = mass_offsets.size - 1
    capacity = com_history.shape[1]
    weight = mass * gravity

    for c in nb.prange(n_candidates):
        if not active[c]:
            continue

        m_start = mass_offsets[c]
        m_end = mass_offsets[c + 1]
        s_start = spring_offsets[c]
        s_end = spring_offsets[c + 1]
        n_local = m_end - m_start

        for s in range(n_steps):
            step = start_step + s

            # 1) Sample the state at the start of the step
            if step % sample_every == 0:
                slot = step // sample_every
                if slot < capacity:
                    cx = 0.0
                    cy = 0.0
                    cz = 0.0
                    for i in range(m_start, m_end):
                        cx += pos[i, 0]
                        cy += pos[i, 1]
                        cz += pos[i, 2]
                    com_history[c, slot, 0] = cx / n_local
                    com_history[c, slot, 1] = cy / n_local
                    com_history[c, slot, 2] = cz / n_local

            # 2) Gravity, then springs
            for i in range(m_start, m_end):
                forces[i, 0] = 0.0
                forces[i, 1] = 0.0
                forces[i, 2] = -weight

            spring_step(
                pos, vel, forces, m0, m1, rest_length, k, dL0, omega, phi,
                length_sum, stress_sum, spring_force, s_start, s_end, step * dt, damping,
            )

            # 3) Integrate
            if not mass_step(
                pos, vel, forces, m_start, m_end, dt, mass,
                ground_stiffness, friction, drag, max_position, max_velocity,
            ):
                unstable[c] = True
                active[c] = False
                break

            accumulated_steps[c] += 1
