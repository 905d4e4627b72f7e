"""
Mass-Spring Simulation Engine
=============================
Everything needed to turn a candidate body into a trajectory.

Why is this file needed?
------------------------
1. Pre-processing: Materials and the topology builder (`pre`).
2. Data: Masses, springs and the packed population state (`analysis`).
3. Time-Stepping: The batched integrator and its JIT kernels (`solvers`).

Note: This package is pure NumPy/SciPy/Numba and knows nothing about the
genetic search that drives it.
"""
