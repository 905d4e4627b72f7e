from __future__ import annotations

from dataclasses import dataclass

from evodevo.sim.pre.material import Material


@dataclass
class Spring:
    """
    Connection between two masses of the same candidate.

    Attributes:
        m0: Index of the first mass.
        m1: Index of the second mass.
        rest_length: Structural baseline distance in m.
        mean_length: Mean length observed during the last evaluation window, reporting only.
        material: Physical profile driving the spring.
    """
    m0: int
    m1: int
    rest_length: float
    mean_length: float
    material: Material

    @property
    def key(self) -> tuple[int, int]:
        """Unordered mass pair identifying the spring."""
        return (self.m0, self.m1) if self.m0 < self.m1 else (self.m1, self.m0)

    def target_length(self, time: float) -> float:
        """Instantaneous target length L0 + dL0 * sin(omega * t + phi)."""
        return self.rest_length + float(self.material.rest_length_offset(time))
