"""
Material Catalog
================
Fixed table of physical actuation/structural properties attached to springs.

Why is this file needed?
------------------------
1. Physics: Every spring reads its stiffness and rest-length oscillation
   (L0 + dL0 * sin(omega * t + phi)) from here.
2. Blending: Overlapping material influences are merged with `Material.avg`.
3. Sharing: The catalog is immutable, so kernels and threads may read it
   without synchronization.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

OMEGA = 4.0  # rad/s, shared actuation frequency
AMPLITUDE = 0.14  # m, muscle rest-length oscillation amplitude


class MaterialOption(IntEnum):
    AGONIST_MUSCLE = 0
    ANTAGONIST_MUSCLE = 1
    TISSUE = 2
    BONE = 3
    AIR = 4


MATERIAL_COUNT = len(MaterialOption)
ACTIVE_MATERIAL_COUNT = MATERIAL_COUNT - 1  # everything except air


def _rgba(r: float, g: float, b: float, a: float) -> tuple[float, float, float, float]:
    """Convert 0-255 color channels to the 0-1 range."""
    return r / 255.0, g / 255.0, b / 255.0, a


@dataclass(frozen=True, eq=False)
class Material:
    """
    Physical profile of a spring.

    Attributes:
        id: Catalog id (see `MaterialOption`).
        k: Spring stiffness in N/m.
        dL0: Rest-length oscillation amplitude in m.
        omega: Angular frequency of the oscillation in rad/s.
        phi: Phase offset in rad.
        encoding: Bitmask tag, accumulated when materials are averaged.
        color: RGBA color in the 0-1 range.
    """
    id: int
    k: float
    dL0: float
    omega: float
    phi: float
    encoding: int
    color: tuple[float, float, float, float] = field(default=(0.0, 0.0, 0.0, 1.0))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Material):
            return NotImplemented
        return (
            self.k == other.k
            and self.dL0 == other.dL0
            and self.omega == other.omega
            and self.phi == other.phi
        )

    def __lt__(self, other: Material) -> bool:
        return self.physical_key < other.physical_key

    def __hash__(self) -> int:
        return hash(self.physical_key)

    @property
    def physical_key(self) -> tuple[float, float, float, float]:
        """The four scalars that define material identity."""
        return self.k, self.dL0, self.omega, self.phi

    @property
    def is_void(self) -> bool:
        """True for the air sentinel."""
        return self == AIR

    def rest_length_offset(self, time: float | npt.NDArray[np.float64]) -> float | npt.NDArray[np.float64]:
        """
        Instantaneous change of the spring target length.

        Args:
            time: Simulated time in seconds.

        Returns:
            dL0 * sin(omega * t + phi) in meters.
        """
        return self.dL0 * np.sin(self.omega * time + self.phi)

    @staticmethod
    def avg(materials: Iterable[Material]) -> Material:
        """
        Merge a set of materials, skipping air.

        The first non-void material seeds the result, every following one is
        blended into a running mean of k, dL0, omega and phi. Encoding
        bits accumulate and the color follows the last merged material. An
        all-void (or empty) set yields air.

        Args:
            materials: Materials influencing a single location.

        Returns:
            The merged material.
        """
        result: Optional[Material] = None
        k = dL0 = omega = phi = 0.0
        encoding = 0
        color = AIR.color
        count = 0

        for m in materials:
            if m == AIR:
                continue
            count += 1
            if result is None:
                result = m
                k, dL0, omega, phi = m.physical_key
                encoding = m.encoding
                color = m.color
                continue

            k += (m.k - k) / count
            dL0 += (m.dL0 - dL0) / count
            omega += (m.omega - omega) / count
            phi += (m.phi - phi) / count
            encoding |= m.encoding
            color = m.color

        if result is None:
            return AIR
        if count == 1:
            return result

        return Material(
            id=result.id,
            k=k,
            dL0=dL0,
            omega=omega,
            phi=phi,
            encoding=encoding,
            color=color,
        )

    def to_string(self) -> str:
        """Comma-separated physical scalars followed by the RGBA color."""
        return ", ".join(f"{v:f}" for v in (*self.physical_key, *self.color))


AGONIST_MUSCLE = Material(
    MaterialOption.AGONIST_MUSCLE, 5000.0, AMPLITUDE, OMEGA, 0.0, 0x01, _rgba(32.0, 212.0, 82.0, 1.0)
)
ANTAGONIST_MUSCLE = Material(
    MaterialOption.ANTAGONIST_MUSCLE, 5000.0, AMPLITUDE, OMEGA, math.pi, 0x02, _rgba(250.0, 112.0, 66.0, 1.0)
)
TISSUE = Material(
    MaterialOption.TISSUE, 4000.0, 0.0, OMEGA, 0.0, 0x04, _rgba(169.0, 32.0, 212.0, 1.0)
)
BONE = Material(
    MaterialOption.BONE, 10000.0, 0.0, OMEGA, 0.0, 0x08, _rgba(245.0, 231.0, 54.0, 1.0)
)
AIR = Material(
    MaterialOption.AIR, 0.0, 0.0, 0.0, 0.0, 0x00, (0.0, 0.0, 0.0, 0.0)
)

CATALOG: dict[MaterialOption, Material] = {
    MaterialOption.AGONIST_MUSCLE: AGONIST_MUSCLE,
    MaterialOption.ANTAGONIST_MUSCLE: ANTAGONIST_MUSCLE,
    MaterialOption.TISSUE: TISSUE,
    MaterialOption.BONE: BONE,
    MaterialOption.AIR: AIR,
}


def lookup(material_id: int) -> Material:
    """Return the catalog material for an id; unknown ids map to air."""
    try:
        return CATALOG[MaterialOption(material_id)]
    except ValueError:
        return AIR


def random_material(rng: Optional[np.random.Generator] = None) -> Material:
    """Pick a catalog material uniformly, air included."""
    rng = rng or np.random.default_rng()
    return lookup(int(rng.integers(MATERIAL_COUNT)))
