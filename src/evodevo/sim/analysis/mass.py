from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from evodevo.sim.pre.material import AIR, Material

if TYPE_CHECKING:
    import numpy.typing as npt


class Mass:
    """
    Represents a point mass of a soft body.
    """
    def __init__(
        self,
        index: int,
        coords: list[float] | npt.NDArray[np.float64],
        material: Material = AIR,
    ) -> None:
        """
        Initialize the mass with coordinates.

        Args:
            index: Index of the mass within its candidate's mass array.
            coords: Build-time coordinates of the mass in the global system [X, Y, Z].
            material: Material of the body at this point, used to derive spring materials.
        """
        self.coords = np.array(coords, dtype=np.float64)
        self.uid = index
        self.material = material

    def __repr__(self) -> str:
        """String representation of the mass."""
        return f"{self.__class__.__name__}(id={self.uid}, coords={self.coords})"

    @property
    def x(self) -> float:
        """X-coordinate of the mass."""
        return self.coords[0]

    @property
    def y(self) -> float:
        """Y-coordinate of the mass."""
        return self.coords[1]

    @property
    def z(self) -> float:
        """Z-coordinate (height) of the mass."""
        return self.coords[2]


def masses_to_array(masses: list[Mass]) -> npt.NDArray[np.float64]:
    """Stack mass coordinates into an (n, 3) array."""
    if not masses:
        return np.empty((0, 3), dtype=np.float64)
    return np.vstack([m.coords for m in masses]).astype(np.float64, copy=False)
