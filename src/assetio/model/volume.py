"""Voxel grids."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ..errors import malformed
from .arrays import frozen
from .texture import PIXEL_DTYPES

__all__ = ["VoxelGrid"]


@dataclass(frozen=True, slots=True, eq=False)
class VoxelGrid:
    """Dense grid stored ``(nz, ny, nx, channels)``, x varying fastest.

    ``voxel_size`` is the physical extent of a single voxel in meters.
    """

    voxels: np.ndarray
    voxel_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    name: str = ""

    def __post_init__(self) -> None:
        arr = np.asarray(self.voxels)
        if arr.ndim == 3:
            arr = arr[..., np.newaxis]
        if arr.ndim != 4 or not 1 <= arr.shape[3] <= 4:
            raise malformed(
                f"voxels must be (nz, ny, nx, c) with 1-4 channels, "
                f"got {arr.shape}"
            )
        if arr.dtype not in PIXEL_DTYPES:
            raise malformed(f"unsupported voxel type {arr.dtype}")
        size = tuple(float(v) for v in self.voxel_size)
        if len(size) != 3 or any(v <= 0 for v in size):
            raise malformed(f"voxel_size must be 3 positive values: {size}")
        object.__setattr__(self, "voxels", frozen(arr))
        object.__setattr__(self, "voxel_size", size)

    @property
    def dimensions(self) -> Tuple[int, int, int]:
        nz, ny, nx = self.voxels.shape[:3]
        return int(nx), int(ny), int(nz)

    @property
    def channels(self) -> int:
        return int(self.voxels.shape[3])

    @property
    def buffer(self) -> np.ndarray:
        """Flat view of length ``nx * ny * nz * channels``."""
        return self.voxels.reshape(-1)

    @property
    def extent(self) -> Tuple[float, float, float]:
        return tuple(  # type: ignore[return-value]
            d * s for d, s in zip(self.dimensions, self.voxel_size)
        )
