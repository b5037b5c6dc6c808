"""Up-axis and texture-origin conversions.

Canonical space is right-handed with +Y up. A Z-up file is brought in by
a rotation of -90 degrees about X, ``(x, y, z) -> (x, z, -y)``; being a
rotation, it keeps handedness and winding.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

__all__ = ["to_canonical", "from_canonical", "flip_v"]


def _z_up_to_y_up(values: np.ndarray) -> np.ndarray:
    out = np.empty_like(values)
    out[:, 0] = values[:, 0]
    out[:, 1] = values[:, 2]
    out[:, 2] = -values[:, 1]
    return out


def _y_up_to_z_up(values: np.ndarray) -> np.ndarray:
    out = np.empty_like(values)
    out[:, 0] = values[:, 0]
    out[:, 1] = -values[:, 2]
    out[:, 2] = values[:, 1]
    return out


def _apply(values: Optional[np.ndarray], up_axis: str, fn) -> Optional[np.ndarray]:
    if values is None or up_axis == "y":
        return values
    if up_axis != "z":
        raise ValueError(f"unknown up axis '{up_axis}'")
    arr = np.asarray(values)
    if arr.shape[1] == 4:
        # Tangents: rotate xyz, keep the handedness sign.
        out = arr.copy()
        out[:, :3] = fn(arr[:, :3])
        return out
    return fn(arr)


def to_canonical(values: Optional[np.ndarray], up_axis: str) -> Optional[np.ndarray]:
    """Rotate positions, normals or tangents from ``up_axis`` to Y-up."""
    return _apply(values, up_axis, _z_up_to_y_up)


def from_canonical(
    values: Optional[np.ndarray], up_axis: str
) -> Optional[np.ndarray]:
    return _apply(values, up_axis, _y_up_to_z_up)


def flip_v(uvs: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """``v -> 1 - v``; its own inverse."""
    if uvs is None:
        return None
    out = np.array(uvs, dtype=np.float32)
    out[:, 1] = 1.0 - out[:, 1]
    return out
