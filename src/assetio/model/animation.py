"""Rotation key frames."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ..errors import malformed
from .arrays import attribute, frozen
from .texture import Interpolation

__all__ = ["KeyFrames", "quaternion_matrix"]


def quaternion_matrix(q) -> np.ndarray:
    """4x4 rotation matrix (column-vector convention) of ``(x, y, z, w)``."""
    x, y, z, w = (float(v) for v in q)
    m = np.eye(4)
    m[:3, :3] = [
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ]
    return m


def _slerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    dot = float(np.dot(a, b))
    if dot < 0.0:
        b, dot = -b, -dot
    if dot > 0.9995:
        out = a + t * (b - a)
        return out / np.linalg.norm(out)
    theta = np.arccos(dot)
    sin = np.sin(theta)
    return (np.sin((1 - t) * theta) * a + np.sin(t * theta) * b) / sin


@dataclass(frozen=True, slots=True, eq=False)
class KeyFrames:
    """Rotations over time for a group of primitives.

    ``times`` are seconds in non-decreasing order; ``rotations`` holds one
    unit quaternion ``(x, y, z, w)`` per time. ``targets`` index into the
    owning model's primitives. Rotations are local to the animated node:
    the rest pose is already part of the vertex data.
    """

    times: np.ndarray
    rotations: np.ndarray
    interpolation: Interpolation = Interpolation.LINEAR
    targets: Tuple[int, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        times = np.asarray(self.times, dtype=np.float32).reshape(-1)
        if times.size == 0:
            raise malformed(f"key frames '{self.name}' have no keys")
        if np.any(np.diff(times) < 0):
            raise malformed(f"key frame times of '{self.name}' go backwards")
        rotations = np.array(
            attribute("rotations", self.rotations, len(times), 4, (np.float32,)),
            dtype=np.float32,
        )
        lens = np.linalg.norm(rotations, axis=1)
        if np.any(lens == 0):
            raise malformed(f"key frames '{self.name}' hold a zero quaternion")
        rotations /= lens[:, None]
        object.__setattr__(self, "times", frozen(times))
        object.__setattr__(self, "rotations", frozen(rotations))
        object.__setattr__(self, "targets", tuple(int(t) for t in self.targets))

    @property
    def duration(self) -> float:
        return float(self.times[-1])

    def rotation(self, time: float) -> np.ndarray:
        """Quaternion at ``time``; clamped to the first and last key."""
        times = self.times
        if time <= times[0]:
            return self.rotations[0].astype(np.float64)
        if time >= times[-1]:
            return self.rotations[-1].astype(np.float64)
        k = int(np.searchsorted(times, time, side="right")) - 1
        a = self.rotations[k].astype(np.float64)
        if self.interpolation is Interpolation.NEAREST:
            return a
        b = self.rotations[k + 1].astype(np.float64)
        span = float(times[k + 1] - times[k])
        t = 0.0 if span == 0 else (time - float(times[k])) / span
        return _slerp(a, b, t)

    def transformation(self, time: float) -> np.ndarray:
        return quaternion_matrix(self.rotation(time))
