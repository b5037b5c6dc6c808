"""Color-space tags and transfer functions."""

from __future__ import annotations

from enum import Enum

import numpy as np

__all__ = ["ColorSpace", "srgb_to_linear", "linear_to_srgb"]


class ColorSpace(Enum):
    LINEAR = "linear"
    NON_LINEAR = "non-linear"


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    """sRGB EOTF on float data in [0, 1]."""
    v = np.asarray(values, dtype=np.float32)
    return np.where(
        v <= 0.04045, v / 12.92, ((v + 0.055) / 1.055) ** 2.4
    ).astype(np.float32)


def linear_to_srgb(values: np.ndarray) -> np.ndarray:
    """Inverse of :func:`srgb_to_linear`; input is clipped to [0, 1]."""
    v = np.clip(np.asarray(values, dtype=np.float32), 0.0, 1.0)
    return np.where(
        v <= 0.0031308, v * 12.92, 1.055 * np.power(v, 1.0 / 2.4) - 0.055
    ).astype(np.float32)
