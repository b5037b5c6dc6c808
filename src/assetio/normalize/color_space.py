"""Color-space tags for decoded pixels. Tags only; pixels are never touched."""

from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from ..codecs.records import Codec
from ..model.color import ColorSpace
from ..model.material import DATA_FACTORS, MaterialFactor

__all__ = ["default_color_space", "usage_color_space"]


def default_color_space(
    pixels: np.ndarray, codec: Codec, declared: Optional[ColorSpace] = None
) -> ColorSpace:
    """Tag for an image seen on its own.

    A tag stated by the file wins. Otherwise float pixels, single-channel
    integer pixels and formats that are linear by convention are LINEAR,
    and everything else is gamma-encoded color.
    """
    if declared is not None:
        return declared
    if codec.linear or pixels.dtype.kind == "f":
        return ColorSpace.LINEAR
    if pixels.ndim == 3 and pixels.shape[2] == 1:
        return ColorSpace.LINEAR
    return ColorSpace.NON_LINEAR


def usage_color_space(
    default: ColorSpace, factors: Iterable[MaterialFactor]
) -> ColorSpace:
    """Tag for a texture given the material slots that sample it.

    Used only by data slots: LINEAR. Any color slot keeps the default.
    """
    used = set(factors)
    if used and used <= DATA_FACTORS:
        return ColorSpace.LINEAR
    return default
