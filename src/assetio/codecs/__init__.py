"""Format codecs.

Each module exposes one or more :class:`~assetio.codecs.records.Codec`
values; :data:`REGISTRY` is the closed set the dispatcher chooses from.
"""

from __future__ import annotations

from typing import Tuple

from . import gltf, hdr, image, obj, pcd, stl, threemf, vol
from .records import AssetKind, Codec, DecodeContext, EncodeContext, IndexLayout

__all__ = [
    "REGISTRY",
    "AssetKind",
    "Codec",
    "DecodeContext",
    "EncodeContext",
    "IndexLayout",
]

REGISTRY: Tuple[Codec, ...] = (
    obj.CODEC,
    obj.MTL_CODEC,
    gltf.GLTF_CODEC,
    gltf.GLB_CODEC,
    stl.CODEC,
    threemf.CODEC,
    image.PNG,
    image.JPEG,
    image.BMP,
    image.TGA,
    image.TIFF,
    image.GIF,
    image.WEBP,
    hdr.CODEC,
    pcd.CODEC,
    vol.CODEC,
)
