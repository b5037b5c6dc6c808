"""Raw ``.vol`` voxel volumes.

Layout: width, height, depth as big-endian u32, the physical extent of
the whole volume as three big-endian f32, four reserved bytes, then
8-bit voxel data with x varying fastest. The channel count is whatever
makes the payload length come out even.
"""

from __future__ import annotations

import struct
from typing import Dict

import numpy as np

from ..errors import malformed
from .records import AssetKind, Codec, DecodeContext, EncodeContext, VoxelRecord

__all__ = ["CODEC", "decode_vol", "encode_vol"]

_HEADER = struct.Struct(">3I3f4x")


def decode_vol(data: bytes, ctx: DecodeContext) -> VoxelRecord:
    if len(data) < _HEADER.size:
        raise malformed("vol header is truncated", ctx.identifier)
    width, height, depth, sx, sy, sz = _HEADER.unpack_from(data)
    cells = width * height * depth
    payload = len(data) - _HEADER.size
    if cells == 0 or payload % cells or not 1 <= payload // cells <= 4:
        raise malformed(
            "vol payload size does not match its dimensions",
            ctx.identifier,
            {"dimensions": (width, height, depth), "payload": payload},
        )
    channels = payload // cells
    voxels = np.frombuffer(data, dtype=np.uint8, offset=_HEADER.size).reshape(
        depth, height, width, channels
    )
    extent = (sx, sy, sz)
    if any(v <= 0 for v in extent):
        extent = (float(width), float(height), float(depth))
    return VoxelRecord(
        voxels=voxels,
        voxel_size=(extent[0] / width, extent[1] / height, extent[2] / depth),
    )


def encode_vol(record: VoxelRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    voxels = np.asarray(record.voxels)
    depth, height, width = voxels.shape[:3]
    extent = (
        record.voxel_size[0] * width,
        record.voxel_size[1] * height,
        record.voxel_size[2] * depth,
    )
    header = _HEADER.pack(width, height, depth, *extent)
    return {ctx.identifier: header + voxels.astype(np.uint8).tobytes()}


CODEC = Codec(
    name="vol",
    kind=AssetKind.VOXELS,
    extensions=("vol",),
    decode=decode_vol,
    encode=encode_vol,
    pixel_layouts=(("uint8", 1), ("uint8", 2), ("uint8", 3), ("uint8", 4)),
)
