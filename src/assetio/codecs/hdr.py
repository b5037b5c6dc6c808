"""Radiance RGBE (``.hdr``) images. Always linear float32 RGB."""

from __future__ import annotations

import re
from typing import Dict

import numpy as np

from ..errors import malformed
from ..model.color import ColorSpace
from .records import AssetKind, Codec, DecodeContext, EncodeContext, ImageRecord

__all__ = ["CODEC", "decode_hdr", "encode_hdr", "rgbe_to_float", "float_to_rgbe"]

_RESOLUTION_RE = re.compile(rb"([-+])Y\s+(\d+)\s+([-+])X\s+(\d+)")


def rgbe_to_float(rgbe: np.ndarray) -> np.ndarray:
    mantissa = rgbe[..., :3].astype(np.float32)
    exponent = rgbe[..., 3].astype(np.int32)
    scale = np.where(exponent == 0, 0.0, np.ldexp(1.0, exponent - 136))
    return (mantissa * scale[..., np.newaxis]).astype(np.float32)


def float_to_rgbe(rgb: np.ndarray) -> np.ndarray:
    rgb = np.maximum(np.asarray(rgb, dtype=np.float32), 0.0)
    brightest = rgb.max(axis=-1)
    mantissa, exponent = np.frexp(brightest)
    out = np.zeros(rgb.shape[:-1] + (4,), dtype=np.uint8)
    lit = brightest > 1e-32
    scale = np.zeros_like(brightest)
    scale[lit] = mantissa[lit] * 256.0 / brightest[lit]
    out[..., :3] = np.clip(rgb * scale[..., np.newaxis], 0, 255).astype(np.uint8)
    out[..., 3] = np.where(lit, exponent + 128, 0).astype(np.uint8)
    return out


def _read_scanline(data: bytes, pos: int, width: int, ident: str):
    """One scanline of RGBE quads starting at ``pos``; returns (quads, pos)."""
    head = data[pos : pos + 4]
    adaptive = (
        8 <= width < 0x8000
        and len(head) == 4
        and head[0] == 2
        and head[1] == 2
        and not head[2] & 0x80
    )
    if not adaptive:
        end = pos + width * 4
        if end > len(data):
            raise malformed("hdr scanline runs past end of file", ident)
        quads = np.frombuffer(data, dtype=np.uint8, count=width * 4, offset=pos)
        return quads.reshape(width, 4), end
    if (head[2] << 8 | head[3]) != width:
        raise malformed("hdr scanline width mismatch", ident)
    pos += 4
    line = np.empty((4, width), dtype=np.uint8)
    for channel in range(4):
        x = 0
        while x < width:
            if pos >= len(data):
                raise malformed("hdr run-length data truncated", ident)
            count = data[pos]
            pos += 1
            if count > 128:
                count -= 128
                if x + count > width or pos >= len(data):
                    raise malformed("hdr run overflows scanline", ident)
                line[channel, x : x + count] = data[pos]
                pos += 1
            else:
                if count == 0 or x + count > width or pos + count > len(data):
                    raise malformed("hdr literal run overflows scanline", ident)
                line[channel, x : x + count] = np.frombuffer(
                    data, dtype=np.uint8, count=count, offset=pos
                )
                pos += count
            x += count
    return line.T, pos


def decode_hdr(data: bytes, ctx: DecodeContext) -> ImageRecord:
    ident = ctx.identifier
    if not _sniff(data):
        raise malformed("missing #?RADIANCE signature", ident)
    blank = data.find(b"\n\n")
    if blank < 0:
        raise malformed("hdr header is truncated", ident)
    for line in data[:blank].splitlines():
        line = line.strip()
        if line.startswith(b"FORMAT=") and line != b"FORMAT=32-bit_rle_rgbe":
            fmt = line[7:].decode("ascii", "replace")
            raise malformed(f"unsupported hdr pixel format {fmt}", ident)
    end = data.find(b"\n", blank + 2)
    if end < 0:
        raise malformed("hdr resolution line is missing", ident)
    match = _RESOLUTION_RE.match(data[blank + 2 : end].strip())
    if match is None:
        raise malformed("hdr resolution line not understood", ident)
    pos = end + 1
    y_sign, height, x_sign, width = match.groups()
    height, width = int(height), int(width)
    rows = np.empty((height, width, 4), dtype=np.uint8)
    for y in range(height):
        rows[y], pos = _read_scanline(data, pos, width, ident)
    if y_sign == b"+":
        rows = rows[::-1]
    if x_sign == b"-":
        rows = rows[:, ::-1]
    return ImageRecord(
        pixels=np.ascontiguousarray(rgbe_to_float(rows)),
        color_space=ColorSpace.LINEAR,
    )


def encode_hdr(record: ImageRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    pixels = np.asarray(record.pixels)
    height, width = pixels.shape[:2]
    header = (
        b"#?RADIANCE\n"
        b"# assetio\n"
        b"FORMAT=32-bit_rle_rgbe\n\n"
        + f"-Y {height} +X {width}\n".encode("ascii")
    )
    # Flat scanlines; readers accept them alongside the run-length form.
    return {ctx.identifier: header + float_to_rgbe(pixels[..., :3]).tobytes()}


def _sniff(data: bytes) -> bool:
    return data.startswith((b"#?RADIANCE", b"#?RGBE"))


CODEC = Codec(
    name="hdr",
    kind=AssetKind.IMAGE,
    extensions=("hdr",),
    decode=decode_hdr,
    encode=encode_hdr,
    sniff=_sniff,
    pixel_layouts=(("float32", 3),),
    linear=True,
)
