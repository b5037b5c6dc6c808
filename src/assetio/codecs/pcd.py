"""Point Cloud Data (PCL) files: ascii, binary and binary_compressed."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from ..errors import malformed
from .records import (
    AssetKind,
    Codec,
    DecodeContext,
    EncodeContext,
    PointsRecord,
)

__all__ = ["CODEC", "decode_pcd", "encode_pcd", "lzf_decompress"]

_TYPE_CHARS = {"F": "f", "I": "i", "U": "u"}
_HEADER_KEYS = (
    "VERSION",
    "FIELDS",
    "SIZE",
    "TYPE",
    "COUNT",
    "WIDTH",
    "HEIGHT",
    "VIEWPOINT",
    "POINTS",
    "DATA",
)


@dataclass(slots=True)
class PcdHeader:
    fields: List[str]
    sizes: List[int]
    types: List[str]
    counts: List[int]
    points: int
    data: str
    offset: int

    def dtype(self) -> np.dtype:
        parts = []
        for name, size, kind, count in zip(
            self.fields, self.sizes, self.types, self.counts
        ):
            if kind not in _TYPE_CHARS:
                raise malformed(f"unknown PCD field type '{kind}'")
            base = f"<{_TYPE_CHARS[kind]}{size}"
            # '_' is PCL's padding field name; duplicates are allowed.
            field_name = name if name != "_" else f"_pad{len(parts)}"
            if count > 1:
                parts.append((field_name, base, (count,)))
            else:
                parts.append((field_name, base))
        return np.dtype(parts)


def _parse_header(data: bytes, ident: str) -> PcdHeader:
    values: Dict[str, List[str]] = {}
    pos = 0
    while pos < len(data):
        end = data.find(b"\n", pos)
        if end < 0:
            end = len(data)
        line = data[pos:end].decode("ascii", "replace").strip()
        pos = end + 1
        if not line or line.startswith("#"):
            continue
        key, _, rest = line.partition(" ")
        key = key.upper()
        if key not in _HEADER_KEYS:
            raise malformed(f"unexpected PCD header line '{line[:40]}'", ident)
        values[key] = rest.split()
        if key == "DATA":
            break
    else:
        raise malformed("PCD header has no DATA line", ident)
    try:
        fields = values["FIELDS"]
        n = len(fields)
        sizes = [int(v) for v in values.get("SIZE", ["4"] * n)]
        types = [v.upper() for v in values.get("TYPE", ["F"] * n)]
        counts = [int(v) for v in values.get("COUNT", ["1"] * n)]
        if "POINTS" in values:
            points = int(values["POINTS"][0])
        else:
            points = int(values["WIDTH"][0]) * int(values.get("HEIGHT", ["1"])[0])
        mode = values["DATA"][0].lower()
    except (KeyError, IndexError, ValueError) as exc:
        raise malformed(f"incomplete PCD header: {exc}", ident) from exc
    if not (len(sizes) == len(types) == len(counts) == n):
        raise malformed("PCD FIELDS/SIZE/TYPE/COUNT lengths differ", ident)
    return PcdHeader(fields, sizes, types, counts, points, mode, pos)


def lzf_decompress(src: bytes, expected: int) -> bytes:
    """Decode an LZF stream (liblzf format, as written by PCL)."""
    out = bytearray()
    i = 0
    n = len(src)
    while i < n:
        ctrl = src[i]
        i += 1
        if ctrl < 32:
            length = ctrl + 1
            if i + length > n:
                raise ValueError("literal run past end of input")
            out += src[i : i + length]
            i += length
        else:
            length = ctrl >> 5
            if length == 7:
                length += src[i]
                i += 1
            ref = len(out) - ((ctrl & 0x1F) << 8) - src[i] - 1
            i += 1
            if ref < 0:
                raise ValueError("back reference before start of output")
            for _ in range(length + 2):
                out.append(out[ref])
                ref += 1
    if len(out) != expected:
        raise ValueError(f"decompressed {len(out)} bytes, expected {expected}")
    return bytes(out)


def _ascii_points(body: bytes, header: PcdHeader, dtype: np.dtype, ident: str):
    rows = [line.split() for line in body.decode("ascii", "replace").splitlines()]
    rows = [r for r in rows if r]
    width = sum(header.counts)
    if len(rows) < header.points:
        raise malformed(
            f"PCD declares {header.points} points but has {len(rows)} rows", ident
        )
    out = np.zeros(header.points, dtype=dtype)
    try:
        table = np.asarray(rows[: header.points], dtype=np.float64)
    except ValueError as exc:
        raise malformed(f"bad PCD ascii row: {exc}", ident) from exc
    if table.ndim != 2 or table.shape[1] != width:
        raise malformed(f"PCD rows must have {width} values", ident)
    col = 0
    for name in dtype.names:
        count = dtype[name].shape[0] if dtype[name].shape else 1
        values = table[:, col : col + count]
        base = dtype[name].base if dtype[name].shape else dtype[name]
        # Packed rgb is written as the float whose bits hold the color.
        out[name] = values.reshape(out[name].shape).astype(base)
        col += count
    return out


def _compressed_points(body: bytes, dtype: np.dtype, points: int, ident: str):
    if len(body) < 8:
        raise malformed("truncated binary_compressed PCD", ident)
    compressed, raw_size = struct.unpack_from("<II", body)
    try:
        raw = lzf_decompress(body[8 : 8 + compressed], raw_size)
    except (ValueError, IndexError) as exc:
        raise malformed(f"corrupt LZF payload: {exc}", ident) from exc
    # Decompressed data is stored field by field, not point by point.
    out = np.zeros(points, dtype=dtype)
    offset = 0
    for name in dtype.names:
        field_dtype = dtype[name]
        nbytes = field_dtype.itemsize * points
        column = np.frombuffer(
            raw,
            dtype=field_dtype.base,
            count=nbytes // field_dtype.base.itemsize,
            offset=offset,
        )
        out[name] = column.reshape(out[name].shape)
        offset += nbytes
    return out


def _unpack_rgb(values: np.ndarray, with_alpha: bool) -> np.ndarray:
    if values.dtype.kind == "f":
        bits = np.ascontiguousarray(values, dtype=np.float32).view(np.uint32)
    else:
        bits = values.astype(np.uint32)
    out = np.empty((len(bits), 4), dtype=np.uint8)
    out[:, 0] = (bits >> 16) & 255
    out[:, 1] = (bits >> 8) & 255
    out[:, 2] = bits & 255
    out[:, 3] = (bits >> 24) & 255 if with_alpha else 255
    return out


def decode_pcd(data: bytes, ctx: DecodeContext) -> PointsRecord:
    ident = ctx.identifier
    header = _parse_header(data, ident)
    for axis in ("x", "y", "z"):
        if axis not in header.fields:
            raise malformed(f"PCD has no '{axis}' field", ident)
    dtype = header.dtype()
    body = data[header.offset :]
    if header.data == "ascii":
        pts = _ascii_points(body, header, dtype, ident)
    elif header.data == "binary":
        if len(body) < dtype.itemsize * header.points:
            raise malformed(
                f"binary PCD needs {dtype.itemsize * header.points} bytes, "
                f"has {len(body)}",
                ident,
            )
        pts = np.frombuffer(body, dtype=dtype, count=header.points)
    elif header.data == "binary_compressed":
        pts = _compressed_points(body, dtype, header.points, ident)
    else:
        raise malformed(f"unknown PCD DATA mode '{header.data}'", ident)

    pos_dtype = np.float64 if pts["x"].dtype == np.float64 else np.float32
    positions = np.stack([pts["x"], pts["y"], pts["z"]], axis=1).astype(pos_dtype)
    colors: Optional[np.ndarray] = None
    if "rgba" in header.fields:
        colors = _unpack_rgb(pts["rgba"], with_alpha=True)
    elif "rgb" in header.fields:
        colors = _unpack_rgb(pts["rgb"], with_alpha=False)
    normals = None
    if all(f in header.fields for f in ("normal_x", "normal_y", "normal_z")):
        normals = np.stack(
            [pts["normal_x"], pts["normal_y"], pts["normal_z"]], axis=1
        ).astype(np.float32)
    return PointsRecord(positions=positions, colors=colors, normals=normals)


def encode_pcd(record: PointsRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    positions = np.asarray(record.positions)
    kind = "F"
    size = 8 if positions.dtype == np.float64 else 4
    fields = [("x", size, kind), ("y", size, kind), ("z", size, kind)]
    if record.colors is not None:
        fields.append(("rgb", 4, "F"))
    if record.normals is not None:
        fields += [(f"normal_{a}", 4, "F") for a in "xyz"]
    dtype = np.dtype([(name, f"<f{sz}") for name, sz, _ in fields])
    out = np.zeros(len(positions), dtype=dtype)
    for i, axis in enumerate("xyz"):
        out[axis] = positions[:, i]
    if record.colors is not None:
        c = np.asarray(record.colors, dtype=np.uint32)
        packed = (c[:, 0] << 16) | (c[:, 1] << 8) | c[:, 2]
        out["rgb"] = packed.astype(np.uint32).view(np.float32)
    if record.normals is not None:
        for i, name in enumerate(("normal_x", "normal_y", "normal_z")):
            out[name] = record.normals[:, i]
    n = len(positions)
    header = "\n".join(
        [
            "# .PCD v0.7 - Point Cloud Data file format",
            "VERSION 0.7",
            "FIELDS " + " ".join(f[0] for f in fields),
            "SIZE " + " ".join(str(f[1]) for f in fields),
            "TYPE " + " ".join(f[2] for f in fields),
            "COUNT " + " ".join("1" for _ in fields),
            f"WIDTH {n}",
            "HEIGHT 1",
            "VIEWPOINT 0 0 0 1 0 0 0",
            f"POINTS {n}",
            "DATA binary",
        ]
    )
    return {ctx.identifier: header.encode("ascii") + b"\n" + out.tobytes()}


def _sniff(data: bytes) -> bool:
    head = data[:64].lstrip()
    return head.startswith(b"# .PCD") or head.startswith(b"VERSION")


CODEC = Codec(
    name="pcd",
    kind=AssetKind.POINTS,
    extensions=("pcd",),
    decode=decode_pcd,
    encode=encode_pcd,
    sniff=_sniff,
    wide_floats=True,
)
