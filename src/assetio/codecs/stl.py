"""STL, ASCII and binary. Z-up, one unindexed triangle soup per file."""

from __future__ import annotations

import re
import struct
from typing import Dict, List

import numpy as np

from ..errors import malformed
from .records import (
    AssetKind,
    Codec,
    DecodeContext,
    EncodeContext,
    IndexLayout,
    MeshRecord,
    SceneRecord,
    narrowest_floats,
)

__all__ = ["CODEC", "decode_stl", "encode_stl", "looks_like_ascii_stl"]

_HEADER_SIZE = 80
_FACET_DTYPE = np.dtype(
    [
        ("normal", "<f4", (3,)),
        ("vertices", "<f4", (3, 3)),
        ("attributes", "<u2"),
    ]
)
_FLOAT = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?|[-+]?(?:nan|inf)"
_FACET_RE = re.compile(
    rf"facet\s+normal\s+({_FLOAT})\s+({_FLOAT})\s+({_FLOAT})", re.IGNORECASE
)
_VERTEX_RE = re.compile(
    rf"vertex\s+({_FLOAT})\s+({_FLOAT})\s+({_FLOAT})", re.IGNORECASE
)


def _is_binary(data: bytes) -> bool:
    if len(data) < _HEADER_SIZE + 4:
        return False
    (count,) = struct.unpack_from("<I", data, _HEADER_SIZE)
    return len(data) == _HEADER_SIZE + 4 + count * _FACET_DTYPE.itemsize


def looks_like_ascii_stl(data: bytes) -> bool:
    head = data[:512].lstrip().lower()
    return head.startswith(b"solid") and (b"facet" in head or b"endsolid" in head)


def _face_normals(corner_normals: np.ndarray):
    # All-zero normals are how writers say "compute them yourself".
    if corner_normals.size == 0 or not np.any(corner_normals):
        return None
    return corner_normals


def _decode_binary(data: bytes) -> MeshRecord:
    (count,) = struct.unpack_from("<I", data, _HEADER_SIZE)
    facets = np.frombuffer(
        data, dtype=_FACET_DTYPE, count=count, offset=_HEADER_SIZE + 4
    )
    positions = facets["vertices"].reshape(-1, 3).astype(np.float32)
    normals = np.repeat(facets["normal"].astype(np.float32), 3, axis=0)
    name = data[:_HEADER_SIZE].split(b"\0", 1)[0].decode("ascii", "replace")
    return MeshRecord(
        positions=positions,
        layout=IndexLayout.FACE,
        normals=_face_normals(normals),
        name=name.strip() if not name.lower().startswith("solid") else "",
    )


def _decode_ascii(data: bytes, ident: str) -> MeshRecord:
    text = data.decode("ascii", "replace")
    first = text.lstrip().splitlines()[0] if text.strip() else ""
    name = first[5:].strip() if first.lower().startswith("solid") else ""
    normals: List[List[float]] = []
    vertices: List[List[float]] = []
    for facet in re.split(r"endfacet", text, flags=re.IGNORECASE)[:-1]:
        m = _FACET_RE.search(facet)
        corners = _VERTEX_RE.findall(facet)
        if m is None or len(corners) != 3:
            raise malformed(
                f"facet {len(normals) // 3} needs a normal and 3 vertices", ident
            )
        normal = [float(v) for v in m.groups()]
        normals.extend([normal] * 3)
        vertices.extend([float(v) for v in c] for c in corners)
    if not vertices and "facet" in text.lower():
        raise malformed("no complete facets found", ident)
    return MeshRecord(
        positions=(
            narrowest_floats(vertices)
            if vertices
            else np.zeros((0, 3), np.float32)
        ),
        layout=IndexLayout.FACE,
        normals=_face_normals(np.asarray(normals, dtype=np.float32).reshape(-1, 3)),
        name=name,
    )


def decode_stl(data: bytes, ctx: DecodeContext) -> SceneRecord:
    if _is_binary(data):
        mesh = _decode_binary(data)
    elif data.lstrip()[:5].lower() == b"solid":
        mesh = _decode_ascii(data, ctx.identifier)
    else:
        raise malformed(
            "neither a binary STL (size mismatch) nor an ASCII one",
            ctx.identifier,
            {"size": len(data)},
        )
    return SceneRecord(meshes=[mesh], name=mesh.name)


def encode_stl(scene: SceneRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    tris = []
    if scene.materials:
        ctx.warn(f"stl: {len(scene.materials)} material(s) dropped")
    if scene.animations:
        ctx.warn(f"stl: {len(scene.animations)} animation(s) dropped")
    for mesh in scene.meshes:
        dropped = [
            name
            for name in ("uvs", "colors", "tangents")
            if getattr(mesh, name) is not None
        ]
        if dropped:
            ctx.warn(f"stl: mesh '{mesh.name}' drops {', '.join(dropped)}")
        pos = np.asarray(mesh.positions, dtype=np.float32)
        tris.append(pos[np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3)])
    faces = np.concatenate(tris) if tris else np.zeros((0, 3, 3), np.float32)
    n = np.cross(faces[:, 1] - faces[:, 0], faces[:, 2] - faces[:, 0])
    lens = np.linalg.norm(n, axis=1, keepdims=True)
    lens[lens == 0] = 1.0
    out = np.zeros(len(faces), dtype=_FACET_DTYPE)
    out["normal"] = n / lens
    out["vertices"] = faces
    header = f"binary STL {scene.name or ctx.stem}".encode("ascii", "replace")
    header = header[:_HEADER_SIZE].ljust(_HEADER_SIZE, b"\0")
    payload = header + struct.pack("<I", len(out)) + out.tobytes()
    return {ctx.identifier: payload}


CODEC = Codec(
    name="stl",
    kind=AssetKind.SCENE,
    extensions=("stl",),
    decode=decode_stl,
    encode=encode_stl,
    sniff=looks_like_ascii_stl,
    up_axis="z",
)
