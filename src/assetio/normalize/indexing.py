"""Turning codec index layouts into indexed triangle lists.

VERTEX meshes are validated as they are. CORNER meshes, where every
corner indexes each attribute pool on its own, are merged into unique
vertices by value. FACE meshes get a fresh vertex per corner. The result
only depends on the input, so loading a file twice yields the same
vertex order.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional

import numpy as np

from ..codecs.records import IndexLayout, MeshRecord
from ..errors import malformed
from ..model.geometry import TriMesh

__all__ = ["build_mesh", "rgba8", "unique_vertices"]


def rgba8(colors: Optional[np.ndarray]) -> Optional[np.ndarray]:
    """Colors as uint8 RGBA; floats are taken to be in [0, 1]."""
    if colors is None:
        return None
    arr = np.asarray(colors)
    if arr.dtype != np.uint8:
        arr = np.rint(np.clip(arr.astype(np.float64), 0.0, 1.0) * 255.0)
        arr = arr.astype(np.uint8)
    if arr.shape[1] == 3:
        arr = np.concatenate(
            [arr, np.full((len(arr), 1), 255, dtype=np.uint8)], axis=1
        )
    return arr


def unique_vertices(columns: np.ndarray, position_index: np.ndarray):
    """Merge equal rows of ``columns``.

    Returns ``(source_rows, indices)``: the corner each output vertex is
    copied from, and the new index of every corner. Output vertices are
    ordered by the smallest position index that produced them, then by
    first use.
    """
    if len(columns) == 0:
        return np.zeros(0, np.int64), np.zeros(0, np.uint32)
    _, first, inverse = np.unique(
        columns, axis=0, return_index=True, return_inverse=True
    )
    inverse = inverse.reshape(-1)
    smallest = np.full(len(first), np.iinfo(np.int64).max, dtype=np.int64)
    np.minimum.at(smallest, inverse, position_index)
    order = np.lexsort((first, smallest))
    rank = np.empty(len(order), dtype=np.int64)
    rank[order] = np.arange(len(order))
    return first[order], rank[inverse].astype(np.uint32)


def _check_pool(name: str, indices: np.ndarray, size: int, ident: str) -> None:
    if len(indices) and (indices.min() < 0 or indices.max() >= size):
        raise malformed(f"{name} index out of range ({size} entries)", ident)


def _corner_attribute(
    name: str,
    pool: Optional[np.ndarray],
    indices: Optional[np.ndarray],
    warn: Callable[[str], None],
    ident: str,
) -> Optional[np.ndarray]:
    if pool is None or indices is None:
        return None
    indices = np.asarray(indices, dtype=np.int64)
    missing = indices < 0
    if missing.all():
        return None
    if missing.any():
        warn(f"{ident}: {name} supplied for only some corners; dropped")
        return None
    _check_pool(name, indices, len(pool), ident)
    return np.asarray(pool)[indices]


def _from_corners(
    record: MeshRecord, warn: Callable[[str], None], ident: str
) -> TriMesh:
    pos_idx = np.asarray(record.indices, dtype=np.int64).reshape(-1)
    if len(pos_idx) % 3:
        raise malformed(f"corner count {len(pos_idx)} is not a multiple of 3", ident)
    positions = np.asarray(record.positions)
    _check_pool("position", pos_idx, len(positions), ident)
    attrs: Dict[str, Optional[np.ndarray]] = {
        "positions": positions[pos_idx],
        "normals": _corner_attribute(
            "normals", record.normals, record.normal_indices, warn, ident
        ),
        "uvs": _corner_attribute("uvs", record.uvs, record.uv_indices, warn, ident),
        "tangents": None,
        "colors": None,
    }
    if record.tangents is not None:
        warn(f"{ident}: tangents are not kept for corner-indexed meshes")
    colors = rgba8(record.colors)
    if colors is not None:
        if len(colors) != len(positions):
            raise malformed(
                f"{len(colors)} colors for {len(positions)} positions", ident
            )
        attrs["colors"] = colors[pos_idx]

    present = {k: v for k, v in attrs.items() if v is not None}
    columns = np.concatenate(
        [v.astype(np.float64).reshape(len(pos_idx), -1) for v in present.values()],
        axis=1,
    )
    rows, indices = unique_vertices(columns, pos_idx)
    return TriMesh(
        positions=attrs["positions"][rows],
        indices=indices,
        normals=None if attrs["normals"] is None else attrs["normals"][rows],
        uvs=None if attrs["uvs"] is None else attrs["uvs"][rows],
        colors=None if attrs["colors"] is None else attrs["colors"][rows],
        name=record.name,
    )


def _per_vertex(
    name: str, values: Optional[np.ndarray], count: int, ident: str
) -> Optional[np.ndarray]:
    if values is None:
        return None
    arr = np.asarray(values)
    if len(arr) != count:
        raise malformed(f"{name} has {len(arr)} entries for {count} vertices", ident)
    return arr


def build_mesh(
    record: MeshRecord, warn: Callable[[str], None], ident: str = ""
) -> TriMesh:
    """Indexed :class:`TriMesh` for one codec mesh record."""
    if record.layout is IndexLayout.CORNER:
        return _from_corners(record, warn, ident)
    positions = np.asarray(record.positions)
    count = len(positions)
    if record.layout is IndexLayout.FACE:
        if count % 3:
            raise malformed(f"{count} facet corners is not a multiple of 3", ident)
        indices = np.arange(count, dtype=np.uint32)
    elif record.indices is None:
        indices = np.arange(count, dtype=np.uint32)
    else:
        indices = np.asarray(record.indices).reshape(-1)
        if len(indices) % 3:
            raise malformed(
                f"index count {len(indices)} is not a multiple of 3", ident
            )
        _check_pool("vertex", indices.astype(np.int64), count, ident)
    return TriMesh(
        positions=positions,
        indices=indices,
        normals=_per_vertex("normals", record.normals, count, ident),
        tangents=_per_vertex("tangents", record.tangents, count, ident),
        uvs=_per_vertex("uvs", record.uvs, count, ident),
        colors=_per_vertex("colors", rgba8(record.colors), count, ident),
        name=record.name,
    )
