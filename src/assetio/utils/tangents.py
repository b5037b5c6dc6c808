"""Opt-in generation of vertex normals and tangents.

Nothing in the loading path calls these; a mesh without normals stays
without normals until the caller asks for them.
"""

from __future__ import annotations

import numpy as np

from ..errors import malformed
from ..model.geometry import TriMesh

__all__ = ["compute_normals", "compute_tangents", "vertex_normals"]


def vertex_normals(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area-weighted per-vertex normals for a triangle list."""
    vcount = int(positions.shape[0])
    normals = np.zeros((vcount, 3), dtype=np.float64)
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    tri_count = idx.size // 3
    if vcount == 0:
        return normals.astype(np.float32)
    if tri_count == 0:
        normals[:, 1] = 1.0
        return normals.astype(np.float32)

    idx = idx[: tri_count * 3].reshape((tri_count, 3))
    pos = positions.astype(np.float64)
    p0 = pos[idx[:, 0]]
    p1 = pos[idx[:, 1]]
    p2 = pos[idx[:, 2]]
    face_n = np.cross(p1 - p0, p2 - p0)

    # Accumulate face normals to vertices
    for k in range(3):
        np.add.at(normals, idx[:, k], face_n)

    lens = np.linalg.norm(normals, axis=1)
    good = lens > 1e-20
    normals[good] /= lens[good][:, None]
    # Unreferenced or degenerate vertices point up.
    normals[~good] = (0.0, 1.0, 0.0)
    return normals.astype(np.float32)


def compute_normals(mesh: TriMesh) -> TriMesh:
    """Return ``mesh`` with smooth normals replacing any it had."""
    return mesh.with_attributes(
        normals=vertex_normals(mesh.positions, mesh.indices)
    )


def _orthonormal(normals: np.ndarray) -> np.ndarray:
    # Any unit vector perpendicular to each normal.
    helper = np.where(
        np.abs(normals[:, :1]) < 0.9,
        np.array([[1.0, 0.0, 0.0]]),
        np.array([[0.0, 1.0, 0.0]]),
    )
    t = np.cross(helper, normals)
    lens = np.linalg.norm(t, axis=1, keepdims=True)
    lens[lens == 0] = 1.0
    return t / lens


def compute_tangents(mesh: TriMesh) -> TriMesh:
    """Per-vertex tangents from uv gradients.

    Tangents are accumulated per triangle, Gram-Schmidt orthogonalized
    against the vertex normal and carry handedness in ``w``. Requires
    normals and uvs.
    """
    if mesh.normals is None or mesh.uvs is None:
        raise malformed(
            f"mesh '{mesh.name}' needs normals and uvs to compute tangents"
        )
    n = mesh.vertex_count
    tris = mesh.triangles().astype(np.int64)
    pos = mesh.positions.astype(np.float64)
    uv = mesh.uvs.astype(np.float64)
    normals = mesh.normals.astype(np.float64)

    e1 = pos[tris[:, 1]] - pos[tris[:, 0]]
    e2 = pos[tris[:, 2]] - pos[tris[:, 0]]
    d1 = uv[tris[:, 1]] - uv[tris[:, 0]]
    d2 = uv[tris[:, 2]] - uv[tris[:, 0]]
    det = d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1]
    usable = np.abs(det) > 1e-20
    r = np.zeros_like(det)
    r[usable] = 1.0 / det[usable]
    sdir = (e1 * d2[:, 1:2] - e2 * d1[:, 1:2]) * r[:, None]
    tdir = (e2 * d1[:, 0:1] - e1 * d2[:, 0:1]) * r[:, None]

    tan = np.zeros((n, 3), dtype=np.float64)
    bitan = np.zeros((n, 3), dtype=np.float64)
    for k in range(3):
        np.add.at(tan, tris[:, k], sdir)
        np.add.at(bitan, tris[:, k], tdir)

    t = tan - normals * np.sum(normals * tan, axis=1, keepdims=True)
    lens = np.linalg.norm(t, axis=1)
    good = lens > 1e-20
    t[good] /= lens[good][:, None]
    if not good.all():
        t[~good] = _orthonormal(normals[~good])
    w = np.where(np.sum(np.cross(normals, t) * bitan, axis=1) < 0.0, -1.0, 1.0)
    tangents = np.concatenate([t, w[:, None]], axis=1).astype(np.float32)
    return mesh.with_attributes(tangents=tangents)
