"""Triangle meshes and point clouds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..errors import malformed
from .arrays import FLOAT_DTYPES, attribute, frozen

__all__ = ["TriMesh", "PointCloud", "AxisAlignedBox"]


@dataclass(frozen=True, slots=True)
class AxisAlignedBox:
    min: Tuple[float, float, float]
    max: Tuple[float, float, float]

    @property
    def size(self) -> Tuple[float, float, float]:
        return tuple(b - a for a, b in zip(self.min, self.max))  # type: ignore[return-value]

    @property
    def center(self) -> Tuple[float, float, float]:
        return tuple((a + b) * 0.5 for a, b in zip(self.min, self.max))  # type: ignore[return-value]


def _positions(values) -> np.ndarray:
    arr = np.asarray(values)
    if arr.dtype not in FLOAT_DTYPES:
        arr = arr.astype(np.float32)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise malformed(f"positions must have shape (n, 3), got {arr.shape}")
    return frozen(arr)


def _colors(values, count: int) -> Optional[np.ndarray]:
    if values is None:
        return None
    arr = np.asarray(values)
    if arr.dtype != np.uint8:
        raise malformed("colors must be 8-bit sRGBA (uint8)")
    if arr.ndim == 2 and arr.shape[1] == 3:
        arr = np.concatenate(
            [arr, np.full((arr.shape[0], 1), 255, dtype=np.uint8)], axis=1
        )
    return attribute("colors", arr, count, 4, (np.uint8,))


def _bounds(positions: np.ndarray) -> AxisAlignedBox:
    if len(positions) == 0:
        return AxisAlignedBox((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
    lo = positions.min(axis=0)
    hi = positions.max(axis=0)
    return AxisAlignedBox(
        tuple(float(v) for v in lo), tuple(float(v) for v in hi)  # type: ignore[arg-type]
    )


def _subdivisions(value: int, minimum: int) -> int:
    n = int(value)
    if n < minimum:
        raise ValueError(f"angle_subdivisions must be at least {minimum}")
    return n


def _tube(angle_subdivisions: int, tip_radius: float, name: str) -> "TriMesh":
    """Side of a cylinder or cone along +X, radius 1 at ``x=0``."""
    n = _subdivisions(angle_subdivisions, 3)
    angles = 2.0 * np.pi * np.arange(n) / n
    ring = np.stack([np.zeros(n), np.cos(angles), np.sin(angles)], axis=1)
    tip = ring * [0.0, tip_radius, tip_radius] + [1.0, 0.0, 0.0]
    j = np.arange(n)
    j1 = (j + 1) % n
    tris = [np.stack([j, j1, n + j1], axis=1)]
    if tip_radius > 0:
        tris.append(np.stack([j, n + j1, n + j], axis=1))
    # Surface normal leans towards +X by the slope of the side.
    slope = 1.0 - tip_radius
    normals = ring + [slope, 0.0, 0.0]
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    return TriMesh(
        positions=np.concatenate([ring, tip]).astype(np.float32),
        indices=np.concatenate(tris).reshape(-1),
        normals=np.concatenate([normals, normals]).astype(np.float32),
        name=name,
    )


# Six faces, two triangles each: +Y, -Y, -Z, +Z, +X, -X.
_CUBE_POSITIONS = (
    (1, 1, -1), (-1, 1, -1), (1, 1, 1), (-1, 1, 1), (1, 1, 1), (-1, 1, -1),
    (-1, -1, -1), (1, -1, -1), (1, -1, 1), (1, -1, 1), (-1, -1, 1), (-1, -1, -1),
    (1, -1, -1), (-1, -1, -1), (1, 1, -1), (-1, 1, -1), (1, 1, -1), (-1, -1, -1),
    (-1, -1, 1), (1, -1, 1), (1, 1, 1), (1, 1, 1), (-1, 1, 1), (-1, -1, 1),
    (1, -1, -1), (1, 1, -1), (1, 1, 1), (1, 1, 1), (1, -1, 1), (1, -1, -1),
    (-1, 1, -1), (-1, -1, -1), (-1, 1, 1), (-1, -1, 1), (-1, 1, 1), (-1, -1, -1),
)


@dataclass(frozen=True, slots=True, eq=False)
class TriMesh:
    """Indexed triangle list.

    Optional attributes are ``None`` when the source did not supply them.
    Positions keep the precision they were created with (float32 or
    float64); normals, tangents and uvs are float32; colors are sRGBA
    bytes. ``indices`` defaults to ``0..n-1`` for non-indexed input.
    """

    positions: np.ndarray
    indices: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None
    colors: Optional[np.ndarray] = None
    name: str = ""

    def __post_init__(self) -> None:
        positions = _positions(self.positions)
        n = len(positions)
        if self.indices is None:
            indices = np.arange(n, dtype=np.uint32)
        else:
            raw = np.asarray(self.indices).reshape(-1)
            if raw.size and raw.dtype.kind not in "ui":
                raise malformed("indices must be integers")
            if raw.size and raw.min() < 0:
                raise malformed("indices must be non-negative")
            indices = raw.astype(np.uint32)
        set_ = object.__setattr__
        set_(self, "positions", positions)
        set_(self, "indices", frozen(indices))
        floats = (np.float32,)
        set_(self, "normals", attribute("normals", self.normals, n, 3, floats))
        set_(
            self, "tangents", attribute("tangents", self.tangents, n, 4, floats)
        )
        set_(self, "uvs", attribute("uvs", self.uvs, n, 2, floats))
        set_(self, "colors", _colors(self.colors, n))
        self.validate()

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def validate(self) -> None:
        """Raise MalformedData unless the index invariants hold."""
        if len(self.indices) % 3 != 0:
            raise malformed(
                f"index count {len(self.indices)} is not a multiple of 3"
            )
        if len(self.indices) and int(self.indices.max()) >= self.vertex_count:
            raise malformed(
                f"index {int(self.indices.max())} out of range for "
                f"{self.vertex_count} vertices"
            )

    def triangles(self) -> np.ndarray:
        return self.indices.reshape(-1, 3)

    def aabb(self) -> AxisAlignedBox:
        return _bounds(self.positions)

    def with_attributes(self, **changes) -> "TriMesh":
        values = {
            "positions": self.positions,
            "indices": self.indices,
            "normals": self.normals,
            "tangents": self.tangents,
            "uvs": self.uvs,
            "colors": self.colors,
            "name": self.name,
        }
        values.update(changes)
        return TriMesh(**values)

    def transformed(self, matrix) -> "TriMesh":
        """Apply a 4x4 affine transform (column-vector convention)."""
        m = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
        pos = self.positions.astype(np.float64) @ m[:3, :3].T + m[:3, 3]
        changes = {"positions": pos.astype(self.positions.dtype)}
        linear = m[:3, :3]
        if self.normals is not None:
            normal_m = np.linalg.inv(linear).T
            nrm = self.normals.astype(np.float64) @ normal_m.T
            lens = np.linalg.norm(nrm, axis=1, keepdims=True)
            lens[lens == 0] = 1.0
            changes["normals"] = (nrm / lens).astype(np.float32)
        if self.tangents is not None:
            tan = self.tangents.astype(np.float64)
            xyz = tan[:, :3] @ linear.T
            lens = np.linalg.norm(xyz, axis=1, keepdims=True)
            lens[lens == 0] = 1.0
            changes["tangents"] = np.concatenate(
                [xyz / lens, tan[:, 3:]], axis=1
            ).astype(np.float32)
        if np.linalg.det(linear) < 0:
            tris = self.triangles()[:, ::-1]
            changes["indices"] = tris.reshape(-1)
        return self.with_attributes(**changes)

    # Primitives ----------------------------------------------------------------
    @classmethod
    def square(cls) -> "TriMesh":
        """Unit square in the xy-plane spanning ``[-1, 1]``, facing +Z."""
        positions = np.array(
            [[-1, -1, 0], [1, -1, 0], [1, 1, 0], [-1, 1, 0]], dtype=np.float32
        )
        return cls(
            positions=positions,
            indices=[0, 1, 2, 2, 3, 0],
            normals=np.tile(np.float32([0, 0, 1]), (4, 1)),
            tangents=np.tile(np.float32([1, 0, 0, 1]), (4, 1)),
            uvs=np.array([[0, 1], [1, 1], [1, 0], [0, 0]], dtype=np.float32),
            name="square",
        )

    @classmethod
    def circle(cls, angle_subdivisions: int) -> "TriMesh":
        """Disc of radius 1 in the xy-plane, facing +Z, as a triangle fan."""
        n = _subdivisions(angle_subdivisions, 3)
        angles = 2.0 * np.pi * np.arange(n) / n
        positions = np.stack(
            [np.cos(angles), np.sin(angles), np.zeros(n)], axis=1
        )
        j = np.arange(1, n - 1)
        indices = np.stack([np.zeros_like(j), j, j + 1], axis=1)
        return cls(
            positions=positions.astype(np.float32),
            indices=indices.reshape(-1),
            normals=np.tile(np.float32([0, 0, 1]), (n, 1)),
            name="circle",
        )

    @classmethod
    def sphere(cls, angle_subdivisions: int) -> "TriMesh":
        """Sphere of radius 1 around the origin with poles on the z-axis.

        ``angle_subdivisions`` rings between the poles, twice as many
        segments around.
        """
        n = _subdivisions(angle_subdivisions, 2)
        ring = 2 * n
        theta = np.pi * np.arange(1, n) / n
        phi = np.pi * np.arange(ring) / n
        st, ct = np.sin(theta)[:, None], np.cos(theta)[:, None]
        rings = np.stack(
            [
                st * np.cos(phi)[None, :],
                st * np.sin(phi)[None, :],
                np.broadcast_to(ct, (n - 1, ring)),
            ],
            axis=2,
        ).reshape(-1, 3)
        positions = np.concatenate([[[0, 0, 1]], rings, [[0, 0, -1]]])
        bottom = len(positions) - 1
        j = np.arange(ring)
        j1 = (j + 1) % ring
        tris = [np.stack([np.zeros(ring, dtype=np.int64), 1 + j, 1 + j1], axis=1)]
        for i in range(n - 2):
            i0 = 1 + i * ring
            i1 = i0 + ring
            tris.append(np.stack([i0 + j, i1 + j1, i0 + j1], axis=1))
            tris.append(np.stack([i1 + j1, i0 + j, i1 + j], axis=1))
        last = 1 + (n - 2) * ring
        tris.append(np.stack([last + j, np.full(ring, bottom), last + j1], axis=1))
        positions = positions.astype(np.float32)
        return cls(
            positions=positions,
            indices=np.concatenate(tris).reshape(-1),
            normals=positions,
            name="sphere",
        )

    @classmethod
    def cube(cls) -> "TriMesh":
        """Axis-aligned cube spanning ``[-1, 1]``, six unconnected faces.

        Faces carry flat normals, tangents and an unfolded-cross uv layout.
        """
        from ..utils.tangents import compute_normals, compute_tangents

        t, tt = 1.0 / 3.0, 2.0 / 3.0
        positions = np.array(_CUBE_POSITIONS, dtype=np.float32)
        uvs = np.array(
            [
                # +Y
                [0.25, 0], [0.25, t], [0.5, 0], [0.5, t], [0.5, 0], [0.25, t],
                # -Y
                [0.25, tt], [0.25, 1], [0.5, 1], [0.5, 1], [0.5, tt], [0.25, tt],
                # -Z
                [0, tt], [0.25, tt], [0, t], [0.25, t], [0, t], [0.25, tt],
                # +Z
                [0.5, tt], [0.75, tt], [0.75, t], [0.75, t], [0.5, t], [0.5, tt],
                # +X
                [1, tt], [1, t], [0.75, t], [0.75, t], [0.75, tt], [1, tt],
                # -X
                [0.25, t], [0.25, tt], [0.5, t], [0.5, tt], [0.5, t], [0.25, tt],
            ],
            dtype=np.float32,
        )
        mesh = cls(positions=positions, uvs=uvs, name="cube")
        return compute_tangents(compute_normals(mesh))

    @classmethod
    def cylinder(cls, angle_subdivisions: int) -> "TriMesh":
        """Open tube of radius 1 along +X from ``x=0`` to ``x=1``."""
        return _tube(angle_subdivisions, tip_radius=1.0, name="cylinder")

    @classmethod
    def cone(cls, angle_subdivisions: int) -> "TriMesh":
        """Open cone along +X, radius 1 at ``x=0`` narrowing to a point at ``x=1``."""
        return _tube(angle_subdivisions, tip_radius=0.0, name="cone")

    @classmethod
    def arrow(
        cls, tail_length: float, tail_radius: float, angle_subdivisions: int
    ) -> "TriMesh":
        """Arrow along +X from 0 to 1: a cylinder tail capped by a cone head.

        ``tail_length`` and ``tail_radius`` are fractions in ``(0, 1)``.
        """
        if not (0.0 < tail_length < 1.0 and 0.0 < tail_radius < 1.0):
            raise ValueError("tail_length and tail_radius must lie in (0, 1)")
        tail = cls.cylinder(angle_subdivisions).transformed(
            np.diag([tail_length, tail_radius, tail_radius, 1.0])
        )
        head_m = np.diag([1.0 - tail_length, 1.0, 1.0, 1.0])
        head_m[0, 3] = tail_length
        head = cls.cone(angle_subdivisions).transformed(head_m)
        return cls(
            positions=np.concatenate([tail.positions, head.positions]),
            indices=np.concatenate(
                [tail.indices, head.indices + tail.vertex_count]
            ),
            normals=np.concatenate([tail.normals, head.normals]),
            name="arrow",
        )


@dataclass(frozen=True, slots=True, eq=False)
class PointCloud:
    positions: np.ndarray
    colors: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    name: str = ""

    def __post_init__(self) -> None:
        positions = _positions(self.positions)
        n = len(positions)
        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "colors", _colors(self.colors, n))
        object.__setattr__(
            self,
            "normals",
            attribute("normals", self.normals, n, 3, (np.float32,)),
        )

    @property
    def point_count(self) -> int:
        return len(self.positions)

    def aabb(self) -> AxisAlignedBox:
        return _bounds(self.positions)
