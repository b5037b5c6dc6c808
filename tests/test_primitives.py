"""Built-in primitive meshes."""

import numpy as np
import pytest

from assetio.model import TriMesh


def _face_normals(mesh):
    tris = mesh.positions[mesh.triangles()].astype(np.float64)
    return np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])


def _unit(values):
    return np.allclose(np.linalg.norm(values, axis=1), 1.0, atol=1e-5)


def test_square():
    mesh = TriMesh.square()
    assert (mesh.vertex_count, mesh.triangle_count) == (4, 2)
    assert np.allclose(_face_normals(mesh)[:, 2], 4.0)
    assert np.allclose(mesh.normals, [[0, 0, 1]] * 4)
    assert mesh.tangents[:, 3].tolist() == [1.0] * 4
    # Canonical uvs start at the top row.
    assert mesh.uvs[0].tolist() == [0.0, 1.0]
    assert mesh.aabb().min == (-1.0, -1.0, 0.0)


def test_circle_is_a_fan():
    mesh = TriMesh.circle(8)
    assert (mesh.vertex_count, mesh.triangle_count) == (8, 6)
    assert np.all(_face_normals(mesh)[:, 2] > 0)
    assert np.allclose(np.linalg.norm(mesh.positions, axis=1), 1.0)


def test_sphere_counts_and_outward_winding():
    n = 4
    mesh = TriMesh.sphere(n)
    assert mesh.vertex_count == 2 + (n - 1) * 2 * n
    assert mesh.triangle_count == 4 * n * (n - 1)
    assert _unit(mesh.positions)
    assert np.array_equal(mesh.normals, mesh.positions)
    centers = mesh.positions[mesh.triangles()].mean(axis=1)
    assert np.all(np.einsum("ij,ij->i", _face_normals(mesh), centers) > 0)


def test_cube_faces_point_outwards():
    mesh = TriMesh.cube()
    assert (mesh.vertex_count, mesh.triangle_count) == (36, 12)
    assert mesh.aabb().min == (-1.0, -1.0, -1.0)
    assert mesh.aabb().max == (1.0, 1.0, 1.0)
    centers = mesh.positions[mesh.triangles()].mean(axis=1)
    # Each corner's normal is the axis its face lies on.
    assert np.all(np.abs(mesh.normals).max(axis=1) == 1.0)
    assert np.all(np.einsum("ij,ij->i", _face_normals(mesh), centers) > 0)
    assert mesh.tangents.shape == (36, 4)
    assert np.all(np.abs(mesh.tangents[:, 3]) == 1.0)
    assert mesh.uvs.min() == 0.0 and mesh.uvs.max() == 1.0


def test_cylinder_normals_are_radial():
    mesh = TriMesh.cylinder(6)
    assert (mesh.vertex_count, mesh.triangle_count) == (12, 12)
    assert np.allclose(mesh.normals[:, 0], 0.0)
    assert np.allclose(mesh.normals[:, 1:], mesh.positions[:, 1:], atol=1e-6)
    assert mesh.aabb().min[0] == 0.0 and mesh.aabb().max[0] == 1.0


def test_cone_narrows_to_a_point():
    mesh = TriMesh.cone(6)
    assert mesh.vertex_count == 12
    assert mesh.triangle_count == 6
    assert np.allclose(mesh.positions[6:], [[1, 0, 0]] * 6)
    assert _unit(mesh.normals)
    assert np.allclose(mesh.normals[:, 0], np.sqrt(0.5))
    centers = mesh.positions[mesh.triangles()].mean(axis=1)
    radial = centers * [0.0, 1.0, 1.0]
    assert np.all(np.einsum("ij,ij->i", _face_normals(mesh), radial) > 0)


def test_arrow_joins_tail_and_head():
    mesh = TriMesh.arrow(0.6, 0.3, 8)
    assert mesh.vertex_count == 16 + 16
    assert mesh.triangle_count == 16 + 8
    box = mesh.aabb()
    assert box.min[0] == pytest.approx(0.0)
    assert box.max[0] == pytest.approx(1.0)
    tail = mesh.positions[:16]
    assert np.allclose(np.linalg.norm(tail[:, 1:], axis=1), 0.3, atol=1e-6)
    assert np.allclose(tail[8:, 0], 0.6)
    assert _unit(mesh.normals)


@pytest.mark.parametrize(
    "build",
    [
        lambda: TriMesh.circle(2),
        lambda: TriMesh.sphere(1),
        lambda: TriMesh.cylinder(2),
        lambda: TriMesh.arrow(1.0, 0.5, 8),
        lambda: TriMesh.arrow(0.5, 0.0, 8),
    ],
    ids=["circle", "sphere", "cylinder", "tail-length", "tail-radius"],
)
def test_bad_arguments(build):
    with pytest.raises(ValueError):
        build()
