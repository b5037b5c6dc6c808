"""Axis conversion, vertex merging and color-space tagging."""

import numpy as np
import pytest

from assetio.codecs import hdr, image
from assetio.codecs.records import IndexLayout, MeshRecord
from assetio.errors import MalformedData
from assetio.model import ColorSpace, MaterialFactor
from assetio.normalize.axes import flip_v, from_canonical, to_canonical
from assetio.normalize.color_space import default_color_space, usage_color_space
from assetio.normalize.indexing import build_mesh, rgba8, unique_vertices


def test_z_up_rotation_and_inverse():
    v = np.array([[1.0, 2.0, 3.0]])
    assert to_canonical(v, "z").tolist() == [[1.0, 3.0, -2.0]]
    assert from_canonical(to_canonical(v, "z"), "z").tolist() == v.tolist()
    assert to_canonical(v, "y") is v
    assert to_canonical(None, "z") is None


def test_tangent_handedness_survives_rotation():
    tangents = np.array([[0.0, 1.0, 0.0, -1.0]], dtype=np.float32)
    assert to_canonical(tangents, "z").tolist() == [[0.0, 0.0, -1.0, -1.0]]


def test_unknown_up_axis():
    with pytest.raises(ValueError):
        to_canonical(np.zeros((1, 3)), "x")


def test_flip_v():
    out = flip_v(np.array([[0.25, 0.25]], dtype=np.float64))
    assert out.dtype == np.float32
    assert out.tolist() == [[0.25, 0.75]]


def test_unique_vertices_order():
    # Corners: position indices 2, 0, 2, 1 where the two uses of 2 agree.
    columns = np.array([[2.0, 0.0], [0.0, 0.0], [2.0, 0.0], [1.0, 0.0]])
    rows, indices = unique_vertices(columns, np.array([2, 0, 2, 1]))
    assert rows.tolist() == [1, 3, 0]
    assert indices.tolist() == [2, 0, 2, 1]
    assert indices.dtype == np.uint32


def test_same_position_with_different_uvs_stays_split():
    columns = np.array([[0.0, 0.0], [0.0, 1.0]])
    rows, indices = unique_vertices(columns, np.array([0, 0]))
    assert rows.tolist() == [0, 1]
    assert indices.tolist() == [0, 1]


def test_rgba8():
    assert rgba8(None) is None
    floats = np.array([[1.0, 0.5, -1.0]])
    assert rgba8(floats).tolist() == [[255, 128, 0, 255]]
    rgba = np.array([[1, 2, 3, 4]], dtype=np.uint8)
    assert rgba8(rgba) is rgba


def test_face_layout_gets_one_vertex_per_corner():
    record = MeshRecord(positions=np.zeros((6, 3), dtype=np.float32), layout=IndexLayout.FACE)
    mesh = build_mesh(record, pytest.fail)
    assert mesh.indices.tolist() == [0, 1, 2, 3, 4, 5]


def test_partial_corner_normals_are_dropped_with_a_warning():
    warnings = []
    record = MeshRecord(
        positions=np.eye(3, dtype=np.float32),
        layout=IndexLayout.CORNER,
        indices=np.array([0, 1, 2]),
        normals=np.array([[0.0, 0.0, 1.0]], dtype=np.float32),
        normal_indices=np.array([0, -1, 0]),
    )
    mesh = build_mesh(record, warnings.append, "part.obj")
    assert mesh.normals is None
    assert warnings == ["part.obj: normals supplied for only some corners; dropped"]


def test_vertex_layout_checks_attribute_lengths():
    record = MeshRecord(
        positions=np.eye(3, dtype=np.float32),
        uvs=np.zeros((2, 2), dtype=np.float32),
    )
    with pytest.raises(MalformedData):
        build_mesh(record, pytest.fail)


@pytest.mark.parametrize(
    "pixels, codec, declared, expected",
    [
        (np.zeros((1, 1, 3), np.uint8), image.PNG, None, ColorSpace.NON_LINEAR),
        (np.zeros((1, 1, 1), np.uint8), image.PNG, None, ColorSpace.LINEAR),
        (np.zeros((1, 1, 3), np.float32), image.TIFF, None, ColorSpace.LINEAR),
        (np.zeros((1, 1, 3), np.float32), hdr.CODEC, None, ColorSpace.LINEAR),
        (np.zeros((1, 1, 1), np.uint8), image.PNG, ColorSpace.NON_LINEAR, ColorSpace.NON_LINEAR),
    ],
)
def test_default_color_space(pixels, codec, declared, expected):
    assert default_color_space(pixels, codec, declared) is expected


def test_usage_color_space():
    srgb = ColorSpace.NON_LINEAR
    assert usage_color_space(srgb, {MaterialFactor.NORMAL}) is ColorSpace.LINEAR
    assert (
        usage_color_space(srgb, {MaterialFactor.NORMAL, MaterialFactor.BASE_COLOR})
        is srgb
    )
    assert usage_color_space(srgb, set()) is srgb
