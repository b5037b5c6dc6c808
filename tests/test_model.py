"""Invariants of the canonical asset types."""

import numpy as np
import pytest

from asset_factory import TRIANGLE, checker, quad_mesh, triangle_mesh
from assetio.errors import MalformedData, MissingReference
from assetio.model import (
    CUBE_FACES,
    ColorSpace,
    Interpolation,
    KeyFrames,
    Material,
    MaterialFactor,
    Model,
    PointCloud,
    Primitive,
    Texture2D,
    TextureCube,
    TextureRef,
    TriMesh,
    VoxelGrid,
    to_linear,
)


def test_mesh_defaults_to_sequential_indices():
    mesh = triangle_mesh()
    assert mesh.indices.tolist() == [0, 1, 2]
    assert mesh.indices.dtype == np.uint32
    assert mesh.normals is None and mesh.uvs is None


def test_mesh_arrays_are_read_only():
    mesh = triangle_mesh()
    with pytest.raises(ValueError):
        mesh.positions[0, 0] = 5.0


def test_index_count_must_be_a_multiple_of_three():
    with pytest.raises(MalformedData):
        TriMesh(positions=TRIANGLE, indices=[0, 1])


def test_index_must_be_in_range():
    with pytest.raises(MalformedData, match="out of range"):
        TriMesh(positions=TRIANGLE, indices=[0, 1, 3])


def test_indices_must_be_non_negative_integers():
    with pytest.raises(MalformedData):
        TriMesh(positions=TRIANGLE, indices=[0, 1, -1])
    with pytest.raises(MalformedData):
        TriMesh(positions=TRIANGLE, indices=[0.0, 1.0, 2.0])


def test_attribute_length_must_match_vertex_count():
    with pytest.raises(MalformedData):
        triangle_mesh(normals=[[0, 0, 1]] * 2)


def test_rgb_colors_gain_opaque_alpha():
    colors = np.array([[1, 2, 3]] * 3, dtype=np.uint8)
    mesh = triangle_mesh(colors=colors)
    assert mesh.colors.tolist() == [[1, 2, 3, 255]] * 3


def test_float_colors_are_refused():
    with pytest.raises(MalformedData):
        triangle_mesh(colors=np.ones((3, 4), dtype=np.float32))


def test_double_precision_positions_are_kept():
    mesh = TriMesh(positions=np.asarray(TRIANGLE, dtype=np.float64))
    assert mesh.positions.dtype == np.float64


def test_mirroring_transform_flips_winding():
    mesh = triangle_mesh(normals=[[0, 0, 1]] * 3)
    mirrored = mesh.transformed(np.diag([-1.0, 1.0, 1.0, 1.0]))
    assert mirrored.indices.tolist() == [2, 1, 0]
    assert mirrored.positions[1].tolist() == [-1.0, 0.0, 0.0]
    assert np.allclose(mirrored.normals, [[0, 0, 1]] * 3)


def test_aabb():
    box = quad_mesh().aabb()
    assert box.min == (0.0, 0.0, 0.0)
    assert box.max == (1.0, 1.0, 0.0)
    assert box.center == (0.5, 0.5, 0.0)


def test_texture_pixel_formats():
    assert Texture2D(checker(channels=4)).pixel_format.name == "rgba8"
    floats = Texture2D(np.zeros((2, 2, 3), dtype=np.float32))
    assert floats.pixel_format.name == "rgb32f"
    assert floats.pixel_format.is_float
    with pytest.raises(MalformedData):
        Texture2D(np.zeros((2, 2, 3), dtype=np.int32))
    with pytest.raises(MalformedData):
        Texture2D(np.zeros((2, 2, 5), dtype=np.uint8))


def test_to_linear_keeps_alpha():
    pixels = np.array([[[255, 0, 128, 77]]], dtype=np.uint8)
    linear = to_linear(Texture2D(pixels))
    assert linear.color_space is ColorSpace.LINEAR
    assert linear.pixels.dtype == np.float32
    assert linear.pixels[0, 0, 0] == pytest.approx(1.0)
    assert linear.pixels[0, 0, 2] == pytest.approx(0.2158605, abs=1e-4)
    assert linear.pixels[0, 0, 3] == pytest.approx(77 / 255)
    assert to_linear(linear) is linear


def test_cube_from_faces():
    faces = [Texture2D(np.full((2, 2, 3), i, dtype=np.uint8)) for i in range(6)]
    cube = TextureCube.from_faces(faces, name="sky")
    assert cube.faces.shape == (6, 2, 2, 3)
    assert cube.face("top").pixels[0, 0, 0] == CUBE_FACES.index("top")
    assert cube.face(5).name == "back"


def test_cube_faces_must_agree():
    faces = [Texture2D(np.zeros((2, 2, 3), dtype=np.uint8)) for _ in range(5)]
    faces.append(Texture2D(np.zeros((4, 4, 3), dtype=np.uint8)))
    with pytest.raises(MalformedData, match="back"):
        TextureCube.from_faces(faces)
    with pytest.raises(MalformedData):
        TextureCube.from_faces(faces[:5])


def test_material_allows_one_texture_per_factor():
    with pytest.raises(MalformedData):
        Material(
            textures=(
                TextureRef("a.png", MaterialFactor.NORMAL),
                TextureRef("b.png", MaterialFactor.NORMAL),
            )
        )
    mat = Material().with_texture(MaterialFactor.NORMAL, "a.png")
    mat = mat.with_texture(MaterialFactor.NORMAL, "b.png")
    assert mat.texture_for(MaterialFactor.NORMAL) == "b.png"
    assert mat.without_textures().textures == ()


def test_model_checks_material_indices():
    with pytest.raises(MalformedData):
        Model(primitives=(Primitive(triangle_mesh(), 1),), materials=(Material(),))


def test_model_checks_texture_references():
    mat = Material(name="m").with_texture(MaterialFactor.BASE_COLOR, "gone.png")
    with pytest.raises(MissingReference):
        Model(primitives=(Primitive(triangle_mesh(), 0),), materials=(mat,))


def test_model_iterates_mesh_material_pairs():
    red = Material(name="red")
    model = Model(
        primitives=(Primitive(triangle_mesh(), 0), Primitive(quad_mesh())),
        materials=(red,),
    )
    pairs = list(model)
    assert pairs[0][1] is red
    assert pairs[1][1] is None
    assert model.vertex_count == 7
    assert model.triangle_count == 3


def test_point_cloud_and_voxel_grid():
    cloud = PointCloud(np.zeros((5, 3), dtype=np.float32))
    assert cloud.point_count == 5
    grid = VoxelGrid(np.zeros((2, 3, 4), dtype=np.uint8), voxel_size=(1, 2, 3))
    assert grid.dimensions == (4, 3, 2)
    assert grid.extent == (4.0, 6.0, 6.0)
    with pytest.raises(MalformedData):
        VoxelGrid(np.zeros((2, 3, 4), dtype=np.uint8), voxel_size=(1, 0, 1))


_QUARTER = [0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5)]


def test_key_frames_normalize_rotations():
    keys = KeyFrames([0.0, 1.0], [[0, 0, 0, 2], [0, 0, 3, 3]])
    assert np.allclose(keys.rotations, [[0, 0, 0, 1], _QUARTER])
    assert not keys.rotations.flags.writeable


def test_key_frames_slerp_and_clamp():
    keys = KeyFrames([1.0, 3.0], [[0, 0, 0, 1], [0, 0, 1, 0]])
    # Half of a 180 degree turn about +Z.
    assert np.allclose(keys.rotation(2.0), _QUARTER)
    assert np.allclose(keys.rotation(0.0), [0, 0, 0, 1])
    assert np.allclose(keys.rotation(9.0), [0, 0, 1, 0])
    turned = keys.transformation(2.0) @ [1.0, 0.0, 0.0, 1.0]
    assert np.allclose(turned, [0, 1, 0, 1], atol=1e-6)


def test_nearest_key_frames_step():
    keys = KeyFrames(
        [0.0, 1.0], [[0, 0, 0, 1], [0, 0, 1, 0]], Interpolation.NEAREST
    )
    assert np.allclose(keys.rotation(0.99), [0, 0, 0, 1])
    assert np.allclose(keys.rotation(1.0), [0, 0, 1, 0])


@pytest.mark.parametrize(
    "times, rotations",
    [
        ([], np.zeros((0, 4))),
        ([1.0, 0.0], [[0, 0, 0, 1]] * 2),
        ([0.0], [[0, 0, 0, 0]]),
        ([0.0, 1.0], [[0, 0, 0, 1]]),
    ],
    ids=["empty", "backwards", "zero", "short"],
)
def test_bad_key_frames(times, rotations):
    with pytest.raises(MalformedData):
        KeyFrames(times, rotations)


def test_model_checks_animation_targets():
    keys = KeyFrames([0.0], [[0, 0, 0, 1]], targets=(1,))
    with pytest.raises(MalformedData):
        Model(primitives=(Primitive(triangle_mesh()),), animations=(keys,))
    model = Model(
        primitives=(Primitive(triangle_mesh()), Primitive(quad_mesh())),
        animations=[keys],
    )
    assert model.animations == (keys,)
