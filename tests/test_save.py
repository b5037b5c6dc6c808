"""Denormalization: what each target accepts and what it refuses."""

import os

import numpy as np
import pytest

import assetio
from asset_factory import TRIANGLE, checker, triangle_mesh
from assetio.errors import UnrepresentableData


@pytest.mark.parametrize(
    "asset",
    [
        assetio.VoxelGrid(np.zeros((1, 1, 1), dtype=np.uint8)),
        assetio.PointCloud(np.zeros((1, 3), dtype=np.float32)),
        assetio.TextureCube(np.zeros((6, 2, 2, 3), dtype=np.uint8)),
    ],
    ids=["voxels", "points", "cube"],
)
def test_non_images_cannot_be_written_as_png(tmp_path, asset):
    with pytest.raises(UnrepresentableData) as info:
        assetio.save(asset, str(tmp_path / "out.png"))
    assert info.value.target_format == "png"
    assert info.value.code == "E_UNREPRESENTABLE"
    assert os.listdir(tmp_path) == []


def test_image_cannot_be_written_as_geometry(tmp_path):
    with pytest.raises(UnrepresentableData, match="Texture2D"):
        assetio.save(assetio.Texture2D(checker()), str(tmp_path / "tex.obj"))


def test_unknown_target_extension(tmp_path):
    with pytest.raises(assetio.UnsupportedFormat):
        assetio.save(triangle_mesh(), str(tmp_path / "drawing.svg"))


def test_read_only_format(tmp_path):
    with pytest.raises(UnrepresentableData) as info:
        assetio.save(assetio.Model(), str(tmp_path / "lib.mtl"))
    assert info.value.target_format == "mtl"


def test_serialize_stays_in_memory(tmp_path):
    files = assetio.serialize(triangle_mesh(), str(tmp_path / "tri.stl"))
    assert list(files) == [os.path.join(str(tmp_path), "tri.stl")]
    assert os.listdir(tmp_path) == []
    # What serialize produced loads back through deserialize.
    model = assetio.deserialize(files, str(tmp_path / "tri.stl"))
    assert model.triangle_count == 1


def test_bare_mesh_is_written_as_a_model(tmp_path):
    assetio.save(triangle_mesh(name="wing"), str(tmp_path / "wing.glb"))
    model = assetio.load(str(tmp_path / "wing.glb"))
    assert isinstance(model, assetio.Model)
    assert model.name == "wing"


def test_double_positions_are_narrowed_for_glb(tmp_path, reporter):
    mesh = assetio.TriMesh(np.asarray(TRIANGLE, dtype=np.float64) + 0.1)
    assetio.save(mesh, str(tmp_path / "tri.glb"))
    again = assetio.load(str(tmp_path / "tri.glb")).primitives[0].mesh
    assert again.positions.dtype == np.float32
    assert np.allclose(again.positions, mesh.positions)
    assert any("float64 positions narrowed to float32" in w for w in reporter.warnings())


def test_double_positions_survive_obj(tmp_path, reporter):
    mesh = assetio.TriMesh(np.asarray(TRIANGLE, dtype=np.float64) + 0.1)
    assetio.save(mesh, str(tmp_path / "tri.obj"))
    again = assetio.load(str(tmp_path / "tri.obj")).primitives[0].mesh
    assert np.array_equal(again.positions, mesh.positions)
    assert reporter.warnings() == []
