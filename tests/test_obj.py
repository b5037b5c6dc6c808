"""OBJ/MTL decoding through the public load path, and OBJ writing."""

import os

import numpy as np
import pytest

import assetio
from asset_factory import QUAD_MTL, QUAD_OBJ, checker, png_bytes, quad_mesh
from assetio.codecs.obj import mtl_references, obj_references, parse_mtl
from assetio.errors import MalformedData, MissingReference
from assetio.model import ColorSpace, MaterialFactor


def _write_quad(tmp_path, obj_text=QUAD_OBJ):
    (tmp_path / "quad.obj").write_text(obj_text)
    (tmp_path / "quad.mtl").write_text(QUAD_MTL)
    (tmp_path / "textures").mkdir()
    (tmp_path / "textures" / "albedo.png").write_bytes(png_bytes(checker()))


def test_references_pre_parse():
    assert obj_references(QUAD_OBJ.encode()) == ["quad.mtl"]
    mtl = b"newmtl a\nmap_Kd -s 1 1 1 -clamp on my tex.png\nnorm n.png\n"
    assert mtl_references(mtl) == ["my tex.png", "n.png"]


def test_quad_is_triangulated_and_merged(tmp_path):
    _write_quad(tmp_path)
    model = assetio.load(str(tmp_path / "quad.obj"))
    assert len(model) == 1
    mesh, material = next(iter(model))
    assert mesh.vertex_count == 4
    assert mesh.triangles().tolist() == [[0, 1, 2], [0, 2, 3]]
    assert mesh.normals.tolist() == [[0.0, 0.0, 1.0]] * 4
    # Bottom-left texture origin becomes top-left.
    assert mesh.uvs.tolist() == [[0.0, 1.0], [1.0, 1.0], [1.0, 0.0], [0.0, 0.0]]
    assert mesh.positions.dtype == np.float32
    assert material.name == "painted"
    assert material.base_color == pytest.approx((0.8, 0.2, 0.1, 1.0))
    assert material.roughness == pytest.approx(0.5)
    assert material.metallic == pytest.approx(0.25)


def test_material_texture_is_resolved_and_tagged(tmp_path):
    _write_quad(tmp_path)
    model = assetio.load("quad.obj", base=str(tmp_path))
    material = model.materials[0]
    texture_id = material.texture_for(MaterialFactor.BASE_COLOR)
    assert texture_id == os.path.join(str(tmp_path), "textures", "albedo.png")
    texture = model.textures[texture_id]
    assert texture.color_space is ColorSpace.NON_LINEAR
    assert np.array_equal(texture.pixels, checker())


def test_same_input_gives_same_vertex_order(tmp_path):
    _write_quad(tmp_path)
    first = assetio.load(str(tmp_path / "quad.obj"))
    second = assetio.load(str(tmp_path / "quad.obj"))
    a, b = first.primitives[0].mesh, second.primitives[0].mesh
    assert np.array_equal(a.positions, b.positions)
    assert np.array_equal(a.indices, b.indices)


def test_negative_indices_and_vertex_colors(tmp_path):
    text = (
        "v 0 0 0 1 0 0\n"
        "v 1 0 0 0 1 0\n"
        "v 0 1 0 0 0 1\n"
        "f -3 -2 -1\n"
    )
    (tmp_path / "tri.obj").write_text(text)
    mesh = assetio.load(str(tmp_path / "tri.obj")).primitives[0].mesh
    assert mesh.triangles().tolist() == [[0, 1, 2]]
    assert mesh.colors.tolist() == [
        [255, 0, 0, 255],
        [0, 255, 0, 255],
        [0, 0, 255, 255],
    ]


def test_precise_text_values_stay_double(tmp_path):
    (tmp_path / "p.obj").write_text("v 0.1 0 0\nv 1 0 0\nv 0 1 0\nf 1 2 3\n")
    mesh = assetio.load(str(tmp_path / "p.obj")).primitives[0].mesh
    assert mesh.positions.dtype == np.float64
    assert mesh.positions[0, 0] == 0.1


def test_index_out_of_range_is_malformed(tmp_path):
    (tmp_path / "bad.obj").write_text("v 0 0 0\nv 1 0 0\nf 1 2 3\n")
    with pytest.raises(MalformedData) as info:
        assetio.load(str(tmp_path / "bad.obj"))
    assert "line 3" in info.value.message


def test_missing_texture_fails_the_whole_load(tmp_path):
    (tmp_path / "quad.obj").write_text(QUAD_OBJ)
    (tmp_path / "quad.mtl").write_text(QUAD_MTL)
    with pytest.raises(MissingReference):
        assetio.load(str(tmp_path / "quad.obj"))


def test_mtl_fallbacks():
    (mat,) = parse_mtl(b"newmtl m\nKd 0.5 0.5 0.5\nKs 0.9 0.1 0.1\nNs 1.999\nTr 0.25\n")
    assert mat.base_color == pytest.approx((0.9, 0.1, 0.1, 0.75))
    assert mat.roughness == pytest.approx(1.0)


def test_mtl_cannot_be_loaded_on_its_own(tmp_path):
    (tmp_path / "only.mtl").write_text(QUAD_MTL.replace("map_Kd textures/albedo.png\n", ""))
    with pytest.raises(assetio.UnsupportedFormat):
        assetio.load(str(tmp_path / "only.mtl"))


def test_write_and_reload(tmp_path):
    texture = assetio.Texture2D(checker(), name="albedo")
    material = assetio.Material(name="paint", roughness=0.5).with_texture(
        MaterialFactor.BASE_COLOR, "albedo"
    )
    mesh = quad_mesh(uvs=[[0, 0], [1, 0], [1, 1], [0, 1]])
    model = assetio.Model(
        primitives=(assetio.Primitive(mesh, 0),),
        materials=(material,),
        textures={"albedo": texture},
    )
    files = assetio.save(model, str(tmp_path / "out" / "quad.obj"))
    out = tmp_path / "out"
    assert {os.path.basename(k) for k in files} == {
        "quad.obj",
        "quad.mtl",
        "quad_albedo.png",
    }
    assert (out / "quad_albedo.png").exists()

    again = assetio.load(str(out / "quad.obj"))
    reloaded = again.primitives[0].mesh
    assert np.array_equal(reloaded.positions, mesh.positions)
    assert np.array_equal(reloaded.indices, mesh.indices)
    assert np.allclose(reloaded.uvs, mesh.uvs)
    tex_id = again.materials[0].texture_for(MaterialFactor.BASE_COLOR)
    assert np.array_equal(again.textures[tex_id].pixels, checker())


def test_only_referenced_textures_are_written(tmp_path, reporter):
    material = (
        assetio.Material(name="paint")
        .with_texture(MaterialFactor.BASE_COLOR, "albedo")
        .with_texture(MaterialFactor.OCCLUSION, "ao")
    )
    model = assetio.Model(
        primitives=(assetio.Primitive(quad_mesh(), 0),),
        materials=(material,),
        textures={
            "albedo": assetio.Texture2D(checker(), name="albedo"),
            "ao": assetio.Texture2D(checker(channels=1), name="ao"),
        },
    )
    files = assetio.serialize(model, "quad.obj")
    assert sorted(files) == ["quad.mtl", "quad.obj", "quad_albedo.png"]
    assert reporter.warnings() == [
        "obj: material 'paint' drops its occlusion texture"
    ]
