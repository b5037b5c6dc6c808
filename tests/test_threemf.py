import io
import zipfile

import numpy as np
import pytest

import assetio
from asset_factory import TRIANGLE_3MF, quad_mesh, threemf_bytes
from assetio.errors import MalformedData


def test_units_axes_and_material(tmp_path):
    (tmp_path / "part.3mf").write_bytes(threemf_bytes(TRIANGLE_3MF))
    model = assetio.load(str(tmp_path / "part.3mf"))
    assert model.name == "bracket"
    mesh = model.primitives[0].mesh
    # Millimeters to meters, then Z-up to Y-up.
    assert np.allclose(mesh.positions, [[0, 0, 0], [1, 0, 0], [0, 0, -1]])
    assert mesh.indices.tolist() == [0, 1, 2]
    assert model.primitives[0].material == 0
    material = model.materials[0]
    assert material.name == "red"
    assert material.base_color == pytest.approx((1.0, 0.0, 0.0, 1.0))


def test_build_transform_is_baked(tmp_path):
    moved = TRIANGLE_3MF.replace(
        '<item objectid="2"/>',
        '<item objectid="2" transform="1 0 0 0 1 0 0 0 1 10 0 0"/>',
    )
    (tmp_path / "moved.3mf").write_bytes(threemf_bytes(moved))
    mesh = assetio.load(str(tmp_path / "moved.3mf")).primitives[0].mesh
    assert np.allclose(mesh.positions[:, 0], [0.01, 1.01, 0.01])


def test_mirroring_transform_flips_winding(tmp_path):
    mirrored = TRIANGLE_3MF.replace(
        '<item objectid="2"/>',
        '<item objectid="2" transform="-1 0 0 0 1 0 0 0 1 0 0 0"/>',
    )
    (tmp_path / "mirror.3mf").write_bytes(threemf_bytes(mirrored))
    mesh = assetio.load(str(tmp_path / "mirror.3mf")).primitives[0].mesh
    assert mesh.indices.tolist() == [2, 1, 0]


def test_components_reuse_a_mesh(tmp_path):
    assembly = TRIANGLE_3MF.replace(
        "  </resources>",
        '    <object id="3" type="model"><components>'
        '<component objectid="2"/>'
        '<component objectid="2" transform="1 0 0 0 1 0 0 0 1 0 0 5000"/>'
        "</components></object>\n  </resources>",
    ).replace('<item objectid="2"/>', '<item objectid="3"/>')
    (tmp_path / "asm.3mf").write_bytes(threemf_bytes(assembly))
    model = assetio.load(str(tmp_path / "asm.3mf"))
    assert len(model.primitives) == 2
    lifted = model.primitives[1].mesh.positions
    # Five meters up along the file's Z axis is canonical +Y.
    assert np.allclose(lifted[:, 1], [5, 5, 5])


def test_unknown_unit_is_malformed(tmp_path):
    bad = TRIANGLE_3MF.replace('unit="millimeter"', 'unit="furlong"')
    (tmp_path / "bad.3mf").write_bytes(threemf_bytes(bad))
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "bad.3mf"))


def test_not_a_zip_is_malformed(tmp_path):
    (tmp_path / "junk.3mf").write_bytes(b"PK\x03\x04 not really a zip")
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "junk.3mf"))


def test_write_and_reload(tmp_path):
    model = assetio.Model(
        primitives=(assetio.Primitive(quad_mesh(), 0),),
        materials=(assetio.Material(name="red", base_color=(1.0, 0.0, 0.0, 1.0)),),
        name="plate",
    )
    assetio.save(model, str(tmp_path / "plate.3mf"))
    with zipfile.ZipFile(io.BytesIO((tmp_path / "plate.3mf").read_bytes())) as archive:
        xml = archive.read("3D/3dmodel.model").decode("utf-8")
    assert 'unit="meter"' in xml

    again = assetio.load(str(tmp_path / "plate.3mf"))
    assert again.name == "plate"
    mesh = again.primitives[0].mesh
    assert np.array_equal(mesh.positions, quad_mesh().positions)
    assert mesh.indices.tolist() == [0, 1, 2, 0, 2, 3]
    assert again.materials[0].base_color == pytest.approx((1.0, 0.0, 0.0, 1.0))


def _package(parts):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, payload in parts.items():
            archive.writestr(name, payload)
    return buf.getvalue()


def test_truncated_relationships_are_malformed(tmp_path):
    data = _package(
        {"_rels/.rels": "<Relationships", "3D/3dmodel.model": TRIANGLE_3MF}
    )
    (tmp_path / "cut.3mf").write_bytes(data)
    with pytest.raises(MalformedData, match="relationships"):
        assetio.load(str(tmp_path / "cut.3mf"))


def test_truncated_model_is_malformed(tmp_path):
    data = _package({"3D/3dmodel.model": TRIANGLE_3MF[:200]})
    (tmp_path / "cut.3mf").write_bytes(data)
    with pytest.raises(MalformedData, match="not valid XML"):
        assetio.load(str(tmp_path / "cut.3mf"))


def test_corrupt_entry_is_malformed(tmp_path):
    data = bytearray(_package({"3D/3dmodel.model": TRIANGLE_3MF}))
    # Stored entries keep the XML verbatim; altering it breaks the CRC.
    at = data.index(b"bracket")
    data[at : at + 7] = b"BRACKET"
    (tmp_path / "crc.3mf").write_bytes(bytes(data))
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "crc.3mf"))
