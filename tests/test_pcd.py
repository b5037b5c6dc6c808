import struct

import numpy as np
import pytest

import assetio
from asset_factory import lzf_literals, pcd_header
from assetio.codecs.pcd import lzf_decompress
from assetio.errors import MalformedData


def test_ascii_points_with_integer_rgb(tmp_path):
    body = b"0 0 0 16711680\n1 2 3 65280\n"
    (tmp_path / "p.pcd").write_bytes(
        pcd_header("x y z rgb", "4 4 4 4", "F F F U", 2, "ascii") + body
    )
    cloud = assetio.load(str(tmp_path / "p.pcd"))
    assert isinstance(cloud, assetio.PointCloud)
    assert cloud.positions.tolist() == [[0, 0, 0], [1, 2, 3]]
    assert cloud.colors.tolist() == [[255, 0, 0, 255], [0, 255, 0, 255]]
    assert cloud.name == "p"


def test_binary_points_with_normals(tmp_path):
    rows = np.array(
        [(1.0, 2.0, 3.0, 0.0, 1.0, 0.0)],
        dtype=[(n, "<f4") for n in ("x", "y", "z", "normal_x", "normal_y", "normal_z")],
    )
    header = pcd_header(
        "x y z normal_x normal_y normal_z", "4 4 4 4 4 4", "F F F F F F", 1, "binary"
    )
    (tmp_path / "n.pcd").write_bytes(header + rows.tobytes())
    cloud = assetio.load(str(tmp_path / "n.pcd"))
    assert cloud.positions.tolist() == [[1, 2, 3]]
    assert cloud.normals.tolist() == [[0, 1, 0]]
    assert cloud.colors is None


def test_binary_compressed_is_stored_by_column(tmp_path):
    xs = np.array([1, 2, 3], dtype="<f4")
    ys = np.array([4, 5, 6], dtype="<f4")
    zs = np.array([7, 8, 9], dtype="<f4")
    raw = xs.tobytes() + ys.tobytes() + zs.tobytes()
    packed = lzf_literals(raw)
    body = struct.pack("<II", len(packed), len(raw)) + packed
    header = pcd_header("x y z", "4 4 4", "F F F", 3, "binary_compressed")
    (tmp_path / "c.pcd").write_bytes(header + body)
    cloud = assetio.load(str(tmp_path / "c.pcd"))
    assert cloud.positions.tolist() == [[1, 4, 7], [2, 5, 8], [3, 6, 9]]


def test_lzf_back_reference():
    # Literal "ab", then copy 4 bytes from 2 back: "ababab".
    stream = bytes([1]) + b"ab" + bytes([(2 << 5) | 0, 1])
    assert lzf_decompress(stream, 6) == b"ababab"
    with pytest.raises(ValueError):
        lzf_decompress(stream, 7)


def test_missing_axis_is_malformed(tmp_path):
    (tmp_path / "bad.pcd").write_bytes(pcd_header("x y", "4 4", "F F", 1, "ascii") + b"0 0\n")
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "bad.pcd"))


def test_short_binary_payload_is_malformed(tmp_path):
    header = pcd_header("x y z", "4 4 4", "F F F", 2, "binary")
    (tmp_path / "short.pcd").write_bytes(header + b"\0" * 12)
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "short.pcd"))


def test_write_and_reload_keeps_double_precision(tmp_path):
    positions = np.array([[0.1, 0.2, 0.3], [1.0, 2.0, 3.0]], dtype=np.float64)
    colors = np.array([[10, 20, 30, 255], [40, 50, 60, 255]], dtype=np.uint8)
    assetio.save(assetio.PointCloud(positions, colors), str(tmp_path / "out.pcd"))
    cloud = assetio.load(str(tmp_path / "out.pcd"))
    assert cloud.positions.dtype == np.float64
    assert np.array_equal(cloud.positions, positions)
    assert np.array_equal(cloud.colors, colors)
