import numpy as np
import pytest

import assetio
from asset_factory import hdr_rle_bytes
from assetio.codecs.hdr import float_to_rgbe, rgbe_to_float
from assetio.errors import MalformedData
from assetio.model import ColorSpace


def _flat_hdr(resolution: str, quads) -> bytes:
    header = b"#?RADIANCE\nFORMAT=32-bit_rle_rgbe\n\n" + resolution.encode() + b"\n"
    return header + bytes(v for quad in quads for v in quad)


def test_run_length_scanlines(tmp_path):
    (tmp_path / "sky.hdr").write_bytes(hdr_rle_bytes(8, 2, (128, 64, 32, 129)))
    texture = assetio.load(str(tmp_path / "sky.hdr"))
    assert texture.pixels.shape == (2, 8, 3)
    assert texture.pixels.dtype == np.float32
    assert texture.color_space is ColorSpace.LINEAR
    assert np.all(texture.pixels == np.array([1.0, 0.5, 0.25], dtype=np.float32))


def test_bottom_up_rows_are_flipped(tmp_path):
    red, green = (128, 0, 0, 129), (0, 128, 0, 129)
    (tmp_path / "up.hdr").write_bytes(_flat_hdr("+Y 2 +X 2", [red, red, green, green]))
    pixels = assetio.load(str(tmp_path / "up.hdr")).pixels
    assert pixels[0, 0].tolist() == [0.0, 1.0, 0.0]
    assert pixels[1, 0].tolist() == [1.0, 0.0, 0.0]


def test_right_to_left_columns_are_flipped(tmp_path):
    red, green = (128, 0, 0, 129), (0, 128, 0, 129)
    (tmp_path / "rtl.hdr").write_bytes(_flat_hdr("-Y 1 -X 2", [red, green]))
    pixels = assetio.load(str(tmp_path / "rtl.hdr")).pixels
    assert pixels[0].tolist() == [[0.0, 1.0, 0.0], [1.0, 0.0, 0.0]]


def test_truncated_run_is_malformed(tmp_path):
    (tmp_path / "cut.hdr").write_bytes(hdr_rle_bytes(8, 2, (128, 64, 32, 129))[:-3])
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "cut.hdr"))


def test_unsupported_pixel_format(tmp_path):
    data = b"#?RADIANCE\nFORMAT=32-bit_rle_xyze\n\n-Y 1 +X 1\n\x80\x80\x80\x81"
    (tmp_path / "xyz.hdr").write_bytes(data)
    with pytest.raises(MalformedData, match="xyze"):
        assetio.load(str(tmp_path / "xyz.hdr"))


def test_rgbe_conversion_is_exact_for_powers_of_two():
    rgbe = float_to_rgbe(np.array([[1.0, 0.0, 0.0], [2.0, 1.0, 0.5]]))
    assert rgbe.tolist() == [[128, 0, 0, 129], [128, 64, 32, 130]]
    assert rgbe_to_float(rgbe).tolist() == [[1.0, 0.0, 0.0], [2.0, 1.0, 0.5]]
    assert float_to_rgbe(np.zeros((1, 3))).tolist() == [[0, 0, 0, 0]]


def test_write_and_reload(tmp_path):
    pixels = np.array(
        [[[2.0, 1.0, 0.5], [0.25, 0.125, 0.0]], [[0.0, 0.0, 0.0], [4.0, 4.0, 4.0]]],
        dtype=np.float32,
    )
    assetio.save(assetio.Texture2D(pixels, ColorSpace.LINEAR), str(tmp_path / "o.hdr"))
    again = assetio.load(str(tmp_path / "o.hdr"))
    assert np.array_equal(again.pixels, pixels)


def test_gamma_encoded_bytes_are_linearized_for_hdr(tmp_path):
    pixels = np.array([[[0, 128, 255]]], dtype=np.uint8)
    assetio.save(assetio.Texture2D(pixels), str(tmp_path / "c.hdr"))
    again = assetio.load(str(tmp_path / "c.hdr"))
    assert again.color_space is ColorSpace.LINEAR
    assert np.allclose(again.pixels[0, 0], [0.0, 0.2159, 1.0], atol=0.01)
