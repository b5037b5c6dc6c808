"""Raster images through Pillow: decoding, color-space tags and writing."""

import numpy as np
import pytest

import assetio
from asset_factory import checker, png16_bytes, png_bytes
from assetio.codecs.image import BMP, JPEG, PNG
from assetio.errors import MalformedData
from assetio.model import ColorSpace
from assetio.normalize.saver import fit_pixels


def test_png_color_is_gamma_encoded(tmp_path):
    (tmp_path / "albedo.png").write_bytes(png_bytes(checker()))
    texture = assetio.load(str(tmp_path / "albedo.png"))
    assert isinstance(texture, assetio.Texture2D)
    assert texture.color_space is ColorSpace.NON_LINEAR
    assert texture.pixel_format.name == "rgb8"
    assert texture.name == "albedo"
    assert np.array_equal(texture.pixels, checker())


def test_single_channel_png_is_linear(tmp_path):
    (tmp_path / "rough.png").write_bytes(png_bytes(checker(channels=1)))
    texture = assetio.load(str(tmp_path / "rough.png"))
    assert texture.pixels.shape == (4, 4, 1)
    assert texture.color_space is ColorSpace.LINEAR


def test_sixteen_bit_png(tmp_path):
    pixels = np.array([[0, 1000], [40000, 65535]], dtype=np.uint16)
    (tmp_path / "height.png").write_bytes(png_bytes(pixels))
    texture = assetio.load(str(tmp_path / "height.png"))
    assert texture.pixels.dtype == np.uint16
    assert texture.pixels[..., 0].tolist() == pixels.tolist()


def test_sixteen_bit_rgb_png_keeps_precision(tmp_path):
    pixels = np.array([[[1000, 40000, 65535], [1, 2, 3]]], dtype=np.uint16)
    (tmp_path / "deep.png").write_bytes(png16_bytes(pixels))
    texture = assetio.load(str(tmp_path / "deep.png"))
    assert texture.pixels.dtype == np.uint16
    assert np.array_equal(texture.pixels, pixels)
    assert texture.color_space is ColorSpace.NON_LINEAR


@pytest.mark.parametrize("ext, channels", [("png", 4), ("png", 3), ("tiff", 3)])
def test_sixteen_bit_color_write_and_reload(tmp_path, ext, channels, reporter):
    pixels = np.array(
        [[[1000, 40000, 65535, 300], [7, 8, 9, 65535]]], dtype=np.uint16
    )[..., :channels]
    pixels = np.ascontiguousarray(pixels)
    assetio.save(assetio.Texture2D(pixels), str(tmp_path / f"deep.{ext}"))
    again = assetio.load(str(tmp_path / f"deep.{ext}"))
    assert again.pixels.dtype == np.uint16
    assert np.array_equal(again.pixels, pixels)
    assert reporter.warnings() == []


def test_garbage_png_is_malformed(tmp_path):
    (tmp_path / "broken.png").write_bytes(b"\x89PNG\r\n\x1a\n" + b"\0" * 20)
    with pytest.raises(MalformedData):
        assetio.load(str(tmp_path / "broken.png"))


@pytest.mark.parametrize("ext", ["bmp", "tga", "tiff", "webp"])
def test_lossless_formats_write_and_reload(tmp_path, ext):
    texture = assetio.Texture2D(checker(channels=4 if ext in ("tga", "tiff") else 3))
    assetio.save(texture, str(tmp_path / f"out.{ext}"))
    again = assetio.load(str(tmp_path / f"out.{ext}"))
    assert np.array_equal(again.pixels, texture.pixels)


def test_jpeg_warns_about_lossy_compression(tmp_path, reporter):
    texture = assetio.Texture2D(checker(size=16), name="photo")
    assetio.save(texture, str(tmp_path / "photo.jpg"))
    again = assetio.load(str(tmp_path / "photo.jpg"))
    assert again.pixels.shape == (16, 16, 3)
    assert any("lossy compression" in w for w in reporter.warnings())


def test_float_tiff_stays_float(tmp_path):
    pixels = np.array([[[0.25], [1.5]], [[-2.0], [8.0]]], dtype=np.float32)
    assetio.save(assetio.Texture2D(pixels, ColorSpace.LINEAR), str(tmp_path / "d.tif"))
    again = assetio.load(str(tmp_path / "d.tif"))
    assert again.pixels.dtype == np.float32
    assert np.array_equal(again.pixels, pixels)
    assert again.color_space is ColorSpace.LINEAR


def test_half_float_height_map_becomes_sixteen_bit_png(tmp_path, reporter):
    pixels = np.array([[[0.0], [1.0]]], dtype=np.float16)
    assetio.save(assetio.Texture2D(pixels, ColorSpace.LINEAR), str(tmp_path / "h.png"))
    again = assetio.load(str(tmp_path / "h.png"))
    assert again.pixels.dtype == np.uint16
    assert again.pixels[..., 0].tolist() == [[0, 65535]]
    assert any("float16 pixels narrowed to uint16" in w for w in reporter.warnings())


def test_linear_float_color_is_srgb_encoded_for_bmp():
    warnings = []
    pixels = np.array([[[0.0, 0.5, 1.0]]], dtype=np.float32)
    out, tag = fit_pixels(pixels, ColorSpace.LINEAR, BMP, warnings.append)
    assert out.dtype == np.uint8
    assert out.tolist() == [[[0, 188, 255]]]
    assert tag is ColorSpace.NON_LINEAR
    assert warnings == ["bmp: float32 pixels narrowed to uint8"]


def test_linear_float_color_keeps_sixteen_bits_for_png():
    warnings = []
    pixels = np.array([[[0.0, 0.5, 1.0]]], dtype=np.float32)
    out, tag = fit_pixels(pixels, ColorSpace.LINEAR, PNG, warnings.append)
    assert out.dtype == np.uint16
    assert np.allclose(out[0, 0] / 65535.0, [0.0, 0.7354, 1.0], atol=1e-3)
    assert tag is ColorSpace.NON_LINEAR
    assert warnings == ["png: float32 pixels narrowed to uint16"]


def test_exact_layout_is_kept_untouched():
    pixels = checker(channels=2)
    out, tag = fit_pixels(pixels, ColorSpace.LINEAR, PNG, pytest.fail)
    assert out is pixels
    assert tag is ColorSpace.LINEAR


def test_two_channels_lose_alpha_for_jpeg():
    warnings = []
    pixels = np.array([[[10, 200]]], dtype=np.uint8)
    out, _ = fit_pixels(pixels, ColorSpace.NON_LINEAR, JPEG, warnings.append)
    # JPEG holds 1 or 3 channels; alpha is dropped.
    assert out.tolist() == [[[10]]]
    assert warnings == ["jpeg: 2 channels reduced to 1"]
