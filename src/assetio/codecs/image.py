"""Raster formats backed by Pillow."""

from __future__ import annotations

import io
from typing import Any, Callable, Dict, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import malformed
from .records import AssetKind, Codec, DecodeContext, EncodeContext, ImageRecord

__all__ = [
    "PNG",
    "JPEG",
    "BMP",
    "TGA",
    "TIFF",
    "GIF",
    "WEBP",
    "decode_image",
    "pil_to_array",
]

# Modes converted before reading pixels out.
_CONVERT = {
    "1": "L",
    "CMYK": "RGB",
    "YCbCr": "RGB",
    "LAB": "RGB",
    "HSV": "RGB",
    "RGBX": "RGB",
    "RGBa": "RGBA",
    "La": "LA",
}


def pil_to_array(img: Image.Image) -> np.ndarray:
    """Pixels of ``img`` as ``(h, w, c)`` in the narrowest lossless dtype."""
    mode = img.mode
    if mode in ("P", "PA"):
        has_alpha = mode == "PA" or "transparency" in img.info
        img = img.convert("RGBA" if has_alpha else "RGB")
    elif mode in _CONVERT:
        img = img.convert(_CONVERT[mode])
    arr = np.asarray(img)
    if img.mode.startswith("I;16"):
        arr = arr.astype(np.uint16)
    elif img.mode == "I":
        if arr.size and 0 <= arr.min() and arr.max() <= 0xFFFF:
            arr = arr.astype(np.uint16)
        else:
            arr = arr.astype(np.float32)
    elif img.mode == "F":
        arr = arr.astype(np.float32)
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    return np.ascontiguousarray(arr)


def wide_color_channels(img: Image.Image, data: bytes) -> int:
    """Channel count of a 16-bit multi-channel source, else 0.

    Pillow reads these as 8-bit ``RGB``/``RGBA``/``LA``.
    """
    if img.format == "PNG" and data[12:16] == b"IHDR" and data[24] == 16:
        return {2: 3, 4: 2, 6: 4}.get(data[25], 0)
    if img.format == "TIFF":
        bits = img.tag_v2.get(258, ())
        if isinstance(bits, int):
            bits = (bits,)
        if len(bits) > 1 and max(bits) == 16:
            return len(bits)
    return 0


def cv2_to_array(data: bytes, channels: int) -> np.ndarray:
    """Decode ``data`` with OpenCV, keeping 16-bit samples, in RGB order."""
    arr = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if arr is None:
        raise ValueError("OpenCV could not decode the image")
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    elif arr.shape[2] == 3:
        arr = cv2.cvtColor(arr, cv2.COLOR_BGR2RGB)
    elif arr.shape[2] == 4:
        arr = cv2.cvtColor(arr, cv2.COLOR_BGRA2RGBA)
    if channels == 2 and arr.shape[2] == 4:
        # Gray plus alpha comes back expanded to RGBA.
        arr = arr[:, :, [0, 3]]
    elif channels == 2 and arr.shape[2] == 3:
        arr = arr[:, :, :1]
    return np.ascontiguousarray(arr)


def decode_image(data: bytes, ctx: DecodeContext) -> ImageRecord:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            img.load()
            wide = wide_color_channels(img, data)
            pixels = cv2_to_array(data, wide) if wide else pil_to_array(img)
    except (
        UnidentifiedImageError, OSError, ValueError, SyntaxError, cv2.error
    ) as exc:
        raise malformed(f"cannot decode image: {exc}", ctx.identifier) from exc
    return ImageRecord(pixels=pixels)


def _cv2_encode(pixels: np.ndarray, extension: str) -> bytes:
    if pixels.shape[2] == 3:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    else:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)
    ok, buf = cv2.imencode(extension, np.ascontiguousarray(pixels))
    if not ok:
        raise ValueError(f"OpenCV could not encode {extension} image")
    return buf.tobytes()


def _encoder(
    pil_format: str, **params: Any
) -> Callable[[ImageRecord, EncodeContext], Dict[str, bytes]]:
    def encode(record: ImageRecord, ctx: EncodeContext) -> Dict[str, bytes]:
        pixels = np.asarray(record.pixels)
        if pixels.dtype == np.uint16 and pixels.ndim == 3 and pixels.shape[2] >= 3:
            # Pillow has no 16-bit color modes.
            ext = "." + pil_format.lower()
            return {ctx.identifier: _cv2_encode(pixels, ext)}
        if pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]
        img = Image.fromarray(np.ascontiguousarray(pixels))
        buf = io.BytesIO()
        img.save(buf, format=pil_format, **params)
        return {ctx.identifier: buf.getvalue()}

    return encode


def _sniff_prefix(*prefixes: bytes) -> Callable[[bytes], bool]:
    def sniff(data: bytes) -> bool:
        return data.startswith(prefixes)

    return sniff


def _sniff_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


def _sniff_tga(data: bytes) -> bool:
    return data[-18:-2] == b"TRUEVISION-XFILE"


def _layouts(*pairs: Tuple[str, Tuple[int, ...]]) -> Tuple[Tuple[str, int], ...]:
    return tuple((dtype, c) for dtype, channels in pairs for c in channels)


_U8_ALL = ("uint8", (1, 2, 3, 4))

PNG = Codec(
    name="png",
    kind=AssetKind.IMAGE,
    extensions=("png",),
    decode=decode_image,
    encode=_encoder("PNG"),
    sniff=_sniff_prefix(b"\x89PNG\r\n\x1a\n"),
    pixel_layouts=_layouts(_U8_ALL, ("uint16", (1, 3, 4))),
)

JPEG = Codec(
    name="jpeg",
    kind=AssetKind.IMAGE,
    extensions=("jpg", "jpeg"),
    decode=decode_image,
    encode=_encoder("JPEG", quality=95),
    sniff=_sniff_prefix(b"\xff\xd8\xff"),
    pixel_layouts=_layouts(("uint8", (1, 3))),
    lossy=True,
)

BMP = Codec(
    name="bmp",
    kind=AssetKind.IMAGE,
    extensions=("bmp",),
    decode=decode_image,
    encode=_encoder("BMP"),
    sniff=_sniff_prefix(b"BM"),
    pixel_layouts=_layouts(("uint8", (1, 3, 4))),
)

TGA = Codec(
    name="tga",
    kind=AssetKind.IMAGE,
    extensions=("tga",),
    decode=decode_image,
    encode=_encoder("TGA"),
    sniff=_sniff_tga,
    pixel_layouts=_layouts(_U8_ALL),
)

TIFF = Codec(
    name="tiff",
    kind=AssetKind.IMAGE,
    extensions=("tif", "tiff"),
    decode=decode_image,
    encode=_encoder("TIFF"),
    sniff=_sniff_prefix(b"II*\x00", b"MM\x00*"),
    pixel_layouts=_layouts(
        ("uint8", (1, 3, 4)), ("uint16", (1, 3, 4)), ("float32", (1,))
    ),
)

GIF = Codec(
    name="gif",
    kind=AssetKind.IMAGE,
    extensions=("gif",),
    decode=decode_image,
    encode=_encoder("GIF"),
    sniff=_sniff_prefix(b"GIF87a", b"GIF89a"),
    pixel_layouts=_layouts(("uint8", (1, 3))),
    lossy=True,
)

WEBP = Codec(
    name="webp",
    kind=AssetKind.IMAGE,
    extensions=("webp",),
    decode=decode_image,
    encode=_encoder("WEBP", lossless=True),
    sniff=_sniff_webp,
    pixel_layouts=_layouts(("uint8", (3, 4))),
)
