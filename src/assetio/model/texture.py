"""Two-dimensional and cube textures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from ..errors import malformed
from .arrays import frozen
from .color import ColorSpace, srgb_to_linear

__all__ = [
    "PixelFormat",
    "Interpolation",
    "Wrapping",
    "Sampler",
    "Texture2D",
    "TextureCube",
    "CUBE_FACES",
    "PIXEL_DTYPES",
    "to_linear",
]

PIXEL_DTYPES = (
    np.dtype(np.uint8),
    np.dtype(np.uint16),
    np.dtype(np.float16),
    np.dtype(np.float32),
)

CUBE_FACES = ("right", "left", "top", "bottom", "front", "back")

_SUFFIX = {"u1": "8", "u2": "16", "f2": "16f", "f4": "32f"}
_CHANNEL_NAMES = {1: "r", 2: "rg", 3: "rgb", 4: "rgba"}


@dataclass(frozen=True, slots=True)
class PixelFormat:
    channels: int
    dtype: np.dtype

    @property
    def bytes_per_channel(self) -> int:
        return int(np.dtype(self.dtype).itemsize)

    @property
    def is_float(self) -> bool:
        return np.dtype(self.dtype).kind == "f"

    @property
    def name(self) -> str:
        dt = np.dtype(self.dtype)
        return _CHANNEL_NAMES[self.channels] + _SUFFIX[f"{dt.kind}{dt.itemsize}"]

    def __str__(self) -> str:
        return self.name


class Interpolation(Enum):
    NEAREST = "nearest"
    LINEAR = "linear"


class Wrapping(Enum):
    REPEAT = "repeat"
    MIRRORED_REPEAT = "mirrored_repeat"
    CLAMP_TO_EDGE = "clamp_to_edge"


@dataclass(frozen=True, slots=True)
class Sampler:
    min_filter: Interpolation = Interpolation.LINEAR
    mag_filter: Interpolation = Interpolation.LINEAR
    mipmap_filter: Optional[Interpolation] = Interpolation.LINEAR
    wrap_s: Wrapping = Wrapping.REPEAT
    wrap_t: Wrapping = Wrapping.REPEAT


def _pixels(values, ndim: int) -> np.ndarray:
    arr = np.asarray(values)
    if arr.ndim == ndim - 1:
        arr = arr[..., np.newaxis]
    if arr.ndim != ndim or not 1 <= arr.shape[-1] <= 4:
        raise malformed(
            f"pixel data must have {ndim} axes with 1-4 channels, "
            f"got {arr.shape}"
        )
    if arr.dtype not in PIXEL_DTYPES:
        raise malformed(f"unsupported pixel type {arr.dtype}")
    return frozen(arr)


@dataclass(frozen=True, slots=True, eq=False)
class Texture2D:
    """Row-major pixels, top row first, shaped ``(height, width, channels)``.

    The dtype is whatever the source stored (8/16-bit integers, half or
    full floats); ``color_space`` records how to interpret color values.
    """

    pixels: np.ndarray
    color_space: ColorSpace = ColorSpace.NON_LINEAR
    name: str = ""
    sampler: Sampler = field(default_factory=Sampler)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pixels", _pixels(self.pixels, 3))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def pixel_format(self) -> PixelFormat:
        return PixelFormat(int(self.pixels.shape[2]), self.pixels.dtype)

    @property
    def data(self) -> bytes:
        return self.pixels.tobytes()

    def with_pixels(self, pixels, color_space: ColorSpace | None = None):
        return Texture2D(
            pixels,
            color_space or self.color_space,
            self.name,
            self.sampler,
        )

    def tagged(self, color_space: ColorSpace) -> "Texture2D":
        if color_space is self.color_space:
            return self
        return Texture2D(self.pixels, color_space, self.name, self.sampler)


@dataclass(frozen=True, slots=True, eq=False)
class TextureCube:
    """Six square-or-rectangular faces ordered +X, -X, +Y, -Y, +Z, -Z."""

    faces: np.ndarray
    color_space: ColorSpace = ColorSpace.NON_LINEAR
    name: str = ""
    sampler: Sampler = field(
        default_factory=lambda: Sampler(
            wrap_s=Wrapping.CLAMP_TO_EDGE, wrap_t=Wrapping.CLAMP_TO_EDGE
        )
    )

    def __post_init__(self) -> None:
        faces = _pixels(self.faces, 4)
        if faces.shape[0] != 6:
            raise malformed(f"a cube needs 6 faces, got {faces.shape[0]}")
        object.__setattr__(self, "faces", faces)

    @classmethod
    def from_faces(
        cls, faces: Sequence[Texture2D], name: str = ""
    ) -> "TextureCube":
        if len(faces) != 6:
            raise malformed(f"a cube needs 6 faces, got {len(faces)}")
        first = faces[0]
        for label, face in zip(CUBE_FACES, faces):
            if face.pixels.shape != first.pixels.shape:
                raise malformed(
                    f"cube face '{label}' is {face.pixels.shape}, "
                    f"expected {first.pixels.shape}"
                )
            if face.pixels.dtype != first.pixels.dtype:
                raise malformed(
                    f"cube face '{label}' stores {face.pixels.dtype}, "
                    f"expected {first.pixels.dtype}"
                )
        return cls(
            np.stack([f.pixels for f in faces]),
            first.color_space,
            name,
        )

    @property
    def width(self) -> int:
        return int(self.faces.shape[2])

    @property
    def height(self) -> int:
        return int(self.faces.shape[1])

    @property
    def pixel_format(self) -> PixelFormat:
        return PixelFormat(int(self.faces.shape[3]), self.faces.dtype)

    def face(self, index_or_name: int | str) -> Texture2D:
        idx = (
            CUBE_FACES.index(index_or_name)
            if isinstance(index_or_name, str)
            else index_or_name
        )
        return Texture2D(self.faces[idx], self.color_space, CUBE_FACES[idx])

    def face_textures(self) -> Tuple[Texture2D, ...]:
        return tuple(self.face(i) for i in range(6))


def to_linear(texture: Texture2D) -> Texture2D:
    """Return ``texture`` with color channels decoded to linear float32.

    Alpha is passed through unchanged. Textures already tagged linear are
    returned as-is.
    """
    if texture.color_space is ColorSpace.LINEAR:
        return texture
    px = texture.pixels
    scale = float(np.iinfo(px.dtype).max) if px.dtype.kind == "u" else 1.0
    values = px.astype(np.float32) / scale
    color_channels = 3 if px.shape[2] >= 3 else 1
    out = values.copy()
    out[..., :color_channels] = srgb_to_linear(values[..., :color_channels])
    return texture.with_pixels(out, ColorSpace.LINEAR)
