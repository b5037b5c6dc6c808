"""Canonical assets back to codec records.

The inverse of :mod:`assetio.normalize.loader`: axes and texture origin
are converted back, and data a target cannot hold exactly is narrowed
with a warning. Data of the wrong category for the target is refused.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

import numpy as np

from ..codecs.records import (
    AnimationRecord,
    AssetKind,
    Codec,
    EncodeContext,
    ImageRecord,
    IndexLayout,
    MaterialRecord,
    MeshRecord,
    PointsRecord,
    SceneRecord,
    TextureSlot,
    VoxelRecord,
)
from ..errors import unrepresentable
from ..io.dispatch import DEFAULT_DISPATCHER, Dispatcher
from ..logging import get_logger
from ..model.color import ColorSpace, linear_to_srgb, srgb_to_linear
from ..model.geometry import PointCloud, TriMesh
from ..model.material import DATA_FACTORS, Material
from ..model.scene import Model, Primitive
from ..model.texture import Texture2D
from ..model.volume import VoxelGrid
from ..utils.paths import sibling_name
from . import axes

__all__ = ["Denormalizer", "fit_pixels"]

Warn = Callable[[str], None]

# Preferred target dtypes, closest first, for each source dtype kind.
_DTYPE_PREFERENCE = {
    "uint8": ("uint8", "uint16", "float32"),
    "uint16": ("uint16", "float32", "uint8"),
    "float16": ("float32", "uint16", "uint8"),
    "float32": ("float32", "uint16", "uint8"),
}

# Channel counts to try when the source count is not writable.
_CHANNEL_PREFERENCE = {
    1: (1, 3, 4, 2),
    2: (2, 4, 1, 3),
    3: (3, 4, 1, 2),
    4: (4, 3, 2, 1),
}

_KIND_NAMES = {
    AssetKind.SCENE: "geometry",
    AssetKind.IMAGE: "image",
    AssetKind.POINTS: "point cloud",
    AssetKind.VOXELS: "voxel",
    AssetKind.AUXILIARY: "auxiliary",
}


def _scale(dtype: np.dtype) -> float:
    return float(np.iinfo(dtype).max) if dtype.kind == "u" else 1.0


def _adapt_channels(pixels: np.ndarray, channels: int) -> np.ndarray:
    have = pixels.shape[-1]
    if have == channels:
        return pixels
    color = pixels[..., :1] if have < 3 else pixels[..., :3]
    alpha = pixels[..., -1:] if have in (2, 4) else None
    if channels in (1, 2):
        if have >= 3:
            weights = np.array([0.2126, 0.7152, 0.0722])
            gray = color.astype(np.float64) @ weights
            if pixels.dtype.kind == "u":
                gray = np.rint(gray)
            color = gray.astype(pixels.dtype)[..., np.newaxis]
    else:
        if color.shape[-1] == 1:
            color = np.repeat(color, 3, axis=-1)
    parts = [color]
    if channels in (2, 4):
        if alpha is None:
            alpha = np.full(
                pixels.shape[:-1] + (1,), _scale(pixels.dtype), dtype=pixels.dtype
            )
        parts.append(alpha)
    return np.concatenate(parts, axis=-1)


def _convert_dtype(
    pixels: np.ndarray,
    dtype: np.dtype,
    encode_srgb: bool,
    decode_srgb: bool,
) -> np.ndarray:
    if pixels.dtype == dtype and not (encode_srgb or decode_srgb):
        return pixels
    if pixels.dtype.kind == "u" and dtype.kind == "u":
        if dtype.itemsize > pixels.dtype.itemsize:
            return pixels.astype(dtype) * np.array(257, dtype=dtype)
        return np.rint(pixels.astype(np.float64) / 257.0).astype(dtype)
    values = pixels.astype(np.float32) / _scale(pixels.dtype)
    color = 3 if values.shape[-1] >= 3 else 1
    if encode_srgb:
        values[..., :color] = linear_to_srgb(values[..., :color])
    elif decode_srgb:
        values[..., :color] = srgb_to_linear(values[..., :color])
    if dtype.kind == "f":
        return values.astype(dtype)
    top = _scale(dtype)
    return np.rint(np.clip(values, 0.0, 1.0) * top).astype(dtype)


def fit_pixels(
    pixels: np.ndarray,
    color_space: ColorSpace,
    codec: Codec,
    warn: Warn,
    *,
    color: bool = True,
    label: str = "",
) -> Tuple[np.ndarray, ColorSpace]:
    """Pixels in a layout ``codec`` writes, and the tag they now carry.

    Keeps the layout when the codec writes it; otherwise picks the closest
    writable one. Color data going from linear floats to an integer
    gamma-encoded format is sRGB encoded on the way, and gamma-encoded
    integers going to a linear float format are decoded.
    """
    layouts = {(np.dtype(d), c) for d, c in codec.pixel_layouts}
    if not layouts:
        raise unrepresentable(codec.name, "format holds no pixel data")
    have_c = int(pixels.shape[-1])
    have_d = pixels.dtype
    if (have_d, have_c) in layouts:
        return pixels, color_space
    channels = next(
        c
        for c in _CHANNEL_PREFERENCE[have_c]
        if any(lc == c for _, lc in layouts)
    )
    writable = {d for d, c in layouts if c == channels}
    dtype = next(
        np.dtype(d)
        for d in _DTYPE_PREFERENCE[have_d.name]
        if np.dtype(d) in writable
    )
    what = f"{label}: " if label else ""
    if channels < have_c:
        warn(f"{codec.name}: {what}{have_c} channels reduced to {channels}")
    if dtype.itemsize < have_d.itemsize or (
        have_d.kind == "f" and dtype.kind == "u"
    ):
        warn(f"{codec.name}: {what}{have_d.name} pixels narrowed to {dtype.name}")
    is_color = color and have_c >= 3
    encode_srgb = (
        is_color
        and color_space is ColorSpace.LINEAR
        and dtype.kind == "u"
        and not codec.linear
    )
    decode_srgb = (
        is_color
        and color_space is ColorSpace.NON_LINEAR
        and dtype.kind == "f"
        and codec.linear
    )
    out = _convert_dtype(pixels, dtype, encode_srgb, decode_srgb)
    out = _adapt_channels(out, channels)
    tag = color_space
    if encode_srgb:
        tag = ColorSpace.NON_LINEAR
    elif decode_srgb:
        tag = ColorSpace.LINEAR
    return np.ascontiguousarray(out), tag


class Denormalizer:
    """Builds the files for one canonical asset written to one target."""

    def __init__(self, dispatcher: Dispatcher | None = None):
        self.dispatcher = dispatcher or DEFAULT_DISPATCHER
        self._log = get_logger("denormalize")

    def _warn(self, message: str) -> None:
        self._log.warning(message)

    def encode(self, asset: Any, target: str) -> Dict[str, bytes]:
        codec = self.dispatcher.for_target(target)
        ctx = EncodeContext(identifier=target, warn=self._warn)
        record = self.record(asset, codec, ctx)
        return codec.encode(record, ctx)

    def record(self, asset: Any, codec: Codec, ctx: EncodeContext):
        if isinstance(asset, TriMesh):
            asset = Model(primitives=(Primitive(asset),), name=asset.name)
        expected = {
            Model: AssetKind.SCENE,
            Texture2D: AssetKind.IMAGE,
            PointCloud: AssetKind.POINTS,
            VoxelGrid: AssetKind.VOXELS,
        }.get(type(asset))
        if expected is None or expected is not codec.kind:
            raise unrepresentable(
                codec.name,
                f"a {type(asset).__name__} cannot be written to a "
                f"{_KIND_NAMES[codec.kind]} format",
                ctx.identifier,
            )
        if isinstance(asset, Model):
            return self._scene(asset, codec, ctx)
        if isinstance(asset, Texture2D):
            return self._image(asset, codec, ctx)
        if isinstance(asset, PointCloud):
            return self._points(asset, codec, ctx)
        return self._voxels(asset, codec, ctx)

    # Geometry ----------------------------------------------------------------
    def _positions(
        self, positions: np.ndarray, codec: Codec, label: str
    ) -> np.ndarray:
        if positions.dtype == np.float64 and not codec.wide_floats:
            self._warn(
                f"{codec.name}: {label}: float64 positions narrowed to float32"
            )
            positions = positions.astype(np.float32)
        return axes.from_canonical(positions, codec.up_axis)

    def _mesh(self, prim: Primitive, index: int, codec: Codec) -> MeshRecord:
        mesh = prim.mesh
        label = prim.name or mesh.name or f"mesh_{index}"
        uvs = mesh.uvs
        if uvs is not None and codec.uv_origin == "bottom":
            uvs = axes.flip_v(uvs)
        return MeshRecord(
            positions=self._positions(mesh.positions, codec, label),
            layout=IndexLayout.VERTEX,
            indices=np.asarray(mesh.indices, dtype=np.uint32),
            normals=axes.from_canonical(mesh.normals, codec.up_axis),
            tangents=axes.from_canonical(mesh.tangents, codec.up_axis),
            uvs=uvs,
            colors=mesh.colors,
            material=prim.material,
            name=label,
        )

    def _texture_names(
        self, model: Model, ctx: EncodeContext
    ) -> Dict[str, str]:
        names: Dict[str, str] = {}
        taken = set()
        for mat in model.materials:
            for ref in mat.textures:
                if ref.identifier in names:
                    continue
                texture = model.textures[ref.identifier]
                label = texture.name or ref.modulates.value
                name = sibling_name(ctx.stem, label, "png")
                n = 1
                while name in taken:
                    name = sibling_name(ctx.stem, f"{label}_{n}", "png")
                    n += 1
                taken.add(name)
                names[ref.identifier] = name
        return names

    def _texture_payloads(
        self, model: Model, names: Dict[str, str], codec: Codec
    ) -> Dict[str, bytes]:
        """PNG files for the textures ``codec`` will reference."""
        png = self.dispatcher.find("png")
        written = {
            ref.identifier
            for mat in model.materials
            for ref in mat.textures
            if ref.modulates in codec.texture_factors
        }
        color_uses = {
            ref.identifier
            for mat in model.materials
            for ref in mat.textures
            if ref.modulates not in DATA_FACTORS
        }
        payloads: Dict[str, bytes] = {}
        for identifier, name in names.items():
            if identifier not in written:
                continue
            texture = model.textures[identifier]
            pixels, tag = fit_pixels(
                texture.pixels,
                texture.color_space,
                png,
                self._warn,
                color=identifier in color_uses,
                label=name,
            )
            ctx = EncodeContext(identifier=name, warn=self._warn)
            files = png.encode(ImageRecord(pixels, tag, texture.name), ctx)
            payloads[name] = files[name]
        return payloads

    @staticmethod
    def _material(
        mat: Material, model: Model, names: Dict[str, str]
    ) -> MaterialRecord:
        rec = MaterialRecord(
            name=mat.name,
            base_color=mat.base_color,
            metallic=mat.metallic,
            roughness=mat.roughness,
            emissive=mat.emissive,
            transmission=mat.transmission,
            ior=mat.ior,
            normal_scale=mat.normal_scale,
            occlusion_strength=mat.occlusion_strength,
            alpha_cutoff=mat.alpha_cutoff,
        )
        for ref in mat.textures:
            rec.textures[ref.modulates] = TextureSlot(
                names[ref.identifier], model.textures[ref.identifier].sampler
            )
        return rec

    def _scene(self, model: Model, codec: Codec, ctx: EncodeContext) -> SceneRecord:
        names = self._texture_names(model, ctx)
        return SceneRecord(
            meshes=[self._mesh(p, i, codec) for i, p in enumerate(model.primitives)],
            materials=[self._material(m, model, names) for m in model.materials],
            embedded=self._texture_payloads(model, names, codec),
            animations=[
                AnimationRecord(
                    times=a.times,
                    rotations=a.rotations,
                    interpolation=a.interpolation,
                    targets=list(a.targets),
                    name=a.name,
                )
                for a in model.animations
            ],
            unit_scale=1.0,
            name=model.name,
        )

    def _points(
        self, cloud: PointCloud, codec: Codec, ctx: EncodeContext
    ) -> PointsRecord:
        return PointsRecord(
            positions=self._positions(
                cloud.positions, codec, cloud.name or ctx.stem
            ),
            colors=cloud.colors,
            normals=axes.from_canonical(cloud.normals, codec.up_axis),
            name=cloud.name,
        )

    # Pixels ------------------------------------------------------------------
    def _image(
        self, texture: Texture2D, codec: Codec, ctx: EncodeContext
    ) -> ImageRecord:
        pixels, tag = fit_pixels(
            texture.pixels, texture.color_space, codec, self._warn,
            label=texture.name or ctx.stem,
        )
        if codec.lossy:
            self._warn(f"{codec.name}: {ctx.stem} is written with lossy compression")
        return ImageRecord(pixels, tag, texture.name)

    def _voxels(
        self, grid: VoxelGrid, codec: Codec, ctx: EncodeContext
    ) -> VoxelRecord:
        nz, ny, nx, c = grid.voxels.shape
        # Treat the grid as one tall image so pixel fitting applies.
        flat = grid.voxels.reshape(nz * ny, nx, c)
        fitted, _ = fit_pixels(
            flat, ColorSpace.LINEAR, codec, self._warn,
            color=False, label=grid.name or ctx.stem,
        )
        return VoxelRecord(
            voxels=fitted.reshape(nz, ny, nx, fitted.shape[-1]),
            voxel_size=grid.voxel_size,
            name=grid.name,
        )

