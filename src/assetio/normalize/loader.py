"""Codec records to canonical assets."""

from __future__ import annotations

import struct
import zipfile
import zlib
from dataclasses import replace
from typing import Any, Dict, List, Optional, Set, Tuple
from xml.etree import ElementTree as ET

import numpy as np

from ..codecs.records import (
    AnimationRecord,
    AssetKind,
    Codec,
    DecodeContext,
    ImageRecord,
    MaterialRecord,
    MeshRecord,
    PointsRecord,
    SceneRecord,
    VoxelRecord,
)
from ..errors import AssetError, MissingReference, UnsupportedFormat, malformed
from ..io import identifiers
from ..io.dispatch import DEFAULT_DISPATCHER, Dispatcher
from ..io.raw_assets import RawAssets
from ..logging import get_logger
from ..model.geometry import PointCloud
from ..model.animation import KeyFrames
from ..model.material import Material, MaterialFactor, TextureRef
from ..model.scene import Model, Primitive
from ..model.texture import Sampler, Texture2D, TextureCube
from ..model.volume import VoxelGrid
from . import axes
from .color_space import default_color_space, usage_color_space
from .indexing import build_mesh, rgba8

__all__ = ["Normalizer"]

# Failures from inside a decoder that mean the bytes were bad.
_DECODE_ERRORS = (
    ValueError,
    IndexError,
    KeyError,
    struct.error,
    zlib.error,
    zipfile.BadZipFile,
    ET.ParseError,
)


def _key_frames(record: AnimationRecord) -> KeyFrames:
    return KeyFrames(
        record.times,
        record.rotations,
        record.interpolation,
        tuple(record.targets),
        record.name,
    )


class Normalizer:
    """Builds canonical assets from a closed set of raw resources.

    One instance serves any number of roots over the same
    :class:`RawAssets`; decoded textures are shared between them.
    """

    def __init__(self, raw: RawAssets, dispatcher: Dispatcher | None = None):
        self.raw = raw
        self.dispatcher = dispatcher or DEFAULT_DISPATCHER
        self._log = get_logger("normalize")
        self._images: Dict[str, Tuple[ImageRecord, Codec]] = {}

    def _warn(self, message: str) -> None:
        self._log.warning(message)

    def _decode(
        self,
        identifier: str,
        data: bytes,
        parents: Tuple[str, ...] = (),
    ) -> Tuple[Any, Codec]:
        codec = self.dispatcher.select(identifier, data)
        if codec.kind is AssetKind.AUXILIARY:
            raise UnsupportedFormat(
                message=f"{codec.name} is only read as part of another resource",
                identifier=identifier,
                parents=parents,
                context={"extension": identifiers.extension(identifier)},
            )
        ctx = DecodeContext(
            identifier=identifier, raw=self.raw, parents=parents, warn=self._warn
        )
        try:
            record = codec.decode(data, ctx)
        except AssetError as exc:
            if not exc.parents and parents:
                exc.parents = parents
            raise
        except _DECODE_ERRORS as exc:
            raise malformed(
                f"{codec.name}: {exc}", identifier, {"codec": codec.name}
            ) from exc
        return record, codec

    def normalize(self, identifier: str) -> Any:
        """Canonical asset for the resource ``identifier`` in ``raw``."""
        key = self.raw.match(identifier)
        if key is None:
            raise MissingReference(
                message="resource is not part of the loaded set",
                identifier=identifier,
            )
        record, codec = self._decode(key, self.raw[key])
        name = identifiers.stem(key)
        if isinstance(record, SceneRecord):
            return self._model(record, codec, key)
        if isinstance(record, ImageRecord):
            return self._image(record, codec, key)
        if isinstance(record, PointsRecord):
            return self._points(record, codec, name)
        if isinstance(record, VoxelRecord):
            return VoxelGrid(
                record.voxels, record.voxel_size, record.name or name
            )
        raise malformed(f"{codec.name} produced no asset", key)

    # Geometry ----------------------------------------------------------------
    def _canonical_mesh(
        self, mesh: MeshRecord, codec: Codec, unit_scale: float
    ) -> MeshRecord:
        positions = np.asarray(mesh.positions)
        if unit_scale != 1.0:
            positions = (positions.astype(np.float64) * unit_scale).astype(
                positions.dtype
            )
        return replace(
            mesh,
            positions=axes.to_canonical(positions, codec.up_axis),
            normals=axes.to_canonical(mesh.normals, codec.up_axis),
            tangents=axes.to_canonical(mesh.tangents, codec.up_axis),
            uvs=axes.flip_v(mesh.uvs) if codec.uv_origin == "bottom" else mesh.uvs,
        )

    def _points(self, record: PointsRecord, codec: Codec, name: str) -> PointCloud:
        return PointCloud(
            positions=axes.to_canonical(np.asarray(record.positions), codec.up_axis),
            colors=rgba8(record.colors),
            normals=axes.to_canonical(record.normals, codec.up_axis),
            name=record.name or name,
        )

    # Textures ----------------------------------------------------------------
    def _image_record(
        self, reference: str, scene: SceneRecord, parent: str
    ) -> Tuple[ImageRecord, Codec]:
        cached = self._images.get(reference)
        if cached is not None:
            return cached
        if reference in scene.embedded:
            data = scene.embedded[reference]
        else:
            data = self.raw.require(reference, parents=(parent,))
        record, codec = self._decode(reference, data, parents=(parent,))
        if not isinstance(record, ImageRecord):
            raise malformed(
                f"material texture is a {codec.kind.value}, not an image",
                reference,
                {"codec": codec.name},
            )
        if reference not in scene.embedded:
            self._images[reference] = (record, codec)
        return record, codec

    def _textures(
        self, scene: SceneRecord, parent: str
    ) -> Dict[str, Texture2D]:
        usage: Dict[str, Set[MaterialFactor]] = {}
        samplers: Dict[str, Optional[Sampler]] = {}
        for mat in scene.materials:
            for factor, slot in mat.textures.items():
                usage.setdefault(slot.reference, set()).add(factor)
                if samplers.get(slot.reference) is None:
                    samplers[slot.reference] = slot.sampler
        textures: Dict[str, Texture2D] = {}
        for reference, factors in usage.items():
            record, codec = self._image_record(reference, scene, parent)
            default = default_color_space(record.pixels, codec, record.color_space)
            textures[reference] = Texture2D(
                record.pixels,
                usage_color_space(default, factors),
                record.name or identifiers.stem(reference),
                samplers[reference] or Sampler(),
            )
        return textures

    # Scenes ------------------------------------------------------------------
    @staticmethod
    def _material(record: MaterialRecord) -> Material:
        return Material(
            name=record.name,
            base_color=record.base_color,
            metallic=float(record.metallic),
            roughness=float(record.roughness),
            emissive=record.emissive,
            transmission=float(record.transmission),
            ior=float(record.ior),
            normal_scale=float(record.normal_scale),
            occlusion_strength=float(record.occlusion_strength),
            alpha_cutoff=record.alpha_cutoff,
            textures=tuple(
                TextureRef(slot.reference, factor)
                for factor, slot in record.textures.items()
            ),
        )

    def _model(self, scene: SceneRecord, codec: Codec, identifier: str) -> Model:
        textures = self._textures(scene, identifier)
        primitives: List[Primitive] = []
        for mesh in scene.meshes:
            canonical = self._canonical_mesh(mesh, codec, scene.unit_scale)
            primitives.append(
                Primitive(
                    build_mesh(canonical, self._warn, identifier),
                    mesh.material,
                    mesh.name,
                )
            )
        return Model(
            primitives=tuple(primitives),
            materials=tuple(self._material(m) for m in scene.materials),
            textures=textures,
            name=scene.name or identifiers.stem(identifier),
            animations=tuple(_key_frames(a) for a in scene.animations),
        )

    # Images ------------------------------------------------------------------
    def _image(self, record: ImageRecord, codec: Codec, identifier: str):
        name = record.name or identifiers.stem(identifier)
        tag = default_color_space(record.pixels, codec, record.color_space)
        if record.faces is not None:
            return TextureCube(np.stack(record.faces), tag, name)
        return Texture2D(record.pixels, tag, name)

    def texture(self, identifier: str) -> Texture2D:
        """Decode ``identifier`` as a stand-alone 2D texture."""
        asset = self.normalize(identifier)
        if not isinstance(asset, Texture2D):
            raise malformed(
                f"expected a 2D texture, got {type(asset).__name__}", identifier
            )
        return asset


