"""Records exchanged between codecs and the normalizer.

Codecs speak only these types: plain containers of numpy arrays and
references, in the conventions of their own file format. Converting them
to the canonical model is the normalizer's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Union

import numpy as np

from ..errors import MissingReference
from ..io import identifiers
from ..io.raw_assets import RawAssets
from ..model.color import ColorSpace
from ..model.material import MaterialFactor
from ..model.texture import Interpolation, Sampler

__all__ = [
    "AssetKind",
    "IndexLayout",
    "MeshRecord",
    "TextureSlot",
    "MaterialRecord",
    "AnimationRecord",
    "SceneRecord",
    "ImageRecord",
    "PointsRecord",
    "VoxelRecord",
    "Record",
    "DecodeContext",
    "EncodeContext",
    "Codec",
    "no_references",
    "narrowest_floats",
]


class AssetKind(Enum):
    SCENE = "scene"
    IMAGE = "image"
    POINTS = "points"
    VOXELS = "voxels"
    # Resources only ever read as part of another one (e.g. MTL).
    AUXILIARY = "auxiliary"


class IndexLayout(Enum):
    # ``indices`` index every attribute array (glTF, PLY-like).
    VERTEX = "vertex"
    # Each corner indexes positions, normals and uvs separately (OBJ).
    CORNER = "corner"
    # No indices; three consecutive entries form a triangle (STL).
    FACE = "face"


@dataclass(slots=True)
class MeshRecord:
    positions: np.ndarray
    layout: IndexLayout = IndexLayout.VERTEX
    indices: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None
    # uint8 RGBA or float RGBA in [0, 1]; under CORNER layout, per position.
    colors: Optional[np.ndarray] = None
    # CORNER layout only; -1 marks a corner without that attribute.
    normal_indices: Optional[np.ndarray] = None
    uv_indices: Optional[np.ndarray] = None
    material: Optional[int] = None
    name: str = ""


@dataclass(slots=True)
class TextureSlot:
    # Relative reference as written in the file, or an ``embedded`` key.
    reference: str
    sampler: Optional[Sampler] = None


@dataclass(slots=True)
class MaterialRecord:
    name: str = ""
    base_color: Tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)
    metallic: float = 0.0
    roughness: float = 1.0
    emissive: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    transmission: float = 0.0
    ior: float = 1.5
    normal_scale: float = 1.0
    occlusion_strength: float = 1.0
    alpha_cutoff: Optional[float] = None
    textures: Dict[MaterialFactor, TextureSlot] = field(default_factory=dict)


@dataclass(slots=True)
class AnimationRecord:
    times: np.ndarray
    # (n, 4) quaternions, x y z w.
    rotations: np.ndarray
    interpolation: Interpolation = Interpolation.LINEAR
    # Indices into SceneRecord.meshes.
    targets: List[int] = field(default_factory=list)
    name: str = ""


@dataclass(slots=True)
class SceneRecord:
    meshes: List[MeshRecord] = field(default_factory=list)
    materials: List[MaterialRecord] = field(default_factory=list)
    animations: List[AnimationRecord] = field(default_factory=list)
    # Image payloads carried inside the file itself (GLB chunks, data URIs)
    # or, when encoding, auxiliary image files keyed by relative name.
    embedded: Dict[str, bytes] = field(default_factory=dict)
    # Multiplier taking file units to meters.
    unit_scale: float = 1.0
    name: str = ""


@dataclass(slots=True)
class ImageRecord:
    # (height, width, channels), top row first.
    pixels: np.ndarray
    # None lets the normalizer apply the default tagging rule.
    color_space: Optional[ColorSpace] = None
    name: str = ""
    # Cube faces when the file holds more than one 2D image.
    faces: Optional[List[np.ndarray]] = None


@dataclass(slots=True)
class PointsRecord:
    positions: np.ndarray
    colors: Optional[np.ndarray] = None
    normals: Optional[np.ndarray] = None
    name: str = ""


@dataclass(slots=True)
class VoxelRecord:
    # (nz, ny, nx, channels)
    voxels: np.ndarray
    voxel_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    name: str = ""


Record = Union[SceneRecord, ImageRecord, PointsRecord, VoxelRecord]


def _ignore(message: str) -> None:
    pass


@dataclass(slots=True)
class DecodeContext:
    """What a decoder may know besides its own bytes."""

    identifier: str
    raw: RawAssets = field(default_factory=RawAssets)
    parents: Tuple[str, ...] = ()
    warn: Callable[[str], None] = _ignore

    def resolve(self, reference: str) -> str:
        return identifiers.resolve_reference(self.identifier, reference)

    def require(self, reference: str) -> bytes:
        """Bytes of a resource referenced from this one."""
        resolved = self.resolve(reference)
        key = self.raw.match(resolved)
        if key is None:
            raise MissingReference(
                message="referenced resource was not loaded",
                identifier=resolved,
                parents=self.parents + (self.identifier,),
            )
        return self.raw[key]


@dataclass(slots=True)
class EncodeContext:
    identifier: str
    warn: Callable[[str], None] = _ignore

    @property
    def extension(self) -> str:
        return identifiers.extension(self.identifier)

    @property
    def stem(self) -> str:
        return identifiers.stem(self.identifier)

    def sibling(self, name: str) -> str:
        """Identifier of an auxiliary file next to the target."""
        return identifiers.resolve_reference(self.identifier, name)


def no_references(data: bytes) -> List[str]:
    return []


def narrowest_floats(values, width: int = 3) -> np.ndarray:
    """Parsed text values as float32 when that loses nothing, else float64."""
    wide = np.asarray(values, dtype=np.float64).reshape(-1, width)
    narrow = wide.astype(np.float32)
    if np.array_equal(narrow.astype(np.float64), wide, equal_nan=True):
        return narrow
    return wide


@dataclass(frozen=True, slots=True)
class Codec:
    """One format capability: a variant, never a subclass.

    ``decode`` and ``encode`` are plain functions; a format that cannot be
    written leaves ``encode`` unset. ``references`` is the lightweight
    pre-parse the resolver uses to discover sub-resources.
    """

    name: str
    kind: AssetKind
    extensions: Tuple[str, ...]
    decode: Optional[Callable[[bytes, DecodeContext], Record]] = None
    encode: Optional[Callable[[Record, EncodeContext], Dict[str, bytes]]] = None
    references: Callable[[bytes], List[str]] = no_references
    sniff: Optional[Callable[[bytes], bool]] = None
    up_axis: str = "y"
    uv_origin: str = "top"
    # Image formats: (dtype, channels) layouts the encoder writes exactly.
    pixel_layouts: Tuple[Tuple[str, int], ...] = ()
    # Image formats whose pixels are linear by convention.
    linear: bool = False
    # Image formats whose encoder may lose information beyond bit depth.
    lossy: bool = False
    # Geometry formats that store float64 positions without rounding.
    wide_floats: bool = False
    # Geometry formats: material slots whose textures the encoder writes out.
    texture_factors: FrozenSet[MaterialFactor] = frozenset()

    @property
    def readable(self) -> bool:
        return self.decode is not None

    @property
    def writable(self) -> bool:
        return self.encode is not None

    def __str__(self) -> str:
        return self.name
