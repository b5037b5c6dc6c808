"""Models: ordered mesh/material pairs plus their texture table."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Tuple

from ..errors import MissingReference, malformed
from .animation import KeyFrames
from .geometry import TriMesh
from .material import Material
from .texture import Texture2D

if TYPE_CHECKING:
    from ..io.raw_assets import RawAssets

__all__ = ["Primitive", "Model", "AssetGraph"]


@dataclass(frozen=True, slots=True, eq=False)
class Primitive:
    mesh: TriMesh
    # Index into Model.materials; materials are shared by index.
    material: Optional[int] = None
    name: str = ""


@dataclass(frozen=True, slots=True, eq=False)
class Model:
    primitives: Tuple[Primitive, ...] = ()
    materials: Tuple[Material, ...] = ()
    textures: Mapping[str, Texture2D] = field(default_factory=dict)
    name: str = ""
    animations: Tuple[KeyFrames, ...] = ()

    def __post_init__(self) -> None:
        prims = tuple(self.primitives)
        mats = tuple(self.materials)
        anims = tuple(self.animations)
        for anim in anims:
            for target in anim.targets:
                if not 0 <= target < len(prims):
                    raise malformed(
                        f"key frames '{anim.name}' target primitive {target} but "
                        f"the model has {len(prims)}"
                    )
        textures = MappingProxyType(dict(self.textures))
        for i, prim in enumerate(prims):
            if prim.material is not None and not 0 <= prim.material < len(mats):
                raise malformed(
                    f"primitive {i} uses material {prim.material} but the "
                    f"model has {len(mats)}"
                )
        for mat in mats:
            for ref in mat.textures:
                if ref.identifier not in textures:
                    raise MissingReference(
                        message=(
                            f"material '{mat.name}' references a texture "
                            "missing from the model"
                        ),
                        identifier=ref.identifier,
                    )
        object.__setattr__(self, "primitives", prims)
        object.__setattr__(self, "materials", mats)
        object.__setattr__(self, "textures", textures)
        object.__setattr__(self, "animations", anims)

    def __iter__(self) -> Iterator[Tuple[TriMesh, Optional[Material]]]:
        for prim in self.primitives:
            yield prim.mesh, self.material_of(prim)

    def __len__(self) -> int:
        return len(self.primitives)

    def material_of(self, primitive: Primitive) -> Optional[Material]:
        if primitive.material is None:
            return None
        return self.materials[primitive.material]

    @property
    def vertex_count(self) -> int:
        return sum(p.mesh.vertex_count for p in self.primitives)

    @property
    def triangle_count(self) -> int:
        return sum(p.mesh.triangle_count for p in self.primitives)


@dataclass(frozen=True, slots=True, eq=False)
class AssetGraph:
    """Canonical assets for a batch of roots and the bytes they came from."""

    assets: Mapping[str, Any]
    raw: "RawAssets"

    def __post_init__(self) -> None:
        object.__setattr__(self, "assets", MappingProxyType(dict(self.assets)))

    def __getitem__(self, identifier: str) -> Any:
        return self.assets[identifier]

    def __iter__(self):
        return iter(self.assets)

    def __len__(self) -> int:
        return len(self.assets)

    def summary(self) -> Dict[str, int]:
        return {
            "roots": len(self.assets),
            "resources": len(self.raw),
            "bytes": self.raw.total_bytes,
        }
