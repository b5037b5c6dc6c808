"""PBR materials with weak texture references."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from ..errors import malformed

__all__ = ["MaterialFactor", "TextureRef", "Material", "DATA_FACTORS"]


class MaterialFactor(Enum):
    BASE_COLOR = "base_color"
    METALLIC = "metallic"
    ROUGHNESS = "roughness"
    METALLIC_ROUGHNESS = "metallic_roughness"
    OCCLUSION = "occlusion"
    NORMAL = "normal"
    EMISSIVE = "emissive"
    TRANSMISSION = "transmission"


# Factors whose textures carry data rather than color.
DATA_FACTORS = frozenset(
    {
        MaterialFactor.METALLIC,
        MaterialFactor.ROUGHNESS,
        MaterialFactor.METALLIC_ROUGHNESS,
        MaterialFactor.OCCLUSION,
        MaterialFactor.NORMAL,
        MaterialFactor.TRANSMISSION,
    }
)


@dataclass(frozen=True, slots=True)
class TextureRef:
    """Identifier into the owning model's texture table."""

    identifier: str
    modulates: MaterialFactor


def _floats(name: str, values, n: int) -> Tuple[float, ...]:
    out = tuple(float(v) for v in values)
    if len(out) != n:
        raise malformed(f"{name} needs {n} components, got {len(out)}")
    return out


@dataclass(frozen=True, slots=True)
class Material:
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
    textures: Tuple[TextureRef, ...] = ()

    def __post_init__(self) -> None:
        set_ = object.__setattr__
        set_(self, "base_color", _floats("base_color", self.base_color, 4))
        set_(self, "emissive", _floats("emissive", self.emissive, 3))
        refs = tuple(self.textures)
        seen = set()
        for ref in refs:
            if ref.modulates in seen:
                raise malformed(
                    f"material '{self.name}' has two textures for "
                    f"{ref.modulates.value}"
                )
            seen.add(ref.modulates)
        set_(self, "textures", refs)

    def texture_for(self, factor: MaterialFactor) -> Optional[str]:
        for ref in self.textures:
            if ref.modulates is factor:
                return ref.identifier
        return None

    def texture_identifiers(self) -> Tuple[str, ...]:
        return tuple(ref.identifier for ref in self.textures)

    def with_texture(self, factor: MaterialFactor, identifier: str) -> "Material":
        refs = [r for r in self.textures if r.modulates is not factor]
        refs.append(TextureRef(identifier, factor))
        return replace(self, textures=tuple(refs))

    def without_textures(self) -> "Material":
        return replace(self, textures=())
