"""Wavefront OBJ and MTL.

OBJ stores positions, texture coordinates and normals in separate pools
and lets every face corner index each pool on its own, so meshes come
out in CORNER layout. Texture coordinates have a bottom-left origin.
Materials follow the MTL conventions, including the common PBR
extension keys (Pr, Pm, Ke, norm).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..errors import malformed
from ..io import identifiers
from ..model.material import MaterialFactor
from .records import (
    AssetKind,
    Codec,
    DecodeContext,
    EncodeContext,
    IndexLayout,
    MaterialRecord,
    MeshRecord,
    SceneRecord,
    TextureSlot,
    narrowest_floats,
)

__all__ = [
    "CODEC",
    "MTL_CODEC",
    "decode_obj",
    "encode_obj",
    "obj_references",
    "mtl_references",
    "parse_mtl",
]

# Map option -> number of arguments it takes (ranges take up to 3).
_MAP_OPTIONS = {
    "-blendu": 1,
    "-blendv": 1,
    "-bm": 1,
    "-boost": 1,
    "-cc": 1,
    "-clamp": 1,
    "-imfchan": 1,
    "-mm": 2,
    "-o": 3,
    "-s": 3,
    "-t": 3,
    "-texres": 1,
    "-type": 1,
}

_WORD_OPTIONS = {"-blendu", "-blendv", "-cc", "-clamp", "-imfchan", "-type"}

_MAP_FACTORS = {
    "map_kd": MaterialFactor.BASE_COLOR,
    "map_pm": MaterialFactor.METALLIC,
    "map_pr": MaterialFactor.ROUGHNESS,
    "map_ke": MaterialFactor.EMISSIVE,
    "norm": MaterialFactor.NORMAL,
    "map_bump": MaterialFactor.NORMAL,
    "bump": MaterialFactor.NORMAL,
}


def _text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _lines(data: bytes):
    for lineno, raw in enumerate(_text(data).splitlines(), 1):
        line = raw.split("#", 1)[0].strip()
        if line:
            parts = line.split(None, 1)
            yield lineno, parts[0], parts[1] if len(parts) > 1 else ""


def _split_mtllib(rest: str) -> List[str]:
    tokens = rest.split()
    if tokens and all(t.lower().endswith(".mtl") for t in tokens):
        return tokens
    return [rest.strip()] if rest.strip() else []


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def _map_argument(rest: str) -> Tuple[str, Dict[str, List[str]]]:
    """Split ``[-opt args...] filename`` into filename and options."""
    tokens = rest.split()
    options: Dict[str, List[str]] = {}
    i = 0
    while i < len(tokens) and tokens[i].lower() in _MAP_OPTIONS:
        opt = tokens[i].lower()
        args: List[str] = []
        i += 1
        # Always leave at least one token for the file name.
        while len(args) < _MAP_OPTIONS[opt] and i < len(tokens) - 1:
            if opt not in _WORD_OPTIONS and not _is_number(tokens[i]):
                break
            args.append(tokens[i])
            i += 1
        options[opt] = args
    return " ".join(tokens[i:]), options


def obj_references(data: bytes) -> List[str]:
    refs: List[str] = []
    for _, tag, rest in _lines(data):
        if tag == "mtllib":
            for name in _split_mtllib(rest):
                if name not in refs:
                    refs.append(name)
    return refs


def mtl_references(data: bytes) -> List[str]:
    refs: List[str] = []
    for _, tag, rest in _lines(data):
        if tag.lower() in _MAP_FACTORS:
            name, _ = _map_argument(rest)
            if name and name not in refs:
                refs.append(name)
    return refs


# MTL -------------------------------------------------------------------------
@dataclass(slots=True)
class _MtlEntry:
    name: str
    values: Dict[str, List[float]] = field(default_factory=dict)
    maps: Dict[MaterialFactor, Tuple[str, Dict[str, List[str]]]] = field(
        default_factory=dict
    )


def _is_grey(c: Optional[List[float]]) -> bool:
    return c is None or (c[0] == c[1] == c[2])


def _to_material(entry: _MtlEntry) -> MaterialRecord:
    v = entry.values
    kd, ks, ka = v.get("kd"), v.get("ks"), v.get("ka")
    # Prefer a chromatic color when diffuse is grey.
    if not _is_grey(kd):
        color = kd
    elif not _is_grey(ks):
        color = ks
    elif not _is_grey(ka):
        color = ka
    else:
        color = kd or [1.0, 1.0, 1.0]
    if "d" in v:
        alpha = v["d"][0]
    elif "tr" in v:
        alpha = 1.0 - v["tr"][0]
    else:
        alpha = 1.0
    if "pm" in v:
        metallic = v["pm"][0]
    elif ks is not None:
        metallic = sum(ks[:3]) / 3.0
    else:
        metallic = 0.0
    if "pr" in v:
        roughness = v["pr"][0]
    elif "ns" in v and v["ns"][0] > 0.1:
        roughness = min(math.sqrt(1.999 / v["ns"][0]), 1.0)
    else:
        roughness = 1.0
    rec = MaterialRecord(
        name=entry.name,
        base_color=(color[0], color[1], color[2], alpha),
        metallic=metallic,
        roughness=roughness,
        emissive=tuple(v.get("ke", [0.0, 0.0, 0.0])[:3]),  # type: ignore[arg-type]
        ior=v.get("ni", [1.5])[0],
    )
    for factor, (name, options) in entry.maps.items():
        rec.textures[factor] = TextureSlot(name)
        if factor is MaterialFactor.NORMAL and options.get("-bm"):
            rec.normal_scale = float(options["-bm"][0])
    return rec


def parse_mtl(data: bytes, identifier: str = "") -> List[MaterialRecord]:
    entries: List[_MtlEntry] = []
    current: Optional[_MtlEntry] = None
    for lineno, tag, rest in _lines(data):
        key = tag.lower()
        if key == "newmtl":
            current = _MtlEntry(rest.strip())
            entries.append(current)
            continue
        if current is None:
            continue
        if key in _MAP_FACTORS:
            name, options = _map_argument(rest)
            if name:
                current.maps.setdefault(_MAP_FACTORS[key], (name, options))
        elif key in ("kd", "ks", "ka", "ke", "ns", "d", "tr", "ni", "pr", "pm"):
            try:
                current.values[key] = [float(t) for t in rest.split()]
            except ValueError as exc:
                raise malformed(
                    f"line {lineno}: bad number in '{tag} {rest}'", identifier
                ) from exc
            values = current.values[key]
            if not values:
                raise malformed(
                    f"line {lineno}: '{tag}' needs a value", identifier
                )
            if key in ("kd", "ks", "ka", "ke") and len(values) < 3:
                current.values[key] = [values[0]] * 3
    return [_to_material(e) for e in entries]


# OBJ decode ------------------------------------------------------------------
def _library(reference: str, ctx: DecodeContext) -> List[MaterialRecord]:
    mtl_ident = ctx.resolve(reference)
    records = parse_mtl(ctx.require(reference), mtl_ident)
    # Texture paths in an MTL are relative to the MTL itself.
    for rec in records:
        for slot in rec.textures.values():
            slot.reference = identifiers.resolve_reference(
                mtl_ident, slot.reference
            )
    return records


@dataclass(slots=True)
class _Group:
    name: str
    material: Optional[str]
    corners: List[Tuple[int, int, int]] = field(default_factory=list)


def _index(token: str, count: int, what: str, lineno: int, ident: str) -> int:
    try:
        i = int(token)
    except ValueError as exc:
        raise malformed(f"line {lineno}: bad {what} index '{token}'", ident) from exc
    if i > 0:
        i -= 1
    elif i < 0:
        i += count
    else:
        raise malformed(f"line {lineno}: {what} index 0 is invalid", ident)
    if not 0 <= i < count:
        raise malformed(
            f"line {lineno}: {what} index {token} out of range ({count})", ident
        )
    return i


def decode_obj(data: bytes, ctx: DecodeContext) -> SceneRecord:
    ident = ctx.identifier
    positions: List[List[float]] = []
    colors: List[Optional[List[float]]] = []
    uvs: List[List[float]] = []
    normals: List[List[float]] = []
    groups: Dict[Tuple[str, Optional[str]], _Group] = {}
    materials: List[MaterialRecord] = []
    libraries: List[str] = []
    name = ""
    material: Optional[str] = None

    for lineno, tag, rest in _lines(data):
        if tag in ("v", "vt", "vn"):
            try:
                nums = [float(t) for t in rest.split()]
            except ValueError as exc:
                raise malformed(f"line {lineno}: bad number in '{tag}'", ident) from exc
            if tag == "v":
                if len(nums) < 3:
                    raise malformed(f"line {lineno}: vertex needs 3 values", ident)
                positions.append(nums[:3])
                colors.append(nums[3:6] if len(nums) >= 6 else None)
            elif tag == "vt":
                if not nums:
                    raise malformed(f"line {lineno}: empty texture coordinate", ident)
                uvs.append((nums + [0.0])[:2])
            else:
                if len(nums) < 3:
                    raise malformed(f"line {lineno}: normal needs 3 values", ident)
                normals.append(nums[:3])
        elif tag == "f":
            corners = []
            for token in rest.split():
                parts = token.split("/")
                p = _index(parts[0], len(positions), "vertex", lineno, ident)
                t = n = -1
                if len(parts) > 1 and parts[1]:
                    t = _index(parts[1], len(uvs), "texture", lineno, ident)
                if len(parts) > 2 and parts[2]:
                    n = _index(parts[2], len(normals), "normal", lineno, ident)
                corners.append((p, t, n))
            if len(corners) < 3:
                raise malformed(f"line {lineno}: face needs 3 vertices", ident)
            key = (name, material)
            group = groups.get(key)
            if group is None:
                group = groups[key] = _Group(name, material)
            for k in range(1, len(corners) - 1):
                group.corners.extend((corners[0], corners[k], corners[k + 1]))
        elif tag in ("o", "g"):
            name = rest.strip()
        elif tag == "usemtl":
            material = rest.strip() or None
        elif tag == "mtllib":
            for lib in _split_mtllib(rest):
                if lib not in libraries:
                    libraries.append(lib)
                    materials.extend(_library(lib, ctx))

    material_index = {m.name: i for i, m in enumerate(materials)}
    pos = narrowest_floats(positions) if positions else np.zeros((0, 3), np.float32)
    color_pool = None
    if colors and all(c is not None for c in colors):
        rgb = np.asarray(colors, dtype=np.float32)
        color_pool = np.concatenate([rgb, np.ones((len(rgb), 1), np.float32)], axis=1)
    elif any(c is not None for c in colors):
        ctx.warn(f"{ident}: vertex colors present on only some vertices; dropped")
    uv_pool = np.asarray(uvs, dtype=np.float32).reshape(-1, 2)
    normal_pool = np.asarray(normals, dtype=np.float32).reshape(-1, 3)

    scene = SceneRecord(materials=materials)
    for group in groups.values():
        if not group.corners:
            continue
        corners = np.asarray(group.corners, dtype=np.int64)
        mat = None
        if group.material is not None:
            mat = material_index.get(group.material)
            if mat is None:
                ctx.warn(f"{ident}: unknown material '{group.material}'")
        has_uv = bool((corners[:, 1] >= 0).any())
        has_n = bool((corners[:, 2] >= 0).any())
        scene.meshes.append(
            MeshRecord(
                positions=pos,
                layout=IndexLayout.CORNER,
                indices=corners[:, 0],
                uvs=uv_pool if has_uv else None,
                uv_indices=corners[:, 1] if has_uv else None,
                normals=normal_pool if has_n else None,
                normal_indices=corners[:, 2] if has_n else None,
                colors=color_pool,
                material=mat,
                name=group.name or (group.material or ""),
            )
        )
    return scene


# OBJ encode ------------------------------------------------------------------
def _f(value) -> str:
    return repr(float(value))


def _unique_names(materials: List[MaterialRecord]) -> List[str]:
    names: List[str] = []
    for i, mat in enumerate(materials):
        base = (mat.name or f"material_{i}").replace(" ", "_")
        candidate = base
        n = 1
        while candidate in names:
            candidate = f"{base}_{n}"
            n += 1
        names.append(candidate)
    return names


def _encode_mtl(
    materials: List[MaterialRecord], names: List[str], ctx: EncodeContext
) -> str:
    out = [f"# {len(materials)} materials"]
    for name, mat in zip(names, materials):
        r, g, b, a = mat.base_color
        out.append("")
        out.append(f"newmtl {name}")
        out.append(f"Kd {_f(r)} {_f(g)} {_f(b)}")
        out.append(f"Ks {_f(mat.metallic)} {_f(mat.metallic)} {_f(mat.metallic)}")
        if mat.roughness > 0:
            out.append(f"Ns {_f(1.999 / (mat.roughness * mat.roughness))}")
        out.append(f"d {_f(a)}")
        out.append(f"Pr {_f(mat.roughness)}")
        out.append(f"Pm {_f(mat.metallic)}")
        if any(mat.emissive):
            out.append("Ke " + " ".join(_f(c) for c in mat.emissive))
        if mat.ior != 1.5:
            out.append(f"Ni {_f(mat.ior)}")
        for factor, slot in mat.textures.items():
            if factor is MaterialFactor.BASE_COLOR:
                out.append(f"map_Kd {slot.reference}")
            elif factor is MaterialFactor.METALLIC:
                out.append(f"map_Pm {slot.reference}")
            elif factor is MaterialFactor.ROUGHNESS:
                out.append(f"map_Pr {slot.reference}")
            elif factor is MaterialFactor.EMISSIVE:
                out.append(f"map_Ke {slot.reference}")
            elif factor is MaterialFactor.NORMAL:
                bm = f"-bm {_f(mat.normal_scale)} " if mat.normal_scale != 1.0 else ""
                out.append(f"norm {bm}{slot.reference}")
            else:
                ctx.warn(
                    f"obj: material '{name}' drops its {factor.value} texture"
                )
    return "\n".join(out) + "\n"


def encode_obj(scene: SceneRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    names = _unique_names(scene.materials)
    lines = ["# assetio"]
    if scene.animations:
        ctx.warn(f"obj: {len(scene.animations)} animation(s) dropped")
    if scene.materials:
        mtl_name = f"{ctx.stem}.mtl"
        lines.append(f"mtllib {mtl_name}")
        files[ctx.sibling(mtl_name)] = _encode_mtl(
            scene.materials, names, ctx
        ).encode("utf-8")
    # OBJ pools are global; each needs its own running offset.
    v_off = t_off = n_off = 1
    for i, mesh in enumerate(scene.meshes):
        if mesh.layout is not IndexLayout.VERTEX:
            raise ValueError("obj encoder expects VERTEX layout meshes")
        if mesh.tangents is not None:
            ctx.warn(f"obj: mesh '{mesh.name}' drops its tangents")
        lines.append(f"o {(mesh.name or f'mesh_{i}').replace(' ', '_')}")
        if mesh.material is not None:
            lines.append(f"usemtl {names[mesh.material]}")
        colors = mesh.colors
        if colors is not None and colors.dtype == np.uint8:
            colors = colors.astype(np.float64) / 255.0
        for k, p in enumerate(mesh.positions):
            line = f"v {_f(p[0])} {_f(p[1])} {_f(p[2])}"
            if colors is not None:
                c = colors[k]
                line += f" {_f(c[0])} {_f(c[1])} {_f(c[2])}"
            lines.append(line)
        if mesh.uvs is not None:
            lines.extend(f"vt {_f(t[0])} {_f(t[1])}" for t in mesh.uvs)
        if mesh.normals is not None:
            lines.extend(
                f"vn {_f(n[0])} {_f(n[1])} {_f(n[2])}" for n in mesh.normals
            )
        has_uv = mesh.uvs is not None
        has_n = mesh.normals is not None
        tris = np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3)
        for tri in tris:
            corners = []
            for k in tri:
                v = k + v_off
                if has_uv and has_n:
                    corners.append(f"{v}/{k + t_off}/{k + n_off}")
                elif has_uv:
                    corners.append(f"{v}/{k + t_off}")
                elif has_n:
                    corners.append(f"{v}//{k + n_off}")
                else:
                    corners.append(str(v))
            lines.append("f " + " ".join(corners))
        v_off += len(mesh.positions)
        t_off += len(mesh.uvs) if has_uv else 0
        n_off += len(mesh.normals) if has_n else 0
    files[ctx.identifier] = ("\n".join(lines) + "\n").encode("utf-8")
    for name, payload in scene.embedded.items():
        files[ctx.sibling(name)] = payload
    return files


def _decode_mtl_only(data: bytes, ctx: DecodeContext) -> SceneRecord:
    return SceneRecord(materials=parse_mtl(data, ctx.identifier))


CODEC = Codec(
    name="obj",
    kind=AssetKind.SCENE,
    extensions=("obj",),
    decode=decode_obj,
    encode=encode_obj,
    references=obj_references,
    uv_origin="bottom",
    wide_floats=True,
    texture_factors=frozenset(
        {
            MaterialFactor.BASE_COLOR,
            MaterialFactor.METALLIC,
            MaterialFactor.ROUGHNESS,
            MaterialFactor.EMISSIVE,
            MaterialFactor.NORMAL,
        }
    ),
)

MTL_CODEC = Codec(
    name="mtl",
    kind=AssetKind.AUXILIARY,
    extensions=("mtl",),
    decode=_decode_mtl_only,
    references=mtl_references,
)
