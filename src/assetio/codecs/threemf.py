"""3D Manufacturing Format (``.3mf``): an OPC zip holding an XML model.

Supported: mesh objects, component assemblies, build item transforms,
model units, base materials, color groups and texture coordinate groups.
Build and component transforms are baked into vertex positions.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

import numpy as np

from ..errors import malformed
from ..model.material import MaterialFactor
from ..model.texture import Interpolation, Sampler, Wrapping
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

__all__ = ["CODEC", "decode_3mf", "encode_3mf", "UNITS"]

CORE_NS = "http://schemas.microsoft.com/3dmanufacturing/core/2015/02"
MATERIAL_NS = "http://schemas.microsoft.com/3dmanufacturing/material/2015/02"
_RELS_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
_MODEL_REL = "http://schemas.microsoft.com/3dmanufacturing/2013/01/3dmodel"
_DEFAULT_MODEL = "3D/3dmodel.model"

UNITS = {
    "micron": 1e-6,
    "millimeter": 1e-3,
    "centimeter": 1e-2,
    "inch": 0.0254,
    "foot": 0.3048,
    "meter": 1.0,
}

_TILE_STYLES = {
    "wrap": Wrapping.REPEAT,
    "mirror": Wrapping.MIRRORED_REPEAT,
    "clamp": Wrapping.CLAMP_TO_EDGE,
    "none": Wrapping.CLAMP_TO_EDGE,
}


def _core(tag: str) -> str:
    return f"{{{CORE_NS}}}{tag}"


def _mat(tag: str) -> str:
    return f"{{{MATERIAL_NS}}}{tag}"


def _parse_color(value: str, ident: str) -> Tuple[float, float, float, float]:
    text = value.strip().lstrip("#")
    if len(text) not in (6, 8):
        raise malformed(f"bad 3MF color '{value}'", ident)
    try:
        channels = [
            int(text[i : i + 2], 16) / 255.0 for i in range(0, len(text), 2)
        ]
    except ValueError as exc:
        raise malformed(f"bad 3MF color '{value}'", ident) from exc
    if len(channels) == 3:
        channels.append(1.0)
    return tuple(channels)  # type: ignore[return-value]


def _transform(value: Optional[str], ident: str) -> np.ndarray:
    """3MF 12-float row-vector transform as a 4x4 column-vector matrix."""
    out = np.eye(4)
    if not value:
        return out
    try:
        m = [float(v) for v in value.split()]
    except ValueError as exc:
        raise malformed(f"bad 3MF transform '{value}'", ident) from exc
    if len(m) != 12:
        raise malformed(f"3MF transform needs 12 values, has {len(m)}", ident)
    out[:3, :3] = np.asarray(m[:9]).reshape(3, 3).T
    out[:3, 3] = m[9:]
    return out


def _model_part(archive: zipfile.ZipFile, ident: str) -> str:
    try:
        rels = ET.fromstring(archive.read("_rels/.rels"))
    except KeyError:
        return _DEFAULT_MODEL
    except ET.ParseError as exc:
        raise malformed(
            f"3MF relationships are not valid XML: {exc}", ident
        ) from exc
    for rel in rels.iter(f"{{{_RELS_NS}}}Relationship"):
        if rel.get("Type") == _MODEL_REL:
            return rel.get("Target", _DEFAULT_MODEL).lstrip("/")
    return _DEFAULT_MODEL


@dataclass(slots=True)
class _Resources:
    # (base materials group id, index) -> scene material index
    base: Dict[Tuple[str, int], int] = field(default_factory=dict)
    colors: Dict[str, List[Tuple[float, float, float, float]]] = field(
        default_factory=dict
    )
    # texture group id -> (uv pool, scene material index)
    uv_groups: Dict[str, Tuple[np.ndarray, int]] = field(default_factory=dict)
    objects: Dict[str, ET.Element] = field(default_factory=dict)


def _read_resources(
    resources: ET.Element,
    archive: zipfile.ZipFile,
    scene: SceneRecord,
    ctx: DecodeContext,
) -> _Resources:
    ident = ctx.identifier
    res = _Resources()
    textures: Dict[str, TextureSlot] = {}
    for group in resources.findall(_core("basematerials")):
        gid = group.get("id", "")
        for k, base in enumerate(group.findall(_core("base"))):
            res.base[(gid, k)] = len(scene.materials)
            scene.materials.append(
                MaterialRecord(
                    name=base.get("name", ""),
                    base_color=_parse_color(
                        base.get("displaycolor", "#FFFFFF"), ident
                    ),
                )
            )
    for group in resources.findall(_mat("colorgroup")):
        res.colors[group.get("id", "")] = [
            _parse_color(c.get("color", "#FFFFFF"), ident)
            for c in group.findall(_mat("color"))
        ]
    for tex in resources.findall(_mat("texture2d")):
        path = tex.get("path", "").lstrip("/")
        try:
            payload = archive.read(path)
        except KeyError:
            ctx.warn(f"{ident}: texture '{path}' is missing from the package")
            continue
        key = f"{ident}/{path}"
        scene.embedded[key] = payload
        interpolation = (
            Interpolation.NEAREST
            if tex.get("filter", "auto") == "nearest"
            else Interpolation.LINEAR
        )
        textures[tex.get("id", "")] = TextureSlot(
            key,
            Sampler(
                min_filter=interpolation,
                mag_filter=interpolation,
                wrap_s=_TILE_STYLES.get(tex.get("tilestyleu"), Wrapping.REPEAT),
                wrap_t=_TILE_STYLES.get(tex.get("tilestylev"), Wrapping.REPEAT),
            ),
        )
    for group in resources.findall(_mat("texture2dgroup")):
        slot = textures.get(group.get("texid", ""))
        if slot is None:
            continue
        coords = [
            (float(c.get("u", 0)), float(c.get("v", 0)))
            for c in group.findall(_mat("tex2coord"))
        ]
        gid = group.get("id", "")
        material = MaterialRecord(name=f"texture_{gid}")
        material.textures[MaterialFactor.BASE_COLOR] = slot
        res.uv_groups[gid] = (
            np.asarray(coords, dtype=np.float32).reshape(-1, 2),
            len(scene.materials),
        )
        scene.materials.append(material)
    for obj in resources.findall(_core("object")):
        res.objects[obj.get("id", "")] = obj
    return res


def _int(value: Optional[str], default: int) -> int:
    return default if value is None else int(value)


def _mesh_records(
    obj: ET.Element, matrix: np.ndarray, res: _Resources, ident: str
) -> List[MeshRecord]:
    mesh = obj.find(_core("mesh"))
    if mesh is None:
        return []
    try:
        vertices = [
            (float(v.get("x")), float(v.get("y")), float(v.get("z")))
            for v in mesh.iter(_core("vertex"))
        ]
        triangles = [
            (int(t.get("v1")), int(t.get("v2")), int(t.get("v3")))
            for t in mesh.iter(_core("triangle"))
        ]
    except (TypeError, ValueError) as exc:
        raise malformed(
            f"bad vertex or triangle in object {obj.get('id')}", ident
        ) from exc
    if not triangles:
        return []
    if not vertices:
        raise malformed(f"object {obj.get('id')} has triangles but no vertices", ident)
    positions = narrowest_floats(vertices)
    indices = np.asarray(triangles, dtype=np.int64)
    if indices.min() < 0 or indices.max() >= len(positions):
        raise malformed(
            f"object {obj.get('id')} has a vertex index out of range", ident
        )
    if not np.array_equal(matrix, np.eye(4)):
        moved = positions.astype(np.float64) @ matrix[:3, :3].T + matrix[:3, 3]
        positions = moved.astype(positions.dtype)
    flip = np.linalg.det(matrix[:3, :3]) < 0

    obj_pid = obj.get("pid")
    obj_pindex = _int(obj.get("pindex"), 0)
    colors: Optional[np.ndarray] = None
    uv_pool: Optional[np.ndarray] = None
    uv_corners = np.full(indices.shape, -1, dtype=np.int64)
    groups: Dict[Optional[int], List[int]] = {}
    for k, tri in enumerate(mesh.iter(_core("triangle"))):
        pid = tri.get("pid", obj_pid)
        p1 = _int(tri.get("p1"), obj_pindex)
        corner_props = (p1, _int(tri.get("p2"), p1), _int(tri.get("p3"), p1))
        material: Optional[int] = None
        if pid is not None and (pid, p1) in res.base:
            material = res.base[(pid, p1)]
        elif pid in res.colors:
            palette = res.colors[pid]
            if colors is None:
                colors = np.ones((len(positions), 4), dtype=np.float32)
            for v, p in zip(indices[k], corner_props):
                if 0 <= p < len(palette):
                    colors[v] = palette[p]
            if obj_pid is not None and (obj_pid, obj_pindex) in res.base:
                material = res.base[(obj_pid, obj_pindex)]
        elif pid in res.uv_groups:
            pool, material = res.uv_groups[pid]
            uv_pool = pool
            uv_corners[k] = [p if 0 <= p < len(pool) else -1 for p in corner_props]
        groups.setdefault(material, []).append(k)

    if flip:
        indices = indices[:, ::-1].copy()
        uv_corners = uv_corners[:, ::-1].copy()

    name = obj.get("name") or f"object_{obj.get('id')}"
    records = []
    for material, rows in groups.items():
        rows_arr = np.asarray(rows, dtype=np.int64)
        uv_idx = uv_corners[rows_arr].reshape(-1)
        has_uv = uv_pool is not None and bool((uv_idx >= 0).any())
        records.append(
            MeshRecord(
                positions=positions,
                layout=IndexLayout.CORNER,
                indices=indices[rows_arr].reshape(-1),
                uvs=uv_pool if has_uv else None,
                uv_indices=uv_idx if has_uv else None,
                colors=colors,
                material=material,
                name=name if len(groups) == 1 else f"{name}_{len(records)}",
            )
        )
    return records


def _expand(
    object_id: str,
    matrix: np.ndarray,
    res: _Resources,
    ident: str,
    depth: int = 0,
) -> List[MeshRecord]:
    obj = res.objects.get(object_id)
    if obj is None:
        raise malformed(f"build references unknown object {object_id}", ident)
    if depth > 32:
        raise malformed(f"component nesting too deep at object {object_id}", ident)
    try:
        records = _mesh_records(obj, matrix, res, ident)
    except ValueError as exc:
        raise malformed(f"bad property index in object {object_id}", ident) from exc
    components = obj.find(_core("components"))
    if components is not None:
        for comp in components.findall(_core("component")):
            child = matrix @ _transform(comp.get("transform"), ident)
            records.extend(
                _expand(comp.get("objectid", ""), child, res, ident, depth + 1)
            )
    return records


def decode_3mf(data: bytes, ctx: DecodeContext) -> SceneRecord:
    ident = ctx.identifier
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise malformed(f"not a 3MF package: {exc}", ident) from exc
    with archive:
        part = _model_part(archive, ident)
        try:
            root = ET.fromstring(archive.read(part))
        except KeyError as exc:
            raise malformed(f"3MF package has no model part '{part}'", ident) from exc
        except ET.ParseError as exc:
            raise malformed(f"3MF model is not valid XML: {exc}", ident) from exc
        if root.tag != _core("model"):
            raise malformed(f"unexpected 3MF root element {root.tag}", ident)
        unit = root.get("unit", "millimeter")
        if unit not in UNITS:
            raise malformed(f"unknown 3MF unit '{unit}'", ident)
        scene = SceneRecord(unit_scale=UNITS[unit])
        resources = root.find(_core("resources"))
        res = (
            _read_resources(resources, archive, scene, ctx)
            if resources is not None
            else _Resources()
        )
    for meta in root.findall(_core("metadata")):
        if meta.get("name") == "Title" and meta.text:
            scene.name = meta.text.strip()
    build = root.find(_core("build"))
    for item in build.findall(_core("item")) if build is not None else []:
        matrix = _transform(item.get("transform"), ident)
        scene.meshes.extend(_expand(item.get("objectid", ""), matrix, res, ident))
    return scene


# Encode ----------------------------------------------------------------------
_CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>
<Default Extension="model" ContentType="application/vnd.ms-package.3dmanufacturing-3dmodel+xml"/>
</Types>
"""

_RELS = f"""<?xml version="1.0" encoding="UTF-8"?>
<Relationships xmlns="{_RELS_NS}">
<Relationship Target="/{_DEFAULT_MODEL}" Id="rel0" Type="{_MODEL_REL}"/>
</Relationships>
"""


def _hex_color(rgba) -> str:
    values = [int(round(min(max(float(c), 0.0), 1.0) * 255)) for c in rgba]
    return "#" + "".join(f"{v:02X}" for v in values)


def _unit_for(scale: float) -> Tuple[str, float]:
    for name, value in UNITS.items():
        if np.isclose(scale, value, rtol=1e-12, atol=0.0):
            return name, 1.0
    return "meter", scale


def _f(value) -> str:
    return repr(float(value))


def encode_3mf(scene: SceneRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    ET.register_namespace("", CORE_NS)
    ET.register_namespace("m", MATERIAL_NS)
    unit, factor = _unit_for(scene.unit_scale)
    if scene.animations:
        ctx.warn(f"3mf: {len(scene.animations)} animation(s) dropped")
    root = ET.Element(_core("model"), {"unit": unit})
    if scene.name:
        meta = ET.SubElement(root, _core("metadata"), {"name": "Title"})
        meta.text = scene.name
    resources = ET.SubElement(root, _core("resources"))
    build = ET.SubElement(root, _core("build"))
    next_id = 1
    base_id = None
    if scene.materials:
        base_id = str(next_id)
        next_id += 1
        group = ET.SubElement(resources, _core("basematerials"), {"id": base_id})
        for i, mat in enumerate(scene.materials):
            ET.SubElement(
                group,
                _core("base"),
                {
                    "name": mat.name or f"material_{i}",
                    "displaycolor": _hex_color(mat.base_color),
                },
            )
            if mat.textures:
                ctx.warn(f"3mf: material '{mat.name}' drops its textures")
    for i, mesh in enumerate(scene.meshes):
        if mesh.layout is not IndexLayout.VERTEX:
            raise ValueError("3MF encoder expects VERTEX layout meshes")
        if mesh.uvs is not None or mesh.normals is not None:
            ctx.warn(f"3mf: mesh '{mesh.name}' drops normals and texture coordinates")
        color_id = None
        if mesh.colors is not None:
            color_id = str(next_id)
            next_id += 1
            colors = np.asarray(mesh.colors)
            if colors.dtype == np.uint8:
                colors = colors.astype(np.float64) / 255.0
            cgroup = ET.SubElement(resources, _mat("colorgroup"), {"id": color_id})
            for c in colors:
                ET.SubElement(cgroup, _mat("color"), {"color": _hex_color(c)})
        object_id = str(next_id)
        next_id += 1
        attrs = {"id": object_id, "type": "model", "name": mesh.name or f"mesh_{i}"}
        if mesh.material is not None and base_id is not None:
            attrs["pid"] = base_id
            attrs["pindex"] = str(mesh.material)
        obj = ET.SubElement(resources, _core("object"), attrs)
        mesh_el = ET.SubElement(obj, _core("mesh"))
        vertices = ET.SubElement(mesh_el, _core("vertices"))
        for p in np.asarray(mesh.positions) * factor:
            ET.SubElement(
                vertices, _core("vertex"), {"x": _f(p[0]), "y": _f(p[1]), "z": _f(p[2])}
            )
        triangles = ET.SubElement(mesh_el, _core("triangles"))
        for tri in np.asarray(mesh.indices, dtype=np.int64).reshape(-1, 3):
            t = {"v1": str(tri[0]), "v2": str(tri[1]), "v3": str(tri[2])}
            if color_id is not None:
                t.update(pid=color_id, p1=str(tri[0]), p2=str(tri[1]), p3=str(tri[2]))
            ET.SubElement(triangles, _core("triangle"), t)
        ET.SubElement(build, _core("item"), {"objectid": object_id})

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("[Content_Types].xml", _CONTENT_TYPES)
        archive.writestr("_rels/.rels", _RELS)
        archive.writestr(
            _DEFAULT_MODEL, ET.tostring(root, encoding="utf-8", xml_declaration=True)
        )
    return {ctx.identifier: buf.getvalue()}


def looks_like_3mf(data: bytes) -> bool:
    return data[:4] == b"PK\x03\x04" and (
        b"3dmodel" in data[:4096] or b"3dmodel" in data[-4096:]
    )


CODEC = Codec(
    name="3mf",
    kind=AssetKind.SCENE,
    extensions=("3mf",),
    decode=decode_3mf,
    encode=encode_3mf,
    sniff=looks_like_3mf,
    up_axis="z",
    wide_floats=True,
)
