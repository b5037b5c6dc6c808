"""glTF 2.0, as ``.gltf`` JSON with side files or as binary ``.glb``.

The JSON document is handled by pygltflib; buffers and accessors are read
with numpy directly so interleaved views and sparse accessors come out as
plain ``(count, width)`` arrays. Node transforms are baked into the
vertex data: records carry no hierarchy.
"""

from __future__ import annotations

import json
import struct
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

import numpy as np
from pygltflib import (
    ARRAY_BUFFER,
    ELEMENT_ARRAY_BUFFER,
    FLOAT,
    GLTF2,
    SCALAR,
    UNSIGNED_BYTE,
    UNSIGNED_INT,
    VEC2,
    VEC3,
    VEC4,
    Accessor,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Image,
    Material,
    Mesh,
    Node,
    NormalMaterialTexture,
    OcclusionTextureInfo,
    PbrMetallicRoughness,
    Primitive,
    Sampler as GltfSampler,
    Scene,
    Texture,
    TextureInfo,
)

from ..errors import malformed
from ..io import identifiers
from ..io.source import decode_data_url
from ..model.animation import quaternion_matrix
from ..model.material import MaterialFactor
from ..model.texture import Interpolation, Sampler, Wrapping
from .records import (
    AnimationRecord,
    AssetKind,
    Codec,
    DecodeContext,
    EncodeContext,
    IndexLayout,
    MaterialRecord,
    MeshRecord,
    SceneRecord,
    TextureSlot,
)

__all__ = [
    "GLTF_CODEC",
    "GLB_CODEC",
    "decode_gltf",
    "encode_gltf",
    "encode_glb",
    "gltf_references",
    "split_glb",
    "build_glb",
]

GLB_MAGIC = 0x46546C67
JSON_CHUNK = 0x4E4F534A
BIN_CHUNK = 0x004E4942

_COMPONENT_DTYPES = {
    5120: np.dtype("<i1"),
    5121: np.dtype("<u1"),
    5122: np.dtype("<i2"),
    5123: np.dtype("<u2"),
    5125: np.dtype("<u4"),
    5126: np.dtype("<f4"),
}
_NORMALIZE_DIVISORS = {5120: 127.0, 5121: 255.0, 5122: 32767.0, 5123: 65535.0}
_TYPE_WIDTHS = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

_MODE_TRIANGLES = 4
_MODE_STRIP = 5
_MODE_FAN = 6

_FILTERS = {9728: Interpolation.NEAREST, 9729: Interpolation.LINEAR}
# Minification filter -> (filter, mipmap filter)
_MIN_FILTERS = {
    9728: (Interpolation.NEAREST, None),
    9729: (Interpolation.LINEAR, None),
    9984: (Interpolation.NEAREST, Interpolation.NEAREST),
    9985: (Interpolation.LINEAR, Interpolation.NEAREST),
    9986: (Interpolation.NEAREST, Interpolation.LINEAR),
    9987: (Interpolation.LINEAR, Interpolation.LINEAR),
}
_WRAPS = {
    10497: Wrapping.REPEAT,
    33071: Wrapping.CLAMP_TO_EDGE,
    33648: Wrapping.MIRRORED_REPEAT,
}

_TRANSMISSION = "KHR_materials_transmission"
_IOR = "KHR_materials_ior"
_EMISSIVE_STRENGTH = "KHR_materials_emissive_strength"

# Material slots a glTF material can point at.
_TEXTURE_FACTORS = frozenset(
    {
        MaterialFactor.BASE_COLOR,
        MaterialFactor.METALLIC_ROUGHNESS,
        MaterialFactor.NORMAL,
        MaterialFactor.OCCLUSION,
        MaterialFactor.EMISSIVE,
        MaterialFactor.TRANSMISSION,
    }
)


# Container -------------------------------------------------------------------
def split_glb(data: bytes, identifier: str = "") -> Tuple[bytes, Optional[bytes]]:
    """Return the JSON chunk and the optional BIN chunk of a GLB file."""
    if len(data) < 20:
        raise malformed("GLB file is truncated", identifier)
    magic, version, total = struct.unpack_from("<III", data)
    if magic != GLB_MAGIC:
        raise malformed("not a GLB file (bad magic)", identifier)
    if version != 2:
        raise malformed(f"unsupported GLB version {version}", identifier)
    if total > len(data):
        raise malformed(
            f"GLB declares {total} bytes but has {len(data)}", identifier
        )
    json_chunk: Optional[bytes] = None
    bin_chunk: Optional[bytes] = None
    pos = 12
    while pos + 8 <= total:
        length, kind = struct.unpack_from("<II", data, pos)
        pos += 8
        if pos + length > total:
            raise malformed("GLB chunk runs past end of file", identifier)
        chunk = data[pos : pos + length]
        pos += length
        if kind == JSON_CHUNK and json_chunk is None:
            json_chunk = chunk
        elif kind == BIN_CHUNK and bin_chunk is None:
            bin_chunk = chunk
    if json_chunk is None:
        raise malformed("GLB has no JSON chunk", identifier)
    return json_chunk, bin_chunk


def build_glb(document: str, blob: bytes) -> bytes:
    json_bytes = document.encode("utf-8")
    json_bytes += b" " * (-len(json_bytes) % 4)
    blob = bytes(blob) + b"\0" * (-len(blob) % 4)
    total = 12 + 8 + len(json_bytes) + (8 + len(blob) if blob else 0)
    out = bytearray(struct.pack("<III", GLB_MAGIC, 2, total))
    out += struct.pack("<II", len(json_bytes), JSON_CHUNK)
    out += json_bytes
    if blob:
        out += struct.pack("<II", len(blob), BIN_CHUNK)
        out += blob
    return bytes(out)


def _document(data: bytes, identifier: str) -> Tuple[GLTF2, Optional[bytes]]:
    bin_chunk = None
    if data[:4] == b"glTF":
        text, bin_chunk = split_glb(data, identifier)
    else:
        text = data
    try:
        gltf = GLTF2.from_json(text.decode("utf-8-sig"))
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        raise malformed(f"invalid glTF JSON: {exc}", identifier) from exc
    version = str(getattr(gltf.asset, "version", "2.0") or "2.0")
    if not version.startswith("2"):
        raise malformed(f"unsupported glTF version {version}", identifier)
    return gltf, bin_chunk


def _external(uri: Optional[str]) -> Optional[str]:
    if not uri or identifiers.is_data_url(uri):
        return None
    return unquote(uri)


def gltf_references(data: bytes) -> List[str]:
    gltf, _ = _document(data, "")
    refs: List[str] = []
    for item in list(gltf.buffers) + list(gltf.images):
        ref = _external(item.uri)
        if ref and ref not in refs:
            refs.append(ref)
    return refs


# Accessors -------------------------------------------------------------------
class _Buffers:
    """Lazy byte access to the buffers of one document."""

    def __init__(self, gltf: GLTF2, bin_chunk: Optional[bytes], ctx: DecodeContext):
        self._gltf = gltf
        self._bin = bin_chunk
        self._ctx = ctx
        self._cache: Dict[int, bytes] = {}

    @property
    def identifier(self) -> str:
        return self._ctx.identifier

    def __call__(self, index: int) -> bytes:
        if index not in self._cache:
            self._cache[index] = self._load(index)
        return self._cache[index]

    def _load(self, index: int) -> bytes:
        try:
            buffer = self._gltf.buffers[index]
        except IndexError as exc:
            raise malformed(f"buffer {index} does not exist", self.identifier) from exc
        if buffer.uri is None:
            if self._bin is None:
                raise malformed(
                    f"buffer {index} has no uri and there is no GLB BIN chunk",
                    self.identifier,
                )
            data = self._bin
        elif identifiers.is_data_url(buffer.uri):
            data = decode_data_url(buffer.uri)
        else:
            data = self._ctx.require(unquote(buffer.uri))
        if len(data) < (buffer.byteLength or 0):
            raise malformed(
                f"buffer {index} is {len(data)} bytes, expected {buffer.byteLength}",
                self.identifier,
            )
        return data

    def view(self, index: int) -> Tuple[bytes, int, int, int]:
        """Return (buffer bytes, start, length, stride) of a buffer view."""
        try:
            view = self._gltf.bufferViews[index]
        except IndexError as exc:
            raise malformed(
                f"bufferView {index} does not exist", self.identifier
            ) from exc
        data = self(view.buffer)
        start = view.byteOffset or 0
        if start + view.byteLength > len(data):
            raise malformed(
                f"bufferView {index} runs past the end of its buffer",
                self.identifier,
            )
        return data, start, view.byteLength, view.byteStride or 0


def _strided(
    buffers: _Buffers,
    view_index: int,
    offset: int,
    dtype: np.dtype,
    count: int,
    width: int,
    ident: str,
) -> np.ndarray:
    data, start, length, stride = buffers.view(view_index)
    element = dtype.itemsize * width
    stride = stride or element
    needed = offset + (stride * (count - 1) + element if count else 0)
    if needed > length:
        raise malformed(
            f"accessor needs {needed} bytes of a {length}-byte bufferView", ident
        )
    arr = np.ndarray(
        (count, width),
        dtype=dtype,
        buffer=data,
        offset=start + offset,
        strides=(stride, dtype.itemsize),
    )
    return np.array(arr, dtype=dtype.newbyteorder("="))


def read_accessor(
    gltf: GLTF2, index: int, buffers: _Buffers, *, normalize: bool = True
) -> np.ndarray:
    """Decode an accessor into a ``(count, width)`` array.

    Respects ``bufferView.byteStride`` and sparse substitution. Normalized
    integer data is scaled to float32 unless ``normalize`` is false.
    """
    ident = buffers.identifier
    try:
        acc: Accessor = gltf.accessors[index]
    except (IndexError, TypeError) as exc:
        raise malformed(f"accessor {index} does not exist", ident) from exc
    dtype = _COMPONENT_DTYPES.get(acc.componentType)
    width = _TYPE_WIDTHS.get(acc.type)
    if dtype is None or width is None:
        raise malformed(
            f"accessor {index} has unsupported type {acc.type}/{acc.componentType}",
            ident,
        )
    count = int(acc.count or 0)
    if acc.bufferView is None:
        arr = np.zeros((count, width), dtype=dtype.newbyteorder("="))
    else:
        arr = _strided(
            buffers, acc.bufferView, acc.byteOffset or 0, dtype, count, width, ident
        )
    sparse = getattr(acc, "sparse", None)
    if sparse is not None and sparse.count:
        idx_dtype = _COMPONENT_DTYPES.get(sparse.indices.componentType)
        if idx_dtype is None:
            raise malformed(f"accessor {index} has bad sparse index type", ident)
        rows = _strided(
            buffers,
            sparse.indices.bufferView,
            sparse.indices.byteOffset or 0,
            idx_dtype,
            sparse.count,
            1,
            ident,
        ).reshape(-1)
        values = _strided(
            buffers,
            sparse.values.bufferView,
            sparse.values.byteOffset or 0,
            dtype,
            sparse.count,
            width,
            ident,
        )
        if rows.size and int(rows.max()) >= count:
            raise malformed(f"accessor {index} sparse index out of range", ident)
        arr[rows.astype(np.int64)] = values
    if normalize and acc.normalized and acc.componentType in _NORMALIZE_DIVISORS:
        arr = arr.astype(np.float32) / _NORMALIZE_DIVISORS[acc.componentType]
        if acc.componentType in (5120, 5122):
            arr = np.maximum(arr, -1.0)
    return arr


# Decode ----------------------------------------------------------------------
def _triangle_list(mode: int, idx: np.ndarray) -> np.ndarray:
    if mode == _MODE_TRIANGLES:
        return idx[: len(idx) - len(idx) % 3]
    n = len(idx) - 2
    if n <= 0:
        return idx[:0]
    i = np.arange(n)
    if mode == _MODE_STRIP:
        odd = i % 2
        tris = np.stack([idx[i], idx[i + 1 + odd], idx[i + 2 - odd]], axis=1)
    else:
        tris = np.stack([idx[i + 1], idx[i + 2], np.full(n, idx[0])], axis=1)
    return tris.reshape(-1)


def _node_matrix(node: Node) -> np.ndarray:
    if node.matrix:
        # glTF matrices are column-major.
        return np.asarray(node.matrix, dtype=np.float64).reshape(4, 4).T
    t = np.eye(4)
    if node.translation:
        t[:3, 3] = node.translation
    r = quaternion_matrix(node.rotation) if node.rotation else np.eye(4)
    s = np.eye(4)
    if node.scale:
        s[0, 0], s[1, 1], s[2, 2] = node.scale
    return t @ r @ s


def _mesh_instances(gltf: GLTF2) -> List[Tuple[int, int, np.ndarray]]:
    """(node, mesh index, world matrix) for every mesh placed in the scene.

    Without a scene every mesh is placed once, untransformed, at node -1.
    """
    if not gltf.scenes:
        return [(-1, i, np.eye(4)) for i in range(len(gltf.meshes))]
    scene = gltf.scenes[gltf.scene or 0]
    out: List[Tuple[int, int, np.ndarray]] = []
    stack = [(n, np.eye(4)) for n in reversed(scene.nodes or [])]
    seen = set()
    while stack:
        index, parent = stack.pop()
        if index in seen:
            continue
        seen.add(index)
        node = gltf.nodes[index]
        world = parent @ _node_matrix(node)
        if node.mesh is not None:
            out.append((index, node.mesh, world))
        stack.extend((c, world) for c in reversed(node.children or []))
    return out


def _bake(record: MeshRecord, matrix: np.ndarray) -> None:
    if np.array_equal(matrix, np.eye(4)):
        return
    dtype = record.positions.dtype
    pos = record.positions.astype(np.float64) @ matrix[:3, :3].T + matrix[:3, 3]
    record.positions = pos.astype(dtype)
    linear = matrix[:3, :3]
    if record.normals is not None:
        n = record.normals @ np.linalg.inv(linear)
        lens = np.linalg.norm(n, axis=1, keepdims=True)
        lens[lens == 0] = 1.0
        record.normals = (n / lens).astype(np.float32)
    if record.tangents is not None:
        t = record.tangents.copy()
        xyz = t[:, :3] @ linear.T
        lens = np.linalg.norm(xyz, axis=1, keepdims=True)
        lens[lens == 0] = 1.0
        t[:, :3] = xyz / lens
        record.tangents = t.astype(np.float32)
    if np.linalg.det(linear) < 0 and record.indices is not None:
        record.indices = record.indices.reshape(-1, 3)[:, ::-1].reshape(-1).copy()


def _sampler(gltf: GLTF2, index: Optional[int]) -> Sampler:
    if index is None:
        return Sampler()
    s = gltf.samplers[index]
    min_filter, mip = _MIN_FILTERS.get(
        s.minFilter, (Interpolation.LINEAR, Interpolation.LINEAR)
    )
    return Sampler(
        min_filter=min_filter,
        mag_filter=_FILTERS.get(s.magFilter, Interpolation.LINEAR),
        mipmap_filter=mip,
        wrap_s=_WRAPS.get(s.wrapS, Wrapping.REPEAT),
        wrap_t=_WRAPS.get(s.wrapT, Wrapping.REPEAT),
    )


def _image_extension(image: Image, data: bytes) -> str:
    ext = identifiers.MIME_EXTENSIONS.get((image.mimeType or "").lower())
    if ext:
        return ext
    if image.uri:
        return identifiers.extension(image.uri) or "bin"
    return "bin"


def _texture_slots(
    gltf: GLTF2,
    buffers: _Buffers,
    scene: SceneRecord,
    ctx: DecodeContext,
) -> Callable[[Optional[int]], Optional[TextureSlot]]:
    """Return a function mapping a texture index to a TextureSlot."""
    image_refs: Dict[int, str] = {}

    def image_reference(index: int) -> str:
        if index in image_refs:
            return image_refs[index]
        image = gltf.images[index]
        external = _external(image.uri)
        if external is not None:
            ref = ctx.resolve(external)
        else:
            if image.uri:
                data = decode_data_url(image.uri)
            elif image.bufferView is not None:
                buf, start, length, _ = buffers.view(image.bufferView)
                data = buf[start : start + length]
            else:
                raise malformed(f"image {index} has no data", ctx.identifier)
            # Synthetic key; nothing real can live below a file.
            ref = f"{ctx.identifier}/images/{index}.{_image_extension(image, data)}"
            scene.embedded[ref] = bytes(data)
        image_refs[index] = ref
        return ref

    def slot(texture_index: Optional[int]) -> Optional[TextureSlot]:
        if texture_index is None:
            return None
        try:
            texture = gltf.textures[texture_index]
        except IndexError as exc:
            raise malformed(
                f"texture {texture_index} does not exist", ctx.identifier
            ) from exc
        if texture.source is None:
            ctx.warn(f"{ctx.identifier}: texture {texture_index} has no image")
            return None
        return TextureSlot(
            image_reference(texture.source), _sampler(gltf, texture.sampler)
        )

    return slot


def _material(
    mat: Material, slot: Callable[[Optional[int]], Optional[TextureSlot]]
) -> MaterialRecord:
    pbr = mat.pbrMetallicRoughness or PbrMetallicRoughness()
    ext = mat.extensions or {}
    transmission = ext.get(_TRANSMISSION) or {}
    strength = (ext.get(_EMISSIVE_STRENGTH) or {}).get("emissiveStrength", 1.0)
    emissive = mat.emissiveFactor or [0.0, 0.0, 0.0]
    rec = MaterialRecord(
        name=mat.name or "",
        base_color=tuple(pbr.baseColorFactor or (1.0, 1.0, 1.0, 1.0)),
        metallic=1.0 if pbr.metallicFactor is None else pbr.metallicFactor,
        roughness=1.0 if pbr.roughnessFactor is None else pbr.roughnessFactor,
        emissive=tuple(float(c) * strength for c in emissive),
        transmission=transmission.get("transmissionFactor", 0.0),
        ior=(ext.get(_IOR) or {}).get("ior", 1.5),
        alpha_cutoff=(
            (0.5 if mat.alphaCutoff is None else mat.alphaCutoff)
            if mat.alphaMode == "MASK"
            else None
        ),
    )
    infos = [
        (MaterialFactor.BASE_COLOR, pbr.baseColorTexture),
        (MaterialFactor.METALLIC_ROUGHNESS, pbr.metallicRoughnessTexture),
        (MaterialFactor.NORMAL, mat.normalTexture),
        (MaterialFactor.OCCLUSION, mat.occlusionTexture),
        (MaterialFactor.EMISSIVE, mat.emissiveTexture),
    ]
    for factor, info in infos:
        found = slot(info.index) if info is not None else None
        if found is not None:
            rec.textures[factor] = found
    if transmission.get("transmissionTexture"):
        found = slot(transmission["transmissionTexture"].get("index"))
        if found is not None:
            rec.textures[MaterialFactor.TRANSMISSION] = found
    if mat.normalTexture is not None and mat.normalTexture.scale is not None:
        rec.normal_scale = mat.normalTexture.scale
    if mat.occlusionTexture is not None and mat.occlusionTexture.strength is not None:
        rec.occlusion_strength = mat.occlusionTexture.strength
    return rec


def _primitive(
    gltf: GLTF2, prim: Primitive, buffers: _Buffers, name: str, ctx: DecodeContext
) -> Optional[MeshRecord]:
    mode = _MODE_TRIANGLES if prim.mode is None else prim.mode
    if mode not in (_MODE_TRIANGLES, _MODE_STRIP, _MODE_FAN):
        ctx.warn(f"{ctx.identifier}: skipping non-triangle primitive '{name}'")
        return None
    attrs = prim.attributes
    if attrs.POSITION is None:
        raise malformed(f"primitive '{name}' has no POSITION", ctx.identifier)

    def attribute(index: Optional[int], dtype=np.float32) -> Optional[np.ndarray]:
        if index is None:
            return None
        return read_accessor(gltf, index, buffers).astype(dtype)

    positions = attribute(attrs.POSITION)
    if prim.indices is not None:
        idx = read_accessor(gltf, prim.indices, buffers, normalize=False)
        idx = idx.reshape(-1).astype(np.uint32)
    else:
        idx = np.arange(len(positions), dtype=np.uint32)
    colors = None
    if attrs.COLOR_0 is not None:
        acc = gltf.accessors[attrs.COLOR_0]
        raw = read_accessor(
            gltf, attrs.COLOR_0, buffers, normalize=acc.componentType != 5121
        )
        if raw.shape[1] == 3:
            alpha = 255 if raw.dtype == np.uint8 else 1.0
            raw = np.concatenate(
                [raw, np.full((len(raw), 1), alpha, dtype=raw.dtype)], axis=1
            )
        colors = raw if raw.dtype == np.uint8 else raw.astype(np.float32)
    return MeshRecord(
        positions=positions,
        layout=IndexLayout.VERTEX,
        indices=_triangle_list(mode, idx),
        normals=attribute(attrs.NORMAL),
        tangents=attribute(attrs.TANGENT),
        uvs=attribute(attrs.TEXCOORD_0),
        colors=colors,
        material=prim.material,
        name=name,
    )


_INTERPOLATIONS = {
    None: Interpolation.LINEAR,
    "LINEAR": Interpolation.LINEAR,
    "STEP": Interpolation.NEAREST,
}


def _subtree(gltf: GLTF2, node: int) -> List[int]:
    out, stack, seen = [], [node], set()
    while stack:
        index = stack.pop()
        if index in seen:
            continue
        seen.add(index)
        out.append(index)
        stack.extend(gltf.nodes[index].children or [])
    return out


def _animations(
    gltf: GLTF2,
    buffers: _Buffers,
    node_meshes: Dict[int, List[int]],
    ctx: DecodeContext,
) -> List[AnimationRecord]:
    """Rotation key frames, one record per animation sampler.

    A record targets every mesh placed under the nodes its channels
    animate. Translation, scale and morph weight channels are not kept.
    """
    out: List[AnimationRecord] = []
    for a, anim in enumerate(gltf.animations):
        name = anim.name or f"animation_{a}"
        dropped = set()
        # Sampler index -> mesh records, in channel order.
        grouped: Dict[int, List[int]] = {}
        for channel in anim.channels:
            path = channel.target.path
            if path != "rotation":
                dropped.add(path)
                continue
            targets = grouped.setdefault(channel.sampler, [])
            if channel.target.node is None:
                continue
            for n in _subtree(gltf, channel.target.node):
                for m in node_meshes.get(n, []):
                    if m not in targets:
                        targets.append(m)
        if dropped:
            ctx.warn(
                f"gltf: animation '{name}' drops its {', '.join(sorted(dropped))} "
                "channels"
            )
        for index, targets in grouped.items():
            sampler = anim.samplers[index]
            interpolation = _INTERPOLATIONS.get(sampler.interpolation)
            if interpolation is None:
                ctx.warn(
                    f"gltf: animation '{name}' drops a {sampler.interpolation} "
                    "rotation channel"
                )
                continue
            if not targets:
                ctx.warn(f"gltf: animation '{name}' rotates no mesh")
                continue
            times = read_accessor(gltf, sampler.input, buffers).reshape(-1)
            rotations = read_accessor(gltf, sampler.output, buffers)
            if rotations.shape[1] != 4 or len(rotations) != len(times):
                raise malformed(
                    f"animation '{name}' rotation output does not match its input",
                    ctx.identifier,
                )
            out.append(
                AnimationRecord(
                    times=times.astype(np.float32),
                    rotations=rotations.astype(np.float32),
                    interpolation=interpolation,
                    targets=targets,
                    name=name,
                )
            )
    return out


def decode_gltf(data: bytes, ctx: DecodeContext) -> SceneRecord:
    gltf, bin_chunk = _document(data, ctx.identifier)
    buffers = _Buffers(gltf, bin_chunk, ctx)
    scene = SceneRecord(name=identifiers.stem(ctx.identifier))
    slot = _texture_slots(gltf, buffers, scene, ctx)
    scene.materials = [_material(m, slot) for m in gltf.materials]
    node_meshes: Dict[int, List[int]] = {}
    try:
        for node_index, mesh_index, matrix in _mesh_instances(gltf):
            mesh = gltf.meshes[mesh_index]
            for k, prim in enumerate(mesh.primitives):
                name = mesh.name or f"mesh_{mesh_index}"
                if len(mesh.primitives) > 1:
                    name = f"{name}_{k}"
                record = _primitive(gltf, prim, buffers, name, ctx)
                if record is None:
                    continue
                if record.material is not None and not (
                    0 <= record.material < len(scene.materials)
                ):
                    raise malformed(
                        f"primitive '{name}' uses missing material {record.material}",
                        ctx.identifier,
                    )
                _bake(record, matrix)
                node_meshes.setdefault(node_index, []).append(len(scene.meshes))
                scene.meshes.append(record)
        scene.animations = _animations(gltf, buffers, node_meshes, ctx)
    except (IndexError, TypeError) as exc:
        raise malformed(f"dangling glTF index: {exc}", ctx.identifier) from exc
    return scene


# Encode ----------------------------------------------------------------------
_INTERPOLATION_NAMES = {Interpolation.NEAREST: "STEP", Interpolation.LINEAR: "LINEAR"}
_FILTER_CODES = {Interpolation.NEAREST: 9728, Interpolation.LINEAR: 9729}
_MIN_FILTER_CODES = {v: k for k, v in _MIN_FILTERS.items()}
_WRAP_CODES = {v: k for k, v in _WRAPS.items()}
_ACCESSOR_TYPES = {1: SCALAR, 2: VEC2, 3: VEC3, 4: VEC4}
_MIME_TYPES = {"png": "image/png", "jpg": "image/jpeg", "jpeg": "image/jpeg"}


class _Writer:
    """Accumulates one binary buffer and the pygltflib objects indexing it."""

    def __init__(self, ctx: EncodeContext):
        self.ctx = ctx
        self.gltf = GLTF2(asset=Asset(generator="assetio", version="2.0"))
        self.blob = bytearray()
        self._samplers: Dict[Tuple[int, int, int, int], int] = {}
        self._textures: Dict[Tuple[str, int], int] = {}
        self.images: Dict[str, int] = {}

    def view(self, payload: bytes, target: Optional[int] = None) -> int:
        self.blob += b"\0" * (-len(self.blob) % 4)
        self.gltf.bufferViews.append(
            BufferView(
                buffer=0,
                byteOffset=len(self.blob),
                byteLength=len(payload),
                target=target,
            )
        )
        self.blob += payload
        return len(self.gltf.bufferViews) - 1

    def accessor(
        self,
        values: np.ndarray,
        component: int,
        target: Optional[int],
        normalized: bool = False,
        bounds: bool = False,
    ) -> int:
        values = np.ascontiguousarray(values)
        width = 1 if values.ndim == 1 else values.shape[1]
        payload = values.astype(values.dtype.newbyteorder("<")).tobytes()
        acc = Accessor(
            bufferView=self.view(payload, target),
            componentType=component,
            count=len(values),
            type=_ACCESSOR_TYPES[width],
            normalized=True if normalized else None,
        )
        if bounds and len(values):
            acc.min = [float(v) for v in values.min(axis=0)]
            acc.max = [float(v) for v in values.max(axis=0)]
        self.gltf.accessors.append(acc)
        return len(self.gltf.accessors) - 1

    def sampler(self, sampler: Optional[Sampler]) -> Optional[int]:
        if sampler is None or sampler == Sampler():
            return None
        key = (
            _FILTER_CODES[sampler.mag_filter],
            _MIN_FILTER_CODES.get(
                (sampler.min_filter, sampler.mipmap_filter),
                _FILTER_CODES[sampler.min_filter],
            ),
            _WRAP_CODES[sampler.wrap_s],
            _WRAP_CODES[sampler.wrap_t],
        )
        if key not in self._samplers:
            self.gltf.samplers.append(
                GltfSampler(
                    magFilter=key[0], minFilter=key[1], wrapS=key[2], wrapT=key[3]
                )
            )
            self._samplers[key] = len(self.gltf.samplers) - 1
        return self._samplers[key]

    def image(self, name: str, payload: bytes, binary: bool) -> int:
        if name not in self.images:
            mime = _MIME_TYPES.get(identifiers.extension(name), "image/png")
            if binary:
                image = Image(mimeType=mime, bufferView=self.view(payload))
            else:
                image = Image(uri=quote(name))
            image.name = identifiers.stem(name)
            self.gltf.images.append(image)
            self.images[name] = len(self.gltf.images) - 1
        return self.images[name]

    def texture(
        self, slot: TextureSlot, embedded: Dict[str, bytes], binary: bool
    ) -> int:
        image = self.image(slot.reference, embedded[slot.reference], binary)
        sampler = self.sampler(slot.sampler)
        key = (slot.reference, -1 if sampler is None else sampler)
        if key not in self._textures:
            self.gltf.textures.append(Texture(source=image, sampler=sampler))
            self._textures[key] = len(self.gltf.textures) - 1
        return self._textures[key]


def _encode_material(
    writer: _Writer, mat: MaterialRecord, embedded: Dict[str, bytes], binary: bool
) -> Material:
    def info(factor: MaterialFactor, cls=TextureInfo, **extra):
        slot = mat.textures.get(factor)
        if slot is None:
            return None
        return cls(index=writer.texture(slot, embedded, binary), **extra)

    for factor in (MaterialFactor.METALLIC, MaterialFactor.ROUGHNESS):
        if factor in mat.textures:
            writer.ctx.warn(
                f"gltf: material '{mat.name}' drops its separate {factor.value} "
                "texture (glTF packs metallic and roughness in one)"
            )
    out = Material(
        name=mat.name or None,
        pbrMetallicRoughness=PbrMetallicRoughness(
            baseColorFactor=[float(c) for c in mat.base_color],
            metallicFactor=float(mat.metallic),
            roughnessFactor=float(mat.roughness),
            baseColorTexture=info(MaterialFactor.BASE_COLOR),
            metallicRoughnessTexture=info(MaterialFactor.METALLIC_ROUGHNESS),
        ),
        normalTexture=info(
            MaterialFactor.NORMAL, NormalMaterialTexture, scale=mat.normal_scale
        ),
        occlusionTexture=info(
            MaterialFactor.OCCLUSION,
            OcclusionTextureInfo,
            strength=mat.occlusion_strength,
        ),
        emissiveTexture=info(MaterialFactor.EMISSIVE),
        emissiveFactor=[float(c) for c in mat.emissive],
    )
    if mat.alpha_cutoff is not None:
        out.alphaMode = "MASK"
        out.alphaCutoff = float(mat.alpha_cutoff)
    elif mat.base_color[3] < 1.0:
        out.alphaMode = "BLEND"
        out.alphaCutoff = None
    else:
        out.alphaCutoff = None
    extensions = {}
    if mat.transmission or MaterialFactor.TRANSMISSION in mat.textures:
        transmission = {"transmissionFactor": float(mat.transmission)}
        tex = info(MaterialFactor.TRANSMISSION)
        if tex is not None:
            transmission["transmissionTexture"] = {"index": tex.index}
        extensions[_TRANSMISSION] = transmission
    if mat.ior != 1.5:
        extensions[_IOR] = {"ior": float(mat.ior)}
    if extensions:
        out.extensions = extensions
        for name in extensions:
            if name not in writer.gltf.extensionsUsed:
                writer.gltf.extensionsUsed.append(name)
    return out


def _encode_mesh(writer: _Writer, index: int, mesh: MeshRecord) -> Mesh:
    if mesh.layout is not IndexLayout.VERTEX:
        raise ValueError("glTF encoder expects VERTEX layout meshes")

    def floats(values: np.ndarray, bounds: bool = False) -> int:
        return writer.accessor(
            values.astype(np.float32), FLOAT, ARRAY_BUFFER, bounds=bounds
        )

    attrs = Attributes(POSITION=floats(mesh.positions, bounds=True))
    if mesh.normals is not None:
        attrs.NORMAL = floats(mesh.normals)
    if mesh.tangents is not None:
        attrs.TANGENT = floats(mesh.tangents)
    if mesh.uvs is not None:
        attrs.TEXCOORD_0 = floats(mesh.uvs)
    if mesh.colors is not None:
        if mesh.colors.dtype == np.uint8:
            attrs.COLOR_0 = writer.accessor(
                mesh.colors, UNSIGNED_BYTE, ARRAY_BUFFER, normalized=True
            )
        else:
            attrs.COLOR_0 = writer.accessor(
                mesh.colors.astype(np.float32), FLOAT, ARRAY_BUFFER
            )
    indices = writer.accessor(
        np.asarray(mesh.indices, dtype=np.uint32),
        UNSIGNED_INT,
        ELEMENT_ARRAY_BUFFER,
    )
    return Mesh(
        name=mesh.name or f"mesh_{index}",
        primitives=[
            Primitive(
                attributes=attrs,
                indices=indices,
                material=mesh.material,
                mode=_MODE_TRIANGLES,
            )
        ],
    )


def _encode_animation(writer: _Writer, index: int, anim: AnimationRecord) -> Animation:
    times = np.asarray(anim.times, dtype=np.float32).reshape(-1, 1)
    sampler = AnimationSampler(
        input=writer.accessor(times, FLOAT, None, bounds=True),
        output=writer.accessor(
            np.asarray(anim.rotations, dtype=np.float32), FLOAT, None
        ),
        interpolation=_INTERPOLATION_NAMES[anim.interpolation],
    )
    return Animation(
        name=anim.name or f"animation_{index}",
        samplers=[sampler],
        channels=[
            AnimationChannel(
                sampler=0,
                target=AnimationChannelTarget(node=node, path="rotation"),
            )
            for node in anim.targets
        ],
    )


def _assemble(scene: SceneRecord, ctx: EncodeContext, binary: bool) -> _Writer:
    writer = _Writer(ctx)
    gltf = writer.gltf
    gltf.materials = [
        _encode_material(writer, m, scene.embedded, binary) for m in scene.materials
    ]
    for i, mesh in enumerate(scene.meshes):
        gltf.meshes.append(_encode_mesh(writer, i, mesh))
        gltf.nodes.append(Node(name=gltf.meshes[-1].name, mesh=i))
    # Node i places mesh i.
    gltf.animations = [
        _encode_animation(writer, i, a) for i, a in enumerate(scene.animations)
    ]
    gltf.scenes = [Scene(name=scene.name or None, nodes=list(range(len(gltf.nodes))))]
    gltf.scene = 0
    return writer


def _to_json(gltf: GLTF2) -> str:
    # Round-trip through json to drop pygltflib's formatting.
    return json.dumps(json.loads(gltf.to_json()), separators=(",", ":"))


def encode_glb(scene: SceneRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    writer = _assemble(scene, ctx, binary=True)
    if writer.blob:
        writer.gltf.buffers = [Buffer(byteLength=len(writer.blob))]
    return {ctx.identifier: build_glb(_to_json(writer.gltf), bytes(writer.blob))}


def encode_gltf(scene: SceneRecord, ctx: EncodeContext) -> Dict[str, bytes]:
    writer = _assemble(scene, ctx, binary=False)
    files: Dict[str, bytes] = {}
    if writer.blob:
        bin_name = f"{ctx.stem}.bin"
        writer.gltf.buffers = [Buffer(uri=quote(bin_name), byteLength=len(writer.blob))]
        files[ctx.sibling(bin_name)] = bytes(writer.blob)
    for name in writer.images:
        files[ctx.sibling(name)] = scene.embedded[name]
    files[ctx.identifier] = _to_json(writer.gltf).encode("utf-8")
    return files


def _sniff_glb(data: bytes) -> bool:
    return len(data) >= 12 and struct.unpack_from("<I", data)[0] == GLB_MAGIC


GLTF_CODEC = Codec(
    name="gltf",
    kind=AssetKind.SCENE,
    extensions=("gltf",),
    decode=decode_gltf,
    encode=encode_gltf,
    references=gltf_references,
    texture_factors=_TEXTURE_FACTORS,
)

GLB_CODEC = Codec(
    name="glb",
    kind=AssetKind.SCENE,
    extensions=("glb",),
    decode=decode_gltf,
    encode=encode_glb,
    references=gltf_references,
    sniff=_sniff_glb,
    texture_factors=_TEXTURE_FACTORS,
)
