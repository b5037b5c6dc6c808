"""Load and save entry points."""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, Sequence

from .config import LoadOptions
from .errors import malformed
from .io import identifiers
from .io.dispatch import DEFAULT_DISPATCHER, Dispatcher
from .io.raw_assets import RawAssets
from .io.resolver import Resolver
from .io.sink import FileSink
from .io.source import ByteSource
from .logging import configure_logging, get_logger
from .model.geometry import PointCloud
from .model.scene import AssetGraph, Model
from .model.texture import CUBE_FACES, Texture2D, TextureCube
from .model.volume import VoxelGrid
from .normalize import Denormalizer, Normalizer
from .reporting import make_reporter, task, use_reporter

__all__ = [
    "load",
    "load_async",
    "load_graph",
    "load_graph_async",
    "load_texture_cube",
    "deserialize",
    "serialize",
    "save",
]


@contextmanager
def _reporting(options: LoadOptions) -> Iterator[None]:
    """Install the reporter named by ``options`` for one call."""
    if options.reporter == "silent" and not options.verbosity:
        yield
        return
    configure_logging(options.verbosity)
    with use_reporter(make_reporter(options.reporter)) as rep:
        try:
            yield
        finally:
            rep.flush()


def _describe(asset: Any) -> dict:
    if isinstance(asset, Model):
        return {"vertices": asset.vertex_count, "triangles": asset.triangle_count}
    if isinstance(asset, PointCloud):
        return {"vertices": asset.point_count}
    return {}


async def _graph(
    roots: Sequence[str],
    base: str | None,
    options: LoadOptions,
    dispatcher: Dispatcher,
) -> AssetGraph:
    async with ByteSource(base=base, options=options) as source:
        idents: List[str] = []
        for root in roots:
            ident = source.resolve(root)
            if ident not in idents:
                idents.append(ident)
        raw = await Resolver(source, dispatcher).resolve(idents)
    normalizer = Normalizer(raw, dispatcher)
    assets = {}
    for ident in idents:
        with task(f"normalize:{ident}", f"Normalize {ident}") as final:
            assets[ident] = normalizer.normalize(ident)
            final.update(_describe(assets[ident]))
    return AssetGraph(assets, raw)


async def load_graph_async(
    *roots: str,
    base: str | None = None,
    options: LoadOptions | None = None,
    dispatcher: Dispatcher | None = None,
) -> AssetGraph:
    """Resolve several roots over one resource set and normalize each.

    A resource referenced by more than one root is fetched once.
    """
    options = options or LoadOptions()
    dispatcher = dispatcher or DEFAULT_DISPATCHER
    logger = get_logger()
    with _reporting(options):
        graph = await _graph(roots, base, options, dispatcher)
        summary = graph.summary()
        logger.info(
            "Loaded %d root(s) from %d resource(s), %d bytes",
            summary["roots"],
            summary["resources"],
            summary["bytes"],
        )
    return graph


def load_graph(
    *roots: str,
    base: str | None = None,
    options: LoadOptions | None = None,
    dispatcher: Dispatcher | None = None,
) -> AssetGraph:
    return asyncio.run(
        load_graph_async(*roots, base=base, options=options, dispatcher=dispatcher)
    )


async def load_async(
    root: str,
    *,
    base: str | None = None,
    options: LoadOptions | None = None,
    dispatcher: Dispatcher | None = None,
) -> Model | Texture2D | TextureCube | PointCloud | VoxelGrid:
    graph = await load_graph_async(
        root, base=base, options=options, dispatcher=dispatcher
    )
    return next(iter(graph.assets.values()))


def load(
    root: str,
    *,
    base: str | None = None,
    options: LoadOptions | None = None,
    dispatcher: Dispatcher | None = None,
) -> Model | Texture2D | TextureCube | PointCloud | VoxelGrid:
    """Load ``root`` and everything it references.

    Returns a :class:`Model`, :class:`Texture2D`, :class:`PointCloud` or
    :class:`VoxelGrid` depending on the format. Raises an
    :class:`~assetio.errors.AssetError` subclass on any failure; nothing
    partial is returned.
    """
    return asyncio.run(
        load_async(root, base=base, options=options, dispatcher=dispatcher)
    )


def load_texture_cube(
    right: str,
    left: str,
    top: str,
    bottom: str,
    front: str,
    back: str,
    *,
    base: str | None = None,
    options: LoadOptions | None = None,
    name: str = "",
) -> TextureCube:
    """Six images, ordered +X, -X, +Y, -Y, +Z, -Z, as one cube texture."""
    paths = (right, left, top, bottom, front, back)
    graph = load_graph(*paths, base=base, options=options)
    faces: List[Texture2D] = []
    for label, path in zip(CUBE_FACES, paths):
        ident = identifiers.join(base, path)
        asset = graph[ident]
        if not isinstance(asset, Texture2D):
            raise malformed(
                f"cube face '{label}' is a {type(asset).__name__}, not an image",
                ident,
            )
        faces.append(asset)
    return TextureCube.from_faces(faces, name=name)


def deserialize(
    raw_assets: Mapping[str, bytes],
    identifier: str,
    dispatcher: Dispatcher | None = None,
) -> Any:
    """Decode ``identifier`` from bytes the caller already holds.

    ``raw_assets`` must contain every resource ``identifier`` references.
    """
    raw = raw_assets if isinstance(raw_assets, RawAssets) else RawAssets(raw_assets)
    return Normalizer(raw, dispatcher).normalize(identifier)


def serialize(
    asset: Any, target: str, dispatcher: Dispatcher | None = None
) -> RawAssets:
    """Encode ``asset`` for ``target`` without touching the filesystem.

    The result holds the target itself plus any files written next to it
    (material libraries, buffers, textures).
    """
    with task(f"encode:{target}", f"Encode {target}") as final:
        files = Denormalizer(dispatcher).encode(asset, target)
        final["files"] = len(files)
        final["bytes"] = sum(len(v) for v in files.values())
    return RawAssets(files)


def save(
    asset: Any,
    target: str,
    *,
    base: str | None = None,
    dispatcher: Dispatcher | None = None,
) -> RawAssets:
    """Encode ``asset`` and write every resulting file, or none of them."""
    files = serialize(asset, target, dispatcher)
    written = FileSink(base).write(files)
    get_logger().info("Saved %s (%d file(s))", target, len(written))
    return files
