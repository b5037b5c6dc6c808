"""assetio: format-agnostic loading, normalization and saving of 3D assets.

Geometry, textures, point clouds and voxel grids are read from local
paths, HTTP(S) URLs or data URLs together with everything they
reference, converted to one canonical in-memory model, and written back
to any format that can hold them::

    import assetio

    model = assetio.load("scene/chair.obj")
    assetio.save(model, "out/chair.glb")
"""

from .api import (
    deserialize,
    load,
    load_async,
    load_graph,
    load_graph_async,
    load_texture_cube,
    save,
    serialize,
)
from .config import LoadOptions, load_options, options_from_env
from .errors import (
    AssetError,
    MalformedData,
    MissingReference,
    NetworkError,
    NotFound,
    UnrepresentableData,
    UnsupportedFormat,
    UnsupportedScheme,
    WriteError,
)
from .io.raw_assets import RawAssets
from .model import (
    AssetGraph,
    ColorSpace,
    Interpolation,
    KeyFrames,
    Material,
    MaterialFactor,
    Model,
    PixelFormat,
    PointCloud,
    Primitive,
    Sampler,
    Texture2D,
    TextureCube,
    TextureRef,
    TriMesh,
    VoxelGrid,
    Wrapping,
    to_linear,
)
from .utils.tangents import compute_normals, compute_tangents

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "load",
    "load_async",
    "load_graph",
    "load_graph_async",
    "load_texture_cube",
    "deserialize",
    "serialize",
    "save",
    "LoadOptions",
    "load_options",
    "options_from_env",
    "AssetError",
    "MalformedData",
    "MissingReference",
    "NetworkError",
    "NotFound",
    "UnrepresentableData",
    "UnsupportedFormat",
    "UnsupportedScheme",
    "WriteError",
    "RawAssets",
    "AssetGraph",
    "ColorSpace",
    "Interpolation",
    "KeyFrames",
    "Material",
    "MaterialFactor",
    "Model",
    "PixelFormat",
    "PointCloud",
    "Primitive",
    "Sampler",
    "Texture2D",
    "TextureCube",
    "TextureRef",
    "TriMesh",
    "VoxelGrid",
    "Wrapping",
    "to_linear",
    "compute_normals",
    "compute_tangents",
]
