"""Canonical, format-independent asset types."""

from .color import ColorSpace, linear_to_srgb, srgb_to_linear
from .animation import KeyFrames
from .geometry import AxisAlignedBox, PointCloud, TriMesh
from .material import DATA_FACTORS, Material, MaterialFactor, TextureRef
from .scene import AssetGraph, Model, Primitive
from .texture import (
    CUBE_FACES,
    Interpolation,
    PixelFormat,
    Sampler,
    Texture2D,
    TextureCube,
    Wrapping,
    to_linear,
)
from .volume import VoxelGrid

__all__ = [
    "ColorSpace",
    "linear_to_srgb",
    "srgb_to_linear",
    "KeyFrames",
    "AxisAlignedBox",
    "PointCloud",
    "TriMesh",
    "DATA_FACTORS",
    "Material",
    "MaterialFactor",
    "TextureRef",
    "AssetGraph",
    "Model",
    "Primitive",
    "CUBE_FACES",
    "Interpolation",
    "PixelFormat",
    "Sampler",
    "Texture2D",
    "TextureCube",
    "Wrapping",
    "to_linear",
    "VoxelGrid",
]
