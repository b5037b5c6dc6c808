"""Conversion between codec records and the canonical model."""

from .loader import Normalizer
from .saver import Denormalizer, fit_pixels

__all__ = ["Normalizer", "Denormalizer", "fit_pixels"]
