"""Array coercion shared by the canonical model types."""

from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from ..errors import malformed

__all__ = ["frozen", "attribute", "FLOAT_DTYPES"]

FLOAT_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))


def frozen(arr: np.ndarray) -> np.ndarray:
    """Return ``arr`` as a contiguous array that refuses writes."""
    out = np.ascontiguousarray(arr)
    if out is arr and arr.flags.writeable:
        out = arr.copy()
    out.flags.writeable = False
    return out


def attribute(
    name: str,
    values,
    count: int,
    width: int,
    dtypes: Iterable[np.dtype],
    *,
    default_dtype=np.float32,
) -> Optional[np.ndarray]:
    """Validate one optional per-vertex attribute.

    ``None`` stays ``None``. Arrays must be ``(count, width)``; values of a
    dtype outside ``dtypes`` are converted to ``default_dtype``.
    """
    if values is None:
        return None
    arr = np.asarray(values)
    allowed = tuple(np.dtype(d) for d in dtypes)
    if arr.dtype not in allowed:
        arr = arr.astype(default_dtype)
    if arr.ndim == 1 and width == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2 or arr.shape[1] != width:
        raise malformed(
            f"{name} must have shape (n, {width}), got {arr.shape}"
        )
    if arr.shape[0] != count:
        raise malformed(
            f"{name} has {arr.shape[0]} entries but there are {count} vertices"
        )
    return frozen(arr)
