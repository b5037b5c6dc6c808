"""Bounded local file reads."""

from __future__ import annotations
from pathlib import Path

from ..errors import MalformedData, NotFound

__all__ = ["safe_read_file"]


def safe_read_file(path: Path, max_size: int) -> bytes:
    if not path.exists():
        raise NotFound(message=f"File not found: {path}", identifier=str(path))
    if not path.is_file():
        raise NotFound(message=f"Not a file: {path}", identifier=str(path))
    size = path.stat().st_size
    if size > max_size:
        raise MalformedData(
            message=f"File too large: {size}>{max_size}",
            identifier=str(path),
        )
    try:
        return path.read_bytes()
    except FileNotFoundError as exc:
        raise NotFound(identifier=str(path)) from exc
    except OSError as exc:
        raise NotFound(
            message=f"File unreadable: {exc.strerror or exc}",
            identifier=str(path),
        ) from exc
