"""Output file naming."""

from __future__ import annotations

__all__ = ["sibling_name"]


def sibling_name(stem: str, label: str, extension: str) -> str:
    """File name for an auxiliary output written next to a main file."""
    safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in label)
    return f"{stem}_{safe}.{extension}" if safe else f"{stem}.{extension}"
