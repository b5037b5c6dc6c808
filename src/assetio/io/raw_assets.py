"""Read-only mapping of resource identifiers to their bytes."""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from ..errors import MissingReference
from . import identifiers

__all__ = ["RawAssets"]


class RawAssets(Mapping[str, bytes]):
    """Closed set of fetched resources.

    Keys are normalized identifiers. Lookups normalize their argument
    first and, failing an exact hit, accept a unique key whose trailing
    path components equal the argument (``raw["tex/a.png"]``).
    Instances never change; ``insert`` and ``extend`` return new ones.
    """

    __slots__ = ("_data",)

    def __init__(
        self,
        items: Mapping[str, bytes] | Iterable[Tuple[str, bytes]] = (),
    ):
        pairs = items.items() if isinstance(items, Mapping) else items
        data: Dict[str, bytes] = {}
        for key, value in pairs:
            data[identifiers.normalize(key)] = bytes(value)
        self._data = data

    def __getitem__(self, identifier: str) -> bytes:
        key = self.match(identifier)
        if key is None:
            raise KeyError(identifier)
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and self.match(identifier) is not None

    def __repr__(self) -> str:
        inner = ", ".join(f"{k!r}: {len(v)} bytes" for k, v in self._data.items())
        return f"RawAssets({{{inner}}})"

    def match(self, identifier: str) -> Optional[str]:
        key = identifiers.normalize(identifier)
        if key in self._data:
            return key
        if identifiers.is_data_url(identifier):
            return None
        tail = key.replace("\\", "/")
        if tail in ("", ".") or tail.startswith(("/", "../")):
            return None
        hits = [
            k
            for k in self._data
            if k.replace("\\", "/").endswith("/" + tail)
        ]
        return hits[0] if len(hits) == 1 else None

    def require(self, identifier: str, parents: Tuple[str, ...] = ()) -> bytes:
        """Bytes for ``identifier`` or MissingReference naming it."""
        key = self.match(identifier)
        if key is None:
            raise MissingReference(identifier=identifier, parents=parents)
        return self._data[key]

    def insert(self, identifier: str, data: bytes) -> "RawAssets":
        merged = dict(self._data)
        merged[identifiers.normalize(identifier)] = bytes(data)
        return RawAssets(merged)

    def extend(self, other: Mapping[str, bytes]) -> "RawAssets":
        merged = dict(self._data)
        for key, value in other.items():
            merged[identifiers.normalize(key)] = bytes(value)
        return RawAssets(merged)

    def without(self, identifier: str) -> "RawAssets":
        key = self.match(identifier)
        return RawAssets(
            {k: v for k, v in self._data.items() if k != key}
        )

    @property
    def total_bytes(self) -> int:
        return sum(len(v) for v in self._data.values())
