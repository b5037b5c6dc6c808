"""Choosing a codec for an identifier and its bytes."""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

from ..codecs import REGISTRY
from ..codecs.records import Codec
from ..errors import UnsupportedFormat, unrepresentable
from . import identifiers

__all__ = ["Dispatcher", "DEFAULT_DISPATCHER", "signature"]


def signature(data: bytes, length: int = 8) -> str:
    return data[:length].hex(" ")


class Dispatcher:
    """Maps identifiers to codecs: extension first, magic bytes second."""

    def __init__(self, codecs: Iterable[Codec] = REGISTRY):
        self.codecs: Tuple[Codec, ...] = tuple(codecs)
        self._by_extension: Dict[str, Codec] = {}
        for codec in self.codecs:
            for ext in codec.extensions:
                self._by_extension.setdefault(ext, codec)

    def find(self, extension: str) -> Optional[Codec]:
        return self._by_extension.get(extension.lower().lstrip("."))

    def sniff(self, data: bytes) -> Optional[Codec]:
        for codec in self.codecs:
            if codec.sniff is not None and codec.readable and codec.sniff(data):
                return codec
        return None

    def select(self, identifier: str, data: bytes) -> Codec:
        ext = identifiers.extension(identifier)
        codec = self.find(ext) if ext else None
        if codec is not None and codec.readable:
            return codec
        codec = self.sniff(data)
        if codec is not None:
            return codec
        raise UnsupportedFormat(
            message=(
                f"no codec for extension '{ext or '(none)'}' "
                f"or signature {signature(data) or '(empty)'}"
            ),
            identifier=identifier,
            context={"extension": ext, "signature": signature(data)},
        )

    def for_target(self, identifier: str) -> Codec:
        """Encoder for a target identifier, chosen by extension only."""
        ext = identifiers.extension(identifier)
        codec = self.find(ext) if ext else None
        if codec is None:
            raise UnsupportedFormat(
                message=f"no codec for extension '{ext or '(none)'}'",
                identifier=identifier,
                context={"extension": ext},
            )
        if not codec.writable:
            raise unrepresentable(codec.name, "format is read-only", identifier)
        return codec


DEFAULT_DISPATCHER = Dispatcher()
