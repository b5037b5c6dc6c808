"""Error taxonomy for asset loading and saving."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

E_NOT_FOUND = "E_NOT_FOUND"
E_NETWORK = "E_NETWORK"
E_FORMAT = "E_FORMAT"
E_SCHEME = "E_SCHEME"
E_MALFORMED = "E_MALFORMED"
E_UNREPRESENTABLE = "E_UNREPRESENTABLE"
E_MISSING_REF = "E_MISSING_REF"
E_WRITE_IO = "E_WRITE_IO"


@dataclass
class AssetError(Exception):
    code: str
    message: str
    identifier: Optional[str] = None
    parents: Tuple[str, ...] = ()
    context: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.identifier:
            text += f" [{self.identifier}]"
        if self.parents:
            text += " (referenced via " + " -> ".join(self.parents) + ")"
        if self.context:
            text += f" | ctx={self.context}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "identifier": self.identifier,
            "parents": list(self.parents),
            "context": self.context or {},
        }


@dataclass
class NotFound(AssetError):
    code: str = E_NOT_FOUND
    message: str = "resource not found"


@dataclass
class NetworkError(AssetError):
    code: str = E_NETWORK
    message: str = "network transfer failed"
    status: Optional[int] = None


@dataclass
class UnsupportedFormat(AssetError):
    code: str = E_FORMAT
    message: str = "no codec matches"


@dataclass
class UnsupportedScheme(AssetError):
    code: str = E_SCHEME
    message: str = "no transport for scheme"


@dataclass
class MalformedData(AssetError):
    code: str = E_MALFORMED
    message: str = "malformed data"


@dataclass
class UnrepresentableData(AssetError):
    code: str = E_UNREPRESENTABLE
    message: str = "data cannot be represented in target format"
    target_format: Optional[str] = None


@dataclass
class MissingReference(AssetError):
    code: str = E_MISSING_REF
    message: str = "referenced resource could not be resolved"


@dataclass
class WriteError(AssetError):
    code: str = E_WRITE_IO
    message: str = "writing output failed"


def not_found(identifier: str, message: str = "resource not found") -> NotFound:
    return NotFound(message=message, identifier=identifier)


def malformed(
    message: str,
    identifier: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> MalformedData:
    return MalformedData(
        message=message, identifier=identifier, context=context
    )


def unrepresentable(
    target_format: str, message: str, identifier: Optional[str] = None
) -> UnrepresentableData:
    return UnrepresentableData(
        message=f"{target_format}: {message}",
        identifier=identifier,
        target_format=target_format,
        context={"target_format": target_format},
    )


__all__ = [
    "AssetError",
    "NotFound",
    "NetworkError",
    "UnsupportedFormat",
    "UnsupportedScheme",
    "MalformedData",
    "UnrepresentableData",
    "MissingReference",
    "WriteError",
    "not_found",
    "malformed",
    "unrepresentable",
    "E_NOT_FOUND",
    "E_NETWORK",
    "E_FORMAT",
    "E_SCHEME",
    "E_MALFORMED",
    "E_UNREPRESENTABLE",
    "E_MISSING_REF",
    "E_WRITE_IO",
]
