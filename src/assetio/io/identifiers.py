"""Identifier classification and resolution.

An identifier is a local filesystem path, an absolute URL or a ``data:``
URL. References found inside a resource are resolved against the
directory of the resource that contains them.
"""

from __future__ import annotations

import os
import posixpath
from pathlib import PurePath
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit
from urllib.request import url2pathname

__all__ = [
    "is_data_url",
    "is_url",
    "scheme_of",
    "normalize",
    "join",
    "parent",
    "resolve_reference",
    "extension",
    "stem",
    "relative_to",
    "MIME_EXTENSIONS",
]

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "image/webp": "webp",
    "image/x-tga": "tga",
    "image/vnd.radiance": "hdr",
    "model/gltf-binary": "glb",
    "model/gltf+json": "gltf",
    "model/obj": "obj",
    "model/stl": "stl",
    "model/3mf": "3mf",
}


def is_data_url(identifier: str) -> bool:
    return identifier[:5].lower() == "data:"


def scheme_of(identifier: str) -> str:
    """Return the lowercase URL scheme, or ``""`` for local paths."""
    if is_data_url(identifier):
        return "data"
    if identifier.startswith("//"):
        return ""
    scheme = urlsplit(identifier).scheme.lower()
    # Single letters are Windows drive names, not schemes.
    if len(scheme) <= 1:
        return ""
    return scheme


def is_url(identifier: str) -> bool:
    return scheme_of(identifier) not in ("", "file")


def _file_url_to_path(identifier: str) -> str:
    parts = urlsplit(identifier)
    path = url2pathname(unquote(parts.path))
    if parts.netloc and parts.netloc != "localhost":
        path = f"//{parts.netloc}{path}"
    return os.path.normpath(path)


def normalize(identifier: str) -> str:
    """Canonical spelling used as the key of a resource map."""
    scheme = scheme_of(identifier)
    if scheme == "data":
        return identifier
    if scheme == "file":
        return _file_url_to_path(identifier)
    if scheme:
        parts = urlsplit(identifier)
        path = parts.path
        if path:
            trailing = path.endswith("/")
            path = posixpath.normpath(path)
            if trailing and not path.endswith("/"):
                path += "/"
        return urlunsplit(
            (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
        )
    return os.path.normpath(identifier)


def join(directory: str | os.PathLike | None, identifier: str) -> str:
    """Resolve ``identifier`` against a base directory (path or URL)."""
    identifier = os.fspath(identifier)
    if is_data_url(identifier):
        return identifier
    if identifier.startswith("//"):
        scheme = scheme_of(os.fspath(directory)) if directory else ""
        if scheme in ("", "file", "data"):
            scheme = "https"
        return normalize(f"{scheme}:{identifier}")
    if scheme_of(identifier):
        return normalize(identifier)
    if directory is None or os.fspath(directory) == "":
        return normalize(identifier)
    base = os.fspath(directory)
    if scheme_of(base) and scheme_of(base) != "file":
        if not base.endswith("/"):
            base += "/"
        return normalize(urljoin(base, identifier.replace(os.sep, "/")))
    if scheme_of(base) == "file":
        base = _file_url_to_path(base)
    return normalize(os.path.join(base, identifier))


def parent(identifier: str) -> str:
    if is_data_url(identifier):
        return ""
    if is_url(identifier):
        parts = urlsplit(identifier)
        directory = posixpath.dirname(parts.path)
        if not directory.endswith("/"):
            directory += "/"
        return urlunsplit((parts.scheme, parts.netloc, directory, "", ""))
    return os.path.dirname(normalize(identifier))


def resolve_reference(referrer: str, reference: str) -> str:
    """Resolve a reference found inside ``referrer`` to a full identifier."""
    return join(parent(referrer), reference)


def _path_part(identifier: str) -> str:
    if is_url(identifier):
        return unquote(urlsplit(identifier).path)
    return identifier


def extension(identifier: str) -> str:
    """Lowercase extension without the dot; ``""`` if there is none.

    Query strings and fragments are ignored. Data URLs map their MIME type.
    """
    if is_data_url(identifier):
        mime = identifier[5:].split(",", 1)[0].split(";", 1)[0].strip().lower()
        return MIME_EXTENSIONS.get(mime, "")
    suffix = PurePath(_path_part(identifier)).suffix
    return suffix[1:].lower()


def stem(identifier: str) -> str:
    if is_data_url(identifier):
        return ""
    return PurePath(_path_part(identifier)).stem


def relative_to(identifier: str, directory: str) -> str:
    """Spelling of ``identifier`` relative to ``directory`` for embedding."""
    if is_data_url(identifier):
        return identifier
    if is_url(identifier) or is_url(directory):
        prefix = directory if directory.endswith("/") else directory + "/"
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
        return identifier
    rel = os.path.relpath(normalize(identifier), normalize(directory or "."))
    return rel.replace(os.sep, "/")
