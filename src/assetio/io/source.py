"""Byte acquisition for local paths, HTTP(S) URLs and data URLs."""

from __future__ import annotations

import asyncio
import base64
import binascii
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict
from urllib.parse import unquote, unquote_to_bytes, urlsplit

import aiohttp

from ..config import LoadOptions
from ..errors import MalformedData, NetworkError, NotFound, UnsupportedScheme
from ..logging import get_logger
from ..utils.io import safe_read_file
from . import identifiers

__all__ = ["ByteSource", "decode_data_url"]

_HTTP_SCHEMES = ("http", "https")
_NOT_FOUND_STATUS = (404, 410)


def decode_data_url(url: str) -> bytes:
    header, sep, payload = url[5:].partition(",")
    if not sep:
        raise MalformedData(
            message="data URL has no payload separator", identifier=url[:64]
        )
    if header.lower().endswith(";base64"):
        try:
            return base64.b64decode(unquote(payload), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedData(
                message=f"invalid base64 in data URL: {exc}",
                identifier=url[:64],
            ) from exc
    return unquote_to_bytes(payload)


class ByteSource:
    """Fetches resource bytes.

    Local files are read on a bounded thread pool; HTTP(S) goes through
    one aiohttp session with a per-host connection limit. Use as an async
    context manager so the session and the pool are released::

        async with ByteSource(base="assets/") as source:
            data = await source.fetch_async("model.obj")
    """

    def __init__(
        self,
        base: str | Path | None = None,
        options: LoadOptions | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base = str(base) if base is not None else None
        self.options = options or LoadOptions()
        self._session = session
        self._owns_session = session is None
        self._executor: ThreadPoolExecutor | None = None
        self._host_limits: Dict[str, asyncio.Semaphore] = {}
        self._log = get_logger("source")

    async def __aenter__(self) -> "ByteSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def resolve(self, identifier: str, base: str | None = None) -> str:
        return identifiers.join(base if base is not None else self.base, identifier)

    # Local -------------------------------------------------------------------
    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.options.max_workers,
                thread_name_prefix="assetio-io",
            )
        return self._executor

    def _read_local(self, path: str) -> bytes:
        return safe_read_file(Path(path), self.options.max_file_size)

    # HTTP --------------------------------------------------------------------
    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                total=None, connect=self.options.connect_timeout
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.options.user_agent},
            )
            self._owns_session = True
        return self._session

    def _host_limit(self, url: str) -> asyncio.Semaphore:
        host = urlsplit(url).netloc
        sem = self._host_limits.get(host)
        if sem is None:
            sem = asyncio.Semaphore(self.options.connections_per_host)
            self._host_limits[host] = sem
        return sem

    async def _read_http(self, url: str) -> bytes:
        session = self._ensure_session()
        async with self._host_limit(url):
            self._log.debug("GET %s", url)
            try:
                async with session.get(url) as resp:
                    if resp.status in _NOT_FOUND_STATUS:
                        raise NotFound(
                            message=f"HTTP {resp.status}", identifier=url
                        )
                    if not 200 <= resp.status < 300:
                        raise NetworkError(
                            message=f"HTTP {resp.status} {resp.reason or ''}".strip(),
                            identifier=url,
                            status=resp.status,
                        )
                    length = resp.content_length
                    if length is not None and length > self.options.max_file_size:
                        raise MalformedData(
                            message=(
                                f"Response too large: {length}>"
                                f"{self.options.max_file_size}"
                            ),
                            identifier=url,
                        )
                    return await resp.read()
            except aiohttp.ClientError as exc:
                raise NetworkError(
                    message=str(exc) or type(exc).__name__, identifier=url
                ) from exc
            except asyncio.TimeoutError as exc:
                raise NetworkError(
                    message="timed out", identifier=url
                ) from exc

    # Public ------------------------------------------------------------------
    def _unsupported(self, identifier: str, scheme: str) -> UnsupportedScheme:
        reason = (
            "networking is disabled"
            if scheme in _HTTP_SCHEMES
            else f"no transport for '{scheme}'"
        )
        return UnsupportedScheme(message=reason, identifier=identifier)

    async def fetch_async(self, identifier: str, base: str | None = None) -> bytes:
        ident = self.resolve(identifier, base)
        scheme = identifiers.scheme_of(ident)
        if scheme == "data":
            return decode_data_url(ident)
        if scheme in ("", "file"):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._pool(), self._read_local, ident)
        if scheme in _HTTP_SCHEMES and self.options.network_enabled:
            return await self._read_http(ident)
        raise self._unsupported(ident, scheme)

    def fetch(self, identifier: str, base: str | None = None) -> bytes:
        """Blocking fetch; must not be called from a running event loop."""
        ident = self.resolve(identifier, base)
        scheme = identifiers.scheme_of(ident)
        if scheme == "data":
            return decode_data_url(ident)
        if scheme in ("", "file"):
            return self._read_local(ident)
        if scheme in _HTTP_SCHEMES and self.options.network_enabled:
            return asyncio.run(_fetch_once(ident, self.options))
        raise self._unsupported(ident, scheme)


async def _fetch_once(url: str, options: LoadOptions) -> bytes:
    async with ByteSource(options=options) as source:
        return await source.fetch_async(url)
