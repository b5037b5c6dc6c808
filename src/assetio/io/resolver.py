"""Wave-based discovery and fetching of a resource graph.

Every wave fetches all currently known, not yet fetched identifiers
concurrently and waits for all of them. The references found in the new
resources, resolved and deduplicated, form the next wave. The graph is
closed when a wave discovers nothing new.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Tuple

from ..errors import AssetError, MissingReference, NetworkError
from ..logging import get_logger
from ..reporting import task
from . import identifiers
from .dispatch import DEFAULT_DISPATCHER, Dispatcher
from .raw_assets import RawAssets
from .source import ByteSource

__all__ = ["Resolver", "resolve_sync"]


class Resolver:
    def __init__(self, source: ByteSource, dispatcher: Dispatcher | None = None):
        self.source = source
        self.dispatcher = dispatcher or DEFAULT_DISPATCHER
        self._log = get_logger("resolver")

    def references(self, identifier: str, data: bytes) -> List[str]:
        """Resolved identifiers referenced by one resource.

        A resource no codec recognizes, or whose pre-parse fails, yields
        nothing here; decoding it later reports the real problem.
        """
        try:
            codec = self.dispatcher.select(identifier, data)
            refs = codec.references(data)
        except (AssetError, ValueError, LookupError, TypeError) as exc:
            self._log.debug("no references from %s: %s", identifier, exc)
            return []
        return [identifiers.resolve_reference(identifier, r) for r in refs]

    async def resolve(self, roots: Iterable[str] | str) -> RawAssets:
        if isinstance(roots, str):
            roots = [roots]
        resolved: List[str] = []
        for root in roots:
            ident = self.source.resolve(root)
            if ident not in resolved:
                resolved.append(ident)
        timeout = self.source.options.timeout
        if timeout is None:
            return await self._resolve(resolved)
        try:
            return await asyncio.wait_for(self._resolve(resolved), timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                message=f"resolving did not finish within {timeout}s",
                identifier=resolved[0] if resolved else None,
            ) from exc

    async def _resolve(self, roots: List[str]) -> RawAssets:
        fetched: Dict[str, bytes] = {}
        # identifier -> chain of referrers starting at its root
        parents: Dict[str, Tuple[str, ...]] = {r: () for r in roots}
        wave = list(roots)
        number = 0
        while wave:
            number += 1
            with task(f"wave-{number}", f"Wave {number}", total=len(wave)) as final:
                results = await self._fetch_wave(wave, parents)
                final["resources"] = len(wave)
                final["bytes"] = sum(len(d) for d in results)
            self._log.debug("wave %d fetched %d resource(s)", number, len(wave))
            fetched.update(zip(wave, results))
            discovered: List[str] = []
            for ident, data in zip(wave, results):
                for child in self.references(ident, data):
                    if child in parents:
                        continue
                    parents[child] = parents[ident] + (ident,)
                    discovered.append(child)
            wave = discovered
        return RawAssets(fetched)

    async def _fetch_wave(
        self, wave: List[str], parents: Dict[str, Tuple[str, ...]]
    ) -> List[bytes]:
        tasks = [asyncio.create_task(self.source.fetch_async(i)) for i in wave]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for ident, t in zip(wave, tasks):
                if t.done() and not t.cancelled() and t.exception() is not None:
                    raise self._failure(ident, parents[ident], t.exception())
            return [t.result() for t in tasks]
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            # Collects every outcome, so no failure goes unretrieved.
            await asyncio.gather(*tasks, return_exceptions=True)

    def _failure(
        self, identifier: str, chain: Tuple[str, ...], exc: BaseException
    ) -> BaseException:
        if not chain:
            return exc
        reason = exc.message if isinstance(exc, AssetError) else str(exc)
        err = MissingReference(
            message=f"referenced resource could not be fetched: {reason}",
            identifier=identifier,
            parents=chain,
            context={"cause": getattr(exc, "code", type(exc).__name__)},
        )
        err.__cause__ = exc
        return err


def resolve_sync(
    roots: Iterable[str] | str,
    *,
    base: str | None = None,
    options=None,
    dispatcher: Dispatcher | None = None,
) -> RawAssets:
    """Blocking resolve on a fresh event loop."""

    async def run() -> RawAssets:
        async with ByteSource(base=base, options=options) as source:
            return await Resolver(source, dispatcher).resolve(roots)

    return asyncio.run(run())
