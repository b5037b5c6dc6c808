"""Writing encoded files to local paths as one transaction."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Dict, List, Mapping

from ..errors import UnsupportedScheme, WriteError
from ..logging import get_logger
from . import identifiers

__all__ = ["FileSink"]

_TMP_SUFFIX = ".tmp.tx"
_BAK_SUFFIX = ".bak.tx"


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class FileSink:
    """Writes a set of files so that either all of them land or none do.

    Every payload is staged in a temp file beside its target. Targets are
    then replaced one by one, existing ones backed up first. If anything
    fails, replaced targets are restored from their backups, newly created
    ones removed, and a :class:`WriteError` is raised.
    """

    def __init__(self, base: str | os.PathLike | None = None):
        self.base = os.fspath(base) if base is not None else None
        self._log = get_logger("sink")

    def _target(self, identifier: str) -> str:
        scheme = identifiers.scheme_of(identifier)
        if scheme not in ("", "file"):
            raise UnsupportedScheme(
                message=f"cannot write to '{scheme}' targets", identifier=identifier
            )
        return identifiers.join(self.base, identifier)

    def write(self, files: Mapping[str, bytes]) -> List[Path]:
        targets = [(self._target(ident), bytes(data)) for ident, data in files.items()]
        staged: List[tuple[str, str]] = []
        replaced: List[str] = []
        backups: Dict[str, str] = {}
        try:
            for target, data in targets:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
                tmp = target + _TMP_SUFFIX
                with open(tmp, "wb") as f:
                    f.write(data)
                staged.append((target, tmp))
            for target, tmp in staged:
                if os.path.exists(target):
                    bak = target + _BAK_SUFFIX
                    shutil.copyfile(target, bak)
                    backups[target] = bak
                os.replace(tmp, target)
                replaced.append(target)
        except OSError as exc:
            self._rollback(staged, replaced, backups)
            raise WriteError(
                message=f"transactional write failed: {exc}",
                identifier=getattr(exc, "filename", None),
                context={"files": [t for t, _ in targets]},
            ) from exc
        for bak in backups.values():
            _discard(bak)
        self._log.debug("wrote %d file(s)", len(replaced))
        return [Path(t) for t in replaced]

    def _rollback(
        self,
        staged: List[tuple[str, str]],
        replaced: List[str],
        backups: Dict[str, str],
    ) -> None:
        for target in replaced:
            try:
                if target in backups:
                    os.replace(backups.pop(target), target)
                else:
                    _discard(target)
            except OSError as exc:
                self._log.error("could not roll back %s: %s", target, exc)
        for bak in backups.values():
            _discard(bak)
        for _, tmp in staged:
            try:
                _discard(tmp)
            except OSError as exc:
                self._log.error("could not remove %s: %s", tmp, exc)
