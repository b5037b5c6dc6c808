"""Load options and their JSON/YAML/environment loading."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

__all__ = [
    "LoadOptions",
    "DEFAULT_USER_AGENT",
    "load_options",
    "options_from_env",
]

DEFAULT_USER_AGENT = "assetio/0.1"
_ENV_PREFIX = "ASSETIO_"
_DEFAULT_MAX_FILE_SIZE = 1024 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class LoadOptions:
    # Whole-resolve deadline in seconds; None waits forever.
    timeout: float | None = None
    connect_timeout: float = 5.0
    # Local reads run on a pool of this many threads.
    max_workers: int = 8
    connections_per_host: int = 8
    user_agent: str = DEFAULT_USER_AGENT
    max_file_size: int = _DEFAULT_MAX_FILE_SIZE
    network_enabled: bool = True
    reporter: str = "silent"
    verbosity: int = 0

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.connections_per_host < 1:
            raise ValueError("connections_per_host must be >= 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_file_size <= 0:
            raise ValueError("max_file_size must be positive")


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if raw is None:
        return None
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in {"1", "true", "yes", "on"}
    if name == "timeout":
        if str(raw).strip().lower() in {"", "none"}:
            return None
        return float(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def _from_mapping(data: Mapping[str, Any], base: LoadOptions) -> LoadOptions:
    known = {f.name: f for f in fields(LoadOptions)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown load option(s): {', '.join(unknown)}")
    updates = {
        name: _coerce(name, value, getattr(base, name))
        for name, value in data.items()
    }
    return replace(base, **updates)


def options_from_env(
    base: LoadOptions | None = None, environ: Mapping[str, str] | None = None
) -> LoadOptions:
    """Apply ``ASSETIO_<FIELD>`` environment overrides to ``base``."""
    env = os.environ if environ is None else environ
    base = base or LoadOptions()
    overrides = {}
    for f in fields(LoadOptions):
        key = _ENV_PREFIX + f.name.upper()
        if key in env:
            overrides[f.name] = env[key]
    return _from_mapping(overrides, base) if overrides else base


def load_options(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> LoadOptions:
    """Read options from a JSON or YAML file, then apply the environment."""
    opts = LoadOptions()
    if path is not None:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(p)
        text = p.read_text(encoding="utf-8")
        if p.suffix.lower() in {".yaml", ".yml"}:
            data: Any = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Root of options file must be an object")
        opts = _from_mapping(data, opts)
    return options_from_env(opts, environ)
