from __future__ import annotations

import asyncio
import contextvars
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional

__all__ = [
    "TaskStatus",
    "TaskRecord",
    "Reporter",
    "set_reporter",
    "get_reporter",
    "use_reporter",
    "set_verbosity",
    "get_verbosity",
    "task",
    "STAT_KEYS",
]

# Task meta keys rendered in completion lines.
STAT_KEYS = ("resources", "bytes", "waves", "vertices", "triangles", "files")


class TaskStatus(Enum):
    RUNNING = auto()
    SUCCESS = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass(slots=True)
class TaskRecord:
    task_id: str
    name: str
    total: Optional[int] = None
    completed: int = 0
    status: TaskStatus = TaskStatus.RUNNING
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        dur = (self.end_time - self.start_time) if self.end_time else 0.0
        total_part = (
            f" {self.completed}/{self.total}" if self.total is not None else ""
        )
        stats = [f"{k}={self.meta[k]}" for k in STAT_KEYS if k in self.meta]
        stats_part = f" [{' '.join(stats)}]" if stats else ""
        return f"{self.name}{total_part} ({dur:.2f}s){stats_part}"


_VERBOSITY: int = 0


def set_verbosity(level: int) -> None:
    global _VERBOSITY
    _VERBOSITY = max(0, level)


def get_verbosity() -> int:
    return _VERBOSITY


class Reporter:
    supports_progress: bool = False

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:  # noqa: D401
        raise NotImplementedError

    def advance(
        self, task_id: str, step: int = 1, **meta: Any
    ) -> None:  # noqa: D401
        raise NotImplementedError

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:  # noqa: D401
        raise NotImplementedError

    def status(self, message: str, **fields: Any) -> None:
        raise NotImplementedError

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        pass

    def error(self, message: str, **fields: Any) -> None:
        raise NotImplementedError

    def warning(self, message: str, **fields: Any) -> None:
        self.status(message, **fields)

    def section(self, title: str) -> None:  # noqa: D401
        raise NotImplementedError

    def flush(self) -> None:  # noqa: D401
        pass


_ACTIVE_REPORTER: Reporter | None = None

# Per-call override; set by use_reporter() and scoped to the current context.
_LOCAL_REPORTER: contextvars.ContextVar[Reporter | None] = contextvars.ContextVar(
    "assetio_reporter", default=None
)


def set_reporter(rep: Reporter | None) -> None:
    """Install the process-wide reporter (``None`` restores the default)."""
    global _ACTIVE_REPORTER
    _ACTIVE_REPORTER = rep


def get_reporter() -> Reporter:
    global _ACTIVE_REPORTER
    local = _LOCAL_REPORTER.get()
    if local is not None:
        return local
    if _ACTIVE_REPORTER is None:
        # A library stays quiet unless the host application opts in.
        from .silent import SilentReporter  # local import to avoid cycle

        _ACTIVE_REPORTER = SilentReporter()
    return _ACTIVE_REPORTER


@contextmanager
def task(task_id: str, name: str, total: int | None = None, **meta: Any):
    rep = get_reporter()
    rep.start_task(task_id, name, total, **meta)
    final: Dict[str, Any] = {}
    try:
        yield final
    except BaseException as exc:
        status = (
            TaskStatus.CANCELLED
            if isinstance(exc, (asyncio.CancelledError, KeyboardInterrupt))
            else TaskStatus.FAILED
        )
        rep.end_task(task_id, status, **final)
        raise
    else:
        rep.end_task(task_id, TaskStatus.SUCCESS, **final)


@contextmanager
def use_reporter(rep: Reporter):
    """Route reporting in the current context (thread or task) to ``rep``.

    Other threads keep seeing the process-wide reporter.
    """
    token = _LOCAL_REPORTER.set(rep)
    try:
        yield rep
    finally:
        _LOCAL_REPORTER.reset(token)
