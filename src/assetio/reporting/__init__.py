from .base import (
    Reporter,
    TaskRecord,
    TaskStatus,
    get_reporter,
    set_reporter,
    task,
    use_reporter,
)
from .base import (
    set_verbosity,
    get_verbosity,
)
from .plain import PlainReporter
from .silent import SilentReporter
from .rich_reporter import RichReporter

__all__ = [
    "Reporter",
    "TaskRecord",
    "TaskStatus",
    "get_reporter",
    "set_reporter",
    "task",
    "use_reporter",
    "set_verbosity",
    "get_verbosity",
    "PlainReporter",
    "SilentReporter",
    "RichReporter",
    "make_reporter",
]


def make_reporter(kind: str) -> Reporter:
    """Build a reporter by name: ``silent``, ``plain`` or ``rich``."""
    kind = kind.lower()
    if kind == "silent":
        return SilentReporter()
    if kind == "plain":
        return PlainReporter()
    if kind == "rich":
        return RichReporter()
    raise ValueError(f"Unknown reporter kind: {kind}")
