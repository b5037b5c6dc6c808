from __future__ import annotations

from typing import Any, List, Tuple

import pytest

from assetio.logging import configure_logging
from assetio.reporting import Reporter, TaskStatus, set_reporter


class RecordingReporter(Reporter):
    """Keeps every task and message so tests can assert on them."""

    def __init__(self):
        self.started: List[Tuple[str, Any]] = []
        self.ended: List[Tuple[str, TaskStatus, dict]] = []
        self.messages: List[Tuple[str, str]] = []

    def start_task(self, task_id, name, total=None, **meta):
        self.started.append((task_id, total))

    def advance(self, task_id, step=1, **meta):
        pass

    def end_task(self, task_id, status=TaskStatus.SUCCESS, **final_meta):
        self.ended.append((task_id, status, final_meta))

    def status(self, message, **fields):
        self.messages.append(("info", message))

    def warning(self, message, **fields):
        self.messages.append(("warning", message))

    def error(self, message, **fields):
        self.messages.append(("error", message))

    def section(self, title):
        pass

    def warnings(self) -> List[str]:
        return [m for level, m in self.messages if level == "warning"]


@pytest.fixture
def reporter():
    rep = RecordingReporter()
    set_reporter(rep)
    configure_logging(0)
    yield rep
    set_reporter(None)
