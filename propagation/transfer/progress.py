"""
Transfer Progress Events

A ProgressSink receives byte-level events for one transfer. Sinks are
observers only: nothing they do changes transfer control flow. Sessions ask
a ProgressFactory for a fresh sink per file, so concurrent transfers never
share a sink.
"""

import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    """Per-transfer progress events."""

    def on_start(self, total: int, label: str) -> None: ...

    def on_progress(self, transferred: int) -> None: ...

    def on_end(self) -> None: ...


ProgressFactory = Callable[[str], ProgressSink]


def format_label(label: Optional[str], max_length: int = 30) -> str:
    """Trim long labels with a leading ellipsis and pad to a fixed width."""
    if not label:
        return "Unknown File".ljust(max_length)
    if len(label) > max_length:
        return f"...{label[-(max_length - 3):]}".ljust(max_length)
    return label.ljust(max_length)


class NullProgressSink:
    """Discards every event."""

    def on_start(self, total: int, label: str) -> None:
        pass

    def on_progress(self, transferred: int) -> None:
        pass

    def on_end(self) -> None:
        pass


def null_progress(label: str) -> ProgressSink:
    return NullProgressSink()


class LoggingProgressSink:
    """Reports start and completion of a transfer through logging."""

    def __init__(self):
        self.total = 0
        self.label = ''
        self.transferred = 0

    def on_start(self, total: int, label: str) -> None:
        self.total = total
        self.label = label
        logger.debug(f"Transfer started: {label} ({total:,} bytes)")

    def on_progress(self, transferred: int) -> None:
        self.transferred = transferred

    def on_end(self) -> None:
        logger.info(f"Transferred {self.label}: {self.transferred:,}/{self.total:,} bytes")


def logging_progress(label: str) -> ProgressSink:
    return LoggingProgressSink()


class RichProgressSink:
    """One bar inside a shared rich Progress display."""

    def __init__(self, progress):
        self.progress = progress
        self.task_id = None

    def on_start(self, total: int, label: str) -> None:
        self.task_id = self.progress.add_task(format_label(label), total=total)

    def on_progress(self, transferred: int) -> None:
        if self.task_id is not None:
            self.progress.update(self.task_id, completed=transferred)

    def on_end(self) -> None:
        if self.task_id is not None:
            self.progress.stop_task(self.task_id)


class RichProgressFactory:
    """
    Builds RichProgressSinks bound to one rich.progress.Progress.

    The Progress object is owned by the caller (the CLI) and must be started
    before transfers begin.
    """

    def __init__(self, progress):
        self.progress = progress

    def __call__(self, label: str) -> ProgressSink:
        return RichProgressSink(self.progress)
