# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/logging/progress.py

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

_STYLES = {
    "TRACE": "magenta",
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold red",
}


class ProgressSink(logging.Handler):
    """
    Console handler for every kubernix record.

    While a bar is active, INFO records advance it and become its message,
    everything else is printed above the bar. Without a bar, records are
    written to stderr. The handler lock serialises all writers.
    """

    def __init__(self, console: Optional[Console] = None):
        super().__init__()
        self.console = console or Console(stderr=True)
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    # --------------------------------------------------------------
    # bar lifecycle
    # --------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._progress is not None

    def bar_enabled(self) -> bool:
        return self.level <= logging.INFO and self.console.is_terminal

    def start(self, total: int) -> None:
        with self.lock:
            if self._progress is not None or not self.bar_enabled():
                return
            self._progress = Progress(
                SpinnerColumn(),
                TimeElapsedColumn(),
                BarColumn(bar_width=25),
                MofNCompleteColumn(),
                TextColumn("{task.description}"),
                console=self.console,
            )
            self._task = self._progress.add_task("", total=total)
            self._progress.start()

    def finish(self) -> None:
        with self.lock:
            if self._progress is None:
                return
            if self._task is not None:
                task = self._progress.tasks[0]
                self._progress.update(self._task, completed=task.total)
            self._progress.stop()
            self._progress = None
            self._task = None

    # --------------------------------------------------------------
    # logging.Handler
    # --------------------------------------------------------------

    def _line(self, record: logging.LogRecord) -> Text:
        name = record.levelname
        return Text.assemble(
            ("[", "dim"),
            (f"{name:<5}", _STYLES.get(name, "")),
            ("]", "dim"),
            " ",
            record.getMessage(),
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self._progress is not None:
                if record.levelno == logging.INFO:
                    self._progress.update(
                        self._task, advance=1, description=record.getMessage()
                    )
                else:
                    self._progress.console.print(self._line(record), highlight=False)
            else:
                self.console.print(self._line(record), highlight=False)
        except Exception:
            self.handleError(record)


_SINK: Optional[ProgressSink] = None
_SINK_LOCK = threading.Lock()


def sink() -> ProgressSink:
    """Process-wide, lazily created console sink."""
    global _SINK
    with _SINK_LOCK:
        if _SINK is None:
            _SINK = ProgressSink()
        return _SINK


@contextmanager
def progress_bar(total: int) -> Iterator[ProgressSink]:
    s = sink()
    s.start(total)
    try:
        yield s
    finally:
        s.finish()
