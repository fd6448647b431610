# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/process.py

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple, Union

from .errors import PreconditionError, ReadinessError

log = logging.getLogger("kubernix")

Marker = Union[str, Tuple[str, ...]]

READINESS_TIMEOUT = 30.0
STOP_TIMEOUT = 10.0
POLL_INTERVAL = 0.1


class ChildProcess:
    """
    One long-running external binary.

    stdout and stderr go to the same log file. A watcher thread waits for the
    child to exit and records whether the exit was requested or not. The
    watcher only observes; stopping is always driven by the owner.
    """

    def __init__(self, name: str, argv: Sequence[str], log_file: Path, proc: subprocess.Popen):
        self.name = name
        self.argv = list(argv)
        self.log_file = log_file
        self.proc = proc
        self.returncode: Optional[int] = None
        self.exited_unexpectedly = False

        self._stopping = threading.Event()
        self._exited = threading.Event()
        self._stopped = False
        self._stop_lock = threading.Lock()
        self._watch = threading.Thread(
            target=self._watch_exit, name=f"watch-{name}", daemon=True
        )
        self._watch.start()

    @classmethod
    def start(
        cls,
        argv: Sequence[str],
        log_file: Path,
        *,
        name: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> "ChildProcess":
        argv = [str(a) for a in argv]
        if not argv:
            raise PreconditionError("No valid command provided")
        name = name or Path(argv[0]).name
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        log.debug("Starting process '%s': %s", name, " ".join(argv))
        merged = {**os.environ, **env} if env else None
        with open(log_file, "wb") as out:
            try:
                proc = subprocess.Popen(
                    argv,
                    stdout=out,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    env=merged,
                    cwd=str(cwd) if cwd else None,
                    # terminal signals (Ctrl-C in the shell) must not reach the children
                    start_new_session=True,
                )
            except FileNotFoundError as e:
                raise PreconditionError(f"Unable to find executable '{argv[0]}'") from e
        log.debug("Process '%s' started with pid %d", name, proc.pid)
        return cls(name, argv, log_file, proc)

    # ------------------------------------------------------------------
    # Watcher
    # ------------------------------------------------------------------

    def _watch_exit(self) -> None:
        code = self.proc.wait()
        self.returncode = code
        if self._stopping.is_set():
            log.debug("Process '%s' exited with %s", self.name, code)
        else:
            self.exited_unexpectedly = True
            log.error("Process '%s' died unexpectedly with exit code %s", self.name, code)
        self._exited.set()

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def alive(self) -> bool:
        return not self._exited.is_set()

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def wait_ready(self, marker: Marker, timeout: float = READINESS_TIMEOUT) -> None:
        """
        Scan the log from its beginning until a line contains the marker.

        marker may be a tuple of alternative substrings. On timeout the child
        is stopped and ReadinessError is raised.
        """
        markers = (marker,) if isinstance(marker, str) else tuple(marker)
        log.debug("Waiting for process '%s' to become ready with pattern: %s", self.name, markers)

        deadline = time.monotonic() + timeout
        pending = ""
        with open(self.log_file, "r", encoding="utf-8", errors="replace") as f:
            while time.monotonic() < deadline:
                chunk = f.readline()
                if not chunk:
                    time.sleep(POLL_INTERVAL)
                    continue
                pending += chunk
                if not pending.endswith("\n"):
                    # partial line, keep it until the rest is written
                    if not any(m in pending for m in markers):
                        continue
                line, pending = pending, ""
                for m in markers:
                    if m in line:
                        log.debug("Found pattern '%s' in line '%s'", m, line.rstrip())
                        return

        self.stop()
        raise ReadinessError(
            f"Timed out waiting for process '{self.name}' to become ready after {timeout:g}s"
        )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Send SIGTERM once and wait for the watcher, detaching after timeout."""
        with self._stop_lock:
            if self._stopped:
                return
            self._stopping.set()
            if not self._exited.is_set():
                log.debug("Stopping process '%s'", self.name)
                try:
                    os.kill(self.proc.pid, signal.SIGTERM)
                except ProcessLookupError:
                    pass
            # only marked once SIGTERM went out, an interrupted stop can be retried
            self._stopped = True

        self._watch.join(timeout)
        if self._watch.is_alive():
            log.warning(
                "Process '%s' (pid %d) did not exit within %gs, detaching",
                self.name,
                self.proc.pid,
                timeout,
            )
            return
        log.debug("Process '%s' stopped", self.name)

    def __repr__(self) -> str:
        return f"ChildProcess(name={self.name!r}, pid={self.proc.pid})"
