# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/hooks.py

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config.models import Settings
from .errors import PreconditionError
from .system import System

log = logging.getLogger("kubernix")

ENV_FILE = "kubernix.env"
PID_FILE = "kubernix.pid"
# marks processes started from a kubernix shell
SHELL_MARKER = "KUBERNIX_SHELL"
RUNTIME_ENV = "CONTAINER_RUNTIME_ENDPOINT"

PostReadyHook = Callable[[], None]


def env_file(root: Path) -> Path:
    return Path(root) / ENV_FILE


def pid_file(root: Path) -> Path:
    return Path(root) / PID_FILE


def write_env_file(root: Path, *, runtime_endpoint: str, kubeconfig: Path) -> Path:
    log.info("Writing environment file")
    path = env_file(root)
    path.write_text(
        f"export {RUNTIME_ENV}={runtime_endpoint}\n"
        f"export KUBECONFIG={kubeconfig}\n"
    )
    return path


def shell_env(kubeconfig: Optional[Path] = None) -> Dict[str, str]:
    env = {**os.environ, SHELL_MARKER: "1"}
    if kubeconfig is not None:
        env["KUBECONFIG"] = str(kubeconfig)
    return env


def spawn_shell(
    root: Path,
    *,
    kubeconfig: Optional[Path] = None,
    shell: Optional[Path] = None,
    wrap: Optional[Callable[[List[str]], List[str]]] = None,
) -> int:
    """Interactive shell in root with the environment file sourced."""
    path = env_file(root)
    if not path.exists():
        raise PreconditionError(f"Necessary environment file '{path}' does not exist")
    shell = shell or System.shell()
    argv = [str(shell), "-c", f". {path} && {shell}"]
    if wrap is not None:
        argv = wrap(argv)
    cp = subprocess.run(
        argv,
        cwd=str(root),
        env=shell_env(kubeconfig),
        check=False,
    )
    return cp.returncode


def shell_hook(settings: Settings, kubeconfig: Path) -> PostReadyHook:
    def hook() -> None:
        log.info("Spawning interactive shell")
        log.info("Please be aware that the cluster stops if you exit the shell")
        spawn_shell(settings.root, kubeconfig=kubeconfig)

    return hook


def wait_hook(
    settings: Settings,
    stop: Optional[threading.Event] = None,
    poll: Optional[Callable[[], None]] = None,
) -> PostReadyHook:
    """
    Write the pid file and block until SIGINT, SIGTERM or SIGHUP. The
    supervisor's own handler turns those into a cancellation; SIGHUP is
    routed to the same event here. poll runs every half second and may
    raise to end the wait.
    """
    event = stop or threading.Event()

    def hook() -> None:
        path = pid_file(settings.root)
        log.debug("Writing pid file to: %s", path)
        path.write_text(str(os.getpid()))

        previous = None
        if threading.current_thread() is threading.main_thread():
            previous = signal.signal(signal.SIGHUP, lambda signum, frame: event.set())
        log.info("Waiting for interrupt…")
        try:
            while not event.wait(0.5):
                if poll is not None:
                    poll()
        finally:
            if previous is not None:
                signal.signal(signal.SIGHUP, previous)

    hook.stop = event  # type: ignore[attr-defined]
    return hook
