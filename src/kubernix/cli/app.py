# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/cli/app.py

from __future__ import annotations

import logging
import os
from functools import partial
from pathlib import Path
from typing import List, Optional

import typer

from kubernix import nix
from kubernix.config.loader import build_settings, prepare_root
from kubernix.config.models import Settings
from kubernix.errors import KubernixError, PreconditionError
from kubernix.hooks import SHELL_MARKER, shell_hook, spawn_shell, wait_hook
from kubernix.logging.log import LEVELS, init_logging, to_level
from kubernix.observers.dispatcher import EventBus
from kubernix.observers.jsonfile import JsonFileObserver
from kubernix.observers.logger import LoggerObserver
from kubernix.supervisor import Supervisor

app = typer.Typer(
    help="Single dependency Kubernetes clusters for local testing, experimenting and development",
    add_completion=False,
)

log = logging.getLogger("kubernix")


def _fail(e: Exception, level: str = "info") -> None:
    if to_level(level) <= logging.DEBUG:
        log.debug("Failure details", exc_info=e)
    typer.echo(f"[ERROR] {e}", err=True)
    raise typer.Exit(1)


def _setup(settings: Settings) -> tuple[Settings, str]:
    settings = prepare_root(settings)
    _, run_id, _ = init_logging(level=settings.log_level, base_dir=settings.log_path)
    return settings, run_id


@app.callback(invoke_without_command=True)
def bootstrap(
    ctx: typer.Context,
    root: Path = typer.Option(
        Path("kubernix-run"), "--root", envvar="KUBERNIX_RUN", help="Path where all the runtime data is stored"
    ),
    log_level: str = typer.Option(
        "info", "--log-level", envvar="KUBERNIX_LOG_LEVEL", help=f"Log verbosity: {', '.join(LEVELS)}"
    ),
    cidr: Optional[str] = typer.Option(
        None, "--cidr", envvar="KUBERNIX_CIDR", help="The CIDR used for the whole cluster network (at least /24)"
    ),
    nodes: Optional[int] = typer.Option(
        None, "--nodes", envvar="KUBERNIX_NODES", help="Number of nodes, more than one needs a container runtime"
    ),
    container_runtime: Optional[str] = typer.Option(
        None,
        "--container-runtime",
        envvar="KUBERNIX_CONTAINER_RUNTIME",
        help="Container runtime for multi node clusters: podman, docker or none",
    ),
    overlay: Optional[Path] = typer.Option(
        None, "--overlay", envvar="KUBERNIX_OVERLAY", help="The Nix package overlay to be used"
    ),
    packages: Optional[List[str]] = typer.Option(
        None, "--packages", envvar="KUBERNIX_PACKAGES", help="Additional Nix dependencies to be added to the environment"
    ),
    no_shell: bool = typer.Option(
        False, "--no-shell", envvar="KUBERNIX_NO_SHELL", help="Do not spawn a shell, wait for a signal instead"
    ),
):
    """
    Bootstrap a cluster and keep it running until the shell exits or a
    termination signal arrives.
    """
    try:
        settings = build_settings(
            root=root,
            log_level=log_level.lower(),
            cidr=cidr,
            nodes=nodes,
            container_runtime=container_runtime,
            overlay=overlay,
            packages=packages or None,
            no_shell=no_shell,
        )
    except PreconditionError as e:
        _fail(e)

    ctx.obj = settings
    if ctx.invoked_subcommand is not None:
        return

    try:
        if os.environ.get(SHELL_MARKER):
            raise PreconditionError(
                "Refusing to bootstrap a new cluster from inside a kubernix shell, use 'kubernix shell'"
            )
        if settings.overlay is not None and not settings.overlay.is_file():
            raise PreconditionError(f"Overlay '{settings.overlay}' is not a readable file")

        settings, run_id = _setup(settings)

        if not nix.is_active():
            if nix.available():
                raise typer.Exit(nix.bootstrap(settings))
            if settings.overlay is not None or settings.packages:
                log.warning("Nix is not available, ignoring overlay and packages")

        bus = EventBus()
        bus.subscribe(LoggerObserver(log))
        bus.subscribe(JsonFileObserver(settings.log_path / "events.jsonl"))

        supervisor = Supervisor(settings, bus=bus, run_id=run_id, interactive=not settings.no_shell)
        kubeconfig = settings.root / "kubeconfig" / "admin.kubeconfig"
        if settings.no_shell:
            supervisor.post_ready = wait_hook(settings, poll=supervisor.check_children)
        else:
            supervisor.post_ready = shell_hook(settings, kubeconfig)

        code = supervisor.run()
    except KubernixError as e:
        _fail(e, settings.log_level)

    if code:
        # the supervisor already reported the reason
        raise typer.Exit(code)


@app.command()
def shell(ctx: typer.Context):
    """Spawn an additional shell session into a running cluster."""
    settings: Settings = ctx.obj
    try:
        settings, _ = _setup(settings)
        log.info("Spawning new kubernix shell in: '%s'", settings.root)

        wrap = None
        if not nix.is_active() and nix.available() and nix.nix_dir(settings).exists():
            wrap = partial(nix.run_argv, settings)
        spawn_shell(settings.root, kubeconfig=settings.root / "kubeconfig" / "admin.kubeconfig", wrap=wrap)
    except KubernixError as e:
        _fail(e, settings.log_level)
    log.info("Bye, leaving the Kubernix environment")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
