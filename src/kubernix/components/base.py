# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/components/base.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ..assets.render import TemplateRenderer
from ..config.models import Settings
from ..container import ContainerRuntime
from ..errors import KubernixError
from ..kube.kubectl import Kubectl
from ..kubeconfig import KubeconfigBundle
from ..network import NetworkPlan
from ..observers.dispatcher import EventBus
from ..observers.events import ComponentFailed, ComponentReady, ComponentStarting, stamp
from ..pki import PkiBundle
from ..process import ChildProcess
from ..utils.runner import CommandRunner
from .registry import ComponentSpec

log = logging.getLogger("kubernix")

Starter = Callable[..., ChildProcess]


@dataclass
class ClusterContext:
    """Everything a component needs to build its argv and config files."""

    settings: Settings
    plan: NetworkPlan
    pki: PkiBundle
    kubeconfigs: KubeconfigBundle
    encryption_config: Path
    kubectl: Kubectl
    renderer: TemplateRenderer = field(default_factory=TemplateRenderer)
    runner: CommandRunner = field(default_factory=CommandRunner)
    container: Optional[ContainerRuntime] = None
    bus: EventBus = field(default_factory=EventBus)
    event_ctx: Dict[str, Any] = field(default_factory=dict)
    start_process: Starter = ChildProcess.start

    @property
    def root(self) -> Path:
        return self.settings.root

    @property
    def multi_node(self) -> bool:
        return self.container is not None and self.container.enabled

    def directory(self, spec: ComponentSpec, node: Optional[str] = None) -> Path:
        base = self.root / spec.directory
        if node is not None and self.multi_node:
            return base / node
        return base

    def log_file(self, spec: ComponentSpec, node: Optional[str] = None) -> Path:
        if node is not None and self.multi_node:
            return self.settings.log_path / f"{spec.binary}-{node}.log"
        return self.settings.log_path / f"{spec.binary}.log"

    def emit(self, event_cls, **fields) -> None:
        if not self.event_ctx:
            return
        self.bus.emit(event_cls(**stamp(self.event_ctx), **fields))


class Component:
    """A started, ready child owned by the supervisor."""

    def __init__(self, spec: ComponentSpec, process: ChildProcess, node: Optional[str] = None):
        self.spec = spec
        self.process = process
        self.node = node

    @property
    def name(self) -> str:
        if self.node is None:
            return self.spec.name
        return f"{self.spec.name} ({self.node})"

    @property
    def alive(self) -> bool:
        return self.process.alive

    def stop(self) -> None:
        self.process.stop()

    def __repr__(self) -> str:
        return f"Component({self.name!r}, pid={self.process.pid})"


def launch(
    cluster: ClusterContext,
    spec: ComponentSpec,
    argv: Sequence[str],
    *,
    node: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ChildProcess:
    """
    Spawn the child and block until its readiness marker shows up in the log.
    A child that never becomes ready is stopped before the error propagates.
    """
    name = spec.name if node is None else f"{spec.name} ({node})"
    log_file = cluster.log_file(spec, node)
    cwd = cluster.directory(spec, node)
    cwd.mkdir(parents=True, exist_ok=True)

    cluster.emit(ComponentStarting, name=name, argv=list(argv), log_file=str(log_file))
    started = time.monotonic()
    try:
        child = cluster.start_process(argv, log_file, name=name, env=env, cwd=cwd)
    except KubernixError as e:
        cluster.emit(ComponentFailed, name=name, error=str(e))
        raise
    try:
        child.wait_ready(spec.markers, cluster.settings.readiness_timeout)
    except KubernixError as e:
        # also covers a cancellation while waiting; stop() is idempotent
        child.stop()
        cluster.emit(ComponentFailed, name=name, error=str(e))
        raise

    cluster.emit(
        ComponentReady,
        name=name,
        pid=child.pid,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return child
