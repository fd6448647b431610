# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubernix/supervisor.py

from __future__ import annotations

import logging
import os
import signal
import threading
from enum import Enum
from typing import Callable, List, Optional

from .assets.render import TemplateRenderer
from .components import control_plane, coredns, node
from .components.base import ClusterContext, Component
from .components.registry import CONTROL_PLANE, NODE
from .config.models import Settings
from .container import ContainerRuntime, write_policy
from .encryption import ensure as ensure_encryption
from .errors import (
    KubernixError,
    PreconditionError,
    TeardownError,
    UnexpectedExitError,
    UserCancelled,
)
from .hooks import PostReadyHook, write_env_file
from .kube.kubectl import Kubectl
from .kubeconfig import build as build_kubeconfigs
from .logging.progress import progress_bar
from .network import plan as plan_network
from .observers.dispatcher import EventBus
from .observers.events import (
    ComponentStopped,
    KubeconfigsReady,
    PkiReady,
    StateChanged,
    TeardownSummary,
    new_ctx,
    stamp,
)
from .pki import ensure as ensure_pki
from .pki import pki_dir
from .process import ChildProcess
from .system import System
from .utils.runner import CommandRunner

log = logging.getLogger("kubernix")

MANDATORY_BINARIES = (
    "etcd",
    "kube-apiserver",
    "kube-controller-manager",
    "kube-scheduler",
    "kubelet",
    "kube-proxy",
    "kubectl",
    "crio",
    "conmon",
    "runc",
    "crictl",
    "cfssl",
    "cfssljson",
    "loopback",
    "ip",
    "modprobe",
    "sysctl",
)

# info messages logged while preparing, used to size the progress bar
BASE_STEPS = 12


class State(str, Enum):
    INIT = "Init"
    PREPARING = "Preparing"
    STARTING_CORE = "StartingCore"
    STARTING_NODES = "StartingNodes"
    READY = "Ready"
    STOPPING = "Stopping"
    DONE = "Done"


def required_binaries(settings: Settings) -> List[str]:
    names = list(MANDATORY_BINARIES)
    if settings.container_runtime != "none":
        names.append(settings.container_runtime)
    return names


class Supervisor:
    """
    Owns every started child.

    Children are started in dependency order and pushed onto `supervised`
    once ready. Whatever ends the run (hook returned, failure, signal),
    `supervised` is stopped in reverse order.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        system: Optional[System] = None,
        runner: Optional[CommandRunner] = None,
        renderer: Optional[TemplateRenderer] = None,
        kubectl: Optional[Kubectl] = None,
        bus: Optional[EventBus] = None,
        run_id: Optional[str] = None,
        post_ready: Optional[PostReadyHook] = None,
        interactive: bool = False,
        start_process: Callable[..., ChildProcess] = ChildProcess.start,
        install_signals: bool = True,
        require_root: bool = True,
    ):
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.system = system or System(self.runner)
        self.renderer = renderer or TemplateRenderer()
        self.kubectl = kubectl
        self.bus = bus or EventBus()
        self.event_ctx = new_ctx(str(settings.root), run_id)
        self.post_ready = post_ready
        self.interactive = interactive
        self.start_process = start_process
        self.install_signals = install_signals
        self.require_root = require_root

        self.supervised: List[Component] = []
        self.cluster: Optional[ClusterContext] = None
        self.error: Optional[BaseException] = None
        self._state = State.INIT
        self._signals = 0
        self._previous_handlers = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        return self._state

    def _transition(self, state: State) -> None:
        previous, self._state = self._state, state
        log.debug("Supervisor state %s -> %s", previous.value, state.value)
        self.bus.emit(
            StateChanged(**stamp(self.event_ctx), previous=previous.value, state=state.value)
        )

    def _emit(self, event_cls, **fields) -> None:
        self.bus.emit(event_cls(**stamp(self.event_ctx), **fields))

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _on_signal(self, signum, frame) -> None:
        self._signals += 1
        if self._signals > 1 and self._state is State.STOPPING:
            log.warning("Received second signal, forcing exit")
            os._exit(1)
        if self._state in (State.STOPPING, State.DONE):
            log.warning("Already stopping, send the signal again to force exit")
            return
        if signum == signal.SIGINT and self._state is State.READY and self.interactive:
            # Ctrl-C belongs to the interactive shell
            self._signals -= 1
            return
        raise UserCancelled(signum)

    def _install_signal_handlers(self) -> None:
        if not self.install_signals:
            return
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not on the main thread, signal handlers not installed")
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def progress_steps(self) -> int:
        return BASE_STEPS + len(CONTROL_PLANE) + len(NODE) * self.settings.nodes

    def run(self) -> int:
        """Bootstrap, run the post-ready hook, tear down. Returns the exit code."""
        self._install_signal_handlers()
        ok = False
        teardown_ok = True
        try:
            try:
                with progress_bar(self.progress_steps()):
                    self._preflight()
                    self._prepare()
                    self._start_core()
                    self._start_nodes()
                self._ready()
                ok = True
            except UserCancelled as e:
                self.error = e
                if self._state is State.READY:
                    log.info("Received signal %d, stopping cluster", e.signum)
                    ok = True
                else:
                    log.error("%s", e)
            except KubernixError as e:
                self.error = e
                log.error("%s", e)
            finally:
                teardown_ok = self._teardown()
        finally:
            self._restore_signal_handlers()
        return 0 if ok and teardown_ok else 1

    def _preflight(self) -> None:
        log.info("Bootstrapping cluster")
        if self.require_root and os.geteuid() != 0:
            raise PreconditionError("Please run kubernix as root")
        System.verify_executables(required_binaries(self.settings))

    def _prepare(self) -> None:
        self._transition(State.PREPARING)
        settings = self.settings

        log.info("Preparing system")
        self.system.prepare()
        write_policy(settings, self.renderer)

        container = None
        if settings.container_runtime != "none":
            container = ContainerRuntime(
                settings,
                runner=self.runner,
                renderer=self.renderer,
                in_container=self.system.in_container(),
            )
            container.build()

        log.info("Planning network")
        plan = plan_network(
            settings,
            hostname=self.system.hostname(),
            host_ip=self.system.host_ip(),
            routes=self.system.routes(),
        )

        reused = pki_dir(settings).exists()
        pki = ensure_pki(settings, plan, runner=self.runner, renderer=self.renderer)
        self._emit(PkiReady, reused=reused, identities=[i.name for i in pki.identities()])

        kubectl = self.kubectl or Kubectl(settings.root / "kubeconfig" / "admin.kubeconfig", runner=self.runner)
        kubeconfigs = build_kubeconfigs(settings, plan, pki, kubectl=kubectl)
        self._emit(KubeconfigsReady, files=[str(f) for f in kubeconfigs.files()])
        kubectl = kubectl.with_kubeconfig(kubeconfigs.admin)

        encryption = ensure_encryption(settings, renderer=self.renderer)

        self.cluster = ClusterContext(
            settings=settings,
            plan=plan,
            pki=pki,
            kubeconfigs=kubeconfigs,
            encryption_config=encryption,
            kubectl=kubectl,
            renderer=self.renderer,
            runner=self.runner,
            container=container,
            bus=self.bus,
            event_ctx=self.event_ctx,
            start_process=self.start_process,
        )

    def _supervise(self, component: Component) -> None:
        self.supervised.append(component)
        self.check_children()

    def check_children(self) -> None:
        """Raise if a supervised child died without being asked to."""
        for c in self.supervised:
            if c.process.exited_unexpectedly:
                raise UnexpectedExitError(f"Process '{c.name}' died unexpectedly")

    def _start_core(self) -> None:
        self._transition(State.STARTING_CORE)
        cluster = self.cluster
        self._supervise(control_plane.start_etcd(cluster))
        self._supervise(control_plane.start_apiserver(cluster))
        self._supervise(control_plane.start_controller_manager(cluster))
        self._supervise(control_plane.start_scheduler(cluster))

    def _start_nodes(self) -> None:
        self._transition(State.STARTING_NODES)
        cluster = self.cluster
        for index in range(len(cluster.plan.nodes)):
            self._supervise(node.start_crio(cluster, index))
            self._supervise(node.start_kubelet(cluster, index))
            self._supervise(node.start_proxy(cluster, index))

        log.info("Applying cluster addons")
        coredns.apply_coredns(cluster)
        self.check_children()

        write_env_file(
            self.settings.root,
            runtime_endpoint=node.crio_socket(cluster, cluster.plan.nodes[0]).endpoint(),
            kubeconfig=cluster.kubeconfigs.admin,
        )

    def _ready(self) -> None:
        self._transition(State.READY)
        log.info("Everything is up and running")
        if self.post_ready is not None:
            self.post_ready()
        # a child that died while the hook ran still fails the run
        self.check_children()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _teardown(self) -> bool:
        self._transition(State.STOPPING)
        failures: List[str] = []
        stopped = 0

        with progress_bar(len(self.supervised) + 2):
            log.info("Cleaning up")
            while self.supervised:
                component = self.supervised.pop()
                try:
                    component.stop()
                except TeardownError as e:
                    failures.extend(e.failures)
                    self._emit(ComponentStopped, name=component.name, status="FAILED", error=str(e))
                    log.error("%s", e)
                    continue
                except Exception as e:
                    failures.append(f"{component.name}: {e}")
                    self._emit(ComponentStopped, name=component.name, status="FAILED", error=str(e))
                    log.error("Unable to stop %s: %s", component.name, e)
                    continue
                stopped += 1
                self._emit(ComponentStopped, name=component.name, status="STOPPED")
                log.info("Stopped %s", component.name)

            try:
                self.system.umount_below(self.settings.root)
            except KubernixError as e:
                failures.append(f"Unable to unmount below {self.settings.root}: {e}")
                log.error("%s", failures[-1])
            log.info("Cleanup done")

        self._emit(TeardownSummary, stopped=stopped, failed=len(failures))
        self._transition(State.DONE)
        if failures:
            log.error("%s", TeardownError(failures))
            return False
        log.debug("All done")
        return True
